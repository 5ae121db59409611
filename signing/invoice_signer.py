import base64
import copy
import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Optional

from lxml import etree

from certificates.certificate_handle import CertificateHandle
from qr import tlv
from signing.canonicalizer import NS, QR_REFERENCE_ID, Document, canonicalize, parse_document, strip_blank_text
from signing.digest import compute_digest, hash_document
from signing.exceptions import ParseError
from signing.signature_builder import EXTENSION_URI, REFERENCED_SIGNATURE_ID, SignatureBuilder
from signing.signer import sign_digest

logger = logging.getLogger(__name__)

EXT = NS["ext"]
CAC = NS["cac"]
CBC = NS["cbc"]

SIMPLIFIED_INVOICE_PREFIX = "02"
PREVIOUS_HASH_REFERENCE_ID = "PIH"
SELLER_PATH = "cac:AccountingSupplierParty/cac:Party/"


@dataclass(frozen=True)
class SignedInvoice:
    signed_xml: str
    invoice_hash: str
    digital_signature: str
    qr_code: str


# ---------------- QR FIELDS ---------------- #
def _text(root: etree._Element, path: str) -> str:
    found = root.find(path, namespaces=NS)
    if found is None or found.text is None:
        return ""
    return found.text.strip()


def _required_text(root: etree._Element, path: str) -> str:
    value = _text(root, path)
    if not value:
        raise ParseError(f"Invoice is missing {path}", {"element": path})
    return value


def is_simplified_invoice(root: etree._Element) -> bool:
    type_code = root.find("cbc:InvoiceTypeCode", namespaces=NS)
    if type_code is None:
        return False
    return type_code.get("name", "").startswith(SIMPLIFIED_INVOICE_PREFIX)


def issue_timestamp(root: etree._Element) -> str:
    issue_time = _required_text(root, "cbc:IssueTime")
    if not issue_time.endswith("Z"):
        issue_time += "Z"
    return f"{_required_text(root, 'cbc:IssueDate')}T{issue_time}"


def build_qr_fields(document: Document, handle: CertificateHandle,
                    invoice_hash: str, digital_signature: str) -> List[tlv.QrField]:
    """
    The ordered ZATCA QR fields for `document`. The certificate signature
    (tag 9) is only carried by simplified invoices.
    Raises ParseError when the seller, date or totals are missing.
    """
    root = parse_document(document)
    fields = [
        tlv.seller_name(_required_text(root, SELLER_PATH + "cac:PartyLegalEntity/cbc:RegistrationName")),
        tlv.tax_number(_required_text(root, SELLER_PATH + "cac:PartyTaxScheme/cbc:CompanyID")),
        tlv.invoice_date(issue_timestamp(root)),
        tlv.invoice_total(_required_text(root, "cac:LegalMonetaryTotal/cbc:TaxInclusiveAmount")),
        tlv.tax_total(_required_text(root, "cac:TaxTotal/cbc:TaxAmount")),
        tlv.invoice_hash(invoice_hash),
        tlv.digital_signature(digital_signature),
        tlv.public_key(handle.public_key_bytes()),
    ]
    if is_simplified_invoice(root):
        fields.append(tlv.certificate_signature(handle.certificate_signature()))
    return fields


def get_qr_code(document: Document, handle: CertificateHandle, invoice_hash: str, digital_signature: str) -> str:
    """ Base64 TLV QR payload for an already hashed and signed invoice. """
    return tlv.encode_base64(build_qr_fields(document, handle, invoice_hash, digital_signature))


def get_hash(document: Document) -> str:
    return hash_document(document)


# ---------------- INSERTION ---------------- #
def _find_reference(root: etree._Element, reference_id: str) -> Optional[etree._Element]:
    for doc_ref in root.findall("cac:AdditionalDocumentReference", namespaces=NS):
        id_elem = doc_ref.find("cbc:ID", namespaces=NS)
        if id_elem is not None and (id_elem.text or "").strip() == reference_id:
            return doc_ref
    return None


def _insert_after(anchor: etree._Element, elem: etree._Element) -> None:
    parent = anchor.getparent()
    parent.insert(parent.index(anchor) + 1, elem)


def _fill_extensions(root: etree._Element, extension_fragment: str) -> None:
    ubl_extensions = root.find("ext:UBLExtensions", namespaces=NS)
    if ubl_extensions is None:
        ubl_extensions = etree.SubElement(root, f"{{{EXT}}}UBLExtensions")
        root.insert(0, ubl_extensions)
    tail = ubl_extensions.tail
    ubl_extensions.clear()
    ubl_extensions.tail = tail

    wrapper_xml = f'<wrapper xmlns:ext="{EXT}" xmlns:cbc="{CBC}" xmlns:cac="{CAC}">{extension_fragment}</wrapper>'
    parser = etree.XMLParser(remove_blank_text=True, resolve_entities=False, no_network=True)
    wrapper_root = etree.fromstring(wrapper_xml.encode("utf-8"), parser)
    for child in wrapper_root:
        ubl_extensions.append(child)


def _fill_qr(root: etree._Element, qr_code: str) -> etree._Element:
    qr_node = _find_reference(root, QR_REFERENCE_ID)
    if qr_node is None:
        anchor = _find_reference(root, PREVIOUS_HASH_REFERENCE_ID)
        if anchor is None:
            references = root.findall("cac:AdditionalDocumentReference", namespaces=NS)
            anchor = references[-1] if references else None

        # Created in place so it picks up the document's prefixes, then moved.
        qr_node = etree.SubElement(root, f"{{{CAC}}}AdditionalDocumentReference")
        id_elem = etree.SubElement(qr_node, f"{{{CBC}}}ID")
        id_elem.text = QR_REFERENCE_ID
        if anchor is not None:
            _insert_after(anchor, qr_node)

    attachment = qr_node.find("cac:Attachment", namespaces=NS)
    if attachment is None:
        attachment = etree.SubElement(qr_node, f"{{{CAC}}}Attachment")
    binary = attachment.find("cbc:EmbeddedDocumentBinaryObject", namespaces=NS)
    if binary is None:
        binary = etree.SubElement(attachment, f"{{{CBC}}}EmbeddedDocumentBinaryObject", mimeCode="text/plain")
    binary.text = qr_code
    return qr_node


def _ensure_signature(root: etree._Element, qr_node: etree._Element) -> None:
    if root.find("cac:Signature", namespaces=NS) is not None:
        return
    signature = etree.SubElement(root, f"{{{CAC}}}Signature")
    id_sig = etree.SubElement(signature, f"{{{CBC}}}ID")
    id_sig.text = REFERENCED_SIGNATURE_ID
    sig_method = etree.SubElement(signature, f"{{{CBC}}}SignatureMethod")
    sig_method.text = EXTENSION_URI
    _insert_after(qr_node, signature)


def trim_blank_lines(xml: str) -> str:
    return re.sub(r"^[ \t]*[\r\n]+", "", xml, flags=re.M)


def insert_signature(document: Document, extension_fragment: str, qr_code: str) -> str:
    """
    Fills the reserved slots of the invoice: the signature extension goes into
    `ext:UBLExtensions`, the QR payload into the `QR` document reference, and a
    `cac:Signature` is added if the invoice has none. Missing slots are created
    where UBL expects them. Returns the serialized invoice.
    """
    root = copy.deepcopy(parse_document(document))
    strip_blank_text(root)

    _fill_extensions(root, extension_fragment)
    qr_node = _fill_qr(root, qr_code)
    _ensure_signature(root, qr_node)

    xml = etree.tostring(root, pretty_print=True, encoding="UTF-8", xml_declaration=True).decode("utf-8")
    return trim_blank_lines(xml)


# ---------------- SIGNING ---------------- #
def sign(document: Document, handle: CertificateHandle, signing_time: Optional[datetime] = None) -> SignedInvoice:
    """
    Hashes, signs and stamps an unsigned invoice.

    Returns the signed XML together with the base64 invoice hash, the base64
    signature and the base64 QR payload, each usable on its own (the hash is
    what the reporting and clearance APIs expect as `invoiceHash`).
    """
    root = parse_document(document)
    if signing_time is None:
        signing_time = datetime.now(timezone.utc)

    digest = compute_digest(canonicalize(root))
    signature = sign_digest(digest, handle)

    invoice_hash = base64.b64encode(digest).decode("utf-8")
    digital_signature = base64.b64encode(signature).decode("utf-8")

    extension = (SignatureBuilder()
                 .set_certificate(handle)
                 .set_invoice_digest(digest)
                 .set_signature_value(signature)
                 .set_signing_time(signing_time)
                 .build())

    qr_code = get_qr_code(root, handle, invoice_hash, digital_signature)
    signed_xml = insert_signature(root, extension, qr_code)

    logger.info("Signed invoice %s", _text(root, "cbc:ID") or "<no id>")
    return SignedInvoice(
        signed_xml=signed_xml,
        invoice_hash=invoice_hash,
        digital_signature=digital_signature,
        qr_code=qr_code
    )
