import copy
import logging
from typing import Union

from lxml import etree

from signing.exceptions import ParseError

logger = logging.getLogger(__name__)

NS = {
    'invoice': 'urn:oasis:names:specification:ubl:schema:xsd:Invoice-2',
    'cac': 'urn:oasis:names:specification:ubl:schema:xsd:CommonAggregateComponents-2',
    'cbc': 'urn:oasis:names:specification:ubl:schema:xsd:CommonBasicComponents-2',
    'ext': 'urn:oasis:names:specification:ubl:schema:xsd:CommonExtensionComponents-2',
    'sig': 'urn:oasis:names:specification:ubl:schema:xsd:CommonSignatureComponents-2',
    'sac': 'urn:oasis:names:specification:ubl:schema:xsd:SignatureAggregateComponents-2',
    'sbc': 'urn:oasis:names:specification:ubl:schema:xsd:SignatureBasicComponents-2',
    'ds': 'http://www.w3.org/2000/09/xmldsig#',
    'xades': 'http://uri.etsi.org/01903/v1.3.2#'
}

QR_REFERENCE_ID = "QR"

# The three subtrees that never take part in the invoice hash.
RESERVED_XPATH = (
    "//ext:UBLExtensions"
    " | //cac:Signature"
    f" | //cac:AdditionalDocumentReference[cbc:ID='{QR_REFERENCE_ID}']"
)

Document = Union[str, bytes, etree._Element, etree._ElementTree]


def parse_document(document: Document) -> etree._Element:
    """
    Returns the root element of `document`.

    Strings and bytes are parsed with a parser that neither resolves entities
    nor touches the network. Elements and trees are returned as-is, so callers
    that intend to modify the result must copy it first.
    """
    if isinstance(document, etree._ElementTree):
        return document.getroot()
    if isinstance(document, etree._Element):
        return document

    if isinstance(document, str):
        document = document.encode("utf-8")
    if not isinstance(document, (bytes, bytearray)):
        raise TypeError(f"Unsupported document type: {type(document).__name__}")
    if not document.strip():
        raise ParseError("XML document cannot be empty.")

    parser = etree.XMLParser(resolve_entities=False, no_network=True)
    try:
        return etree.fromstring(bytes(document), parser)
    except etree.XMLSyntaxError as e:
        raise ParseError(f"Failed to parse XML document: {e}") from e


def strip_blank_text(root: etree._Element) -> None:
    # Whitespace between elements is formatting, not content.
    for elem in root.iter():
        if len(elem) and elem.text is not None and not elem.text.strip():
            elem.text = None
        if elem.tail is not None and not elem.tail.strip():
            elem.tail = None


def strip_reserved(document: Document) -> etree._Element:
    """
    Returns a pruned deep copy of the document: UBL extensions, the signature
    placeholder and the QR document reference are removed wherever they occur,
    and ignorable whitespace is dropped. The input is never modified.
    """
    root = copy.deepcopy(parse_document(document))
    strip_blank_text(root)

    for elem in root.xpath(RESERVED_XPATH, namespaces=NS):
        parent = elem.getparent()
        if parent is not None:
            parent.remove(elem)

    return root


def canonicalize(document: Document) -> bytes:
    """
    Canonical XML 1.0 (inclusive, no comments) of the pruned document, UTF-8 encoded.

    Namespace declarations are sorted and repeats of an in-scope declaration
    are dropped, but each declaration stays on the element that makes it.
    Moving them to the root would no longer match the hash the gateway computes.
    """
    root = strip_reserved(document)
    canonical = etree.tostring(root, method="c14n", exclusive=False, with_comments=False)
    logger.debug("Canonicalized invoice: %d bytes", len(canonical))
    return canonical
