import base64
import logging
from datetime import datetime
from typing import Optional
from xml.sax.saxutils import escape as xml_escape

from certificates.certificate_handle import CertificateHandle
from signing.digest import DIGEST_SIZE, hex_digest_b64
from signing.exceptions import MissingInputError

logger = logging.getLogger(__name__)

SIGNATURE_ID = "urn:oasis:names:specification:ubl:signature:1"
REFERENCED_SIGNATURE_ID = "urn:oasis:names:specification:ubl:signature:Invoice"
EXTENSION_URI = "urn:oasis:names:specification:ubl:dsig:enveloped:xades"
SIGNING_TIME_FORMAT = "%Y-%m-%dT%H:%M:%S"

C14N11 = "http://www.w3.org/2006/12/xml-c14n11"
ECDSA_SHA256 = "http://www.w3.org/2001/04/xmldsig-more#ecdsa-sha256"
SHA256 = "http://www.w3.org/2001/04/xmlenc#sha256"
XPATH_FILTER = "http://www.w3.org/TR/1999/REC-xpath-19991116"
SIGNATURE_PROPERTIES_TYPE = "http://www.w3.org/2000/09/xmldsig#SignatureProperties"

# Hashed byte-for-byte, so the spacing of this block is part of the format.
SIGNED_PROPERTIES_TEMPLATE = """<xades:SignedProperties xmlns:xades="http://uri.etsi.org/01903/v1.3.2#" Id="xadesSignedProperties">
                                    <xades:SignedSignatureProperties>
                                        <xades:SigningTime>{signing_time}</xades:SigningTime>
                                        <xades:SigningCertificate>
                                            <xades:Cert>
                                                <xades:CertDigest>
                                                    <ds:DigestMethod xmlns:ds="http://www.w3.org/2000/09/xmldsig#" Algorithm="http://www.w3.org/2001/04/xmlenc#sha256"/>
                                                    <ds:DigestValue xmlns:ds="http://www.w3.org/2000/09/xmldsig#">{cert_digest}</ds:DigestValue>
                                                </xades:CertDigest>
                                                <xades:IssuerSerial>
                                                    <ds:X509IssuerName xmlns:ds="http://www.w3.org/2000/09/xmldsig#">{issuer_name}</ds:X509IssuerName>
                                                    <ds:X509SerialNumber xmlns:ds="http://www.w3.org/2000/09/xmldsig#">{serial_number}</ds:X509SerialNumber>
                                                </xades:IssuerSerial>
                                            </xades:Cert>
                                        </xades:SigningCertificate>
                                    </xades:SignedSignatureProperties>
                                </xades:SignedProperties>"""

UBL_EXTENSION_TEMPLATE = """<ext:UBLExtension>
    <ext:ExtensionURI>{extension_uri}</ext:ExtensionURI>
    <ext:ExtensionContent>
        <sig:UBLDocumentSignatures xmlns:sig="urn:oasis:names:specification:ubl:schema:xsd:CommonSignatureComponents-2" xmlns:sac="urn:oasis:names:specification:ubl:schema:xsd:SignatureAggregateComponents-2" xmlns:sbc="urn:oasis:names:specification:ubl:schema:xsd:SignatureBasicComponents-2">
            <sac:SignatureInformation>
                <cbc:ID>{signature_id}</cbc:ID>
                <sbc:ReferencedSignatureID>{referenced_signature_id}</sbc:ReferencedSignatureID>
                <ds:Signature xmlns:ds="http://www.w3.org/2000/09/xmldsig#" Id="signature">
                    <ds:SignedInfo>
                        <ds:CanonicalizationMethod Algorithm="{c14n}"/>
                        <ds:SignatureMethod Algorithm="{signature_method}"/>
                        <ds:Reference Id="invoiceSignedData" URI="">
                            <ds:Transforms>
                                <ds:Transform Algorithm="{xpath_filter}">
                                    <ds:XPath>not(//ancestor-or-self::ext:UBLExtensions)</ds:XPath>
                                </ds:Transform>
                                <ds:Transform Algorithm="{xpath_filter}">
                                    <ds:XPath>not(//ancestor-or-self::cac:Signature)</ds:XPath>
                                </ds:Transform>
                                <ds:Transform Algorithm="{xpath_filter}">
                                    <ds:XPath>not(//ancestor-or-self::cac:AdditionalDocumentReference[cbc:ID='QR'])</ds:XPath>
                                </ds:Transform>
                                <ds:Transform Algorithm="{c14n}"/>
                            </ds:Transforms>
                            <ds:DigestMethod Algorithm="{digest_method}"/>
                            <ds:DigestValue>{invoice_digest}</ds:DigestValue>
                        </ds:Reference>
                        <ds:Reference Type="{signature_properties_type}" URI="#xadesSignedProperties">
                            <ds:DigestMethod Algorithm="{digest_method}"/>
                            <ds:DigestValue>{signed_props_digest}</ds:DigestValue>
                        </ds:Reference>
                    </ds:SignedInfo>
                    <ds:SignatureValue>{signature_value}</ds:SignatureValue>
                    <ds:KeyInfo>
                        <ds:X509Data>
                            <ds:X509Certificate>{certificate}</ds:X509Certificate>
                        </ds:X509Data>
                    </ds:KeyInfo>
                    <ds:Object>
                        <xades:QualifyingProperties xmlns:xades="http://uri.etsi.org/01903/v1.3.2#" Target="signature">
                            <xades:SignedProperties Id="xadesSignedProperties">
                                <xades:SignedSignatureProperties>
                                    <xades:SigningTime>{signing_time}</xades:SigningTime>
                                    <xades:SigningCertificate>
                                        <xades:Cert>
                                            <xades:CertDigest>
                                                <ds:DigestMethod Algorithm="{digest_method}"/>
                                                <ds:DigestValue>{cert_digest}</ds:DigestValue>
                                            </xades:CertDigest>
                                            <xades:IssuerSerial>
                                                <ds:X509IssuerName>{issuer_name}</ds:X509IssuerName>
                                                <ds:X509SerialNumber>{serial_number}</ds:X509SerialNumber>
                                            </xades:IssuerSerial>
                                        </xades:Cert>
                                    </xades:SigningCertificate>
                                </xades:SignedSignatureProperties>
                            </xades:SignedProperties>
                        </xades:QualifyingProperties>
                    </ds:Object>
                </ds:Signature>
            </sac:SignatureInformation>
        </sig:UBLDocumentSignatures>
    </ext:ExtensionContent>
</ext:UBLExtension>"""


def signed_properties_block(signing_time: str, cert_digest: str, issuer_name: str, serial_number: str) -> str:
    return SIGNED_PROPERTIES_TEMPLATE.format(
        signing_time=signing_time,
        cert_digest=cert_digest,
        issuer_name=xml_escape(issuer_name),
        serial_number=serial_number
    )


def signed_properties_hash(signing_time: str, cert_digest: str, issuer_name: str, serial_number: str) -> str:
    block = signed_properties_block(signing_time, cert_digest, issuer_name, serial_number)
    return hex_digest_b64(block.replace("\r\n", "\n").encode("utf-8"))


class SignatureBuilder:
    """
    Accumulates the inputs of a UBL/XAdES signature and renders the
    `ext:UBLExtension` fragment that goes into the invoice's UBLExtensions.

        fragment = (SignatureBuilder()
                    .set_certificate(handle)
                    .set_invoice_digest(digest)
                    .set_signature_value(signature)
                    .set_signing_time(now)
                    .build())

    The fragment uses the `ext`, `cbc` and `cac` prefixes without declaring
    them; it is meant to be parsed in the context of the invoice root.
    """

    REQUIRED = ("certificate", "invoice_digest", "signature_value", "signing_time")

    def __init__(self):
        self._certificate: Optional[CertificateHandle] = None
        self._invoice_digest: Optional[bytes] = None
        self._signature_value: Optional[bytes] = None
        self._signing_time: Optional[datetime] = None
        self._consumed = False

    def set_certificate(self, handle: CertificateHandle) -> "SignatureBuilder":
        self._certificate = handle
        return self

    def set_invoice_digest(self, digest: bytes) -> "SignatureBuilder":
        if len(digest) != DIGEST_SIZE:
            raise ValueError(f"Invoice digest must be {DIGEST_SIZE} bytes, got {len(digest)}")
        self._invoice_digest = bytes(digest)
        return self

    def set_signature_value(self, signature: bytes) -> "SignatureBuilder":
        self._signature_value = bytes(signature)
        return self

    def set_signing_time(self, signing_time: datetime) -> "SignatureBuilder":
        self._signing_time = signing_time
        return self

    def _check_complete(self) -> None:
        for field in self.REQUIRED:
            value = getattr(self, f"_{field}")
            if value is None or (isinstance(value, bytes) and not value):
                raise MissingInputError(field)

    def build(self) -> str:
        if self._consumed:
            raise RuntimeError("SignatureBuilder has already been built; create a new one per signature")
        self._check_complete()

        handle = self._certificate
        signing_time = self._signing_time.strftime(SIGNING_TIME_FORMAT)
        cert_digest = hex_digest_b64(handle.certificate_der)
        issuer_name = handle.issuer
        serial_number = str(handle.serial_number)

        signed_props_digest = signed_properties_hash(signing_time, cert_digest, issuer_name, serial_number)

        fragment = UBL_EXTENSION_TEMPLATE.format(
            extension_uri=EXTENSION_URI,
            signature_id=SIGNATURE_ID,
            referenced_signature_id=REFERENCED_SIGNATURE_ID,
            c14n=C14N11,
            signature_method=ECDSA_SHA256,
            xpath_filter=XPATH_FILTER,
            digest_method=SHA256,
            signature_properties_type=SIGNATURE_PROPERTIES_TYPE,
            invoice_digest=base64.b64encode(self._invoice_digest).decode("utf-8"),
            signed_props_digest=signed_props_digest,
            signature_value=base64.b64encode(self._signature_value).decode("utf-8"),
            certificate=handle.certificate_base64,
            signing_time=signing_time,
            cert_digest=cert_digest,
            issuer_name=xml_escape(issuer_name),
            serial_number=serial_number
        )

        self._consumed = True
        logger.info("Built signature envelope for certificate serial %s", serial_number)
        return fragment
