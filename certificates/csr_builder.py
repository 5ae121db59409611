import base64
import logging
import re
from dataclasses import dataclass
from typing import Optional

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID, ObjectIdentifier
from pyasn1.codec.der.encoder import encode as der_encode
from pyasn1.type import char

from signing.exceptions import FieldFormatError, MissingFieldError

logger = logging.getLogger(__name__)

# Microsoft certificate template name extension, read by the ZATCA CA.
CERTIFICATE_TEMPLATE_OID = ObjectIdentifier("1.3.6.1.4.1.311.20.2")
REGISTERED_ADDRESS_OID = ObjectIdentifier("2.5.4.26")

TEMPLATE_NAMES = {
    "sandbox": "TSTZATCA-Code-Signing",
    "simulation": "PREZATCA-Code-Signing",
    "prod": "ZATCA-Code-Signing",
}

COMMON_NAME_PREFIX = {
    "sandbox": "TST",
    "simulation": "SIM",
    "prod": "PRD",
}

ORGANIZATION_IDENTIFIER_PATTERN = re.compile(r"3[0-9]{13}3")
INVOICE_TYPE_PATTERN = re.compile(r"[01]{4}")
_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9\s\-_]")


@dataclass(frozen=True)
class CertificateRequest:
    csr_pem: str
    private_key_pem: str

    @property
    def csr_base64(self) -> str:
        """ The form the compliance CSID endpoint expects: base64 of the PEM text. """
        return base64.b64encode(self.csr_pem.encode("utf-8")).decode("utf-8")


def _sanitize(field: str, value: str) -> str:
    if value is None or not str(value).strip():
        raise FieldFormatError(field, f"{field} cannot be empty")
    sanitized = _UNSAFE_CHARS.sub("", str(value).strip())
    if not sanitized:
        raise FieldFormatError(field, f"{field} is empty after removing unsupported characters: {value!r}")
    return sanitized


class CertificateRequestBuilder:
    """
    Collects the EGS unit details ZATCA requires in an onboarding CSR and
    produces the CSR together with a fresh secp256k1 private key.

    Every setter validates its input immediately and returns the builder:

        request = (CertificateRequestBuilder()
                   .set_organization_identifier("312345678901233")
                   .set_serial_number("MicroPOS", "1.0.0", egs_uuid)
                   .set_common_name("TST-886431145-312345678901233")
                   .set_organization_name("My Company")
                   .set_organizational_unit_name("Riyadh Branch")
                   .set_address("Riyadh 1234 Street")
                   .set_business_category("Technology")
                   .build())

    A builder produces at most one key pair per set of fields. Calling
    `build()` again returns the same request; changing any field afterwards
    discards it, and the next `build()` generates a new key pair.
    """

    def __init__(self):
        self._organization_identifier: Optional[str] = None
        self._serial_number: Optional[str] = None
        self._common_name: Optional[str] = None
        self._country_name = "SA"
        self._organization_name: Optional[str] = None
        self._organizational_unit_name: Optional[str] = None
        self._address: Optional[str] = None
        self._invoice_type = "1100"
        self._environment = "simulation"
        self._business_category: Optional[str] = None
        self._request: Optional[CertificateRequest] = None

    def _set(self, field: str, value: str) -> "CertificateRequestBuilder":
        setattr(self, f"_{field}", value)
        self._request = None
        return self

    # ---------------- SETTERS ---------------- #
    def set_organization_identifier(self, identifier: str) -> "CertificateRequestBuilder":
        if not ORGANIZATION_IDENTIFIER_PATTERN.fullmatch(identifier or ""):
            raise FieldFormatError(
                "organization_identifier",
                "Organization identifier must be 15 digits starting and ending with 3."
            )
        return self._set("organization_identifier", identifier)

    def set_serial_number(self, solution_name: str, model: str, serial: str) -> "CertificateRequestBuilder":
        return self._set("serial_number", "1-{}|2-{}|3-{}".format(
            _sanitize("solution_name", solution_name),
            _sanitize("model", model),
            _sanitize("serial", serial)
        ))

    def set_common_name(self, name: str) -> "CertificateRequestBuilder":
        return self._set("common_name", _sanitize("common_name", name))

    def set_country_name(self, country: str) -> "CertificateRequestBuilder":
        if not country or len(country) != 2 or not (country.isascii() and country.isalpha()):
            raise FieldFormatError("country_name", "Country code must be 2 letters.")
        return self._set("country_name", country.upper())

    def set_organization_name(self, name: str) -> "CertificateRequestBuilder":
        return self._set("organization_name", _sanitize("organization_name", name))

    def set_organizational_unit_name(self, name: str) -> "CertificateRequestBuilder":
        return self._set("organizational_unit_name", _sanitize("organizational_unit_name", name))

    def set_address(self, address: str) -> "CertificateRequestBuilder":
        return self._set("address", _sanitize("address", address))

    def set_invoice_type(self, invoice_type: str) -> "CertificateRequestBuilder":
        """ Four flags: standard, simplified, future use, future use. e.g. `1100`. """
        if not INVOICE_TYPE_PATTERN.fullmatch(str(invoice_type)):
            raise FieldFormatError("invoice_type", "Invoice type must be 4 characters, each 0 or 1.")
        return self._set("invoice_type", str(invoice_type))

    def set_production(self, production: bool) -> "CertificateRequestBuilder":
        return self._set("environment", "prod" if production else "simulation")

    def set_environment(self, environment: str) -> "CertificateRequestBuilder":
        if environment not in TEMPLATE_NAMES:
            raise FieldFormatError(
                "environment",
                f"Unknown environment {environment!r}, expected one of {', '.join(TEMPLATE_NAMES)}"
            )
        return self._set("environment", environment)

    def set_business_category(self, category: str) -> "CertificateRequestBuilder":
        return self._set("business_category", _sanitize("business_category", category))

    # ---------------- BUILD ---------------- #
    def _missing_fields(self):
        required = [
            ("organization_identifier", self._organization_identifier),
            ("serial_number", self._serial_number),
            ("common_name", self._common_name),
            ("organization_name", self._organization_name),
            ("organizational_unit_name", self._organizational_unit_name),
            ("address", self._address),
            ("business_category", self._business_category),
        ]
        return [name for name, value in required if not value]

    @property
    def template_name(self) -> str:
        return TEMPLATE_NAMES[self._environment]

    def build(self) -> CertificateRequest:
        if self._request is not None:
            return self._request

        missing = self._missing_fields()
        if missing:
            raise MissingFieldError(missing)

        private_key = ec.generate_private_key(ec.SECP256K1())

        subject = x509.Name([
            x509.NameAttribute(NameOID.COUNTRY_NAME, self._country_name),
            x509.NameAttribute(NameOID.ORGANIZATION_NAME, self._organization_name),
            x509.NameAttribute(NameOID.ORGANIZATIONAL_UNIT_NAME, self._organizational_unit_name),
            x509.NameAttribute(NameOID.COMMON_NAME, self._common_name),
        ])

        directory_name = x509.Name([
            # openssl's "SN" short name (2.5.4.4); issued certificates carry the EGS serial there.
            x509.NameAttribute(NameOID.SURNAME, self._serial_number),
            x509.NameAttribute(NameOID.USER_ID, self._organization_identifier),
            x509.NameAttribute(NameOID.TITLE, self._invoice_type),
            x509.NameAttribute(REGISTERED_ADDRESS_OID, self._address),
            x509.NameAttribute(NameOID.BUSINESS_CATEGORY, self._business_category),
        ])

        template = x509.UnrecognizedExtension(
            CERTIFICATE_TEMPLATE_OID,
            der_encode(char.PrintableString(self.template_name))
        )

        csr = (
            x509.CertificateSigningRequestBuilder()
            .subject_name(subject)
            .add_extension(template, critical=False)
            .add_extension(x509.SubjectAlternativeName([x509.DirectoryName(directory_name)]), critical=False)
            .sign(private_key, hashes.SHA256())
        )

        self._request = CertificateRequest(
            csr_pem=csr.public_bytes(serialization.Encoding.PEM).decode("utf-8"),
            private_key_pem=private_key.private_bytes(
                encoding=serialization.Encoding.PEM,
                format=serialization.PrivateFormat.TraditionalOpenSSL,
                encryption_algorithm=serialization.NoEncryption()
            ).decode("utf-8")
        )
        logger.info("Generated CSR for %s (%s)", self._common_name, self.template_name)
        return self._request

    def get_csr(self) -> str:
        return self.build().csr_pem

    def get_private_key(self) -> str:
        return self.build().private_key_pem
