import base64
import hashlib
import logging
import re
from typing import Optional, Union

from cryptography import x509
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization

from signing.exceptions import LoadError, MissingInputError

logger = logging.getLogger(__name__)

PEM_MARKER = "-----BEGIN"
DER_SEQUENCE = 0x30
_BASE64_TEXT = re.compile(r"[A-Za-z0-9+/]+={0,2}")

Content = Union[str, bytes]


def pem_to_base64(pem: str) -> str:
    """Extract base64 content from a PEM string."""
    lines = pem.strip().splitlines()
    return "".join(line.strip() for line in lines if "-----" not in line)


def _normalize_pem(pem: str) -> bytes:
    # Indented PEM blocks (e.g. pasted into a triple-quoted string) are still PEM.
    return "\n".join(line.strip() for line in pem.strip().splitlines()).encode("utf-8")


def _b64decode(text: str) -> Optional[bytes]:
    cleaned = "".join(text.split())
    if not cleaned or len(cleaned) % 4 == 1:
        return None
    cleaned += "=" * (-len(cleaned) % 4)
    if not _BASE64_TEXT.fullmatch(cleaned):
        return None
    return base64.b64decode(cleaned)


def _decode_der(content: Content, what: str) -> bytes:
    """
    Raw (non-PEM) material: DER bytes, base64 DER, or base64 of base64 DER as
    returned in a ZATCA binarySecurityToken.
    """
    if isinstance(content, bytes):
        if content[:1] == bytes([DER_SEQUENCE]):
            return content
        content = content.decode("ascii", errors="replace")

    der = _b64decode(content)
    if der is not None and der[:1] != bytes([DER_SEQUENCE]) and der.isascii():
        der = _b64decode(der.decode("ascii"))

    if der is None or der[:1] != bytes([DER_SEQUENCE]):
        raise LoadError(f"The {what} is neither PEM nor base64-encoded DER.")
    return der


def _as_text(content: Content) -> Optional[str]:
    if isinstance(content, str):
        return content
    if content[:1] == bytes([DER_SEQUENCE]):
        return None
    return content.decode("utf-8", errors="replace")


def _public_key_der(public_key) -> bytes:
    return public_key.public_bytes(
        encoding=serialization.Encoding.DER,
        format=serialization.PublicFormat.SubjectPublicKeyInfo
    )


class CertificateHandle:
    """
    A parsed X.509 certificate together with its EC private key.

    Both may be given as PEM (with headers) or as raw base64 DER; the format is
    detected from the content. `secret` is only used for the API authorization
    header. The key must be the one the certificate was issued for.
    The handle is read-only once built and can be shared between
    threads; `close()` (or leaving a `with` block) drops the private key.
    """

    __slots__ = ("_raw_certificate", "_certificate", "_private_key", "_secret")

    def __init__(self, certificate: Content, private_key: Content, secret: Optional[str] = None):
        if not certificate or not str(certificate).strip():
            raise LoadError("Certificate content cannot be empty.")
        if not private_key or not str(private_key).strip():
            raise LoadError("Private key content cannot be empty.")

        cert = self._load_certificate(certificate)
        key = self._load_private_key(private_key)
        if _public_key_der(key.public_key()) != _public_key_der(cert.public_key()):
            raise LoadError("Private key does not match the certificate's public key.")

        text = _as_text(certificate)
        self._raw_certificate = text.strip() if text is not None \
            else base64.b64encode(cert.public_bytes(serialization.Encoding.DER)).decode("ascii")
        self._certificate = cert
        self._private_key = key
        self._secret = secret

    @classmethod
    def from_files(cls, certificate_path: str, private_key_path: str, secret: Optional[str] = None):
        with open(certificate_path, "r") as f:
            certificate = f.read()
        with open(private_key_path, "r") as f:
            private_key = f.read()
        return cls(certificate, private_key, secret)

    # ---------------- LOADING ---------------- #
    @staticmethod
    def _load_certificate(content: Content) -> x509.Certificate:
        text = _as_text(content)
        try:
            if text is not None and PEM_MARKER in text:
                return x509.load_pem_x509_certificate(_normalize_pem(text))
            return x509.load_der_x509_certificate(_decode_der(content, "certificate"))
        except ValueError as e:
            raise LoadError(f"Failed to load certificate: {e}") from e

    @staticmethod
    def _load_private_key(content: Content):
        text = _as_text(content)
        try:
            if text is not None and PEM_MARKER in text:
                return serialization.load_pem_private_key(_normalize_pem(text), password=None)
            return serialization.load_der_private_key(_decode_der(content, "private key"), password=None)
        except (ValueError, TypeError, UnsupportedAlgorithm) as e:
            raise LoadError(f"Failed to load private key: {e}") from e

    # ---------------- LIFECYCLE ---------------- #
    def close(self) -> None:
        self._private_key = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    # ---------------- ACCESSORS ---------------- #
    @property
    def certificate(self) -> x509.Certificate:
        return self._certificate

    @property
    def private_key(self):
        if self._private_key is None:
            raise LoadError("The certificate handle has been closed.")
        return self._private_key

    @property
    def raw_certificate(self) -> str:
        """The certificate text exactly as it was supplied (trimmed)."""
        return self._raw_certificate

    @property
    def secret(self) -> Optional[str]:
        return self._secret

    @property
    def certificate_der(self) -> bytes:
        return self._certificate.public_bytes(serialization.Encoding.DER)

    @property
    def certificate_base64(self) -> str:
        return base64.b64encode(self.certificate_der).decode("ascii")

    @property
    def issuer(self) -> str:
        return self._certificate.issuer.rfc4514_string()

    @property
    def serial_number(self) -> int:
        return self._certificate.serial_number

    def certificate_hash(self) -> str:
        """Base64 SHA-256 of the stored certificate text."""
        return base64.b64encode(hashlib.sha256(self._raw_certificate.encode("utf-8")).digest()).decode("utf-8")

    def certificate_signature(self) -> bytes:
        """
        The signature embedded in the certificate. A single leading 0x00 (sign
        padding of a DER integer / bit string) is dropped unless it is the only
        byte.
        """
        signature = self._certificate.signature
        if len(signature) > 1 and signature[0] == 0x00:
            return signature[1:]
        return signature

    def public_key_bytes(self) -> bytes:
        """DER-encoded SubjectPublicKeyInfo of the certificate's key."""
        return _public_key_der(self._certificate.public_key())

    def raw_public_key_base64(self) -> str:
        return base64.b64encode(self.public_key_bytes()).decode("ascii")

    def formatted_issuer(self) -> str:
        # rfc4514_string() lists RDNs most-specific first; this is the reverse.
        return ", ".join(rdn.rfc4514_string() for rdn in self._certificate.issuer.rdns)

    def authorization_header(self) -> str:
        if not self._secret:
            raise MissingInputError("secret")
        token = base64.b64encode(self.certificate_base64.encode("utf-8")).decode("utf-8")
        credentials = base64.b64encode(f"{token}:{self._secret}".encode("utf-8")).decode("utf-8")
        return f"Basic {credentials}"

    def binary_security_token(self) -> str:
        """The certificate as the authority returns it: base64 of the base64 DER."""
        return base64.b64encode(self.certificate_base64.encode("utf-8")).decode("utf-8")

    def __repr__(self) -> str:
        return f"<CertificateHandle issuer={self.issuer!r} serial={self.serial_number}>"
