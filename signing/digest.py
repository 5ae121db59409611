import base64
import hashlib

from signing.canonicalizer import Document, canonicalize

DIGEST_SIZE = 32


def compute_digest(data: bytes) -> bytes:
    """ SHA-256 over already canonical bytes. Always 32 bytes. """
    if isinstance(data, str):
        raise TypeError("compute_digest expects bytes; canonicalize the document first")
    return hashlib.sha256(data).digest()


def digest_b64(data: bytes) -> str:
    return base64.b64encode(compute_digest(data)).decode("utf-8")


def hex_digest_b64(data: bytes) -> str:
    """
    ZATCA flavour used for the certificate and signed-properties digests:
    base64 of the UTF-8 bytes of the lowercase hex SHA-256.
    """
    hash_hex = compute_digest(data).hex()
    return base64.b64encode(hash_hex.encode("utf-8")).decode("utf-8")


def hash_document(document: Document) -> str:
    """ Invoice hash (base64) without signing anything. """
    return digest_b64(canonicalize(document))
