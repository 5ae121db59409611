import base64
import binascii
import logging
from dataclasses import dataclass
from typing import Iterable, List, Union

from signing.exceptions import EncodingOverflowError, TlvDecodeError

logger = logging.getLogger(__name__)

TEXT = "text"
BYTES = "bytes"

MAX_VALUE_LENGTH = 255

# ZATCA QR tags, in the order they must appear in the payload.
SELLER_NAME = 1
TAX_NUMBER = 2
INVOICE_DATE = 3
INVOICE_TOTAL = 4
TAX_TOTAL = 5
INVOICE_HASH = 6
DIGITAL_SIGNATURE = 7
PUBLIC_KEY = 8
CERTIFICATE_SIGNATURE = 9

# Tags whose values are raw bytes rather than UTF-8 text.
BINARY_TAGS = frozenset({PUBLIC_KEY, CERTIFICATE_SIGNATURE})


@dataclass(frozen=True)
class QrField:
    tag: int
    kind: str
    value: Union[str, bytes]

    def __post_init__(self):
        if not 1 <= self.tag <= 255:
            raise ValueError(f"QR tag must fit in one byte, got {self.tag}")
        if self.kind not in (TEXT, BYTES):
            raise ValueError(f"Unknown field kind: {self.kind}")
        if self.kind == TEXT and not isinstance(self.value, str):
            raise TypeError(f"Tag {self.tag} expects text, got {type(self.value).__name__}")
        if self.kind == BYTES and not isinstance(self.value, (bytes, bytearray)):
            raise TypeError(f"Tag {self.tag} expects bytes, got {type(self.value).__name__}")

    def value_bytes(self) -> bytes:
        if self.kind == TEXT:
            return self.value.encode("utf-8")
        return bytes(self.value)


# ---------------- FACTORIES ---------------- #
def seller_name(value: str) -> QrField:
    return QrField(SELLER_NAME, TEXT, value)


def tax_number(value: str) -> QrField:
    return QrField(TAX_NUMBER, TEXT, value)


def invoice_date(value: str) -> QrField:
    """ Issue timestamp, e.g. `2025-02-12T18:27:19Z`. """
    return QrField(INVOICE_DATE, TEXT, value)


def invoice_total(value: str) -> QrField:
    return QrField(INVOICE_TOTAL, TEXT, value)


def tax_total(value: str) -> QrField:
    return QrField(TAX_TOTAL, TEXT, value)


def invoice_hash(value: str) -> QrField:
    """ Base64 invoice digest. """
    return QrField(INVOICE_HASH, TEXT, value)


def digital_signature(value: str) -> QrField:
    """ Base64 ECDSA signature of the invoice digest. """
    return QrField(DIGITAL_SIGNATURE, TEXT, value)


def public_key(value: bytes) -> QrField:
    """ DER SubjectPublicKeyInfo of the signing certificate. """
    return QrField(PUBLIC_KEY, BYTES, value)


def certificate_signature(value: bytes) -> QrField:
    """ The issuing CA's signature embedded in the signing certificate. """
    return QrField(CERTIFICATE_SIGNATURE, BYTES, value)


# ---------------- ENCODING ---------------- #
def _encode_field(field: QrField) -> bytes:
    value_bytes = field.value_bytes()
    length = len(value_bytes)
    if length > MAX_VALUE_LENGTH:
        raise EncodingOverflowError(field.tag, length)
    return bytes([field.tag, length]) + value_bytes


def encode(fields: Iterable[QrField]) -> bytes:
    """
    TLV-encode `fields` in the given order: one tag byte, one length byte,
    then the value. There is no overall header or trailer.
    """
    # Every field is encoded before anything is joined, so an oversized value
    # never yields a partial payload.
    parts = [_encode_field(field) for field in fields]
    payload = b"".join(parts)
    logger.debug("Encoded QR payload: %d fields, %d bytes", len(parts), len(payload))
    return payload


def encode_base64(fields: Iterable[QrField]) -> str:
    return base64.b64encode(encode(fields)).decode("utf-8")


# ---------------- DECODING ---------------- #
def decode(payload: bytes) -> List[QrField]:
    fields = []
    i = 0
    while i < len(payload):
        if i + 2 > len(payload):
            raise TlvDecodeError(f"Truncated TLV header at offset {i}", {"offset": i})
        tag = payload[i]
        length = payload[i + 1]
        start = i + 2
        end = start + length
        if end > len(payload):
            raise TlvDecodeError(
                f"Value for tag {tag} is truncated: expected {length} bytes, got {len(payload) - start}",
                {"tag": tag, "offset": i}
            )
        if tag == 0:
            raise TlvDecodeError(f"Invalid tag 0 at offset {i}", {"offset": i})

        value_bytes = payload[start:end]
        if tag in BINARY_TAGS:
            fields.append(QrField(tag, BYTES, value_bytes))
        else:
            try:
                fields.append(QrField(tag, TEXT, value_bytes.decode("utf-8")))
            except UnicodeDecodeError as e:
                raise TlvDecodeError(f"Value for tag {tag} is not valid UTF-8", {"tag": tag}) from e
        i = end
    return fields


def decode_base64(text: str) -> List[QrField]:
    try:
        payload = base64.b64decode(text, validate=True)
    except (binascii.Error, ValueError) as e:
        raise TlvDecodeError(f"QR payload is not valid base64: {e}") from e
    return decode(payload)
