import logging
from typing import Union

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.asymmetric.utils import Prehashed

from certificates.certificate_handle import CertificateHandle
from signing.digest import DIGEST_SIZE
from signing.exceptions import UnsupportedKeyError

logger = logging.getLogger(__name__)

# ZATCA mandates ECDSA over secp256k1.
REQUIRED_CURVE = ec.SECP256K1


def _resolve_private_key(signer) -> ec.EllipticCurvePrivateKey:
    key = signer.private_key if isinstance(signer, CertificateHandle) else signer

    if not isinstance(key, ec.EllipticCurvePrivateKey):
        raise UnsupportedKeyError(
            f"Expected an EC private key, got {type(key).__name__}",
            {"key_type": type(key).__name__}
        )
    if not isinstance(key.curve, REQUIRED_CURVE):
        raise UnsupportedKeyError(
            f"Expected a key on {REQUIRED_CURVE.name}, got {key.curve.name}",
            {"curve": key.curve.name}
        )
    return key


def sign_digest(digest: bytes, signer: Union[CertificateHandle, ec.EllipticCurvePrivateKey]) -> bytes:
    """
    Sign a 32-byte SHA-256 invoice digest with ECDSA.

    The digest is used as-is (it is not hashed a second time). Returns the
    DER-encoded signature; base64 encoding is left to the caller.
    """
    if len(digest) != DIGEST_SIZE:
        raise ValueError(f"Digest must be {DIGEST_SIZE} bytes, got {len(digest)}")

    priv_key = _resolve_private_key(signer)
    signature_bytes = priv_key.sign(digest, ec.ECDSA(Prehashed(hashes.SHA256())))
    logger.debug("Signed invoice digest, signature is %d bytes", len(signature_bytes))
    return signature_bytes


def verify_digest(public_key: ec.EllipticCurvePublicKey, digest: bytes, signature: bytes) -> bool:
    try:
        public_key.verify(signature, digest, ec.ECDSA(Prehashed(hashes.SHA256())))
    except InvalidSignature:
        return False
    return True
