import datetime

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID

from certificates.certificate_handle import CertificateHandle
from tests.samples import INVOICE_XML, SECRET


@pytest.fixture(scope="session")
def ec_key():
    return ec.generate_private_key(ec.SECP256K1())


@pytest.fixture(scope="session")
def certificate(ec_key):
    issuer = x509.Name([
        x509.NameAttribute(NameOID.COUNTRY_NAME, "SA"),
        x509.NameAttribute(NameOID.ORGANIZATION_NAME, "Test CA"),
        x509.NameAttribute(NameOID.COMMON_NAME, "eInvoicing"),
    ])
    now = datetime.datetime(2025, 1, 1, tzinfo=datetime.timezone.utc)
    return (
        x509.CertificateBuilder()
        .subject_name(issuer)
        .issuer_name(issuer)
        .public_key(ec_key.public_key())
        .serial_number(1234567890123)
        .not_valid_before(now)
        .not_valid_after(now + datetime.timedelta(days=3650))
        .sign(ec_key, hashes.SHA256())
    )


@pytest.fixture(scope="session")
def cert_pem(certificate):
    return certificate.public_bytes(serialization.Encoding.PEM).decode("utf-8")


@pytest.fixture(scope="session")
def key_pem(ec_key):
    return ec_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.TraditionalOpenSSL,
        encryption_algorithm=serialization.NoEncryption()
    ).decode("utf-8")


@pytest.fixture
def handle(cert_pem, key_pem):
    return CertificateHandle(cert_pem, key_pem, secret=SECRET)


@pytest.fixture
def invoice_xml():
    return INVOICE_XML
