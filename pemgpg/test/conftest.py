from __future__ import annotations

import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, rsa
from cryptography.x509.oid import NameOID

# Ensure the repository root is on sys.path so that 'import pemgpg'
# resolves to the local package when it is not installed.
REPO_ROOT = Path(__file__).resolve().parents[2]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from pemgpg import create_app  # noqa: E402
from pemgpg.src.observability import reset_metrics  # noqa: E402


def pkcs8_pem(private_key) -> str:
    """Serialize a cryptography private key as unencrypted PKCS8 PEM."""
    return private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode("ascii")


def self_signed_certificate_pem(common_name: str) -> str:
    key = ec.generate_private_key(ec.SECP256R1())
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])
    now = datetime(2024, 1, 1, tzinfo=timezone.utc)
    cert = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now)
        .not_valid_after(now + timedelta(days=365))
        .sign(key, hashes.SHA256())
    )
    return cert.public_bytes(serialization.Encoding.PEM).decode("ascii")


@pytest.fixture(scope="session")
def rsa_private_key():
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def rsa_pem(rsa_private_key):
    return pkcs8_pem(rsa_private_key)


@pytest.fixture(scope="session")
def ec_private_key():
    return ec.generate_private_key(ec.SECP256R1())


@pytest.fixture(scope="session")
def ec_pem(ec_private_key):
    return pkcs8_pem(ec_private_key)


@pytest.fixture(scope="session")
def ec_pem_for():
    """Return a factory giving a (private key, PKCS8 PEM) pair per curve."""
    cache = {}

    def make(curve):
        if curve.name not in cache:
            key = ec.generate_private_key(curve)
            cache[curve.name] = (key, pkcs8_pem(key))
        return cache[curve.name]

    return make


@pytest.fixture(scope="session")
def certificate_pems():
    return [
        self_signed_certificate_pem("root.example.com"),
        self_signed_certificate_pem("leaf.example.com"),
    ]


@pytest.fixture
def fixed_timestamp():
    return datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)


@pytest.fixture
def app():
    """Create and configure a new app instance for each test."""
    reset_metrics()
    app = create_app()
    app.config.update({"TESTING": True, "METRICS_TOKEN": "test-metrics-token"})
    return app


@pytest.fixture
def client(app):
    """A test client for the app."""
    return app.test_client()
