"""
Shared pytest fixtures.

Certificates are generated on the fly with `cryptography`; ZeroSSL HTTP calls
are mocked with the `responses` library in the individual test modules.
"""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import NameOID

SUBJECT_IP = "203.0.113.7"
API_URL = "https://api.zerossl.test"

_ENV_KEYS = (
    "CLIENT_IP",
    "IPSSL_API_KEY",
    "IPSSL_VALIDATION_DIR",
    "IPSSL_SSL_DIR",
    "IPSSL_CONTAINER_NAME",
    "RENEWAL_INTERVAL",
    "CERT_VALIDITY",
    "POLL_INTERVAL",
    "ISSUANCE_MAX_POLLS",
    "ZEROSSL_API_URL",
    "HTTP_TIMEOUT",
    "RELOAD_MODE",
    "LOG_LEVEL",
    "LOG_FORMAT",
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    """Keep the developer's shell environment out of Settings()."""
    for key in _ENV_KEYS:
        monkeypatch.delenv(key, raising=False)


@pytest.fixture(scope="session")
def rsa_key() -> rsa.RSAPrivateKey:
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


def make_certificate(
    key: rsa.RSAPrivateKey,
    not_after: datetime,
    common_name: str = SUBJECT_IP,
) -> str:
    """Self-signed PEM certificate for *common_name* expiring at *not_after*."""
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])
    not_before = min(datetime.now(tz=timezone.utc), not_after) - timedelta(days=1)
    cert = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(not_before)
        .not_valid_after(not_after)
        .sign(key, hashes.SHA256())
    )
    return cert.public_bytes(serialization.Encoding.PEM).decode()


def key_pem(key: rsa.RSAPrivateKey) -> bytes:
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.TraditionalOpenSSL,
        encryption_algorithm=serialization.NoEncryption(),
    )


@pytest.fixture
def cert_factory(rsa_key):
    def _make(expires_in: timedelta, common_name: str = SUBJECT_IP) -> str:
        return make_certificate(
            rsa_key, datetime.now(tz=timezone.utc) + expires_in, common_name
        )
    return _make


@pytest.fixture
def ssl_dir(tmp_path: Path) -> Path:
    d = tmp_path / "ssl"
    d.mkdir()
    return d


@pytest.fixture
def validation_dir(tmp_path: Path) -> Path:
    d = tmp_path / "webroot"
    d.mkdir()
    return d


@pytest.fixture
def settings(ssl_dir: Path, validation_dir: Path):
    from config import load_settings

    return load_settings(
        _env_file=None,
        CLIENT_IP=SUBJECT_IP,
        IPSSL_API_KEY="test-api-key",
        IPSSL_SSL_DIR=str(ssl_dir),
        IPSSL_VALIDATION_DIR=str(validation_dir),
        IPSSL_CONTAINER_NAME="caddy-1",
        ZEROSSL_API_URL=API_URL,
        POLL_INTERVAL="1ms",
        RENEWAL_INTERVAL="1h",
        CERT_VALIDITY="720h",
    )


def zerossl_request(
    request_id: str = "abc123",
    status: str = "draft",
    common_name: str = SUBJECT_IP,
    content: list[str] | None = None,
    filename: str = "XYZ123.txt",
    created: str = "2026-10-01 10:00:00",
    expires: str = "2099-01-01 10:00:00",
) -> dict:
    """A ZeroSSL certificate object as returned by GET /certificates/{id}."""
    body: dict = {
        "id": request_id,
        "type": "1",
        "common_name": common_name,
        "additional_domains": "",
        "created": created,
        "expires": expires,
        "status": status,
        "validation": {"email_validation": {}, "other_methods": {}},
    }
    if content is not None:
        body["validation"]["other_methods"][common_name] = {
            "file_validation_url_http": f"http://{common_name}/.well-known/pki-validation/{filename}",
            "file_validation_url_https": f"https://{common_name}/.well-known/pki-validation/{filename}",
            "file_validation_content": content,
            "cname_validation_p1": "",
            "cname_validation_p2": "",
        }
    return body
