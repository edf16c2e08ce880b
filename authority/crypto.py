"""
Private-key generation and CSR creation for IP-address certificates.

The CSR carries the IP address as its CommonName only.  ZeroSSL validates the
IP out-of-band through the pki-validation file, and adding an iPAddress SAN
makes the API report the identifier twice.
"""
from __future__ import annotations

import ipaddress

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import NameOID

from errors import CSRError, KeyGenError

CSR_COUNTRY = "US"
CSR_ORGANIZATION = "IPSSL Client"


def generate_rsa_key(key_size: int = 2048) -> rsa.RSAPrivateKey:
    """Generate an RSA private key for the IP certificate."""
    try:
        return rsa.generate_private_key(public_exponent=65537, key_size=key_size)
    except (ValueError, TypeError) as exc:
        raise KeyGenError(f"failed to generate private key: {exc}") from exc


def private_key_to_pem(key: rsa.RSAPrivateKey) -> bytes:
    """Serialize a private key to an unencrypted PKCS#1 ("RSA PRIVATE KEY") PEM."""
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.TraditionalOpenSSL,
        encryption_algorithm=serialization.NoEncryption(),
    )


def create_csr(private_key: rsa.RSAPrivateKey, ip: str) -> x509.CertificateSigningRequest:
    """Build and sign a CSR whose subject CommonName is *ip*."""
    try:
        ipaddress.ip_address(ip)
    except ValueError:
        raise CSRError(f"invalid IP address: {ip}") from None

    builder = x509.CertificateSigningRequestBuilder().subject_name(
        x509.Name([
            x509.NameAttribute(NameOID.COUNTRY_NAME, CSR_COUNTRY),
            x509.NameAttribute(NameOID.ORGANIZATION_NAME, CSR_ORGANIZATION),
            x509.NameAttribute(NameOID.COMMON_NAME, ip),
        ])
    )
    try:
        return builder.sign(private_key, hashes.SHA256())
    except (ValueError, TypeError) as exc:
        raise CSRError(f"failed to create CSR: {exc}") from exc


def csr_to_pem(csr: x509.CertificateSigningRequest) -> str:
    return csr.public_bytes(serialization.Encoding.PEM).decode()


def csr_common_name(csr: x509.CertificateSigningRequest) -> str:
    attrs = csr.subject.get_attributes_for_oid(NameOID.COMMON_NAME)
    return str(attrs[0].value) if attrs else ""
