"""
Certificate issuance for one subject IP.

request_certificate() runs the whole sequence:

  find existing request ─┬─ issued ────────────────────────────┐
                         ├─ draft / pending_validation ─┐      │
  (none) → create request ──────────────────────────────┤      │
                                                        ▼      ▼
              write validation files → trigger validation → poll → download
                                                                   │
                                                      retrieve private key

Nothing here writes cert.pem; persisting is the certificate store's job.
"""
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import List, Optional

from cryptography import x509
from cryptography.hazmat.primitives import serialization

from authority import crypto
from authority.client import ZeroSSLClient
from authority.keystore import PrivateKeyStore
from authority.models import ISSUED, CertificateBundle, CertificateRequest
from authority.poller import IssuancePoller
from authority.validation import write_validation_files
from errors import FilesystemError, IssuanceFailedError, TransportError
from outcome import SoftFailure
from renewal.store import KEY_FILENAME
from storage.atomic import atomic_write_bytes

logger = logging.getLogger(__name__)


@dataclass
class IssuedCertificate:
    request_id: str
    bundle: CertificateBundle
    key_pem: bytes
    warnings: List[SoftFailure] = field(default_factory=list)


class CertificateIssuer:
    """Drives one ZeroSSL request from creation to downloaded bundle."""

    def __init__(
        self,
        client: ZeroSSLClient,
        validation_dir: str,
        key_path: Path,
        poller: IssuancePoller,
        keystore: Optional[PrivateKeyStore] = None,
        validity_days: int = 90,
        renewal_threshold: Optional[timedelta] = None,
        key_size: int = 2048,
    ) -> None:
        self.client = client
        self.validation_dir = validation_dir
        self.key_path = Path(key_path)
        self.poller = poller
        self.keystore = keystore if keystore is not None else PrivateKeyStore()
        self.validity_days = validity_days
        self.renewal_threshold = renewal_threshold
        self.key_size = key_size

    # ── Full sequence ─────────────────────────────────────────────────────

    def request_certificate(self, subject_ip: str) -> IssuedCertificate:
        logger.info("Requesting certificate from ZeroSSL for %s", subject_ip)

        existing_id = self._find_existing(subject_ip)
        if existing_id:
            request = self.client.get_certificate(existing_id)
        else:
            logger.info("No existing certificate found, creating a new request")
            request = self.create_request(subject_ip)
            logger.info("Certificate request created: %s", request["id"])

        request_id = request["id"]
        warnings: List[SoftFailure] = []

        if request.get("status") != ISSUED:
            warnings.extend(self.validate(request))
            try:
                request = self.poller.wait_for_issuance(request_id)
            except IssuanceFailedError:
                # the key belongs to a request that can never be issued
                self.keystore.discard(subject_ip)
                raise

        bundle = self.client.download(request_id)
        key_pem = self.retrieve_key(request_id, subject_ip=request.get("common_name") or subject_ip)

        if not _key_matches(bundle.certificate, key_pem):
            message = (
                f"private key does not match certificate {request_id}; the request "
                "was created by another process and its key is lost"
            )
            logger.warning("%s", message)
            warnings.append(SoftFailure("key_mismatch", message))

        logger.info(
            "Certificate downloaded: %s (%d certificate(s), intermediate=%s)",
            request_id,
            bundle.certificate_count,
            bundle.has_intermediate,
        )
        return IssuedCertificate(request_id, bundle, key_pem, warnings)

    def _find_existing(self, subject_ip: str) -> Optional[str]:
        not_expiring_before = None
        if self.renewal_threshold is not None:
            not_expiring_before = datetime.now(tz=timezone.utc) + self.renewal_threshold
        try:
            return self.client.find_existing(subject_ip, not_expiring_before)
        except TransportError as exc:
            logger.warning("Failed to check for existing certificate: %s", exc)
            return None

    # ── Steps ─────────────────────────────────────────────────────────────

    def create_request(self, subject_ip: str) -> CertificateRequest:
        """Generate a key, build a CSR with CN=subject_ip and submit it."""
        key = crypto.generate_rsa_key(self.key_size)
        csr = crypto.create_csr(key, subject_ip)
        logger.info("CSR created for %s (CN=%s)", subject_ip, crypto.csr_common_name(csr))

        request = self.client.create_certificate(
            crypto.csr_to_pem(csr), [subject_ip], self.validity_days
        )
        # Cache only once ZeroSSL accepted the CSR for this key
        self.keystore.put(subject_ip, key)
        return request

    def validate(self, request: CertificateRequest) -> List[SoftFailure]:
        """
        Place validation files and ask ZeroSSL to check them.

        Validation data is sometimes only present after the challenge is
        triggered, so files are written from the current request, the check is
        triggered, and files are written again from the refreshed request.  A
        write failure in the first pass only fails the attempt if the second
        pass cannot write anything either.
        """
        request_id = request["id"]
        logger.info("Starting certificate validation for %s", request_id)
        warnings: List[SoftFailure] = []

        first_error: Optional[FilesystemError] = None
        try:
            self._write_artifacts(request)
        except FilesystemError as exc:
            logger.error("Writing validation files failed, retrying after refresh: %s", exc)
            first_error = exc

        soft = self.client.trigger_validation(request_id)
        if soft is not None:
            warnings.append(soft)

        updated = self.client.get_certificate(request_id)
        written = self._write_artifacts(updated)
        if not written and first_error is not None:
            raise first_error

        logger.info("Validation process completed for %s", request_id)
        return warnings

    def _write_artifacts(self, request: CertificateRequest) -> list[Path]:
        methods = (request.get("validation") or {}).get("other_methods") or {}
        if not methods:
            logger.warning("No validation methods found for %s", request.get("id"))
            return []
        return write_validation_files(self.validation_dir, methods)

    def retrieve_key(self, request_id: str, subject_ip: Optional[str] = None) -> bytes:
        """
        Return the PEM private key for *request_id*.

        Resolution order: in-memory store (by subject IP), the key file on
        disk, and finally a freshly generated key that is cached and persisted.
        ZeroSSL never returns private keys, so the last step is best effort.
        """
        if subject_ip is None:
            subject_ip = self.client.get_certificate(request_id)["common_name"]

        key = self.keystore.get(subject_ip)
        if key is not None:
            return crypto.private_key_to_pem(key)

        try:
            key_pem = self.key_path.read_bytes()
        except FileNotFoundError:
            pass
        except OSError as exc:
            logger.warning("Failed to read private key file %s: %s", self.key_path, exc)
        else:
            logger.info("Loaded private key from file %s", self.key_path)
            return key_pem

        logger.info("Generating new private key for %s", subject_ip)
        key = crypto.generate_rsa_key(self.key_size)
        self.keystore.put(subject_ip, key)
        key_pem = crypto.private_key_to_pem(key)
        try:
            atomic_write_bytes(self.key_path, key_pem, mode=0o600)
        except OSError as exc:
            logger.warning("Failed to save private key to %s: %s", self.key_path, exc)
        return key_pem


def _key_matches(cert_pem: str, key_pem: bytes) -> bool:
    try:
        cert = x509.load_pem_x509_certificate(cert_pem.encode())
        key = serialization.load_pem_private_key(key_pem, password=None)
    except (ValueError, TypeError):
        return False
    return cert.public_key().public_numbers() == key.public_key().public_numbers()


def make_issuer(
    settings,
    cancel_event: Optional[threading.Event] = None,
    keystore: Optional[PrivateKeyStore] = None,
) -> CertificateIssuer:
    """Build a CertificateIssuer (and its ZeroSSL client) from settings."""
    client = ZeroSSLClient(
        access_key=settings.IPSSL_API_KEY,
        api_url=settings.ZEROSSL_API_URL,
        timeout=settings.HTTP_TIMEOUT,
    )
    poller = IssuancePoller(
        client.get_certificate,
        interval=settings.POLL_INTERVAL,
        cancel_event=cancel_event,
        max_attempts=settings.ISSUANCE_MAX_POLLS or None,
    )
    return CertificateIssuer(
        client=client,
        validation_dir=settings.IPSSL_VALIDATION_DIR,
        key_path=Path(settings.IPSSL_SSL_DIR) / KEY_FILENAME,
        poller=poller,
        keystore=keystore,
        validity_days=settings.CERT_VALIDITY_DAYS,
        renewal_threshold=settings.CERT_VALIDITY,
    )
