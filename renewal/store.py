"""
On-disk certificate store.

Directory layout:
  <IPSSL_SSL_DIR>/
      cert.pem   — leaf certificate followed by the intermediate chain (0644)
      key.pem    — private key (0600)

Both files are replaced wholesale by write-then-replace; there is only ever
one current pair.
"""
from __future__ import annotations

import logging
import os
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional

from cryptography import x509

from authority.validation import validation_dir_path
from errors import FilesystemError
from storage.atomic import atomic_write_bytes, discard_staged, stage_bytes

logger = logging.getLogger(__name__)

CERT_FILENAME = "cert.pem"
KEY_FILENAME = "key.pem"


def parse_expiry(pem: bytes) -> datetime:
    """Return the leaf (first PEM block) notAfter as an aware UTC datetime."""
    return x509.load_pem_x509_certificate(pem).not_valid_after_utc


class CertificateStore:
    def __init__(self, ssl_dir: str) -> None:
        self.ssl_dir = Path(ssl_dir)
        self.cert_path = self.ssl_dir / CERT_FILENAME
        self.key_path = self.ssl_dir / KEY_FILENAME

    def missing_reason(self) -> Optional[str]:
        if not self.cert_path.exists():
            return "certificate file missing"
        if not self.key_path.exists():
            return "private key file missing"
        return None

    def exists(self) -> bool:
        """True iff both cert.pem and key.pem are present."""
        return self.missing_reason() is None

    def expiry(self) -> datetime:
        """notAfter of the stored leaf certificate; raises on read/parse errors."""
        return parse_expiry(self.cert_path.read_bytes())

    def is_valid(self, threshold: timedelta, now: Optional[datetime] = None) -> bool:
        """
        True when the stored certificate is still good for more than *threshold*.

        Any read or parse problem counts as "not valid" so the caller simply
        requests a fresh certificate.  Expiry exactly at now + threshold is
        not valid.
        """
        reason = self.missing_reason()
        if reason is not None:
            logger.info("Certificate files missing (%s), a new certificate is needed", reason)
            return False

        try:
            expires = self.expiry()
        except (OSError, ValueError) as exc:
            logger.error("Failed to check certificate validity of %s: %s", self.cert_path, exc)
            return False

        now = now or datetime.now(tz=timezone.utc)
        if now >= expires:
            logger.info("Certificate %s expired at %s", self.cert_path, expires.isoformat())
            return False
        if expires <= now + threshold:
            logger.info(
                "Certificate %s expires %s, within the renewal threshold of %s",
                self.cert_path,
                expires.isoformat(),
                threshold,
            )
            return False
        return True

    def persist(self, full_chain: str, key_pem: bytes) -> None:
        """
        Replace key.pem (0600) and cert.pem (0644) as one pair.

        Both files are staged before either is replaced.  key.pem goes first;
        if cert.pem then cannot be replaced the previous key is put back, so a
        failed call leaves the old pair on disk.
        """
        key_tmp = cert_tmp = None
        try:
            key_tmp = stage_bytes(self.key_path, key_pem, mode=0o600)
            cert_tmp = stage_bytes(self.cert_path, full_chain.encode(), mode=0o644)
        except OSError as exc:
            for temp in (key_tmp, cert_tmp):
                if temp is not None:
                    discard_staged(temp)
            raise FilesystemError(f"failed to save certificate: {exc}") from exc

        previous_key = self._read_previous_key()
        try:
            os.replace(key_tmp, self.key_path)
        except OSError as exc:
            discard_staged(key_tmp)
            discard_staged(cert_tmp)
            raise FilesystemError(f"failed to save private key: {exc}") from exc

        try:
            os.replace(cert_tmp, self.cert_path)
        except OSError as exc:
            discard_staged(cert_tmp)
            self._restore_key(previous_key)
            raise FilesystemError(f"failed to save certificate: {exc}") from exc
        logger.info("Certificate saved: cert=%s key=%s", self.cert_path, self.key_path)

    def _read_previous_key(self) -> Optional[bytes]:
        try:
            return self.key_path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as exc:
            logger.warning("Failed to read current private key %s: %s", self.key_path, exc)
            return None

    def _restore_key(self, previous: Optional[bytes]) -> None:
        try:
            if previous is None:
                self.key_path.unlink()
            else:
                atomic_write_bytes(self.key_path, previous, mode=0o600)
        except OSError as exc:
            logger.error("Failed to restore previous private key %s: %s", self.key_path, exc)

    def ensure_directories(self, validation_dir: str) -> None:
        for directory in (
            self.ssl_dir,
            Path(validation_dir),
            validation_dir_path(validation_dir),
        ):
            try:
                directory.mkdir(parents=True, exist_ok=True)
            except OSError as exc:
                raise FilesystemError(f"failed to create directory {directory}: {exc}") from exc
