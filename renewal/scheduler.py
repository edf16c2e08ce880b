"""
Renewal loop.

  Idle ──(startup / interval tick, certificate invalid)──▶ Renewing
   ▲                                                          │
   └────────────────(success or failure, logged)──────────────┘

A failed attempt is retried on the next tick only; the renewal interval is
the sole retry cadence.  Setting the cancellation event ends run() from
either state; an attempt in flight unwinds through the poller's
CancelledError.
"""
from __future__ import annotations

import logging
import threading
from typing import Optional

import schedule

from authority.issuer import CertificateIssuer
from errors import CancelledError, FilesystemError, IpsslError
from outcome import RenewalResult, SoftFailure
from renewal.reload import ContainerReloader
from renewal.store import CertificateStore

logger = logging.getLogger(__name__)


class RenewalScheduler:
    def __init__(
        self,
        settings,
        issuer: CertificateIssuer,
        store: CertificateStore,
        reloader: Optional[ContainerReloader] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> None:
        self.settings = settings
        self.issuer = issuer
        self.store = store
        self.reloader = reloader
        self.cancel_event = cancel_event or threading.Event()

    # ── Loop ──────────────────────────────────────────────────────────────

    def run(self) -> None:
        """Check now, then every RENEWAL_INTERVAL until cancelled."""
        logger.info("Starting IPSSL client for %s", self.settings.CLIENT_IP)
        try:
            self.store.ensure_directories(self.settings.IPSSL_VALIDATION_DIR)
        except FilesystemError as exc:
            logger.error("Failed to ensure directories: %s", exc)

        self.run_once()

        interval = max(1, int(self.settings.RENEWAL_INTERVAL.total_seconds()))
        jobs = schedule.Scheduler()
        jobs.every(interval).seconds.do(self.run_once)
        logger.info("Scheduled certificate check every %s", self.settings.RENEWAL_INTERVAL)

        while not self.cancel_event.is_set():
            jobs.run_pending()
            idle = jobs.idle_seconds
            self.cancel_event.wait(max(idle or 0.0, 0.0))

        jobs.clear()
        logger.info("IPSSL client stopped")

    def stop(self) -> None:
        self.cancel_event.set()

    # ── One check ─────────────────────────────────────────────────────────

    def run_once(self) -> RenewalResult:
        """
        Check the stored certificate and renew it if needed.

        Never raises for a failed attempt: the error is logged and returned in
        RenewalResult.error.
        """
        result = RenewalResult(
            cert_path=str(self.store.cert_path), key_path=str(self.store.key_path)
        )
        if self.cancel_event.is_set():
            result.error = CancelledError("shutdown requested")
            return result

        if self.store.is_valid(self.settings.CERT_VALIDITY):
            logger.info("Certificate is still valid, skipping renewal")
            result.skipped = True
            return result

        logger.info("Certificate needs renewal (missing, expired, or expiring soon)")
        try:
            issued = self.issuer.request_certificate(self.settings.CLIENT_IP)
            result.warnings.extend(issued.warnings)
            self.store.persist(issued.bundle.full_chain, issued.key_pem)
        except CancelledError as exc:
            logger.info("Certificate renewal interrupted: %s", exc)
            result.error = exc
            return result
        except IpsslError as exc:
            logger.error("Failed to renew certificate for %s: %s", self.settings.CLIENT_IP, exc)
            result.error = exc
            return result
        except Exception as exc:
            logger.exception("Unexpected error while renewing certificate: %s", exc)
            result.error = exc
            return result

        result.renewed = True
        soft = self._reload()
        if soft is not None:
            result.warnings.append(soft)
        return result

    def _reload(self) -> Optional[SoftFailure]:
        name = self.settings.IPSSL_CONTAINER_NAME
        if self.reloader is None or not name:
            logger.info("Skipping container reload, no reload target configured")
            return None
        try:
            self.reloader.reload(name)
        except IpsslError as exc:
            logger.error("Failed to reload container %s: %s", name, exc)
            return SoftFailure("reload", str(exc), exc)
        return None
