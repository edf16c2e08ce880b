"""
Poll a ZeroSSL request until it reaches a terminal status.

Each tick first waits *interval* on the cancellation event, then fetches the
request.  A shutdown therefore interrupts the wait immediately instead of
sitting out the rest of the interval.
"""
from __future__ import annotations

import logging
import threading
from datetime import timedelta
from typing import Callable, Optional

from authority.models import FAILED_STATUSES, ISSUED, WAITING_STATUSES, CertificateRequest
from errors import CancelledError, IpsslError, IssuanceFailedError, IssuanceTimeoutError

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = timedelta(seconds=10)


class IssuancePoller:
    """
    Wait for issuance of one request.

    Outcomes of wait_for_issuance():
      issued               → returns the request
      cancelled / expired  → IssuanceFailedError, polling stops
      cancel_event set     → CancelledError
      max_attempts reached → IssuanceTimeoutError (only when a ceiling is set)

    draft / pending_validation, unknown statuses and fetch errors all keep
    the loop waiting for the next tick.
    """

    def __init__(
        self,
        fetch: Callable[[str], CertificateRequest],
        interval: timedelta = DEFAULT_POLL_INTERVAL,
        cancel_event: Optional[threading.Event] = None,
        max_attempts: Optional[int] = None,
    ) -> None:
        self.fetch = fetch
        self.interval = interval
        self.cancel_event = cancel_event or threading.Event()
        self.max_attempts = max_attempts or None

    def wait_for_issuance(self, request_id: str) -> CertificateRequest:
        logger.info("Waiting for certificate issuance of %s", request_id)
        attempts = 0

        while True:
            if self.cancel_event.wait(self.interval.total_seconds()):
                logger.info("Issuance polling for %s cancelled", request_id)
                raise CancelledError(f"polling for {request_id} cancelled")

            attempts += 1
            try:
                request = self.fetch(request_id)
            except IpsslError as exc:
                logger.error("Failed to get certificate details for %s: %s", request_id, exc)
                request = None

            if request is not None:
                status = request.get("status", "")
                logger.info("Certificate %s status: %s", request_id, status)

                if status == ISSUED:
                    return request
                if status in FAILED_STATUSES:
                    raise IssuanceFailedError(request_id, status)
                if status not in WAITING_STATUSES:
                    logger.warning("Unknown certificate status %r for %s", status, request_id)

            if self.max_attempts is not None and attempts >= self.max_attempts:
                raise IssuanceTimeoutError(
                    f"certificate {request_id} not issued after {attempts} polls"
                )
