"""
Low-level ZeroSSL REST API client.

The client is stateless apart from its HTTP session: it never holds key
material and never retries inline.  Every failure surfaces as TransportError
(or a narrower subclass) and the outer poll / renewal cadence is the only
retry mechanism.

ZeroSSL quirks handled here
---------------------------
* Authentication is the ``access_key`` query parameter on every call.
* Many API errors arrive as HTTP 200 with ``{"success": false, "error": {...}}``
  in the body, so the body is inspected even on 2xx.
* ``GET /certificates`` is paginated; ``list_certificates`` walks every page.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Optional

import requests

from authority.models import (
    ISSUED,
    REUSABLE_STATUSES,
    CertificateBundle,
    CertificateRequest,
)
from errors import NotFoundError, NotIssuedError, TransportError
from outcome import SoftFailure

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://api.zerossl.com"
HTTP_VALIDATION_METHOD = "HTTP_CSR_HASH"
_PAGE_LIMIT = 100
_CREATED_FORMAT = "%Y-%m-%d %H:%M:%S"


class ZeroSSLClient:
    """Thin wrapper over the ZeroSSL certificate endpoints."""

    def __init__(
        self,
        access_key: str,
        api_url: str = DEFAULT_API_URL,
        timeout: int = 30,
        session: Optional[requests.Session] = None,
    ) -> None:
        if not access_key:
            raise ValueError("API key is required")
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self._access_key = access_key
        self._session = session or requests.Session()
        self._session.headers.update({"User-Agent": "ipssl-client/1.0"})

    # ── Listing & lookup ──────────────────────────────────────────────────

    def list_certificates(
        self,
        status: Optional[str] = None,
        search: Optional[str] = None,
    ) -> list[CertificateRequest]:
        """GET /certificates — every request on the account, all pages."""
        params: dict[str, Any] = {"limit": _PAGE_LIMIT}
        if status:
            params["certificate_status"] = status
        if search:
            params["search"] = search

        results: list[CertificateRequest] = []
        page = 1
        while True:
            body = self._request("GET", "/certificates", params={**params, "page": page})
            batch = body.get("results") or []
            results.extend(batch)
            total = int(body.get("total_count") or 0)
            if not batch or len(results) >= total:
                return results
            page += 1

    def find_existing(
        self,
        subject_ip: str,
        not_expiring_before: Optional[datetime] = None,
    ) -> Optional[str]:
        """
        Return the id of a reusable request for *subject_ip*, or None.

        Reusable means status issued, pending_validation or draft.  When
        several match, the most recently created wins.  With
        *not_expiring_before*, issued requests that expire before that moment
        are skipped so a renewal does not fetch the expiring certificate again.
        """
        candidates = []
        for cert in self.list_certificates():
            if cert.get("common_name") != subject_ip:
                continue
            status = cert.get("status", "")
            if status not in REUSABLE_STATUSES:
                logger.info(
                    "Skipping certificate %s with status %s", cert.get("id"), status
                )
                continue
            if (
                status == ISSUED
                and not_expiring_before is not None
                and _expires_before(cert, not_expiring_before)
            ):
                logger.info(
                    "Skipping issued certificate %s expiring %s",
                    cert.get("id"),
                    cert.get("expires"),
                )
                continue
            candidates.append(cert)

        if not candidates:
            return None

        candidates.sort(key=lambda c: c.get("created") or "", reverse=True)
        chosen = candidates[0]
        logger.info(
            "Found existing certificate %s (status %s, %d candidate(s))",
            chosen["id"],
            chosen.get("status"),
            len(candidates),
        )
        return chosen["id"]

    def get_certificate(self, request_id: str) -> CertificateRequest:
        """GET /certificates/{id} — current status and validation details."""
        return self._request("GET", f"/certificates/{request_id}")

    # ── Creation & validation ─────────────────────────────────────────────

    def create_certificate(
        self,
        csr_pem: str,
        domains: list[str],
        validity_days: int = 90,
    ) -> CertificateRequest:
        """POST /certificates — submit a CSR for *domains*."""
        data = {
            "certificate_domains": ",".join(domains),
            "certificate_csr": csr_pem,
            "certificate_validity_days": validity_days,
            "strict_domains": 1,
        }
        return self._request("POST", "/certificates", data=data)

    def verify_identifiers(
        self, request_id: str, method: str = HTTP_VALIDATION_METHOD
    ) -> CertificateRequest:
        """POST /certificates/{id}/challenges — ask ZeroSSL to run the check."""
        return self._request(
            "POST",
            f"/certificates/{request_id}/challenges",
            data={"validation_method": method},
        )

    def trigger_validation(
        self, request_id: str, method: str = HTTP_VALIDATION_METHOD
    ) -> Optional[SoftFailure]:
        """
        Best-effort verify_identifiers().

        A failure here is not fatal: the next status fetch may still carry
        usable validation data, so the error is returned as a SoftFailure.
        """
        try:
            self.verify_identifiers(request_id, method)
        except TransportError as exc:
            logger.error("Failed to trigger validation for %s: %s", request_id, exc)
            return SoftFailure("trigger_validation", str(exc), exc)
        logger.info("Triggered %s validation for %s", method, request_id)
        return None

    # ── Download ──────────────────────────────────────────────────────────

    def download(self, request_id: str) -> CertificateBundle:
        """
        GET /certificates/{id}/download/return with the cross-signed chain.

        Raises NotIssuedError when ZeroSSL refuses because the certificate is
        not issued yet.
        """
        body = self._request(
            "GET",
            f"/certificates/{request_id}/download/return",
            params={"include_cross_signed": 1},
        )
        leaf = body.get("certificate.crt") or ""
        chain = body.get("ca_bundle.crt") or ""
        if not leaf.strip():
            raise NotIssuedError(f"certificate {request_id} download returned no PEM data")
        return CertificateBundle(certificate=leaf, ca_bundle=chain)

    # ── Internal ──────────────────────────────────────────────────────────

    def _request(
        self,
        method: str,
        path: str,
        params: Optional[dict[str, Any]] = None,
        data: Optional[dict[str, Any]] = None,
    ) -> dict:
        """Send one API call and return the decoded JSON body or raise."""
        url = self.api_url + path
        query = {"access_key": self._access_key, **(params or {})}
        try:
            resp = self._session.request(
                method, url, params=query, data=data, timeout=self.timeout
            )
        except requests.RequestException as exc:
            raise TransportError(f"{method} {path} failed: {exc}") from exc

        try:
            body = resp.json()
        except ValueError:
            body = None

        if isinstance(body, dict) and body.get("success") is False:
            _raise_api_error(method, path, resp.status_code, body.get("error") or {})

        if not resp.ok:
            detail = body if body is not None else resp.text[:200]
            exc_cls = NotFoundError if resp.status_code == 404 else TransportError
            raise exc_cls(
                f"{method} {path} returned HTTP {resp.status_code}: {detail}",
                status_code=resp.status_code,
            )

        if not isinstance(body, dict):
            raise TransportError(
                f"{method} {path} returned a non-JSON body", status_code=resp.status_code
            )
        return body


def _raise_api_error(method: str, path: str, status_code: int, error: dict) -> None:
    error_type = str(error.get("type", "unknown"))
    code = error.get("code")
    message = f"{method} {path}: ZeroSSL error {code} {error_type}"
    if "not_found" in error_type:
        exc_cls: type[TransportError] = NotFoundError
    elif "not_issued" in error_type or "not_ready" in error_type:
        exc_cls = NotIssuedError
    else:
        exc_cls = TransportError
    raise exc_cls(message, status_code=status_code, error_code=code, error_type=error_type)


def _expires_before(cert: CertificateRequest, moment: datetime) -> bool:
    raw = cert.get("expires")
    if not raw:
        return False
    try:
        expires = datetime.strptime(raw, _CREATED_FORMAT)
    except ValueError:
        return False
    # ZeroSSL timestamps are naive UTC
    if moment.tzinfo is not None:
        moment = moment.astimezone(timezone.utc).replace(tzinfo=None)
    return expires < moment
