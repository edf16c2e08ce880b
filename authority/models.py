"""
Shapes of the ZeroSSL objects this daemon reads.

CertificateRequest mirrors the JSON certificate object returned by the
ZeroSSL REST API; only the fields we consume are declared.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List

from typing_extensions import NotRequired, TypedDict

# ── Request statuses ──────────────────────────────────────────────────────────

DRAFT = "draft"
PENDING_VALIDATION = "pending_validation"
ISSUED = "issued"
CANCELLED = "cancelled"
EXPIRED = "expired"

WAITING_STATUSES = frozenset({DRAFT, PENDING_VALIDATION})
FAILED_STATUSES = frozenset({CANCELLED, EXPIRED})
# Requests worth resuming instead of creating a new one
REUSABLE_STATUSES = frozenset({ISSUED, PENDING_VALIDATION, DRAFT})

PEM_CERT_BEGIN = "-----BEGIN CERTIFICATE-----"


class ValidationMethod(TypedDict):
    """One entry of validation.other_methods (keyed by IP or method name)."""
    file_validation_url_http: str
    file_validation_url_https: NotRequired[str]
    file_validation_content: List[str]
    cname_validation_p1: NotRequired[str]
    cname_validation_p2: NotRequired[str]


class Validation(TypedDict, total=False):
    email_validation: Dict[str, List[str]]
    other_methods: Dict[str, ValidationMethod]


class CertificateRequest(TypedDict):
    id: str
    common_name: str                  # subject IP
    status: str                       # draft | pending_validation | issued | cancelled | expired
    created: NotRequired[str]         # "YYYY-MM-DD HH:MM:SS" (UTC)
    expires: NotRequired[str]
    additional_domains: NotRequired[str]
    validation: NotRequired[Validation]


@dataclass(frozen=True)
class CertificateBundle:
    """Leaf certificate plus optional intermediate chain, as downloaded."""

    certificate: str
    ca_bundle: str = ""

    @property
    def full_chain(self) -> str:
        """Leaf and chain joined by a newline; an absent part is omitted."""
        return "\n".join(part for part in (self.certificate, self.ca_bundle) if part)

    @property
    def has_intermediate(self) -> bool:
        return bool(self.ca_bundle)

    @property
    def certificate_count(self) -> int:
        return self.full_chain.count(PEM_CERT_BEGIN)
