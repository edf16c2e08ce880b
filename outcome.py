"""
Tagged outcomes for best-effort steps.

Triggering validation and reloading the proxy container may fail without
failing the renewal.  Those failures are returned as SoftFailure values
instead of being swallowed, so callers and tests can inspect them.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional


@dataclass(frozen=True)
class SoftFailure:
    action: str        # "trigger_validation" | "reload"
    message: str
    error: Optional[BaseException] = field(default=None, compare=False)

    def __str__(self) -> str:
        return f"{self.action}: {self.message}"


@dataclass
class RenewalResult:
    """What one scheduler check produced."""

    renewed: bool = False
    skipped: bool = False              # certificate was still valid
    error: Optional[BaseException] = None
    warnings: List[SoftFailure] = field(default_factory=list)
    cert_path: Optional[str] = None
    key_path: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None
