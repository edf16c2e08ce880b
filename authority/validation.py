"""
HTTP file validation for ZeroSSL IP certificates.

ZeroSSL proves control of the IP by fetching

  http://<ip>/.well-known/pki-validation/<file>

The token files are written into the web root of the already-running proxy
(Caddy serves IPSSL_VALIDATION_DIR).  Files are left in place afterwards;
the next request overwrites them.
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Mapping
from urllib.parse import urlparse

from authority.models import ValidationMethod
from errors import FilesystemError
from storage.atomic import atomic_write_text

logger = logging.getLogger(__name__)

VALIDATION_SUBDIR = Path(".well-known") / "pki-validation"


def validation_dir_path(validation_dir: str) -> Path:
    return Path(validation_dir) / VALIDATION_SUBDIR


def validation_filename(url: str) -> str:
    """Last path segment of the validation URL (the file ZeroSSL will fetch)."""
    path = urlparse(url).path or url
    return path.rstrip("/").rsplit("/", 1)[-1]


def write_validation_files(
    validation_dir: str, methods: Mapping[str, ValidationMethod]
) -> list[Path]:
    """
    Write one validation file per method that carries content.

    Content tokens (token, "comodoca.com", hash) are joined with newlines.
    Methods without content are skipped.  Returns the written paths.
    Raises FilesystemError if the directory or a file cannot be written.
    """
    target_dir = validation_dir_path(validation_dir)
    written: list[Path] = []

    for method, validation in methods.items():
        content = validation.get("file_validation_content") or []
        if not content:
            logger.warning("Skipping validation method %s: no file content", method)
            continue

        filename = validation_filename(validation.get("file_validation_url_http", ""))
        if not filename:
            logger.warning("Skipping validation method %s: no validation URL", method)
            continue

        path = target_dir / filename
        try:
            target_dir.mkdir(parents=True, exist_ok=True)
            atomic_write_text(path, "\n".join(content), mode=0o644)
        except OSError as exc:
            raise FilesystemError(f"failed to write validation file {path}: {exc}") from exc

        logger.info("Validation file created for %s: %s", method, path)
        written.append(path)

    return written
