"""
Write-then-replace file writes for certificate, key and validation files.

Pattern:
  1. Write to a temporary file in the destination directory
  2. chmod to the final mode, then fsync
  3. os.replace() over the destination (atomic on POSIX filesystems)

Readers (Caddy, the validation check) never observe a half-written PEM, and
the key file never exists with looser permissions than requested.

stage_bytes() stops after step 2 so a caller can stage several files and
only start replacing once every temp file is safely on disk.
"""
from __future__ import annotations

import os
import tempfile
from pathlib import Path


def stage_bytes(path: Path, content: bytes, mode: int = 0o644) -> Path:
    """
    Write *content* to a fsynced temp file next to *path* and return its path.

    Parent directories are created as needed.  On any error the temp file is
    removed and the exception propagates.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    fd, temp_path = tempfile.mkstemp(
        prefix=f".{path.name}.",
        suffix=".tmp",
        dir=str(path.parent),
    )

    try:
        with os.fdopen(fd, "wb") as f:
            os.fchmod(f.fileno(), mode)
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
    except BaseException:
        discard_staged(Path(temp_path))
        raise
    return Path(temp_path)


def discard_staged(temp_path: Path) -> None:
    try:
        os.unlink(temp_path)
    except FileNotFoundError:
        pass


def atomic_write_bytes(path: Path, content: bytes, mode: int = 0o644) -> None:
    """
    Atomically replace *path* with *content*, leaving it with permission *mode*.

    On any error the temp file is removed and the exception propagates; the
    previous file stays intact.
    """
    temp_path = stage_bytes(path, content, mode=mode)
    try:
        os.replace(temp_path, path)
    except BaseException:
        discard_staged(temp_path)
        raise


def atomic_write_text(
    path: Path, content: str, mode: int = 0o644, encoding: str = "utf-8"
) -> None:
    """Text wrapper around atomic_write_bytes()."""
    atomic_write_bytes(path, content.encode(encoding), mode=mode)
