"""Filesystem-safe naming for extracted attachments."""

from __future__ import annotations

import re
from datetime import datetime

from .models import AttachmentDescriptor

MAX_FILENAME_LENGTH = 100

# Reserved path characters plus ASCII control characters (NUL included).
_UNSAFE_RUN_RE = re.compile(r'[<>:;"/\\|?*\x00-\x1f\x7f]+')


def sanitize_filename(name: str) -> str:
    """Collapse each run of reserved or control characters to ``_`` and cap
    the length."""
    return _UNSAFE_RUN_RE.sub("_", name)[:MAX_FILENAME_LENGTH]


def resolve_filename(
    attachment: AttachmentDescriptor,
    uid: int | None,
    now: datetime | None = None,
) -> str:
    """Pick the on-disk name for *attachment*.

    Uses the attachment's own filename when it has a usable one, otherwise
    ``attachment_<uid>_<millisecond timestamp>``.
    """
    name = attachment.filename
    if not name or name == "/":
        stamp = int((now or datetime.now()).timestamp() * 1000)
        name = f"attachment_{uid if uid is not None else 'unknown'}_{stamp}"
    return sanitize_filename(name)


def dedupe_filename(name: str, taken: set[str]) -> str:
    """Return *name*, or ``stem_<n>.ext`` if *name* is already in *taken*."""
    if name not in taken:
        return name
    stem, dot, ext = name.rpartition(".")
    if not dot or not stem or len(ext) > 20:
        stem, dot, ext = name, "", ""
    counter = 1
    while True:
        suffix = f"_{counter}{dot}{ext}"
        candidate = stem[: MAX_FILENAME_LENGTH - len(suffix)] + suffix
        if candidate not in taken:
            return candidate
        counter += 1
