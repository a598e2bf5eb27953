"""Error taxonomy for mail retrieval and attachment extraction.

Call-level errors (``InvalidFilterError``, ``FolderOpenError``,
``FolderListError``, ``SearchError``, ``FetchError``, ``DirectoryError``)
abort the operation that raised them.  Item-level errors (``ParseError``,
``WriteError``) are logged and collected on the result objects while the
operation carries on with the remaining messages or attachments.
"""

from __future__ import annotations

from pathlib import Path


class HarvestError(Exception):
    """Base class for every error raised by imap_harvest."""


class InvalidFilterError(HarvestError, ValueError):
    """Raised when a time-range tag or result limit is not recognised."""


class SessionStateError(HarvestError, RuntimeError):
    """Raised when a session operation does not fit the session lifecycle.

    Connecting an already connected session, or searching before a
    folder has been opened, both end up here.
    """


class FolderOpenError(HarvestError):
    """Raised when a folder is missing or cannot be selected."""

    def __init__(self, folder: str, reason: str) -> None:
        super().__init__(f"cannot open folder {folder!r}: {reason}")
        self.folder = folder
        self.reason = reason


class SearchError(HarvestError):
    """Raised when the server rejects a SEARCH or the transport fails during it."""


class FolderListError(HarvestError):
    """Raised when the server rejects LIST or the transport fails during it."""


class FetchError(HarvestError):
    """Raised on a transport fault while message attributes or bodies stream in."""


class ParseError(HarvestError):
    """A single message body could not be parsed.

    Isolated to that message: it is dropped from the result and the fetch
    continues.
    """

    def __init__(self, seq: int, reason: str, uid: int | None = None) -> None:
        super().__init__(f"message #{seq} could not be parsed: {reason}")
        self.seq = seq
        self.uid = uid
        self.reason = reason


class FetchTimeoutError(HarvestError, TimeoutError):
    """The fetch deadline expired before every message settled."""

    def __init__(self, deadline: float, pending: int) -> None:
        super().__init__(
            f"fetch deadline of {deadline:g}s exceeded with {pending} message(s) unsettled"
        )
        self.deadline = deadline
        self.pending = pending


class DirectoryError(HarvestError):
    """The attachment output directory could not be created."""

    def __init__(self, path: Path, reason: str) -> None:
        super().__init__(f"cannot create directory {str(path)!r}: {reason}")
        self.path = path
        self.reason = reason


class WriteError(HarvestError):
    """A single attachment could not be written to disk."""

    def __init__(self, path: Path, filename: str | None, reason: str) -> None:
        super().__init__(f"cannot write attachment {filename!r} to {str(path)!r}: {reason}")
        self.path = path
        self.filename = filename
        self.reason = reason
