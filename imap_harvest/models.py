"""Records produced by a retrieval call and consumed by the attachment writer."""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Literal

from .exceptions import HarvestError, WriteError

NOT_AVAILABLE = "N/A"


@dataclass(frozen=True)
class MessageIdentity:
    """Folder-local sequence number plus the durable UID once known."""

    seq: int
    uid: int | None = None


@dataclass(frozen=True)
class AttachmentDescriptor:
    """A single attachment located in a message.

    ``filename`` has already been run through encoded-word decoding.
    """

    filename: str | None
    content_type: str
    size: int
    part_id: str | None = None
    content: bytes = b""


@dataclass(frozen=True)
class MailRecord:
    """A fully resolved message: identity and parsed body both present."""

    identity: MessageIdentity
    headers: dict[str, tuple[str, ...]]
    subject: str
    from_: str
    to: str
    date: datetime | Literal["N/A"]
    text: str | None = None
    html: str | None = None
    attachments: tuple[AttachmentDescriptor, ...] = ()

    @property
    def uid(self) -> int | None:
        return self.identity.uid

    @property
    def seq(self) -> int:
        return self.identity.seq


@dataclass
class FetchResult:
    """Completed records of one fetch call plus the item-level errors it hit.

    Iterates and sizes like its ``records``.
    """

    records: list[MailRecord] = field(default_factory=list)
    errors: list[HarvestError] = field(default_factory=list)
    timed_out: bool = False

    def __iter__(self) -> Iterator[MailRecord]:
        return iter(self.records)

    def __len__(self) -> int:
        return len(self.records)

    def __getitem__(self, index: int) -> MailRecord:
        return self.records[index]


@dataclass
class WriteReport:
    """Paths written by one writer call and the attachments that failed."""

    written: list[Path] = field(default_factory=list)
    errors: list[WriteError] = field(default_factory=list)


@dataclass
class FolderNode:
    """One folder in the server's hierarchy, with decoded names."""

    name: str
    path: str
    delimiter: str | None = None
    flags: tuple[str, ...] = ()
    children: list[FolderNode] = field(default_factory=list)

    @property
    def selectable(self) -> bool:
        lowered = {flag.lower() for flag in self.flags}
        return "\\noselect" not in lowered and "\\nonexistent" not in lowered
