"""Typed BODYSTRUCTURE trees and the walker that finds attachment parts.

``imapclient`` hands back BODYSTRUCTURE as a :class:`~imapclient.response_types.BodyData`
tuple: strings as ``bytes``, numbers as ``int``, ``NIL`` as ``None`` and a
multipart's children gathered into a list at position 0.
:func:`parse_bodystructure` turns that into :class:`LeafPart` /
:class:`CompositePart` nodes carrying IMAP section numbers, and
:func:`find_attachments` scans the typed tree.  Both use an explicit
work-list: nesting depth is chosen by whoever sent the message.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

from .encoded_words import decode_encoded_words
from .models import AttachmentDescriptor


@dataclass(frozen=True)
class Disposition:
    kind: str
    params: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class LeafPart:
    """A single body part (text, image, application, message/rfc822...)."""

    type: str
    subtype: str
    part_id: str
    size: int = 0
    disposition: Disposition | None = None
    params: dict[str, str] = field(default_factory=dict)
    encoding: str | None = None

    @property
    def content_type(self) -> str:
        return f"{self.type}/{self.subtype}".lower()


@dataclass(frozen=True)
class CompositePart:
    """A multipart container; ``part_id`` is empty for the message root."""

    subtype: str
    parts: tuple[BodyStructurePart, ...]
    part_id: str = ""
    disposition: Disposition | None = None


BodyStructurePart = LeafPart | CompositePart


# ------------------------------------------------------------------
# Conversion from the fetched structure
# ------------------------------------------------------------------


def _is_seq(value: Any) -> bool:
    return isinstance(value, (list, tuple))


def _text(value: Any) -> str:
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    if value is None:
        return ""
    return str(value)


def _int(value: Any) -> int:
    try:
        return int(_text(value))
    except ValueError:
        return 0


def _at(node: Sequence, index: int) -> Any:
    return node[index] if 0 <= index < len(node) else None


def _params(value: Any) -> dict[str, str]:
    if not _is_seq(value):
        return {}
    pairs = zip(value[::2], value[1::2])
    return {_text(key).lower(): _text(val) for key, val in pairs}


def _disposition(value: Any) -> Disposition | None:
    if not _is_seq(value) or not value or _is_seq(value[0]):
        return None
    return Disposition(kind=_text(value[0]), params=_params(_at(value, 1)))


def _split_multipart(node: Sequence) -> tuple[list, Sequence] | None:
    """Children and trailing fields of a multipart node, ``None`` for a leaf."""
    if not node:
        return None
    if isinstance(node[0], list):
        # BodyData: children already gathered into one list
        return list(node[0]), node[1:]
    if isinstance(node[0], tuple):
        kids = []
        for item in node:
            if not _is_seq(item):
                break
            kids.append(item)
        return kids, node[len(kids) :]
    return None


def _leaf(node: Sequence, part_id: str) -> LeafPart:
    part_type = _text(_at(node, 0)).lower()
    subtype = _text(_at(node, 1)).lower()

    # Extension data follows the type-specific fields.
    if part_type == "text":
        ext = 8
    elif (part_type, subtype) == ("message", "rfc822"):
        ext = 10
    else:
        ext = 7

    encoding = _at(node, 5)
    return LeafPart(
        type=part_type,
        subtype=subtype,
        part_id=part_id,
        size=_int(_at(node, 6)),
        disposition=_disposition(_at(node, ext + 1)),
        params=_params(_at(node, 2)),
        encoding=_text(encoding).lower() if encoding is not None else None,
    )


def _composite(tail: Sequence, part_id: str, parts: tuple[BodyStructurePart, ...]) -> CompositePart:
    return CompositePart(
        subtype=_text(_at(tail, 0)).lower(),
        parts=parts,
        part_id=part_id,
        disposition=_disposition(_at(tail, 2)),
    )


def parse_bodystructure(tree: Sequence) -> BodyStructurePart:
    """Convert a fetched BODYSTRUCTURE into a typed part tree.

    Accepts ``imapclient``'s ``BodyData`` as well as the plain nested
    tuples it is built from.  Section numbers follow IMAP: children of the
    root multipart are ``1``, ``2`` ...; nested children are ``2.1``,
    ``2.2`` ...; a non-multipart message body is part ``1``.
    """
    if not _is_seq(tree) or not tree:
        raise ValueError("BODYSTRUCTURE must be a non-empty sequence")

    root: list[BodyStructurePart] = []
    # (node, part_id, sink, children) - children is set once a multipart
    # has been expanded and is waiting for its parts to be built.
    stack: list[tuple[Sequence, str, list, list | None]] = [(tree, "", root, None)]

    while stack:
        node, part_id, sink, children = stack.pop()

        split = _split_multipart(node)
        if split is None:
            sink.append(_leaf(node, part_id or "1"))
            continue

        kids, tail = split
        if children is not None:
            sink.append(_composite(tail, part_id, tuple(children)))
            continue

        collected: list[BodyStructurePart] = []
        stack.append((node, part_id, sink, collected))
        for index in range(len(kids) - 1, -1, -1):
            child_id = f"{part_id}.{index + 1}" if part_id else str(index + 1)
            stack.append((kids[index], child_id, collected, None))

    return root[0]


# ------------------------------------------------------------------
# Attachment discovery
# ------------------------------------------------------------------


def find_attachments(
    root: BodyStructurePart | Sequence[BodyStructurePart],
) -> list[AttachmentDescriptor]:
    """Return attachment parts in depth-first, left-to-right order.

    A leaf qualifies when its disposition is ``attachment`` (any case) and
    it has a part id.  Returned descriptors carry no content; the caller
    fills it in from the message body.
    """
    roots = [root] if isinstance(root, (LeafPart, CompositePart)) else list(root)
    stack: list[BodyStructurePart] = roots[::-1]
    found: list[AttachmentDescriptor] = []

    while stack:
        part = stack.pop()
        if isinstance(part, CompositePart):
            stack.extend(reversed(part.parts))
            continue

        disposition = part.disposition
        if disposition is None or disposition.kind.lower() != "attachment":
            continue
        if not part.part_id:
            continue

        filename = disposition.params.get("filename") or disposition.params.get("name")
        if filename == "/":
            filename = None
        if filename:
            filename = decode_encoded_words(filename) or None

        found.append(
            AttachmentDescriptor(
                filename=filename,
                content_type=part.content_type,
                size=part.size,
                part_id=part.part_id,
            )
        )

    return found
