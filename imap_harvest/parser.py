"""Full MIME parser — walks the entire message to extract body text, HTML,
attachments, and all headers.
"""

from __future__ import annotations

import email
import email.message
import email.policy
import email.utils
from collections.abc import Iterator
from dataclasses import dataclass, field
from datetime import datetime

from .encoded_words import decode_encoded_words
from .models import NOT_AVAILABLE, AttachmentDescriptor


@dataclass
class ParsedMail:
    """Structured representation of a fully parsed message body."""

    subject: str
    from_: str
    to: str
    date: datetime | None
    text: str | None
    html: str | None
    headers: dict[str, tuple[str, ...]]
    attachments: list[AttachmentDescriptor] = field(default_factory=list)


def iter_sections(msg: email.message.Message) -> Iterator[tuple[str, email.message.Message]]:
    """Yield ``(imap_part_id, part)`` for every non-multipart part.

    Numbering matches IMAP BODYSTRUCTURE sections; ``message/rfc822``
    parts are leaves.
    """
    if msg.get_content_maintype() != "multipart" or not msg.is_multipart():
        yield "1", msg
        return

    stack = [(str(i + 1), part) for i, part in enumerate(msg.get_payload())][::-1]
    while stack:
        part_id, part = stack.pop()
        if part.get_content_maintype() == "multipart" and part.is_multipart():
            children = part.get_payload()
            stack.extend(
                (f"{part_id}.{i + 1}", child) for i, child in reversed(list(enumerate(children)))
            )
        else:
            yield part_id, part


class MimeParser:
    """Stateless parser: raw RFC 822 bytes → ParsedMail."""

    def parse(self, raw_bytes: bytes) -> ParsedMail:
        msg = email.message_from_bytes(raw_bytes, policy=email.policy.default)

        sections = list(iter_sections(msg))
        body_text, body_html = self._extract_bodies(sections)

        return ParsedMail(
            subject=decode_encoded_words(self._header(msg, "Subject")) or NOT_AVAILABLE,
            from_=self._header(msg, "From") or NOT_AVAILABLE,
            to=self._header(msg, "To") or NOT_AVAILABLE,
            date=self._parse_date(msg),
            text=body_text,
            html=body_html,
            headers=self._collect_headers(msg),
            attachments=self._extract_attachments(sections),
        )

    def _header(self, msg: email.message.Message, name: str) -> str:
        try:
            value = msg.get(name)
        except (ValueError, TypeError, IndexError):
            return ""
        return str(value).strip() if value is not None else ""

    def _parse_date(self, msg: email.message.Message) -> datetime | None:
        try:
            value = msg.get("Date")
        except (ValueError, TypeError, IndexError):
            return None
        if not value:
            return None
        parsed = getattr(value, "datetime", None)
        if parsed is not None:
            return parsed
        try:
            return email.utils.parsedate_to_datetime(str(value))
        except (TypeError, ValueError, IndexError):
            return None

    def _collect_headers(self, msg: email.message.Message) -> dict[str, tuple[str, ...]]:
        headers: dict[str, list[str]] = {}
        for key in msg.keys():
            name = key.lower()
            if name in headers:
                continue
            try:
                values = [str(v) for v in msg.get_all(key, [])]
            except (ValueError, TypeError, IndexError):
                values = []
            headers[name] = values
        return {name: tuple(values) for name, values in headers.items()}

    def _is_attachment(self, part: email.message.Message) -> bool:
        # Content-Disposition: attachment, or a named non-multipart part
        return part.get_content_disposition() == "attachment" or bool(part.get_filename())

    def _part_text(self, part: email.message.Message) -> str | None:
        try:
            content = part.get_content()
        except (LookupError, UnicodeError):
            raw = part.get_payload(decode=True) or b""
            return raw.decode("utf-8", errors="replace")
        return content if isinstance(content, str) else None

    def _extract_bodies(
        self, sections: list[tuple[str, email.message.Message]]
    ) -> tuple[str | None, str | None]:
        """Return the first inline (plain_text, html_text) parts."""
        body_text: str | None = None
        body_html: str | None = None

        for _, part in sections:
            if self._is_attachment(part):
                continue
            content_type = part.get_content_type()
            if content_type == "text/plain" and body_text is None:
                body_text = self._part_text(part)
            elif content_type == "text/html" and body_html is None:
                body_html = self._part_text(part)

        return body_text, body_html

    def _extract_attachments(
        self, sections: list[tuple[str, email.message.Message]]
    ) -> list[AttachmentDescriptor]:
        """Collect attachments, tagged with their IMAP section numbers."""
        attachments: list[AttachmentDescriptor] = []

        for part_id, part in sections:
            if not self._is_attachment(part):
                continue

            if part.get_content_maintype() == "message":
                inner = part.get_payload()
                payload = inner[0].as_bytes() if isinstance(inner, list) and inner else b""
            else:
                payload = part.get_payload(decode=True) or b""

            filename = part.get_filename()
            if filename:
                filename = decode_encoded_words(filename) or None

            attachments.append(
                AttachmentDescriptor(
                    filename=filename,
                    content_type=part.get_content_type(),
                    size=len(payload),
                    part_id=part_id,
                    content=payload,
                )
            )

        return attachments
