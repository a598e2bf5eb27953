"""Shared test fixtures for the imap_harvest test suite."""

from __future__ import annotations

import asyncio
from email import encoders
from email.mime.base import MIMEBase
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from pathlib import Path

import pytest
import structlog

from imap_harvest.config import AttachmentConfig, FetchConfig, ImapConfig, RetryConfig
from imap_harvest.exceptions import FolderOpenError
from imap_harvest.models import FolderNode
from imap_harvest.session import (
    AttributesEvent,
    BodyChunkEvent,
    BodyEndEvent,
    FetchEndEvent,
    MailSession,
)


@pytest.fixture(autouse=True)
def _reset_structlog():
    yield
    structlog.reset_defaults()


@pytest.fixture
def imap_config() -> ImapConfig:
    return ImapConfig(
        host="imap.test.com",
        port=993,
        use_ssl=True,
        username="testuser",
        password="testpass",
    )


@pytest.fixture
def retry_config() -> RetryConfig:
    return RetryConfig(
        max_attempts=3,
        initial_wait_seconds=0.01,
        max_wait_seconds=0.1,
        multiplier=2.0,
    )


@pytest.fixture
def fetch_config() -> FetchConfig:
    return FetchConfig(folder="INBOX", time_range="none")


@pytest.fixture
def attachment_config(tmp_path: Path) -> AttachmentConfig:
    return AttachmentConfig(output_dir=tmp_path / "attachments", classify_by_date=False)


# ------------------------------------------------------------------
# Sample EML builders
# ------------------------------------------------------------------


def _build_plain_email(
    *,
    subject: str | None = "Test Subject",
    from_addr: str = "sender@example.com",
    to_addr: str = "recipient@example.com",
    body: str = "Hello, World!",
    date: str | None = "Sun, 01 Jun 2025 12:00:00 +0000",
) -> bytes:
    """Build a simple plain-text email as raw bytes."""
    msg = MIMEText(body, "plain")
    if subject is not None:
        msg["Subject"] = subject
    msg["From"] = from_addr
    msg["To"] = to_addr
    msg["Message-ID"] = "<test-001@example.com>"
    if date is not None:
        msg["Date"] = date
    return msg.as_bytes()


def _build_multipart_email(
    *,
    body_text: str = "Plain body",
    body_html: str = "<p>HTML body</p>",
    attachments: list[tuple[str | None, str, bytes]] | None = None,
    date: str = "Tue, 05 Mar 2024 09:30:00 +0000",
) -> bytes:
    """Build a multipart email with text, HTML, and optional attachments.

    Layout: 1 = multipart/alternative (1.1 text, 1.2 html), 2.. = attachments.
    """
    msg = MIMEMultipart("mixed")
    msg["Subject"] = "Multipart Email"
    msg["From"] = "sender@example.com"
    msg["To"] = "recipient@example.com"
    msg["Date"] = date

    alt = MIMEMultipart("alternative")
    alt.attach(MIMEText(body_text, "plain"))
    alt.attach(MIMEText(body_html, "html"))
    msg.attach(alt)

    for filename, content_type, payload in attachments or []:
        maintype, subtype = content_type.split("/", 1)
        part = MIMEBase(maintype, subtype)
        part.set_payload(payload)
        encoders.encode_base64(part)
        if filename is None:
            part.add_header("Content-Disposition", "attachment")
        else:
            part.add_header("Content-Disposition", "attachment", filename=filename)
        msg.attach(part)

    return msg.as_bytes()


@pytest.fixture
def plain_eml_bytes() -> bytes:
    return _build_plain_email()


@pytest.fixture
def multipart_eml_bytes() -> bytes:
    return _build_multipart_email(
        attachments=[
            ("report.pdf", "application/pdf", b"%PDF-1.4 fake pdf content"),
            ("data.csv", "text/csv", b"col1,col2\na,b\n"),
        ],
    )


# ------------------------------------------------------------------
# Scripted transport
# ------------------------------------------------------------------

HANG = "hang"


def message_events(seq: int, uid: int, raw: bytes, *, chunks: int = 1) -> list:
    """Attribute + body events for one message, body split into *chunks*."""
    size = max(1, -(-len(raw) // chunks))
    body = [BodyChunkEvent(seq=seq, data=raw[i : i + size]) for i in range(0, len(raw), size)]
    return [AttributesEvent(seq=seq, uid=uid), *body, BodyEndEvent(seq=seq)]


class FakeTransport:
    """In-memory MailTransport that replays a scripted event list.

    ``HANG`` in the script blocks forever, a float sleeps that long and an
    exception instance is raised from the stream.
    """

    def __init__(
        self,
        *,
        uids: list[int] | None = None,
        events: list | None = None,
        folders: list[FolderNode] | None = None,
        missing_folders: tuple[str, ...] = (),
        search_error: Exception | None = None,
    ) -> None:
        self.uids = uids or []
        self.events = events if events is not None else [FetchEndEvent()]
        self.folders = folders or []
        self.missing_folders = missing_folders
        self.search_error = search_error
        self.connect_calls = 0
        self.disconnect_calls = 0
        self.opened: list[tuple[str, bool]] = []
        self.queries: list = []
        self.fetch_requests: list[list[int]] = []
        self.stream_open = False

    async def connect(self) -> None:
        self.connect_calls += 1

    async def disconnect(self) -> None:
        self.disconnect_calls += 1

    async def list_folders(self) -> list[FolderNode]:
        return self.folders

    async def open_folder(self, name: str, readonly: bool = True) -> int:
        if name in self.missing_folders:
            raise FolderOpenError(name, "[NONEXISTENT] Unknown Mailbox")
        self.opened.append((name, readonly))
        return len(self.uids)

    async def search(self, query) -> list[int]:
        self.queries.append(query)
        if self.search_error is not None:
            raise self.search_error
        return list(self.uids)

    async def fetch(self, uids: list[int]):
        self.fetch_requests.append(list(uids))
        self.stream_open = True
        try:
            for event in self.events:
                if event == HANG:
                    await asyncio.Event().wait()
                elif isinstance(event, float):
                    await asyncio.sleep(event)
                elif isinstance(event, BaseException):
                    raise event
                else:
                    yield event
        finally:
            self.stream_open = False


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


async def open_session(transport: FakeTransport) -> MailSession:
    """A connected session over *transport*."""
    session = MailSession(transport)
    await session.connect()
    return session


