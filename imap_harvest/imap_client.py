"""Async IMAP client wrapping imapclient with asyncio.to_thread."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncGenerator, Iterator
from typing import Any

import structlog
from imapclient import IMAPClient
from imapclient.exceptions import IMAPClientAbortError, IMAPClientError

from .bodystructure import parse_bodystructure
from .config import ImapConfig
from .criteria import SearchQuery
from .exceptions import FetchError, FolderListError, FolderOpenError, SearchError
from .models import FolderNode
from .session import (
    AttributesEvent,
    BodyChunkEvent,
    BodyEndEvent,
    FetchEndEvent,
    FetchErrorEvent,
    FetchEvent,
)

logger = structlog.get_logger()

FETCH_ITEMS = ["UID", "BODYSTRUCTURE", "BODY.PEEK[]"]

# Dropped connections worth reconnecting for; IMAPClientError (e.g. a
# rejected login) is not.
TRANSIENT_ERRORS: tuple[type[BaseException], ...] = (OSError, IMAPClientAbortError)


def _text(value: str | bytes | None) -> str | None:
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return value


def build_folder_tree(entries: list[tuple[tuple[str, ...], str | None, str]]) -> list[FolderNode]:
    """Nest flat LIST entries under their parents using each entry's delimiter."""
    roots: list[FolderNode] = []
    by_path: dict[str, FolderNode] = {}

    for flags, delimiter, path in sorted(entries, key=lambda entry: entry[2]):
        parent_path, _, leaf = (
            path.rpartition(delimiter) if delimiter else ("", "", path)
        )
        node = FolderNode(name=leaf or path, path=path, delimiter=delimiter, flags=flags)
        by_path[path] = node
        parent = by_path.get(parent_path) if parent_path else None
        if parent is not None:
            parent.children.append(node)
        else:
            roots.append(node)
    return roots


def fetch_events(response: dict[int, dict[bytes, Any]]) -> Iterator[FetchEvent]:
    """Turn an ``IMAPClient.fetch`` result into per-message events.

    Messages come out in sequence-number order.  An entry carrying neither
    a BODYSTRUCTURE nor a body (e.g. an unsolicited FLAGS update) produces
    nothing.
    """
    ordered = sorted(response.items(), key=lambda item: item[1].get(b"SEQ", item[0]))
    for uid, data in ordered:
        seq = int(data.get(b"SEQ", uid))
        raw_structure = data.get(b"BODYSTRUCTURE")
        body = data.get(b"BODY[]", data.get(b"RFC822"))
        if raw_structure is None and body is None:
            continue

        structure = None
        if raw_structure is not None:
            try:
                structure = parse_bodystructure(raw_structure)
            except (ValueError, TypeError, IndexError) as exc:
                logger.warning("bodystructure_unreadable", seq=seq, uid=uid, error=str(exc))

        yield AttributesEvent(seq=seq, uid=int(uid), structure=structure)
        if isinstance(body, bytes):
            yield BodyChunkEvent(seq=seq, data=body)
            yield BodyEndEvent(seq=seq)


class AsyncImapClient:
    """Async-friendly IMAP client.

    All blocking ``imapclient`` operations are wrapped with
    ``asyncio.to_thread()`` to avoid blocking the event loop.  Searches
    and fetches address messages by UID.
    """

    def __init__(self, config: ImapConfig) -> None:
        self._config = config
        self._client: IMAPClient | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def connect(self) -> None:
        """Connect and log in."""
        await asyncio.to_thread(self._connect_sync)
        logger.info("imap_connected", host=self._config.host, port=self._config.port)

    def _connect_sync(self) -> None:
        client = IMAPClient(
            self._config.host,
            port=self._config.port,
            ssl=self._config.use_ssl,
            timeout=self._config.timeout_seconds,
            use_uid=True,
        )
        try:
            client.login(self._config.username, self._config.password.get_secret_value())
        except IMAPClientError:
            client.shutdown()
            raise
        self._client = client

    async def disconnect(self) -> None:
        """Logout and drop the connection."""
        if self._client is not None:
            await asyncio.to_thread(self._disconnect_sync)
            self._client = None
            logger.info("imap_disconnected")

    def _disconnect_sync(self) -> None:
        assert self._client is not None
        try:
            self._client.logout()
        except (IMAPClientError, OSError):
            logger.debug("imap_logout_failed")

    # ------------------------------------------------------------------
    # Folders
    # ------------------------------------------------------------------

    async def list_folders(self) -> list[FolderNode]:
        assert self._client is not None, "Not connected"
        try:
            entries = await asyncio.to_thread(self._client.list_folders)
        except (IMAPClientError, OSError) as exc:
            raise FolderListError(str(exc)) from exc
        return build_folder_tree(
            [
                (tuple(_text(flag) for flag in flags), _text(delimiter), _text(name))
                for flags, delimiter, name in entries
            ]
        )

    async def open_folder(self, name: str, readonly: bool = True) -> int:
        """Select *name* and return its message count."""
        assert self._client is not None, "Not connected"
        try:
            info = await asyncio.to_thread(self._client.select_folder, name, readonly)
        except IMAPClientError as exc:
            raise FolderOpenError(name, str(exc)) from exc
        return int(info.get(b"EXISTS", 0))

    # ------------------------------------------------------------------
    # Message retrieval
    # ------------------------------------------------------------------

    async def search(self, query: SearchQuery) -> list[int]:
        """Run UID SEARCH; returns matching UIDs in server order."""
        assert self._client is not None, "Not connected"
        try:
            uids = await asyncio.to_thread(self._client.search, query.to_imap())
        except (IMAPClientError, OSError) as exc:
            raise SearchError(str(exc)) from exc
        return [int(uid) for uid in uids]

    async def fetch(self, uids: list[int]) -> AsyncGenerator[FetchEvent, None]:
        """Fetch UID, BODYSTRUCTURE and the full body for *uids*.

        Transport failures are reported as a :class:`FetchErrorEvent`
        rather than raised, so the consumer decides what survives.
        """
        assert self._client is not None, "Not connected"
        if not uids:
            yield FetchEndEvent()
            return

        try:
            response = await asyncio.to_thread(self._client.fetch, uids, FETCH_ITEMS)
        except (IMAPClientError, OSError) as exc:
            yield FetchErrorEvent(FetchError(str(exc)))
            return

        for event in fetch_events(response):
            yield event

        logger.debug("imap_fetch_complete", requested=len(uids), returned=len(response))
        yield FetchEndEvent()
