"""Retrieval session: caller-owned connection and folder state.

A :class:`MailSession` is created by :meth:`MailSession.connect`, passed
to whatever needs the mailbox, and torn down by
:meth:`MailSession.disconnect`.  It serializes every command on the one
underlying connection, so only one open/search/fetch is ever outstanding.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncGenerator, AsyncIterator
from contextlib import aclosing, asynccontextmanager
from dataclasses import dataclass
from typing import Protocol

import structlog

from .bodystructure import BodyStructurePart
from .config import RetryConfig
from .criteria import SearchQuery
from .exceptions import SessionStateError
from .models import FolderNode
from .retry import with_retry

logger = structlog.get_logger()


# ------------------------------------------------------------------
# Fetch events
# ------------------------------------------------------------------


@dataclass(frozen=True)
class AttributesEvent:
    """Durable identity (and optionally structure) of one message."""

    seq: int
    uid: int | None
    structure: BodyStructurePart | None = None


@dataclass(frozen=True)
class BodyChunkEvent:
    """The next slice of one message's raw bytes, in delivery order."""

    seq: int
    data: bytes


@dataclass(frozen=True)
class BodyEndEvent:
    """One message's body stream is complete."""

    seq: int


@dataclass(frozen=True)
class FetchEndEvent:
    """The server finished answering the FETCH command."""


@dataclass(frozen=True)
class FetchErrorEvent:
    """The transport failed while the FETCH was in flight."""

    error: BaseException


FetchEvent = AttributesEvent | BodyChunkEvent | BodyEndEvent | FetchEndEvent | FetchErrorEvent


class MailTransport(Protocol):
    """What the session needs from a wire-level mail client."""

    async def connect(self) -> None: ...

    async def disconnect(self) -> None: ...

    async def list_folders(self) -> list[FolderNode]: ...

    async def open_folder(self, name: str, readonly: bool = True) -> int: ...

    async def search(self, query: SearchQuery) -> list[int]: ...

    def fetch(self, uids: list[int]) -> AsyncGenerator[FetchEvent, None]: ...


# ------------------------------------------------------------------
# Session
# ------------------------------------------------------------------

# Connection-level faults worth another attempt; login rejections are not.
_TRANSIENT_ERRORS: tuple[type[BaseException], ...] = (OSError, TimeoutError)


class MailSession:
    """Connection + selected-folder state over a :class:`MailTransport`.

    ``disconnect`` on a session that never connected is a no-op; calling
    ``connect`` twice raises :class:`SessionStateError`.
    """

    def __init__(
        self,
        transport: MailTransport,
        retry: RetryConfig | None = None,
        transient_errors: tuple[type[BaseException], ...] = _TRANSIENT_ERRORS,
    ) -> None:
        self._transport = transport
        self._retry = retry or RetryConfig(max_attempts=1)
        self._transient_errors = transient_errors
        self._lock = asyncio.Lock()
        self.connected: bool = False
        self.selected_folder: str | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def connect(self) -> None:
        async with self._lock:
            if self.connected:
                raise SessionStateError("session is already connected")

            @with_retry(self._retry, retryable_exceptions=self._transient_errors)
            async def _connect() -> None:
                await self._transport.connect()

            await _connect()
            self.connected = True
            self.selected_folder = None
            logger.info("session_connected")

    async def disconnect(self) -> None:
        async with self._lock:
            if not self.connected:
                return
            try:
                await self._transport.disconnect()
            finally:
                self.connected = False
                self.selected_folder = None
                logger.info("session_disconnected")

    async def __aenter__(self) -> MailSession:
        await self.connect()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.disconnect()

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def _require_connected(self) -> None:
        if not self.connected:
            raise SessionStateError("session is not connected")

    async def list_folders(self) -> list[FolderNode]:
        async with self._lock:
            self._require_connected()
            return await self._transport.list_folders()

    async def open_folder(self, name: str, readonly: bool = True) -> int:
        """Select *name*; returns the number of messages it holds."""
        async with self._lock:
            self._require_connected()
            self.selected_folder = None
            count = await self._transport.open_folder(name, readonly=readonly)
            self.selected_folder = name
            logger.info("folder_opened", folder=name, messages=count, readonly=readonly)
            return count

    async def search(self, query: SearchQuery) -> list[int]:
        async with self._lock:
            self._require_connected()
            if self.selected_folder is None:
                raise SessionStateError("no folder selected")
            return await self._transport.search(query)

    @asynccontextmanager
    async def fetch(self, uids: list[int]) -> AsyncIterator[AsyncGenerator[FetchEvent, None]]:
        """Hold the connection for one FETCH and yield its event stream.

        The stream is closed on exit, whether the caller finished, failed
        or was cancelled.
        """
        async with self._lock:
            self._require_connected()
            if self.selected_folder is None:
                raise SessionStateError("no folder selected")
            async with aclosing(self._transport.fetch(uids)) as events:
                yield events
