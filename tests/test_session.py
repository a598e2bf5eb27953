"""Tests for imap_harvest.session."""

from __future__ import annotations

import pytest
from structlog.testing import capture_logs

from tests.conftest import FakeTransport, open_session

from imap_harvest.config import RetryConfig
from imap_harvest.criteria import SearchQuery
from imap_harvest.exceptions import FolderOpenError, SessionStateError
from imap_harvest.models import FolderNode
from imap_harvest.session import FetchEndEvent, MailSession


class UnreliableTransport(FakeTransport):
    """Fails the first *failures* connection attempts."""

    def __init__(self, failures: int, error: Exception, **kwargs) -> None:
        super().__init__(**kwargs)
        self.failures = failures
        self.error = error

    async def connect(self) -> None:
        self.connect_calls += 1
        if self.connect_calls <= self.failures:
            raise self.error


class TestSessionLifecycle:
    @pytest.mark.asyncio
    async def test_connect_and_disconnect(self, transport: FakeTransport):
        session = MailSession(transport)
        await session.connect()
        assert session.connected is True
        await session.disconnect()
        assert session.connected is False
        assert transport.connect_calls == 1
        assert transport.disconnect_calls == 1

    @pytest.mark.asyncio
    async def test_double_connect_rejected(self, transport: FakeTransport):
        session = await open_session(transport)
        with pytest.raises(SessionStateError):
            await session.connect()
        assert transport.connect_calls == 1

    @pytest.mark.asyncio
    async def test_disconnect_without_connect_is_noop(self, transport: FakeTransport):
        session = MailSession(transport)
        await session.disconnect()
        assert transport.disconnect_calls == 0

    @pytest.mark.asyncio
    async def test_disconnect_twice(self, transport: FakeTransport):
        session = await open_session(transport)
        await session.disconnect()
        await session.disconnect()
        assert transport.disconnect_calls == 1

    @pytest.mark.asyncio
    async def test_reconnect_after_disconnect(self, transport: FakeTransport):
        session = await open_session(transport)
        await session.open_folder("INBOX")
        await session.disconnect()
        await session.connect()
        assert session.selected_folder is None
        assert transport.connect_calls == 2

    @pytest.mark.asyncio
    async def test_async_context_manager(self, transport: FakeTransport):
        async with MailSession(transport) as session:
            assert session.connected is True
        assert transport.disconnect_calls == 1


class TestSessionRetry:
    @pytest.mark.asyncio
    async def test_transient_connect_failures_retried(self, retry_config: RetryConfig):
        transport = UnreliableTransport(2, ConnectionRefusedError("refused"))
        session = MailSession(transport, retry=retry_config)

        with capture_logs() as logs:
            await session.connect()

        assert session.connected is True
        assert transport.connect_calls == 3
        assert [e["attempt"] for e in logs if e["event"] == "retrying"] == [1, 2]

    @pytest.mark.asyncio
    async def test_retries_exhausted(self, retry_config: RetryConfig):
        transport = UnreliableTransport(10, TimeoutError("timed out"))
        session = MailSession(transport, retry=retry_config)

        with pytest.raises(TimeoutError):
            await session.connect()
        assert transport.connect_calls == retry_config.max_attempts
        assert session.connected is False

    @pytest.mark.asyncio
    async def test_login_rejection_not_retried(self, retry_config: RetryConfig):
        transport = UnreliableTransport(10, PermissionError("bad credentials"))
        session = MailSession(
            transport,
            retry=retry_config,
            transient_errors=(ConnectionError, TimeoutError),
        )

        with pytest.raises(PermissionError):
            await session.connect()
        assert transport.connect_calls == 1

    @pytest.mark.asyncio
    async def test_single_attempt_by_default(self):
        transport = UnreliableTransport(1, ConnectionRefusedError("refused"))
        with pytest.raises(ConnectionRefusedError):
            await MailSession(transport).connect()
        assert transport.connect_calls == 1


class TestSessionCommands:
    @pytest.mark.asyncio
    async def test_commands_require_connection(self, transport: FakeTransport):
        session = MailSession(transport)
        with pytest.raises(SessionStateError):
            await session.open_folder("INBOX")
        with pytest.raises(SessionStateError):
            await session.list_folders()

    @pytest.mark.asyncio
    async def test_search_requires_folder(self, transport: FakeTransport):
        session = await open_session(transport)
        with pytest.raises(SessionStateError, match="no folder selected"):
            await session.search(SearchQuery(terms=("ALL",)))

    @pytest.mark.asyncio
    async def test_open_folder_records_selection(self):
        transport = FakeTransport(uids=[1, 2, 3])
        session = await open_session(transport)

        count = await session.open_folder("Archive")

        assert count == 3
        assert session.selected_folder == "Archive"
        assert transport.opened == [("Archive", True)]

    @pytest.mark.asyncio
    async def test_failed_open_clears_selection(self):
        transport = FakeTransport(missing_folders=("Nope",))
        session = await open_session(transport)
        await session.open_folder("INBOX")

        with pytest.raises(FolderOpenError):
            await session.open_folder("Nope")
        assert session.selected_folder is None

    @pytest.mark.asyncio
    async def test_list_folders(self):
        folders = [FolderNode(name="INBOX", path="INBOX", delimiter="/")]
        session = await open_session(FakeTransport(folders=folders))
        assert await session.list_folders() == folders

    @pytest.mark.asyncio
    async def test_fetch_requires_folder(self, transport: FakeTransport):
        session = await open_session(transport)
        with pytest.raises(SessionStateError):
            async with session.fetch([1]):
                pass

    @pytest.mark.asyncio
    async def test_fetch_stream_closed_on_early_exit(self):
        transport = FakeTransport(uids=[1], events=[FetchEndEvent(), FetchEndEvent()])
        session = await open_session(transport)
        await session.open_folder("INBOX")

        async with session.fetch([1]) as events:
            first = await anext(events)
            assert first == FetchEndEvent()
            assert transport.stream_open is True

        assert transport.stream_open is False
        assert transport.fetch_requests == [[1]]

    @pytest.mark.asyncio
    async def test_fetch_stream_closed_on_error(self):
        transport = FakeTransport(uids=[1], events=[FetchEndEvent(), FetchEndEvent()])
        session = await open_session(transport)
        await session.open_folder("INBOX")

        with pytest.raises(RuntimeError, match="consumer failed"):
            async with session.fetch([1]) as events:
                await anext(events)
                raise RuntimeError("consumer failed")

        assert transport.stream_open is False
        # lock released: the session still answers
        assert await session.search(SearchQuery(terms=("ALL",))) == [1]
