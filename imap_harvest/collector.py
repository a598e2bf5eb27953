"""MessageCollector — search a folder, fetch the matches, and join each
message's attribute and body events into a completed :class:`MailRecord`.

The server answers a FETCH with per-message attributes (UID,
BODYSTRUCTURE) and per-message body streams in no particular order,
interleaved across messages.  :class:`MessageJoin` keeps one accumulator
per sequence number and only emits a record once both halves resolved;
it holds no reference to the transport, so the join can be driven
directly from tests.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field, replace
from typing import Literal

import structlog

from .bodystructure import BodyStructurePart, find_attachments
from .config import FetchConfig
from .criteria import TimeRangeFilter, build_search_query
from .exceptions import (
    FetchError,
    FetchTimeoutError,
    FolderOpenError,
    ParseError,
    SearchError,
)
from .models import NOT_AVAILABLE, AttachmentDescriptor, FetchResult, MailRecord, MessageIdentity
from .parser import MimeParser, ParsedMail
from .session import (
    AttributesEvent,
    BodyChunkEvent,
    BodyEndEvent,
    FetchEndEvent,
    FetchErrorEvent,
    MailSession,
)

logger = structlog.get_logger()

AttachmentSource = Literal["parsed", "structure"]


# ------------------------------------------------------------------
# Per-message join
# ------------------------------------------------------------------


@dataclass
class PendingMail:
    """Accumulator for one in-flight message."""

    seq: int
    uid: int | None = None
    structure: BodyStructurePart | None = None
    buffer: bytearray = field(default_factory=bytearray)
    body_ended: bool = False
    parsed: ParsedMail | None = None
    failed: bool = False

    @property
    def identified(self) -> bool:
        return self.uid is not None

    @property
    def settled(self) -> bool:
        return self.failed or (self.identified and self.parsed is not None)


class MessageJoin:
    """Correlates attribute and body events by sequence number."""

    def __init__(self, attachment_source: AttachmentSource = "parsed") -> None:
        self._attachment_source = attachment_source
        self._pending: dict[int, PendingMail] = {}
        self._completed: dict[int, MailRecord] = {}
        self.errors: list[ParseError] = []

    def _slot(self, seq: int) -> PendingMail:
        slot = self._pending.get(seq)
        if slot is None:
            slot = self._pending[seq] = PendingMail(seq=seq)
        return slot

    @property
    def observed(self) -> int:
        return len(self._pending)

    @property
    def settled(self) -> int:
        return sum(1 for slot in self._pending.values() if slot.settled)

    def uid_of(self, seq: int) -> int | None:
        slot = self._pending.get(seq)
        return slot.uid if slot is not None else None

    def unsettled(self) -> list[PendingMail]:
        return [slot for slot in self._pending.values() if not slot.settled]

    # ------------------------------------------------------------------
    # Event application
    # ------------------------------------------------------------------

    def apply_attributes(self, event: AttributesEvent) -> MailRecord | None:
        slot = self._slot(event.seq)
        if event.uid is not None:
            slot.uid = event.uid
        if event.structure is not None:
            slot.structure = event.structure
        return self._try_complete(slot)

    def append_body(self, seq: int, data: bytes) -> None:
        slot = self._slot(seq)
        if slot.body_ended:
            logger.debug("body_chunk_after_end_ignored", seq=seq)
            return
        slot.buffer.extend(data)

    def end_body(self, seq: int) -> bytes | None:
        """Close *seq*'s body stream; returns the bytes to parse, once."""
        slot = self._slot(seq)
        if slot.body_ended:
            return None
        slot.body_ended = True
        raw = bytes(slot.buffer)
        slot.buffer = bytearray()
        return raw

    def apply_parsed(self, seq: int, parsed: ParsedMail) -> MailRecord | None:
        slot = self._slot(seq)
        slot.parsed = parsed
        return self._try_complete(slot)

    def fail(self, error: ParseError) -> None:
        slot = self._slot(error.seq)
        slot.failed = True
        slot.parsed = None
        self.errors.append(error)

    def drop_unsettled(self) -> list[PendingMail]:
        """Give up on every message still missing its identity or body."""
        dropped = self.unsettled()
        for slot in dropped:
            slot.failed = True
        return dropped

    # ------------------------------------------------------------------
    # Completion
    # ------------------------------------------------------------------

    def _try_complete(self, slot: PendingMail) -> MailRecord | None:
        if slot.failed or slot.seq in self._completed:
            return None
        if not slot.identified or slot.parsed is None:
            return None

        parsed = slot.parsed
        record = MailRecord(
            identity=MessageIdentity(seq=slot.seq, uid=slot.uid),
            headers=parsed.headers,
            subject=parsed.subject,
            from_=parsed.from_,
            to=parsed.to,
            date=parsed.date if parsed.date is not None else NOT_AVAILABLE,
            text=parsed.text,
            html=parsed.html,
            attachments=tuple(self._attachments(slot, parsed)),
        )
        self._completed[slot.seq] = record
        return record

    def _attachments(self, slot: PendingMail, parsed: ParsedMail) -> list[AttachmentDescriptor]:
        if self._attachment_source == "parsed":
            return parsed.attachments
        if slot.structure is None:
            logger.warning("bodystructure_missing", seq=slot.seq, uid=slot.uid)
            return parsed.attachments

        by_part = {att.part_id: att for att in parsed.attachments if att.part_id}
        resolved: list[AttachmentDescriptor] = []
        for descriptor in find_attachments(slot.structure):
            source = by_part.get(descriptor.part_id)
            if source is None:
                logger.warning(
                    "attachment_part_missing",
                    seq=slot.seq,
                    uid=slot.uid,
                    part_id=descriptor.part_id,
                    filename=descriptor.filename,
                )
                continue
            resolved.append(
                replace(
                    descriptor,
                    filename=descriptor.filename or source.filename,
                    content=source.content,
                    size=len(source.content),
                )
            )
        return resolved

    def records(self) -> list[MailRecord]:
        """Completed records in ascending UID order."""
        return sorted(
            self._completed.values(),
            key=lambda record: (record.uid if record.uid is not None else -1, record.seq),
        )


# ------------------------------------------------------------------
# Collector
# ------------------------------------------------------------------


class MessageCollector:
    """Drives one retrieval call end-to-end over a :class:`MailSession`."""

    def __init__(
        self,
        session: MailSession,
        parser: MimeParser | None = None,
        *,
        attachment_source: AttachmentSource = "parsed",
        allow_partial: bool = False,
        timeout_seconds: float | None = None,
    ) -> None:
        self._session = session
        self._parser = parser or MimeParser()
        self._attachment_source = attachment_source
        self._allow_partial = allow_partial
        self._timeout_seconds = timeout_seconds

    @classmethod
    def from_config(cls, session: MailSession, config: FetchConfig) -> MessageCollector:
        return cls(
            session,
            attachment_source=config.attachment_source,
            allow_partial=config.allow_partial,
            timeout_seconds=config.timeout_seconds,
        )

    async def fetch(
        self,
        folder: str,
        search_filter: TimeRangeFilter | None = None,
        *,
        deadline: float | None = None,
        allow_partial: bool | None = None,
    ) -> FetchResult:
        """Return the completed records of *folder* matching *search_filter*.

        Raises :class:`InvalidFilterError`, :class:`FolderOpenError`,
        :class:`SearchError`, or :class:`FetchError` (unless partial
        results are allowed).  Messages that fail to parse are dropped and
        reported in ``FetchResult.errors``; an expired *deadline* returns
        whatever completed with ``timed_out`` set.
        """
        search_filter = search_filter or TimeRangeFilter()
        deadline = deadline if deadline is not None else self._timeout_seconds
        partial_ok = self._allow_partial if allow_partial is None else allow_partial
        log = logger.bind(folder=folder, time_range=str(search_filter.time_range))

        try:
            await self._session.open_folder(folder, readonly=True)
        except OSError as exc:
            raise FolderOpenError(folder, str(exc)) from exc

        query = build_search_query(search_filter)

        try:
            uids = await self._session.search(query)
        except OSError as exc:
            raise SearchError(str(exc)) from exc

        if not uids:
            log.info("mail_search_empty", criteria=query.to_imap())
            return FetchResult()

        # Most recent N: the tail of the server's ascending result list.
        selected = uids[-search_filter.limit :] if search_filter.limit else list(uids)
        log.info("mail_fetch_started", matched=len(uids), selected=len(selected))

        join = MessageJoin(self._attachment_source)
        result = FetchResult()
        fetch_error: FetchError | None = None

        timeout = asyncio.timeout(deadline)
        try:
            async with timeout:
                fetch_error = await self._collect(selected, join)
        except TimeoutError:
            if not timeout.expired():
                raise
            abandoned = join.drop_unsettled()
            timeout_error = FetchTimeoutError(deadline or 0.0, len(abandoned))
            log.warning(
                "mail_fetch_deadline_exceeded",
                deadline=deadline,
                unsettled=len(abandoned),
            )
            for slot in abandoned:
                log.warning(
                    "mail_abandoned_at_deadline",
                    seq=slot.seq,
                    uid=slot.uid,
                    has_identity=slot.identified,
                    has_body=slot.body_ended,
                )
            result.timed_out = True
            result.errors.append(timeout_error)
        else:
            self._report_unsettled(join, selected, log)

        if fetch_error is not None:
            if not partial_ok:
                raise fetch_error
            log.warning("mail_fetch_partial", error=str(fetch_error))
            result.errors.append(fetch_error)

        result.records = join.records()
        result.errors[:0] = join.errors
        log.info(
            "mail_fetch_complete",
            records=len(result.records),
            failed=len(join.errors),
            timed_out=result.timed_out,
        )
        return result

    async def _collect(self, uids: list[int], join: MessageJoin) -> FetchError | None:
        """Consume the event stream; returns once every parse has settled.

        The TaskGroup only exits after each spawned parse task finished,
        which together with the end-of-fetch signal is the completion gate.
        """
        async with asyncio.TaskGroup() as tg:
            async with self._session.fetch(uids) as events:
                try:
                    async for event in events:
                        match event:
                            case AttributesEvent():
                                join.apply_attributes(event)
                            case BodyChunkEvent(seq=seq, data=data):
                                join.append_body(seq, data)
                            case BodyEndEvent(seq=seq):
                                raw = join.end_body(seq)
                                if raw is not None:
                                    tg.create_task(self._parse(join, seq, raw))
                            case FetchEndEvent():
                                break
                            case FetchErrorEvent(error=error):
                                return self._as_fetch_error(error)
                except (FetchError, OSError) as exc:
                    return self._as_fetch_error(exc)
        return None

    async def _parse(self, join: MessageJoin, seq: int, raw: bytes) -> None:
        try:
            parsed = await asyncio.to_thread(self._parser.parse, raw)
        except Exception as exc:
            error = ParseError(seq, str(exc), uid=join.uid_of(seq))
            join.fail(error)
            logger.warning(
                "mail_parse_failed",
                seq=seq,
                uid=error.uid,
                size=len(raw),
                error=str(exc),
            )
            return
        join.apply_parsed(seq, parsed)

    @staticmethod
    def _as_fetch_error(error: BaseException) -> FetchError:
        if isinstance(error, FetchError):
            return error
        wrapped = FetchError(str(error))
        wrapped.__cause__ = error
        return wrapped

    @staticmethod
    def _report_unsettled(join: MessageJoin, uids: list[int], log: structlog.stdlib.BoundLogger) -> None:
        for slot in join.drop_unsettled():
            log.warning(
                "mail_incomplete_dropped",
                seq=slot.seq,
                uid=slot.uid,
                has_identity=slot.identified,
                has_body=slot.body_ended,
            )
        if join.observed < len(uids):
            log.warning(
                "mail_missing_from_fetch",
                requested=len(uids),
                observed=join.observed,
            )


async def fetch_mail_list(
    session: MailSession,
    folder: str = "INBOX",
    search_filter: TimeRangeFilter | None = None,
    *,
    deadline: float | None = None,
    attachment_source: AttachmentSource = "parsed",
    allow_partial: bool = False,
) -> FetchResult:
    """One-shot helper around :meth:`MessageCollector.fetch`."""
    collector = MessageCollector(
        session,
        attachment_source=attachment_source,
        allow_partial=allow_partial,
    )
    return await collector.fetch(folder, search_filter, deadline=deadline)
