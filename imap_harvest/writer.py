"""AttachmentWriter — persist attachment bytes of completed records to a
local directory tree, optionally split into ``MM-DD`` subfolders.

All filesystem calls are wrapped with ``asyncio.to_thread()`` to avoid
blocking.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Iterable
from datetime import datetime
from pathlib import Path

import structlog

from .config import AttachmentConfig
from .exceptions import DirectoryError, WriteError
from .filenames import dedupe_filename, resolve_filename
from .models import MailRecord, WriteReport

logger = structlog.get_logger()


def date_folder(record: MailRecord, now: datetime) -> str:
    """``MM-DD`` of the record's own date, or of *now* when it has none."""
    when = record.date if isinstance(record.date, datetime) else now
    return f"{when.month:02d}-{when.day:02d}"


class AttachmentWriter:
    """Write every attachment of a batch of records; one bad file never
    stops the others."""

    def __init__(
        self,
        config: AttachmentConfig,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._config = config
        self._clock = clock

    async def write(self, records: Iterable[MailRecord]) -> WriteReport:
        """Write attachments of *records*.

        Raises :class:`DirectoryError` if the output directory cannot be
        created.  Per-file failures are logged and collected in the
        returned report.
        """
        output_dir = Path(self._config.output_dir)
        try:
            await asyncio.to_thread(output_dir.mkdir, parents=True, exist_ok=True)
        except OSError as exc:
            raise DirectoryError(output_dir, str(exc)) from exc

        report = WriteReport()
        # names already used per directory within this call
        taken: dict[Path, set[str]] = {}

        for record in records:
            if not record.attachments:
                continue

            target_dir = output_dir
            if self._config.classify_by_date:
                target_dir = output_dir / date_folder(record, self._clock())
                try:
                    await asyncio.to_thread(target_dir.mkdir, parents=True, exist_ok=True)
                except OSError as exc:
                    self._fail_record(record, target_dir, str(exc), report)
                    continue

            used = taken.setdefault(target_dir, set())
            for attachment in record.attachments:
                name = dedupe_filename(resolve_filename(attachment, record.uid, self._clock()), used)
                used.add(name)
                path = target_dir / name
                try:
                    await asyncio.to_thread(path.write_bytes, attachment.content)
                except (OSError, ValueError) as exc:
                    error = WriteError(path, attachment.filename, str(exc))
                    logger.warning(
                        "attachment_write_failed",
                        seq=record.seq,
                        uid=record.uid,
                        filename=attachment.filename,
                        path=str(path),
                        error=str(exc),
                    )
                    report.errors.append(error)
                    continue

                report.written.append(path)
                logger.debug(
                    "attachment_written",
                    uid=record.uid,
                    path=str(path),
                    size=len(attachment.content),
                )

        logger.info(
            "attachments_written",
            output_dir=str(output_dir),
            written=len(report.written),
            failed=len(report.errors),
        )
        return report

    def _fail_record(
        self,
        record: MailRecord,
        target_dir: Path,
        reason: str,
        report: WriteReport,
    ) -> None:
        for attachment in record.attachments:
            report.errors.append(WriteError(target_dir, attachment.filename, reason))
        logger.warning(
            "attachment_folder_failed",
            seq=record.seq,
            uid=record.uid,
            path=str(target_dir),
            skipped=len(record.attachments),
            error=reason,
        )
