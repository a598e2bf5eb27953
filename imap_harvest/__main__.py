"""Entry point for the harvester package.

Usage::

    python -m imap_harvest folders   # print the server's folder tree
    python -m imap_harvest fetch     # fetch FETCH_FOLDER, write attachments

Connection, filter, output and logging settings come from the environment
(see ``imap_harvest.config``).
"""

from __future__ import annotations

import asyncio
import sys

import structlog
from imapclient.exceptions import IMAPClientError

from .collector import MessageCollector
from .config import HarvestConfig
from .criteria import TimeRangeFilter
from .exceptions import HarvestError
from .imap_client import TRANSIENT_ERRORS, AsyncImapClient
from .logging import run_context, setup_logging_from_config
from .models import FolderNode
from .session import MailSession
from .writer import AttachmentWriter

logger = structlog.get_logger()


def _session(config: HarvestConfig) -> MailSession:
    return MailSession(
        AsyncImapClient(config.imap),
        retry=config.retry,
        transient_errors=TRANSIENT_ERRORS,
    )


def _print_tree(nodes: list[FolderNode], depth: int = 0) -> None:
    for node in nodes:
        print(f"{'  ' * depth}{node.name}")
        _print_tree(node.children, depth + 1)


async def list_folders(config: HarvestConfig) -> int:
    session = _session(config)
    with run_context("folders", config):
        try:
            async with session:
                _print_tree(await session.list_folders())
        except (HarvestError, OSError, IMAPClientError):
            logger.exception("folder_listing_failed")
            return 1
    return 0


async def harvest(config: HarvestConfig) -> int:
    """Fetch the configured folder and write its attachments."""
    session = _session(config)

    with run_context("fetch", config, folder=config.fetch.folder):
        try:
            search_filter = TimeRangeFilter(config.fetch.time_range, config.fetch.limit)
            async with session:
                collector = MessageCollector.from_config(session, config.fetch)
                result = await collector.fetch(config.fetch.folder, search_filter)
            report = await AttachmentWriter(config.attachments).write(result.records)
        except (HarvestError, OSError, IMAPClientError):
            logger.exception("harvest_failed")
            return 1

        logger.info(
            "harvest_complete",
            records=len(result),
            message_errors=len(result.errors),
            attachments_written=len(report.written),
            attachment_errors=len(report.errors),
        )
    return 0


def main() -> None:
    if len(sys.argv) < 2 or sys.argv[1] not in ("folders", "fetch"):
        print("Usage: python -m imap_harvest <folders|fetch>", file=sys.stderr)
        sys.exit(1)

    config = HarvestConfig()
    setup_logging_from_config(config)

    if sys.argv[1] == "folders":
        sys.exit(asyncio.run(list_folders(config)))
    sys.exit(asyncio.run(harvest(config)))


if __name__ == "__main__":
    main()
