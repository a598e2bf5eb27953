"""Tests for imap_harvest.logging."""

from __future__ import annotations

import io
import json
import logging

import structlog

from imap_harvest.config import HarvestConfig, ImapConfig
from imap_harvest.logging import run_context, setup_logging, setup_logging_from_config


def _config(**kwargs) -> HarvestConfig:
    return HarvestConfig(
        imap=ImapConfig(host="imap.test.com", username="harvester", password="p"),
        **kwargs,
    )


def _lines(buffer: io.StringIO) -> list[dict]:
    return [json.loads(line) for line in buffer.getvalue().splitlines()]


class TestSetupLogging:
    def test_json_mode(self):
        setup_logging(json=True, level="INFO")
        root = logging.getLogger()
        assert root.level == logging.INFO
        assert len(root.handlers) == 1

    def test_console_mode(self):
        setup_logging(json=False, level="DEBUG")
        root = logging.getLogger()
        assert root.level == logging.DEBUG

    def test_level_case_insensitive(self):
        setup_logging(level="warning")
        root = logging.getLogger()
        assert root.level == logging.WARNING

    def test_replaces_existing_handlers(self):
        root = logging.getLogger()
        root.addHandler(logging.StreamHandler())
        root.addHandler(logging.StreamHandler())
        assert len(root.handlers) >= 2
        setup_logging()
        assert len(root.handlers) == 1

    def test_defaults_to_stderr(self, capsys):
        setup_logging(json=True, level="DEBUG")
        structlog.get_logger("test_logger").info("attachment_written", filename="简历.pdf")

        captured = capsys.readouterr()
        assert captured.out == ""
        line = captured.err.strip().splitlines()[-1]
        assert "简历.pdf" in line
        payload = json.loads(line)
        assert payload["event"] == "attachment_written"
        assert payload["level"] == "info"
        assert payload["logger"] == "test_logger"

    def test_explicit_stream(self):
        buffer = io.StringIO()
        setup_logging(json=True, stream=buffer)
        structlog.get_logger("test_logger").warning("mail_parse_failed", seq=4)

        (payload,) = _lines(buffer)
        assert payload["event"] == "mail_parse_failed"
        assert payload["seq"] == 4

    def test_protocol_loggers_kept_quiet(self):
        setup_logging(level="DEBUG")
        assert logging.getLogger("imapclient").level == logging.WARNING

        setup_logging(level="INFO", protocol_level="debug")
        assert logging.getLogger("imapclient").level == logging.DEBUG

    def test_stdlib_records_rendered_as_json(self):
        buffer = io.StringIO()
        setup_logging(json=True, stream=buffer)
        logging.getLogger("imapclient").warning("server sent BYE")

        (payload,) = _lines(buffer)
        assert payload["event"] == "server sent BYE"
        assert payload["level"] == "warning"
        assert payload["logger"] == "imapclient"


class TestSetupLoggingFromConfig:
    def test_stdout_stream_and_level(self, capsys):
        setup_logging_from_config(_config(log_stream="stdout", log_level="DEBUG"))
        structlog.get_logger().debug("folder_opened", folder="INBOX")

        captured = capsys.readouterr()
        assert json.loads(captured.out.strip())["folder"] == "INBOX"
        assert captured.err == ""
        assert logging.getLogger().level == logging.DEBUG

    def test_console_renderer(self, capsys):
        setup_logging_from_config(_config(log_json=False))
        structlog.get_logger().info("harvest_complete", records=2)

        err = capsys.readouterr().err
        assert "harvest_complete" in err
        assert "records" in err


class TestRunContext:
    def test_lines_tagged_inside_block_only(self):
        buffer = io.StringIO()
        setup_logging(json=True, stream=buffer)
        log = structlog.get_logger("test_logger")

        with run_context("fetch", _config(), folder="Archive"):
            log.info("mail_fetch_started")
        log.info("after_run")

        inside, after = _lines(buffer)
        assert inside["command"] == "fetch"
        assert inside["host"] == "imap.test.com"
        assert inside["user"] == "harvester"
        assert inside["folder"] == "Archive"
        assert "command" not in after
        assert "host" not in after
