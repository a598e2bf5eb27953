"""Harvester configuration loaded from environment variables.

Uses pydantic-settings so every field can be overridden via env vars.
Each section reads its own prefix (``IMAP_``, ``FETCH_``, ...).
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings


class ImapConfig(BaseSettings):
    """IMAP server connection settings."""

    model_config = {"env_prefix": "IMAP_"}

    host: str = Field(description="IMAP server hostname")
    port: int = Field(default=993, description="IMAP server port")
    use_ssl: bool = Field(default=True, description="Use SSL/TLS connection")
    username: str = Field(description="IMAP login username")
    password: SecretStr = Field(description="IMAP login password")
    timeout_seconds: float | None = Field(
        default=30.0,
        description="Socket timeout for the IMAP connection",
    )


class RetryConfig(BaseSettings):
    """Retry / backoff settings for establishing the IMAP connection."""

    model_config = {"env_prefix": "RETRY_"}

    max_attempts: int = Field(default=3, description="Maximum connection attempts")
    initial_wait_seconds: float = Field(
        default=1.0,
        description="Initial backoff wait in seconds",
    )
    max_wait_seconds: float = Field(
        default=30.0,
        description="Maximum backoff wait in seconds",
    )
    multiplier: float = Field(default=2.0, description="Exponential backoff multiplier")


class FetchConfig(BaseSettings):
    """What to retrieve and how long to wait for it."""

    model_config = {"env_prefix": "FETCH_"}

    folder: str = Field(default="INBOX", description="Folder to retrieve messages from")
    time_range: str = Field(
        default="none",
        description="today, yesterday, thisWeek, last7days, thisMonth, lastMonth or none",
    )
    limit: int | None = Field(
        default=None,
        description="Keep only the N most recent matches",
    )
    timeout_seconds: float | None = Field(
        default=None,
        description="Deadline for a whole fetch call; unbounded when unset",
    )
    attachment_source: Literal["parsed", "structure"] = Field(
        default="parsed",
        description="Take attachments from the parsed body or from BODYSTRUCTURE",
    )
    allow_partial: bool = Field(
        default=False,
        description="Return completed records instead of raising on a transport fault",
    )


class AttachmentConfig(BaseSettings):
    """Where and how attachments are written."""

    model_config = {"env_prefix": "ATTACHMENTS_"}

    output_dir: Path = Field(
        default=Path("./attachments"),
        description="Root directory for extracted attachments",
    )
    classify_by_date: bool = Field(
        default=True,
        description="Write into MM-DD subfolders derived from each message date",
    )


class HarvestConfig(BaseSettings):
    """Root configuration for a harvester run.

    Nested configs are populated from their own env-var prefixes.
    """

    model_config = {"env_prefix": "HARVEST_"}

    log_json: bool = Field(default=True, description="Emit JSON log lines")
    log_level: str = Field(default="INFO", description="Root log level name")
    log_stream: Literal["stdout", "stderr"] = Field(
        default="stderr",
        description="Stream log lines are written to",
    )
    log_protocol_level: str = Field(
        default="WARNING",
        description="Level for the IMAP library's protocol loggers",
    )

    imap: ImapConfig = Field(default_factory=ImapConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    fetch: FetchConfig = Field(default_factory=FetchConfig)
    attachments: AttachmentConfig = Field(default_factory=AttachmentConfig)
