"""imap-harvest — fetch mail over IMAP and extract attachments to disk."""

from .bodystructure import CompositePart, Disposition, LeafPart, find_attachments, parse_bodystructure
from .collector import MessageCollector, MessageJoin, fetch_mail_list
from .config import AttachmentConfig, FetchConfig, HarvestConfig, ImapConfig, RetryConfig
from .criteria import SearchQuery, TimeRange, TimeRangeFilter, build_search_query, format_imap_date
from .encoded_words import decode_encoded_words
from .exceptions import (
    DirectoryError,
    FetchError,
    FetchTimeoutError,
    FolderListError,
    FolderOpenError,
    HarvestError,
    InvalidFilterError,
    ParseError,
    SearchError,
    SessionStateError,
    WriteError,
)
from .filenames import resolve_filename, sanitize_filename
from .imap_client import AsyncImapClient
from .logging import run_context, setup_logging, setup_logging_from_config
from .models import (
    AttachmentDescriptor,
    FetchResult,
    FolderNode,
    MailRecord,
    MessageIdentity,
    WriteReport,
)
from .parser import MimeParser, ParsedMail
from .session import MailSession
from .writer import AttachmentWriter

__all__ = [
    "AsyncImapClient",
    "AttachmentConfig",
    "AttachmentDescriptor",
    "AttachmentWriter",
    "CompositePart",
    "DirectoryError",
    "Disposition",
    "FetchConfig",
    "FetchError",
    "FetchResult",
    "FetchTimeoutError",
    "FolderListError",
    "FolderNode",
    "FolderOpenError",
    "HarvestConfig",
    "HarvestError",
    "ImapConfig",
    "InvalidFilterError",
    "LeafPart",
    "MailRecord",
    "MailSession",
    "MessageCollector",
    "MessageIdentity",
    "MessageJoin",
    "MimeParser",
    "ParseError",
    "ParsedMail",
    "RetryConfig",
    "SearchError",
    "SearchQuery",
    "SessionStateError",
    "TimeRange",
    "TimeRangeFilter",
    "WriteError",
    "WriteReport",
    "build_search_query",
    "decode_encoded_words",
    "fetch_mail_list",
    "find_attachments",
    "format_imap_date",
    "parse_bodystructure",
    "resolve_filename",
    "run_context",
    "sanitize_filename",
    "setup_logging",
    "setup_logging_from_config",
]
