"""Best-effort RFC 2047 encoded-word decoding for filenames and subjects.

Only UTF-8 and single-byte charsets with the ``B`` and ``Q`` encodings are
understood.  Anything malformed passes through as literal text.
"""

from __future__ import annotations

import base64
import binascii
import re

_BOUNDARY_RE = re.compile(r"(?==\?[^?]+\?[A-Za-z]\?[^?]*\?=)")
_ENCODED_WORD_RE = re.compile(r"=\?([^?]+)\?([A-Za-z])\?([^?]*)\?=")
_QP_ESCAPE_RE = re.compile(rb"=([0-9A-Fa-f]{2})")


def _to_text(raw: bytes, charset: str) -> str:
    if charset.lower() == "utf-8":
        return raw.decode("utf-8", errors="replace")
    return raw.decode("latin-1")


def _decode_word(match: re.Match[str]) -> str:
    charset, encoding, payload = match.groups()
    encoding = encoding.upper()

    if encoding == "B":
        try:
            raw = base64.b64decode(payload, validate=True)
        except (binascii.Error, ValueError):
            return match.group(0)
    elif encoding == "Q":
        try:
            data = payload.encode("latin-1")
        except UnicodeEncodeError:
            return match.group(0)
        raw = _QP_ESCAPE_RE.sub(lambda m: bytes([int(m.group(1), 16)]), data)
    else:
        return match.group(0)

    return _to_text(raw, charset)


def decode_encoded_words(text: str) -> str:
    """Decode every ``=?charset?enc?payload?=`` segment in *text*.

    Literal text between encoded words is kept as-is and the result is
    stripped of surrounding whitespace.  Never raises.
    """
    segments = _BOUNDARY_RE.split(text)
    decoded = [_ENCODED_WORD_RE.sub(_decode_word, segment, count=1) for segment in segments]
    return "".join(decoded).strip()
