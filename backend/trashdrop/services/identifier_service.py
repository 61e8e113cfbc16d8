# Overview: Turns scanned QR text into a canonical batch lookup key.

"""
Identifier Service - scanned text -> canonical batch key

WHY: The same batch reaches us as a bare UUID, a printed "BATCH-xxxx" code,
a https deep link, or a custom-scheme link (trashdrop://scan?batch_id=...)
depending on which printer, app version or scanner produced it. Every
downstream cache and queue is keyed by the normalized value, so this must be
deterministic and must never raise.

ORDER (first match wins):
1. Trim + URL-decode (decode failures fall back to the raw text)
2. URI-looking input: parse as a URL (custom schemes rewritten to https)
   - known query parameters, in QUERY_PARAM_PRIORITY order
   - else last non-empty path segment, searched for BATCH-code / UUID
3. Plain text: BATCH-code, then UUID, then first token minus trailing punctuation
"""

from __future__ import annotations

import re
from urllib.parse import parse_qs, unquote, urlsplit


QUERY_PARAM_PRIORITY = (
    "code",
    "batch",
    "batch_id",
    "batchCode",
    "qr",
    "id",
    "batchNumber",
    "batch_qr_code",
)

BATCH_CODE_RE = re.compile(r"BATCH-[A-Za-z0-9_-]+", re.IGNORECASE)
UUID_RE = re.compile(
    r"[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}",
    re.IGNORECASE,
)
SCHEME_RE = re.compile(r"^([A-Za-z][A-Za-z0-9+.\-]*)://")
TRAILING_PUNCTUATION = ".,;:!?)]}>'\""


def is_uuid(value: str | None) -> bool:
    """True when value is exactly one UUID (any version, any case)."""
    if not value:
        return False
    return UUID_RE.fullmatch(str(value).strip()) is not None


def _safe_unquote(value: str) -> str:
    try:
        return unquote(value, errors="strict")
    except UnicodeDecodeError:
        return value


def extract_batch_code(text: str) -> str | None:
    """Find a BATCH-<token> code, then a UUID, anywhere in text."""
    match = BATCH_CODE_RE.search(text)
    if match:
        return match.group(0)
    match = UUID_RE.search(text)
    if match:
        return match.group(0)
    return None


def _from_url(text: str) -> str | None:
    scheme_match = SCHEME_RE.match(text)
    if not scheme_match:
        return None

    scheme = scheme_match.group(1).lower()
    if scheme not in ("http", "https"):
        # Parse-only rewrite; trashdrop://scan?x=1 -> https://scan?x=1
        text = "https://" + text[scheme_match.end():]

    try:
        parts = urlsplit(text)
        params = parse_qs(parts.query, keep_blank_values=True)
    except ValueError:
        return None

    for name in QUERY_PARAM_PRIORITY:
        for value in params.get(name, []):
            value = value.strip()
            if value:
                return value

    segments = [s for s in parts.path.split("/") if s.strip()]
    if not segments:
        return None

    segment = _safe_unquote(segments[-1]).strip()
    return extract_batch_code(segment) or segment


def _first_token(text: str) -> str:
    tokens = text.split()
    if not tokens:
        return ""
    return tokens[0].rstrip(TRAILING_PUNCTUATION)


def normalize_identifier(raw) -> str:
    """
    Normalize a scanned value to the key used for lookups, caching and queueing.

    Returns "" for empty input. Never raises.
    """
    if raw is None:
        return ""
    text = str(raw).strip()
    if not text:
        return ""

    text = _safe_unquote(text).strip()

    from_url = _from_url(text)
    if from_url:
        return from_url

    return extract_batch_code(text) or _first_token(text)
