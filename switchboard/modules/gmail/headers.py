"""
Header parsing utilities for Gmail thread metadata.

Gmail API returns headers as a list of dicts: [{"name": "From", "value": "..."}].
"""

import logging
import re
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Dict, List, Optional

from dateutil import parser as date_parser

from switchboard.models.thread import ParsedFrom, ThreadMetadata

logger = logging.getLogger(__name__)

_FROM_WITH_NAME = re.compile(r'^"?([^"<]*)"?\s*<([^>]+)>$')


def extract_header(headers: Optional[List[Dict]], name: str) -> str:
    """
    Extract a header value by case-insensitive name.

    Returns:
        Header value, or "" if not present

    Usage:
        subject = extract_header(message["payload"]["headers"], "Subject")
    """
    if not headers:
        return ""

    name_lower = name.lower()
    for header in headers:
        if str(header.get("name", "")).lower() == name_lower:
            return header.get("value") or ""

    return ""


def parse_from(from_header: Optional[str]) -> ParsedFrom:
    """
    Parse a From header into display name and address.

    Handles:
    - 'John Doe <john@example.com>'   -> ("John Doe", "john@example.com")
    - '"Doe, John" <john@example.com>' -> ("Doe, John", "john@example.com")
    - '<john@example.com>'            -> ("", "john@example.com")
    - 'john@example.com'              -> ("", "john@example.com")

    Anything else is kept whole as the address.
    """
    if not from_header:
        return ParsedFrom(name="", email="")

    trimmed = from_header.strip()

    match = _FROM_WITH_NAME.match(trimmed)
    if match:
        return ParsedFrom(name=match.group(1).strip(), email=match.group(2).strip())

    if trimmed.startswith("<") and trimmed.endswith(">"):
        return ParsedFrom(name="", email=trimmed[1:-1].strip())

    return ParsedFrom(name="", email=trimmed)


def _to_iso(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    utc = value.astimezone(timezone.utc)
    return utc.strftime("%Y-%m-%dT%H:%M:%S.") + f"{utc.microsecond // 1000:03d}Z"


def parse_date(date_header: Optional[str]) -> str:
    """
    Convert an RFC 2822 Date header to ISO 8601 (UTC, millisecond precision).

    Unparseable values are returned unchanged so nothing is lost.

    Usage:
        parse_date("Mon, 15 Jan 2024 10:30:00 +0000")  # "2024-01-15T10:30:00.000Z"
    """
    if not date_header:
        return ""

    try:
        return _to_iso(parsedate_to_datetime(date_header))
    except (TypeError, ValueError, IndexError):
        pass

    # Lenient fallback for non-RFC formats some mailers emit
    try:
        return _to_iso(date_parser.parse(date_header))
    except (ValueError, OverflowError):
        logger.debug("Unparseable Date header kept verbatim", extra={"date_header": date_header[:64]})
        return date_header


def _union_labels(messages: List[Dict[str, Any]]) -> List[str]:
    labels: List[str] = []
    seen = set()
    for message in messages:
        for label in message.get("labelIds") or []:
            if label not in seen:
                seen.add(label)
                labels.append(label)
    return labels


def extract_thread_metadata(thread: Dict[str, Any]) -> ThreadMetadata:
    """
    Build list-view metadata from a Gmail thread (format=metadata).

    Subject/From/To come from the first message (thread origin); date and
    snippet come from the last message (most recent activity). Labels are
    the union over all messages.
    """
    messages = thread.get("messages") or []
    first = messages[0] if messages else {}
    last = messages[-1] if messages else {}

    first_headers = (first.get("payload") or {}).get("headers") or []
    last_headers = (last.get("payload") or {}).get("headers") or []

    snippet = last.get("snippet")
    if snippet is None:
        snippet = first.get("snippet") or ""

    return ThreadMetadata(
        id=thread.get("id", ""),
        subject=extract_header(first_headers, "Subject") or "(no subject)",
        from_=parse_from(extract_header(first_headers, "From")),
        to=extract_header(first_headers, "To"),
        date=parse_date(extract_header(last_headers, "Date")),
        snippet=snippet,
        label_ids=_union_labels(messages),
        message_count=len(messages),
    )
