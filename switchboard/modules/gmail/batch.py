"""
Gmail batch protocol codec (multipart/mixed).

Google's batch endpoint accepts up to 100 API calls in one HTTP request.
Each call is an HTTP request embedded in a multipart section:

    --batch_switchboard_1700000000000
    Content-Type: application/http
    Content-Transfer-Encoding: binary

    GET /gmail/v1/users/me/threads/abc?format=metadata

    --batch_switchboard_1700000000000--

The response mirrors this: one section per call, in request order, each
carrying an HTTP status line, headers and a JSON body.

Decoding never raises. Malformed sections are logged and skipped, and a
response whose boundary cannot be determined decodes to nothing.

See: https://developers.google.com/gmail/api/guides/batch
"""

import json
import logging
import re
import time
from dataclasses import dataclass
from typing import Any, List, NamedTuple, Optional, Sequence

logger = logging.getLogger(__name__)

BATCH_MAX_SIZE = 100
CRLF = "\r\n"

_BOUNDARY_PARAM = re.compile(r"boundary=([^\s;]+)")
_JSON_BODY = re.compile(r"\{[\s\S]*\}")
_STATUS_LINE = re.compile(r"HTTP/[\d.]+ (\d{3})")


class BatchRequest(NamedTuple):
    """One logical call inside a batch (path is relative to the API host)."""

    method: str
    path: str


class EncodedBatch(NamedTuple):
    body: str
    boundary: str


@dataclass
class BatchPart:
    """
    One decoded response section.

    status is None when no HTTP status line was found; payload is None when
    the section had no parseable JSON object.
    """

    status: Optional[int]
    payload: Optional[Any]
    raw: str

    @property
    def ok(self) -> bool:
        return self.status == 200


def new_boundary(prefix: str = "batch_switchboard") -> str:
    return f"{prefix}_{int(time.time() * 1000)}"


def encode_batch(requests: Sequence[BatchRequest], boundary: Optional[str] = None) -> EncodedBatch:
    """
    Encode logical requests into a multipart/mixed batch body.

    Args:
        requests: At most BATCH_MAX_SIZE requests (callers chunk larger sets)
        boundary: Explicit boundary (generated when omitted)

    Returns:
        EncodedBatch(body, boundary); send with
        Content-Type: multipart/mixed; boundary=<boundary>

    Raises:
        ValueError: If more than BATCH_MAX_SIZE requests are given
    """
    if len(requests) > BATCH_MAX_SIZE:
        raise ValueError(
            f"Batch of {len(requests)} requests exceeds the limit of {BATCH_MAX_SIZE}; "
            f"split it before encoding"
        )

    boundary = boundary or new_boundary()
    sections = [
        f"--{boundary}{CRLF}"
        f"Content-Type: application/http{CRLF}"
        f"Content-Transfer-Encoding: binary{CRLF}"
        f"{CRLF}"
        f"{request.method.upper()} {request.path}{CRLF}"
        f"{CRLF}"
        for request in requests
    ]
    body = "".join(sections) + f"--{boundary}--{CRLF}"
    return EncodedBatch(body=body, boundary=boundary)


def boundary_from_content_type(content_type: Optional[str]) -> Optional[str]:
    """Extract the boundary parameter from a multipart Content-Type header."""
    if not content_type:
        return None
    match = _BOUNDARY_PARAM.search(content_type)
    if not match:
        return None
    return match.group(1).strip('"')


def _separator(text: str, boundary: Optional[str]) -> Optional[str]:
    if boundary:
        return f"--{boundary}"

    # Fallback: the first body line should be the opening delimiter
    first_line = text.split("\n", 1)[0].strip()
    if not first_line.startswith("--"):
        logger.error(
            "Could not parse batch response boundary",
            extra={"preview": text[:200]}
        )
        return None
    return first_line


def split_parts(text: str, boundary: Optional[str] = None) -> Optional[List[str]]:
    """
    Split a batch response into its sections.

    Returns:
        Non-empty sections in response order (closing delimiter excluded),
        or None when no boundary can be determined
    """
    if not text:
        return None

    separator = _separator(text, boundary)
    if separator is None:
        return None

    return [
        part for part in text.split(separator)
        if part.strip() and part.strip() != "--"
    ]


def decode_part(raw: str) -> BatchPart:
    """Extract the embedded HTTP status and JSON object from one section."""
    status_match = _STATUS_LINE.search(raw)
    status = int(status_match.group(1)) if status_match else None

    payload = None
    json_match = _JSON_BODY.search(raw)
    if json_match:
        try:
            payload = json.loads(json_match.group(0))
        except ValueError:
            payload = None

    return BatchPart(status=status, payload=payload, raw=raw)


def decode_batch(text: str, boundary: Optional[str] = None) -> List[BatchPart]:
    """
    Decode every section of a batch response, in order.

    Failed and unparseable sections are kept (status and payload tell them
    apart); decode_batch_results() keeps only the valid results.

    Never raises; returns [] for empty input or an undeterminable boundary.
    """
    parts = split_parts(text, boundary)
    if parts is None:
        return []
    return [decode_part(part) for part in parts]


def successful_payloads(parts: Sequence[BatchPart]) -> List[Any]:
    """Keep the JSON payloads of HTTP 200 sections; log and skip the rest."""
    payloads = []
    for index, part in enumerate(parts):
        if not part.ok:
            logger.warning(
                "Batch part returned non-200 status, skipping",
                extra={"part_index": index, "status": part.status}
            )
            continue
        if part.payload is None:
            logger.warning(
                "Failed to parse batch part JSON, skipping",
                extra={"part_index": index}
            )
            continue
        payloads.append(part.payload)
    return payloads


def decode_batch_results(text: str, boundary: Optional[str] = None) -> List[Any]:
    """
    Decode a batch response down to its valid results, in order.

    Only HTTP 200 sections with a parseable JSON body survive; everything
    else is logged and dropped. Never raises.
    """
    return successful_payloads(decode_batch(text, boundary))


def decode_positional(
    text: str,
    count: int,
    boundary: Optional[str] = None,
) -> Optional[List[Optional[BatchPart]]]:
    """
    Decode a response whose sections correlate to requests by position.

    Section i answers request i. The result always has `count` entries;
    entry i is None when the response was truncated before section i.

    Returns:
        List of length `count`, or None when no boundary can be determined
    """
    parts = split_parts(text, boundary)
    if parts is None:
        return None

    decoded: List[Optional[BatchPart]] = []
    for index in range(count):
        decoded.append(decode_part(parts[index]) if index < len(parts) else None)
    return decoded


def chunked(items: Sequence, size: int = BATCH_MAX_SIZE) -> List[Sequence]:
    """Split items into consecutive chunks of at most `size`."""
    return [items[i:i + size] for i in range(0, len(items), size)]
