"""
MIME part-tree traversal for Gmail messages (format=full).

A message payload is a recursive tree:

    multipart/mixed
      +-- multipart/alternative
      |     +-- text/plain          <- fallback
      |     +-- text/html           <- preferred
      +-- application/pdf           <- attachment (filename + attachmentId)

Leaves carry base64url data in body.data; large attachments carry a
body.attachmentId instead and are fetched separately.
"""

import base64
import logging
import re
from typing import List, NamedTuple, Optional

from pydantic import BaseModel, ConfigDict, Field

from switchboard.models.thread import AttachmentInfo
from switchboard.modules.gmail.sanitize import sanitize_email_html

logger = logging.getLogger(__name__)

_NON_BASE64URL = re.compile(r"[^A-Za-z0-9_-]")


class PartBody(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    data: Optional[str] = None
    attachment_id: Optional[str] = Field(default=None, alias="attachmentId")
    size: Optional[int] = None


class PartHeader(BaseModel):
    name: str
    value: str = ""


class MessagePart(BaseModel):
    """One node of a Gmail payload tree (container when parts is non-empty)."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    mime_type: str = Field(default="", alias="mimeType")
    filename: str = ""
    headers: List[PartHeader] = Field(default_factory=list)
    body: Optional[PartBody] = None
    parts: Optional[List["MessagePart"]] = None

    @property
    def is_leaf(self) -> bool:
        return not self.parts

    @property
    def data(self) -> Optional[str]:
        return self.body.data if self.body and self.body.data else None


class MessageBody(NamedTuple):
    body: str
    body_type: str  # "html" or "text"


def decode_base64url(data: str) -> str:
    """
    Decode Gmail's unpadded base64url into UTF-8 text (invalid bytes replaced).

    Never raises: characters outside the alphabet are skipped and a dangling
    final character, which cannot complete a byte, is dropped.
    """
    cleaned = _NON_BASE64URL.sub("", data.replace("+", "-").replace("/", "_"))
    if len(cleaned) % 4 == 1:
        cleaned = cleaned[:-1]
    if len(cleaned) != len(data.rstrip("=")):
        logger.warning("Malformed base64url body data", extra={"length": len(data)})

    padded = cleaned + "=" * (-len(cleaned) % 4)
    return base64.urlsafe_b64decode(padded).decode("utf-8", errors="replace")


def find_part(part: MessagePart, mime_type: str) -> Optional[str]:
    """
    Depth-first search for the first part of `mime_type` with body data.

    Returns:
        The part's base64url data, or None if no such part exists
    """
    if part.mime_type == mime_type and part.data:
        return part.data

    for child in part.parts or []:
        found = find_part(child, mime_type)
        if found:
            return found

    return None


def extract_body(payload: MessagePart) -> MessageBody:
    """
    Pick the readable body of a message.

    Preference: text/html (sanitized), then text/plain (verbatim), else an
    empty text body (attachment-only messages).
    """
    # Single-part message: the body sits directly on the payload
    if payload.is_leaf and payload.data:
        decoded = decode_base64url(payload.data)
        if payload.mime_type == "text/html":
            return MessageBody(sanitize_email_html(decoded), "html")
        return MessageBody(decoded, "text")

    html_data = find_part(payload, "text/html")
    if html_data:
        return MessageBody(sanitize_email_html(decode_base64url(html_data)), "html")

    plain_data = find_part(payload, "text/plain")
    if plain_data:
        return MessageBody(decode_base64url(plain_data), "text")

    return MessageBody("", "text")


def extract_attachments(payload: MessagePart, message_id: str) -> List[AttachmentInfo]:
    """
    Collect downloadable attachments in tree order.

    A part qualifies only with both a filename and a body.attachmentId;
    inline CID images have a filename but no attachmentId.
    """
    attachments: List[AttachmentInfo] = []

    def walk(part: MessagePart) -> None:
        if part.filename and part.body and part.body.attachment_id:
            attachments.append(AttachmentInfo(
                filename=part.filename,
                mime_type=part.mime_type or "application/octet-stream",
                size=part.body.size or 0,
                attachment_id=part.body.attachment_id,
                message_id=message_id,
            ))
        for child in part.parts or []:
            walk(child)

    walk(payload)
    return attachments
