"""
Thread models (Pydantic for validation and JSON shape, NOT database models).

Field names are snake_case in Python and camelCase on the wire
(labelIds, messageCount, bodyType, ...), matching what the browser client
consumes. Serialize with model_dump(by_alias=True).
"""

from typing import Generic, List, Literal, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

T = TypeVar("T")


class CamelModel(BaseModel):
    """Base model accepting both snake_case names and camelCase aliases."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ThreadListItem(CamelModel):
    """Lightweight thread summary from threads.list (id + snippet only)."""

    id: str
    snippet: str = ""


class ThreadPage(CamelModel):
    """One page of the inbox listing."""

    threads: List[ThreadListItem] = Field(default_factory=list)
    next_page_token: Optional[str] = None
    result_size_estimate: Optional[int] = None


class ParsedFrom(CamelModel):
    """
    Parsed From header.

    "John Doe <john@example.com>" -> name="John Doe", email="john@example.com"
    "john@example.com"            -> name="",         email="john@example.com"
    """

    name: str = ""
    email: str = ""


class ThreadMetadata(CamelModel):
    """Thread metadata for the inbox list view (headers only, no bodies)."""

    id: str
    subject: str = "(no subject)"
    from_: ParsedFrom = Field(default_factory=ParsedFrom, alias="from")
    to: str = ""
    date: str = ""
    snippet: str = ""
    label_ids: List[str] = Field(default_factory=list)
    message_count: int = 0

    def has_label(self, label: str) -> bool:
        return label in self.label_ids

    @property
    def is_unread(self) -> bool:
        return self.has_label("UNREAD")


class AttachmentInfo(CamelModel):
    """Downloadable attachment (has both a filename and an attachmentId)."""

    filename: str
    mime_type: str = "application/octet-stream"
    size: int = 0
    attachment_id: str
    message_id: str


class ThreadDetailMessage(CamelModel):
    """One message of a thread, with its extracted body."""

    id: str
    from_: ParsedFrom = Field(default_factory=ParsedFrom, alias="from")
    to: str = ""
    subject: str = "(no subject)"
    date: str = ""
    snippet: str = ""
    body: str = ""
    body_type: Literal["text", "html"] = "text"
    label_ids: List[str] = Field(default_factory=list)
    attachments: List[AttachmentInfo] = Field(default_factory=list)


class ThreadDetail(CamelModel):
    """
    Full thread for the reading view.

    Messages are ordered oldest-first, as Gmail returns them. label_ids is
    the union of every message's labels.
    """

    id: str
    subject: str = "(no subject)"
    messages: List[ThreadDetailMessage] = Field(default_factory=list)
    label_ids: List[str] = Field(default_factory=list)


class CachedItem(CamelModel, Generic[T]):
    """A cached domain object plus the epoch-ms instant it was written."""

    id: str
    data: T
    cached_at: int


class ThreadActionResult(CamelModel):
    """Per-thread outcome of a trash or mark-read request."""

    thread_id: str
    success: bool
    error: Optional[str] = None


class CountEstimate(CamelModel):
    """Approximate panel counts from Gmail's resultSizeEstimate."""

    total: int = 0
    unread: int = 0
