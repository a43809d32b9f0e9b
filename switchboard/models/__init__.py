"""
Models package.

Pydantic shapes for threads and panels, plus the cache tables so
init_cache_schema() can discover them.
"""

from switchboard.models.cache_db import ThreadDetailRow, ThreadMetadataRow
from switchboard.models.panel import PanelConfig, PanelRule, PatternRule, SubstringRule
from switchboard.models.thread import (
    AttachmentInfo,
    CachedItem,
    CountEstimate,
    ParsedFrom,
    ThreadActionResult,
    ThreadDetail,
    ThreadDetailMessage,
    ThreadListItem,
    ThreadMetadata,
    ThreadPage,
)

__all__ = [
    "AttachmentInfo",
    "CachedItem",
    "CountEstimate",
    "PanelConfig",
    "PanelRule",
    "ParsedFrom",
    "PatternRule",
    "SubstringRule",
    "ThreadActionResult",
    "ThreadDetail",
    "ThreadDetailMessage",
    "ThreadDetailRow",
    "ThreadListItem",
    "ThreadMetadata",
    "ThreadMetadataRow",
    "ThreadPage",
]
