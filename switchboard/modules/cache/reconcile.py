"""
Thread list reconciliation (stale-while-revalidate merge).

Merges a page of threads fetched from Gmail into the locally held list.
Inputs are never mutated. When nothing changes the `existing` list object
itself is returned, so callers can skip re-rendering with an `is` check.
"""

from typing import List, Literal, Sequence

from switchboard.models.thread import ThreadMetadata

MergeMode = Literal["refresh", "append"]


def _unique_new(existing_ids: set, incoming: Sequence[ThreadMetadata]) -> List[ThreadMetadata]:
    seen = set()
    new_threads = []
    for thread in incoming:
        if thread.id in existing_ids or thread.id in seen:
            continue
        seen.add(thread.id)
        new_threads.append(thread)
    return new_threads


def merge_threads(
    existing: List[ThreadMetadata],
    incoming: Sequence[ThreadMetadata],
    mode: MergeMode,
) -> List[ThreadMetadata]:
    """
    Merge fetched threads into the current list.

    refresh: known ids are replaced wholesale in their current position,
        unknown ids are prepended (newest mail first). Threads missing from
        `incoming` are kept; a page of results never deletes anything.
    append: known ids are skipped (local data wins), unknown ids are
        appended in incoming order. Returns `existing` itself if every id
        was already known.

    Usage:
        threads = merge_threads(threads, page, "refresh")
    """
    if not incoming:
        return existing

    existing_ids = {thread.id for thread in existing}

    if mode == "refresh":
        latest = {thread.id: thread for thread in incoming}
        updated = [latest.get(thread.id, thread) for thread in existing]
        return _unique_new(existing_ids, incoming) + updated

    if mode != "append":
        raise ValueError(f"Unknown merge mode: {mode!r}")

    new_threads = _unique_new(existing_ids, incoming)
    if not new_threads:
        return existing
    return existing + new_threads
