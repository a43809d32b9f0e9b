"""
Gmail API routes (JSON over fetch, consumed by the browser client).

Endpoints:
- GET  /api/me                       - Signed-in Gmail address
- GET  /api/threads                  - Inbox page (ids + snippets)
- POST /api/threads/metadata         - Batch metadata for up to 100 threads
- POST /api/threads/counts           - Per-panel count estimates
- POST /api/threads/read             - Mark up to 100 threads read
- POST /api/threads/trash            - Trash up to 100 threads (CSRF required)
- GET  /api/thread/{thread_id}       - Full thread with sanitized bodies
- GET  /api/thread/{thread_id}/attachment - Attachment download

Request bodies are validated before any call to Google. Error mapping:
- not signed in / session expired / token rejected -> 401
- thread or attachment gone -> 404
- Google timed out -> 504, unreachable -> 502
- other Gmail errors -> 500
"""

import base64
import binascii
import logging
import re
from typing import Annotated, List, Optional
from urllib.parse import quote

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import Response
from pydantic import BaseModel, ConfigDict, Field, StringConstraints

from switchboard.core.context import AppContext, get_context, get_cookie_jar
from switchboard.core.http import RequestTimeout, TransportFailure
from switchboard.core.session import CookieJar
from switchboard.models.panel import PanelConfig
from switchboard.models.thread import ThreadActionResult
from switchboard.modules.auth.session_manager import AuthError, NotAuthenticated
from switchboard.modules.gmail.client import DEFAULT_PAGE_SIZE, GmailAPIError, GmailAuthError, GmailNotFound
from switchboard.modules.panels.rules import build_count_queries

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["gmail"])

MAX_IDS_PER_REQUEST = 100

ThreadId = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]


class MetadataRequest(BaseModel):
    ids: List[ThreadId] = Field(..., min_length=1, max_length=MAX_IDS_PER_REQUEST)


class ThreadIdsRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    thread_ids: List[ThreadId] = Field(
        ..., alias="threadIds", min_length=1, max_length=MAX_IDS_PER_REQUEST
    )


class CountsRequest(BaseModel):
    panels: List[PanelConfig] = Field(..., min_length=1)


# ----------------------------------------------------------------------
# Helpers
# ----------------------------------------------------------------------


async def _access_token(context: AppContext, jar: CookieJar, endpoint: str) -> str:
    """Mint an access token or raise the matching HTTP error."""
    try:
        return await context.sessions.get_access_token(jar)
    except NotAuthenticated as e:
        # Expected for signed-out visitors
        logger.warning(f"{endpoint}: {e}")
        raise HTTPException(status_code=401, detail="Not authenticated")
    except AuthError as e:
        logger.error(f"{endpoint}: access token error", extra={"error": str(e)})
        raise HTTPException(status_code=401, detail=f"Session expired: {e}")
    except TransportFailure as e:
        raise _transport_error(e)


def _transport_error(error: TransportFailure) -> HTTPException:
    if isinstance(error, RequestTimeout):
        return HTTPException(status_code=504, detail=str(error))
    return HTTPException(status_code=502, detail=str(error))


def _gmail_error(error: Exception, endpoint: str, failure: str, not_found: str = "Not found") -> HTTPException:
    """Translate a Gmail/transport failure into an HTTP error."""
    if isinstance(error, TransportFailure):
        return _transport_error(error)
    if isinstance(error, GmailAuthError):
        return HTTPException(status_code=401, detail="Session expired. Please sign in again.")
    if isinstance(error, GmailNotFound):
        return HTTPException(status_code=404, detail=not_found)

    logger.error(f"{endpoint}: Gmail API error", extra={"error": str(error)})
    return HTTPException(status_code=500, detail=f"{failure}: {error}")


def require_csrf(
    request: Request,
    context: AppContext = Depends(get_context),
    jar: CookieJar = Depends(get_cookie_jar),
) -> None:
    """Double-submit CSRF check for mutating endpoints."""
    if not context.sessions.validate_csrf(jar, request.headers):
        logger.warning("CSRF validation failed", extra={"path": request.url.path})
        raise HTTPException(
            status_code=403,
            detail="CSRF validation failed. Please refresh the page and try again.",
        )


# ----------------------------------------------------------------------
# Profile and listing
# ----------------------------------------------------------------------


@router.get("/me")
async def get_me(
    context: AppContext = Depends(get_context),
    jar: CookieJar = Depends(get_cookie_jar),
):
    """Return the signed-in Gmail address."""
    token = await _access_token(context, jar, "/api/me")
    try:
        profile = await context.gmail.get_profile(token)
    except (GmailAPIError, TransportFailure) as e:
        raise _gmail_error(e, "/api/me", "Profile fetch failed")
    return {"email": profile.get("emailAddress", "")}


@router.get("/threads")
async def list_threads(
    page_token: Optional[str] = Query(None, alias="pageToken"),
    q: Optional[str] = Query(None),
    context: AppContext = Depends(get_context),
    jar: CookieJar = Depends(get_cookie_jar),
):
    """
    List inbox threads (ids + snippets).

    Query Params:
        pageToken: Token from a previous page
        q: Gmail search syntax, passed through unmodified
    """
    token = await _access_token(context, jar, "/api/threads")
    try:
        return await context.gmail.list_threads(token, page_token=page_token, page_size=DEFAULT_PAGE_SIZE, query=q)
    except (GmailAPIError, TransportFailure) as e:
        raise _gmail_error(e, "/api/threads", "Gmail API error")


@router.post("/threads/metadata")
async def get_threads_metadata(
    payload: MetadataRequest,
    context: AppContext = Depends(get_context),
    jar: CookieJar = Depends(get_cookie_jar),
):
    """Batch-fetch list-view metadata; threads that failed are omitted."""
    token = await _access_token(context, jar, "/api/threads/metadata")
    try:
        threads = await context.gmail.batch_get_metadata(token, payload.ids)
    except (GmailAPIError, TransportFailure) as e:
        raise _gmail_error(e, "/api/threads/metadata", "Gmail API error")
    return {"threads": threads}


@router.post("/threads/counts")
async def get_panel_counts(
    payload: CountsRequest,
    context: AppContext = Depends(get_context),
    jar: CookieJar = Depends(get_cookie_jar),
):
    """Approximate total/unread counts per panel, in panel order."""
    queries = build_count_queries(payload.panels)
    token = await _access_token(context, jar, "/api/threads/counts")
    try:
        counts = await context.gmail.estimate_counts(token, queries)
    except (GmailAPIError, TransportFailure) as e:
        raise _gmail_error(e, "/api/threads/counts", "Gmail API error")
    return {"counts": counts}


# ----------------------------------------------------------------------
# Mutations
# ----------------------------------------------------------------------


@router.post("/threads/read")
async def mark_threads_read(
    payload: ThreadIdsRequest,
    context: AppContext = Depends(get_context),
    jar: CookieJar = Depends(get_cookie_jar),
):
    """
    Mark threads as read.

    One id is a direct call whose failure is the response's failure; many
    ids are sent concurrently and reported per thread.
    """
    token = await _access_token(context, jar, "/api/threads/read")
    thread_ids = payload.thread_ids
    try:
        if len(thread_ids) == 1:
            await context.gmail.mark_read(token, thread_ids[0])
            return {"results": [ThreadActionResult(thread_id=thread_ids[0], success=True)]}
        return {"results": await context.gmail.batch_mark_read(token, thread_ids)}
    except (GmailAPIError, TransportFailure) as e:
        raise _gmail_error(e, "/api/threads/read", "Failed to mark threads as read", not_found="Thread not found")


@router.post("/threads/trash", dependencies=[Depends(require_csrf)])
async def trash_threads(
    payload: ThreadIdsRequest,
    context: AppContext = Depends(get_context),
    jar: CookieJar = Depends(get_cookie_jar),
):
    """Move threads to trash through the batch endpoint; results are per thread."""
    token = await _access_token(context, jar, "/api/threads/trash")
    try:
        results = await context.gmail.batch_trash(token, payload.thread_ids)
    except (GmailAPIError, TransportFailure) as e:
        raise _gmail_error(e, "/api/threads/trash", "Failed to trash threads")
    return {"results": results}


# ----------------------------------------------------------------------
# Reading
# ----------------------------------------------------------------------


@router.get("/thread/{thread_id}")
async def get_thread(
    thread_id: str,
    context: AppContext = Depends(get_context),
    jar: CookieJar = Depends(get_cookie_jar),
):
    """Full thread: messages oldest-first, HTML sanitized, attachments listed."""
    if not thread_id.strip():
        raise HTTPException(status_code=400, detail="Missing thread ID")

    token = await _access_token(context, jar, "/api/thread")
    try:
        thread = await context.gmail.get_thread_detail(token, thread_id)
    except (GmailAPIError, TransportFailure) as e:
        raise _gmail_error(e, "/api/thread", "Gmail API error", not_found="Thread not found")
    return {"thread": thread}


def _content_disposition(filename: str) -> str:
    safe = re.sub(r'["\r\n\0]', "_", filename)
    ascii_fallback = safe.encode("ascii", "replace").decode("ascii").replace("?", "_")
    return f"attachment; filename=\"{ascii_fallback}\"; filename*=UTF-8''{quote(safe, safe='')}"


@router.get("/thread/{thread_id}/attachment")
async def download_attachment(
    thread_id: str,
    message_id: Optional[str] = Query(None, alias="messageId"),
    attachment_id: Optional[str] = Query(None, alias="attachmentId"),
    filename: Optional[str] = Query(None),
    mime_type: Optional[str] = Query(None, alias="mimeType"),
    context: AppContext = Depends(get_context),
    jar: CookieJar = Depends(get_cookie_jar),
):
    """
    Stream one attachment as a download.

    Query Params:
        messageId: Message that owns the attachment
        attachmentId: Gmail attachment id
        filename: Download filename
        mimeType: Content-Type (defaults to application/octet-stream)
    """
    if not message_id:
        raise HTTPException(status_code=400, detail="Missing messageId query parameter")
    if not attachment_id:
        raise HTTPException(status_code=400, detail="Missing attachmentId query parameter")
    if not filename:
        raise HTTPException(status_code=400, detail="Missing filename query parameter")

    token = await _access_token(context, jar, "/api/thread/attachment")
    try:
        encoded = await context.gmail.get_attachment(token, message_id, attachment_id)
    except (GmailAPIError, TransportFailure) as e:
        raise _gmail_error(
            e, "/api/thread/attachment", "Failed to download attachment", not_found="Attachment not found"
        )

    try:
        data = base64.urlsafe_b64decode(encoded + "=" * (-len(encoded) % 4))
    except (binascii.Error, ValueError):
        logger.error("Attachment payload was not valid base64url", extra={"thread_id": thread_id})
        raise HTTPException(status_code=502, detail="Gmail returned an unreadable attachment")

    return Response(
        content=data,
        media_type=mime_type or "application/octet-stream",
        headers={
            "Content-Disposition": _content_disposition(filename),
            "Cache-Control": "no-store",
        },
    )
