"""
Gmail REST API client.

Provides high-level async interface for:
- Listing inbox threads (lightweight: ids + snippets)
- Batch-fetching thread metadata through the batch endpoint
- Fetching a full thread (bodies + attachments) and attachment data
- Marking threads read and batch-trashing threads
- Per-panel count estimates (resultSizeEstimate)

Every method takes the access token explicitly, so the client is decoupled
from cookies and sessions. Nothing here retries; timeouts surface as
RequestTimeout and connection failures as NetworkError.

Two-phase fetch for the inbox list:
    1. list_threads()        -> ids + snippets (one cheap call)
    2. batch_get_metadata()  -> Subject/From/To/Date for those ids (batched)

CRITICAL SECURITY:
- NEVER log access tokens
- NEVER log message bodies
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional, Sequence
from urllib.parse import quote

import httpx

from switchboard.core.http import DEFAULT_TIMEOUT_SECONDS, request_with_timeout
from switchboard.models.thread import (
    CountEstimate,
    ThreadActionResult,
    ThreadDetail,
    ThreadDetailMessage,
    ThreadListItem,
    ThreadMetadata,
    ThreadPage,
)
from switchboard.modules.gmail.batch import (
    BATCH_MAX_SIZE,
    BatchPart,
    BatchRequest,
    boundary_from_content_type,
    chunked,
    decode_batch_results,
    decode_positional,
    encode_batch,
    new_boundary,
)
from switchboard.modules.gmail.headers import extract_header, extract_thread_metadata, parse_date, parse_from
from switchboard.modules.gmail.mime import MessagePart, extract_attachments, extract_body

logger = logging.getLogger(__name__)

GMAIL_API_BASE = "https://gmail.googleapis.com/gmail/v1"
BATCH_ENDPOINT = "https://www.googleapis.com/batch/gmail/v1"

# Only headers the inbox list view needs
METADATA_HEADERS = ["Subject", "From", "To", "Date"]

DEFAULT_PAGE_SIZE = 50


class GmailAPIError(Exception):
    """Base exception for Gmail API errors."""

    def __init__(self, message: str, status: Optional[int] = None, operation: Optional[str] = None):
        self.status = status
        self.operation = operation
        super().__init__(message)


class GmailQuotaExceeded(GmailAPIError):
    """Raised when Gmail API quota is exceeded (429 error)."""
    pass


class GmailAuthError(GmailAPIError):
    """Raised when the access token is rejected mid-operation (401/403 errors)."""
    pass


class GmailNotFound(GmailAPIError):
    """Raised when a thread, message or attachment no longer exists (404)."""
    pass


def _handle_error(response: httpx.Response, operation: str) -> None:
    """
    Translate a non-2xx Gmail response into the exception taxonomy.

    Raises:
        GmailAuthError: 401, 403
        GmailNotFound: 404
        GmailQuotaExceeded: 429
        GmailAPIError: anything else
    """
    status = response.status_code
    detail = response.text[:300]

    if status in (401, 403):
        logger.error(
            f"Gmail API {status} error during {operation}",
            extra={"operation": operation, "status": status}
        )
        raise GmailAuthError(
            f"Gmail API error ({status}) on {operation}: access token rejected",
            status=status,
            operation=operation,
        )

    if status == 404:
        logger.warning(
            f"Gmail API 404 error during {operation}",
            extra={"operation": operation}
        )
        raise GmailNotFound(f"Gmail API error (404) on {operation}: not found", status=status, operation=operation)

    if status == 429:
        logger.warning(
            f"Gmail API quota exceeded during {operation}",
            extra={"operation": operation}
        )
        raise GmailQuotaExceeded(
            f"Gmail API error (429) on {operation}: quota exceeded", status=status, operation=operation
        )

    logger.error(
        f"Gmail API {status} error during {operation}",
        extra={"operation": operation, "status": status}
    )
    raise GmailAPIError(f"Gmail API error ({status}) on {operation}: {detail}", status=status, operation=operation)


def _thread_path(thread_id: str) -> str:
    return f"/users/me/threads/{quote(thread_id, safe='')}"


class GmailClient:
    """
    Async Gmail API client sharing one httpx.AsyncClient.

    Usage:
        gmail = GmailClient(http_client)
        page = await gmail.list_threads(token)
        metadata = await gmail.batch_get_metadata(token, [t.id for t in page.threads])
    """

    def __init__(self, http: httpx.AsyncClient, timeout: float = DEFAULT_TIMEOUT_SECONDS):
        self._http = http
        self.timeout = timeout

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    async def _request(
        self,
        access_token: str,
        method: str,
        path: str,
        operation: str,
        params: Optional[Dict[str, Any]] = None,
        json_body: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        response = await request_with_timeout(
            self._http,
            method,
            f"{GMAIL_API_BASE}{path}",
            timeout=self.timeout,
            headers={"Authorization": f"Bearer {access_token}"},
            params=params,
            json=json_body,
        )

        if not response.is_success:
            _handle_error(response, operation)

        if not response.content:
            return {}
        try:
            data = response.json()
        except ValueError:
            data = None

        if not isinstance(data, dict):
            logger.error(
                f"Gmail API returned a non-JSON body during {operation}",
                extra={"operation": operation, "status": response.status_code}
            )
            raise GmailAPIError(
                f"Gmail API error on {operation}: invalid JSON response",
                status=response.status_code,
                operation=operation,
            )
        return data

    async def _batch_exchange(
        self,
        access_token: str,
        requests: Sequence[BatchRequest],
        operation: str,
        boundary_prefix: str = "batch_switchboard",
    ) -> httpx.Response:
        encoded = encode_batch(requests, boundary=new_boundary(boundary_prefix))

        response = await request_with_timeout(
            self._http,
            "POST",
            BATCH_ENDPOINT,
            timeout=self.timeout,
            headers={
                "Authorization": f"Bearer {access_token}",
                "Content-Type": f"multipart/mixed; boundary={encoded.boundary}",
            },
            content=encoded.body.encode("utf-8"),
        )

        if not response.is_success:
            _handle_error(response, operation)

        return response

    # ------------------------------------------------------------------
    # Listing
    # ------------------------------------------------------------------

    async def list_threads(
        self,
        access_token: str,
        page_token: Optional[str] = None,
        page_size: int = DEFAULT_PAGE_SIZE,
        query: Optional[str] = None,
    ) -> ThreadPage:
        """
        List inbox threads (ids + snippets only).

        Args:
            access_token: Valid Google access token
            page_token: Token from a previous page
            page_size: Threads per page (Gmail caps at 500)
            query: Gmail search syntax, passed through unmodified

        Returns:
            ThreadPage with threads, next_page_token and result_size_estimate
        """
        params: Dict[str, Any] = {"maxResults": str(page_size), "labelIds": "INBOX"}
        if page_token:
            params["pageToken"] = page_token
        if query:
            params["q"] = query

        data = await self._request(access_token, "GET", "/users/me/threads", "threads.list", params=params)

        return ThreadPage(
            threads=[
                ThreadListItem(id=t["id"], snippet=t.get("snippet", ""))
                for t in data.get("threads") or []
            ],
            next_page_token=data.get("nextPageToken"),
            result_size_estimate=data.get("resultSizeEstimate"),
        )

    async def batch_get_metadata(self, access_token: str, thread_ids: Sequence[str]) -> List[ThreadMetadata]:
        """
        Fetch Subject/From/To/Date metadata for many threads.

        Splits into batches of 100. Threads whose batch part failed or could
        not be parsed are left out of the result.
        """
        if not thread_ids:
            return []

        metadata_params = "&".join(f"metadataHeaders={quote(h)}" for h in METADATA_HEADERS)
        results: List[ThreadMetadata] = []

        for chunk in chunked(list(thread_ids), BATCH_MAX_SIZE):
            requests = [
                BatchRequest("GET", f"/gmail/v1{_thread_path(thread_id)}?format=metadata&{metadata_params}")
                for thread_id in chunk
            ]
            response = await self._batch_exchange(access_token, requests, "threads.batchGet")
            results = decode_batch_results(
                response.text, boundary_from_content_type(response.headers.get("content-type"))
            )

            threads = [p for p in results if isinstance(p, dict) and p.get("id")]
            if len(threads) < len(chunk):
                logger.warning(
                    "Batch metadata fetch returned partial results",
                    extra={"requested": len(chunk), "received": len(threads)}
                )
            results.extend(extract_thread_metadata(thread) for thread in threads)

        return results

    # ------------------------------------------------------------------
    # Reading
    # ------------------------------------------------------------------

    async def get_thread_detail(self, access_token: str, thread_id: str) -> ThreadDetail:
        """
        Fetch one thread with full message bodies (format=full, not batched).

        Messages stay oldest-first. HTML bodies are sanitized.
        """
        thread = await self._request(
            access_token, "GET", _thread_path(thread_id), "threads.get", params={"format": "full"}
        )

        raw_messages = thread.get("messages") or []
        labels: List[str] = []
        messages: List[ThreadDetailMessage] = []

        for raw in raw_messages:
            payload = MessagePart.model_validate(raw.get("payload") or {})
            headers = (raw.get("payload") or {}).get("headers") or []
            body = extract_body(payload)

            for label in raw.get("labelIds") or []:
                if label not in labels:
                    labels.append(label)

            messages.append(ThreadDetailMessage(
                id=raw.get("id", ""),
                from_=parse_from(extract_header(headers, "From")),
                to=extract_header(headers, "To"),
                subject=extract_header(headers, "Subject") or "(no subject)",
                date=parse_date(extract_header(headers, "Date")),
                snippet=raw.get("snippet") or "",
                body=body.body,
                body_type=body.body_type,
                label_ids=list(raw.get("labelIds") or []),
                attachments=extract_attachments(payload, raw.get("id", "")),
            ))

        first_headers = ((raw_messages[0].get("payload") or {}).get("headers") or []) if raw_messages else []

        return ThreadDetail(
            id=thread.get("id", thread_id),
            subject=extract_header(first_headers, "Subject") or "(no subject)",
            messages=messages,
            label_ids=labels,
        )

    async def get_attachment(self, access_token: str, message_id: str, attachment_id: str) -> str:
        """
        Fetch one attachment's data.

        Returns:
            Base64url-encoded attachment bytes (caller decodes and streams)
        """
        path = (
            f"/users/me/messages/{quote(message_id, safe='')}"
            f"/attachments/{quote(attachment_id, safe='')}"
        )
        data = await self._request(access_token, "GET", path, "attachments.get")
        return data.get("data", "")

    async def get_profile(self, access_token: str) -> Dict[str, Any]:
        """Fetch users.getProfile (emailAddress, messagesTotal, threadsTotal)."""
        return await self._request(access_token, "GET", "/users/me/profile", "users.getProfile")

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def mark_read(self, access_token: str, thread_id: str) -> None:
        """Remove the UNREAD label from every message in the thread."""
        await self._request(
            access_token,
            "POST",
            f"{_thread_path(thread_id)}/modify",
            "threads.modify",
            json_body={"removeLabelIds": ["UNREAD"]},
        )

    async def batch_mark_read(self, access_token: str, thread_ids: Sequence[str]) -> List[ThreadActionResult]:
        """
        Mark many threads read concurrently.

        Gmail has no batch label-modify endpoint, so each thread is its own
        request. One failure never affects the others.
        """
        if not thread_ids:
            return []

        outcomes = await asyncio.gather(
            *(self.mark_read(access_token, thread_id) for thread_id in thread_ids),
            return_exceptions=True,
        )

        results = []
        for thread_id, outcome in zip(thread_ids, outcomes):
            if isinstance(outcome, Exception):
                results.append(ThreadActionResult(thread_id=thread_id, success=False, error=str(outcome)))
            else:
                results.append(ThreadActionResult(thread_id=thread_id, success=True))

        failed = sum(1 for r in results if not r.success)
        if failed:
            logger.warning(
                "Some threads could not be marked read",
                extra={"requested": len(thread_ids), "failed": failed}
            )
        return results

    async def batch_trash(self, access_token: str, thread_ids: Sequence[str]) -> List[ThreadActionResult]:
        """
        Move threads to trash through the batch endpoint (100 per call).

        Response parts are matched to thread ids by position; Gmail returns
        them in request order. A truncated response marks the missing ids
        as failed.
        """
        if not thread_ids:
            return []

        results: List[ThreadActionResult] = []

        for chunk in chunked(list(thread_ids), BATCH_MAX_SIZE):
            requests = [BatchRequest("POST", f"/gmail/v1{_thread_path(thread_id)}/trash") for thread_id in chunk]
            response = await self._batch_exchange(
                access_token, requests, "threads.batchTrash", boundary_prefix="batch_trash"
            )
            parts = decode_positional(
                response.text,
                len(chunk),
                boundary_from_content_type(response.headers.get("content-type")),
            )
            results.extend(_trash_results(chunk, parts))

        failed = sum(1 for r in results if not r.success)
        logger.info(
            "Batch trash completed",
            extra={"requested": len(thread_ids), "failed": failed}
        )
        return results

    # ------------------------------------------------------------------
    # Counts
    # ------------------------------------------------------------------

    async def _estimate(self, access_token: str, query: str) -> CountEstimate:
        if not query:
            return CountEstimate(total=0, unread=0)

        total, unread = await asyncio.gather(
            self._request(
                access_token, "GET", "/users/me/threads", "threads.list",
                params={"maxResults": "1", "labelIds": "INBOX", "q": query},
            ),
            self._request(
                access_token, "GET", "/users/me/threads", "threads.list",
                params={"maxResults": "1", "labelIds": "INBOX", "q": f"{query} is:unread"},
            ),
        )
        return CountEstimate(
            total=total.get("resultSizeEstimate") or 0,
            unread=unread.get("resultSizeEstimate") or 0,
        )

    async def estimate_counts(self, access_token: str, queries: Sequence[str]) -> List[CountEstimate]:
        """
        Approximate total/unread counts per panel query, all concurrently.

        An empty query yields zero counts without any network call.
        """
        return list(await asyncio.gather(*(self._estimate(access_token, q) for q in queries)))


def _trash_error(part: BatchPart) -> str:
    payload = part.payload
    if isinstance(payload, dict):
        error = payload.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if isinstance(error, str) and error:
            return error
    return "Trash request failed"


def _trash_results(chunk: Sequence[str], parts: Optional[List[Optional[BatchPart]]]) -> List[ThreadActionResult]:
    if parts is None:
        return [
            ThreadActionResult(thread_id=thread_id, success=False, error="Could not parse batch response")
            for thread_id in chunk
        ]

    results = []
    for thread_id, part in zip(chunk, parts):
        if part is None:
            results.append(ThreadActionResult(thread_id=thread_id, success=False, error="Missing response part"))
        elif part.ok:
            results.append(ThreadActionResult(thread_id=thread_id, success=True))
        else:
            results.append(ThreadActionResult(thread_id=thread_id, success=False, error=_trash_error(part)))
    return results
