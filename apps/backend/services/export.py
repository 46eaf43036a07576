"""
Streaming JSON Export
=====================
Serializes a row cursor into one JSON document written as HTTP chunks.

The document is assembled from fragments because the response is flushed
before the row count or the outcome is known:

    {"success":true,<head fields>,"data":[      opening
    ROW  ,ROW  ,ROW ...                          one chunk per row
    ],<tail fields>}                             closing on exhaustion
    ],"error":"<message>"}                       salvage after a late failure

Memory use is bounded by one row: the pipeline pulls the next row only after
the previous chunk was handed to the ASGI ``send`` (which waits on the
transport), so transport backpressure pauses row consumption.
"""

import asyncio
import enum
import json
from datetime import date, datetime, time
from decimal import Decimal
from typing import Any, AsyncIterator, Callable, Dict, Mapping, Optional
from uuid import UUID, uuid4

from starlette.responses import StreamingResponse
from starlette.types import Receive, Scope, Send

from exceptions import CatalogBaseException, DatabaseError
from logging_config import get_logger
from timeout_utils import run_with_timeout
import metrics as app_metrics

logger = get_logger(__name__)

SALVAGE_MESSAGE = "Internal server error"

EXPORT_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "Transfer-Encoding": "chunked",
}


class ExportState(str, enum.Enum):
    PENDING = "pending"
    STREAMING = "streaming"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


_EXHAUSTED = object()
_UNSET = object()


def json_default(value: Any) -> Any:
    """Encode the scalar types a database row can carry."""
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, UUID):
        return str(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def dumps(value: Any) -> str:
    return json.dumps(value, default=json_default, separators=(",", ":"), ensure_ascii=False)


def encode_row(row: Mapping[str, Any]) -> bytes:
    return dumps(dict(row)).encode("utf-8")


def envelope_opening(head: Mapping[str, Any]) -> bytes:
    """``{<head>,"data":[`` with the head object's closing brace removed."""
    body = dumps(dict(head))[:-1]
    separator = "," if head else ""
    return f'{body}{separator}"data":['.encode("utf-8")


def envelope_closing(tail: Mapping[str, Any]) -> bytes:
    """``],<tail>}`` closing the data array and the envelope."""
    if not tail:
        return b"]}"
    return f"],{dumps(dict(tail))[1:]}".encode("utf-8")


class ExportSession:
    """
    One streaming export: owns the cursor, the row counter and the
    first-row flag for the lifetime of a single HTTP response.

    Call ``prime()`` before building the response. It pulls the first row
    while a clean error response is still possible; afterwards every failure
    is reported in-band through the salvage fragment.

    Args:
        rows: Async iterator of row mappings, closed through ``aclose()``
        name: Export label for logs and metrics
        head: Envelope fields written before ``data``
        tail: Builds the closing fields from the streamed row count
        row_timeout: Seconds allowed per row fetch
        expose_errors: Put the exception text in the salvage fragment
    """

    def __init__(
        self,
        rows: AsyncIterator[Mapping[str, Any]],
        name: str = "export",
        head: Optional[Mapping[str, Any]] = None,
        tail: Optional[Callable[[int], Mapping[str, Any]]] = None,
        row_timeout: Optional[float] = None,
        expose_errors: bool = False,
    ):
        self.session_id = uuid4().hex
        self.name = name
        self.head: Dict[str, Any] = {"success": True, **(head or {})}
        self._tail = tail or (lambda count: {"total": count})
        self._rows = rows
        self._row_timeout = row_timeout
        self._expose_errors = expose_errors

        self.state = ExportState.PENDING
        self.row_count = 0
        self.first_row_emitted = False
        self.bytes_sent = 0
        self.peak_chunk_bytes = 0
        self.error: Optional[str] = None

        self._lookahead: Any = _UNSET
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def _fetch(self) -> Any:
        try:
            if self._row_timeout:
                return await run_with_timeout(
                    self._rows.__anext__(),
                    timeout=self._row_timeout,
                    operation_name=f"{self.name}_fetch",
                )
            return await self._rows.__anext__()
        except StopAsyncIteration:
            return _EXHAUSTED

    async def _next_row(self) -> Any:
        if self._lookahead is not _UNSET:
            row, self._lookahead = self._lookahead, _UNSET
            return row
        return await self._fetch()

    async def prime(self) -> None:
        """
        Fetch the first row before any byte is committed.

        Raises:
            CatalogBaseException: Data-source failure, surfaced as a normal
                error response. The cursor is already closed.
        """
        try:
            self._lookahead = await self._fetch()
        except CatalogBaseException:
            self.state = ExportState.FAILED
            await self.close()
            raise
        except Exception as e:
            self.state = ExportState.FAILED
            await self.close()
            logger.error("Export failed before streaming", export=self.name, error=str(e))
            app_metrics.export_sessions_total.labels(export=self.name, outcome="rejected").inc()
            raise DatabaseError(operation="export", entity=self.name, original_error=e) from e

    def _emit(self, chunk: bytes) -> bytes:
        self.bytes_sent += len(chunk)
        if len(chunk) > self.peak_chunk_bytes:
            self.peak_chunk_bytes = len(chunk)
        return chunk

    def _salvage_message(self, error: Exception) -> str:
        if self._expose_errors:
            return str(error) or error.__class__.__name__
        return SALVAGE_MESSAGE

    async def stream(self) -> AsyncIterator[bytes]:
        """Yield the document as chunks; never raises data-source errors."""
        self.state = ExportState.STREAMING
        app_metrics.export_active_sessions.inc()
        logger.info("Export started", export=self.name, session_id=self.session_id)

        try:
            yield self._emit(envelope_opening(self.head))

            while True:
                row = await self._next_row()
                if row is _EXHAUSTED:
                    break

                chunk = encode_row(row)
                if self.first_row_emitted:
                    chunk = b"," + chunk
                yield self._emit(chunk)

                self.first_row_emitted = True
                self.row_count += 1

            yield self._emit(envelope_closing(self._tail(self.row_count)))
            self.state = ExportState.COMPLETED
            logger.info("Export completed", export=self.name, rows=self.row_count, bytes=self.bytes_sent)

        except (asyncio.CancelledError, GeneratorExit):
            self.state = ExportState.CANCELLED
            logger.info("Export cancelled", export=self.name, rows=self.row_count)
            raise

        except Exception as e:
            # Headers are gone: close the JSON structurally instead of a status code
            self.state = ExportState.FAILED
            self.error = str(e)
            logger.error(
                "Export failed mid-stream",
                export=self.name,
                rows=self.row_count,
                error=str(e),
            )
            yield self._emit(envelope_closing({"error": self._salvage_message(e)}))

        finally:
            await self.close()
            app_metrics.export_active_sessions.dec()
            app_metrics.export_rows_streamed_total.labels(export=self.name).inc(self.row_count)
            app_metrics.export_sessions_total.labels(export=self.name, outcome=self.state.value).inc()

    async def close(self) -> None:
        """Release the cursor. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        self._lookahead = _UNSET

        aclose = getattr(self._rows, "aclose", None)
        if aclose is None:
            return
        try:
            await aclose()
        except Exception as e:
            logger.warning("Failed to release export cursor", export=self.name, error=str(e))


class ExportResponse(StreamingResponse):
    """
    Chunked JSON response driven by an ``ExportSession``.

    The session is closed once the ASGI call returns or raises, which covers
    client disconnects and transport write failures.
    """

    def __init__(self, session: ExportSession, headers: Optional[Mapping[str, str]] = None):
        merged = {**EXPORT_HEADERS, "X-Export-Session": session.session_id, **(headers or {})}
        super().__init__(session.stream(), status_code=200, media_type="application/json", headers=merged)
        self.export_session = session

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        try:
            await super().__call__(scope, receive, send)
        finally:
            aclose = getattr(self.body_iterator, "aclose", None)
            if aclose is not None:
                await aclose()
            await self.export_session.close()
