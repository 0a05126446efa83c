from __future__ import annotations

import logging
from typing import AsyncIterator

import httpx

from mediauploader.core.errors import ProtocolViolation, TransportError
from mediauploader.infrastructure.transport.base import (
    ProgressListener,
    TransportRequest,
    TransportResponse,
)

logger = logging.getLogger(__name__)

DEFAULT_PROGRESS_STEP_BYTES = 64 * 1024


class HttpxTransport:
    """TransportAdapter backed by one shared ``httpx.AsyncClient``.

    Redirects are never followed: 308 is the resumable protocol's
    "incomplete" answer, not a redirect. Network failures raise
    ``TransportError``; a URL httpx cannot send to raises ``ProtocolViolation``.
    """

    def __init__(
        self,
        *,
        client: httpx.AsyncClient | None = None,
        timeout_seconds: float = 60.0,
        progress_step_bytes: int = DEFAULT_PROGRESS_STEP_BYTES,
    ) -> None:
        if progress_step_bytes <= 0:
            raise ValueError("progress_step_bytes must be positive")
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(timeout_seconds),
            follow_redirects=False,
        )
        self.progress_step_bytes = progress_step_bytes

    async def send(
        self,
        request: TransportRequest,
        on_progress: ProgressListener | None = None,
    ) -> TransportResponse:
        headers = dict(request.headers)
        content: bytes | AsyncIterator[bytes] | None = request.body
        if request.body is not None and on_progress is not None:
            if request.header("Content-Length") is None:
                headers["Content-Length"] = str(len(request.body))
            content = self._stream_body(request.body, on_progress)

        try:
            response = await self._client.request(
                request.method,
                request.url,
                headers=headers,
                content=content,
                follow_redirects=False,
            )
        except (httpx.InvalidURL, httpx.UnsupportedProtocol) as exc:
            # Retrying cannot fix the URL itself.
            raise ProtocolViolation(f"Cannot send {request.method} to {request.url!r}: {exc}") from exc
        except httpx.HTTPError as exc:
            raise TransportError(f"{request.method} {request.url} failed: {exc}") from exc

        logger.debug("%s %s -> %s", request.method, request.url, response.status_code)
        return TransportResponse(
            status_code=response.status_code,
            headers=dict(response.headers),
            body=response.content,
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _stream_body(self, body: bytes, on_progress: ProgressListener) -> AsyncIterator[bytes]:
        total = len(body)
        view = memoryview(body)
        sent = 0
        for start in range(0, total, self.progress_step_bytes):
            piece = bytes(view[start : start + self.progress_step_bytes])
            yield piece
            sent += len(piece)
            on_progress(sent, total)
