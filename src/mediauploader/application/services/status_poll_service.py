from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable
from urllib.parse import urlencode

from pydantic import ValidationError as PayloadValidationError

from mediauploader.core.config import YOUTUBE_API_URL
from mediauploader.core.errors import TransportError, VideoProcessingError
from mediauploader.domain.models.api_payloads import (
    VideoItem,
    VideoListResponse,
    extract_error_message,
)
from mediauploader.infrastructure.transport.base import TransportAdapter, TransportRequest

logger = logging.getLogger(__name__)

STATUS_POLLING_INTERVAL_SECONDS = 10.0


@dataclass(slots=True, frozen=True)
class ProcessingEvent:
    state: str
    video_id: str
    kind: str | None = None


class VideoStatusPoller:
    """Poll a video's processing status at a fixed interval after upload.

    Failed status requests are logged and retried; only a final status ends the
    loop. ``uploaded`` means processing is still running, ``processed`` means
    the video is available, anything else is a permanent failure.
    """

    def __init__(
        self,
        transport: TransportAdapter,
        *,
        credential: str,
        api_url: str = YOUTUBE_API_URL,
        interval_seconds: float = STATUS_POLLING_INTERVAL_SECONDS,
        max_polls: int | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.transport = transport
        self.credential = credential
        self.api_url = api_url.rstrip("/")
        self.interval_seconds = interval_seconds
        self.max_polls = max_polls
        self._sleep = sleep

    async def poll(
        self,
        video_id: str,
        on_event: Callable[[ProcessingEvent], None] | None = None,
    ) -> ProcessingEvent:
        polls = 0
        while True:
            polls += 1
            item = await self._fetch(video_id)
            if item is not None:
                upload_status = item.status.upload_status
                if upload_status == "processed":
                    event = ProcessingEvent(state="processed", video_id=item.id, kind=item.kind)
                    if on_event is not None:
                        on_event(event)
                    return event
                if upload_status != "uploaded":
                    reason = item.status.rejection_reason or item.status.failure_reason or "unknown"
                    raise VideoProcessingError(f"{upload_status}: {reason}")
                if on_event is not None:
                    on_event(ProcessingEvent(state="processing", video_id=item.id, kind=item.kind))

            if self.max_polls is not None and polls >= self.max_polls:
                raise VideoProcessingError(
                    f"Video {video_id} was not processed after {polls} status checks."
                )
            await self._sleep(self.interval_seconds)

    async def _fetch(self, video_id: str) -> VideoItem | None:
        query = urlencode({"part": "status,player", "id": video_id})
        request = TransportRequest(
            method="GET",
            url=f"{self.api_url}/videos?{query}",
            headers={"Authorization": f"Bearer {self.credential}"},
        )
        try:
            response = await self.transport.send(request)
        except TransportError as exc:
            logger.warning("Status check for video %s failed: %s", video_id, exc)
            return None
        if response.status_code >= 400:
            logger.warning(
                "Status check for video %s failed with HTTP %d: %s",
                video_id,
                response.status_code,
                extract_error_message(response.text),
            )
            return None

        try:
            payload = VideoListResponse.model_validate_json(response.body)
        except PayloadValidationError as exc:
            logger.warning("Unreadable status payload for video %s: %s", video_id, exc)
            return None
        if not payload.items:
            logger.warning("Status check for video %s returned no items", video_id)
            return None
        return payload.items[0]
