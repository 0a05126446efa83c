from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable
from urllib.parse import urljoin

from mediauploader.core.backoff import BackoffPolicy
from mediauploader.core.content_range import content_range, next_offset_from_range, unknown_range
from mediauploader.core.errors import (
    FatalClientError,
    ProtocolViolation,
    SessionInitiationError,
    TransportError,
    TransportFailure,
    UnexpectedUploadError,
    UploadCancelledError,
    UploadError,
    ValidationError,
)
from mediauploader.core.time import monotonic_seconds
from mediauploader.domain.models.upload import (
    UploadCallbacks,
    is_absolute_http_url,
    UploadJob,
    UploadProgress,
    UploadResult,
    UploadState,
)
from mediauploader.infrastructure.transport.base import (
    ProgressListener,
    TransportAdapter,
    TransportRequest,
    TransportResponse,
)

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]

STATUS_INCOMPLETE = 308
COMPLETE_STATUSES = frozenset({200, 201})


class UploadSession:
    """Drives one ``UploadJob`` through the resumable upload protocol.

    Requests are issued strictly one after another. Transport failures and 5xx
    answers while sending content are retried forever through a range probe
    after a backoff delay; every other failure ends the job.

    ``run()`` fires the terminal callback (if any) and then returns the result
    or raises the ``UploadError``. Cancellation fires no terminal callback.
    """

    def __init__(
        self,
        job: UploadJob,
        transport: TransportAdapter,
        *,
        callbacks: UploadCallbacks | None = None,
        backoff: BackoffPolicy | None = None,
        sleep: Sleep = asyncio.sleep,
        clock: Callable[[], float] = monotonic_seconds,
    ) -> None:
        self.job = job
        self.transport = transport
        self.callbacks = callbacks or UploadCallbacks()
        self.backoff = backoff or BackoffPolicy()
        self._sleep = sleep
        self._clock = clock
        self._started = False
        self._started_at = 0.0
        self._terminal_delivered = False

    @property
    def state(self) -> UploadState:
        return self.job.state

    async def run(self) -> UploadResult:
        if self.job.is_terminal or self._started:
            raise ValidationError(f"Upload job {self.job.name} has already been started.")
        self._started = True
        self._started_at = self._clock()

        try:
            result = await self._run_protocol()
        except asyncio.CancelledError:
            self._transition(UploadState.CANCELLED)
            logger.info("Upload of %s cancelled at byte %d", self.job.name, self.job.offset)
            raise
        except UploadError as exc:
            self._transition(UploadState.FAILED)
            self._deliver_error(exc)
            raise
        except Exception as exc:
            self._transition(UploadState.FAILED)
            logger.exception("Upload of %s failed unexpectedly", self.job.name)
            error = UnexpectedUploadError(f"Upload of {self.job.name} failed: {exc!r}")
            self._deliver_error(error)
            raise error from exc

        self._deliver_complete(result)
        return result

    async def _run_protocol(self) -> UploadResult:
        if self.job.session_url is None:
            await self._initiate()
            probe_next = False
        else:
            # Pre-seeded session: ask the server what it already holds.
            logger.debug("Resuming existing session for %s", self.job.name)
            probe_next = True
        self._transition(UploadState.TRANSMITTING)

        while True:
            if probe_next:
                response = await self._exchange(self._probe_request(), report_progress=False)
            else:
                response = await self._exchange(self._content_request(), report_progress=True)

            if response is None:
                self._transition(UploadState.INTERRUPTED)
                delay_ms = self.backoff.retry_delay()
                logger.warning(
                    "Upload of %s interrupted at byte %d; probing again in %d ms",
                    self.job.name,
                    self.job.offset,
                    delay_ms,
                )
                await self._sleep(delay_ms / 1000)
                probe_next = True
                continue

            status = response.status_code
            if status in COMPLETE_STATUSES:
                self.backoff.reset()
                self.job.offset = self.job.size
                self._transition(UploadState.COMPLETED)
                return UploadResult(status_code=status, body=response.text, headers=dict(response.headers))

            if status == STATUS_INCOMPLETE:
                self._apply_committed_range(response)
                self.backoff.reset()
                self._transition(UploadState.TRANSMITTING)
                if self.job.offset >= self.job.size:
                    if probe_next:
                        raise ProtocolViolation(
                            f"Server reports all {self.job.size} bytes committed but did not finish the upload."
                        )
                    probe_next = True
                else:
                    probe_next = False
                continue

            if 400 <= status < 500:
                raise FatalClientError(status, response.text, stage="content upload")
            raise ProtocolViolation(f"Unexpected HTTP {status} during content upload.")

    async def _initiate(self) -> None:
        self._transition(UploadState.INITIATING)
        request = TransportRequest(
            method=self.job.http_method,
            url=self.job.initiation_url(),
            headers={
                "Authorization": f"Bearer {self.job.credential}",
                "Content-Type": "application/json",
                "X-Upload-Content-Length": str(self.job.size),
                "X-Upload-Content-Type": self.job.content_type,
            },
            body=self.job.serialized_metadata(),
        )
        try:
            response = await self.transport.send(request)
        except TransportError as exc:
            raise TransportFailure(f"Could not open upload session: {exc}") from exc

        status = response.status_code
        if 400 <= status < 500:
            raise FatalClientError(status, response.text, stage="session initiation")
        if status >= 500:
            raise SessionInitiationError(status, response.text, stage="session initiation")

        location = (response.header("Location") or "").strip()
        if not location:
            raise ProtocolViolation(f"Session initiation answered HTTP {status} without a Location header.")
        # A relative Location is resolved against the initiating request.
        session_url = urljoin(request.url, location)
        if not is_absolute_http_url(session_url):
            raise ProtocolViolation(f"Session initiation returned an unusable Location: {location!r}")
        self.job.session_url = session_url
        logger.debug("Upload session for %s opened at %s", self.job.name, location)

    async def _exchange(self, request: TransportRequest, *, report_progress: bool) -> TransportResponse | None:
        """Send ``request``; ``None`` means the failure is transient."""
        listener: ProgressListener | None = None
        if report_progress and self.callbacks.on_progress is not None:
            base = self.job.offset

            def _forward(sent: int, _total: int) -> None:
                self._report_progress(base + sent)

            listener = _forward

        try:
            response = await self.transport.send(request, on_progress=listener)
        except TransportError as exc:
            logger.warning("Transport error while uploading %s: %s", self.job.name, exc)
            return None
        if response.status_code >= 500:
            logger.warning("Server error %d while uploading %s", response.status_code, self.job.name)
            return None
        return response

    def _content_request(self) -> TransportRequest:
        job = self.job
        end = min(job.offset + job.chunk_size, job.size) if job.chunk_size else job.size
        return TransportRequest(
            method="PUT",
            url=self._session_url(),
            headers={
                "Content-Type": job.content_type,
                "Content-Range": content_range(job.offset, end, job.size),
                "X-Upload-Content-Type": job.content_type,
            },
            body=job.content[job.offset : end],
        )

    def _probe_request(self) -> TransportRequest:
        return TransportRequest(
            method="PUT",
            url=self._session_url(),
            headers={
                "Content-Range": unknown_range(self.job.size),
                "X-Upload-Content-Type": self.job.content_type,
            },
        )

    def _session_url(self) -> str:
        if self.job.session_url is None:
            raise ProtocolViolation("No upload session is open.")
        return self.job.session_url

    def _apply_committed_range(self, response: TransportResponse) -> None:
        raw = response.header("Range")
        next_offset = next_offset_from_range(raw)
        if next_offset is None:
            raise ProtocolViolation(f"Incomplete-upload response carries no usable Range header: {raw!r}")
        if next_offset < self.job.offset or next_offset > self.job.size:
            raise ProtocolViolation(
                f"Committed range {raw!r} is inconsistent with offset {self.job.offset} "
                f"of {self.job.size} bytes."
            )
        self.job.offset = next_offset
        logger.debug("Server committed %s of %s; next offset %d", raw, self.job.name, next_offset)

    def _report_progress(self, bytes_sent: int) -> None:
        if self.callbacks.on_progress is None:
            return
        self.callbacks.on_progress(
            UploadProgress(
                bytes_sent=bytes_sent,
                total_bytes=self.job.size,
                elapsed_seconds=self._clock() - self._started_at,
            )
        )

    def _transition(self, state: UploadState) -> None:
        if self.job.state is not state:
            logger.debug("Upload %s: %s -> %s", self.job.name, self.job.state.value, state.value)
            self.job.state = state

    def _deliver_complete(self, result: UploadResult) -> None:
        if self._terminal_delivered:
            return
        self._terminal_delivered = True
        if self.callbacks.on_complete is not None:
            self.callbacks.on_complete(result)

    def _deliver_error(self, error: UploadError) -> None:
        if self._terminal_delivered:
            return
        self._terminal_delivered = True
        if self.callbacks.on_error is not None:
            self.callbacks.on_error(error)


class UploadHandle:
    """Caller-side view of an upload running as an asyncio task."""

    def __init__(self, session: UploadSession, task: asyncio.Task[UploadResult]) -> None:
        self.session = session
        self._task = task
        task.add_done_callback(self._on_done)

    @property
    def job(self) -> UploadJob:
        return self.session.job

    @property
    def state(self) -> UploadState:
        return self.session.state

    def done(self) -> bool:
        return self._task.done()

    def cancel(self) -> bool:
        """Abort any in-flight request or pending backoff wait."""
        if self._task.done():
            return False
        return self._task.cancel()

    async def wait(self) -> UploadResult:
        try:
            return await asyncio.shield(self._task)
        except asyncio.CancelledError:
            if self._task.cancelled():
                raise UploadCancelledError(f"Upload of {self.job.name} was cancelled.") from None
            raise

    def _on_done(self, task: asyncio.Task[UploadResult]) -> None:
        if task.cancelled():
            # A task cancelled before its first step never reached run().
            if not self.job.is_terminal:
                self.job.state = UploadState.CANCELLED
            return
        # Outcomes reach callers through callbacks or wait(); mark them retrieved.
        task.exception()


def start_upload(
    job: UploadJob,
    callbacks: UploadCallbacks | None = None,
    *,
    transport: TransportAdapter,
    backoff: BackoffPolicy | None = None,
    sleep: Sleep = asyncio.sleep,
) -> UploadHandle:
    """Schedule ``job`` on the running event loop and return its handle."""
    session = UploadSession(job, transport, callbacks=callbacks, backoff=backoff, sleep=sleep)
    task = asyncio.get_running_loop().create_task(session.run(), name=f"upload:{job.name}")
    return UploadHandle(session, task)
