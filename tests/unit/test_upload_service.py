import asyncio
import json

import pytest

from mediauploader.application.services.upload_service import UploadSession, start_upload
from mediauploader.core.backoff import BackoffPolicy
from mediauploader.core.config import DRIVE_UPLOAD_URL
from mediauploader.core.errors import (
    FatalClientError,
    ProtocolViolation,
    SessionInitiationError,
    TransportError,
    TransportFailure,
    UnexpectedUploadError,
    UploadCancelledError,
    ValidationError,
)
from mediauploader.domain.models.upload import UploadCallbacks, UploadJob, UploadState
from mediauploader.infrastructure.transport.base import TransportRequest, TransportResponse

SESSION_URL = "https://example/session/abc"


class ScriptedTransport:
    def __init__(self, *replies: object) -> None:
        self.replies = list(replies)
        self.requests: list[TransportRequest] = []

    async def send(self, request: TransportRequest, on_progress=None) -> TransportResponse:  # noqa: ANN001
        self.requests.append(request)
        if not self.replies:
            raise AssertionError(f"Unexpected request: {request.method} {request.url}")
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        if on_progress is not None and request.body:
            half = len(request.body) // 2
            if half:
                on_progress(half, len(request.body))
            on_progress(len(request.body), len(request.body))
        return reply

    async def aclose(self) -> None:
        return None


class RecordingSleep:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


def _response(status: int, body: str = "", **headers: str) -> TransportResponse:
    return TransportResponse(status_code=status, headers=headers, body=body.encode("utf-8"))


def _opened() -> TransportResponse:
    return _response(200, Location=SESSION_URL)


def _incomplete(last_byte: int) -> TransportResponse:
    return _response(308, Range=f"bytes=0-{last_byte}")


def _done(resource_id: str = "vid-1") -> TransportResponse:
    return _response(201, json.dumps({"id": resource_id, "kind": "youtube#video"}))


def _job(size: int = 10, **kwargs) -> UploadJob:  # noqa: ANN003
    kwargs.setdefault("credential", "tok")
    kwargs.setdefault("content_type", "video/mp4")
    kwargs.setdefault("name", "clip.mp4")
    return UploadJob(content=bytes(range(size)), **kwargs)


def _session(job: UploadJob, transport: ScriptedTransport, **kwargs) -> UploadSession:  # noqa: ANN003
    kwargs.setdefault("sleep", RecordingSleep())
    kwargs.setdefault("backoff", BackoffPolicy(jitter=lambda: 0))
    return UploadSession(job, transport, **kwargs)


def _content_ranges(transport: ScriptedTransport) -> list[str | None]:
    return [request.header("Content-Range") for request in transport.requests[1:]]


@pytest.mark.asyncio
async def test_single_shot_upload_uses_location_verbatim() -> None:
    job = _job(metadata={"snippet": {"title": "Clip"}})
    transport = ScriptedTransport(_opened(), _done("vid-42"))
    completed = []
    session = _session(job, transport, callbacks=UploadCallbacks(on_complete=completed.append))

    result = await session.run()

    init, content = transport.requests
    assert init.method == "POST"
    assert init.url == f"{DRIVE_UPLOAD_URL}?uploadType=resumable"
    assert init.header("Authorization") == "Bearer tok"
    assert init.header("Content-Type") == "application/json"
    assert init.header("X-Upload-Content-Length") == "10"
    assert init.header("X-Upload-Content-Type") == "video/mp4"
    assert json.loads(init.body or b"") == {"snippet": {"title": "Clip"}}

    assert content.method == "PUT"
    assert content.url == SESSION_URL
    assert content.header("Content-Range") == "bytes 0-9/10"
    assert content.header("Content-Type") == "video/mp4"
    assert content.header("Authorization") is None
    assert content.body == job.content

    assert result.resource_id == "vid-42"
    assert completed == [result]
    assert job.session_url == SESSION_URL
    assert job.state is UploadState.COMPLETED


@pytest.mark.asyncio
async def test_replacing_existing_resource_uses_put_on_resource_url() -> None:
    job = _job(file_id="abc123", params={"part": "snippet,status"})
    transport = ScriptedTransport(_opened(), _response(200, '{"id": "abc123"}'))

    await _session(job, transport).run()

    init = transport.requests[0]
    assert init.method == "PUT"
    assert init.url == f"{DRIVE_UPLOAD_URL}abc123?part=snippet%2Cstatus&uploadType=resumable"


@pytest.mark.asyncio
async def test_chunked_upload_follows_committed_ranges() -> None:
    job = _job(size=10, chunk_size=4)
    offsets: list[int] = []

    class OffsetRecordingTransport(ScriptedTransport):
        async def send(self, request: TransportRequest, on_progress=None) -> TransportResponse:  # noqa: ANN001
            offsets.append(job.offset)
            return await super().send(request, on_progress)

    transport = OffsetRecordingTransport(_opened(), _incomplete(3), _incomplete(7), _done())
    await _session(job, transport).run()

    assert _content_ranges(transport) == ["bytes 0-3/10", "bytes 4-7/10", "bytes 8-9/10"]
    assert [request.body for request in transport.requests[1:]] == [
        job.content[0:4],
        job.content[4:8],
        job.content[8:10],
    ]
    assert offsets[1:] == [0, 4, 8]
    assert job.offset == job.size
    assert job.state is UploadState.COMPLETED


@pytest.mark.asyncio
async def test_partial_commit_resumes_from_reported_range() -> None:
    job = _job(size=8192)
    transport = ScriptedTransport(_opened(), _incomplete(4095), _done())

    await _session(job, transport).run()

    assert _content_ranges(transport) == ["bytes 0-8191/8192", "bytes 4096-8191/8192"]
    assert transport.requests[2].body == job.content[4096:]


@pytest.mark.asyncio
async def test_server_error_probes_after_backoff_then_resumes() -> None:
    job = _job(size=10)
    sleep = RecordingSleep()
    transport = ScriptedTransport(_opened(), _response(503), _incomplete(4), _done())

    result = await _session(job, transport, sleep=sleep).run()

    probe = transport.requests[2]
    assert probe.method == "PUT"
    assert probe.url == SESSION_URL
    assert probe.header("Content-Range") == "bytes */10"
    assert probe.body is None
    assert transport.requests[3].header("Content-Range") == "bytes 5-9/10"
    assert sleep.delays == [1.0]
    assert result.status_code == 201


@pytest.mark.asyncio
async def test_transport_errors_are_retried_with_growing_backoff() -> None:
    job = _job(size=10)
    sleep = RecordingSleep()
    transport = ScriptedTransport(
        _opened(),
        TransportError("connection reset"),
        _response(500),
        TransportError("timed out"),
        _response(502),
        _done(),
    )

    await _session(job, transport, sleep=sleep).run()

    assert sleep.delays == [1.0, 2.0, 4.0, 8.0]
    assert [request.header("Content-Range") for request in transport.requests[2:]] == ["bytes */10"] * 4


@pytest.mark.asyncio
async def test_backoff_resets_after_incomplete_response() -> None:
    job = _job(size=10)
    sleep = RecordingSleep()
    transport = ScriptedTransport(
        _opened(),
        _response(503),
        _response(503),
        _incomplete(4),
        _response(503),
        _done(),
    )

    await _session(job, transport, sleep=sleep).run()

    assert sleep.delays == [1.0, 2.0, 1.0]


@pytest.mark.asyncio
async def test_probing_twice_for_same_range_gives_same_offset() -> None:
    job = _job(size=10)
    transport = ScriptedTransport(
        _opened(),
        _response(503),
        _incomplete(4),
        _response(500),
        _incomplete(4),
        _done(),
    )

    await _session(job, transport).run()

    assert _content_ranges(transport) == [
        "bytes 0-9/10",
        "bytes */10",
        "bytes 5-9/10",
        "bytes */10",
        "bytes 5-9/10",
    ]


@pytest.mark.asyncio
async def test_full_commit_without_completion_is_followed_by_probe() -> None:
    job = _job(size=10)
    transport = ScriptedTransport(_opened(), _incomplete(9), _done())

    await _session(job, transport).run()

    assert _content_ranges(transport) == ["bytes 0-9/10", "bytes */10"]


@pytest.mark.asyncio
@pytest.mark.parametrize("stage_replies", [(), (_opened(),), (_opened(), _response(503))])
async def test_forbidden_fails_immediately_at_any_stage(stage_replies: tuple) -> None:
    job = _job(size=10)
    forbidden = _response(403, json.dumps({"error": {"code": 403, "message": "quotaExceeded"}}))
    transport = ScriptedTransport(*stage_replies, forbidden)
    completed, errors = [], []
    session = _session(
        job,
        transport,
        callbacks=UploadCallbacks(on_complete=completed.append, on_error=errors.append),
    )

    with pytest.raises(FatalClientError) as excinfo:
        await session.run()

    assert excinfo.value.status_code == 403
    assert excinfo.value.message == "quotaExceeded"
    assert errors == [excinfo.value]
    assert completed == []
    assert len(transport.requests) == len(stage_replies) + 1
    assert job.state is UploadState.FAILED


@pytest.mark.asyncio
async def test_initiation_without_location_is_protocol_violation() -> None:
    transport = ScriptedTransport(_response(200))

    with pytest.raises(ProtocolViolation, match="Location"):
        await _session(_job(), transport).run()
    assert len(transport.requests) == 1


@pytest.mark.asyncio
async def test_relative_location_resolves_against_initiation_url() -> None:
    job = _job(base_url="https://uploads.example/upload/files/")
    transport = ScriptedTransport(_response(200, Location="/upload/sessions/abc"), _done())

    await _session(job, transport).run()

    assert job.session_url == "https://uploads.example/upload/sessions/abc"
    assert transport.requests[1].url == "https://uploads.example/upload/sessions/abc"


@pytest.mark.asyncio
@pytest.mark.parametrize("location", ["ftp://files.example/session", "mailto:uploads@example.com"])
async def test_non_http_location_is_protocol_violation(location: str) -> None:
    job = _job()
    errors = []
    transport = ScriptedTransport(_response(200, Location=location))

    with pytest.raises(ProtocolViolation, match="Location"):
        await _session(job, transport, callbacks=UploadCallbacks(on_error=errors.append)).run()

    assert len(errors) == 1
    assert len(transport.requests) == 1
    assert job.session_url is None
    assert job.state is UploadState.FAILED


@pytest.mark.asyncio
async def test_unexpected_transport_exception_fails_job_once() -> None:
    job = _job()
    errors, completed = [], []
    transport = ScriptedTransport(_opened(), ValueError("unknown url type"))

    with pytest.raises(UnexpectedUploadError) as excinfo:
        await _session(
            job,
            transport,
            callbacks=UploadCallbacks(on_complete=completed.append, on_error=errors.append),
        ).run()

    assert isinstance(excinfo.value.__cause__, ValueError)
    assert errors == [excinfo.value]
    assert completed == []
    assert job.state is UploadState.FAILED
    assert len(transport.requests) == 2


@pytest.mark.asyncio
async def test_failing_progress_callback_fails_job() -> None:
    job = _job()
    errors = []

    def on_progress(update: object) -> None:
        raise RuntimeError("progress bar closed")

    transport = ScriptedTransport(_opened(), _done())
    handle = start_upload(
        job,
        UploadCallbacks(on_progress=on_progress, on_error=errors.append),
        transport=transport,
    )

    with pytest.raises(UnexpectedUploadError, match="progress bar closed"):
        await handle.wait()

    assert len(errors) == 1
    assert handle.state is UploadState.FAILED


@pytest.mark.asyncio
async def test_initiation_failures_are_not_retried() -> None:
    server_error = ScriptedTransport(_response(500, "backend down"))
    with pytest.raises(SessionInitiationError) as excinfo:
        await _session(_job(), server_error).run()
    assert excinfo.value.body == "backend down"
    assert len(server_error.requests) == 1

    network_error = ScriptedTransport(TransportError("dns failure"))
    with pytest.raises(TransportFailure):
        await _session(_job(), network_error).run()
    assert len(network_error.requests) == 1


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "incomplete",
    [
        _response(308),
        _response(308, Range="0-4"),
        _response(308, Range="bytes=0-"),
        _response(308, Range="bytes=0-99"),
    ],
)
async def test_unusable_committed_range_fails(incomplete: TransportResponse) -> None:
    job = _job(size=10)
    errors = []
    transport = ScriptedTransport(_opened(), incomplete)

    with pytest.raises(ProtocolViolation):
        await _session(job, transport, callbacks=UploadCallbacks(on_error=errors.append)).run()

    assert len(errors) == 1
    assert job.offset == 0
    assert len(transport.requests) == 2


@pytest.mark.asyncio
async def test_committed_range_moving_backwards_fails() -> None:
    job = _job(size=10, chunk_size=4)
    transport = ScriptedTransport(_opened(), _incomplete(7), _incomplete(2))

    with pytest.raises(ProtocolViolation, match="inconsistent"):
        await _session(job, transport).run()
    assert job.offset == 8


@pytest.mark.asyncio
async def test_unexpected_success_status_is_protocol_violation() -> None:
    transport = ScriptedTransport(_opened(), _response(204))

    with pytest.raises(ProtocolViolation, match="204"):
        await _session(_job(), transport).run()


@pytest.mark.asyncio
async def test_preseeded_session_starts_with_probe() -> None:
    job = _job(size=10, credential=None, session_url=SESSION_URL, offset=4)
    transport = ScriptedTransport(_incomplete(5), _done())

    await _session(job, transport).run()

    assert [request.header("Content-Range") for request in transport.requests] == [
        "bytes */10",
        "bytes 6-9/10",
    ]


@pytest.mark.asyncio
async def test_progress_is_reported_against_whole_payload() -> None:
    job = _job(size=10, chunk_size=4)
    updates = []
    transport = ScriptedTransport(_opened(), _incomplete(3), _incomplete(7), _done())
    ticks = iter(range(100))

    session = _session(
        job,
        transport,
        callbacks=UploadCallbacks(on_progress=updates.append),
        clock=lambda: float(next(ticks)),
    )
    await session.run()

    assert [update.bytes_sent for update in updates] == [2, 4, 6, 8, 9, 10]
    assert {update.total_bytes for update in updates} == {10}
    assert updates[-1].percent == 100.0
    assert updates[1].percent == 40.0
    assert updates[0].elapsed_seconds > 0


@pytest.mark.asyncio
async def test_session_cannot_run_twice() -> None:
    session = _session(_job(), ScriptedTransport(_opened(), _done()))
    await session.run()

    with pytest.raises(ValidationError):
        await session.run()


@pytest.mark.asyncio
async def test_cancel_during_backoff_stops_all_activity() -> None:
    job = _job(size=10)
    sleeping = asyncio.Event()

    async def blocking_sleep(seconds: float) -> None:
        sleeping.set()
        await asyncio.Event().wait()

    transport = ScriptedTransport(_opened(), _response(503))
    completed, errors = [], []
    handle = start_upload(
        job,
        UploadCallbacks(on_complete=completed.append, on_error=errors.append),
        transport=transport,
        sleep=blocking_sleep,
    )

    await sleeping.wait()
    assert handle.state is UploadState.INTERRUPTED
    assert handle.cancel() is True

    with pytest.raises(UploadCancelledError):
        await handle.wait()
    await asyncio.sleep(0)

    assert len(transport.requests) == 2
    assert completed == []
    assert errors == []
    assert handle.state is UploadState.CANCELLED
    assert handle.cancel() is False


@pytest.mark.asyncio
async def test_cancel_aborts_in_flight_request() -> None:
    in_flight = asyncio.Event()

    class HangingTransport(ScriptedTransport):
        async def send(self, request: TransportRequest, on_progress=None) -> TransportResponse:  # noqa: ANN001
            if request.body is not None and request.header("Content-Range"):
                self.requests.append(request)
                in_flight.set()
                await asyncio.Event().wait()
            return await super().send(request, on_progress)

    transport = HangingTransport(_opened())
    errors = []
    handle = start_upload(_job(), UploadCallbacks(on_error=errors.append), transport=transport)

    await in_flight.wait()
    handle.cancel()
    with pytest.raises(UploadCancelledError):
        await handle.wait()

    assert errors == []
    assert handle.state is UploadState.CANCELLED
    assert handle.done() is True


@pytest.mark.asyncio
async def test_start_upload_delivers_completion_once() -> None:
    completed = []
    handle = start_upload(
        _job(),
        UploadCallbacks(on_complete=completed.append),
        transport=ScriptedTransport(_opened(), _done("vid-9")),
    )

    result = await handle.wait()

    assert result.resource_id == "vid-9"
    assert completed == [result]
    assert handle.state is UploadState.COMPLETED
