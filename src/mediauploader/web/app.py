from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import Any

from fastapi import FastAPI, Header, Query, Request
from fastapi.responses import JSONResponse, Response

from mediauploader.core.ids import new_session_token, new_uuid
from mediauploader.core.time import now_utc_iso

_CONTENT_RANGE = re.compile(r"^\s*bytes\s+(?:(\*)|(\d+)-(\d+))/(\d+)\s*$")


@dataclass(slots=True)
class SandboxSettings:
    """Behaviour knobs for the in-memory resumable upload server.

    ``access_token`` of ``None`` accepts any bearer token. ``commit_limit_bytes``
    caps how much of each content request is kept, forcing partial commits.
    ``injected_failures`` are statuses answered, in order, in place of the real
    response to the next session requests. Bytes those requests carry are still
    committed, as when a response is lost on the way back.
    """

    access_token: str | None = None
    commit_limit_bytes: int | None = None
    injected_failures: list[int] = field(default_factory=list)
    processing_polls: int = 1


@dataclass(slots=True)
class SandboxSession:
    id: str
    file_id: str | None
    size: int
    content_type: str
    metadata: dict[str, Any]
    data: bytearray = field(default_factory=bytearray)
    resource: dict[str, Any] | None = None


def create_app(settings: SandboxSettings | None = None) -> FastAPI:
    settings = settings or SandboxSettings()
    app = FastAPI(title="mediauploader sandbox", version="0.1.0")

    sessions: dict[str, SandboxSession] = {}
    video_polls: dict[str, int] = {}
    pending_failures = list(settings.injected_failures)
    app.state.sessions = sessions
    app.state.settings = settings

    def _error(status_code: int, message: str) -> JSONResponse:
        return JSONResponse(
            status_code=status_code,
            content={"error": {"code": status_code, "message": message}},
        )

    def _authorized(authorization: str | None) -> bool:
        if not authorization or not authorization.startswith("Bearer "):
            return False
        token = authorization[len("Bearer ") :].strip()
        if not token:
            return False
        return settings.access_token is None or token == settings.access_token

    async def _initiate(
        request: Request,
        *,
        file_id: str | None,
        upload_type: str | None,
        authorization: str | None,
        upload_length: str | None,
        upload_type_header: str | None,
    ) -> Response:
        if not _authorized(authorization):
            return _error(401, "Invalid Credentials")
        if upload_type != "resumable":
            return _error(400, "uploadType=resumable is required.")
        try:
            size = int(upload_length or "")
        except ValueError:
            return _error(400, "X-Upload-Content-Length header is required.")
        if size <= 0:
            return _error(400, "X-Upload-Content-Length must be positive.")

        raw_body = await request.body()
        try:
            metadata = json.loads(raw_body) if raw_body else {}
        except json.JSONDecodeError:
            return _error(400, "Metadata body is not valid JSON.")
        if not isinstance(metadata, dict):
            return _error(400, "Metadata body must be a JSON object.")

        session = SandboxSession(
            id=new_session_token(),
            file_id=file_id,
            size=size,
            content_type=upload_type_header or "application/octet-stream",
            metadata=metadata,
        )
        sessions[session.id] = session
        location = str(request.url_for("upload_content", session_id=session.id))
        return Response(status_code=200, headers={"Location": location})

    @app.post("/upload/files/")
    async def initiate_create(
        request: Request,
        upload_type: str | None = Query(default=None, alias="uploadType"),
        authorization: str | None = Header(default=None),
        x_upload_content_length: str | None = Header(default=None),
        x_upload_content_type: str | None = Header(default=None),
    ) -> Response:
        return await _initiate(
            request,
            file_id=None,
            upload_type=upload_type,
            authorization=authorization,
            upload_length=x_upload_content_length,
            upload_type_header=x_upload_content_type,
        )

    @app.put("/upload/files/{file_id}")
    async def initiate_replace(
        file_id: str,
        request: Request,
        upload_type: str | None = Query(default=None, alias="uploadType"),
        authorization: str | None = Header(default=None),
        x_upload_content_length: str | None = Header(default=None),
        x_upload_content_type: str | None = Header(default=None),
    ) -> Response:
        return await _initiate(
            request,
            file_id=file_id,
            upload_type=upload_type,
            authorization=authorization,
            upload_length=x_upload_content_length,
            upload_type_header=x_upload_content_type,
        )

    @app.put("/upload/sessions/{session_id}", name="upload_content")
    async def upload_content(
        session_id: str,
        request: Request,
        content_range: str | None = Header(default=None),
    ) -> Response:
        session = sessions.get(session_id)
        if session is None:
            return _error(404, "Upload session not found.")
        response = await _receive(session, request, content_range)
        if pending_failures and response.status_code < 400:
            return _error(pending_failures.pop(0), "Injected sandbox failure.")
        return response

    async def _receive(session: SandboxSession, request: Request, content_range: str | None) -> Response:
        if session.resource is not None:
            return JSONResponse(status_code=_final_status(session), content=session.resource)

        match = _CONTENT_RANGE.match(content_range or "")
        if match is None:
            return _error(400, f"Malformed Content-Range: {content_range!r}")
        if int(match.group(4)) != session.size:
            return _error(400, "Content-Range total does not match the declared upload size.")
        if match.group(1):
            return _incomplete(session)

        start, end = int(match.group(2)), int(match.group(3))
        body = await request.body()
        if end < start or end >= session.size or len(body) != end - start + 1:
            return _error(400, "Content-Range does not match the request body.")
        if start > len(session.data):
            # Gap: keep what we have and tell the client where to resume.
            return _incomplete(session)

        kept = body if settings.commit_limit_bytes is None else body[: settings.commit_limit_bytes]
        del session.data[start:]
        session.data.extend(kept)

        if len(session.data) < session.size:
            return _incomplete(session)

        session.resource = _finalize(session)
        video_polls[session.resource["id"]] = 0
        return JSONResponse(status_code=_final_status(session), content=session.resource)

    @app.get("/youtube/v3/videos")
    async def video_status(
        video_id: str = Query(alias="id"),
        part: str = Query(default="status"),
        authorization: str | None = Header(default=None),
    ) -> Response:
        if not _authorized(authorization):
            return _error(401, "Invalid Credentials")
        items: list[dict[str, Any]] = []
        if video_id in video_polls:
            video_polls[video_id] += 1
            processed = video_polls[video_id] > settings.processing_polls
            items.append(
                {
                    "kind": "youtube#video",
                    "id": video_id,
                    "status": {"uploadStatus": "processed" if processed else "uploaded"},
                }
            )
        return JSONResponse(content={"kind": "youtube#videoListResponse", "part": part, "items": items})

    return app


def _incomplete(session: SandboxSession) -> Response:
    headers = {}
    if session.data:
        headers["Range"] = f"bytes=0-{len(session.data) - 1}"
    return Response(status_code=308, headers=headers)


def _final_status(session: SandboxSession) -> int:
    return 200 if session.file_id else 201


def _finalize(session: SandboxSession) -> dict[str, Any]:
    return {
        "kind": "youtube#video",
        "id": session.file_id or new_uuid(),
        "snippet": session.metadata.get("snippet", {}),
        "metadata": session.metadata,
        "contentType": session.content_type,
        "size": session.size,
        "uploadedAt": now_utc_iso(),
    }
