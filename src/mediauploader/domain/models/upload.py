from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable
from urllib.parse import quote, urlencode, urlsplit

from mediauploader.core.config import DRIVE_UPLOAD_URL
from mediauploader.core.errors import ValidationError

if TYPE_CHECKING:
    from mediauploader.core.errors import UploadError

DEFAULT_CONTENT_TYPE = "application/octet-stream"


class UploadState(str, Enum):
    INITIATING = "initiating"
    TRANSMITTING = "transmitting"
    INTERRUPTED = "interrupted"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATES = frozenset({UploadState.COMPLETED, UploadState.FAILED, UploadState.CANCELLED})


def is_absolute_http_url(url: str) -> bool:
    parts = urlsplit(url)
    return parts.scheme in ("http", "https") and bool(parts.netloc)


@dataclass(slots=True)
class UploadJob:
    """One upload attempt of a single payload.

    ``session_url`` and ``offset`` may be pre-seeded to resume a session that an
    earlier process negotiated; the job then starts by probing the server.
    """

    content: bytes
    credential: str | None = None
    content_type: str = DEFAULT_CONTENT_TYPE
    name: str = "upload.bin"
    metadata: dict[str, Any] | None = None
    chunk_size: int = 0
    offset: int = 0
    file_id: str | None = None
    base_url: str = DRIVE_UPLOAD_URL
    params: dict[str, str] = field(default_factory=dict)
    upload_url: str | None = None
    session_url: str | None = None
    state: UploadState = UploadState.INITIATING

    def __post_init__(self) -> None:
        if isinstance(self.content, (bytearray, memoryview)):
            self.content = bytes(self.content)
        if not isinstance(self.content, bytes):
            raise ValidationError("Upload content must be bytes.")
        if not self.content:
            raise ValidationError(f"Refusing to upload empty payload: {self.name}")
        if self.chunk_size < 0:
            raise ValidationError(f"chunk_size must be >= 0, got {self.chunk_size}")
        if not 0 <= self.offset <= self.size:
            raise ValidationError(f"offset {self.offset} outside payload of {self.size} bytes")
        if self.offset and self.session_url is None:
            raise ValidationError("A non-zero offset requires the session_url it was committed to.")
        if self.session_url is not None and not is_absolute_http_url(self.session_url):
            raise ValidationError(f"session_url must be an absolute http(s) URL, got {self.session_url!r}")
        if self.session_url is None and not (self.credential or "").strip():
            raise ValidationError("An access token is required to start an upload session.")
        self.content_type = self.content_type or DEFAULT_CONTENT_TYPE
        if self.metadata is None:
            self.metadata = {"title": self.name, "mimeType": self.content_type}

    @property
    def size(self) -> int:
        return len(self.content)

    @property
    def http_method(self) -> str:
        return "PUT" if self.file_id else "POST"

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    def initiation_url(self) -> str:
        if self.upload_url:
            return self.upload_url
        url = self.base_url
        if self.file_id:
            url += self.file_id
        query = urlencode({**self.params, "uploadType": "resumable"}, quote_via=quote)
        separator = "&" if "?" in url else "?"
        return f"{url}{separator}{query}"

    def serialized_metadata(self) -> bytes:
        return json.dumps(self.metadata, ensure_ascii=True).encode("utf-8")


@dataclass(slots=True, frozen=True)
class UploadProgress:
    bytes_sent: int
    total_bytes: int
    elapsed_seconds: float = 0.0

    @property
    def percent(self) -> float:
        if self.total_bytes <= 0:
            return 100.0
        return self.bytes_sent * 100 / self.total_bytes

    @property
    def bytes_per_second(self) -> float | None:
        if self.elapsed_seconds <= 0:
            return None
        return self.bytes_sent / self.elapsed_seconds

    @property
    def eta_seconds(self) -> float | None:
        rate = self.bytes_per_second
        if not rate:
            return None
        return (self.total_bytes - self.bytes_sent) / rate


@dataclass(slots=True)
class UploadResult:
    status_code: int
    body: str
    headers: dict[str, str] = field(default_factory=dict)

    def json(self) -> Any:
        return json.loads(self.body)

    @property
    def resource_id(self) -> str | None:
        try:
            payload = self.json()
        except json.JSONDecodeError:
            return None
        if isinstance(payload, dict) and payload.get("id") is not None:
            return str(payload["id"])
        return None


@dataclass(slots=True)
class UploadCallbacks:
    on_progress: Callable[[UploadProgress], None] | None = None
    on_complete: Callable[[UploadResult], None] | None = None
    on_error: Callable[["UploadError"], None] | None = None
