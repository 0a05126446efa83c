from __future__ import annotations

import os
from dataclasses import dataclass

DRIVE_UPLOAD_URL = "https://www.googleapis.com/upload/drive/v2/files/"
YOUTUBE_UPLOAD_URL = "https://www.googleapis.com/upload/youtube/v3/videos"
YOUTUBE_API_URL = "https://www.googleapis.com/youtube/v3"


@dataclass(frozen=True)
class UploaderSettings:
    access_token: str | None
    upload_url: str
    api_url: str
    chunk_size: int
    request_timeout_seconds: float
    status_poll_interval_seconds: float


def load_settings() -> UploaderSettings:
    token = (os.getenv("MEDIAUP_ACCESS_TOKEN") or "").strip() or None

    return UploaderSettings(
        access_token=token,
        upload_url=(os.getenv("MEDIAUP_UPLOAD_URL") or "").strip() or YOUTUBE_UPLOAD_URL,
        api_url=(os.getenv("MEDIAUP_API_URL") or "").strip() or YOUTUBE_API_URL,
        chunk_size=_read_non_negative_int_env("MEDIAUP_CHUNK_SIZE", 0),
        request_timeout_seconds=_read_float_env("MEDIAUP_REQUEST_TIMEOUT_SECONDS", 60.0),
        status_poll_interval_seconds=_read_float_env("MEDIAUP_STATUS_POLL_INTERVAL_SECONDS", 10.0),
    )


def _read_non_negative_int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        value = int(raw.strip())
    except ValueError:
        return default
    return value if value >= 0 else default


def _read_float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        value = float(raw)
    except ValueError:
        return default
    return value if value > 0 else default
