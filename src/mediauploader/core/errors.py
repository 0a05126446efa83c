from __future__ import annotations


class UploaderError(Exception):
    """Base error for all user-facing uploader exceptions."""


class ConfigurationError(UploaderError):
    """Raised when configuration is invalid or incomplete."""


class ValidationError(UploaderError):
    """Raised when model invariants fail."""


class TransportError(UploaderError):
    """Raised by transport adapters when a request never produced a response."""


class UploadError(UploaderError):
    """Terminal outcome of an upload job that did not complete."""

    state = "failed"


class HttpStatusError(UploadError):
    """An upload request answered with a status that ends the job."""

    def __init__(self, status_code: int, body: str, *, stage: str) -> None:
        self.status_code = status_code
        self.body = body
        self.stage = stage
        super().__init__(f"{stage} rejected with HTTP {status_code}: {self.message}")

    @property
    def message(self) -> str:
        # Local import keeps pydantic out of the import path of the error module.
        from mediauploader.domain.models.api_payloads import extract_error_message

        return extract_error_message(self.body)


class FatalClientError(HttpStatusError):
    """Raised when the server rejects a request with a 4xx status."""


class SessionInitiationError(HttpStatusError):
    """Raised when the server fails the session initiation request with a 5xx status."""


class ProtocolViolation(UploadError):
    """Raised when a response breaks the resumable upload contract."""


class TransportFailure(UploadError):
    """Raised when the session could not be negotiated because of a network failure."""


class UnexpectedUploadError(UploadError):
    """Raised when an upload ends on an exception outside the upload protocol."""


class UploadCancelledError(UploadError):
    """Raised when an upload is cancelled by the caller."""

    state = "cancelled"


class VideoProcessingError(UploaderError):
    """Raised when the server reports a permanent processing failure."""
