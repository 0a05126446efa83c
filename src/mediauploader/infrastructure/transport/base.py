from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping, Protocol

ProgressListener = Callable[[int, int], None]


@dataclass(slots=True, frozen=True)
class TransportRequest:
    method: str
    url: str
    headers: Mapping[str, str] = field(default_factory=dict)
    body: bytes | None = None

    def header(self, name: str) -> str | None:
        wanted = name.lower()
        for key, value in self.headers.items():
            if key.lower() == wanted:
                return value
        return None


@dataclass(slots=True)
class TransportResponse:
    status_code: int
    headers: dict[str, str] = field(default_factory=dict)
    body: bytes = b""

    def __post_init__(self) -> None:
        self.headers = {str(k).lower(): str(v) for k, v in self.headers.items()}

    def header(self, name: str) -> str | None:
        return self.headers.get(name.lower())

    @property
    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")

    def json(self) -> Any:
        return json.loads(self.body)


class TransportAdapter(Protocol):
    """Network boundary used by upload sessions and pollers.

    Implementations raise ``TransportError`` when no response was received and
    must be safe to share between concurrently running jobs. Cancelling the
    task awaiting ``send`` aborts the request.
    """

    async def send(
        self,
        request: TransportRequest,
        on_progress: ProgressListener | None = None,
    ) -> TransportResponse: ...

    async def aclose(self) -> None: ...
