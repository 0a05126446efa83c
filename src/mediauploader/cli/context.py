from __future__ import annotations

from dataclasses import dataclass

from rich.console import Console

from mediauploader.core.config import UploaderSettings
from mediauploader.core.errors import ConfigurationError


@dataclass(slots=True)
class CLIContext:
    """Settings and console shared by every command handler of one invocation."""

    settings: UploaderSettings
    console: Console

    def require_token(self, override: str | None = None) -> str:
        """Bearer token from the command line, else from the environment."""
        token = (override or self.settings.access_token or "").strip()
        if not token:
            raise ConfigurationError("No access token. Pass --token or set MEDIAUP_ACCESS_TOKEN.")
        return token

    def chunk_size(self, override: int | None = None) -> int:
        size = self.settings.chunk_size if override is None else override
        if size < 0:
            raise ConfigurationError(f"--chunk-size must be >= 0, got {size}")
        return size
