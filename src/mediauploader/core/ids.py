from __future__ import annotations

import secrets
import uuid


def new_uuid() -> str:
    """Generate a new UUID4 as a string."""
    return str(uuid.uuid4())


def new_session_token() -> str:
    """Opaque URL-safe identifier for a resumable upload session."""
    return secrets.token_urlsafe(18)
