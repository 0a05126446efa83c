from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from mediauploader.core.errors import ValidationError

DEFAULT_TAGS = ("youtube-cors-upload",)
# "People & Blogs"
DEFAULT_CATEGORY_ID = 22
PRIVACY_STATUSES = ("public", "unlisted", "private")


@dataclass(slots=True)
class VideoMetadata:
    title: str
    description: str
    tags: list[str] = field(default_factory=lambda: list(DEFAULT_TAGS))
    category_id: int = DEFAULT_CATEGORY_ID
    privacy_status: str = "public"
    embeddable: bool = True

    def __post_init__(self) -> None:
        if not self.title.strip():
            raise ValidationError("Please enter a title for your video.")
        if not self.description.strip():
            raise ValidationError("Please enter a description for your video.")
        if self.privacy_status not in PRIVACY_STATUSES:
            raise ValidationError(
                f"Unsupported privacy status '{self.privacy_status}'. "
                f"Expected one of: {', '.join(PRIVACY_STATUSES)}"
            )

    def to_resource(self) -> dict[str, Any]:
        return {
            "snippet": {
                "title": self.title,
                "description": self.description,
                "tags": list(self.tags),
                "categoryId": self.category_id,
            },
            "status": {
                "privacyStatus": self.privacy_status,
                "embeddable": self.embeddable,
            },
        }

    def part(self) -> str:
        return ",".join(self.to_resource().keys())

    def upload_params(self) -> dict[str, str]:
        return {"part": self.part()}
