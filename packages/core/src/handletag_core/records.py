"""
AnnotationRecord: one user annotation per identity handle.

Persisted shape (one entry of the stored mapping):

    {"tag": str, "color": "#rrggbb", "url": str | null, "notes": str}
"""

from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from handletag_core.errors import InvalidAnnotationInput
from handletag_core.palette import TagColor


class AnnotationRecord(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    tag_text: str = Field(..., alias="tag", min_length=1, description="Short label shown next to the handle")
    color: TagColor = Field(..., description="Palette category")
    provenance_url: Optional[str] = Field(
        default=None, alias="url", description="Context the annotation was first created in"
    )
    notes: str = Field(default="", description="Free text")

    @classmethod
    def create(
        cls,
        *,
        tag_text: str | None,
        color: TagColor | str | None,
        provenance_url: str | None = None,
        notes: str | None = "",
    ) -> AnnotationRecord:
        """Build a record from user input, raising InvalidAnnotationInput on bad fields."""
        text = (tag_text or "").strip()
        if not text:
            raise InvalidAnnotationInput("Tag text cannot be empty.")
        if not isinstance(color, TagColor):
            color = TagColor.from_choice(color)
        return cls(tag_text=text, color=color, provenance_url=provenance_url or None, notes=notes or "")

    @classmethod
    def from_storage(cls, data: dict[str, Any]) -> AnnotationRecord:
        return cls.model_validate(data)

    def to_storage(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


def merge_provenance(existing: AnnotationRecord | None, incoming: AnnotationRecord) -> AnnotationRecord:
    """Keep the first provenance URL when an edit does not pass a new one."""
    if existing is None or incoming.provenance_url is not None:
        return incoming
    if existing.provenance_url is None:
        return incoming
    return incoming.model_copy(update={"provenance_url": existing.provenance_url})
