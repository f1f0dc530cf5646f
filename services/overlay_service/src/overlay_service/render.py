"""
Overlay renderer: the only code that writes overlay elements into the page.

Overlay elements are a `span` tag badge or a `button` action affordance,
placed as the next element sibling of the identity anchor. Neither ever
matches the observer's relevance selector, which keeps the engine's own
writes from scheduling further passes.
"""

from __future__ import annotations

import enum

from bs4 import Tag

from handletag_core.records import AnnotationRecord
from overlay_service.dom.document import HostDocument

TAG_CLASS = "handle-tagger-tag"
BUTTON_CLASS = "handle-tagger-button"
OVERLAY_SELECTOR = f".{TAG_CLASS}, .{BUTTON_CLASS}"

HANDLE_ATTR = "data-handle-tagger-handle"
COLOR_ATTR = "data-handle-tagger-color"
URL_ATTR = "data-handle-tagger-url"

_BUTTON_STYLE = (
    "margin-left: 4px; vertical-align: middle; border: 1px solid #ccc; border-radius: 3px; "
    "cursor: pointer; font-size: 10px; padding: 1px 3px; background-color: #eee"
)


class OverlayKind(str, enum.Enum):
    tag = "tag"
    action = "action"


def _classes(node: Tag) -> list[str]:
    value = node.get("class") or []
    if isinstance(value, str):
        return value.split()
    return list(value)


def overlay_kind(node: object) -> OverlayKind | None:
    if not isinstance(node, Tag):
        return None
    classes = _classes(node)
    if TAG_CLASS in classes:
        return OverlayKind.tag
    if BUTTON_CLASS in classes:
        return OverlayKind.action
    return None


class OverlayRenderer:
    def __init__(self, document: HostDocument) -> None:
        self.document = document

    def clear_all(self) -> int:
        """Remove every overlay element in the document. Returns how many were removed."""
        overlays = self.document.select(OVERLAY_SELECTOR)
        for node in overlays:
            self.document.remove(node)
        return len(overlays)

    def overlay_after(self, location: Tag) -> Tag | None:
        sibling = location.find_next_sibling()
        if overlay_kind(sibling) is None:
            return None
        return sibling

    def render(
        self,
        location: Tag,
        handle: str,
        record: AnnotationRecord | None,
        *,
        provenance_url: str | None = None,
    ) -> OverlayKind | None:
        """
        Make the overlay after `location` match the desired state.

        - record present: one tag badge (any affordance is replaced)
        - no record, provenance_url given: one action affordance
        - otherwise: no overlay

        Calling this again with the same inputs leaves the DOM untouched.
        """
        if record is not None:
            desired: Tag | None = self.build_tag(handle, record)
        elif provenance_url:
            desired = self.build_action(handle, provenance_url)
        else:
            desired = None

        existing = self.overlay_after(location)
        if desired is None:
            if existing is not None:
                self.document.remove(existing)
            return None

        if existing is not None:
            if str(existing) == str(desired):
                return overlay_kind(existing)
            self.document.remove(existing)
        self.document.insert_after(location, desired)
        return overlay_kind(desired)

    def build_tag(self, handle: str, record: AnnotationRecord) -> Tag:
        return self.document.new_element(
            "span",
            attrs={
                "class": [TAG_CLASS],
                HANDLE_ATTR: handle,
                COLOR_ATTR: record.color.value,
                "title": f"Click to edit/view notes for {handle}",
                "style": f"background-color: {record.color.value}; cursor: pointer",
            },
            text=f" [{record.tag_text}]",
        )

    def build_action(self, handle: str, provenance_url: str) -> Tag:
        return self.document.new_element(
            "button",
            attrs={
                "class": [BUTTON_CLASS],
                HANDLE_ATTR: handle,
                URL_ATTR: provenance_url,
                "title": f"Tag user {handle}",
                "style": _BUTTON_STYLE,
            },
            text="🏷️",
        )
