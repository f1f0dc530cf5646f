"""
Editor UI: the modal editor for an existing annotation and the prompt-driven
creation flow behind the action button.

Both write through the store and then ask the reconciler for a pass directly,
skipping the observer's debounce so the page updates immediately.
"""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Protocol

import typer
from bs4 import Tag

from handletag_core.errors import InvalidAnnotationInput, StoreUnavailable
from handletag_core.palette import TagColor, format_menu
from handletag_core.records import AnnotationRecord
from handletag_core.store import AnnotationStore
from overlay_service.dom.document import HostDocument, contains

logger = logging.getLogger(__name__)

MODAL_ID = "handle-tagger-modal"
TAG_INPUT_ID = "tagger-tag-text"
COLOR_SELECT_ID = "tagger-tag-color"
NOTES_ID = "tagger-tag-notes"


class Prompter(Protocol):
    def prompt(self, message: str) -> str | None: ...

    def confirm(self, message: str) -> bool: ...

    def alert(self, message: str) -> None: ...

    def open_url(self, url: str) -> None: ...


class ConsolePrompter:
    """Terminal prompts via typer. Ctrl-C / EOF at a prompt counts as cancel."""

    def prompt(self, message: str) -> str | None:
        try:
            return typer.prompt(message, default="", show_default=False)
        except typer.Abort:
            return None

    def confirm(self, message: str) -> bool:
        try:
            return typer.confirm(message, default=False)
        except typer.Abort:
            return False

    def alert(self, message: str) -> None:
        typer.secho(message, fg=typer.colors.YELLOW, err=True)

    def open_url(self, url: str) -> None:
        typer.launch(url)


class EditorSession:
    """One open modal for one handle. Created through EditorHost.open()."""

    def __init__(self, host: EditorHost, handle: str, record: AnnotationRecord) -> None:
        self.host = host
        self.handle = handle
        self.record = record
        self.modal = host._mount_modal(handle, record)

    @property
    def is_open(self) -> bool:
        return self.host.active is self

    def form_values(self) -> dict[str, str]:
        tag_input = self.modal.select_one(f"#{TAG_INPUT_ID}")
        selected = self.modal.select_one(f"#{COLOR_SELECT_ID} option[selected]")
        notes = self.modal.select_one(f"#{NOTES_ID}")
        return {
            "tag": str(tag_input.get("value", "")) if tag_input else "",
            "color": str(selected.get("value", "")) if selected else "",
            "notes": notes.get_text() if notes else "",
        }

    def fill(
        self,
        *,
        tag_text: str | None = None,
        color: TagColor | str | None = None,
        notes: str | None = None,
    ) -> None:
        """Type into the form. Raises InvalidAnnotationInput for an unknown color."""
        if tag_text is not None:
            self.modal.select_one(f"#{TAG_INPUT_ID}")["value"] = tag_text
        if color is not None:
            chosen = color if isinstance(color, TagColor) else TagColor.from_choice(color)
            for option in self.modal.select(f"#{COLOR_SELECT_ID} option"):
                if option.get("value") == chosen.value:
                    option["selected"] = "selected"
                elif "selected" in option.attrs:
                    del option["selected"]
        if notes is not None:
            self.modal.select_one(f"#{NOTES_ID}").string = notes

    async def save(
        self,
        *,
        tag_text: str | None = None,
        color: TagColor | str | None = None,
        notes: str | None = None,
    ) -> bool:
        prompter = self.host.prompter
        try:
            self.fill(tag_text=tag_text, color=color, notes=notes)
            values = self.form_values()
            # No provenance URL: the store keeps the one recorded at creation.
            record = AnnotationRecord.create(
                tag_text=values["tag"], color=values["color"], provenance_url=None, notes=values["notes"]
            )
        except InvalidAnnotationInput as exc:
            prompter.alert(exc.message)
            return False

        try:
            await self.host.store.upsert(self.handle, record)
        except StoreUnavailable as exc:
            logger.warning("Save failed for %s: %s", self.handle, exc.to_log_message())
            prompter.alert("Could not save the tag: storage is unavailable.")
            return False

        self.close()
        self.host.request_pass()
        return True

    async def delete(self) -> bool:
        if not self.host.prompter.confirm(f"Are you sure you want to delete the tag for {self.handle}?"):
            return False
        try:
            deleted = await self.host.store.delete(self.handle)
        except StoreUnavailable as exc:
            logger.warning("Delete failed for %s: %s", self.handle, exc.to_log_message())
            self.host.prompter.alert("Could not delete the tag: storage is unavailable.")
            return False
        self.close()
        if deleted:
            self.host.request_pass()
        return deleted

    def view_source(self) -> bool:
        if self.record.provenance_url:
            self.host.prompter.open_url(self.record.provenance_url)
            return True
        self.host.prompter.alert("No source URL recorded for this tag.")
        return False

    def close(self) -> None:
        self.host._unmount_modal(self.modal)
        if self.host.active is self:
            self.host.active = None


class EditorHost:
    """Owns the single editor session and the creation flow."""

    def __init__(
        self,
        document: HostDocument,
        store: AnnotationStore,
        *,
        prompter: Prompter,
        request_pass: Callable[[], Any],
    ) -> None:
        self.document = document
        self.store = store
        self.prompter = prompter
        self.request_pass = request_pass
        self.active: EditorSession | None = None

    def open(self, handle: str, record: AnnotationRecord) -> EditorSession:
        """Open an editor for `handle`, closing whatever editor was open before."""
        self.close_all()
        self.active = EditorSession(self, handle, record)
        return self.active

    def close_all(self) -> None:
        if self.active is not None:
            self.active.close()
        for stale in self.document.select(f"#{MODAL_ID}"):
            self.document.remove(stale)

    async def create_from_affordance(self, handle: str, provenance_url: str | None) -> AnnotationRecord | None:
        tag_text = self.prompter.prompt(f"Enter a short tag for {handle}:")
        if tag_text is None:
            logger.info("Tagging cancelled.")
            return None
        if not tag_text.strip():
            self.prompter.alert("Tag text cannot be empty.")
            return None

        choice = self.prompter.prompt(f"Choose a color category for {handle}:\n\n{format_menu()}")
        if choice is None:
            logger.info("Tagging cancelled.")
            return None

        try:
            record = AnnotationRecord.create(
                tag_text=tag_text, color=TagColor.from_choice(choice), provenance_url=provenance_url, notes=""
            )
        except InvalidAnnotationInput as exc:
            self.prompter.alert(exc.message)
            return None

        try:
            await self.store.upsert(handle, record)
        except StoreUnavailable as exc:
            logger.warning("Create failed for %s: %s", handle, exc.to_log_message())
            self.prompter.alert("Could not save the tag: storage is unavailable.")
            return None

        self.request_pass()
        return record

    def handle_click(self, node: Tag) -> Awaitable[Any] | None:
        """Route a click inside the open modal to the matching session action."""
        session = self.active
        if session is None or not contains(session.modal, node):
            return None
        button = node if node.name == "button" else node.find_parent("button")
        if button is None:
            return None
        action = (button.get("class") or [None])[0]
        if action == "save":
            return session.save()
        if action == "delete":
            return session.delete()
        if action == "source":
            session.view_source()
        elif action == "close":
            session.close()
        return None

    # -- modal markup -------------------------------------------------------

    def _mount_modal(self, handle: str, record: AnnotationRecord) -> Tag:
        doc = self.document
        modal = doc.new_element("div", attrs={"id": MODAL_ID})
        modal.append(doc.new_element("h4", text=f"Edit Tag for {handle}"))

        modal.append(doc.new_element("label", attrs={"for": TAG_INPUT_ID}, text="Tag:"))
        modal.append(doc.new_element("input", attrs={"type": "text", "id": TAG_INPUT_ID, "value": record.tag_text}))

        modal.append(doc.new_element("label", attrs={"for": COLOR_SELECT_ID}, text="Color:"))
        select = doc.new_element("select", attrs={"id": COLOR_SELECT_ID})
        for color in TagColor.menu():
            attrs = {"value": color.value}
            if color is record.color:
                attrs["selected"] = "selected"
            select.append(doc.new_element("option", attrs=attrs, text=color.label))
        modal.append(select)

        modal.append(doc.new_element("label", attrs={"for": NOTES_ID}, text="Notes:"))
        modal.append(doc.new_element("textarea", attrs={"id": NOTES_ID}, text=record.notes))

        actions = doc.new_element("div", attrs={"class": ["modal-actions"]})
        for css_class, label in (("save", "Save"), ("source", "Go to Source"), ("delete", "Delete Tag"), ("close", "Close")):
            actions.append(doc.new_element("button", attrs={"class": [css_class]}, text=label))
        modal.append(actions)

        doc.append_child(doc.body, modal)
        return modal

    def _unmount_modal(self, modal: Tag) -> None:
        self.document.remove(modal)
