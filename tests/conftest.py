"""
Shared fixtures: host page builders, a scripted prompter and record helpers.
"""

from __future__ import annotations

import pytest

from handletag_core.palette import TagColor
from handletag_core.records import AnnotationRecord
from handletag_core.store import MemoryStore
from overlay_service.dom.document import HostDocument
from overlay_service.settings import OverlaySettings


def tweet_html(handle: str, *, status_id: str = "1", permalink: bool = True) -> str:
    """One feed item the way the host renders it."""
    if permalink:
        stamp = f'<a href="/{handle}/status/{status_id}"><time datetime="2024-01-01T00:00:00Z">Jan 1</time></a>'
    else:
        stamp = '<time datetime="2024-01-01T00:00:00Z">Jan 1</time>'
    return (
        '<article data-testid="tweet">'
        '<div data-testid="User-Name">'
        f'<a href="/{handle}" role="link" dir="ltr"><span>@{handle}</span></a>'
        f"{stamp}"
        "</div>"
        '<div data-testid="tweetText">hello</div>'
        "</article>"
    )


def profile_html(handle: str) -> str:
    return (
        '<div data-testid="UserProfileHeader_Items">'
        f'<a href="/{handle}" role="link" dir="ltr">@{handle}</a>'
        "</div>"
    )


def page_html(*items: str, profile: str = "") -> str:
    return (
        "<html><body><main>"
        '<div data-testid="primaryColumn">'
        f"{profile}"
        f'<section role="region">{"".join(items)}</section>'
        "</div>"
        "</main></body></html>"
    )


def make_record(
    tag: str = "spam",
    color: TagColor = TagColor.red,
    url: str | None = None,
    notes: str = "",
) -> AnnotationRecord:
    return AnnotationRecord(tag_text=tag, color=color, provenance_url=url, notes=notes)


class ScriptedPrompter:
    """Prompter that answers from a script and remembers what it was asked."""

    def __init__(self, answers: list[str | None] | None = None, *, confirm: bool = True) -> None:
        self.answers = list(answers or [])
        self.confirm_answer = confirm
        self.prompts: list[str] = []
        self.confirms: list[str] = []
        self.alerts: list[str] = []
        self.opened: list[str] = []

    def prompt(self, message: str) -> str | None:
        self.prompts.append(message)
        return self.answers.pop(0) if self.answers else None

    def confirm(self, message: str) -> bool:
        self.confirms.append(message)
        return self.confirm_answer

    def alert(self, message: str) -> None:
        self.alerts.append(message)

    def open_url(self, url: str) -> None:
        self.opened.append(url)


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def prompter() -> ScriptedPrompter:
    return ScriptedPrompter()


@pytest.fixture
def fast_settings() -> OverlaySettings:
    return OverlaySettings(debounce_s=0.05)


@pytest.fixture
def feed_document() -> HostDocument:
    return HostDocument.from_html(page_html(tweet_html("alice"), tweet_html("bob", status_id="2")))
