"""
Observable host document.

A BeautifulSoup tree plus the two things a live page gives a content script
for free: mutation records delivered to observers after the mutating code
yields, and delegated click handling.

Every structural change (by the host or by the engine) goes through the
mutation methods here, so observers see the engine's own writes too. Telling
them apart is the observer's job.

Node identity is object identity. bs4's `==` compares markup, so two
distinct but identical anchors would compare equal; never use it here.
"""

from __future__ import annotations

import asyncio
import inspect
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Iterable, Sequence

from bs4 import BeautifulSoup, PageElement, Tag


@dataclass(frozen=True)
class MutationRecord:
    """One childList change under `target`."""

    target: Tag
    added_nodes: tuple[PageElement, ...] = ()
    removed_nodes: tuple[PageElement, ...] = ()


MutationCallback = Callable[[list[MutationRecord]], None]
ClickListener = Callable[[Tag], Awaitable[Any] | None]


@dataclass(eq=False)
class _Subscription:
    callback: MutationCallback
    root: Tag
    pending: list[MutationRecord] = field(default_factory=list)


def contains(root: PageElement, node: PageElement) -> bool:
    if node is root:
        return True
    return any(parent is root for parent in node.parents)


class HostDocument:
    def __init__(self, soup: BeautifulSoup) -> None:
        self.soup = soup
        self._subscriptions: list[_Subscription] = []
        self._click_listeners: list[ClickListener] = []
        self._delivery_scheduled = False
        self.mutation_count = 0

    @classmethod
    def from_html(cls, html: str) -> HostDocument:
        return cls(BeautifulSoup(html, "lxml"))

    # -- querying -----------------------------------------------------------

    @property
    def body(self) -> Tag:
        body = self.soup.body
        if isinstance(body, Tag):
            return body
        return self.soup

    def select(self, selector: str) -> list[Tag]:
        return list(self.soup.select(selector))

    def select_one(self, selector: str) -> Tag | None:
        return self.soup.select_one(selector)

    def first_match(self, selectors: Sequence[str]) -> Tag:
        """First node matching any selector, in selector priority order; else body."""
        for selector in selectors:
            tag = self.soup.select_one(selector)
            if isinstance(tag, Tag):
                return tag
        return self.body

    def serialize(self) -> str:
        return str(self.soup)

    # -- node creation ------------------------------------------------------

    def new_element(self, name: str, attrs: dict[str, Any] | None = None, text: str | None = None) -> Tag:
        tag = self.soup.new_tag(name, attrs=attrs or {})
        if text is not None:
            tag.string = text
        return tag

    def parse_fragment(self, html: str) -> list[Tag]:
        """Element nodes of an HTML fragment, detached and ready to insert."""
        fragment = BeautifulSoup(html, "lxml")
        container = fragment.body if isinstance(fragment.body, Tag) else fragment
        return [node.extract() for node in list(container.children) if isinstance(node, Tag)]

    # -- mutations ----------------------------------------------------------

    def append_child(self, parent: Tag, node: PageElement) -> PageElement:
        parent.append(node)
        self._record(MutationRecord(target=parent, added_nodes=(node,)))
        return node

    def insert_after(self, reference: PageElement, node: PageElement) -> PageElement:
        parent = reference.parent
        if parent is None:
            raise ValueError("reference node is detached")
        reference.insert_after(node)
        self._record(MutationRecord(target=parent, added_nodes=(node,)))
        return node

    def remove(self, node: PageElement) -> PageElement:
        parent = node.parent
        if parent is None:
            return node
        node.extract()
        self._record(MutationRecord(target=parent, removed_nodes=(node,)))
        return node

    def replace(self, old: PageElement, new: PageElement) -> PageElement:
        parent = old.parent
        if parent is None:
            raise ValueError("node to replace is detached")
        old.replace_with(new)
        self._record(MutationRecord(target=parent, added_nodes=(new,), removed_nodes=(old,)))
        return old

    # -- observation --------------------------------------------------------

    def observe(self, callback: MutationCallback, root: Tag | None = None) -> Callable[[], None]:
        """
        Subscribe to mutations inside `root` (default: the whole document).

        Records are batched and delivered once the mutating code yields to the
        event loop, or immediately on `flush_records()`. Returns an unsubscribe
        callable.
        """
        subscription = _Subscription(callback=callback, root=root if root is not None else self.soup)
        self._subscriptions.append(subscription)

        def unsubscribe() -> None:
            if subscription in self._subscriptions:
                self._subscriptions.remove(subscription)
            subscription.pending.clear()

        return unsubscribe

    def flush_records(self) -> int:
        """Deliver every queued batch now. Returns the number of records delivered."""
        self._delivery_scheduled = False
        delivered = 0
        for subscription in list(self._subscriptions):
            if not subscription.pending:
                continue
            batch, subscription.pending = subscription.pending, []
            delivered += len(batch)
            subscription.callback(batch)
        return delivered

    def _record(self, record: MutationRecord) -> None:
        self.mutation_count += 1
        queued = False
        for subscription in self._subscriptions:
            if contains(subscription.root, record.target):
                subscription.pending.append(record)
                queued = True
        if queued:
            self._schedule_delivery()

    def _schedule_delivery(self) -> None:
        if self._delivery_scheduled:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop: records wait for an explicit flush_records().
            return
        self._delivery_scheduled = True
        loop.call_soon(self.flush_records)

    # -- events -------------------------------------------------------------

    def add_click_listener(self, listener: ClickListener) -> None:
        self._click_listeners.append(listener)

    def click(self, node: Tag) -> list[asyncio.Future]:
        """Dispatch a click on `node` to the delegated listeners."""
        pending: list[asyncio.Future] = []
        for listener in list(self._click_listeners):
            result = listener(node)
            if inspect.isawaitable(result):
                pending.append(asyncio.ensure_future(result))
        return pending


def element_nodes(nodes: Iterable[PageElement]) -> list[Tag]:
    return [node for node in nodes if isinstance(node, Tag)]
