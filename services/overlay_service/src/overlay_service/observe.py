"""
Change observer: watches the host document and schedules reconciliation.

    IDLE --relevant mutation--> PENDING(timer) --timer expires--> IDLE (+1 pass)
                                PENDING --relevant mutation--> PENDING (timer reset)

A mutation batch is relevant when an added or removed element is, or
contains, a node matching the relevance selector. Overlay elements never
match it, so the reconciler's own churn is invisible here.
"""

from __future__ import annotations

import asyncio
import enum
import logging
from typing import Callable

from bs4 import Tag

from overlay_service.dom.document import HostDocument, MutationRecord, element_nodes
from overlay_service.reconcile import Reconciler
from overlay_service.settings import OverlaySettings
from overlay_service.settings import settings as default_settings

logger = logging.getLogger(__name__)


class ObserverState(str, enum.Enum):
    idle = "idle"
    pending = "pending"


class Debouncer:
    """Calls `callback` once, `delay_s` after the most recent `trigger()`."""

    def __init__(self, delay_s: float, callback: Callable[[], None]) -> None:
        self.delay_s = delay_s
        self.callback = callback
        self._handle: asyncio.TimerHandle | None = None

    @property
    def pending(self) -> bool:
        return self._handle is not None

    def trigger(self) -> None:
        self.cancel()
        loop = asyncio.get_running_loop()
        self._handle = loop.call_later(self.delay_s, self._fire)

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _fire(self) -> None:
        self._handle = None
        self.callback()


class ChangeObserver:
    def __init__(
        self,
        document: HostDocument,
        reconciler: Reconciler,
        *,
        settings: OverlaySettings | None = None,
    ) -> None:
        self.document = document
        self.reconciler = reconciler
        self.settings = settings or default_settings
        self.debouncer = Debouncer(self.settings.debounce_s, self._on_settled)
        self.root: Tag | None = None
        self.passes_scheduled = 0
        self._unsubscribe: Callable[[], None] | None = None

    @property
    def state(self) -> ObserverState:
        return ObserverState.pending if self.debouncer.pending else ObserverState.idle

    @property
    def running(self) -> bool:
        return self._unsubscribe is not None

    def start(self) -> asyncio.Task:
        """Run one pass right away, then start watching. Returns the initial pass task."""
        task = self.reconciler.request_pass()
        if self._unsubscribe is None:
            self.root = self.document.first_match(self.settings.observe_root_selectors)
            self._unsubscribe = self.document.observe(self._on_mutations, root=self.root)
            logger.info("Mutation observer started on <%s>", self.root.name)
        return task

    def stop(self) -> None:
        self.debouncer.cancel()
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def is_relevant(self, record: MutationRecord) -> bool:
        selector = self.settings.relevance_selector
        for node in element_nodes(record.added_nodes + record.removed_nodes):
            if node.css.match(selector) or node.css.select_one(selector) is not None:
                return True
        return False

    def _on_mutations(self, records: list[MutationRecord]) -> None:
        if self._unsubscribe is None:
            return
        if any(self.is_relevant(record) for record in records):
            self.debouncer.trigger()

    def _on_settled(self) -> None:
        self.passes_scheduled += 1
        self.reconciler.request_pass()
