"""
Reconciler: one pass resets and rebuilds every overlay from one store snapshot.

A pass has a single suspension point (reading the snapshot). Everything after
it, the sweep and the rebuild, runs without yielding, so the DOM writes of two
passes never interleave. Locations are re-derived on every pass; no node
reference survives from one pass to the next.
"""

from __future__ import annotations

import asyncio
import enum
import logging
from collections import Counter
from dataclasses import dataclass, field
from urllib.parse import urljoin

from bs4 import Tag

from handletag_core.errors import ErrorKind, StoreUnavailable
from handletag_core.identity import extract_handle, normalize_handle
from handletag_core.records import AnnotationRecord
from handletag_core.store import AnnotationStore
from overlay_service.dom.document import HostDocument
from overlay_service.render import OverlayKind, OverlayRenderer
from overlay_service.settings import OverlaySettings
from overlay_service.settings import settings as default_settings

logger = logging.getLogger(__name__)


class LocationRole(str, enum.Enum):
    profile_header = "profile_header"
    content_item = "content_item"


@dataclass(frozen=True, eq=False)
class CandidateLocation:
    node: Tag
    role: LocationRole
    href: str | None


@dataclass
class PassReport:
    number: int
    cleared: int = 0
    locations: int = 0
    tags: int = 0
    actions: int = 0
    skipped: Counter = field(default_factory=Counter)

    def summary(self) -> str:
        return (
            f"pass {self.number}: {self.locations} locations, {self.tags} tags, "
            f"{self.actions} buttons, {self.cleared} cleared, "
            f"{self.skipped[ErrorKind.EXTRACTION_MISMATCH]} non-identities, "
            f"{self.skipped[ErrorKind.INELIGIBLE_FOR_AFFORDANCE]} without permalink"
        )


class Reconciler:
    def __init__(
        self,
        document: HostDocument,
        store: AnnotationStore,
        *,
        renderer: OverlayRenderer | None = None,
        settings: OverlaySettings | None = None,
    ) -> None:
        self.document = document
        self.store = store
        self.renderer = renderer or OverlayRenderer(document)
        self.settings = settings or default_settings
        self.passes_completed = 0
        self.last_report: PassReport | None = None
        self._snapshot: dict[str, AnnotationRecord] = {}
        self._task: asyncio.Task | None = None
        self._rerun = False

    @property
    def snapshot(self) -> dict[str, AnnotationRecord]:
        """Records as of the last pass that read the store successfully."""
        return self._snapshot

    # -- scheduling ---------------------------------------------------------

    def request_pass(self) -> asyncio.Task:
        """
        Ask for a pass. Single-flight: while a pass is running, further requests
        collapse into one trailing pass that starts after it finishes.
        """
        if self._task is not None and not self._task.done():
            self._rerun = True
            return self._task
        self._task = asyncio.get_running_loop().create_task(self._drain())
        return self._task

    @property
    def busy(self) -> bool:
        return self._task is not None and not self._task.done()

    async def wait_idle(self) -> None:
        while self._task is not None and not self._task.done():
            await asyncio.shield(self._task)

    async def _drain(self) -> None:
        while True:
            self._rerun = False
            try:
                await self.run_pass()
            except Exception:
                # Never let a failing pass escape into the host page.
                logger.exception("Reconciliation pass failed")
            if not self._rerun:
                return

    # -- the pass -----------------------------------------------------------

    async def run_pass(self) -> PassReport | None:
        try:
            snapshot = await self.store.get_all()
        except StoreUnavailable as exc:
            logger.warning("Skipping pass, overlays left as they are: %s", exc.to_log_message())
            return None

        self._snapshot = snapshot
        self.passes_completed += 1
        report = self.apply(snapshot, number=self.passes_completed)
        self.last_report = report
        logger.info(report.summary())
        return report

    def apply(self, snapshot: dict[str, AnnotationRecord], *, number: int = 0) -> PassReport:
        """Structural reset, then one overlay decision per candidate location."""
        report = PassReport(number=number)
        report.cleared = self.renderer.clear_all()

        processed: set[int] = set()
        for location in self.candidate_locations():
            report.locations += 1
            if id(location.node) in processed:
                continue

            handle = extract_handle(location.href)
            if handle is None:
                report.skipped[ErrorKind.EXTRACTION_MISMATCH] += 1
                continue

            record = snapshot.get(normalize_handle(handle))
            provenance_url = None
            if record is None:
                # Profile headers have no natural creation origin: never a button.
                if location.role is not LocationRole.content_item:
                    continue
                provenance_url = self.provenance_url(location.node)
                if provenance_url is None:
                    report.skipped[ErrorKind.INELIGIBLE_FOR_AFFORDANCE] += 1
                    continue

            kind = self.renderer.render(location.node, handle, record, provenance_url=provenance_url)
            processed.add(id(location.node))
            if kind is OverlayKind.tag:
                report.tags += 1
            elif kind is OverlayKind.action:
                report.actions += 1
            logger.debug("%s (%s) -> %s", handle, location.role.value, kind.value if kind else "nothing")

        return report

    def candidate_locations(self) -> list[CandidateLocation]:
        s = self.settings
        nodes = self.document.select(f"{s.profile_handle_selector}, {s.content_handle_selector}")
        locations = []
        for node in nodes:
            if node.css.match(s.content_handle_selector):
                role = LocationRole.content_item
            else:
                role = LocationRole.profile_header
            href = node.get("href")
            locations.append(CandidateLocation(node=node, role=role, href=href if isinstance(href, str) else None))
        return locations

    def provenance_url(self, node: Tag) -> str | None:
        """Permalink of the content item enclosing `node`, resolved against base_url."""
        item = node.css.closest(self.settings.content_item_selector)
        if item is None:
            return None
        time_el = item.select_one(self.settings.provenance_selector)
        if time_el is None:
            return None
        link = time_el.find_parent("a")
        if link is None:
            return None
        href = link.get("href")
        if not isinstance(href, str) or not href.strip():
            return None
        return urljoin(self.settings.base_url, href.strip())
