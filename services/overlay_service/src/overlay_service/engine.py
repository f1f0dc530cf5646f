from __future__ import annotations

import asyncio
import logging

from bs4 import Tag

from handletag_core.identity import normalize_handle
from handletag_core.store import AnnotationStore
from overlay_service.dom.document import HostDocument
from overlay_service.editor import ConsolePrompter, EditorHost, Prompter
from overlay_service.observe import ChangeObserver
from overlay_service.reconcile import Reconciler
from overlay_service.render import HANDLE_ATTR, URL_ATTR, OverlayKind, OverlayRenderer, overlay_kind
from overlay_service.settings import OverlaySettings
from overlay_service.settings import settings as default_settings

logger = logging.getLogger(__name__)


class TaggerEngine:
    """
    Wires the pieces together for one host document:

    observer --(debounced)--> reconciler --> renderer
    clicks on overlays ----> editor --> store --> reconciler (immediate)
    """

    def __init__(
        self,
        document: HostDocument,
        store: AnnotationStore,
        *,
        settings: OverlaySettings | None = None,
        prompter: Prompter | None = None,
    ) -> None:
        self.document = document
        self.store = store
        self.settings = settings or default_settings
        self.renderer = OverlayRenderer(document)
        self.reconciler = Reconciler(document, store, renderer=self.renderer, settings=self.settings)
        self.observer = ChangeObserver(document, self.reconciler, settings=self.settings)
        self.editor = EditorHost(
            document,
            store,
            prompter=prompter or ConsolePrompter(),
            request_pass=self.reconciler.request_pass,
        )
        document.add_click_listener(self.activate)

    def start(self) -> asyncio.Task:
        # A modal left over from an earlier run is never valid.
        self.editor.close_all()
        return self.observer.start()

    def stop(self) -> None:
        self.observer.stop()
        self.editor.close_all()

    async def settle(self) -> None:
        """Wait until no debounce timer is pending and no pass is running."""
        while True:
            # Let queued mutation records reach the observer first.
            await asyncio.sleep(0)
            if self.observer.debouncer.pending:
                await asyncio.sleep(self.observer.debouncer.delay_s)
                continue
            if self.reconciler.busy:
                await self.reconciler.wait_idle()
                continue
            return

    async def activate(self, node: Tag) -> None:
        """Click handler for overlay elements and the editor modal."""
        kind = overlay_kind(node)
        if kind is OverlayKind.tag:
            handle = str(node.get(HANDLE_ATTR, ""))
            record = self.reconciler.snapshot.get(normalize_handle(handle))
            if record is None:
                logger.debug("Tag for %s clicked but no longer in the snapshot", handle)
                return
            self.editor.open(handle, record)
        elif kind is OverlayKind.action:
            handle = str(node.get(HANDLE_ATTR, ""))
            await self.editor.create_from_affordance(handle, node.get(URL_ATTR))
        else:
            pending = self.editor.handle_click(node)
            if pending is not None:
                await pending
