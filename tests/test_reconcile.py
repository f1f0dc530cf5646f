"""
Tests for the reconciler.

Validates:
- Idempotence of successive passes
- At most one overlay per location
- Tag / affordance mutual exclusion
- Role rules (profile headers never get a button)
- Store failures leave the page as it was
- Single-flight scheduling
"""

import asyncio

import pytest

from handletag_core.errors import ErrorKind
from handletag_core.palette import TagColor
from handletag_core.store import MemoryStore
from overlay_service.dom.document import HostDocument
from overlay_service.reconcile import LocationRole, Reconciler
from overlay_service.render import BUTTON_CLASS, OVERLAY_SELECTOR, TAG_CLASS, OverlayKind, overlay_kind

from conftest import make_record, page_html, profile_html, tweet_html


def _run(reconciler: Reconciler):
    return asyncio.run(reconciler.run_pass())


def _overlays_after_each_location(reconciler: Reconciler) -> list[int]:
    counts = []
    for location in reconciler.candidate_locations():
        count = 0
        sibling = location.node.find_next_sibling()
        while overlay_kind(sibling) is not None:
            count += 1
            sibling = sibling.find_next_sibling()
        counts.append(count)
    return counts


class GatedStore(MemoryStore):
    """MemoryStore whose reads block until `gate` is set."""

    def __init__(self, records=None):
        super().__init__(records)
        self.gate = asyncio.Event()
        self.reads = 0

    async def _load(self):
        self.reads += 1
        await self.gate.wait()
        return await super()._load()


class TestCandidateLocations:
    def test_roles_in_document_order(self):
        document = HostDocument.from_html(page_html(tweet_html("alice"), profile=profile_html("carol")))
        locations = Reconciler(document, MemoryStore()).candidate_locations()

        assert [(loc.role, loc.href) for loc in locations] == [
            (LocationRole.profile_header, "/carol"),
            (LocationRole.content_item, "/alice"),
        ]

    def test_provenance_url_is_absolute(self, feed_document: HostDocument):
        reconciler = Reconciler(feed_document, MemoryStore())
        location = reconciler.candidate_locations()[1]
        assert reconciler.provenance_url(location.node) == "https://x.com/bob/status/2"

    def test_no_permalink_no_provenance(self):
        document = HostDocument.from_html(page_html(tweet_html("alice", permalink=False)))
        reconciler = Reconciler(document, MemoryStore())
        assert reconciler.provenance_url(reconciler.candidate_locations()[0].node) is None


class TestPass:
    def test_empty_store_offers_buttons_only(self, feed_document: HostDocument):
        report = _run(Reconciler(feed_document, MemoryStore()))

        assert report.actions == 2
        assert report.tags == 0
        assert feed_document.select(f".{TAG_CLASS}") == []

    def test_record_gets_tag_not_button(self, feed_document: HostDocument):
        store = MemoryStore({"@alice": make_record(tag="bot")})
        reconciler = Reconciler(feed_document, store)
        report = _run(reconciler)

        alice, bob = reconciler.candidate_locations()
        assert overlay_kind(alice.node.find_next_sibling()) is OverlayKind.tag
        assert overlay_kind(bob.node.find_next_sibling()) is OverlayKind.action
        assert (report.tags, report.actions) == (1, 1)

    def test_lookup_is_case_insensitive(self):
        document = HostDocument.from_html(page_html(tweet_html("Alice")))
        store = MemoryStore()
        asyncio.run(store.upsert("@ALICE", make_record(tag="bot")))

        _run(Reconciler(document, store))

        badge = document.select_one(f".{TAG_CLASS}")
        assert badge.get_text() == " [bot]"
        assert badge["data-handle-tagger-handle"] == "@Alice"

    def test_two_passes_are_byte_identical(self, feed_document: HostDocument):
        reconciler = Reconciler(feed_document, MemoryStore({"@bob": make_record(color=TagColor.purple)}))

        _run(reconciler)
        first = feed_document.serialize()
        _run(reconciler)

        assert feed_document.serialize() == first
        assert reconciler.last_report.cleared == 2

    def test_at_most_one_overlay_per_location(self):
        document = HostDocument.from_html(
            page_html(
                tweet_html("alice"),
                tweet_html("alice", status_id="7"),
                tweet_html("bob"),
                profile=profile_html("alice"),
            )
        )
        reconciler = Reconciler(document, MemoryStore({"@alice": make_record()}))
        for _ in range(3):
            _run(reconciler)
            assert _overlays_after_each_location(reconciler) == [1, 1, 1, 1]

    @pytest.mark.parametrize("tagged", [set(), {"@alice"}, {"@bob"}, {"@alice", "@bob", "@carol"}])
    def test_tagged_location_never_has_button(self, tagged):
        document = HostDocument.from_html(
            page_html(tweet_html("alice"), tweet_html("bob"), profile=profile_html("carol"))
        )
        store = MemoryStore({h: make_record() for h in tagged})
        reconciler = Reconciler(document, store)
        _run(reconciler)

        for location in reconciler.candidate_locations():
            handle = "@" + location.href.strip("/")
            kind = overlay_kind(location.node.find_next_sibling())
            if handle in tagged:
                assert kind is OverlayKind.tag
            else:
                assert kind is not OverlayKind.tag

    def test_profile_header_never_gets_button(self):
        document = HostDocument.from_html(page_html(profile=profile_html("carol")))
        report = _run(Reconciler(document, MemoryStore()))

        assert report.actions == 0
        assert document.select(OVERLAY_SELECTOR) == []

    def test_profile_header_gets_tag(self):
        document = HostDocument.from_html(page_html(profile=profile_html("carol")))
        _run(Reconciler(document, MemoryStore({"@carol": make_record()})))
        assert len(document.select(f".{TAG_CLASS}")) == 1

    def test_item_without_permalink_is_ineligible(self):
        document = HostDocument.from_html(page_html(tweet_html("alice", permalink=False)))
        report = _run(Reconciler(document, MemoryStore()))

        assert document.select(OVERLAY_SELECTOR) == []
        assert report.skipped[ErrorKind.INELIGIBLE_FOR_AFFORDANCE] == 1

    def test_item_without_permalink_still_shows_tag(self):
        document = HostDocument.from_html(page_html(tweet_html("alice", permalink=False)))
        _run(Reconciler(document, MemoryStore({"@alice": make_record()})))
        assert len(document.select(f".{TAG_CLASS}")) == 1

    def test_non_identity_href_is_skipped(self):
        html = page_html(
            '<div data-testid="UserProfileHeader_Items">'
            '<a href="/" role="link" dir="ltr">home</a>'
            '<a href="/i/flow/login" role="link" dir="ltr">log in</a>'
            "</div>"
        )
        document = HostDocument.from_html(html)
        report = _run(Reconciler(document, MemoryStore()))

        assert report.skipped[ErrorKind.EXTRACTION_MISMATCH] == 1
        # "/i/flow/login" reads as "@i"; without a record nothing is attached.
        assert document.select(OVERLAY_SELECTOR) == []

    def test_stale_overlays_from_recycled_nodes_are_swept(self, feed_document: HostDocument):
        reconciler = Reconciler(feed_document, MemoryStore())
        _run(reconciler)
        # Host recycles the first item's anchor into a different user.
        anchor = reconciler.candidate_locations()[0].node
        anchor["href"] = "/dave"
        stray = feed_document.new_element("span", attrs={"class": [TAG_CLASS]}, text=" [old]")
        feed_document.append_child(feed_document.body, stray)

        _run(reconciler)

        buttons = feed_document.select(f".{BUTTON_CLASS}")
        assert [b["data-handle-tagger-handle"] for b in buttons] == ["@dave", "@bob"]
        assert feed_document.select(f".{TAG_CLASS}") == []


class TestStoreFailure:
    def test_failed_snapshot_leaves_page_untouched(self, feed_document: HostDocument):
        store = MemoryStore({"@alice": make_record()})
        reconciler = Reconciler(feed_document, store)
        _run(reconciler)
        before = feed_document.serialize()

        store.available = False
        assert _run(reconciler) is None

        assert feed_document.serialize() == before
        assert reconciler.passes_completed == 1
        assert "@alice" in reconciler.snapshot


class TestScheduling:
    def test_requests_during_a_pass_collapse_into_one(self, feed_document: HostDocument):
        store = GatedStore()
        reconciler = Reconciler(feed_document, store)

        async def scenario():
            task = reconciler.request_pass()
            await asyncio.sleep(0)
            assert reconciler.busy
            for _ in range(5):
                assert reconciler.request_pass() is task
            store.gate.set()
            await reconciler.wait_idle()

        asyncio.run(scenario())
        assert reconciler.passes_completed == 2
        assert store.reads == 2

    def test_idle_request_starts_a_new_pass(self, feed_document: HostDocument):
        reconciler = Reconciler(feed_document, MemoryStore())

        async def scenario():
            await reconciler.request_pass()
            await reconciler.request_pass()

        asyncio.run(scenario())
        assert reconciler.passes_completed == 2

    def test_unexpected_error_does_not_escape(self, feed_document: HostDocument):
        class BrokenStore(MemoryStore):
            async def _load(self):
                raise RuntimeError("boom")

        reconciler = Reconciler(feed_document, BrokenStore())

        async def scenario():
            await reconciler.request_pass()

        asyncio.run(scenario())
        assert reconciler.passes_completed == 0
