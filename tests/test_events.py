"""Tests for the file tree event bus."""

import logging

from corta.events import FileTreeEvents, FileTreeEventType, PageSlim, page_slim_from_row
from corta.types import PageType


PAGE = PageSlim(uuid="p1", title="Ideas")


class TestDelivery:
    """Publish/subscribe ordering and isolation."""

    def test_two_listeners_called_once_in_order(self):
        bus = FileTreeEvents()
        seen = []
        bus.subscribe(lambda t, p: seen.append(("first", t, p.uuid)))
        bus.subscribe(lambda t, p: seen.append(("second", t, p.uuid)))

        bus.publish(FileTreeEventType.INSERT, PAGE)

        assert seen == [
            ("first", FileTreeEventType.INSERT, "p1"),
            ("second", FileTreeEventType.INSERT, "p1"),
        ]

    def test_raising_listener_does_not_block_others(self, caplog):
        bus = FileTreeEvents()
        seen = []

        def broken(event_type, page):
            raise RuntimeError("boom")

        bus.subscribe(broken)
        bus.subscribe(lambda t, p: seen.append(p.uuid))

        with caplog.at_level(logging.ERROR, logger="corta.events"):
            bus.publish("DELETE", PAGE)

        assert seen == ["p1"]
        assert "File tree listener failed" in caplog.text

    def test_no_buffering_for_late_subscribers(self):
        bus = FileTreeEvents()
        bus.publish(FileTreeEventType.INSERT, PAGE)
        seen = []
        bus.subscribe(lambda t, p: seen.append(p))
        assert seen == []

    def test_publish_without_listeners(self):
        FileTreeEvents().publish(FileTreeEventType.INSERT, PAGE)


class TestUnsubscribe:
    """Subscription handles."""

    def test_unsubscribe_stops_delivery(self):
        bus = FileTreeEvents()
        seen = []
        sub = bus.subscribe(lambda t, p: seen.append(p))
        sub()
        bus.publish(FileTreeEventType.INSERT, PAGE)
        assert seen == []
        assert not sub.active
        assert bus.listener_count == 0

    def test_unsubscribe_twice_is_harmless(self):
        bus = FileTreeEvents()
        sub = bus.subscribe(lambda t, p: None)
        sub.close()
        sub.close()
        assert bus.listener_count == 0

    def test_unsubscribe_during_publish(self):
        """A listener removing itself mid-delivery affects only later publishes."""
        bus = FileTreeEvents()
        seen = []
        subs = {}

        def once(event_type, page):
            seen.append("once")
            subs["once"]()

        subs["once"] = bus.subscribe(once)
        bus.subscribe(lambda t, p: seen.append("always"))

        bus.publish(FileTreeEventType.INSERT, PAGE)
        bus.publish(FileTreeEventType.INSERT, PAGE)

        assert seen == ["once", "always", "always"]

    def test_same_callback_subscribed_twice(self):
        bus = FileTreeEvents()
        seen = []

        def cb(event_type, page):
            seen.append(page.uuid)

        first = bus.subscribe(cb)
        bus.subscribe(cb)
        first()
        bus.publish(FileTreeEventType.INSERT, PAGE)
        assert seen == ["p1"]

    def test_context_manager(self):
        bus = FileTreeEvents()
        with bus.subscribe(lambda t, p: None):
            assert bus.listener_count == 1
        assert bus.listener_count == 0


class TestFilteredSubscriptions:
    def test_inserts_and_deletes(self):
        bus = FileTreeEvents()
        inserts, deletes = [], []
        bus.subscribe_inserts(inserts.append)
        bus.subscribe_deletes(deletes.append)

        bus.publish(FileTreeEventType.INSERT, PAGE)
        bus.publish(FileTreeEventType.DELETE, PageSlim(uuid="p2", title="Old"))

        assert [p.uuid for p in inserts] == ["p1"]
        assert [p.uuid for p in deletes] == ["p2"]


class TestStoreChanges:
    """Mapping raw store rows to events."""

    def test_row_mapping(self):
        page = page_slim_from_row({"uuid": "f", "title": "Dir", "type": "folder", "parent_uuid": None})
        assert page == PageSlim(uuid="f", title="Dir", type=PageType.FOLDER)

    def test_rows_without_uuid_or_title_are_ignored(self):
        bus = FileTreeEvents()
        seen = []
        bus.subscribe(lambda t, p: seen.append(p))
        assert not bus.publish_store_change("INSERT", {"uuid": "x"})
        assert not bus.publish_store_change("INSERT", None)
        assert seen == []

    def test_soft_delete_update_is_a_delete(self):
        bus = FileTreeEvents()
        seen = []
        bus.subscribe(lambda t, p: seen.append(t))

        assert bus.publish_store_change("UPDATE", {"uuid": "a", "title": "A", "is_deleted": True})
        assert not bus.publish_store_change("UPDATE", {"uuid": "a", "title": "A", "is_deleted": False})
        assert bus.publish_store_change("delete", {"uuid": "a", "title": "A"})

        assert seen == [FileTreeEventType.DELETE, FileTreeEventType.DELETE]
