from decimal import Decimal

from afripos.app.models import Product
from afripos.app.offline_store import OfflineStore


def test_store_opens_lazily_and_reuses_its_handle():
    s = OfflineStore()
    assert s.is_open is False
    assert s.count_unsynced() == 0
    assert s.is_open is True

    conn = s._conn
    s.open()
    assert s._conn is conn
    s.close()
    assert s.is_open is False


def test_enqueue_and_list_unsynced_is_fifo(store):
    for n in ("A", "B", "C"):
        e = store.enqueue("order", n, "create", {"order": {"order_number": n}})
        assert e.synced is False

    entries = store.list_unsynced()
    assert [e.entity_id for e in entries] == ["A", "B", "C"]
    assert entries[0].id < entries[1].id < entries[2].id
    assert entries[0].payload == {"order": {"order_number": "A"}}
    assert store.count_unsynced() == 3


def test_payload_serializes_decimals_and_datetimes(store):
    e = store.enqueue("order", "ORD-1", "create", {"total": Decimal("27.00")})
    assert e.payload == {"total": "27.00"}


def test_mark_synced_is_idempotent(store):
    e = store.enqueue("order", "A", "create", {})
    assert store.mark_synced(e.id) is True
    assert store.mark_synced(e.id) is False

    got = store.get_entry(e.id)
    assert got.synced is True
    assert got.synced_at is not None
    assert store.list_unsynced() == []


def test_record_failure_keeps_entry_and_tracks_attempts(store):
    e = store.enqueue("order", "A", "create", {})
    store.record_failure(e.id, "remote rejected")
    store.record_failure(e.id, "still rejected")

    got = store.get_entry(e.id)
    assert got.synced is False
    assert got.attempt_count == 2
    assert got.last_error == "still rejected"
    assert got.last_attempt_at is not None
    assert store.count_unsynced() == 1


def test_queue_survives_reopen(tmp_path):
    path = str(tmp_path / "nested" / "offline.sqlite")
    with OfflineStore(path) as s:
        s.enqueue("order", "A", "create", {"k": 1})

    with OfflineStore(path) as s:
        entries = s.list_unsynced()
    assert [(e.entity_id, e.payload) for e in entries] == [("A", {"k": 1})]


def test_product_cache_upserts(store):
    p = Product(id="p1", name="Tea", price=Decimal("1.50"), category="drinks")
    assert store.cache_products([p, {"name": "no id"}]) == 1
    store.cache_products([p.model_copy(update={"price": Decimal("1.75")})])

    rows = store.cached_products()
    assert len(rows) == 1
    assert Product.from_row(rows[0]).price == Decimal("1.75")


def test_category_cache_accepts_names_and_mappings(store):
    store.cache_categories(["drinks", {"id": "food", "name": "Food"}])
    assert store.cached_categories() == [{"id": "drinks", "name": "drinks"}, {"id": "food", "name": "Food"}]


def test_receipts_and_settings(store):
    assert store.last_receipt() is None
    store.save_receipt("sale", {"order": {"order_number": "ORD-1"}})
    store.save_receipt("sale", {"order": {"order_number": "ORD-2"}})
    assert store.last_receipt()["receipt"]["order"]["order_number"] == "ORD-2"

    assert store.get_setting("branding:s1", {"x": 1}) == {"x": 1}
    store.set_setting("branding:s1", {"business_name": "A"})
    store.set_setting("branding:s1", {"business_name": "B"})
    assert store.get_setting("branding:s1") == {"business_name": "B"}
