import threading

from afripos.app.connectivity import ConnectivityMonitor
from afripos.workers.offline_sync import SyncReconciler, replay_entry, run_sync_loop


def _queue_order(store, number, total="10.00"):
    return store.enqueue(
        "order",
        number,
        "create",
        {
            "order": {"order_number": number, "total": total, "status": "pending"},
            "items": [{"product_id": "p1", "quantity": 1, "total": total}],
            "payments": [{"payment_method": "cash", "amount": total}],
        },
    )


def test_drain_replays_in_insertion_order(store, remote):
    for n in ("ORD-A", "ORD-B", "ORD-C"):
        _queue_order(store, n)

    assert SyncReconciler(store, remote).drain() == 3
    assert [o["order_number"] for o in remote.orders] == ["ORD-A", "ORD-B", "ORD-C"]
    assert store.count_unsynced() == 0


def test_failing_entry_does_not_block_later_entries(store, remote, capsys):
    for n in ("ORD-A", "ORD-B", "ORD-C"):
        _queue_order(store, n)
    remote.reject_order_numbers.add("ORD-B")
    reconciler = SyncReconciler(store, remote)

    assert reconciler.drain() == 2
    assert [o["order_number"] for o in remote.orders] == ["ORD-A", "ORD-C"]
    (left,) = store.list_unsynced()
    assert left.entity_id == "ORD-B"
    assert left.attempt_count == 1
    assert left.last_error == "rejected ORD-B"
    assert "sync.entry.failed" in capsys.readouterr().err

    remote.reject_order_numbers.clear()
    assert reconciler.drain() == 1
    assert store.count_unsynced() == 0


def test_replay_after_lost_ack_does_not_duplicate(store, remote):
    e = _queue_order(store, "ORD-A")
    remote.create_order_bundle({"order_number": "ORD-A"}, [], [])

    assert SyncReconciler(store, remote).drain() == 1
    assert len(remote.orders) == 1
    assert store.get_entry(e.id).synced is True


def test_replayed_orders_are_marked_completed(store, remote):
    _queue_order(store, "ORD-A")
    SyncReconciler(store, remote).drain()
    assert remote.orders[0]["status"] == "completed"
    assert remote.items[0]["order_id"] == remote.orders[0]["id"]


def test_other_entities_go_to_the_remote_sync_queue(store, remote):
    store.enqueue("customer", "c-1", "update", {"name": "Amina"})
    assert SyncReconciler(store, remote).drain() == 1
    assert remote.sync_rows[0].entity_id == "c-1"
    assert remote.sync_rows[0].payload == {"name": "Amina"}


def test_order_entry_without_number_is_kept_with_an_error(store, remote):
    e = store.enqueue("order", "broken", "create", {"order": {}})
    assert SyncReconciler(store, remote).drain() == 0
    assert store.get_entry(e.id).last_error == "queued order has no order_number"


def test_drain_without_remote_or_entries_is_a_noop(store, remote):
    _queue_order(store, "ORD-A")
    assert SyncReconciler(store, None).drain() == 0
    assert store.count_unsynced() == 1

    SyncReconciler(store, remote).drain()
    assert SyncReconciler(store, remote).drain() == 0


def test_concurrent_drain_call_is_skipped(store, remote):
    _queue_order(store, "ORD-A")
    reconciler = SyncReconciler(store, remote)
    results = []
    entered = threading.Event()
    release = threading.Event()
    real_bundle = remote.create_order_bundle

    def slow_bundle(header, items, payments):
        entered.set()
        release.wait(5)
        return real_bundle(header, items, payments)

    remote.create_order_bundle = slow_bundle
    t = threading.Thread(target=lambda: results.append(reconciler.drain()))
    t.start()
    assert entered.wait(5)
    assert reconciler.is_draining is True
    assert reconciler.drain() == 0
    release.set()
    t.join(5)

    assert results == [1]
    assert len(remote.orders) == 1


def test_replay_entry_uses_bundle_for_orders(store, remote):
    e = _queue_order(store, "ORD-A")
    replay_entry(remote, e)
    assert remote.calls == ["create_order_bundle"]


def test_sync_loop_only_drains_when_online(store, remote):
    _queue_order(store, "ORD-A")
    reconciler = SyncReconciler(store, remote)

    offline = ConnectivityMonitor(online=False)
    assert run_sync_loop(reconciler, offline, once=True) == 0
    assert store.count_unsynced() == 1

    online = ConnectivityMonitor(online=False, probe=lambda: True)
    online.on_reconnect(reconciler.drain)
    assert run_sync_loop(reconciler, online, once=True) == 0
    assert store.count_unsynced() == 0
    assert len(remote.orders) == 1


def test_sync_loop_survives_a_failing_pass(store, capsys):
    class Broken:
        def drain(self):
            raise RuntimeError("disk full")

    assert run_sync_loop(Broken(), None, once=True) == 0
    assert "sync.loop.error" in capsys.readouterr().err


def test_sync_loop_stops_on_event(store, remote):
    stop = threading.Event()
    stop.set()
    assert run_sync_loop(SyncReconciler(store, remote), None, interval_s=60, stop=stop) == 0
