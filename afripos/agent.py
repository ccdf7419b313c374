#!/usr/bin/env python3
"""
Local till agent: operational commands around the offline store.

  --init-db        create the local SQLite schema and exit
  --outbox         list queued (unsynced) entries as JSON
  --drain          replay the queue to the remote store once
  --watch          probe connectivity, drain on reconnect and periodically
  --last-receipt   print the last stored receipt as a printable HTML page
"""

import argparse
import json
import os
import sys
import threading

from afripos.app.config import settings
from afripos.app.connectivity import ConnectivityMonitor
from afripos.app.db import close_pool, create_pool
from afripos.app.jsonlog import json_log
from afripos.app.models import ReceiptSettings
from afripos.app.offline_store import OfflineStore
from afripos.app.receipts import build_receipt_html, empty_receipt_document, printable_document
from afripos.app.remote import PostgresRemoteStore
from afripos.workers.offline_sync import SyncReconciler, run_sync_loop


def _outbox(store: OfflineStore) -> list:
    return [
        {
            "id": e.id,
            "entity_type": e.entity_type,
            "entity_id": e.entity_id,
            "action": e.action,
            "created_at": e.created_at,
            "attempt_count": e.attempt_count,
            "last_error": e.last_error,
        }
        for e in store.list_unsynced()
    ]


def _last_receipt_html(store: OfflineStore) -> str:
    row = store.last_receipt()
    if not row:
        return empty_receipt_document()
    snap = row.get("receipt") or {}
    s = ReceiptSettings.coerce(snap.get("settings"))
    return printable_document(build_receipt_html(s, "order", snap.get("order") or {}), s.paper_width_mm)


def _open_remote(db_url: str):
    if not db_url:
        return None, None
    pool = create_pool(db_url, settings.pool_min_size, settings.pool_max_size, settings.remote_timeout_s)
    return pool, PostgresRemoteStore(pool)


def _watch(store: OfflineStore, remote, interval_s: float, once: bool) -> int:
    reconciler = SyncReconciler(store, remote)
    # Without a health URL there is no probe; assume reachable and let drain failures speak.
    monitor = ConnectivityMonitor.for_health_url(settings.health_url, online=settings.health_url is None)
    monitor.on_reconnect(reconciler.drain)
    stop = threading.Event()
    try:
        return run_sync_loop(reconciler, monitor, interval_s=interval_s, once=once, stop=stop)
    except KeyboardInterrupt:
        stop.set()
        return 0


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(prog="afripos-agent")
    parser.add_argument("--init-db", action="store_true", help="Initialize local SQLite schema and exit")
    parser.add_argument(
        "--db",
        default=settings.offline_db_path,
        help="SQLite offline store path (default: ~/.afripos/offline.sqlite or AFRIPOS_OFFLINE_DB).",
    )
    parser.add_argument(
        "--database-url",
        default=settings.db_url,
        help="Remote Postgres conninfo (default: DATABASE_URL). Required for --drain and --watch.",
    )
    parser.add_argument("--outbox", action="store_true", help="List unsynced queue entries and exit")
    parser.add_argument("--drain", action="store_true", help="Replay the queue once and exit")
    parser.add_argument("--watch", action="store_true", help="Keep draining on reconnect and every --sleep seconds")
    parser.add_argument("--sleep", type=float, default=settings.sync_interval_s)
    parser.add_argument("--once", action="store_true", help="With --watch: run a single pass and exit")
    parser.add_argument("--last-receipt", action="store_true", help="Print the last receipt as HTML and exit")
    args = parser.parse_args(argv)

    store = OfflineStore(os.path.abspath(os.path.expanduser(args.db)))
    try:
        store.open()
        if args.init_db:
            print("ok")
            return 0
        if args.outbox:
            print(json.dumps(_outbox(store), default=str, indent=2))
            return 0
        if args.last_receipt:
            print(_last_receipt_html(store))
            return 0
        if args.drain or args.watch:
            pool, remote = _open_remote(args.database_url)
            if remote is None:
                print("error: no remote configured (set DATABASE_URL or --database-url)", file=sys.stderr)
                return 2
            try:
                if args.drain:
                    synced = SyncReconciler(store, remote).drain()
                else:
                    synced = _watch(store, remote, args.sleep, args.once)
            finally:
                close_pool(pool)
            print(json.dumps({"synced": synced, "pending": store.count_unsynced()}))
            return 0
        parser.print_help()
        return 1
    except Exception as ex:
        json_log("error", "agent.error", error=str(ex))
        raise
    finally:
        store.close()


if __name__ == "__main__":
    raise SystemExit(main())
