from __future__ import annotations

import json
import threading
import time
from typing import Callable, Optional
from urllib.request import Request, urlopen

from .jsonlog import json_log

ONLINE = "online"
OFFLINE = "offline"


def http_health_probe(url: str, timeout_s: float = 0.8) -> dict:
    """GET `url` and report reachability; never raises."""
    started = time.time()
    try:
        req = Request(url, headers={}, method="GET")
        with urlopen(req, timeout=max(0.2, float(timeout_s or 0.8))) as resp:
            body = resp.read().decode("utf-8") if resp else ""
        data = {}
        if body:
            try:
                data = json.loads(body)
            except Exception:
                data = {}
        ok = bool((data if isinstance(data, dict) else {}).get("ok", True))
        return {"ok": ok, "error": None, "latency_ms": int((time.time() - started) * 1000), "url": url}
    except Exception as ex:
        return {"ok": False, "error": str(ex), "latency_ms": int((time.time() - started) * 1000), "url": url}


class ConnectivityMonitor:
    """
    Tracks Online <-> Offline and notifies listeners on transitions only.

    The platform's network signal is fed through set_online(); probe() is an
    active check for hosts without such a signal. Listener failures are
    logged and never propagate to the caller that reported the change.
    """

    def __init__(self, online: bool = True, probe: Optional[Callable[[], bool]] = None):
        self._online = bool(online)
        self._probe = probe
        self._listeners: list[Callable[[bool, bool], None]] = []
        self._lock = threading.Lock()

    @classmethod
    def for_health_url(cls, url: Optional[str], timeout_s: float = 0.8, online: bool = True) -> "ConnectivityMonitor":
        if not url:
            return cls(online=online)
        return cls(online=online, probe=lambda: bool(http_health_probe(url, timeout_s).get("ok")))

    @property
    def is_online(self) -> bool:
        return self._online

    @property
    def state(self) -> str:
        return ONLINE if self._online else OFFLINE

    def subscribe(self, listener: Callable[[bool, bool], None]) -> Callable[[], None]:
        """Register listener(previous_online, now_online); returns an unsubscribe callable."""
        with self._lock:
            self._listeners.append(listener)

        def _unsubscribe():
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return _unsubscribe

    def on_reconnect(self, callback: Callable[[], None]) -> Callable[[], None]:
        def _listener(prev: bool, now: bool):
            if not prev and now:
                callback()

        return self.subscribe(_listener)

    def set_online(self, online: bool) -> bool:
        """Record the current reachability. Returns True when it changed."""
        now = bool(online)
        with self._lock:
            prev = self._online
            if prev == now:
                return False
            self._online = now
            listeners = list(self._listeners)
        json_log("info", "connectivity.changed", status=ONLINE if now else OFFLINE)
        for fn in listeners:
            try:
                fn(prev, now)
            except Exception as ex:
                json_log("error", "connectivity.listener.error", error=str(ex))
        return True

    def probe(self) -> bool:
        if self._probe is None:
            return self._online
        try:
            ok = bool(self._probe())
        except Exception as ex:
            json_log("warning", "connectivity.probe.error", error=str(ex))
            ok = False
        self.set_online(ok)
        return ok
