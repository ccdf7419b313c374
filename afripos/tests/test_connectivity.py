from afripos.app import connectivity
from afripos.app.connectivity import OFFLINE, ONLINE, ConnectivityMonitor, http_health_probe


def test_listeners_fire_on_transitions_only():
    m = ConnectivityMonitor(online=True)
    seen = []
    m.subscribe(lambda prev, now: seen.append((prev, now)))

    assert m.set_online(True) is False
    assert m.set_online(False) is True
    assert m.set_online(False) is False
    assert m.set_online(True) is True
    assert seen == [(True, False), (False, True)]
    assert m.state == ONLINE


def test_on_reconnect_fires_only_on_offline_to_online():
    m = ConnectivityMonitor(online=False)
    hits = []
    m.on_reconnect(lambda: hits.append(1))

    m.set_online(True)
    m.set_online(False)
    assert hits == [1]
    assert m.state == OFFLINE


def test_failing_listener_does_not_stop_others_or_the_caller(capsys):
    m = ConnectivityMonitor(online=False)
    hits = []

    def boom(prev, now):
        raise RuntimeError("listener broke")

    m.subscribe(boom)
    m.subscribe(lambda prev, now: hits.append(now))

    assert m.set_online(True) is True
    assert hits == [True]
    assert "connectivity.listener.error" in capsys.readouterr().err


def test_unsubscribe():
    m = ConnectivityMonitor(online=True)
    hits = []
    unsubscribe = m.subscribe(lambda prev, now: hits.append(now))
    unsubscribe()
    unsubscribe()
    m.set_online(False)
    assert hits == []


def test_probe_updates_state_and_treats_errors_as_offline():
    results = iter([False, True])
    m = ConnectivityMonitor(online=True, probe=lambda: next(results))
    assert m.probe() is False
    assert m.is_online is False
    assert m.probe() is True
    assert m.is_online is True

    def broken():
        raise OSError("no route")

    m2 = ConnectivityMonitor(online=True, probe=broken)
    assert m2.probe() is False
    assert m2.is_online is False


def test_probe_without_checker_reports_current_state():
    assert ConnectivityMonitor(online=False).probe() is False


class _Resp:
    def __init__(self, body):
        self.body = body

    def read(self):
        return self.body

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False


def test_http_health_probe(monkeypatch):
    monkeypatch.setattr(connectivity, "urlopen", lambda req, timeout: _Resp(b'{"ok": true}'))
    assert http_health_probe("http://edge/health")["ok"] is True

    monkeypatch.setattr(connectivity, "urlopen", lambda req, timeout: _Resp(b'{"ok": false}'))
    assert http_health_probe("http://edge/health")["ok"] is False

    def refused(req, timeout):
        raise OSError("connection refused")

    monkeypatch.setattr(connectivity, "urlopen", refused)
    res = http_health_probe("http://edge/health", timeout_s=0.1)
    assert res["ok"] is False
    assert "refused" in res["error"]


def test_monitor_for_health_url(monkeypatch):
    monkeypatch.setattr(connectivity, "urlopen", lambda req, timeout: _Resp(b""))
    m = ConnectivityMonitor.for_health_url("http://edge/health", online=False)
    assert m.probe() is True
    assert ConnectivityMonitor.for_health_url(None).probe() is True
