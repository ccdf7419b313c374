import json
from decimal import Decimal

from afripos.app.config import Settings
from afripos.app.errors import CommitInFlightError, PosError, RemoteUnavailable
from afripos.app.jsonlog import json_log


def test_settings_defaults(monkeypatch):
    for name in ("DATABASE_URL", "AFRIPOS_OFFLINE_DB", "AFRIPOS_HEALTH_URL", "AFRIPOS_ATOMIC_COMMIT", "AFRIPOS_SELLER_ID", "AFRIPOS_CASHIER"):
        monkeypatch.delenv(name, raising=False)
    s = Settings()
    assert s.db_url == ""
    assert s.offline_db_path.endswith("offline.sqlite")
    assert s.health_url is None
    assert s.atomic_remote_commit is False
    assert s.cashier == "POS"
    assert s.seller_id is None


def test_settings_from_env_and_bad_numbers_fall_back(monkeypatch):
    monkeypatch.setenv("AFRIPOS_REMOTE_TIMEOUT_S", "2.5")
    monkeypatch.setenv("AFRIPOS_SYNC_INTERVAL_S", "soon")
    monkeypatch.setenv("DB_POOL_MAX_SIZE", "x")
    monkeypatch.setenv("AFRIPOS_ATOMIC_COMMIT", "Yes")
    monkeypatch.setenv("AFRIPOS_SELLER_ID", " seller-7 ")
    s = Settings()
    assert s.remote_timeout_s == 2.5
    assert s.sync_interval_s == 30.0
    assert s.pool_max_size == 4
    assert s.atomic_remote_commit is True
    assert s.seller_id == "seller-7"


def test_json_log_writes_one_line_per_event(monkeypatch, capsys):
    monkeypatch.setenv("AFRIPOS_LOG_LEVEL", "info")
    json_log("warning", "checkout.queued", total=Decimal("27.00"))
    json_log("debug", "cart.analytics.error")

    lines = capsys.readouterr().err.strip().splitlines()
    assert len(lines) == 1
    rec = json.loads(lines[0])
    assert rec["level"] == "warning"
    assert rec["event"] == "checkout.queued"
    assert rec["total"] == "27.00"
    assert "ts" in rec


def test_errors_carry_payload():
    ex = CommitInFlightError("d-1")
    assert isinstance(ex, PosError)
    assert ex.to_dict() == {"draft_id": "d-1", "error": "commit already in flight for draft d-1"}
    assert RemoteUnavailable().message == "remote store unavailable"
