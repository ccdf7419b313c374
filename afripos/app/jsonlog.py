import json
import os
import sys
from datetime import datetime

_LEVELS = {"debug": 10, "info": 20, "warning": 30, "error": 40}


def _threshold() -> int:
    raw = (os.getenv("AFRIPOS_LOG_LEVEL") or "info").strip().lower()
    return _LEVELS.get(raw, _LEVELS["info"])


def json_log(level: str, event: str, **fields):
    """
    Emit one structured log record as a JSON line on stderr.

    Records below AFRIPOS_LOG_LEVEL are dropped. Values that are not JSON
    native (Decimal, datetime, UUID) are stringified.
    """
    lvl = (level or "info").strip().lower()
    if _LEVELS.get(lvl, _LEVELS["info"]) < _threshold():
        return
    rec = {"ts": datetime.utcnow().isoformat(), "level": lvl, "event": event, **fields}
    print(json.dumps(rec, default=str), file=sys.stderr)
