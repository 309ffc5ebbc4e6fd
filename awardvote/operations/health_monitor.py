# awardvote/operations/health_monitor.py
# Liveness/readiness checks: database reachability and clock drift

from typing import Dict

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from awardvote import db
from awardvote.operations.time_sync import check_time_sync


def _check_db() -> Dict:
    try:
        db.session.execute(text("SELECT 1"))
        return {"ok": True, "detail": "database ok"}
    except SQLAlchemyError as e:
        db.session.rollback()
        return {"ok": False, "error": str(e.__class__.__name__)}


def _check_time(config) -> Dict:
    servers = [s.strip() for s in config.get('NTP_SERVERS', '').split(',') if s.strip()]
    return check_time_sync(servers or None, max_offset=config.get('MAX_CLOCK_OFFSET_S', 0.5))


def check_health(config) -> Dict:
    """Aggregate overall system health."""
    database = _check_db()
    clock = _check_time(config)
    overall = database["ok"] and clock["overall_ok"]
    return {"db": database, "time": clock, "overall_ok": overall}


def check_readiness() -> Dict:
    # readiness: DB only (skip external NTP so probes stay fast)
    database = _check_db()
    return {"db": database, "overall_ok": database["ok"]}
