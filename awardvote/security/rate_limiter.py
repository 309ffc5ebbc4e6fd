# awardvote/security/rate_limiter.py
"""Tiered per-identity rate limiting for credential requests.

Each key (a normalized email) has one counter per tier, e.g. 3 per minute,
10 per hour and 50 per day. A request is admitted only if no tier has
already reached its ceiling; an admitted request increments every tier.
Each tier's window starts on the first hit after it expired and resets on
its own schedule.

Two window stores are provided:

- ``MemoryWindowStore`` keeps counters in a process-local dict. Restarting
  the process resets every limit and separate instances do not share
  counts, so it is only suitable for a single-instance deployment.
- ``DatabaseWindowStore`` keeps counters in the ``rate_limit_windows``
  table so every instance behind a load balancer sees the same counts.
"""

import logging
import threading
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from sqlalchemy import select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError

from awardvote import db, timeutil
from awardvote.database.models import RateLimitWindow
from awardvote.errors import RateLimited, Unavailable

logger = logging.getLogger(__name__)

_INSERT_DIALECTS = {
    'postgresql': postgresql.insert,
    'sqlite': sqlite.insert,
}


@dataclass
class Window:
    count: int
    reset_at: object  # datetime


@dataclass
class RateDecision:
    allowed: bool
    reset_at: Optional[object] = None
    tier: Optional[int] = None


def exceeded(tiers, windows):
    """Soonest (reset_at, tier) among the tiers already at their ceiling, or None."""
    full = [
        (window.reset_at, i)
        for i, ((max_hits, _), window) in enumerate(zip(tiers, windows))
        if window.count >= max_hits
    ]
    return min(full) if full else None


def _current(window, length, now):
    # A window that has passed its reset time starts over
    if window is None or now > window.reset_at:
        return Window(0, now + length)
    return window


class MemoryWindowStore:
    def __init__(self):
        self.windows = {}  # (key, tier) -> Window
        self._lock = threading.Lock()

    def load(self, key, tiers, now):
        with self._lock:
            return [
                _current(self.windows.get((key, i)), length, now)
                for i, (_, length) in enumerate(tiers)
            ]

    def hit(self, key, tiers, now):
        with self._lock:
            windows = [
                _current(self.windows.get((key, i)), length, now)
                for i, (_, length) in enumerate(tiers)
            ]
            full = exceeded(tiers, windows)
            if full is None:
                for i, window in enumerate(windows):
                    self.windows[(key, i)] = Window(window.count + 1, window.reset_at)
            return full

    def delete(self, key):
        with self._lock:
            for k in [k for k in self.windows if k[0] == key]:
                del self.windows[k]

    def purge_expired(self, now):
        with self._lock:
            expired = [k for k, w in self.windows.items() if now > w.reset_at]
            for k in expired:
                del self.windows[k]
            return len(expired)


class DatabaseWindowStore:
    """Counters in ``rate_limit_windows``, incremented inside one transaction.

    ``hit`` writes before it reads. It inserts any missing rows, locks the
    key's rows in tier order (the insert already holds the write lock on
    SQLite) and increments them, so concurrent hits for the same key queue
    up instead of all reading the same counts. A hit that finds a tier
    already full rolls back and leaves no trace.
    """

    def _rows(self, key):
        stmt = (
            select(RateLimitWindow.tier, RateLimitWindow.count, RateLimitWindow.reset_at)
            .where(RateLimitWindow.key == key)
        )
        return {tier: Window(count, reset_at) for tier, count, reset_at in db.session.execute(stmt)}

    def load(self, key, tiers, now):
        rows = self._rows(key)
        return [_current(rows.get(i), length, now) for i, (_, length) in enumerate(tiers)]

    def _open_windows(self, key, tiers, now):
        insert = _INSERT_DIALECTS.get(db.engine.dialect.name)
        for i, (_, length) in enumerate(tiers):
            values = {'key': key, 'tier': i, 'count': 0, 'reset_at': now + length}
            if insert is not None:
                db.session.execute(insert(RateLimitWindow).values(**values).on_conflict_do_nothing(
                    index_elements=[RateLimitWindow.key, RateLimitWindow.tier],
                ))
            elif db.session.get(RateLimitWindow, (key, i)) is None:
                db.session.add(RateLimitWindow(**values))
                db.session.flush()

    def _lock_windows(self, key, tiers, now):
        """Create missing rows, then lock every tier row in a fixed order."""
        for attempt in range(2):
            try:
                self._open_windows(key, tiers, now)
                locked = db.session.query(RateLimitWindow.tier) \
                    .filter(RateLimitWindow.key == key) \
                    .order_by(RateLimitWindow.tier).with_for_update().all()
                if len(locked) >= len(tiers):
                    return
                # purge_expired removed a row between the insert and the lock
                db.session.rollback()
            except IntegrityError:
                # A concurrent first hit for the same key created the rows
                db.session.rollback()
                if attempt:
                    raise
        raise Unavailable("Rate limit store is busy")

    def hit(self, key, tiers, now):
        self._lock_windows(key, tiers, now)

        windows = db.session.query(RateLimitWindow).filter(RateLimitWindow.key == key)
        for i, (_, length) in enumerate(tiers):
            windows.filter(RateLimitWindow.tier == i, RateLimitWindow.reset_at < now).update(
                {'count': 0, 'reset_at': now + length}, synchronize_session=False,
            )
        windows.update({'count': RateLimitWindow.count + 1}, synchronize_session=False)

        rows = self._rows(key)
        before = [Window(rows[i].count - 1, rows[i].reset_at) for i in range(len(tiers))]
        full = exceeded(tiers, before)
        if full is None:
            db.session.commit()
        else:
            db.session.rollback()
        return full

    def delete(self, key):
        db.session.query(RateLimitWindow).filter(RateLimitWindow.key == key).delete()
        db.session.commit()

    def purge_expired(self, now):
        removed = db.session.query(RateLimitWindow).filter(RateLimitWindow.reset_at < now).delete()
        db.session.commit()
        return removed


class TieredRateLimiter:
    def __init__(self, tiers, store=None):
        """
        tiers: list of (max_hits, window_seconds), checked in the given order
        store: window store; defaults to a process-local MemoryWindowStore
        """
        self.tiers = [(max_hits, timedelta(seconds=seconds)) for max_hits, seconds in tiers]
        self.store = store or MemoryWindowStore()

    def _now(self):
        return timeutil.utcnow()

    def check(self, key):
        """Report whether ``key`` would be admitted, without counting a hit."""
        full = exceeded(self.tiers, self.store.load(key, self.tiers, self._now()))
        if full:
            return RateDecision(False, reset_at=full[0], tier=full[1])
        return RateDecision(True)

    def hit(self, key):
        """Count one request against every tier or raise RateLimited."""
        full = self.store.hit(key, self.tiers, self._now())
        if full:
            reset_at, tier = full
            logger.warning("Rate limit (tier %d) exceeded for %s", tier, key)
            raise RateLimited(reset_at)
        return RateDecision(True)

    def reset(self, key):
        self.store.delete(key)

    def purge_expired(self):
        return self.store.purge_expired(self._now())
