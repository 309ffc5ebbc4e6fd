# awardvote/security/intrusion_detection.py

import logging
import threading
from collections import defaultdict
from datetime import timedelta

from awardvote import timeutil

# Brute-force protection for code verification: count failed submissions per
# normalized email and lock the email out for a while once the threshold is hit.
# Counters are process-local; a restart clears them.

logger = logging.getLogger(__name__)


class IntrusionDetection:
    def __init__(self, max_failures=5, window_minutes=15, lockout_minutes=15):
        """
        max_failures: failures within `window_minutes` that trigger a lockout
        window_minutes: sliding window used to count failures
        lockout_minutes: how long the key stays locked once the threshold is reached
        """
        self.failures = defaultdict(list)  # key -> list[datetime]
        self.locks = {}  # key -> locked_until datetime
        self.max_failures = max_failures
        self.window = timedelta(minutes=window_minutes)
        self.lockout_duration = timedelta(minutes=lockout_minutes)
        self._mutex = threading.Lock()

    def _now(self):
        # extracted for easier monkeypatching in tests
        return timeutil.utcnow()

    def lockout_remaining(self, key):
        """Seconds left on an active lockout for `key`, or 0."""
        now = self._now()
        with self._mutex:
            locked_until = self.locks.get(key)
            if locked_until and now < locked_until:
                return max(1, int((locked_until - now).total_seconds()))
            return 0

    def record_failure(self, key):
        """
        Record a failed verification for `key`.

        Returns the lockout length in seconds if this failure triggered (or
        fell inside) a lockout, else 0.
        """
        now = self._now()
        with self._mutex:
            locked_until = self.locks.get(key)
            if locked_until and now < locked_until:
                return max(1, int((locked_until - now).total_seconds()))

            attempts = [t for t in self.failures[key] if now - t <= self.window]
            attempts.append(now)

            if len(attempts) >= self.max_failures:
                self.locks[key] = now + self.lockout_duration
                # reset attempts after lockout starts
                self.failures.pop(key, None)
                logger.warning("Verification lockout started for %s", key)
                return int(self.lockout_duration.total_seconds())

            self.failures[key] = attempts
            return 0

    def clear(self, key):
        with self._mutex:
            self.failures.pop(key, None)
            self.locks.pop(key, None)

    def clear_old_records(self):
        now = self._now()
        with self._mutex:
            for key, attempts in list(self.failures.items()):
                pruned = [t for t in attempts if now - t <= self.window]
                if pruned:
                    self.failures[key] = pruned
                else:
                    del self.failures[key]

            for key, locked_until in list(self.locks.items()):
                if now >= locked_until:
                    del self.locks[key]
