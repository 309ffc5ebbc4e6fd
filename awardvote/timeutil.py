# awardvote/timeutil.py

from datetime import datetime, timezone


def utcnow():
    """Naive UTC now. Every expiry check goes through here so tests can freeze it."""
    return datetime.now(timezone.utc).replace(tzinfo=None)
