import threading
import pytest
from datetime import timedelta

from awardvote import db
from awardvote.config import parse_rate_limit_tiers
from awardvote.database.models import RateLimitWindow
from awardvote.errors import RateLimited
from awardvote.security.rate_limiter import DatabaseWindowStore, MemoryWindowStore, TieredRateLimiter

TIERS = [(3, 60), (10, 3600), (50, 86400)]


@pytest.fixture(params=['memory', 'database'])
def store(request, app):
    if request.param == 'memory':
        return MemoryWindowStore()
    return DatabaseWindowStore()


@pytest.fixture
def limiter(store):
    return TieredRateLimiter(TIERS, store=store)


def test_minute_tier_allows_three_then_rejects(limiter, frozen_clock, start_time):
    for _ in range(3):
        assert limiter.hit('a@x.com').allowed

    with pytest.raises(RateLimited) as exc:
        limiter.hit('a@x.com')
    assert exc.value.reset_at == start_time + timedelta(seconds=60)
    assert exc.value.reset_at > frozen_clock.utcnow()
    assert exc.value.details['reset_at'] == '2025-10-23T12:01:00Z'


def test_minute_window_resets(limiter, frozen_clock):
    for _ in range(3):
        limiter.hit('a@x.com')

    frozen_clock.advance(seconds=61)
    assert limiter.hit('a@x.com').allowed


def test_rejected_request_is_not_counted(limiter, frozen_clock):
    for _ in range(3):
        limiter.hit('a@x.com')
    for _ in range(5):
        with pytest.raises(RateLimited):
            limiter.hit('a@x.com')

    # only 3 of the 10 hourly slots are used
    for _ in range(3):
        frozen_clock.advance(seconds=61)
        for _ in range(2):
            limiter.hit('a@x.com')
    frozen_clock.advance(seconds=61)
    assert limiter.hit('a@x.com').allowed


def test_hour_tier_reports_hour_reset(limiter, frozen_clock, start_time):
    # 3 + 3 + 3 + 1 hits spread over four minute windows
    for burst in (3, 3, 3, 1):
        for _ in range(burst):
            limiter.hit('a@x.com')
        frozen_clock.advance(seconds=61)

    decision = limiter.check('a@x.com')
    assert decision.allowed is False
    assert decision.tier == 1
    with pytest.raises(RateLimited) as exc:
        limiter.hit('a@x.com')
    assert exc.value.reset_at == start_time + timedelta(hours=1)


def test_soonest_reset_among_exceeded_tiers(app, frozen_clock, start_time):
    limiter = TieredRateLimiter([(2, 3600), (2, 60)])
    limiter.hit('a@x.com')
    limiter.hit('a@x.com')

    decision = limiter.check('a@x.com')
    assert decision.reset_at == start_time + timedelta(seconds=60)
    assert decision.tier == 1


def test_check_does_not_count(limiter, frozen_clock):
    for _ in range(5):
        assert limiter.check('a@x.com').allowed
    for _ in range(3):
        limiter.hit('a@x.com')
    assert limiter.check('a@x.com').allowed is False


def test_keys_are_independent(limiter, frozen_clock):
    for _ in range(3):
        limiter.hit('a@x.com')
    assert limiter.hit('b@x.com').allowed
    with pytest.raises(RateLimited):
        limiter.hit('a@x.com')


def test_reset_clears_all_tiers(limiter, frozen_clock):
    for _ in range(3):
        limiter.hit('a@x.com')
    limiter.reset('a@x.com')
    assert limiter.hit('a@x.com').allowed


def test_purge_expired(limiter, frozen_clock):
    limiter.hit('a@x.com')
    assert limiter.purge_expired() == 0

    frozen_clock.advance(days=2)
    assert limiter.purge_expired() == 3
    assert limiter.check('a@x.com').allowed


def test_parse_rate_limit_tiers():
    assert parse_rate_limit_tiers("3/60, 10/3600,50/86400") == TIERS
    with pytest.raises(ValueError):
        parse_rate_limit_tiers("3-60")
    with pytest.raises(ValueError):
        parse_rate_limit_tiers("0/60")
    with pytest.raises(ValueError):
        parse_rate_limit_tiers("")


@pytest.mark.parametrize('fresh_key', [True, False])
def test_concurrent_hits_never_pass_the_ceiling(app, frozen_clock, fresh_key):
    limiter = TieredRateLimiter([(3, 60)], store=DatabaseWindowStore())
    if not fresh_key:
        limiter.hit('a@x.com')
    barrier = threading.Barrier(12)
    outcomes = []

    def hit():
        with app.app_context():
            barrier.wait()
            try:
                limiter.hit('a@x.com')
                outcomes.append('ok')
            except Exception as e:
                outcomes.append(e)

    threads = [threading.Thread(target=hit) for _ in range(12)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    admitted = 3 if fresh_key else 2
    assert outcomes.count('ok') == admitted
    assert all(isinstance(o, RateLimited) for o in outcomes if o != 'ok')
    db.session.expire_all()
    assert db.session.get(RateLimitWindow, ('a@x.com', 0)).count == 3
