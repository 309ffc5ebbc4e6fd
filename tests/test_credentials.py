import pytest
from datetime import timedelta

from awardvote import db
from awardvote.authentication.credentials import MAGIC_LINK, OTP, CredentialStore
from awardvote.database.models import Credential
from awardvote.errors import (
    CredentialError, CredentialExpired, CredentialMismatch, CredentialNotFound,
    InvalidInput, RateLimited, VerificationLocked,
)


@pytest.fixture
def store(services):
    return services.credentials


def _wrong(code):
    return '000000' if code != '000000' else '111111'


def _rows(email):
    return db.session.query(Credential).filter_by(email=email).all()


def test_issue_otp_stores_only_digest(store, frozen_clock, start_time):
    issued = store.request_credential(' A@X.com ', OTP)

    assert issued.email == 'a@x.com'
    assert len(issued.secret) == 6 and issued.secret.isdigit()
    assert issued.expires_at == start_time + timedelta(minutes=15)

    rows = _rows('a@x.com')
    assert len(rows) == 1
    assert rows[0].digest != issued.secret
    assert len(rows[0].digest) == 64


def test_otp_is_single_use(store, frozen_clock):
    issued = store.request_credential('a@x.com', OTP)

    assert store.consume_credential(email='a@x.com', code=issued.secret) == 'a@x.com'
    with pytest.raises(CredentialNotFound):
        store.consume_credential(email='a@x.com', code=issued.secret)
    assert _rows('a@x.com') == []


def test_new_request_replaces_outstanding_code(store, frozen_clock):
    first = store.request_credential('a@x.com', OTP)
    second = store.request_credential('a@x.com', OTP)

    assert len(_rows('a@x.com')) == 1
    if first.secret != second.secret:
        with pytest.raises(CredentialMismatch):
            store.consume_credential(email='a@x.com', code=first.secret)
    assert store.consume_credential(email='a@x.com', code=second.secret) == 'a@x.com'


def test_code_is_bound_to_its_email(store, frozen_clock):
    issued = store.request_credential('a@x.com', OTP)
    with pytest.raises(CredentialNotFound):
        store.consume_credential(email='b@x.com', code=issued.secret)


def test_code_accepted_just_before_expiry(store, frozen_clock, start_time):
    issued = store.request_credential('a@x.com', OTP)
    frozen_clock.set(start_time + timedelta(minutes=15, milliseconds=-1))
    assert store.consume_credential(email='a@x.com', code=issued.secret) == 'a@x.com'


def test_code_rejected_just_after_expiry(store, frozen_clock, start_time):
    issued = store.request_credential('a@x.com', OTP)
    frozen_clock.set(start_time + timedelta(minutes=15, milliseconds=1))

    with pytest.raises(CredentialExpired):
        store.consume_credential(email='a@x.com', code=issued.secret)
    # expired credential is removed on lookup
    assert _rows('a@x.com') == []


def test_mismatch_keeps_credential(store, frozen_clock):
    issued = store.request_credential('a@x.com', OTP)
    with pytest.raises(CredentialMismatch):
        store.consume_credential(email='a@x.com', code=_wrong(issued.secret))
    assert store.consume_credential(email='a@x.com', code=issued.secret) == 'a@x.com'


def test_failures_are_indistinguishable_to_callers():
    bodies = [cls().to_dict() for cls in (CredentialNotFound, CredentialExpired, CredentialMismatch)]
    assert bodies[0] == bodies[1] == bodies[2]
    assert all(cls.status_code == 401 for cls in (CredentialNotFound, CredentialExpired, CredentialMismatch))
    assert issubclass(CredentialMismatch, CredentialError)


def test_lockout_after_repeated_wrong_codes(store, frozen_clock):
    issued = store.request_credential('a@x.com', OTP)
    wrong = _wrong(issued.secret)
    for _ in range(5):
        with pytest.raises(CredentialMismatch):
            store.consume_credential(email='a@x.com', code=wrong)

    # even the right code is refused while locked
    with pytest.raises(VerificationLocked) as exc:
        store.consume_credential(email='a@x.com', code=issued.secret)
    assert exc.value.retry_after_seconds == 15 * 60

    frozen_clock.advance(minutes=14, seconds=59)
    with pytest.raises(VerificationLocked):
        store.consume_credential(email='a@x.com', code=issued.secret)

    # lockout and credential lifetime end together; the code is still valid
    frozen_clock.advance(seconds=1)
    assert store.consume_credential(email='a@x.com', code=issued.secret) == 'a@x.com'


def test_success_clears_failure_count(store, frozen_clock):
    issued = store.request_credential('a@x.com', OTP)
    wrong = _wrong(issued.secret)
    for _ in range(4):
        with pytest.raises(CredentialMismatch):
            store.consume_credential(email='a@x.com', code=wrong)
    store.consume_credential(email='a@x.com', code=issued.secret)
    assert store.lockout.lockout_remaining('a@x.com') == 0
    assert 'a@x.com' not in store.lockout.failures


def test_magic_token(store, frozen_clock):
    issued = store.request_credential('a@x.com', MAGIC_LINK)

    # 32 random bytes, url-safe base64 without padding
    assert len(issued.secret) >= 43
    assert store.consume_credential(token=issued.secret) == 'a@x.com'
    with pytest.raises(CredentialNotFound):
        store.consume_credential(token=issued.secret)


def test_magic_token_expiry(store, frozen_clock, start_time):
    issued = store.request_credential('a@x.com', MAGIC_LINK)
    frozen_clock.set(start_time + timedelta(minutes=15, seconds=1))
    with pytest.raises(CredentialExpired):
        store.consume_credential(token=issued.secret)


def test_unknown_magic_token(store):
    with pytest.raises(CredentialNotFound):
        store.consume_credential(token='x' * 43)


def test_otp_and_magic_link_coexist(store, frozen_clock):
    code = store.request_credential('a@x.com', OTP)
    link = store.request_credential('a@x.com', MAGIC_LINK)
    assert len(_rows('a@x.com')) == 2

    assert store.consume_credential(token=link.secret) == 'a@x.com'
    assert store.consume_credential(email='a@x.com', code=code.secret) == 'a@x.com'


def test_rate_limited_request_keeps_outstanding_code(store, frozen_clock):
    issued = None
    for _ in range(3):
        issued = store.request_credential('a@x.com', OTP)
    with pytest.raises(RateLimited):
        store.request_credential('a@x.com', OTP)
    assert store.consume_credential(email='a@x.com', code=issued.secret) == 'a@x.com'


def test_missing_or_unknown_input(store):
    with pytest.raises(InvalidInput):
        store.request_credential('a@x.com', 'sms')
    with pytest.raises(InvalidInput):
        store.consume_credential(email='a@x.com')


def test_purge_expired(store, frozen_clock):
    store.request_credential('a@x.com', OTP)
    store.request_credential('b@x.com', MAGIC_LINK)
    frozen_clock.advance(minutes=16)
    assert store.purge_expired() == 2


def test_short_magic_tokens_refused(store):
    with pytest.raises(ValueError):
        CredentialStore('secret', store.rate_limiter, store.lockout, token_bytes=16)
