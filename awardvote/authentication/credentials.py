# awardvote/authentication/credentials.py
"""One-time login credentials: six-digit codes and magic-link tokens.

A credential proves control of an email address for a short time. At most
one credential per (email, kind) is outstanding; issuing a new one replaces
the old. A credential is deleted the first time it verifies, or when a
lookup finds it expired.

Only an HMAC-SHA256 digest of the secret is stored. Codes are bound to the
email in the digest; magic tokens are looked up by digest alone. Digests
are compared with ``hmac.compare_digest``.

Usage:
    store = CredentialStore(secret_key, rate_limiter, lockout)
    issued = store.request_credential('a@x.com', 'otp')
    notifier.notify_credential(issued.email, issued)
    ...
    email = store.consume_credential(email='a@x.com', code='482193')
"""

import hmac
import hashlib
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy.exc import IntegrityError

from awardvote import db, timeutil
from awardvote.database.models import Credential
from awardvote.errors import (
    CredentialExpired, CredentialMismatch, CredentialNotFound, InvalidInput, VerificationLocked,
)
from awardvote.security.input_validator import normalize_email

logger = logging.getLogger(__name__)

OTP = 'otp'
MAGIC_LINK = 'magic'
KINDS = (OTP, MAGIC_LINK)


@dataclass(frozen=True)
class IssuedCredential:
    kind: str
    email: str
    secret: str
    issued_at: datetime
    expires_at: datetime


class CredentialStore:
    def __init__(self, secret_key, rate_limiter, lockout, ttl_seconds=900,
                 otp_length=6, token_bytes=32, audit_logger=None):
        if token_bytes < 32:
            raise ValueError("Magic tokens need at least 256 bits")
        self.secret_key = secret_key.encode() if isinstance(secret_key, str) else secret_key
        self.rate_limiter = rate_limiter
        self.lockout = lockout
        self.ttl = timedelta(seconds=ttl_seconds)
        self.otp_length = otp_length
        self.token_bytes = token_bytes
        self.audit = audit_logger

    def _now(self):
        return timeutil.utcnow()

    def _digest(self, kind, secret, email=None):
        message = f"{kind}:{email}:{secret}" if kind == OTP else f"{kind}:{secret}"
        return hmac.new(self.secret_key, message.encode(), hashlib.sha256).hexdigest()

    def _generate_secret(self, kind):
        if kind == OTP:
            return ''.join(str(secrets.randbelow(10)) for _ in range(self.otp_length))
        return secrets.token_urlsafe(self.token_bytes)

    def _audit(self, event_type, data):
        if self.audit:
            self.audit.log_security_event(event_type, data)

    def request_credential(self, email, kind=OTP):
        """Issue a fresh credential for `email`, replacing any outstanding one of the same kind.

        Raises RateLimited before anything is generated if the email is over
        any of its request tiers.
        """
        if kind not in KINDS:
            raise InvalidInput('Unknown credential kind')
        email = normalize_email(email)
        self.rate_limiter.hit(email)

        now = self._now()
        secret = self._generate_secret(kind)
        issued = IssuedCredential(kind, email, secret, now, now + self.ttl)

        for attempt in range(2):
            try:
                db.session.query(Credential).filter_by(email=email, kind=kind).delete()
                db.session.add(Credential(
                    kind=kind, email=email, digest=self._digest(kind, secret, email),
                    issued_at=issued.issued_at, expires_at=issued.expires_at,
                ))
                db.session.commit()
                break
            except IntegrityError:
                # A concurrent request for the same email won the insert; replace it
                db.session.rollback()
                if attempt:
                    raise

        self.purge_expired()
        logger.info("Credential (%s) issued for %s, expires %s", kind, email, issued.expires_at.isoformat())
        self._audit('credential_issued', {'email': email, 'kind': kind})
        return issued

    def consume_credential(self, email=None, code=None, token=None):
        """Verify and destroy a credential, returning the email it was issued to.

        Pass `email` and `code` for a one-time code, or `token` for a magic link.
        """
        if token is not None:
            return self._consume_magic_token(token)
        if email is None or code is None:
            raise InvalidInput('Missing verification credentials')
        return self._consume_otp(normalize_email(email), str(code).strip())

    def _consume_otp(self, email, code):
        remaining = self.lockout.lockout_remaining(email)
        if remaining:
            raise VerificationLocked(remaining)

        credential = db.session.query(Credential).filter_by(email=email, kind=OTP).first()
        if credential is None:
            self._reject(email, 'not_found')
            raise CredentialNotFound()
        if self._now() > credential.expires_at:
            self._delete(credential)
            self._reject(email, 'expired')
            raise CredentialExpired()
        if not hmac.compare_digest(self._digest(OTP, code, email), credential.digest):
            self._reject(email, 'mismatch')
            raise CredentialMismatch()

        if not self._delete(credential):
            # Someone else consumed it between our read and delete
            raise CredentialNotFound()
        self.lockout.clear(email)
        logger.info("OTP verified for %s", email)
        return email

    def _consume_magic_token(self, token):
        digest = self._digest(MAGIC_LINK, token)
        credential = db.session.query(Credential).filter_by(digest=digest, kind=MAGIC_LINK).first()
        if credential is None or not hmac.compare_digest(digest, credential.digest):
            logger.warning("Invalid magic token attempt")
            self._audit('credential_rejected', {'kind': MAGIC_LINK, 'reason': 'not_found'})
            raise CredentialNotFound()
        email = credential.email
        if self._now() > credential.expires_at:
            self._delete(credential)
            logger.warning("Expired magic token used for %s", email)
            self._audit('credential_rejected', {'email': email, 'kind': MAGIC_LINK, 'reason': 'expired'})
            raise CredentialExpired()
        if not self._delete(credential):
            raise CredentialNotFound()
        logger.info("Magic token verified for %s", email)
        return email

    def _delete(self, credential):
        """Conditional delete; True only for the caller that actually removed the row."""
        removed = db.session.query(Credential).filter_by(
            id=credential.id, digest=credential.digest
        ).delete(synchronize_session=False)
        db.session.commit()
        db.session.expire_all()
        return removed == 1

    def _reject(self, email, reason):
        locked_for = self.lockout.record_failure(email)
        logger.warning("OTP verification failed for %s (%s)", email, reason)
        self._audit('credential_rejected', {'email': email, 'kind': OTP, 'reason': reason})
        if locked_for:
            self._audit('verification_locked', {'email': email, 'seconds': locked_for})

    def purge_expired(self):
        removed = db.session.query(Credential).filter(
            Credential.expires_at < self._now()
        ).delete(synchronize_session=False)
        db.session.commit()
        return removed
