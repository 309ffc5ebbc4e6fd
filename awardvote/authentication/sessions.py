# awardvote/authentication/sessions.py

import logging
import secrets
from datetime import timedelta

from awardvote import db, timeutil
from awardvote.database.models import AuthSession, User
from awardvote.errors import SessionInvalid

# Server-side sessions: an unguessable id in a cookie, everything else in the store.
# A session dies on logout, after its absolute lifetime, or after the idle timeout,
# whichever comes first. Expired rows are removed lazily when they are looked up.

logger = logging.getLogger(__name__)


def _short(session_id):
    return (session_id or '')[:8]


class SessionManager:
    def __init__(self, lifetime_seconds=7 * 24 * 3600, idle_timeout_seconds=2 * 3600,
                 audit_logger=None):
        self.lifetime = timedelta(seconds=lifetime_seconds)
        self.idle_timeout = timedelta(seconds=idle_timeout_seconds)
        self.audit = audit_logger

    def _now(self):
        return timeutil.utcnow()

    def create_session(self, user, origin_address=None):
        """Persist a new session for `user`; call only after credential verification."""
        now = self._now()
        session_id = secrets.token_urlsafe(32)
        db.session.add(AuthSession(
            id=session_id,
            user_id=user.id,
            email=user.email,
            created_at=now,
            expires_at=now + self.lifetime,
            last_activity_at=now,
            ip_address=origin_address,
        ))
        db.session.commit()
        logger.info("Session %s created for %s from %s", _short(session_id), user.email, origin_address)
        return session_id

    def validate_session(self, session_id, current_address=None, refresh=True):
        if not session_id:
            raise SessionInvalid('not_found')

        session = db.session.get(AuthSession, session_id)
        if session is None:
            raise SessionInvalid('not_found')

        now = self._now()
        if now > session.expires_at:
            self._drop(session)
            raise SessionInvalid('expired')
        if now - session.last_activity_at > self.idle_timeout:
            logger.warning("Session %s timed out due to inactivity", _short(session_id))
            self._drop(session)
            raise SessionInvalid('idle')

        # Address changes are logged, not enforced: mobile and NATed users move around
        if session.ip_address and current_address and session.ip_address != current_address:
            logger.warning("Address mismatch for session %s: stored=%s, current=%s",
                           _short(session_id), session.ip_address, current_address)
            if self.audit:
                self.audit.log_security_event('session_address_mismatch', {
                    'session': _short(session_id),
                    'stored': session.ip_address,
                    'current': current_address,
                }, user_id=session.user_id)

        if refresh:
            session.last_activity_at = now
            db.session.commit()
        return session

    def resolve_user(self, session):
        """Fresh User row for a session, so admin changes apply on the next request."""
        user = db.session.get(User, session.user_id)
        if user is None:
            self._drop(session)
            raise SessionInvalid('not_found')
        return user

    def destroy_session(self, session_id):
        if not session_id:
            return False
        removed = db.session.query(AuthSession).filter_by(id=session_id).delete()
        db.session.commit()
        if removed:
            logger.info("Session %s destroyed", _short(session_id))
        return bool(removed)

    def rotate_session(self, session_id, origin_address=None):
        """Replace a valid session with a new id (use after privilege changes)."""
        session = self.validate_session(session_id, origin_address, refresh=False)
        user = self.resolve_user(session)
        self.destroy_session(session_id)
        new_id = self.create_session(user, origin_address)
        logger.info("Session rotated for %s", user.email)
        return new_id

    def destroy_user_sessions(self, user_id):
        removed = db.session.query(AuthSession).filter_by(user_id=user_id).delete()
        db.session.commit()
        return removed

    def purge_expired(self):
        now = self._now()
        removed = db.session.query(AuthSession).filter(
            (AuthSession.expires_at < now) | (AuthSession.last_activity_at < now - self.idle_timeout)
        ).delete(synchronize_session=False)
        db.session.commit()
        return removed

    def _drop(self, session):
        db.session.delete(session)
        db.session.commit()
