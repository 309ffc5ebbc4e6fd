# awardvote/authentication/authenticator.py

import logging
import uuid

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError

from awardvote import db, timeutil
from awardvote.database.models import User
from awardvote.security.input_validator import normalize_email

# Resolve a verified email to a User row, creating it on first login.

logger = logging.getLogger(__name__)

_UPSERT_DIALECTS = {
    'postgresql': postgresql.insert,
    'sqlite': sqlite.insert,
}


def parse_admin_emails(value):
    return {normalize_email(e) for e in (value or '').split(',') if e.strip()}


class Authenticator:
    def __init__(self, admin_emails=(), audit_logger=None):
        self.admin_emails = set(admin_emails)
        self.audit = audit_logger

    def authenticate(self, verified_email):
        """Upsert the user keyed on the unique email and stamp last_login.

        Two simultaneous first logins for the same email both end up with the
        same row: the insert either wins or turns into an update.
        """
        email = normalize_email(verified_email)
        now = timeutil.utcnow()
        values = {
            'id': str(uuid.uuid4()),
            'email': email,
            'is_admin': email in self.admin_emails,
            'created_at': now,
            'last_login': now,
        }

        insert = _UPSERT_DIALECTS.get(db.engine.dialect.name)
        if insert is not None:
            stmt = insert(User).values(**values).on_conflict_do_update(
                index_elements=[User.email],
                set_={'last_login': now},
            )
            db.session.execute(stmt)
            db.session.commit()
        else:
            self._insert_or_update(values, now)

        db.session.expire_all()
        user = db.session.query(User).filter_by(email=email).one()
        if user.id == values['id']:
            logger.info("New user created: %s", email)
        else:
            logger.info("Existing user authenticated: %s", email)
        if self.audit:
            self.audit.log_security_event('login', {'email': email}, user_id=user.id)
        return user

    def _insert_or_update(self, values, now):
        # Dialects without ON CONFLICT: let the unique constraint decide
        try:
            db.session.add(User(**values))
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            db.session.query(User).filter_by(email=values['email']).update({'last_login': now})
            db.session.commit()

    def get_user(self, user_id):
        return db.session.get(User, user_id)

    def set_admin(self, email, is_admin=True):
        email = normalize_email(email)
        user = db.session.query(User).filter_by(email=email).first()
        if user is None:
            user = User(email=email)
            db.session.add(user)
        user.is_admin = is_admin
        db.session.commit()
        logger.info("Admin flag for %s set to %s", email, is_admin)
        return user
