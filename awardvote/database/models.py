# awardvote/database/models.py

import uuid

from awardvote import db
from awardvote.timeutil import utcnow


def _uuid():
    return str(uuid.uuid4())


class User(db.Model):
    __tablename__ = 'users'
    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    email = db.Column(db.String(254), unique=True, nullable=False)  # always stored normalized
    is_admin = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    last_login = db.Column(db.DateTime, nullable=True)

    votes = db.relationship('Vote', backref='voter', lazy=True)

    def to_dict(self):
        return {'id': self.id, 'email': self.email, 'is_admin': self.is_admin}


class Category(db.Model):
    __tablename__ = 'categories'
    id = db.Column(db.String(64), primary_key=True, default=_uuid)
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=True)
    display_order = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    nominees = db.relationship('Nominee', backref='category', lazy=True)


class Nominee(db.Model):
    __tablename__ = 'nominees'
    id = db.Column(db.String(64), primary_key=True, default=_uuid)
    category_id = db.Column(db.String(64), db.ForeignKey('categories.id'), nullable=False, index=True)
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=True)
    display_order = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)


class Vote(db.Model):
    """A cast vote. Rows are insert-only; there is no update path."""
    __tablename__ = 'votes'
    __table_args__ = (
        # Final arbiter for one vote per user per category, independent of
        # the ledger's pre-check.
        db.UniqueConstraint('user_id', 'category_id', name='uq_votes_user_category'),
    )
    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    user_id = db.Column(db.String(36), db.ForeignKey('users.id'), nullable=False, index=True)
    category_id = db.Column(db.String(64), db.ForeignKey('categories.id'), nullable=False)
    nominee_id = db.Column(db.String(64), db.ForeignKey('nominees.id'), nullable=False, index=True)
    voted_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    ip_address = db.Column(db.String(64), nullable=True, index=True)
    client_signature = db.Column(db.String(255), nullable=True)  # sanitized User-Agent

    def __repr__(self):
        return f'<Vote {self.id} by User {self.user_id}>'


class AuthSession(db.Model):
    __tablename__ = 'sessions'
    id = db.Column(db.String(64), primary_key=True)
    user_id = db.Column(db.String(36), db.ForeignKey('users.id'), nullable=False, index=True)
    email = db.Column(db.String(254), nullable=False)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    expires_at = db.Column(db.DateTime, nullable=False, index=True)
    last_activity_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    ip_address = db.Column(db.String(64), nullable=True)


class Credential(db.Model):
    """Outstanding one-time code or magic token. Only a digest of the secret is kept."""
    __tablename__ = 'credentials'
    __table_args__ = (
        db.UniqueConstraint('email', 'kind', name='uq_credentials_email_kind'),
    )
    id = db.Column(db.Integer, primary_key=True)
    kind = db.Column(db.String(10), nullable=False)  # 'otp' | 'magic'
    email = db.Column(db.String(254), nullable=False)
    digest = db.Column(db.String(64), nullable=False, index=True)
    issued_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    expires_at = db.Column(db.DateTime, nullable=False, index=True)


class Setting(db.Model):
    __tablename__ = 'settings'
    key = db.Column(db.String(64), primary_key=True)
    value = db.Column(db.Text, nullable=True)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)


class RateLimitWindow(db.Model):
    __tablename__ = 'rate_limit_windows'
    key = db.Column(db.String(300), primary_key=True)
    tier = db.Column(db.Integer, primary_key=True)
    count = db.Column(db.Integer, nullable=False, default=0)
    reset_at = db.Column(db.DateTime, nullable=False, index=True)
