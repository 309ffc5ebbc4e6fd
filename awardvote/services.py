# awardvote/services.py

# Wires the security and voting services from app config. One instance per app,
# stored under app.extensions['awardvote'].

import os
from dataclasses import dataclass

from awardvote.audit.audit_logger import AuditLogger
from awardvote.authentication.authenticator import Authenticator, parse_admin_emails
from awardvote.authentication.credentials import CredentialStore
from awardvote.authentication.sessions import SessionManager
from awardvote.config import parse_rate_limit_tiers
from awardvote.notifications.email_sink import HttpEmailSink, LogEmailSink
from awardvote.notifications.notifier import Notifier
from awardvote.security.input_validator import InputValidator
from awardvote.security.intrusion_detection import IntrusionDetection
from awardvote.security.rate_limiter import DatabaseWindowStore, MemoryWindowStore, TieredRateLimiter
from awardvote.voting.ledger import VoteLedger


@dataclass
class Services:
    validator: InputValidator
    audit: AuditLogger
    rate_limiter: TieredRateLimiter
    lockout: IntrusionDetection
    email_sink: object
    notifier: Notifier
    credentials: CredentialStore
    authenticator: Authenticator
    sessions: SessionManager
    ledger: VoteLedger


def _build_email_sink(config):
    common = dict(
        app_name=config['APP_NAME'],
        app_url=config['APP_URL'],
        ttl_minutes=config['CREDENTIAL_TTL_SECONDS'] // 60,
    )
    backend = config['MAIL_BACKEND']
    if backend == 'http':
        return HttpEmailSink(
            config['MAIL_API_URL'], config['MAIL_API_KEY'], config['MAIL_FROM'],
            timeout=config['MAIL_TIMEOUT_SECONDS'], **common
        )
    if backend == 'log':
        return LogEmailSink(**common)
    raise ValueError(f"Unknown MAIL_BACKEND: {backend!r}")


def _build_window_store(config):
    backend = config['RATE_LIMIT_BACKEND']
    if backend == 'database':
        return DatabaseWindowStore()
    if backend == 'memory':
        return MemoryWindowStore()
    raise ValueError(f"Unknown RATE_LIMIT_BACKEND: {backend!r}")


def build_services(app):
    config = app.config
    validator = InputValidator(max_ballot_entries=config['MAX_BALLOT_ENTRIES'])
    audit = AuditLogger(
        log_dir=config['AUDIT_LOG_DIR'],
        signing_key_pem=os.environ.get('AUDIT_SIGNING_KEY'),
    )
    rate_limiter = TieredRateLimiter(
        parse_rate_limit_tiers(config['RATE_LIMIT_TIERS']),
        store=_build_window_store(config),
    )
    lockout = IntrusionDetection(
        max_failures=config['VERIFY_MAX_FAILURES'],
        window_minutes=config['VERIFY_WINDOW_MINUTES'],
        lockout_minutes=config['VERIFY_LOCKOUT_MINUTES'],
    )
    email_sink = _build_email_sink(config)
    notifier = Notifier(email_sink, async_mode=config['NOTIFIER_ASYNC'])

    if config['RATE_LIMIT_BACKEND'] == 'memory' and not app.testing:
        app.logger.warning("RATE_LIMIT_BACKEND=memory: limits are per process and reset on restart")

    return Services(
        validator=validator,
        audit=audit,
        rate_limiter=rate_limiter,
        lockout=lockout,
        email_sink=email_sink,
        notifier=notifier,
        credentials=CredentialStore(
            config['SECRET_KEY'], rate_limiter, lockout,
            ttl_seconds=config['CREDENTIAL_TTL_SECONDS'],
            otp_length=config['OTP_LENGTH'],
            token_bytes=config['MAGIC_TOKEN_BYTES'],
            audit_logger=audit,
        ),
        authenticator=Authenticator(parse_admin_emails(config['ADMIN_EMAILS']), audit_logger=audit),
        sessions=SessionManager(
            lifetime_seconds=config['SESSION_LIFETIME_SECONDS'],
            idle_timeout_seconds=config['SESSION_IDLE_TIMEOUT_SECONDS'],
            audit_logger=audit,
        ),
        ledger=VoteLedger(validator, notifier=notifier, audit_logger=audit),
    )
