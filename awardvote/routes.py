# awardvote/routes.py

# HTTP boundary for login, sessions and vote submission.
# Every VotingError raised below is rendered by handle_voting_error().

import logging

from flask import Blueprint, current_app, g, jsonify, request
from sqlalchemy.exc import OperationalError
from werkzeug.exceptions import HTTPException

from awardvote import db, limiter, timeutil
from awardvote.authentication.rbac import (
    Permission, client_address, load_session, require_anti_forgery_marker,
    require_permission,
)
from awardvote.database.queries import get_voting_configuration, save_voting_configuration
from awardvote.errors import (
    AdmissionClosed, CredentialError, InvalidInput, QuotaExceeded, RateLimited,
    SessionInvalid, Unavailable, VotingError,
)
from awardvote.operations.health_monitor import check_health, check_readiness
from awardvote.voting.admission import check_admission, check_network_quota, voting_status

logger = logging.getLogger(__name__)

bp = Blueprint('awardvote', __name__)


def services():
    return current_app.extensions['awardvote']


def _json_body():
    body = request.get_json(silent=True)
    if not isinstance(body, dict):
        raise InvalidInput('Expected a JSON object')
    return body


def _session_key():
    return request.cookies.get(current_app.config['SESSION_COOKIE_NAME']) or client_address()


def _vote_limit():
    return current_app.config['VOTE_SUBMISSION_LIMIT']


def _missing_marker():
    header = current_app.config['ANTI_FORGERY_HEADER']
    return request.headers.get(header, '').lower() != 'true'


def _set_session_cookie(response, session_id):
    config = current_app.config
    response.set_cookie(
        config['SESSION_COOKIE_NAME'],
        session_id,
        max_age=config['SESSION_LIFETIME_SECONDS'],
        httponly=True,
        secure=config['SESSION_COOKIE_SECURE'],
        samesite='Lax',
        path='/',
    )


@bp.app_errorhandler(VotingError)
def handle_voting_error(error):
    return jsonify(error.to_dict()), error.status_code


@bp.app_errorhandler(OperationalError)
def handle_storage_error(error):
    db.session.rollback()
    logger.error("Storage unavailable: %s", error)
    unavailable = Unavailable()
    return jsonify(unavailable.to_dict()), unavailable.status_code


@bp.app_errorhandler(Exception)
def handle_unexpected_error(error):
    if isinstance(error, HTTPException):
        return error
    logger.exception("Unhandled error on %s %s", request.method, request.path)
    return jsonify({'success': False, 'error': 'Something went wrong. Please try again.'}), 500


# ---------------------------------------------------------------- auth

@bp.route('/api/auth/login', methods=['POST'])
@limiter.limit("20 per minute")
def login():
    svc = services()
    body = _json_body()
    email = svc.validator.require_email(body.get('email'))
    method = body.get('method', 'otp')
    if method not in ('otp', 'magic'):
        raise InvalidInput('Unknown sign-in method')

    try:
        issued = svc.credentials.request_credential(email, method)
    except RateLimited as e:
        svc.audit.log_security_event('rate_limited', {'email': email, 'reset_at': e.details['reset_at']})
        raise

    # Delivery happens off the request path; the response is identical for
    # new and known emails.
    svc.notifier.notify_credential(email, issued)
    message = 'Verification code sent to your email' if method == 'otp' else 'Magic link sent to your email'
    return jsonify({'success': True, 'message': message, 'method': method})


@bp.route('/api/auth/verify', methods=['POST'])
@limiter.limit("30 per minute")
def verify():
    svc = services()
    body = _json_body()
    token = body.get('token')
    if token:
        if not svc.validator.validate_token(token):
            raise CredentialError()
        email = svc.credentials.consume_credential(token=token)
    elif body.get('email') and body.get('otp'):
        if not svc.validator.validate_email(body['email']) or not svc.validator.validate_otp(str(body['otp'])):
            raise CredentialError()
        email = svc.credentials.consume_credential(email=body['email'], code=str(body['otp']))
    else:
        raise InvalidInput('Missing verification credentials')

    user = svc.authenticator.authenticate(email)

    # Never reuse a session id that existed before authentication
    old_session = request.cookies.get(current_app.config['SESSION_COOKIE_NAME'])
    if old_session:
        svc.sessions.destroy_session(old_session)
    session_id = svc.sessions.create_session(user, client_address())

    response = jsonify({'success': True, 'user': user.to_dict()})
    _set_session_cookie(response, session_id)
    return response


@bp.route('/api/auth/logout', methods=['POST'])
def logout():
    svc = services()
    cookie_name = current_app.config['SESSION_COOKIE_NAME']
    session_id = request.cookies.get(cookie_name)
    if session_id and svc.sessions.destroy_session(session_id):
        svc.audit.log_security_event('logout', {'ip': client_address()})
    response = jsonify({'success': True, 'message': 'Logged out successfully'})
    response.delete_cookie(cookie_name, path='/')
    return response


@bp.route('/api/auth/me', methods=['GET'])
@require_permission(Permission.VIEW_OWN_STATUS)
def me():
    return jsonify({
        'success': True,
        'user': g.user.to_dict(),
        'session_expires_at': g.auth_session.expires_at.isoformat() + 'Z',
    })


# ---------------------------------------------------------------- voting

@bp.route('/api/vote', methods=['POST'])
@require_anti_forgery_marker
@limiter.limit(_vote_limit, key_func=_session_key, exempt_when=_missing_marker)
@require_permission(Permission.VOTE)
def vote():
    svc = services()
    user = g.user
    address = client_address()

    # Re-read on every submission: the window can close after the page loaded
    config = get_voting_configuration()
    try:
        check_admission(config, timeutil.utcnow(), is_admin=user.is_admin)
        check_network_quota(config, address)
    except AdmissionClosed as e:
        svc.audit.log_security_event('admission_rejected', {'reason': e.reason}, user_id=user.id)
        raise
    except QuotaExceeded:
        svc.audit.log_security_event('quota_exceeded', {'ip': address}, user_id=user.id)
        raise

    body = _json_body()
    confirmations = svc.ledger.submit_votes(
        user,
        address,
        body.get('votes'),
        client_signature=svc.validator.client_signature(request.headers.get('User-Agent')),
    )
    count = len(confirmations)
    return jsonify({
        'success': True,
        'message': (f"Successfully voted in {count} {'category' if count == 1 else 'categories'}. "
                    "A confirmation email has been sent."),
        'data': confirmations,
    })


@bp.route('/api/vote', methods=['GET'])
def vote_status():
    svc = services()
    config = get_voting_configuration()
    status = voting_status(config, timeutil.utcnow())
    try:
        user = load_session()
    except SessionInvalid:
        return jsonify({'success': False, 'has_voted': False, 'voting_status': status})
    return jsonify({
        'success': True,
        'has_voted': svc.ledger.has_voted(user.id),
        'vote_count': svc.ledger.vote_count(user.id),
        'voting_status': status,
    })


# ---------------------------------------------------------------- admin

@bp.route('/api/admin/settings', methods=['GET'])
@require_permission(Permission.CONFIGURE_VOTING)
def get_settings():
    config = get_voting_configuration()
    return jsonify({
        'success': True,
        'data': config.to_dict(),
        'voting_status': voting_status(config, timeutil.utcnow()),
    })


@bp.route('/api/admin/settings', methods=['PUT'])
@require_permission(Permission.CONFIGURE_VOTING)
def update_settings():
    body = _json_body()
    try:
        config = save_voting_configuration(body)
    except KeyError as e:
        db.session.rollback()
        raise InvalidInput(f"Unknown setting: {e.args[0]}")
    except (TypeError, ValueError) as e:
        db.session.rollback()
        raise InvalidInput(f"Invalid setting value: {e}")
    services().audit.log_security_event('settings_updated', {'fields': sorted(body)}, user_id=g.user.id)
    return jsonify({'success': True, 'data': config.to_dict()})


# ---------------------------------------------------------------- health

@bp.route('/health', methods=['GET'])
def liveness():
    res = check_health(current_app.config)
    return jsonify(res), 200 if res['overall_ok'] else 503


@bp.route('/ready', methods=['GET'])
def readiness():
    res = check_readiness()
    return jsonify(res), 200 if res['overall_ok'] else 503
