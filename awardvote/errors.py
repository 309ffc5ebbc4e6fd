# awardvote/errors.py
"""Error taxonomy for authentication and vote integrity.

Every failure the core can report to a client is a ``VotingError`` subclass
carrying an HTTP status, a stable machine code and a user-presentable
message. The blueprint error handler turns them into JSON bodies; nothing in
this hierarchy should ever surface as an opaque 500.

Hierarchy:
- VotingError
  - InvalidInput
  - RateLimited
  - CredentialError
    - CredentialNotFound
    - CredentialExpired
    - CredentialMismatch
  - VerificationLocked
  - SessionInvalid
  - Forbidden
  - AdmissionClosed
  - QuotaExceeded
  - AlreadyVoted
    - StorageConflict
  - ReferentialError
  - Unavailable
"""


class VotingError(Exception):
    status_code = 400
    code = 'error'
    message = 'Request could not be processed.'

    def __init__(self, message=None, **details):
        self.message = message or self.message
        self.details = details
        super().__init__(self.message)

    def to_dict(self):
        payload = {'success': False, 'error': self.message, 'code': self.code}
        payload.update(self.details)
        return payload


class InvalidInput(VotingError):
    status_code = 400
    code = 'invalid_input'
    message = 'Invalid request.'


class RateLimited(VotingError):
    status_code = 429
    code = 'rate_limited'
    message = 'Too many attempts. Please try again later.'

    def __init__(self, reset_at, message=None):
        self.reset_at = reset_at
        super().__init__(message, reset_at=reset_at.isoformat() + 'Z')


class CredentialError(VotingError):
    status_code = 401
    code = 'invalid_credential'
    # One message for every credential failure so a caller cannot tell an
    # unknown email from a wrong code.
    message = 'Invalid or expired verification code.'

    def to_dict(self):
        return {'success': False, 'error': CredentialError.message, 'code': CredentialError.code}


class CredentialNotFound(CredentialError):
    pass


class CredentialExpired(CredentialError):
    pass


class CredentialMismatch(CredentialError):
    pass


class VerificationLocked(VotingError):
    status_code = 429
    code = 'verification_locked'
    message = 'Too many incorrect codes. Please wait before trying again.'

    def __init__(self, retry_after_seconds):
        self.retry_after_seconds = retry_after_seconds
        super().__init__(retry_after=retry_after_seconds)


class SessionInvalid(VotingError):
    status_code = 401
    code = 'session_invalid'
    message = 'Session expired. Please sign in again.'

    def __init__(self, reason='not_found'):
        self.reason = reason
        super().__init__(reason=reason)


class Forbidden(VotingError):
    status_code = 403
    code = 'forbidden'
    message = 'Access denied.'


class AdmissionClosed(VotingError):
    status_code = 403
    code = 'admission_closed'

    MESSAGES = {
        'maintenance': 'Voting is temporarily unavailable for maintenance.',
        'closed': 'Voting is currently closed.',
        'not_started': 'Voting has not started yet.',
        'ended': 'Voting period has ended.',
    }

    def __init__(self, reason):
        self.reason = reason
        super().__init__(self.MESSAGES.get(reason, 'Voting is not available.'), reason=reason)


class QuotaExceeded(VotingError):
    status_code = 429
    code = 'quota_exceeded'
    message = 'Vote limit reached from this network.'


class AlreadyVoted(VotingError):
    status_code = 403
    code = 'already_voted'
    message = 'You have already submitted your votes. Votes are final and cannot be changed.'

    def __init__(self, message=None):
        super().__init__(message, already_voted=True)


class StorageConflict(AlreadyVoted):
    """Uniqueness constraint fired at commit; reported exactly like AlreadyVoted."""


class ReferentialError(VotingError):
    status_code = 400
    code = 'invalid_reference'
    message = 'Invalid category or nominee.'


class Unavailable(VotingError):
    status_code = 503
    code = 'unavailable'
    message = 'Service temporarily unavailable. Please try again.'
