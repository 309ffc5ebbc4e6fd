# awardvote/voting/ledger.py
"""Vote ledger: one irrevocable ballot per user.

A ballot is the whole set of (category, nominee) selections a user submits
in one call. It is committed atomically or not at all, and once any vote
exists for a user, every later submission is refused. Per user the states
are NotVoted -> Voted, and Voted is terminal.

The ``has_voted`` pre-check is only a fast path. Two submissions racing
past it are settled by the ``uq_votes_user_category`` constraint: the loser's
transaction fails with IntegrityError, is rolled back in full and reported
as ``StorageConflict``, which callers treat as ``AlreadyVoted``.
"""

import logging

from sqlalchemy import exists
from sqlalchemy.exc import IntegrityError, OperationalError

from awardvote import db, timeutil
from awardvote.database.models import Vote
from awardvote.database.queries import get_category, get_nominee
from awardvote.errors import AlreadyVoted, ReferentialError, StorageConflict, Unavailable

logger = logging.getLogger(__name__)


class VoteLedger:
    def __init__(self, validator, notifier=None, audit_logger=None):
        self.validator = validator
        self.notifier = notifier
        self.audit = audit_logger

    def _audit(self, event_type, data, user_id=None):
        if self.audit:
            self.audit.log_security_event(event_type, data, user_id=user_id)

    def has_voted(self, user_id):
        return db.session.query(exists().where(Vote.user_id == user_id)).scalar()

    def vote_count(self, user_id):
        return db.session.query(Vote).filter(Vote.user_id == user_id).count()

    def submit_votes(self, user, origin_address, entries, client_signature=None):
        """Record a ballot for `user` and return per-category confirmations.

        Returns [{'category_id': ..., 'voted_at': ...}, ...]; nominee ids are
        deliberately left out.
        """
        ballot = self.validator.validate_ballot(entries)

        if self.has_voted(user.id):
            logger.warning("User %s attempted to vote again", user.email)
            self._audit('duplicate_vote_attempt', {'stage': 'precheck'}, user_id=user.id)
            raise AlreadyVoted()

        self._check_references(ballot)

        now = timeutil.utcnow()
        votes = [
            Vote(
                user_id=user.id,
                category_id=category_id,
                nominee_id=nominee_id,
                voted_at=now,
                ip_address=origin_address,
                client_signature=client_signature,
            )
            for category_id, nominee_id in ballot
        ]
        confirmations = [
            {'category_id': category_id, 'voted_at': now.isoformat() + 'Z'}
            for category_id, _ in ballot
        ]
        try:
            db.session.add_all(votes)
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            if self.has_voted(user.id):
                logger.error("Double vote attempt by %s rejected at commit", user.email)
                self._audit('duplicate_vote_attempt', {'stage': 'commit'}, user_id=user.id)
                raise StorageConflict('Vote already recorded. This incident has been logged.')
            # Reference data changed between validation and commit
            raise ReferentialError()
        except OperationalError as e:
            db.session.rollback()
            logger.error("Vote storage failed for %s: %s", user.email, e)
            raise Unavailable()

        logger.info("User %s voted in %d categories from %s", user.email, len(confirmations), origin_address)
        self._audit('vote_cast', {
            'categories': [c['category_id'] for c in confirmations],
            'ip': origin_address,
        }, user_id=user.id)

        if self.notifier:
            self.notifier.notify_vote_confirmation(user.email, len(confirmations))

        return confirmations

    def _check_references(self, ballot):
        for category_id, nominee_id in ballot:
            if get_category(category_id) is None:
                raise ReferentialError(f"Invalid category: {category_id}")
            nominee = get_nominee(nominee_id)
            if nominee is None or nominee.category_id != category_id:
                raise ReferentialError('Invalid nominee for category')
