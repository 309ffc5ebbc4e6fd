# awardvote/voting/admission.py

# Whether voting is permitted right now, evaluated fresh on every submission.

import logging

from awardvote.database.queries import count_votes_from_address
from awardvote.errors import AdmissionClosed, QuotaExceeded

logger = logging.getLogger(__name__)


def check_admission(config, now, is_admin=False):
    """Raise AdmissionClosed unless `config` permits voting at `now`.

    Order: maintenance mode (admins pass), open flag, start time, end time.
    Pure: reads nothing but its arguments.
    """
    if config.maintenance_mode and not is_admin:
        raise AdmissionClosed('maintenance')
    if not config.voting_open:
        raise AdmissionClosed('closed')
    if config.voting_start_at and now < config.voting_start_at:
        raise AdmissionClosed('not_started')
    if config.voting_end_at and now > config.voting_end_at:
        raise AdmissionClosed('ended')
    return True


def check_network_quota(config, origin_address):
    """Coarse per-address cap; shared networks are expected to collide."""
    limit = config.max_votes_per_network_address
    if not limit or not origin_address:
        return True
    count = count_votes_from_address(origin_address)
    if count >= limit:
        logger.warning("Address %s exceeded vote limit (%d/%d)", origin_address, count, limit)
        raise QuotaExceeded()
    return True


def voting_status(config, now):
    """'open', 'upcoming' or 'closed' for display."""
    if config.maintenance_mode or not config.voting_open:
        return 'closed'
    if config.voting_start_at and now < config.voting_start_at:
        return 'upcoming'
    if config.voting_end_at and now > config.voting_end_at:
        return 'closed'
    return 'open'
