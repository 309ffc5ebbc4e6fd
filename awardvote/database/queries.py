# awardvote/database/queries.py

# Read-side lookups the core consumes from the admin-owned data:
# categories, nominees and the voting configuration key/value table.

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import func

from awardvote import db
from awardvote.database.models import Category, Nominee, Setting, Vote

SETTING_KEYS = (
    'voting_open',
    'voting_start_date',
    'voting_end_date',
    'results_public',
    'maintenance_mode',
    'max_votes_per_ip',
)


@dataclass(frozen=True)
class VotingConfiguration:
    # results_public is owned by the admin settings endpoint and only passed
    # through here; admission never consults it.
    voting_open: bool = False
    voting_start_at: Optional[datetime] = None
    voting_end_at: Optional[datetime] = None
    results_public: bool = False
    maintenance_mode: bool = False
    max_votes_per_network_address: Optional[int] = None

    def to_dict(self):
        return {
            'voting_open': self.voting_open,
            'voting_start_at': self.voting_start_at.isoformat() if self.voting_start_at else None,
            'voting_end_at': self.voting_end_at.isoformat() if self.voting_end_at else None,
            'results_public': self.results_public,
            'maintenance_mode': self.maintenance_mode,
            'max_votes_per_network_address': self.max_votes_per_network_address,
        }


def get_category(category_id):
    return db.session.get(Category, category_id)


def get_nominee(nominee_id):
    return db.session.get(Nominee, nominee_id)


def count_votes_from_address(ip_address):
    return db.session.query(func.count(Vote.id)).filter(Vote.ip_address == ip_address).scalar() or 0


def get_setting(key):
    setting = db.session.get(Setting, key)
    return setting.value if setting else None


def set_setting(key, value):
    if key not in SETTING_KEYS:
        raise KeyError(key)
    setting = db.session.get(Setting, key)
    if setting is None:
        setting = Setting(key=key)
        db.session.add(setting)
    setting.value = value


def _parse_datetime(value):
    if not value:
        return None
    parsed = datetime.fromisoformat(value.replace('Z', '+00:00'))
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def get_voting_configuration():
    """Read the configuration fresh from the store; never cached."""
    rows = {s.key: s.value for s in db.session.query(Setting).filter(Setting.key.in_(SETTING_KEYS))}
    max_votes = rows.get('max_votes_per_ip')
    return VotingConfiguration(
        voting_open=rows.get('voting_open') == 'true',
        voting_start_at=_parse_datetime(rows.get('voting_start_date')),
        voting_end_at=_parse_datetime(rows.get('voting_end_date')),
        results_public=rows.get('results_public') == 'true',
        maintenance_mode=rows.get('maintenance_mode') == 'true',
        max_votes_per_network_address=int(max_votes) if max_votes else None,
    )


def save_voting_configuration(updates):
    """Persist a partial update coming from the admin settings endpoint."""
    mapping = {
        'voting_open': ('voting_open', _bool_str),
        'voting_start_at': ('voting_start_date', _datetime_str),
        'voting_end_at': ('voting_end_date', _datetime_str),
        'results_public': ('results_public', _bool_str),
        'maintenance_mode': ('maintenance_mode', _bool_str),
        'max_votes_per_network_address': ('max_votes_per_ip', _int_str),
    }
    for field, value in updates.items():
        if field not in mapping:
            raise KeyError(field)
        key, convert = mapping[field]
        set_setting(key, convert(value))
    db.session.commit()
    return get_voting_configuration()


def _bool_str(value):
    if not isinstance(value, bool):
        raise ValueError("Expected a boolean")
    return 'true' if value else 'false'


def _datetime_str(value):
    if value in (None, ''):
        return None
    if isinstance(value, datetime):
        return value.isoformat()
    _parse_datetime(str(value))
    return str(value)


def _int_str(value):
    if value in (None, ''):
        return None
    number = int(value)
    if number < 1:
        raise ValueError("Expected a positive integer")
    return str(number)
