# awardvote/security/input_validator.py

import re
import bleach

from awardvote.errors import InvalidInput

# Input validation and normalization for login requests and ballots


def normalize_email(email):
    """Lowercase and trim. Every lookup and write of an email goes through this."""
    if not isinstance(email, str):
        raise InvalidInput('Invalid email address')
    return email.strip().lower()


class InputValidator:
    def __init__(self, max_ballot_entries=50):
        self.max_ballot_entries = max_ballot_entries
        self.patterns = {
            'email': re.compile(r'^[^\s@]+@[^\s@]+\.[^\s@]+$'),
            'identifier': re.compile(r'^[A-Za-z0-9_-]{1,64}$'),
            'otp': re.compile(r'^\d{4,10}$'),
            'token': re.compile(r'^[A-Za-z0-9_-]{32,128}$'),
            'xss_script': re.compile(r'<script[^>]*>.*?</script>', re.IGNORECASE | re.DOTALL),
            'xss_event': re.compile(r'\bon\w+\s*=', re.IGNORECASE)
        }

    def sanitize_string(self, input_str, max_length=255):
        if not isinstance(input_str, str):
            raise ValueError("Input must be a string")
        if len(input_str) > max_length:
            input_str = input_str[:max_length]

        sanitized = re.sub(self.patterns['xss_script'], '', input_str)
        sanitized = re.sub(self.patterns['xss_event'], '', sanitized)
        sanitized = bleach.clean(sanitized, tags=[], attributes={}, strip=True)
        return sanitized.strip()

    def validate_email(self, email):
        return (isinstance(email, str) and len(email.strip()) <= 254
                and bool(self.patterns['email'].match(email.strip())))

    def require_email(self, email):
        if not self.validate_email(email):
            raise InvalidInput('Invalid email address')
        return normalize_email(email)

    def validate_otp(self, code):
        return isinstance(code, str) and bool(self.patterns['otp'].match(code.strip()))

    def validate_token(self, token):
        return isinstance(token, str) and bool(self.patterns['token'].match(token))

    def validate_identifier(self, value):
        return isinstance(value, str) and bool(self.patterns['identifier'].match(value))

    def validate_ballot(self, entries):
        """Return [(category_id, nominee_id), ...] or raise InvalidInput.

        Rejects empty batches, batches above the ceiling, malformed entries
        and two entries naming the same category.
        """
        if not isinstance(entries, list) or not entries:
            raise InvalidInput('No votes provided')
        if len(entries) > self.max_ballot_entries:
            raise InvalidInput('Too many votes in single submission')

        ballot = []
        seen = set()
        for entry in entries:
            if not isinstance(entry, dict):
                raise InvalidInput('Each vote must be an object')
            category_id = entry.get('category_id', entry.get('categoryId'))
            nominee_id = entry.get('nominee_id', entry.get('nomineeId'))
            if not self.validate_identifier(category_id) or not self.validate_identifier(nominee_id):
                raise InvalidInput('Each vote needs a valid category_id and nominee_id')
            if category_id in seen:
                raise InvalidInput('Cannot vote multiple times in the same category')
            seen.add(category_id)
            ballot.append((category_id, nominee_id))
        return ballot

    def client_signature(self, user_agent):
        if not user_agent:
            return 'unknown'
        return self.sanitize_string(user_agent) or 'unknown'
