# awardvote/notifications/email_sink.py

import logging
import requests
from collections import deque

from awardvote.errors import Unavailable

# Outbound email delivery for credentials and vote confirmations.
# HttpEmailSink talks to a Resend-style JSON API; LogEmailSink is for development.

logger = logging.getLogger(__name__)


class EmailSink:
    def __init__(self, app_name='Awards Voting', app_url='http://localhost:5000',
                 ttl_minutes=15):
        self.app_name = app_name
        self.app_url = app_url.rstrip('/')
        self.ttl_minutes = ttl_minutes

    def send(self, to, subject, text):
        raise NotImplementedError

    def send_credential(self, email, credential):
        if credential.kind == 'magic':
            link = f"{self.app_url}/verify?token={credential.secret}"
            subject = f"Sign in to {self.app_name}"
            text = (f"Click the link below to sign in (expires in {self.ttl_minutes} minutes):\n"
                    f"{link}\n\n"
                    "If you didn't request this email, you can safely ignore it.")
        else:
            subject = f"Your {self.app_name} verification code"
            text = (f"Your verification code is: {credential.secret}\n"
                    f"It expires in {self.ttl_minutes} minutes.\n\n"
                    "If you didn't request this code, you can safely ignore this email.")
        self.send(email, subject, text)

    def send_vote_confirmation(self, email, category_count):
        noun = 'category' if category_count == 1 else 'categories'
        self.send(
            email,
            f"Vote confirmation - {self.app_name}",
            f"Thank you for voting! Your votes in {category_count} {noun} have been recorded.\n"
            "Votes are final and cannot be changed.",
        )


class LogEmailSink(EmailSink):
    """Keeps the last few messages in memory instead of sending them.

    Only the recipient and subject reach the log; bodies carry codes and
    sign-in links.
    """

    def __init__(self, *args, outbox_size=100, **kwargs):
        super().__init__(*args, **kwargs)
        self.outbox = deque(maxlen=outbox_size)

    def send(self, to, subject, text):
        self.outbox.append({'to': to, 'subject': subject, 'text': text})
        logger.info("Email to %s: %s", to, subject)


class HttpEmailSink(EmailSink):
    def __init__(self, api_url, api_key, sender, timeout=10, **kwargs):
        super().__init__(**kwargs)
        self.api_url = api_url
        self.api_key = api_key
        self.sender = sender
        self.timeout = timeout

    def send(self, to, subject, text):
        try:
            response = requests.post(
                self.api_url,
                json={'from': self.sender, 'to': [to], 'subject': subject, 'text': text},
                headers={'Authorization': f"Bearer {self.api_key}"},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise Unavailable(f"Email delivery failed: {e}")
        if response.status_code >= 400:
            raise Unavailable(f"Email API returned {response.status_code}")
