# awardvote/audit/audit_logger.py

import os
import json
import hashlib
import base64
import logging
import threading
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey
from cryptography.hazmat.primitives import serialization

from awardvote import timeutil

# Append-only audit trail for authentication and voting events, hash chained
# and signed with Ed25519 so edits or deletions are detectable.

logger = logging.getLogger(__name__)


class AuditLogger:
    def __init__(self, log_dir='logs', signing_key_pem=None):
        self.log_dir = log_dir
        self.log_file = os.path.join(log_dir, 'audit.log')
        self.previous_hash = None
        self._lock = threading.Lock()

        os.makedirs(log_dir, exist_ok=True)

        if signing_key_pem:
            self.signing_key = serialization.load_pem_private_key(signing_key_pem.encode(), password=None)
        else:
            # Ephemeral key: entries written before a restart can only be
            # checked with the public key exported at the time.
            self.signing_key = Ed25519PrivateKey.generate()
        self._load_previous_hash()

    def public_key_pem(self):
        return self.signing_key.public_key().public_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PublicFormat.SubjectPublicKeyInfo).decode()

    def _load_previous_hash(self):
        if os.path.exists(self.log_file):
            with open(self.log_file, 'r') as f:
                lines = [line for line in f if line.strip()]
                if lines:
                    try:
                        self.previous_hash = json.loads(lines[-1]).get('hash')
                    except ValueError:
                        self.previous_hash = None

    def log_security_event(self, event_type, data, user_id=None):
        with self._lock:
            try:
                log_entry = {
                    "timestamp": timeutil.utcnow().isoformat(),
                    "event_type": event_type,
                    "data": data,
                    "user_id": user_id,
                    "previous_hash": self.previous_hash,
                }
                entry_json = json.dumps(log_entry, sort_keys=True)
                entry_hash = hashlib.sha256(entry_json.encode()).hexdigest()
                signature = self.signing_key.sign(entry_json.encode())
                log_entry['hash'] = entry_hash
                log_entry['signature'] = base64.b64encode(signature).decode()

                with open(self.log_file, 'a') as f:
                    f.write(json.dumps(log_entry) + "\n")

                self.previous_hash = entry_hash
            except (OSError, TypeError, ValueError) as e:
                # Auditing must never break the request that triggered it
                logger.error("Audit log error for %s: %s", event_type, e)

    def verify_log_integrity(self, public_key_pem=None):
        if public_key_pem:
            public_key = serialization.load_pem_public_key(public_key_pem.encode())
        else:
            public_key = self.signing_key.public_key()
        try:
            if not os.path.exists(self.log_file):
                return True
            previous_hash = None
            with open(self.log_file, 'r') as f:
                for line in f:
                    if not line.strip():
                        continue
                    log_entry = json.loads(line)
                    if log_entry.get('previous_hash') != previous_hash:
                        return False
                    signature = base64.b64decode(log_entry.pop('signature'))
                    entry_hash = log_entry.pop('hash')
                    entry_json = json.dumps(log_entry, sort_keys=True).encode()
                    if hashlib.sha256(entry_json).hexdigest() != entry_hash:
                        return False
                    public_key.verify(signature, entry_json)
                    previous_hash = entry_hash
            return True
        except (InvalidSignature, KeyError, ValueError):
            return False
