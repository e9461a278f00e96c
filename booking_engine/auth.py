"""Shared staff access gate.

One passphrase protects every staff operation. Only its bcrypt hash is kept
in configuration (BOOKING_ACCESS_KEY_HASH); generate one with
`python -m booking_engine hash-key <passphrase>`.
"""
from typing import Optional

import bcrypt


class InvalidAccessKeyError(Exception):
    """Raised when the staff passphrase is missing or wrong."""
    pass


class AccessGate:
    """
    Verifies the staff passphrase against a bcrypt hash.

    A gate built without a hash is open: every request is let through. This
    is meant for local development only.
    """

    def __init__(self, key_hash: Optional[str] = None):
        self.key_hash = key_hash

    @property
    def is_open(self) -> bool:
        return not self.key_hash

    @staticmethod
    def hash_passphrase(passphrase: str) -> str:
        """Hash passphrase using bcrypt."""
        return bcrypt.hashpw(passphrase.encode(), bcrypt.gensalt()).decode()

    def verify(self, passphrase: Optional[str]) -> None:
        """
        Check a passphrase.

        Raises:
            InvalidAccessKeyError: If the gate is closed and the passphrase does not match
        """
        if self.is_open:
            return
        if not passphrase:
            raise InvalidAccessKeyError("Access key required")
        if not bcrypt.checkpw(passphrase.encode(), self.key_hash.encode()):
            raise InvalidAccessKeyError("Invalid access key")
