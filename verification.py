"""
E-mail Verification - One-time codes for Google sign-in
"""

import logging
import secrets
import smtplib
import threading
from datetime import datetime, timedelta
from typing import Callable, Dict, NamedTuple

from flask_mail import Mail, Message

from database import utc_now
from errors import UpstreamError

logger = logging.getLogger(__name__)


def generate_verification_code() -> str:
    """Random 6-digit code, never starting with 0."""
    return str(100000 + secrets.randbelow(900000))


class _PendingCode(NamedTuple):
    code: str
    expires_at: datetime
    failed_attempts: int = 0


class VerificationCodeStore:
    """
    Codes waiting to be confirmed, keyed by e-mail.

    One instance lives on the Flask app. Each code is valid for
    ``ttl_seconds`` and can be used once. A code is discarded after
    ``max_attempts`` wrong guesses.
    """

    def __init__(self, ttl_seconds: int = 300, clock: Callable[[], datetime] = utc_now,
                 max_attempts: int = 5):
        self.ttl = timedelta(seconds=ttl_seconds)
        self.max_attempts = max_attempts
        self.clock = clock
        self._codes: Dict[str, _PendingCode] = {}
        self._lock = threading.Lock()

    def save(self, email: str, code: str) -> datetime:
        """Store ``code`` for ``email``, replacing any earlier one; returns the expiry."""
        now = self.clock()
        expires_at = now + self.ttl
        with self._lock:
            self._drop_expired(now)
            self._codes[email.lower()] = _PendingCode(code, expires_at)
        return expires_at

    def verify(self, email: str, code: str) -> bool:
        """True if ``code`` is the live code for ``email``. A match consumes it."""
        key = email.lower()
        with self._lock:
            pending = self._codes.get(key)
            if pending is None:
                return False
            if pending.expires_at < self.clock():
                del self._codes[key]
                return False
            if not secrets.compare_digest(pending.code, str(code)):
                failed = pending.failed_attempts + 1
                if failed >= self.max_attempts:
                    logger.warning("Too many wrong verification codes for %s; code discarded", key)
                    del self._codes[key]
                else:
                    self._codes[key] = pending._replace(failed_attempts=failed)
                return False
            del self._codes[key]
            return True

    def _drop_expired(self, now: datetime) -> int:
        # caller holds the lock
        expired = [k for k, v in self._codes.items() if v.expires_at < now]
        for key in expired:
            del self._codes[key]
        return len(expired)

    def purge_expired(self) -> int:
        with self._lock:
            return self._drop_expired(self.clock())

    def __len__(self) -> int:
        with self._lock:
            return len(self._codes)


class VerificationMailer:
    """Sends verification codes through Flask-Mail."""

    SUBJECT = 'Your Verification Code'

    def __init__(self, mail: Mail, sender: str = None):
        self.mail = mail
        self.sender = sender

    def send_code(self, email: str, code: str) -> None:
        message = Message(
            subject=self.SUBJECT,
            recipients=[email],
            body=f'Your verification code is: {code}',
            sender=self.sender,
        )
        try:
            self.mail.send(message)
        except (smtplib.SMTPException, OSError) as e:
            logger.error("Error sending verification e-mail to %s: %s", email, e)
            raise UpstreamError('Failed to send verification code')
        logger.info("[OK] Verification code sent to %s", email)
