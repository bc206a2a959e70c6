"""
User Authentication & Management
Handles user registration, login, Google sign-in and refresh-token bookkeeping
"""

import hashlib
import hmac
import logging
import re
import secrets
from typing import Any, Dict, Optional, Tuple

from database import Database, to_db_datetime, utc_now
from errors import AuthenticationError, ConflictError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r"^\w+([-+.']\w+)*@\w+([-.]\w+)*\.\w+([-.]\w+)*$")
PASSWORD_PATTERN = re.compile(r"^(?=.*[a-z])(?=.*[A-Z])(?=.*\d)(?=.*[@$!%*?&])[A-Za-z\d@$!%*?&]{8,}$")

PASSWORD_RULE_MESSAGE = (
    'Password must be at least 8 characters long and include an uppercase letter, '
    'a lowercase letter, a number, and a special character.'
)
INVALID_EMAIL_MESSAGE = 'Email format is invalid. Please check the email and try again.'

PUBLIC_USER_FIELDS = "id, username, email, google_id, email_verified, is_active, created_at, updated_at"


class UserManager:
    """Manages user authentication and accounts"""

    def __init__(self, db: Database):
        """Initialize UserManager with database connection"""
        self.db = db

    # ==================== PASSWORD HASHING ====================

    @staticmethod
    def hash_password(password: str, salt: str = None) -> Tuple[str, str]:
        """
        Hash password using PBKDF2 with salt
        Returns: (hashed_password, salt)
        """
        if salt is None:
            salt = secrets.token_hex(16)

        hashed = hashlib.pbkdf2_hmac(
            'sha256',
            password.encode('utf-8'),
            salt.encode('utf-8'),
            100000  # iterations
        )
        return f"{hashed.hex()}${salt}", salt

    @staticmethod
    def verify_password(password: str, stored_hash: str) -> bool:
        """
        Verify password against stored hash
        stored_hash format: hash$salt
        """
        try:
            stored_password_hash, salt = stored_hash.split('$')
        except ValueError:
            logger.error("Malformed password hash in users table")
            return False

        new_hash, _ = UserManager.hash_password(password, salt)
        new_password_hash, _ = new_hash.split('$')
        return hmac.compare_digest(stored_password_hash, new_password_hash)

    @staticmethod
    def is_valid_email(email: str) -> bool:
        return bool(email) and EMAIL_PATTERN.match(email) is not None

    @staticmethod
    def is_strong_password(password: str) -> bool:
        return bool(password) and PASSWORD_PATTERN.match(password) is not None

    # ==================== USER REGISTRATION ====================

    def register_user(self, username: str, email: str, password: str,
                      confirm_password: str) -> Dict[str, Any]:
        """
        Register a new user

        Args:
            username: Display name
            email: Login e-mail, unique across users
            password: Plain text password (will be hashed)
            confirm_password: Must equal ``password``

        Returns:
            The created user (public fields only)
        """
        if not username and not email and not password and not confirm_password:
            raise ValidationError('Please input your information')
        if not username:
            raise ValidationError('Please input your username')
        if not email:
            raise ValidationError('Please input your email')
        if not password:
            raise ValidationError('Please input your password')
        if not self.is_valid_email(email):
            raise ValidationError(INVALID_EMAIL_MESSAGE)
        if not self.is_strong_password(password):
            raise ValidationError(PASSWORD_RULE_MESSAGE)
        if password != confirm_password:
            raise ValidationError("Passwords don't match. Please try again.")

        if self._find_by_email(email):
            raise ConflictError('The email is already registered')

        password_hash, _ = self.hash_password(password)
        user_id = self._insert_user(username, email, password_hash)

        logger.info("[OK] User registered: %s (ID: %s)", username, user_id)
        return self.get_user(user_id)

    def _insert_user(self, username: str, email: str, password_hash: str,
                     google_id: str = None, email_verified: bool = False) -> int:
        now = to_db_datetime(utc_now())
        return self.db.execute_update(
            "INSERT INTO users (username, email, password_hash, google_id, email_verified, "
            "is_active, created_at, updated_at) VALUES (?, ?, ?, ?, ?, 1, ?, ?)",
            (username, email, password_hash, google_id, int(email_verified), now, now)
        )

    # ==================== USER LOGIN ====================

    def login_user(self, email: str, password: str) -> Dict[str, Any]:
        """
        Authenticate user login

        Returns:
            The authenticated user (public fields only)
        """
        if not email and not password:
            raise ValidationError('Please input your email and password')
        if not email:
            raise ValidationError('Please input your email')
        if not password:
            raise ValidationError('Please input your password')
        if not self.is_valid_email(email):
            raise ValidationError(INVALID_EMAIL_MESSAGE)

        row = self._find_by_email(email)
        if not row or not self.verify_password(password, row['password_hash']):
            logger.warning("Failed login for %s", email)
            raise AuthenticationError('Invalid email or password')

        if not row['is_active']:
            raise AuthenticationError('Account is inactive')

        logger.info("[OK] User logged in: %s (ID: %s)", row['username'], row['id'])
        return self.get_user(row['id'])

    def login_with_google(self, profile: Dict[str, Any]) -> Dict[str, Any]:
        """
        Find or create the user for a verified Google profile.

        ``profile`` holds the ID-token claims: ``sub``, ``email`` and
        optionally ``name``.
        """
        google_id = profile.get('sub')
        email = profile.get('email')
        if not google_id or not email:
            raise AuthenticationError('Google account has no e-mail address')
        username = profile.get('name') or email.split('@')[0]

        row = self.db.execute_single("SELECT id FROM users WHERE google_id = ?", (google_id,))
        if row is None:
            row = self._find_by_email(email)

        if row is None:
            # Google users never log in with a password; store one nobody knows
            password_hash, _ = self.hash_password(secrets.token_urlsafe(32))
            user_id = self._insert_user(username, email, password_hash, google_id=google_id)
            logger.info("[OK] User created from Google account: %s (ID: %s)", email, user_id)
        else:
            user_id = row['id']
            self.db.execute_update(
                "UPDATE users SET username = ?, email = ?, google_id = ?, updated_at = ? WHERE id = ?",
                (username, email, google_id, to_db_datetime(utc_now()), user_id)
            )
        return self.get_user(user_id)

    def mark_email_verified(self, email: str) -> Dict[str, Any]:
        row = self._find_by_email(email)
        if not row:
            raise NotFoundError('User not found')
        self.db.execute_update(
            "UPDATE users SET email_verified = 1, updated_at = ? WHERE id = ?",
            (to_db_datetime(utc_now()), row['id'])
        )
        return self.get_user(row['id'])

    # ==================== TOKENS ====================

    def store_refresh_jti(self, user_id: int, jti: Optional[str]) -> None:
        """Remember the only refresh token that may be exchanged for this user."""
        self.db.execute_update(
            "UPDATE users SET refresh_jti = ? WHERE id = ?", (jti, user_id)
        )

    def refresh_jti_matches(self, user_id: int, jti: str) -> bool:
        row = self.db.execute_single("SELECT refresh_jti FROM users WHERE id = ?", (user_id,))
        return bool(row and row['refresh_jti'] and hmac.compare_digest(row['refresh_jti'], jti))

    def logout_user(self, user_id: int) -> None:
        self.get_user(user_id)
        self.store_refresh_jti(user_id, None)
        logger.info("[OK] User %s logged out", user_id)

    # ==================== USER MANAGEMENT ====================

    def _find_by_email(self, email: str):
        return self.db.execute_single(
            "SELECT id, username, password_hash, is_active FROM users WHERE email = ?",
            (email,)
        )

    def get_user(self, user_id: int) -> Dict[str, Any]:
        """Get user by ID"""
        row = self.db.execute_single(
            f"SELECT {PUBLIC_USER_FIELDS} FROM users WHERE id = ?", (user_id,)
        )
        if not row:
            raise NotFoundError('User not found')
        user = dict(row)
        user['email_verified'] = bool(user['email_verified'])
        user['is_active'] = bool(user['is_active'])
        return user

    def update_user(self, user_id: int, **kwargs) -> Dict[str, Any]:
        """Update user information"""
        allowed_fields = {'email', 'username'}
        updates = {k: v for k, v in kwargs.items() if k in allowed_fields and v}

        if not updates:
            raise ValidationError('Nothing to update')

        self.get_user(user_id)

        if 'email' in updates:
            if not self.is_valid_email(updates['email']):
                raise ValidationError(INVALID_EMAIL_MESSAGE)
            existing = self._find_by_email(updates['email'])
            if existing and existing['id'] != user_id:
                raise ConflictError('The email is already registered')

        set_clause = ", ".join([f"{k} = ?" for k in updates.keys()])
        values = tuple(updates.values()) + (to_db_datetime(utc_now()), user_id)
        self.db.execute_update(f"UPDATE users SET {set_clause}, updated_at = ? WHERE id = ?", values)

        logger.info("[OK] User %s updated", user_id)
        return self.get_user(user_id)

    def change_password(self, user_id: int, old_password: str, new_password: str) -> None:
        """Change password for a logged-in user"""
        if not old_password or not new_password:
            raise ValidationError('Old and new passwords are required')
        if not self.is_strong_password(new_password):
            raise ValidationError(PASSWORD_RULE_MESSAGE)

        row = self.db.execute_single("SELECT password_hash FROM users WHERE id = ?", (user_id,))
        if not row:
            raise NotFoundError('User not found')

        if not self.verify_password(old_password, row['password_hash']):
            raise AuthenticationError('Current password is incorrect')

        self._set_password(user_id, new_password)
        logger.info("[OK] Password changed for user %s", user_id)

    def reset_password(self, email: str, username: str, password: str) -> None:
        """Set a new password for the account matching both e-mail and username"""
        if not email or not username or not password:
            raise ValidationError('Email, username, and password are required.')
        if not self.is_strong_password(password):
            raise ValidationError(PASSWORD_RULE_MESSAGE)

        row = self._find_by_email(email)
        if not row or row['username'] != username:
            raise NotFoundError('User not found')

        self._set_password(row['id'], password)
        logger.info("[OK] Password reset for user %s", row['id'])

    def _set_password(self, user_id: int, password: str) -> None:
        new_hash, _ = self.hash_password(password)
        self.db.execute_update(
            "UPDATE users SET password_hash = ?, updated_at = ? WHERE id = ?",
            (new_hash, to_db_datetime(utc_now()), user_id)
        )

    def delete_user(self, user_id: int) -> bool:
        """Delete user account and, by cascade, the user's tasks"""
        self.get_user(user_id)
        self.db.execute_update("DELETE FROM users WHERE id = ?", (user_id,))
        logger.info("[OK] User %s deleted", user_id)
        return True
