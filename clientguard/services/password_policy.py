"""Password policy service

Complexity, weak-pattern, history and expiry rules. Every applicable check
runs; ``validate`` returns the full list of failures rather than the first.
"""
import logging
import re
from datetime import datetime, timedelta
from typing import List, NamedTuple, Optional

from clientguard.extensions import db
from clientguard.utils.clock import utcnow

logger = logging.getLogger(__name__)

MAX_PASSWORD_LENGTH = 128
SPECIAL_CHARACTERS_HINT = '!@#$%^&*()_+-=[]{}|;:,.<>?'

COMMON_PASSWORDS = frozenset([
    'password', 'password123', '123456', '123456789', 'qwerty',
    'abc123', 'password1', 'admin', 'administrator', 'root',
    'user', 'guest', 'test', 'demo', 'welcome',
])

KEYBOARD_PATTERNS = ('qwerty', 'asdf', 'zxcv', '12345', 'abcde', '!@#$%')

REPEATED_CHARACTERS = re.compile(r'(.)\1{3,}')


def _sequence_pattern():
    digits = '01234567890'
    letters = 'abcdefghijklmnopqrstuvwxyz'
    runs = [digits[i:i + 4] for i in range(len(digits) - 3)]
    runs += [letters[i:i + 4] for i in range(len(letters) - 3)]
    return re.compile('|'.join(runs), re.IGNORECASE)


SIMPLE_SEQUENCES = _sequence_pattern()


class PolicyResult(NamedTuple):
    valid: bool
    errors: List[str]

    def to_dict(self):
        return {'valid': self.valid, 'errors': list(self.errors)}


def _result(errors: List[str]) -> PolicyResult:
    return PolicyResult(valid=not errors, errors=errors)


class PasswordPolicyService:
    """Validates candidate passwords and tracks password expiry"""

    def __init__(self, config_service, history_service):
        self.config_service = config_service
        self.history_service = history_service

    def validate(self, password: str, user=None) -> PolicyResult:
        """
        Validate password against all policy requirements

        Args:
            password: Candidate password
            user: When given, the password is also checked against history

        Returns:
            PolicyResult with every failure message
        """
        errors = list(self.validate_complexity(password).errors)

        if user is not None:
            errors.extend(self.validate_history(password, user).errors)

        return _result(errors)

    def validate_complexity(self, password: str) -> PolicyResult:
        requirements = self.config_service.get_password_requirements()
        errors = []

        if len(password) < requirements['min_length']:
            errors.append(f"Password must be at least {requirements['min_length']} characters long")

        if len(password) > MAX_PASSWORD_LENGTH:
            errors.append(f'Password cannot exceed {MAX_PASSWORD_LENGTH} characters')

        if requirements['require_uppercase'] and not re.search(r'[A-Z]', password):
            errors.append('Password must contain at least one uppercase letter (A-Z)')

        if requirements['require_lowercase'] and not re.search(r'[a-z]', password):
            errors.append('Password must contain at least one lowercase letter (a-z)')

        if requirements['require_numbers'] and not re.search(r'[0-9]', password):
            errors.append('Password must contain at least one number (0-9)')

        if requirements['require_special'] and not re.search(r'[^A-Za-z0-9]', password):
            errors.append(
                f'Password must contain at least one special character ({SPECIAL_CHARACTERS_HINT})'
            )

        errors.extend(self.check_weak_patterns(password))
        return _result(errors)

    def validate_history(self, password: str, user) -> PolicyResult:
        history_count = self.config_service.get_password_history_count()

        if history_count == 0:
            return _result([])

        if self.history_service.is_reused(user, password, history_count):
            return _result([
                f'Password cannot be the same as any of your last {history_count} passwords'
            ])

        return _result([])

    @staticmethod
    def check_weak_patterns(password: str) -> List[str]:
        """Fixed checks that no configuration can turn off"""
        errors = []
        lowered = password.lower()

        if lowered in COMMON_PASSWORDS:
            errors.append('Password is too common and easily guessable')

        if any(pattern in lowered for pattern in KEYBOARD_PATTERNS):
            errors.append('Password contains keyboard patterns that are easily guessable')

        if REPEATED_CHARACTERS.search(password):
            errors.append('Password cannot contain more than 3 repeated characters in a row')

        if SIMPLE_SEQUENCES.search(password):
            errors.append('Password cannot contain simple sequences (1234, abcd, etc.)')

        return errors

    # Expiry

    def is_expired(self, user, now: Optional[datetime] = None) -> bool:
        """
        Check if user's password expired

        Expiry disabled (0 days) means never expired, even without a
        recorded change date; otherwise a missing date counts as expired.
        """
        expiry_days = self.config_service.get_password_expiry_days()

        if expiry_days == 0:
            return False

        if user.password_changed_at is None:
            return True

        now = now or utcnow()
        return now > user.password_changed_at + timedelta(days=expiry_days)

    def must_change_password(self, user, now: Optional[datetime] = None) -> bool:
        return bool(user.must_change_password) or self.is_expired(user, now)

    def days_until_expiry(self, user, now: Optional[datetime] = None) -> Optional[int]:
        """Whole days left, None if expiry is off, the date is unknown or already past"""
        expiry_days = self.config_service.get_password_expiry_days()

        if expiry_days == 0 or user.password_changed_at is None:
            return None

        now = now or utcnow()
        remaining = (user.password_changed_at + timedelta(days=expiry_days) - now).days
        return remaining if remaining > 0 else None

    def mark_password_changed(self, user, now: Optional[datetime] = None) -> None:
        """Stamp the change date and clear the forced-change flag (staged, not committed)"""
        user.password_changed_at = now or utcnow()
        user.must_change_password = False
        logger.info('Password changed for user_id=%s', user.id)

    def force_password_change(self, user) -> None:
        user.must_change_password = True
        db.session.commit()
        logger.info('Password change forced for user_id=%s', user.id)

    def requirements_text(self) -> List[str]:
        requirements = self.config_service.get_password_requirements()
        text = [f"Must be at least {requirements['min_length']} characters long"]

        if requirements['require_uppercase']:
            text.append('Must contain at least one uppercase letter (A-Z)')

        if requirements['require_lowercase']:
            text.append('Must contain at least one lowercase letter (a-z)')

        if requirements['require_numbers']:
            text.append('Must contain at least one number (0-9)')

        if requirements['require_special']:
            text.append(f'Must contain at least one special character ({SPECIAL_CHARACTERS_HINT})')

        history_count = self.config_service.get_password_history_count()
        if history_count > 0:
            text.append(f'Cannot be the same as any of your last {history_count} passwords')

        expiry_days = self.config_service.get_password_expiry_days()
        if expiry_days > 0:
            text.append(f'Must be changed every {expiry_days} days')

        return text
