"""Security configuration service

Single stored configuration record accessed through ``get``/``update``. The
record is created from the application's ``SECURITY_DEFAULTS`` the first
time it is read; nothing else in the core creates rows implicitly.
"""
import logging
from typing import Dict, List, Optional

from flask import current_app

from clientguard.config import SECURITY_DEFAULTS
from clientguard.exceptions import ValidationError
from clientguard.extensions import db
from clientguard.models.security_config import (
    COMPLEXITY_FIELDS, CONFIG_FIELDS, INTEGER_FIELDS, SecurityConfig,
)
from clientguard.services.audit_logger import AuditLogger
from clientguard.utils.security import PasswordHasher

logger = logging.getLogger(__name__)

# Business-rule floor; the hasher itself accepts anything from 10,000 up
RECOMMENDED_MIN_ITERATIONS = 50000

# field: (minimum, maximum, message below minimum, message above maximum)
FIELD_RANGES = {
    'max_login_attempts': (1, 20,
                           'Maximum login attempts must be at least 1',
                           'Maximum login attempts cannot exceed 20'),
    'lockout_duration_minutes': (1, 1440,
                                 'Lockout duration must be at least 1 minute',
                                 'Lockout duration cannot exceed 24 hours'),
    'password_min_length': (8, 128,
                            'Password minimum length must be at least 8 characters',
                            'Password minimum length cannot exceed 128 characters'),
    'password_history_count': (0, 50,
                               'Password history count cannot be negative',
                               'Password history count cannot exceed 50'),
    'password_expiry_days': (0, 365,
                             'Password expiry cannot be negative',
                             'Password expiry cannot exceed 365 days'),
    'pbkdf2_iterations': (10000, 1000000,
                          'PBKDF2 iterations must be at least 10,000 for security',
                          'PBKDF2 iterations cannot exceed 1,000,000 for performance'),
    'session_timeout_minutes': (5, 1440,
                                'Session timeout must be at least 5 minutes',
                                'Session timeout cannot exceed 24 hours'),
}

_TRUE_VALUES = ('1', 'true', 'yes', 'on')
_FALSE_VALUES = ('0', 'false', 'no', 'off')


class SecurityConfigService:
    """
    Reads and updates the security policy

    ``update`` and ``reset_to_defaults`` record a ``security_config_changed``
    event in the same commit as the change.
    """

    def __init__(self, audit_logger: Optional[AuditLogger] = None):
        self.audit_logger = audit_logger or AuditLogger()

    def get(self) -> SecurityConfig:
        """Return the configuration record, materializing it from defaults if absent"""
        config = SecurityConfig.query.order_by(SecurityConfig.id).first()
        if config is None:
            config = SecurityConfig(**self.defaults())
            db.session.add(config)
            db.session.commit()
            logger.info('Security configuration initialized from defaults')
        return config

    def update(self, data: Dict, actor_id: Optional[int] = None,
               note: Optional[str] = None) -> SecurityConfig:
        """
        Validate and apply a partial update

        Unknown keys are ignored.

        Raises:
            ValidationError: Naming every violated field; nothing is changed
        """
        config = self.get()
        current = config.to_dict()
        cleaned, errors = self._clean(data)

        for field, messages in self._business_rule_errors(cleaned, current).items():
            errors.setdefault(field, []).extend(messages)

        if errors:
            raise ValidationError(errors)

        for field, value in cleaned.items():
            setattr(config, field, value)

        new = config.to_dict()
        self.audit_logger.log_security_config_change(actor_id, current, new, note=note)

        changed = sorted(field for field in new if new[field] != current[field])
        logger.info('Security configuration updated by user_id=%s: %s',
                    actor_id, ', '.join(changed) or 'no changes')
        return config

    def reset_to_defaults(self, actor_id: Optional[int] = None) -> SecurityConfig:
        return self.update(self.defaults(), actor_id=actor_id,
                           note='Configuration reset to defaults')

    def defaults(self) -> Dict:
        defaults = current_app.config.get('SECURITY_DEFAULTS', SECURITY_DEFAULTS)
        return {field: defaults[field] for field in CONFIG_FIELDS}

    # Accessors

    def get_max_login_attempts(self) -> int:
        return self.get().max_login_attempts

    def get_lockout_duration_minutes(self) -> int:
        return self.get().lockout_duration_minutes

    def get_password_requirements(self) -> Dict:
        config = self.get()
        return {
            'min_length': config.password_min_length,
            'require_uppercase': config.password_require_uppercase,
            'require_lowercase': config.password_require_lowercase,
            'require_numbers': config.password_require_numbers,
            'require_special': config.password_require_special,
        }

    def get_password_history_count(self) -> int:
        return self.get().password_history_count

    def get_password_expiry_days(self) -> int:
        return self.get().password_expiry_days

    def get_pbkdf2_iterations(self) -> int:
        return self.get().pbkdf2_iterations

    def get_session_timeout_minutes(self) -> int:
        return self.get().session_timeout_minutes

    def password_hasher(self) -> PasswordHasher:
        """Hasher configured with the current iteration count"""
        return PasswordHasher(iterations=self.get_pbkdf2_iterations())

    # Validation

    def _clean(self, data: Dict):
        cleaned, errors = {}, {}

        for field in INTEGER_FIELDS:
            if field not in data:
                continue
            value = _coerce_int(data[field])
            if value is None:
                errors[field] = [f'{_label(field)} must be an integer']
                continue
            minimum, maximum, too_low, too_high = FIELD_RANGES[field]
            if value < minimum:
                errors[field] = [too_low]
            elif value > maximum:
                errors[field] = [too_high]
            else:
                cleaned[field] = value

        for field in COMPLEXITY_FIELDS:
            if field not in data:
                continue
            value = _coerce_bool(data[field])
            if value is None:
                errors[field] = [f'{_label(field)} must be true or false']
            else:
                cleaned[field] = value

        return cleaned, errors

    @staticmethod
    def _business_rule_errors(cleaned: Dict, current: Dict) -> Dict[str, List[str]]:
        errors = {}

        toggles = [cleaned.get(field, current[field]) for field in COMPLEXITY_FIELDS]
        if not any(toggles):
            errors['password_requirements'] = [
                'At least one password requirement must be enabled'
            ]

        iterations = cleaned.get('pbkdf2_iterations', current['pbkdf2_iterations'])
        if iterations < RECOMMENDED_MIN_ITERATIONS:
            errors['pbkdf2_iterations'] = [
                'PBKDF2 iterations should be at least 50,000 for adequate security'
            ]

        return errors


def _coerce_int(value) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().lstrip('-').isdigit():
        return int(value.strip())
    return None


def _coerce_bool(value) -> Optional[bool]:
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in _TRUE_VALUES:
            return True
        if lowered in _FALSE_VALUES:
            return False
    return None


def _label(field: str) -> str:
    return field.replace('_', ' ').capitalize()
