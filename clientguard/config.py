"""Configuration management for the client management portal

Security policy defaults are read from the environment once at import time.
They seed the stored security configuration the first time it is read and are
the target of a reset to defaults.
"""
import os
import secrets
from datetime import timedelta


def _env_int(name, default):
    value = os.environ.get(name)
    return int(value) if value not in (None, '') else default


def _env_bool(name, default):
    value = os.environ.get(name)
    if value in (None, ''):
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


SECURITY_DEFAULTS = {
    'max_login_attempts': _env_int('MAX_LOGIN_ATTEMPTS', 5),
    'lockout_duration_minutes': _env_int('LOCKOUT_DURATION_MINUTES', 30),
    'password_min_length': _env_int('PASSWORD_MIN_LENGTH', 12),
    'password_require_uppercase': _env_bool('PASSWORD_REQUIRE_UPPERCASE', True),
    'password_require_lowercase': _env_bool('PASSWORD_REQUIRE_LOWERCASE', True),
    'password_require_numbers': _env_bool('PASSWORD_REQUIRE_NUMBERS', True),
    'password_require_special': _env_bool('PASSWORD_REQUIRE_SPECIAL', True),
    'password_history_count': _env_int('PASSWORD_HISTORY_COUNT', 5),
    'password_expiry_days': _env_int('PASSWORD_EXPIRY_DAYS', 90),
    'pbkdf2_iterations': _env_int('PBKDF2_ITERATIONS', 100000),
    'session_timeout_minutes': _env_int('SESSION_TIMEOUT_MINUTES', 120),
}


class Config:
    """Base configuration with secure defaults"""
    SECRET_KEY = os.environ.get('SECRET_KEY') or secrets.token_hex(32)

    # Session cookie only carries the opaque session id
    SESSION_COOKIE_SECURE = True
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = 'Lax'
    PERMANENT_SESSION_LIFETIME = timedelta(minutes=SECURITY_DEFAULTS['session_timeout_minutes'])

    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL') or 'sqlite:///clientguard.db'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ECHO = False

    SECURITY_DEFAULTS = dict(SECURITY_DEFAULTS)

    # Fingerprint mismatch invalidates the session when strict
    SESSION_STRICT_FINGERPRINT = _env_bool('SESSION_STRICT_FINGERPRINT', True)
    REAUTH_MAX_AGE_MINUTES = _env_int('REAUTH_MAX_AGE_MINUTES', 15)

    # Progressive delay after failed logins: 1s, 2s, 4s, 8s, 16s
    LOGIN_DELAY_ENABLED = _env_bool('LOGIN_DELAY_ENABLED', True)
    LOGIN_DELAY_MAX_SECONDS = 16

    AUDIT_EXPORT_CHUNK_SIZE = 1000
    AUDIT_LOGS_PER_PAGE = 25

    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')


class DevelopmentConfig(Config):
    """Development configuration"""
    DEBUG = True
    TESTING = False
    # Allow HTTP in dev
    SESSION_COOKIE_SECURE = False
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'DEBUG')


class ProductionConfig(Config):
    """Production configuration with enhanced security

    SECRET_KEY and DATABASE_URL must come from the environment; the
    application factory refuses to start without them.
    """
    DEBUG = False
    TESTING = False
    SECRET_KEY = os.environ.get('SECRET_KEY')
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL')
    REQUIRED_SETTINGS = ('SECRET_KEY', 'SQLALCHEMY_DATABASE_URI')


class TestingConfig(Config):
    """Testing configuration"""
    TESTING = True
    DEBUG = True
    SECRET_KEY = 'testing-secret-key'
    SESSION_COOKIE_SECURE = False

    # Use in-memory database for tests
    SQLALCHEMY_DATABASE_URI = 'sqlite:///:memory:'

    # Faster hashing for tests, still above the business-rule floor
    SECURITY_DEFAULTS = dict(
        SECURITY_DEFAULTS,
        max_login_attempts=5,
        lockout_duration_minutes=30,
        password_min_length=12,
        password_require_uppercase=True,
        password_require_lowercase=True,
        password_require_numbers=True,
        password_require_special=True,
        password_history_count=5,
        password_expiry_days=90,
        pbkdf2_iterations=50000,
        session_timeout_minutes=120,
    )
    SESSION_STRICT_FINGERPRINT = True
    REAUTH_MAX_AGE_MINUTES = 15
    LOG_LEVEL = 'WARNING'


# Configuration dictionary
config = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'testing': TestingConfig,
    'default': DevelopmentConfig
}
