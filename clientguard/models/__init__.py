# clientguard/models/__init__.py
"""Database models for the security core"""
from .user import User
from .password_history import PasswordHistory
from .security_config import SecurityConfig
from .audit_log import AuditLog
from .user_session import UserSession

__all__ = ['User', 'PasswordHistory', 'SecurityConfig', 'AuditLog', 'UserSession']
