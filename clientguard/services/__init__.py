"""Service layer for the security core"""
from .audit_logger import AuditLogger
from .auth_service import AuthService, LoginResult
from .password_history import PasswordHistoryService
from .password_policy import PasswordPolicyService, PolicyResult
from .security_config import SecurityConfigService
from .session_security import SessionCheck, SessionSecurityService

__all__ = [
    'AuditLogger', 'AuthService', 'LoginResult', 'PasswordHistoryService',
    'PasswordPolicyService', 'PolicyResult', 'SecurityConfigService',
    'SessionCheck', 'SessionSecurityService',
]
