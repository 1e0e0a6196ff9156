"""Authentication service

Orchestrates a login attempt across lockout state, credential verification,
session regeneration and the audit trail, and owns the other flows that
change a credential, an account's lock or its sessions: password change,
administrative reset, unlock, session termination, re-authentication and
account creation.

User-facing failure messages are deliberately uniform. The distinction
between an unknown account, a wrong password and an inactive account is only
visible in the audit trail.
"""
import logging
import time
from datetime import datetime, timedelta
from typing import NamedTuple, Optional

from flask import current_app
from sqlalchemy import update

from clientguard.exceptions import ValidationError
from clientguard.extensions import db
from clientguard.models.user import ROLE_ADMIN, ROLE_USER, User
from clientguard.services.audit_logger import AuditLogger
from clientguard.services.password_history import PasswordHistoryService
from clientguard.services.password_policy import PasswordPolicyService
from clientguard.services.security_config import SecurityConfigService
from clientguard.services.session_security import SessionSecurityService
from clientguard.utils.clock import utcnow
from clientguard.utils.request_context import RequestContext, resolve_context
from clientguard.utils.security import PasswordHasher, verify_credential

logger = logging.getLogger(__name__)

FAILED_LOGIN_MESSAGE = 'The provided credentials do not match our records.'
LOCKED_ACCOUNT_MESSAGE = ('Account is temporarily locked due to too many failed attempts. '
                          'Please try again later.')

DEFAULT_MAX_DELAY_SECONDS = 16


def progressive_delay(failed_attempts: int, cap: int = DEFAULT_MAX_DELAY_SECONDS) -> int:
    """Seconds to stall after the given number of consecutive failures: 1, 2, 4, 8, 16"""
    if failed_attempts < 1:
        return 0
    return min(2 ** (failed_attempts - 1), cap)


class LoginResult(NamedTuple):
    success: bool
    message: Optional[str] = None
    user: Optional[User] = None
    locked: bool = False
    must_change_password: bool = False
    delay_seconds: int = 0


class AuthService:
    """Handles authentication operations"""

    def __init__(self, audit_logger: Optional[AuditLogger] = None,
                 config_service: Optional[SecurityConfigService] = None,
                 history_service: Optional[PasswordHistoryService] = None,
                 policy_service: Optional[PasswordPolicyService] = None,
                 session_service: Optional[SessionSecurityService] = None):
        self.audit_logger = audit_logger or AuditLogger()
        self.config_service = config_service or SecurityConfigService(self.audit_logger)
        self.history_service = history_service or PasswordHistoryService()
        self.policy_service = policy_service or PasswordPolicyService(
            self.config_service, self.history_service
        )
        self.session_service = session_service or SessionSecurityService(
            self.audit_logger, self.config_service
        )

    # Login / logout

    def login(self, identifier: str, password: str,
              context: Optional[RequestContext] = None,
              now: Optional[datetime] = None) -> LoginResult:
        """
        Attempt to authenticate by email and password

        Args:
            identifier: Email address as typed by the user
            password: Plain text password
            context: Request metadata for the audit trail and session binding
            now: Clock override

        Returns:
            LoginResult; on failure ``message`` is safe to show the user
        """
        context = resolve_context(context)
        now = now or utcnow()
        email = normalize_email(identifier)
        password = password or ''

        hasher = self.config_service.password_hasher()
        user = User.query.filter_by(email=email).first() if email else None
        if user is None:
            # Same derivation cost as a real check so timing does not reveal the account
            hasher.verify(password, '', '', hasher.iterations)
            self.audit_logger.log_failed_authentication(email, 'unknown_account', context=context)
            return self._failed(self._stall(1))

        # A lock that has run out is cleared before anything else looks at it
        if user.locked_until is not None and not user.is_locked(now):
            user.clear_lockout()
            logger.info('Lockout expired for user_id=%s', user.id)

        if user.is_locked(now):
            self.audit_logger.log_failed_authentication(email, 'account_locked', user.id,
                                                        context=context)
            return LoginResult(False, LOCKED_ACCOUNT_MESSAGE, locked=True)

        verified = verify_credential(hasher, password, user.credential)

        if not user.is_active:
            self.audit_logger.log_failed_authentication(email, 'inactive_account', user.id,
                                                        context=context)
            return self._failed(self._stall(1))

        if not verified:
            return self._record_failure(user, email, context, now)

        user.clear_lockout()
        user.last_login_at = now
        self._upgrade_credential(user, password, hasher)
        self.session_service.regenerate_session(user, preserve_fingerprint=False,
                                                context=context, now=now, commit=False)
        self.audit_logger.log_successful_authentication(user.id, context=context)

        logger.info('User %s authenticated', user.id)
        return LoginResult(True, user=user,
                           must_change_password=self.policy_service.must_change_password(user, now))

    def logout(self, context: Optional[RequestContext] = None) -> Optional[int]:
        """End the current session; returns the id of the user that was logged in"""
        user_id = self.session_service.end_session()
        if user_id is not None:
            self.audit_logger.log_logout(user_id, context=context)
        else:
            db.session.commit()
        self.session_service.clear_client_session()
        return user_id

    def _record_failure(self, user: User, email: str, context: RequestContext,
                        now: datetime) -> LoginResult:
        # Incremented in SQL so concurrent failures are not lost to a read-modify-write
        db.session.execute(
            update(User)
            .where(User.id == user.id)
            .values(failed_login_attempts=User.failed_login_attempts + 1)
            .execution_options(synchronize_session=False)
        )
        db.session.refresh(user)
        attempts = user.failed_login_attempts

        max_attempts = self.config_service.get_max_login_attempts()
        if attempts >= max_attempts and not user.is_locked(now):
            user.locked_until = now + timedelta(
                minutes=self.config_service.get_lockout_duration_minutes()
            )
            self.audit_logger.log_failed_authentication(email, 'invalid_password', user.id,
                                                        context=context, commit=False)
            self.audit_logger.log_account_lockout(user.id, attempts, user.locked_until,
                                                  context=context)
            logger.warning('Account user_id=%s locked until %s after %d failed attempts',
                           user.id, user.locked_until.isoformat(), attempts)
        else:
            self.audit_logger.log_failed_authentication(email, 'invalid_password', user.id,
                                                        context=context)

        return self._failed(self._stall(attempts))

    @staticmethod
    def _failed(delay_seconds: int) -> LoginResult:
        return LoginResult(False, FAILED_LOGIN_MESSAGE, delay_seconds=delay_seconds)

    @staticmethod
    def _stall(failed_attempts: int) -> int:
        if not current_app.config.get('LOGIN_DELAY_ENABLED', True):
            return 0
        seconds = progressive_delay(
            failed_attempts,
            current_app.config.get('LOGIN_DELAY_MAX_SECONDS', DEFAULT_MAX_DELAY_SECONDS)
        )
        if seconds:
            time.sleep(seconds)
        return seconds

    def _upgrade_credential(self, user: User, password: str, hasher: PasswordHasher) -> bool:
        current = user.credential
        if not hasher.needs_rehash(current.iterations, current.algorithm):
            return False
        user.set_credential(hasher.hash(password))
        logger.info('Upgraded credential for user_id=%s from %s/%s to %s/%s',
                    user.id, current.algorithm, current.iterations,
                    user.password_algorithm, user.pbkdf2_iterations)
        return True

    # Credential changes

    def change_password(self, user: User, current_password: str, new_password: str,
                        confirmation: Optional[str] = None,
                        context: Optional[RequestContext] = None,
                        now: Optional[datetime] = None) -> User:
        """
        Replace a user's own password

        Raises:
            ValidationError: Keyed by ``current_password``, ``password`` or
                ``password_confirmation``; nothing is changed
        """
        context = resolve_context(context)
        hasher = self.config_service.password_hasher()

        if not verify_credential(hasher, current_password or '', user.credential):
            raise ValidationError.single('current_password', 'The current password is incorrect')

        errors = {}
        if confirmation is not None and new_password != confirmation:
            errors['password_confirmation'] = ['The password confirmation does not match']

        messages = list(self.policy_service.validate(new_password, user).errors)
        if verify_credential(hasher, new_password, user.credential):
            messages.append('New password must be different from the current password')
        if messages:
            errors['password'] = messages

        if errors:
            raise ValidationError(errors)

        self._replace_credential(user, new_password, hasher, now)
        self.session_service.regenerate_session(user, preserve_fingerprint=True,
                                                context=context, now=now, commit=False)
        self.audit_logger.log_password_change(user.id, context=context)
        return user

    def admin_reset_password(self, admin: User, user: User, new_password: str,
                             force_change: bool = True,
                             context: Optional[RequestContext] = None,
                             now: Optional[datetime] = None) -> User:
        """
        Set a new password on behalf of ``user``

        The target's other sessions are terminated. With ``force_change`` the
        user must pick a new password at next login.

        Raises:
            ValidationError: Keyed by ``password``
        """
        context = resolve_context(context)
        result = self.policy_service.validate(new_password, user)
        if not result.valid:
            raise ValidationError({'password': result.errors})

        hasher = self.config_service.password_hasher()
        self._replace_credential(user, new_password, hasher, now)
        user.must_change_password = bool(force_change)

        if user.id != admin.id:
            terminated = self.session_service.terminate_user_sessions(user.id)
            logger.info('Terminated %d session(s) of user_id=%s after password reset',
                        terminated, user.id)

        self.session_service.regenerate_session(admin, preserve_fingerprint=True,
                                                context=context, now=now, commit=False)
        self.audit_logger.log_password_reset(user.id, admin.id, bool(force_change),
                                             context=context)
        return user

    def _replace_credential(self, user: User, password: str, hasher: PasswordHasher,
                            now: Optional[datetime]) -> None:
        self.history_service.append(user, user.credential,
                                    keep_count=self.config_service.get_password_history_count())
        user.set_credential(hasher.hash(password))
        self.policy_service.mark_password_changed(user, now)

    # Administration

    def unlock_account(self, user: User, admin: Optional[User] = None,
                       context: Optional[RequestContext] = None,
                       now: Optional[datetime] = None) -> bool:
        """
        Clear a user's lockout state

        ``admin`` is None when the unlock comes from the command line.

        Returns:
            False when there was nothing to clear
        """
        if not user.is_locked(now) and not user.failed_login_attempts:
            if user.locked_until is not None:
                user.clear_lockout()
                db.session.commit()
            return False

        unlocked_by = admin.id if admin is not None else None
        user.clear_lockout()
        self.audit_logger.log_account_unlock(user.id, unlocked_by, context=context)
        logger.info('Account user_id=%s unlocked by user_id=%s', user.id, unlocked_by)
        return True

    def terminate_sessions(self, admin: User, user: User,
                           context: Optional[RequestContext] = None) -> int:
        """
        End every session of ``user`` on an administrator's request

        An administrator targeting their own account keeps the session they
        are using.

        Returns:
            Number of sessions ended
        """
        keep = self.session_service.current_session_id() if user.id == admin.id else None
        count = self.session_service.terminate_user_sessions(user.id, keep_session_id=keep)
        self.audit_logger.log_sessions_terminated(user.id, admin.id, count, context=context)
        logger.info('Terminated %d session(s) of user_id=%s at the request of user_id=%s',
                    count, user.id, admin.id)
        return count

    def create_user(self, email: str, name: str, password: str, role: str = ROLE_USER,
                    created_by: Optional[int] = None, must_change_password: bool = False,
                    context: Optional[RequestContext] = None,
                    now: Optional[datetime] = None) -> User:
        """
        Create an account with a policy-checked password

        Raises:
            ValidationError: Naming every invalid field
        """
        email = normalize_email(email)
        name = (name or '').strip()
        errors = {}

        if not email or '@' not in email:
            errors['email'] = ['A valid email address is required']
        elif User.query.filter_by(email=email).first() is not None:
            errors['email'] = ['The email has already been taken']

        if not name:
            errors['name'] = ['Name is required']

        if role not in (ROLE_ADMIN, ROLE_USER):
            errors['role'] = [f'Role must be one of: {ROLE_ADMIN}, {ROLE_USER}']

        result = self.policy_service.validate(password or '')
        if not result.valid:
            errors['password'] = result.errors

        if errors:
            raise ValidationError(errors)

        user = User(name=name, email=email, role=role, is_active=True,
                    must_change_password=bool(must_change_password),
                    password_changed_at=now or utcnow())
        user.set_credential(self.config_service.password_hasher().hash(password))
        db.session.add(user)
        db.session.flush()

        self.audit_logger.log_user_created(user.id, created_by, context=context)
        logger.info('Created user_id=%s with role %s', user.id, role)
        return user

    # Re-authentication

    def reauthenticate(self, user: User, password: str,
                       context: Optional[RequestContext] = None,
                       now: Optional[datetime] = None) -> bool:
        """Confirm the current user's password before a sensitive action"""
        hasher = self.config_service.password_hasher()

        if not verify_credential(hasher, password or '', user.credential):
            self.audit_logger.record('reauth_failed', user.id, {
                'message': 'Re-authentication failed'
            }, context)
            return False

        self.session_service.mark_reauthenticated(now)
        self.audit_logger.record('reauth_success', user.id, {
            'message': 'User re-authenticated'
        }, context)
        return True


def normalize_email(value: Optional[str]) -> str:
    return (value or '').strip().lower()
