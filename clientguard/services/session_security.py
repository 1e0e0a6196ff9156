"""Session security service

Binds each authenticated session to the (IP, user-agent) pair it started
from, enforces the session timeout, regenerates session identities after
login and other sensitive actions, and gates sensitive operations behind a
recent re-authentication.

Session state lives in the ``user_sessions`` table; the signed Flask cookie
only carries the session id and the user id.
"""
import logging
from datetime import datetime, timedelta
from typing import List, NamedTuple, Optional, Tuple

from flask import current_app, session as client_session

from clientguard.extensions import db
from clientguard.models.user_session import UserSession
from clientguard.utils.clock import utcnow
from clientguard.utils.request_context import RequestContext, resolve_context
from clientguard.utils.security import generate_secure_token

logger = logging.getLogger(__name__)

SESSION_ID_KEY = 'sid'
USER_ID_KEY = 'user_id'
INTENDED_URL_KEY = 'url_intended'

REASON_FINGERPRINT_MISMATCH = 'Session fingerprint mismatch'
REASON_EXPIRED = 'Session expired'
REASON_NOT_ACTIVE = 'Session no longer active'

# Share of the timeout after which a session is reported as close to expiring
EXPIRY_WARNING_RATIO = 0.8


class SessionCheck(NamedTuple):
    valid: bool
    reason: Optional[str] = None
    warnings: Tuple[str, ...] = ()


class SessionSecurityService:
    """Fingerprint validation, regeneration and re-authentication gating"""

    def __init__(self, audit_logger, config_service):
        self.audit_logger = audit_logger
        self.config_service = config_service

    # Lookup

    def current_user_id(self) -> Optional[int]:
        return client_session.get(USER_ID_KEY)

    def current_session_id(self) -> Optional[str]:
        return client_session.get(SESSION_ID_KEY)

    def current_session(self) -> Optional[UserSession]:
        session_id = self.current_session_id()
        if not session_id:
            return None
        return db.session.get(UserSession, session_id)

    # Per-request guard

    def check_and_maybe_invalidate(self, context: Optional[RequestContext] = None,
                                   strict: Optional[bool] = None,
                                   now: Optional[datetime] = None) -> SessionCheck:
        """
        Validate the current session against the incoming request

        Unauthenticated requests pass through untouched. The first
        authenticated request of a session binds its fingerprint. Later
        requests must match it; under strict mode a mismatch invalidates the
        session, otherwise it is recorded as a warning.
        """
        user_id = self.current_user_id()
        if user_id is None:
            return SessionCheck(True)

        context = resolve_context(context)
        now = now or utcnow()
        if strict is None:
            strict = current_app.config.get('SESSION_STRICT_FINGERPRINT', True)

        record = self.current_session()
        if record is None or record.user_id != user_id:
            return self.invalidate(REASON_NOT_ACTIVE, context=context, record=record,
                                   user_id=user_id)

        if not record.fingerprint_initialized:
            record.bind_fingerprint(context.ip_address, context.user_agent, now)
            record.last_activity_at = now
            db.session.commit()
            return SessionCheck(True)

        warnings = []
        mismatched = self._fingerprint_mismatches(record, context)
        if mismatched:
            details = {
                'mismatched': mismatched,
                'bound_ip_address': record.ip_address,
                'bound_user_agent': record.user_agent,
            }
            if strict:
                return self.invalidate(REASON_FINGERPRINT_MISMATCH, context=context,
                                       record=record, details=details)

            warnings.append('Session fingerprint changed during the session')
            self.audit_logger.record('session_fingerprint_warning', user_id, dict(
                details, session_id=_truncate(record.id),
                message='Fingerprint mismatch tolerated in lenient mode'
            ), context, commit=False)

        timeout = timedelta(minutes=self.config_service.get_session_timeout_minutes())
        age = record.age(now)
        if age > timeout:
            return self.invalidate(REASON_EXPIRED, context=context, record=record,
                                   details={'age_minutes': int(age.total_seconds() // 60)})
        if age > timeout * EXPIRY_WARNING_RATIO:
            warnings.append('Session is approaching expiry')

        record.last_activity_at = now
        db.session.commit()
        return SessionCheck(True, None, tuple(warnings))

    def invalidate(self, reason: str, context: Optional[RequestContext] = None,
                   record: Optional[UserSession] = None, user_id: Optional[int] = None,
                   details: Optional[dict] = None) -> SessionCheck:
        """
        Destroy the current session for a security reason

        The session row is deleted and the ``session_invalidated`` event is
        written in the same commit; the client cookie is cleared afterwards.
        """
        context = resolve_context(context)
        record = record if record is not None else self.current_session()
        session_id = record.id if record is not None else client_session.get(SESSION_ID_KEY)
        if user_id is None:
            user_id = self.current_user_id() or (record.user_id if record is not None else None)

        if record is not None:
            db.session.delete(record)

        payload = dict(details or {}, reason=reason, session_id=_truncate(session_id))
        if user_id is not None:
            self.audit_logger.record('session_invalidated', user_id, payload, context)
        else:
            db.session.commit()

        logger.warning('Session %s invalidated for user_id=%s: %s',
                       _truncate(session_id), user_id, reason)
        self.clear_client_session()
        return SessionCheck(False, reason)

    # Lifecycle

    def regenerate_session(self, user, preserve_fingerprint: bool = True,
                           context: Optional[RequestContext] = None,
                           now: Optional[datetime] = None, commit: bool = True) -> UserSession:
        """
        Issue a new session identity for ``user``

        With ``preserve_fingerprint`` the bound IP, user-agent and start time
        carry over from the current session; otherwise they are bound fresh
        from the current request.
        """
        context = resolve_context(context)
        now = now or utcnow()
        previous = self.current_session()

        record = UserSession(id=generate_secure_token(32), user_id=user.id,
                             last_activity_at=now, started_at=now)

        if preserve_fingerprint and previous is not None and previous.fingerprint_initialized:
            record.fingerprint_initialized = True
            record.ip_address = previous.ip_address
            record.user_agent = previous.user_agent
            record.started_at = previous.started_at
            if previous.user_id == user.id:
                record.last_reauth_at = previous.last_reauth_at
        else:
            record.bind_fingerprint(context.ip_address, context.user_agent, now)

        if previous is not None:
            db.session.delete(previous)
        db.session.add(record)

        self.audit_logger.record('session_regenerated', user.id, {
            'preserve_fingerprint': preserve_fingerprint,
            'message': 'Session regenerated for security'
        }, context, commit=commit)

        self.clear_client_session()
        client_session[SESSION_ID_KEY] = record.id
        client_session[USER_ID_KEY] = user.id
        client_session.permanent = True
        return record

    def end_session(self) -> Optional[int]:
        """Stage deletion of the current session row; returns its user id"""
        user_id = self.current_user_id()
        record = self.current_session()
        if record is not None:
            db.session.delete(record)
            user_id = user_id or record.user_id
        return user_id

    def terminate_user_sessions(self, user_id: int, keep_session_id: Optional[str] = None) -> int:
        """Stage deletion of every session of a user, optionally sparing one"""
        query = UserSession.query.filter_by(user_id=user_id)
        if keep_session_id is not None:
            query = query.filter(UserSession.id != keep_session_id)
        return query.delete(synchronize_session='fetch')

    def clear_client_session(self) -> None:
        client_session.clear()

    def cleanup_expired_sessions(self, now: Optional[datetime] = None) -> int:
        """
        Delete sessions idle longer than the session timeout

        Returns:
            Number of sessions deleted
        """
        now = now or utcnow()
        cutoff = now - timedelta(minutes=self.config_service.get_session_timeout_minutes())
        deleted = UserSession.query.filter(
            UserSession.last_activity_at < cutoff
        ).delete(synchronize_session='fetch')
        db.session.commit()
        logger.info('Cleaned up %d expired session(s)', deleted)
        return deleted

    # Re-authentication gate

    def needs_reauth(self, max_age_minutes: Optional[int] = None,
                     now: Optional[datetime] = None) -> bool:
        if max_age_minutes is None:
            max_age_minutes = current_app.config.get('REAUTH_MAX_AGE_MINUTES', 15)

        record = self.current_session()
        if record is None or record.last_reauth_at is None:
            return True

        now = now or utcnow()
        return now - record.last_reauth_at > timedelta(minutes=max_age_minutes)

    def mark_reauthenticated(self, now: Optional[datetime] = None) -> None:
        """Stage a fresh re-authentication timestamp on the current session"""
        record = self.current_session()
        if record is not None:
            record.last_reauth_at = now or utcnow()

    def force_reauth(self) -> None:
        record = self.current_session()
        if record is not None:
            record.last_reauth_at = None
            db.session.commit()

    @staticmethod
    def _fingerprint_mismatches(record: UserSession, context: RequestContext) -> List[str]:
        mismatched = []
        if record.ip_address != context.ip_address:
            mismatched.append('ip_address')
        if record.user_agent != context.user_agent:
            mismatched.append('user_agent')
        return mismatched


def _truncate(session_id: Optional[str]) -> Optional[str]:
    return f'{session_id[:8]}...' if session_id else None
