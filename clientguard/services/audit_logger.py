# clientguard/services/audit_logger.py
"""Audit logging service

Every security-relevant action writes exactly one synchronous commit that
carries both its own state changes and its audit rows. If that commit fails
the whole operation is rolled back and ``AuditWriteError`` propagates, so no
action ever completes unlogged.
"""
import csv
import io
import json
import logging
from datetime import date, datetime, time, timedelta
from typing import Dict, Iterator, List, Optional

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError

from clientguard.exceptions import AuditWriteError, ValidationError
from clientguard.extensions import db
from clientguard.models.audit_log import (
    AuditLog, EVENT_TYPES_BY_SEVERITY, SEVERITY_HIGH, SEVERITY_LEVELS, SEVERITY_LOW,
)
from clientguard.utils.clock import utcnow
from clientguard.utils.csv_security import sanitize_csv_field
from clientguard.utils.request_context import RequestContext, resolve_context

logger = logging.getLogger(__name__)

CSV_HEADER = ['ID', 'Event Type', 'User', 'IP Address', 'User Agent',
              'Details', 'Severity', 'Created At']


class AuditLogger:
    """Writes and reads the security audit trail"""

    def record(self, event_type: str, user_id: Optional[int] = None,
               details: Optional[Dict] = None, context: Optional[RequestContext] = None,
               commit: bool = True) -> AuditLog:
        """
        Record a security event

        Args:
            event_type: Event identifier, e.g. ``login_failed``
            user_id: Acting or affected user; None when unknown
            details: Structured payload stored as JSON
            context: Request metadata; read from the active request when omitted
            commit: Commit now. Pass False to stage the row so a later
                ``record`` call commits it together with the operation

        Raises:
            AuditWriteError: If the event could not be persisted
        """
        context = resolve_context(context)
        entry = AuditLog(
            event_type=event_type,
            user_id=user_id,
            ip_address=context.ip_address,
            user_agent=context.user_agent,
            details=details or {},
            created_at=utcnow(),
        )

        try:
            db.session.add(entry)
            if commit:
                db.session.commit()
            else:
                db.session.flush()
        except SQLAlchemyError as exc:
            db.session.rollback()
            logger.error('Audit write failed for %s (user_id=%s)', event_type, user_id)
            raise AuditWriteError(event_type, exc) from exc

        return entry

    # Write-side helpers

    def log_successful_authentication(self, user_id, context=None, commit=True):
        return self.record('login_success', user_id, {
            'message': 'User successfully authenticated'
        }, context, commit)

    def log_failed_authentication(self, email, reason, user_id=None, context=None, commit=True):
        return self.record('login_failed', user_id, {
            'email': email,
            'reason': reason,
            'message': 'Failed authentication attempt'
        }, context, commit)

    def log_account_lockout(self, user_id, failed_attempts, locked_until, context=None, commit=True):
        return self.record('account_locked', user_id, {
            'failed_attempts': failed_attempts,
            'locked_until': locked_until.isoformat(),
            'message': 'Account locked due to excessive failed login attempts'
        }, context, commit)

    def log_account_unlock(self, user_id, unlocked_by, context=None, commit=True):
        return self.record('account_unlocked', user_id, {
            'unlocked_by': unlocked_by,
            'message': 'Account unlocked by administrator'
        }, context, commit)

    def log_logout(self, user_id, context=None, commit=True):
        return self.record('user_logout', user_id, {
            'message': 'User logged out'
        }, context, commit)

    def log_password_change(self, user_id, context=None, commit=True):
        return self.record('password_changed', user_id, {
            'message': 'User password changed'
        }, context, commit)

    def log_password_reset(self, user_id, reset_by, force_change=False, context=None, commit=True):
        return self.record('password_reset', user_id, {
            'reset_by': reset_by,
            'force_change': force_change,
            'message': 'Password reset by administrator'
        }, context, commit)

    def log_user_created(self, user_id, created_by=None, context=None, commit=True):
        return self.record('user_created', user_id, {
            'created_by': created_by,
            'message': 'User account created'
        }, context, commit)

    def log_sessions_terminated(self, user_id, terminated_by, count, context=None, commit=True):
        return self.record('sessions_terminated', user_id, {
            'terminated_by': terminated_by,
            'sessions': count,
            'message': 'All sessions terminated by administrator'
        }, context, commit)

    def log_security_config_change(self, actor_id, old_config: Dict, new_config: Dict,
                                   note: Optional[str] = None, context=None, commit=True):
        changes = {
            field: {'old': old_config.get(field), 'new': value}
            for field, value in new_config.items()
            if old_config.get(field) != value
        }
        details = {
            'changes': changes,
            'message': note or 'Security configuration updated'
        }
        return self.record('security_config_changed', actor_id, details, context, commit)

    # Read side

    def query(self, event_type: Optional[str] = None, user_id: Optional[int] = None,
              start: Optional[datetime] = None, end: Optional[datetime] = None,
              severity: Optional[str] = None):
        """
        Build a filtered, newest-first query over audit events

        All filters are optional and combine with AND. A bare ``date`` as
        ``end`` covers that whole day.

        Raises:
            ValidationError: If severity is not a known tier
        """
        query = AuditLog.query

        if event_type:
            query = query.filter(AuditLog.event_type == event_type)

        if user_id is not None:
            query = query.filter(AuditLog.user_id == user_id)

        if start is not None:
            query = query.filter(AuditLog.created_at >= _start_of(start))

        if end is not None:
            query = query.filter(AuditLog.created_at <= _end_of(end))

        if severity:
            query = query.filter(self._severity_clause(severity))

        return query.order_by(AuditLog.created_at.desc(), AuditLog.id.desc())

    def list_events(self, page: int = 1, per_page: int = 25, **filters):
        return self.query(**filters).paginate(page=page, per_page=per_page, error_out=False)

    def event_types(self, user_id: Optional[int] = None) -> List[str]:
        rows = db.session.query(AuditLog.event_type).distinct()
        if user_id is not None:
            rows = rows.filter(AuditLog.user_id == user_id)
        rows = rows.order_by(AuditLog.event_type)
        return [row[0] for row in rows]

    def export_csv(self, chunk_size: int = 1000, **filters) -> Iterator[str]:
        """
        Stream filtered events as CSV text, header first

        Rows are fetched in chunks so large exports never load the whole
        table at once.
        """
        buffer = io.StringIO()
        writer = csv.writer(buffer)

        writer.writerow(CSV_HEADER)
        yield _drain(buffer)

        for log in self.query(**filters).yield_per(chunk_size):
            writer.writerow([
                log.id,
                sanitize_csv_field(log.formatted_event_type),
                sanitize_csv_field(log.user_display),
                sanitize_csv_field(log.ip_address),
                sanitize_csv_field(log.user_agent),
                sanitize_csv_field(json.dumps(log.details or {}, sort_keys=True)),
                log.severity,
                log.created_at.strftime('%Y-%m-%d %H:%M:%S'),
            ])
            yield _drain(buffer)

    def statistics(self, now: Optional[datetime] = None) -> Dict:
        """Counts by period and event type plus the latest high-severity events"""
        now = now or utcnow()
        today = datetime.combine(now.date(), time.min)
        week_start = today - timedelta(days=today.weekday())
        month_start = today.replace(day=1)

        def count_since(since, event_type=None):
            query = AuditLog.query.filter(AuditLog.created_at >= since)
            if event_type:
                query = query.filter(AuditLog.event_type == event_type)
            return query.count()

        distribution = (
            db.session.query(AuditLog.event_type, func.count(AuditLog.id).label('count'))
            .filter(AuditLog.created_at >= now - timedelta(days=30))
            .group_by(AuditLog.event_type)
            .order_by(func.count(AuditLog.id).desc(), AuditLog.event_type)
            .all()
        )

        high_severity = self.query(severity=SEVERITY_HIGH).limit(10).all()

        return {
            'stats': {
                'total_logs': AuditLog.query.count(),
                'logs_today': count_since(today),
                'logs_this_week': count_since(week_start),
                'logs_this_month': count_since(month_start),
            },
            'auth_stats': {
                'successful_logins_today': count_since(today, 'login_success'),
                'failed_logins_today': count_since(today, 'login_failed'),
                'locked_accounts_today': count_since(today, 'account_locked'),
            },
            'high_severity_events': [log.to_dict() for log in high_severity],
            'event_distribution': [
                {'event_type': event_type, 'count': count}
                for event_type, count in distribution
            ],
        }

    @staticmethod
    def _severity_clause(severity: str):
        if severity not in SEVERITY_LEVELS:
            raise ValidationError.single(
                'severity', f'Severity must be one of: {", ".join(SEVERITY_LEVELS)}'
            )
        if severity == SEVERITY_LOW:
            classified = [t for types in EVENT_TYPES_BY_SEVERITY.values() for t in types]
            return AuditLog.event_type.notin_(classified)
        return AuditLog.event_type.in_(EVENT_TYPES_BY_SEVERITY[severity])


def _start_of(value):
    if isinstance(value, datetime):
        return value
    return datetime.combine(value, time.min)


def _end_of(value):
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime.combine(value, time.max)
    return value


def _drain(buffer: io.StringIO) -> str:
    text = buffer.getvalue()
    buffer.seek(0)
    buffer.truncate(0)
    return text
