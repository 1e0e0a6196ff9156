# clientguard/models/audit_log.py
"""Audit log model

Append-only record of security-relevant actions. Severity and display name
are projections of ``event_type`` computed on read and never stored.
"""
from sqlalchemy import event

from clientguard.extensions import db
from clientguard.utils.clock import utcnow

SEVERITY_HIGH = 'high'
SEVERITY_MEDIUM = 'medium'
SEVERITY_LOW = 'low'

# Anything not listed is low severity
EVENT_TYPES_BY_SEVERITY = {
    SEVERITY_HIGH: (
        'account_locked',
        'unauthorized_access',
        'password_policy_violation',
        'session_hijack_detected',
        'session_invalidated',
    ),
    SEVERITY_MEDIUM: (
        'login_failed',
        'password_changed',
        'password_reset',
        'sessions_terminated',
        'role_changed',
        'security_config_changed',
        'user_created',
        'account_unlocked',
        'reauth_failed',
        'session_fingerprint_warning',
    ),
}

SEVERITY_LEVELS = (SEVERITY_HIGH, SEVERITY_MEDIUM, SEVERITY_LOW)

EVENT_TYPE_LABELS = {
    'login_success': 'Successful Login',
    'login_failed': 'Failed Login',
    'user_logout': 'User Logout',
    'account_locked': 'Account Locked',
    'account_unlocked': 'Account Unlocked',
    'password_changed': 'Password Changed',
    'password_reset': 'Password Reset',
    'security_config_changed': 'Security Config Changed',
    'session_invalidated': 'Session Invalidated',
    'session_regenerated': 'Session Regenerated',
    'session_fingerprint_warning': 'Session Fingerprint Warning',
    'reauth_success': 'Re-authentication Succeeded',
    'reauth_failed': 'Re-authentication Failed',
    'user_created': 'User Created',
    'sessions_terminated': 'Sessions Terminated',
}


def severity_for(event_type: str) -> str:
    for level, event_types in EVENT_TYPES_BY_SEVERITY.items():
        if event_type in event_types:
            return level
    return SEVERITY_LOW


def format_event_type(event_type: str) -> str:
    if event_type in EVENT_TYPE_LABELS:
        return EVENT_TYPE_LABELS[event_type]
    return event_type.replace('_', ' ').title()


class AuditLog(db.Model):
    """
    Stores security events for auditing

    ``user_id`` is null when the actor is unknown, e.g. a failed login
    against an email that has no account.
    """
    __tablename__ = 'audit_logs'

    id = db.Column(db.Integer, primary_key=True)
    event_type = db.Column(db.String(64), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id', ondelete='SET NULL'),
                        nullable=True, index=True)
    ip_address = db.Column(db.String(45), nullable=True)  # IPv6 support
    user_agent = db.Column(db.String(512), nullable=True)
    details = db.Column(db.JSON, nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow, index=True)

    user = db.relationship('User', lazy='joined')

    __table_args__ = (
        db.Index('ix_audit_logs_user_event', 'user_id', 'event_type'),
    )

    def __repr__(self):
        return f'<AuditLog id={self.id} event_type={self.event_type} user_id={self.user_id}>'

    @property
    def severity(self) -> str:
        return severity_for(self.event_type)

    @property
    def formatted_event_type(self) -> str:
        return format_event_type(self.event_type)

    @property
    def user_display(self) -> str:
        if self.user is None:
            return 'N/A'
        return f'{self.user.name} ({self.user.email})'

    def to_dict(self):
        return {
            'id': self.id,
            'event_type': self.event_type,
            'event_label': self.formatted_event_type,
            'severity': self.severity,
            'user_id': self.user_id,
            'ip_address': self.ip_address,
            'user_agent': self.user_agent,
            'details': self.details,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }


@event.listens_for(AuditLog, 'before_update')
def _reject_audit_update(mapper, connection, target):
    raise ValueError('Audit log entries are immutable')
