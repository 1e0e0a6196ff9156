"""Server-side session record

Holds the session fingerprint and re-authentication timestamp. The browser
only ever sees the opaque ``id``.
"""
from datetime import datetime, timedelta
from typing import Optional

from clientguard.extensions import db
from clientguard.utils.clock import utcnow


class UserSession(db.Model):
    """One authenticated session"""
    __tablename__ = 'user_sessions'

    id = db.Column(db.String(64), primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)

    # Fingerprint, bound on the first authenticated request
    fingerprint_initialized = db.Column(db.Boolean, nullable=False, default=False)
    ip_address = db.Column(db.String(45), nullable=True)
    user_agent = db.Column(db.String(512), nullable=True)

    started_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    last_activity_at = db.Column(db.DateTime, nullable=False, default=utcnow, index=True)
    last_reauth_at = db.Column(db.DateTime, nullable=True)

    def __repr__(self):
        return f'<UserSession {self.id[:8]}... user_id={self.user_id}>'

    def age(self, now: Optional[datetime] = None) -> timedelta:
        return (now or utcnow()) - self.started_at

    def bind_fingerprint(self, ip_address, user_agent, now: Optional[datetime] = None):
        self.ip_address = ip_address
        self.user_agent = user_agent
        self.started_at = now or utcnow()
        self.fingerprint_initialized = True
