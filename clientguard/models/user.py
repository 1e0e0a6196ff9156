"""User model for the client management portal"""
from datetime import datetime
from typing import Optional

from clientguard.extensions import db
from clientguard.utils.clock import utcnow
from clientguard.utils.security import ALGORITHM, CredentialRecord

ROLE_ADMIN = 'admin'
ROLE_USER = 'user'


class User(db.Model):
    """User account with PBKDF2 credential storage and lockout state"""
    __tablename__ = 'users'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False)
    email = db.Column(db.String(255), unique=True, nullable=False, index=True)
    role = db.Column(db.String(20), nullable=False, default=ROLE_USER)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    # Credential record (never plaintext)
    password_hash = db.Column(db.String(256), nullable=False)
    salt = db.Column(db.String(256), nullable=True)  # bcrypt imports carry their own salt
    pbkdf2_iterations = db.Column(db.Integer, nullable=True)
    password_algorithm = db.Column(db.String(32), nullable=False, default=ALGORITHM)
    password_changed_at = db.Column(db.DateTime, nullable=True)
    must_change_password = db.Column(db.Boolean, nullable=False, default=False)

    # Lockout state
    failed_login_attempts = db.Column(db.Integer, nullable=False, default=0)
    locked_until = db.Column(db.DateTime, nullable=True)

    last_login_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    # Relationships
    password_history = db.relationship('PasswordHistory', backref='user',
                                       lazy='dynamic', cascade='all, delete-orphan')
    sessions = db.relationship('UserSession', backref='user',
                               lazy='dynamic', cascade='all, delete-orphan')

    def __repr__(self):
        return f'<User {self.email}>'

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN

    @property
    def credential(self) -> CredentialRecord:
        """Current credential as a record, e.g. for archiving into history"""
        return CredentialRecord(
            hash=self.password_hash,
            salt=self.salt or '',
            iterations=self.pbkdf2_iterations or 0,
            algorithm=self.password_algorithm,
        )

    def set_credential(self, record: CredentialRecord) -> None:
        """Replace the stored credential; the previous one is not kept here"""
        self.password_hash = record.hash
        self.salt = record.salt
        self.pbkdf2_iterations = record.iterations
        self.password_algorithm = record.algorithm

    def is_locked(self, now: Optional[datetime] = None) -> bool:
        """A lock whose deadline has passed counts as unlocked"""
        now = now or utcnow()
        return self.locked_until is not None and self.locked_until > now

    def lock_time_remaining(self, now: Optional[datetime] = None) -> Optional[int]:
        """Seconds until the account unlocks, None if not locked"""
        now = now or utcnow()
        if not self.is_locked(now):
            return None
        return int((self.locked_until - now).total_seconds())

    def clear_lockout(self) -> None:
        self.failed_login_attempts = 0
        self.locked_until = None

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'email': self.email,
            'role': self.role,
            'is_active': self.is_active,
            'failed_login_attempts': self.failed_login_attempts,
            'locked_until': self.locked_until.isoformat() if self.locked_until else None,
            'password_changed_at': self.password_changed_at.isoformat() if self.password_changed_at else None,
            'must_change_password': self.must_change_password,
            'last_login_at': self.last_login_at.isoformat() if self.last_login_at else None,
        }
