"""Security configuration model

A single logical row; the service layer is the only writer.
"""
from clientguard.extensions import db
from clientguard.utils.clock import utcnow

INTEGER_FIELDS = (
    'max_login_attempts',
    'lockout_duration_minutes',
    'password_min_length',
    'password_history_count',
    'password_expiry_days',
    'pbkdf2_iterations',
    'session_timeout_minutes',
)

COMPLEXITY_FIELDS = (
    'password_require_uppercase',
    'password_require_lowercase',
    'password_require_numbers',
    'password_require_special',
)

CONFIG_FIELDS = INTEGER_FIELDS + COMPLEXITY_FIELDS


class SecurityConfig(db.Model):
    """Security policy settings"""
    __tablename__ = 'security_configs'

    id = db.Column(db.Integer, primary_key=True)

    max_login_attempts = db.Column(db.Integer, nullable=False, default=5)
    lockout_duration_minutes = db.Column(db.Integer, nullable=False, default=30)

    password_min_length = db.Column(db.Integer, nullable=False, default=12)
    password_require_uppercase = db.Column(db.Boolean, nullable=False, default=True)
    password_require_lowercase = db.Column(db.Boolean, nullable=False, default=True)
    password_require_numbers = db.Column(db.Boolean, nullable=False, default=True)
    password_require_special = db.Column(db.Boolean, nullable=False, default=True)
    password_history_count = db.Column(db.Integer, nullable=False, default=5)
    password_expiry_days = db.Column(db.Integer, nullable=False, default=90)

    pbkdf2_iterations = db.Column(db.Integer, nullable=False, default=100000)
    session_timeout_minutes = db.Column(db.Integer, nullable=False, default=120)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    def __repr__(self):
        return f'<SecurityConfig id={self.id} iterations={self.pbkdf2_iterations}>'

    def to_dict(self):
        return {field: getattr(self, field) for field in CONFIG_FIELDS}
