# clientguard/models/password_history.py
"""Password History model

Immutable archive of superseded credentials, used to enforce non-reuse.
"""
from sqlalchemy import event

from clientguard.extensions import db
from clientguard.utils.clock import utcnow
from clientguard.utils.security import ALGORITHM, CredentialRecord


class PasswordHistory(db.Model):
    """One archived credential of a user"""
    __tablename__ = 'password_history'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)

    # Stored password components (never plaintext)
    password_hash = db.Column(db.String(256), nullable=False)
    salt = db.Column(db.String(256), nullable=False)
    iterations = db.Column(db.Integer, nullable=False)
    algorithm = db.Column(db.String(32), nullable=False, default=ALGORITHM)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow, index=True)

    def __repr__(self):
        return f'<PasswordHistory user_id={self.user_id} created_at={self.created_at}>'

    @property
    def credential(self) -> CredentialRecord:
        return CredentialRecord(
            hash=self.password_hash,
            salt=self.salt,
            iterations=self.iterations,
            algorithm=self.algorithm,
        )


@event.listens_for(PasswordHistory, 'before_update')
def _reject_history_update(mapper, connection, target):
    raise ValueError('Password history entries are immutable')
