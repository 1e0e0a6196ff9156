"""Password history service

Append-only ledger of superseded credentials used to block password reuse.
Methods stage their writes in the current database session; the calling
flow commits them together with its audit event.
"""
from typing import List, Optional

from clientguard.extensions import db
from clientguard.models.password_history import PasswordHistory
from clientguard.utils.security import CredentialRecord, PasswordHasher, verify_credential

DEFAULT_HISTORY_COUNT = 5


class PasswordHistoryService:
    """Tracks historical passwords to prevent reuse"""

    def __init__(self, hasher: Optional[PasswordHasher] = None,
                 default_history_count: int = DEFAULT_HISTORY_COUNT):
        self.hasher = hasher or PasswordHasher()
        self.default_history_count = default_history_count

    def append(self, user, record: CredentialRecord,
               keep_count: Optional[int] = None) -> PasswordHistory:
        """
        Archive a credential and purge entries beyond the retention depth

        Args:
            user: Owning user
            record: Credential being archived
            keep_count: Retention depth (defaults to the service default)
        """
        entry = PasswordHistory(
            user_id=user.id,
            password_hash=record.hash,
            salt=record.salt,
            iterations=record.iterations,
            algorithm=record.algorithm,
        )
        db.session.add(entry)
        db.session.flush()

        self.purge_beyond(user, self._depth(keep_count))
        return entry

    def is_reused(self, user, password: str, depth: Optional[int] = None) -> bool:
        """
        Check whether password matches one of the most recent archived credentials

        A depth of 0 disables the check.
        """
        depth = self._depth(depth)
        if depth <= 0:
            return False

        for entry in self.get_history(user, depth):
            if verify_credential(self.hasher, password, entry.credential):
                return True

        return False

    def get_history(self, user, limit: Optional[int] = None) -> List[PasswordHistory]:
        """Newest first; ties on created_at fall back to insertion order"""
        return self._ordered(user).limit(self._depth(limit)).all()

    def purge_beyond(self, user, keep_count: Optional[int] = None) -> int:
        """
        Delete entries older than the ``keep_count`` most recent

        Returns:
            Number of entries deleted
        """
        keep_count = max(0, self._depth(keep_count))
        keep_ids = [entry.id for entry in self._ordered(user).limit(keep_count).all()]

        query = PasswordHistory.query.filter(PasswordHistory.user_id == user.id)
        if keep_ids:
            query = query.filter(PasswordHistory.id.notin_(keep_ids))

        return query.delete(synchronize_session='fetch')

    def count(self, user) -> int:
        return PasswordHistory.query.filter_by(user_id=user.id).count()

    def clear(self, user) -> int:
        return PasswordHistory.query.filter_by(user_id=user.id).delete(synchronize_session='fetch')

    def _depth(self, value: Optional[int]) -> int:
        return self.default_history_count if value is None else value

    @staticmethod
    def _ordered(user):
        return PasswordHistory.query.filter_by(user_id=user.id).order_by(
            PasswordHistory.created_at.desc(),
            PasswordHistory.id.desc()
        )
