"""Password history store tests"""
from datetime import timedelta

import pytest

from clientguard.extensions import db
from clientguard.models.password_history import PasswordHistory
from clientguard.services.password_history import PasswordHistoryService
from clientguard.utils.clock import utcnow
from clientguard.utils.security import LEGACY_ALGORITHM, CredentialRecord, hash_legacy_password


@pytest.fixture
def history(hasher):
    return PasswordHistoryService(hasher=hasher, default_history_count=3)


def _archive(history, user, hasher, password, keep_count=None):
    entry = history.append(user, hasher.hash(password), keep_count=keep_count)
    db.session.commit()
    return entry


def test_archived_password_is_reused(history, user, hasher):
    _archive(history, user, hasher, 'Old-Password-61!')

    assert history.is_reused(user, 'Old-Password-61!')
    assert not history.is_reused(user, 'Never-Used-Before-83!')


def test_password_falls_out_after_depth_exceeded(history, user, hasher):
    _archive(history, user, hasher, 'Original-Secret-61!')

    for index in range(3):
        _archive(history, user, hasher, f'Later-Secret-{index}9!')

    assert history.count(user) == 3
    assert not history.is_reused(user, 'Original-Secret-61!')
    assert history.is_reused(user, 'Later-Secret-09!')


def test_zero_depth_disables_reuse_check(history, user, hasher):
    _archive(history, user, hasher, 'Old-Password-61!')

    assert not history.is_reused(user, 'Old-Password-61!', depth=0)


def test_reuse_check_only_looks_at_requested_depth(history, user, hasher):
    _archive(history, user, hasher, 'Oldest-Secret-61!')
    _archive(history, user, hasher, 'Newest-Secret-62!')

    assert not history.is_reused(user, 'Oldest-Secret-61!', depth=1)
    assert history.is_reused(user, 'Newest-Secret-62!', depth=1)


def test_get_history_is_newest_first(history, user, hasher):
    first = _archive(history, user, hasher, 'First-Secret-61!')
    second = _archive(history, user, hasher, 'Second-Secret-62!')

    assert [entry.id for entry in history.get_history(user)] == [second.id, first.id]


def test_purge_keeps_most_recent(history, user, hasher):
    now = utcnow()
    for index in range(5):
        entry = _archive(history, user, hasher, f'Secret-Number-{index}1!', keep_count=10)
        # Spread creation times so ordering does not rely on insertion ids
        db.session.query(PasswordHistory).filter_by(id=entry.id).update(
            {'created_at': now - timedelta(days=10 - index)}, synchronize_session=False
        )
    db.session.commit()

    deleted = history.purge_beyond(user, 2)
    db.session.commit()

    assert deleted == 3
    assert history.is_reused(user, 'Secret-Number-41!')
    assert history.is_reused(user, 'Secret-Number-31!')
    assert not history.is_reused(user, 'Secret-Number-21!')


def test_legacy_entries_are_checked(history, user, hasher):
    legacy = CredentialRecord(hash=hash_legacy_password('Legacy-Secret-61!', rounds=4),
                              salt='', iterations=0, algorithm=LEGACY_ALGORITHM)
    history.append(user, legacy)
    db.session.commit()

    assert history.is_reused(user, 'Legacy-Secret-61!')


def test_entries_are_immutable(history, user, hasher):
    entry = _archive(history, user, hasher, 'Old-Password-61!')
    entry.iterations = 1

    with pytest.raises(ValueError):
        db.session.commit()
    db.session.rollback()


def test_clear(history, user, hasher):
    _archive(history, user, hasher, 'Old-Password-61!')

    assert history.clear(user) == 1
    db.session.commit()
    assert history.count(user) == 0
