"""Session security guard tests"""
from datetime import timedelta

import pytest
from flask import session

from clientguard.extensions import db
from clientguard.models.audit_log import AuditLog
from clientguard.models.user_session import UserSession
from clientguard.services.audit_logger import AuditLogger
from clientguard.services.security_config import SecurityConfigService
from clientguard.services.session_security import (
    REASON_EXPIRED, REASON_FINGERPRINT_MISMATCH, REASON_NOT_ACTIVE, SessionCheck,
    SessionSecurityService,
)
from clientguard.utils.clock import utcnow
from clientguard.utils.security import generate_secure_token

from .conftest import BROWSER_AGENT, BROWSER_IP

OTHER_IP = '198.51.100.99'


@pytest.fixture
def guard(app):
    audit = AuditLogger()
    return SessionSecurityService(audit, SecurityConfigService(audit))


@pytest.fixture
def open_session(user):
    def _open_session(bound=True, started_at=None, last_activity_at=None, owner=None):
        now = utcnow()
        record = UserSession(id=generate_secure_token(32), user_id=(owner or user).id,
                             started_at=started_at or now,
                             last_activity_at=last_activity_at or now)
        if bound:
            record.bind_fingerprint(BROWSER_IP, BROWSER_AGENT, started_at or now)
        db.session.add(record)
        db.session.commit()
        return record
    return _open_session


def _events(event_type):
    return AuditLog.query.filter_by(event_type=event_type).all()


def test_unauthenticated_request_passes(guard, request_from):
    with request_from():
        check = guard.check_and_maybe_invalidate()

    assert check.valid
    assert AuditLog.query.count() == 0


def test_first_request_binds_fingerprint(guard, request_from, open_session, user):
    record = open_session(bound=False)

    with request_from(sid=record.id, user_id=user.id):
        check = guard.check_and_maybe_invalidate()

    assert check.valid
    stored = db.session.get(UserSession, record.id)
    assert stored.fingerprint_initialized
    assert stored.ip_address == BROWSER_IP
    assert stored.user_agent == BROWSER_AGENT


def test_matching_fingerprint_passes(guard, request_from, open_session, user):
    record = open_session()

    with request_from(sid=record.id, user_id=user.id):
        check = guard.check_and_maybe_invalidate()
        assert session['sid'] == record.id

    assert check.valid
    assert check.warnings == ()


def test_checks_do_not_share_warnings():
    first, second = SessionCheck(True), SessionCheck(True)

    assert first.warnings == ()
    assert isinstance(first.warnings, tuple)
    assert first._replace(warnings=('late',)).warnings != second.warnings


def test_strict_mismatch_invalidates(guard, request_from, open_session, user):
    record = open_session()
    record_id = record.id

    with request_from(ip=OTHER_IP, sid=record_id, user_id=user.id):
        check = guard.check_and_maybe_invalidate(strict=True)
        assert 'user_id' not in session

    assert not check.valid
    assert check.reason == REASON_FINGERPRINT_MISMATCH
    assert db.session.get(UserSession, record_id) is None

    event, = _events('session_invalidated')
    assert event.user_id == user.id
    assert event.details['reason'] == 'Session fingerprint mismatch'
    assert event.details['mismatched'] == ['ip_address']
    assert event.details['session_id'] == f'{record_id[:8]}...'


def test_user_agent_change_is_a_mismatch(guard, request_from, open_session, user):
    record = open_session()

    with request_from(user_agent='curl/8.0', sid=record.id, user_id=user.id):
        check = guard.check_and_maybe_invalidate(strict=True)

    assert check.reason == REASON_FINGERPRINT_MISMATCH


def test_lenient_mismatch_warns(guard, request_from, open_session, user):
    record = open_session()

    with request_from(ip=OTHER_IP, sid=record.id, user_id=user.id):
        check = guard.check_and_maybe_invalidate(strict=False)
        assert session['user_id'] == user.id

    assert check.valid
    assert check.warnings
    assert db.session.get(UserSession, record.id) is not None
    assert len(_events('session_fingerprint_warning')) == 1
    assert _events('session_invalidated') == []


def test_strict_mode_comes_from_config(app, guard, request_from, open_session, user):
    app.config['SESSION_STRICT_FINGERPRINT'] = False
    record = open_session()

    with request_from(ip=OTHER_IP, sid=record.id, user_id=user.id):
        assert guard.check_and_maybe_invalidate().valid


def test_expired_session_is_invalidated(guard, request_from, open_session, user):
    record = open_session(started_at=utcnow() - timedelta(minutes=121))

    with request_from(sid=record.id, user_id=user.id):
        check = guard.check_and_maybe_invalidate()

    assert not check.valid
    assert check.reason == REASON_EXPIRED
    assert _events('session_invalidated')[0].details['reason'] == 'Session expired'


def test_session_near_expiry_warns(guard, request_from, open_session, user):
    record = open_session(started_at=utcnow() - timedelta(minutes=100))

    with request_from(sid=record.id, user_id=user.id):
        check = guard.check_and_maybe_invalidate()

    assert check.valid
    assert 'Session is approaching expiry' in check.warnings


def test_missing_session_row_is_invalidated(guard, request_from, user):
    with request_from(sid='no-such-session', user_id=user.id):
        check = guard.check_and_maybe_invalidate()

    assert check.reason == REASON_NOT_ACTIVE
    assert _events('session_invalidated')[0].user_id == user.id


def test_activity_is_recorded(guard, request_from, open_session, user):
    earlier = utcnow() - timedelta(minutes=10)
    record = open_session(started_at=earlier, last_activity_at=earlier)
    now = utcnow()

    with request_from(sid=record.id, user_id=user.id):
        guard.check_and_maybe_invalidate(now=now)

    assert db.session.get(UserSession, record.id).last_activity_at == now


def test_regenerate_preserving_fingerprint(guard, request_from, open_session, user):
    started = utcnow() - timedelta(minutes=30)
    record = open_session(started_at=started)
    old_id = record.id

    with request_from(ip=OTHER_IP, sid=old_id, user_id=user.id):
        new = guard.regenerate_session(user, preserve_fingerprint=True)
        assert session['sid'] == new.id

    assert new.id != old_id
    assert db.session.get(UserSession, old_id) is None
    assert new.ip_address == BROWSER_IP
    assert new.started_at == started
    assert len(_events('session_regenerated')) == 1


def test_regenerate_with_fresh_fingerprint(guard, request_from, open_session, user):
    record = open_session()

    with request_from(ip=OTHER_IP, sid=record.id, user_id=user.id):
        new = guard.regenerate_session(user, preserve_fingerprint=False)

    assert new.ip_address == OTHER_IP
    assert new.fingerprint_initialized


def test_explicit_invalidate(guard, request_from, open_session, user):
    record = open_session()

    with request_from(sid=record.id, user_id=user.id):
        check = guard.invalidate('Session hijack suspected')
        assert 'sid' not in session

    assert check.reason == 'Session hijack suspected'
    assert _events('session_invalidated')[0].details['reason'] == 'Session hijack suspected'


def test_reauth_gate(guard, request_from, open_session, user):
    record = open_session()
    now = utcnow()

    with request_from(sid=record.id, user_id=user.id):
        assert guard.needs_reauth(15, now=now)

        guard.mark_reauthenticated(now)
        db.session.commit()
        assert not guard.needs_reauth(15, now=now + timedelta(minutes=15))
        assert guard.needs_reauth(15, now=now + timedelta(minutes=16))

        # Ordinary activity does not extend it
        guard.check_and_maybe_invalidate(now=now + timedelta(minutes=10))
        assert guard.needs_reauth(15, now=now + timedelta(minutes=16))

        guard.force_reauth()
        assert guard.needs_reauth(15, now=now)


def test_cleanup_expired_sessions(guard, open_session):
    now = utcnow()
    open_session(last_activity_at=now - timedelta(hours=3))
    fresh = open_session(last_activity_at=now - timedelta(minutes=5))

    assert guard.cleanup_expired_sessions(now=now) == 1
    assert [record.id for record in UserSession.query.all()] == [fresh.id]


def test_terminate_user_sessions(guard, open_session, user, admin):
    open_session()
    open_session()
    kept = open_session(owner=admin)

    assert guard.terminate_user_sessions(user.id) == 2
    db.session.commit()
    assert [record.id for record in UserSession.query.all()] == [kept.id]
