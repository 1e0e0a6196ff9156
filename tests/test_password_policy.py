"""Password policy engine tests"""
from datetime import timedelta

import pytest

from clientguard.extensions import db
from clientguard.services.password_history import PasswordHistoryService
from clientguard.services.password_policy import PasswordPolicyService
from clientguard.services.security_config import SecurityConfigService
from clientguard.utils.clock import utcnow

STRONG_PASSWORD = 'Correct-Horse-92!'


@pytest.fixture
def config_service(app):
    return SecurityConfigService()


@pytest.fixture
def history_service(hasher):
    return PasswordHistoryService(hasher=hasher)


@pytest.fixture
def policy(config_service, history_service):
    return PasswordPolicyService(config_service, history_service)


def test_strong_password_is_valid(policy):
    result = policy.validate(STRONG_PASSWORD)

    assert result.valid
    assert result.errors == []


def test_every_failure_is_reported(policy):
    result = policy.validate('short')

    assert not result.valid
    assert 'Password must be at least 12 characters long' in result.errors
    assert 'Password must contain at least one uppercase letter (A-Z)' in result.errors
    assert 'Password must contain at least one number (0-9)' in result.errors
    assert any('special character' in error for error in result.errors)


def test_disabled_requirements_are_not_reported(policy, config_service):
    config_service.update({'password_require_special': False, 'password_require_numbers': False})

    result = policy.validate('Plain-Letters')  # no digit
    assert not any('number' in error for error in result.errors)

    result = policy.validate('NoSpecialChar73')
    assert result.valid


@pytest.mark.parametrize('password, message', [
    ('Password123', 'Password is too common and easily guessable'),
    ('Qwerty-Lover-84!', 'Password contains keyboard patterns that are easily guessable'),
    ('Baaaad-Secret-84!', 'Password cannot contain more than 3 repeated characters in a row'),
    ('Team-6789-Pass!', 'Password cannot contain simple sequences (1234, abcd, etc.)'),
    ('Pure-Bcde-Gate-84!', 'Password cannot contain simple sequences (1234, abcd, etc.)'),
])
def test_weak_patterns(policy, password, message):
    assert message in policy.validate(password).errors


def test_weak_patterns_cannot_be_disabled(policy, config_service):
    config_service.update({
        'password_require_uppercase': False,
        'password_require_numbers': False,
        'password_require_special': False,
        'password_min_length': 8,
    })

    assert 'Password is too common and easily guessable' in policy.validate('password').errors


def test_history_reuse_is_reported(policy, history_service, user, hasher):
    history_service.append(user, hasher.hash('Retired-Secret-61!'))
    db.session.commit()

    result = policy.validate('Retired-Secret-61!', user)

    assert not result.valid
    assert result.errors == ['Password cannot be the same as any of your last 5 passwords']


def test_history_check_disabled_with_zero_depth(policy, config_service, history_service,
                                                user, hasher):
    history_service.append(user, hasher.hash('Retired-Secret-61!'))
    db.session.commit()
    config_service.update({'password_history_count': 0})

    assert policy.validate('Retired-Secret-61!', user).valid


def test_expiry(policy, user, config_service):
    now = utcnow()
    user.password_changed_at = now - timedelta(days=91)

    assert policy.is_expired(user, now)
    assert policy.must_change_password(user, now)
    assert policy.days_until_expiry(user, now) is None

    user.password_changed_at = now - timedelta(days=80)
    assert not policy.is_expired(user, now)
    assert policy.days_until_expiry(user, now) == 10


def test_missing_change_date_counts_as_expired(policy, user, config_service):
    user.password_changed_at = None
    assert policy.is_expired(user)

    config_service.update({'password_expiry_days': 0})
    assert not policy.is_expired(user)
    assert policy.days_until_expiry(user) is None


def test_forced_change(policy, user):
    assert not policy.must_change_password(user)

    policy.force_password_change(user)
    assert policy.must_change_password(user)

    policy.mark_password_changed(user)
    assert not user.must_change_password


def test_requirements_text(policy):
    text = policy.requirements_text()

    assert text[0] == 'Must be at least 12 characters long'
    assert 'Cannot be the same as any of your last 5 passwords' in text
    assert 'Must be changed every 90 days' in text
