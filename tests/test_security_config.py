"""Security policy configuration tests"""
import pytest

from clientguard.exceptions import ValidationError
from clientguard.models.audit_log import AuditLog
from clientguard.models.security_config import COMPLEXITY_FIELDS, SecurityConfig
from clientguard.services.audit_logger import AuditLogger
from clientguard.services.security_config import SecurityConfigService


@pytest.fixture
def service(app):
    return SecurityConfigService(AuditLogger())


def test_get_materializes_defaults_once(app, service):
    assert SecurityConfig.query.count() == 0

    config = service.get()
    service.get()

    assert SecurityConfig.query.count() == 1
    assert config.to_dict() == service.defaults()
    assert config.pbkdf2_iterations == 50000


def test_service_without_explicit_logger_still_audits(app):
    service = SecurityConfigService()

    service.update({'lockout_duration_minutes': 45})
    service.reset_to_defaults()

    messages = [event.details['message'] for event in
                AuditLog.query.filter_by(event_type='security_config_changed').order_by(AuditLog.id)]
    assert messages == ['Security configuration updated', 'Configuration reset to defaults']


def test_update_applies_and_audits_changes(service, admin):
    config = service.update({'max_login_attempts': 3, 'password_min_length': '14'},
                            actor_id=admin.id)

    assert config.max_login_attempts == 3
    assert config.password_min_length == 14

    event = AuditLog.query.filter_by(event_type='security_config_changed').one()
    assert event.user_id == admin.id
    assert event.details['changes'] == {
        'max_login_attempts': {'old': 5, 'new': 3},
        'password_min_length': {'old': 12, 'new': 14},
    }


def test_update_ignores_unknown_keys(service):
    config = service.update({'favourite_colour': 'blue', 'password_expiry_days': 0})

    assert config.password_expiry_days == 0
    assert not hasattr(config, 'favourite_colour')


def test_all_complexity_toggles_off_is_rejected(service):
    before = service.get().to_dict()

    with pytest.raises(ValidationError) as excinfo:
        service.update({field: False for field in COMPLEXITY_FIELDS})

    assert 'password_requirements' in excinfo.value.errors
    assert service.get().to_dict() == before
    assert AuditLog.query.filter_by(event_type='security_config_changed').count() == 0


def test_every_invalid_field_is_reported(service):
    with pytest.raises(ValidationError) as excinfo:
        service.update({
            'max_login_attempts': 0,
            'lockout_duration_minutes': 5000,
            'password_min_length': 'long',
            'password_require_numbers': 'maybe',
        })

    errors = excinfo.value.errors
    assert errors['max_login_attempts'] == ['Maximum login attempts must be at least 1']
    assert errors['lockout_duration_minutes'] == ['Lockout duration cannot exceed 24 hours']
    assert 'password_min_length' in errors
    assert 'password_require_numbers' in errors


def test_iterations_floor_and_business_rule(service):
    with pytest.raises(ValidationError) as excinfo:
        service.update({'pbkdf2_iterations': 9999})
    assert excinfo.value.errors['pbkdf2_iterations'] == [
        'PBKDF2 iterations must be at least 10,000 for security'
    ]

    with pytest.raises(ValidationError) as excinfo:
        service.update({'pbkdf2_iterations': 20000})
    assert excinfo.value.errors['pbkdf2_iterations'] == [
        'PBKDF2 iterations should be at least 50,000 for adequate security'
    ]


@pytest.mark.parametrize('raw, expected', [
    ('on', True), ('off', False), ('1', True), ('0', False), ('true', True), (False, False),
])
def test_boolean_coercion(service, raw, expected):
    config = service.update({'password_require_special': raw})
    assert config.password_require_special is expected


def test_reset_to_defaults(service, admin):
    service.update({'max_login_attempts': 10, 'session_timeout_minutes': 30})

    config = service.reset_to_defaults(actor_id=admin.id)

    assert config.to_dict() == service.defaults()
    latest = AuditLog.query.filter_by(event_type='security_config_changed') \
        .order_by(AuditLog.id.desc()).first()
    assert latest.details['message'] == 'Configuration reset to defaults'
    assert latest.details['changes']['max_login_attempts'] == {'old': 10, 'new': 5}


def test_accessors_and_hasher(service):
    service.update({'pbkdf2_iterations': 60000, 'password_require_special': False})

    assert service.get_pbkdf2_iterations() == 60000
    assert service.password_hasher().iterations == 60000
    assert service.get_password_requirements() == {
        'min_length': 12,
        'require_uppercase': True,
        'require_lowercase': True,
        'require_numbers': True,
        'require_special': False,
    }
    assert service.get_session_timeout_minutes() == 120
