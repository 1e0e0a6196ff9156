# clientguard/controllers/admin_controller.py
"""Administrative API

JSON endpoints for the security policy, accounts and their sessions, and
the audit trail. Every route requires an administrator.
"""
from datetime import date, datetime

from flask import Blueprint, Response, current_app, jsonify, request, stream_with_context

from clientguard.exceptions import ValidationError
from clientguard.extensions import db
from clientguard.models.user import ROLE_USER, User
from clientguard.services.audit_logger import AuditLogger
from clientguard.services.auth_service import AuthService
from clientguard.services.security_config import SecurityConfigService
from clientguard.utils.clock import utcnow
from clientguard.utils.decorators import admin_required, current_user, require_reauth

admin_bp = Blueprint('admin', __name__)


@admin_bp.errorhandler(ValidationError)
def validation_failed(error):
    return jsonify({'errors': error.to_dict()}), 422


# Security policy

@admin_bp.route('/security-config', methods=['GET'])
@admin_required
def get_security_config():
    service = SecurityConfigService()
    return jsonify({
        'config': service.get().to_dict(),
        'defaults': service.defaults(),
        'hasher': service.password_hasher().get_config(),
    })


@admin_bp.route('/security-config', methods=['PUT'])
@admin_required
def update_security_config():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return jsonify({'error': 'A JSON object body is required'}), 400

    config = SecurityConfigService(AuditLogger()).update(data, actor_id=current_user().id)
    return jsonify({'config': config.to_dict()})


@admin_bp.route('/security-config/reset', methods=['POST'])
@admin_required
def reset_security_config():
    config = SecurityConfigService(AuditLogger()).reset_to_defaults(actor_id=current_user().id)
    return jsonify({'config': config.to_dict()})


# Accounts

@admin_bp.route('/users', methods=['POST'])
@admin_required
@require_reauth()
def create_user():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return jsonify({'error': 'A JSON object body is required'}), 400

    password = data.get('password') or ''
    confirmation = data.get('password_confirmation')
    if confirmation is not None and confirmation != password:
        raise ValidationError.single('password_confirmation',
                                     'The password confirmation does not match')

    user = AuthService().create_user(
        data.get('email'), data.get('name'), password,
        role=data.get('role') or ROLE_USER,
        created_by=current_user().id,
        must_change_password=data.get('must_change_password') is True
    )
    return jsonify({'user': user.to_dict()}), 201


@admin_bp.route('/users/<int:user_id>/unlock', methods=['POST'])
@admin_required
def unlock_user(user_id):
    user = db.get_or_404(User, user_id)
    unlocked = AuthService().unlock_account(user, current_user())
    return jsonify({'unlocked': unlocked, 'user': user.to_dict()})


@admin_bp.route('/users/<int:user_id>/password', methods=['POST'])
@admin_required
@require_reauth()
def reset_user_password(user_id):
    user = db.get_or_404(User, user_id)
    data = request.get_json(silent=True) or {}

    AuthService().admin_reset_password(
        current_user(), user, data.get('password') or '',
        force_change=data.get('force_change', True) is not False
    )
    return jsonify({'user': user.to_dict()})


@admin_bp.route('/users/<int:user_id>/sessions/terminate', methods=['POST'])
@admin_required
def terminate_user_sessions(user_id):
    user = db.get_or_404(User, user_id)
    terminated = AuthService().terminate_sessions(current_user(), user)
    return jsonify({'terminated': terminated, 'user': user.to_dict()})


@admin_bp.route('/users/<int:user_id>/activity', methods=['GET'])
@admin_required
def user_activity(user_id):
    user = db.get_or_404(User, user_id)
    filters = audit_filters_from_request()
    filters['user_id'] = user.id
    page, per_page = _page_args()

    service = AuditLogger()
    pagination = service.list_events(page=page, per_page=per_page, **filters)
    return jsonify({
        'user': user.to_dict(),
        'activities': [log.to_dict() for log in pagination.items],
        'page': pagination.page,
        'pages': pagination.pages,
        'total': pagination.total,
        'event_types': service.event_types(user_id=user.id),
    })


# Audit trail

@admin_bp.route('/audit-logs', methods=['GET'])
@admin_required
def list_audit_logs():
    filters = audit_filters_from_request()
    page, per_page = _page_args()

    service = AuditLogger()
    pagination = service.list_events(page=page, per_page=per_page, **filters)
    return jsonify({
        'logs': [log.to_dict() for log in pagination.items],
        'page': pagination.page,
        'pages': pagination.pages,
        'total': pagination.total,
        'event_types': service.event_types(),
    })


@admin_bp.route('/audit-logs/export', methods=['GET'])
@admin_required
def export_audit_logs():
    filters = audit_filters_from_request()
    service = AuditLogger()

    # Surfaces filter errors before the response starts streaming
    service.query(**filters)

    service.record('audit_logs_exported', current_user().id, {
        'filters': {key: str(value) for key, value in filters.items() if value is not None},
        'message': 'Audit logs exported to CSV'
    })

    chunk_size = current_app.config.get('AUDIT_EXPORT_CHUNK_SIZE', 1000)
    filename = f"audit-logs-{utcnow().strftime('%Y%m%d-%H%M%S')}.csv"
    return Response(
        stream_with_context(service.export_csv(chunk_size=chunk_size, **filters)),
        mimetype='text/csv',
        headers={'Content-Disposition': f'attachment; filename={filename}'}
    )


@admin_bp.route('/audit-logs/statistics', methods=['GET'])
@admin_required
def audit_log_statistics():
    return jsonify(AuditLogger().statistics())


def audit_filters_from_request():
    """
    Read audit filters from the query string

    Raises:
        ValidationError: For a malformed user id or date
    """
    args = request.args
    filters = {
        'event_type': args.get('event_type') or None,
        'severity': args.get('severity') or None,
        'user_id': None,
        'start': _date_arg('start_date'),
        'end': _date_arg('end_date'),
    }

    if args.get('user_id'):
        try:
            filters['user_id'] = int(args['user_id'])
        except ValueError:
            raise ValidationError.single('user_id', 'User id must be an integer')

    return filters


def _date_arg(name):
    value = request.args.get(name)
    if not value:
        return None
    try:
        if len(value) == 10:
            return date.fromisoformat(value)
        return datetime.fromisoformat(value)
    except ValueError:
        raise ValidationError.single(name, f'{name} must be a date (YYYY-MM-DD)')


def _page_args():
    page = _int_arg('page', 1)
    per_page = min(_int_arg('per_page', current_app.config.get('AUDIT_LOGS_PER_PAGE', 25)), 100)
    return page, per_page


def _int_arg(name, default):
    try:
        return max(1, int(request.args.get(name, default)))
    except (TypeError, ValueError):
        return default
