# clientguard/utils/decorators.py
"""Authentication and authorization decorators"""
from functools import wraps

from flask import flash, jsonify, redirect, request, session, url_for

from clientguard.extensions import db
from clientguard.models.user import User
from clientguard.services.audit_logger import AuditLogger
from clientguard.services.auth_service import AuthService
from clientguard.services.session_security import INTENDED_URL_KEY, USER_ID_KEY

# Endpoints a user with an expired password may still reach
PASSWORD_CHANGE_ENDPOINTS = ('auth.change_password', 'auth.logout', 'auth.reauth')


def current_user():
    """User bound to the current session"""
    user_id = session.get(USER_ID_KEY)
    if user_id is None:
        return None
    return db.session.get(User, user_id)


def wants_json() -> bool:
    best = request.accept_mimetypes.best_match(['text/html', 'application/json'])
    return request.is_json or best == 'application/json'


def login_required(f):
    """
    Decorator to ensure user is authenticated before accessing route

    Users whose password has expired or was flagged for change are sent to
    the password change form first.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        user = current_user()
        if user is None or not user.is_active:
            session.clear()
            flash('Please log in to access this page.', 'warning')
            return redirect(url_for('auth.login'))

        if request.endpoint not in PASSWORD_CHANGE_ENDPOINTS:
            if AuthService().policy_service.must_change_password(user):
                flash('Your password has expired. Please update it.', 'warning')
                return redirect(url_for('auth.change_password'))

        return f(*args, **kwargs)
    return decorated_function


def admin_required(f):
    """
    Decorator for administrative JSON endpoints

    Non-admin access is refused with 403 and recorded as ``unauthorized_access``.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        user = current_user()
        if user is None or not user.is_active:
            return jsonify({'error': 'Authentication required'}), 401

        if not user.is_admin:
            AuditLogger().record('unauthorized_access', user.id, {
                'endpoint': request.endpoint,
                'method': request.method,
                'message': 'Administrator access required'
            })
            return jsonify({'error': 'Administrator access required'}), 403

        return f(*args, **kwargs)
    return decorated_function


def require_reauth(max_age_minutes=None):
    """
    Decorator gating a sensitive route behind a recent re-authentication

    Args:
        max_age_minutes: Accepted age of the last re-authentication;
            ``REAUTH_MAX_AGE_MINUTES`` when None
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if AuthService().session_service.needs_reauth(max_age_minutes):
                session[INTENDED_URL_KEY] = request.full_path.rstrip('?') if request.method == 'GET' \
                    else request.referrer
                if wants_json():
                    return jsonify({
                        'error': 'Re-authentication required',
                        'reauth_url': url_for('auth.reauth')
                    }), 401
                flash('Please confirm your password to continue.', 'warning')
                return redirect(url_for('auth.reauth'))

            return f(*args, **kwargs)
        return decorated_function
    return decorator
