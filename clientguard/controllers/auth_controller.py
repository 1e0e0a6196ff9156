# clientguard/controllers/auth_controller.py
"""Authentication controller

Login, logout, re-authentication and password change screens, plus the
per-request session security check.
"""
from urllib.parse import urlparse

from flask import Blueprint, flash, jsonify, redirect, render_template, request, session, url_for

from clientguard.exceptions import ValidationError
from clientguard.services.auth_service import AuthService
from clientguard.services.session_security import INTENDED_URL_KEY, USER_ID_KEY
from clientguard.utils.decorators import current_user, login_required, wants_json

auth_bp = Blueprint('auth', __name__)

SESSION_EXPIRED_MESSAGE = 'Your session has expired. Please log in again.'

# Warn about an upcoming password expiry this many days ahead
EXPIRY_NOTICE_DAYS = 14


@auth_bp.before_app_request
def enforce_session_security():
    """Validate the session fingerprint and age on every authenticated request"""
    if request.endpoint == 'static' or USER_ID_KEY not in session:
        return None

    check = AuthService().session_service.check_and_maybe_invalidate()
    if check.valid:
        for warning in check.warnings:
            flash(warning, 'warning')
        return None

    if wants_json():
        return jsonify({'error': SESSION_EXPIRED_MESSAGE}), 401
    flash(SESSION_EXPIRED_MESSAGE, 'warning')
    return redirect(url_for('auth.login'))


@auth_bp.route('/login', methods=['GET', 'POST'])
def login():
    if request.method == 'POST':
        email = request.form.get('email', '').strip()
        password = request.form.get('password', '')

        if not email or not password:
            flash('Email and password are required', 'error')
            return render_template('auth/login.html', email=email)

        # Regeneration clears the cookie session, so keep the target first
        intended = session.get(INTENDED_URL_KEY)
        service = AuthService()
        result = service.login(email, password)

        if not result.success:
            flash(result.message, 'error')
            return render_template('auth/login.html', email=email)

        if result.must_change_password:
            flash('Your password has expired. Please update it.', 'warning')
            return redirect(url_for('auth.change_password'))

        days_left = service.policy_service.days_until_expiry(result.user)
        if days_left is not None and days_left <= EXPIRY_NOTICE_DAYS:
            flash(f'Your password expires in {days_left} days', 'warning')

        return redirect(safe_redirect_target(intended) or url_for('dashboard.dashboard'))

    return render_template('auth/login.html')


@auth_bp.route('/logout', methods=['POST'])
def logout():
    AuthService().logout()
    flash('You have been logged out', 'info')
    return redirect(url_for('auth.login'))


@auth_bp.route('/reauth', methods=['GET', 'POST'])
@login_required
def reauth():
    """Confirm the password before a sensitive action"""
    if request.method == 'POST':
        if AuthService().reauthenticate(current_user(), request.form.get('password', '')):
            target = session.pop(INTENDED_URL_KEY, None)
            return redirect(safe_redirect_target(target) or url_for('dashboard.dashboard'))

        flash('The provided password is incorrect.', 'error')

    return render_template('auth/reauth.html')


@auth_bp.route('/password', methods=['GET', 'POST'])
@login_required
def change_password():
    service = AuthService()
    requirements = service.policy_service.requirements_text()

    if request.method == 'POST':
        try:
            service.change_password(
                current_user(),
                request.form.get('current_password', ''),
                request.form.get('password', ''),
                request.form.get('password_confirmation', '')
            )
        except ValidationError as exc:
            return render_template('auth/change_password.html', errors=exc.errors,
                                   requirements=requirements), 422

        flash('Password updated successfully', 'success')
        return redirect(url_for('dashboard.dashboard'))

    return render_template('auth/change_password.html', errors={}, requirements=requirements)


def safe_redirect_target(target):
    """Accept only same-site relative paths as post-login destinations"""
    if not target:
        return None
    parsed = urlparse(target)
    if parsed.scheme or parsed.netloc:
        if parsed.netloc != request.host:
            return None
        target = parsed.path + (f'?{parsed.query}' if parsed.query else '')
    if not target.startswith('/') or target.startswith('//'):
        return None
    return target
