"""Dashboard controller"""
from flask import Blueprint, render_template

from clientguard.services.auth_service import AuthService
from clientguard.utils.decorators import current_user, login_required

dashboard_bp = Blueprint('dashboard', __name__)


@dashboard_bp.route('/')
@login_required
def dashboard():
    user = current_user()
    policy = AuthService().policy_service
    return render_template('dashboard.html', user=user,
                           days_until_expiry=policy.days_until_expiry(user))
