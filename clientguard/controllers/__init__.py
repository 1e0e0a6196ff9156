"""Controllers exposing the security core over HTTP"""
from .admin_controller import admin_bp
from .auth_controller import auth_bp
from .dashboard_controller import dashboard_bp

__all__ = ['admin_bp', 'auth_bp', 'dashboard_bp']
