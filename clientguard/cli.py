"""Maintenance commands, available as ``flask <command>``"""
import click

from clientguard.exceptions import ValidationError
from clientguard.extensions import db
from clientguard.models.user import ROLE_ADMIN, ROLE_USER, User
from clientguard.services.audit_logger import AuditLogger
from clientguard.services.auth_service import AuthService, normalize_email
from clientguard.services.security_config import SecurityConfigService


def register_commands(app):
    """Attach the CLI commands to ``app``"""

    @app.cli.command('init-db')
    def init_db():
        """Create tables and the security configuration record."""
        db.create_all()
        SecurityConfigService().get()
        click.echo('Database initialized.')

    @app.cli.command('reset-security-config')
    def reset_security_config():
        """Restore the security policy to its configured defaults."""
        config = SecurityConfigService(AuditLogger()).reset_to_defaults()
        for field, value in config.to_dict().items():
            click.echo(f'{field}: {value}')

    @app.cli.command('cleanup-sessions')
    def cleanup_sessions():
        """Delete sessions idle longer than the session timeout."""
        deleted = AuthService().session_service.cleanup_expired_sessions()
        click.echo(f'Removed {deleted} expired session(s).')

    @app.cli.command('unlock-user')
    @click.argument('email')
    def unlock_user(email):
        """Clear the lockout of the account with EMAIL."""
        user = User.query.filter_by(email=normalize_email(email)).first()
        if user is None:
            raise click.ClickException(f'No user with email {email}')

        if AuthService().unlock_account(user):
            click.echo(f'Unlocked {user.email}.')
        else:
            click.echo(f'{user.email} is not locked.')

    @app.cli.command('create-user')
    @click.argument('email')
    @click.argument('name')
    @click.option('--admin', is_flag=True, help='Grant the administrator role.')
    @click.password_option(help='Password; prompted for when omitted.')
    def create_user(email, name, admin, password):
        """Create an account with a password checked against the policy."""
        try:
            user = AuthService().create_user(email, name, password,
                                             role=ROLE_ADMIN if admin else ROLE_USER)
        except ValidationError as exc:
            for field, messages in exc.errors.items():
                for message in messages:
                    click.echo(f'{field}: {message}', err=True)
            raise click.ClickException('User was not created')

        click.echo(f'Created {user.role} {user.email} (id {user.id}).')
