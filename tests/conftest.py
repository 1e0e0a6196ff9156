"""Shared test fixtures"""
from contextlib import contextmanager

import pytest
from flask import session

from clientguard.app import create_app
from clientguard.extensions import db as _db
from clientguard.models.user import ROLE_ADMIN, ROLE_USER, User
from clientguard.services import auth_service as auth_service_module
from clientguard.utils.clock import utcnow
from clientguard.utils.security import PasswordHasher

DEFAULT_PASSWORD = 'Correct-Horse-92!'
OTHER_PASSWORD = 'Another-Secret-47?'

BROWSER_IP = '203.0.113.10'
BROWSER_AGENT = 'Mozilla/5.0 (X11; Linux x86_64) Firefox/128.0'


@pytest.fixture
def app():
    app = create_app('testing')
    ctx = app.app_context()
    ctx.push()

    yield app

    _db.session.remove()
    _db.drop_all()
    ctx.pop()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture(autouse=True)
def sleeps(monkeypatch):
    """Records progressive-delay stalls instead of sleeping"""
    calls = []
    monkeypatch.setattr(auth_service_module.time, 'sleep', calls.append)
    return calls


@pytest.fixture
def hasher(app):
    return PasswordHasher(iterations=app.config['SECURITY_DEFAULTS']['pbkdf2_iterations'])


@pytest.fixture
def make_user(app, hasher):
    def _make_user(email='user@example.com', password=DEFAULT_PASSWORD, role=ROLE_USER, **fields):
        fields.setdefault('name', email.split('@')[0].title())
        fields.setdefault('password_changed_at', utcnow())
        user = User(email=email, role=role, **fields)
        user.set_credential(hasher.hash(password))
        _db.session.add(user)
        _db.session.commit()
        return user
    return _make_user


@pytest.fixture
def user(make_user):
    return make_user()


@pytest.fixture
def admin(make_user):
    return make_user(email='admin@example.com', role=ROLE_ADMIN, name='Admin')


@pytest.fixture
def request_from(app):
    """Push a request context from a given client, optionally carrying session values"""
    @contextmanager
    def _request_from(ip=BROWSER_IP, user_agent=BROWSER_AGENT, path='/', **session_values):
        environ = {'REMOTE_ADDR': ip, 'HTTP_USER_AGENT': user_agent}
        with app.test_request_context(path, environ_base=environ):
            session.update(session_values)
            yield
    return _request_from


@pytest.fixture
def login(client):
    def _login(email='user@example.com', password=DEFAULT_PASSWORD, **kwargs):
        return client.post('/auth/login', data={'email': email, 'password': password}, **kwargs)
    return _login
