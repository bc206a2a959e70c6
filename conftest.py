"""
Shared pytest fixtures: temporary database, fixed clock, fakes for
Google sign-in and Gemini, and a Flask test client.
"""

from datetime import datetime

import pytest

from database import Database
from flask_api import create_app
from task_manager import TaskManager
from user_manager import UserManager

# Wednesday
NOW = datetime(2024, 6, 5, 12, 0, 0)

PASSWORD = 'Passw0rd@'


def fixed_clock():
    return NOW


class FakeResponse:
    def __init__(self, text):
        self.text = text


class FakeChat:
    def __init__(self, model, history):
        self.model = model
        self.history = history

    def send_message(self, prompt):
        self.model.prompts.append(prompt)
        if self.model.error is not None:
            raise self.model.error
        return FakeResponse(self.model.reply)


class FakeModel:
    """Stands in for google.generativeai.GenerativeModel."""

    def __init__(self, reply='Looks good.', error=None):
        self.reply = reply
        self.error = error
        self.prompts = []
        self.histories = []
        self.configs = []

    def start_chat(self, history=None):
        self.histories.append(history)
        return FakeChat(self, history)

    def factory(self, generation_config):
        self.configs.append(generation_config)
        return self


class FakeGoogleVerifier:
    """Accepts the token 'good-token' and returns fixed ID-token claims."""

    def __init__(self):
        self.claims = {'sub': 'google-123', 'email': 'gina@example.com', 'name': 'Gina'}

    def __call__(self, token):
        if token != 'good-token':
            raise ValueError('Token used too late')
        return dict(self.claims)


@pytest.fixture()
def db(tmp_path):
    return Database(str(tmp_path / 'test_tasks.db'))


@pytest.fixture()
def user_manager(db):
    return UserManager(db)


@pytest.fixture()
def user_id(user_manager):
    user = user_manager.register_user('alice', 'alice@example.com', PASSWORD, PASSWORD)
    return user['id']


@pytest.fixture()
def other_user_id(user_manager):
    user = user_manager.register_user('bob', 'bob@example.com', PASSWORD, PASSWORD)
    return user['id']


@pytest.fixture()
def task_manager(db):
    return TaskManager(db, clock=fixed_clock)


@pytest.fixture()
def fake_model():
    return FakeModel()


@pytest.fixture()
def google_verifier():
    return FakeGoogleVerifier()


@pytest.fixture()
def app(tmp_path, fake_model, google_verifier):
    app = create_app(
        {
            'TESTING': True,
            'DATABASE_PATH': str(tmp_path / 'api_tasks.db'),
            'JWT_SECRET_KEY': 'test-jwt-secret-with-enough-length-1234',
            'SECRET_KEY': 'test-secret',
            'MAIL_SUPPRESS_SEND': True,
            'MAIL_DEFAULT_SENDER': 'noreply@example.com',
        },
        clock=fixed_clock,
        google_verifier=google_verifier,
        model_factory=fake_model.factory,
    )
    return app


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture()
def auth_headers(client):
    client.post('/api/auth/register', json={
        'username': 'alice',
        'email': 'alice@example.com',
        'password': PASSWORD,
        'confirmPassword': PASSWORD,
    })
    response = client.post('/api/auth/login', json={'email': 'alice@example.com', 'password': PASSWORD})
    token = response.get_json()['access_token']
    return {'Authorization': f'Bearer {token}'}
