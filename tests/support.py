import os
import shutil
import tempfile
import unittest

from app import create_app
from models import db

TEST_SECRET = 'test-secret'


class FakeClock:
    """Callable clock (seconds since the epoch) that tests can move forward."""

    def __init__(self, now=1_700_000_000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds=0, minutes=0):
        self.now += seconds + minutes * 60


class AppTestCase(unittest.TestCase):
    """Fresh app, SQLite file and cache directory for every test."""

    config_overrides = {}

    def setUp(self):
        self.tmp_dir = tempfile.mkdtemp(prefix='investment-tracker-')
        config = {
            'TESTING': True,
            'ENV_NAME': 'test',
            'DATABASE_PATH': os.path.join(self.tmp_dir, 'data', 'test.db'),
            'LAST_UPDATE_FILE': os.path.join(self.tmp_dir, 'cache', 'last_updates.json'),
            'CLIENT_BUILD_PATH': os.path.join(self.tmp_dir, 'client'),
            'JWT_SECRET_KEY': TEST_SECRET,
            'SCHEDULER_ENABLED': False,
            'BCRYPT_ROUNDS': 4,
            'TWO_FACTOR_ENCRYPTION_KEY': None,
        }
        config.update(self.config_overrides)
        self.app = create_app(config)
        self.client = self.app.test_client()

    def tearDown(self):
        with self.app.app_context():
            db.session.remove()
            db.engine.dispose()
        shutil.rmtree(self.tmp_dir, ignore_errors=True)

    def register(self, email='user@example.com', password='secret123', name='Test User', **extra):
        """Register a user and return (token, user dict)."""
        response = self.client.post('/api/auth/register', json={
            'email': email,
            'password': password,
            'name': name,
            **extra
        })
        self.assertEqual(response.status_code, 201, response.get_json())
        payload = response.get_json()
        return payload['token'], payload['user']

    @staticmethod
    def auth(token):
        return {'Authorization': f'Bearer {token}'}
