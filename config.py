"""
Configuration for the Investment Tracker API.
All settings come from environment variables (optionally loaded from .env).
"""

import os
import re
from datetime import timedelta

DEFAULT_DATABASE_PATH = './data/investment_tracker.db'
DEFAULT_LAST_UPDATE_FILE = os.path.join('.', 'cache', 'last_updates.json')

_DURATION_UNITS = {
    's': 'seconds',
    'm': 'minutes',
    'h': 'hours',
    'd': 'days',
    'w': 'weeks',
}


class ConfigurationError(RuntimeError):
    """Raised when a required setting (such as JWT_SECRET) is missing."""


def parse_duration(value, default=timedelta(days=7)):
    """Convert '7d', '12h', '30m', '45s' or a plain number of seconds to a timedelta."""
    if value is None or str(value).strip() == '':
        return default

    text = str(value).strip().lower()
    if text.isdigit():
        return timedelta(seconds=int(text))

    match = re.fullmatch(r'(\d+)\s*([smhdw])', text)
    if not match:
        raise ValueError(f'Invalid duration: {value!r}')

    amount, unit = match.groups()
    return timedelta(**{_DURATION_UNITS[unit]: int(amount)})


def _flag(value, default=False):
    if value is None:
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


def sqlite_uri(database_path):
    return 'sqlite:///' + os.path.abspath(database_path)


def load_config(environ=None):
    """Build the Flask config mapping from the environment."""
    environ = os.environ if environ is None else environ

    return {
        'ENV_NAME': environ.get('NODE_ENV', 'development'),
        'LOG_LEVEL': environ.get('LOG_LEVEL', 'INFO').upper(),
        'PORT': int(environ.get('PORT', '3002')),

        # Database
        'DATABASE_PATH': environ.get('DATABASE_PATH', DEFAULT_DATABASE_PATH),
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,

        # JWT configuration
        'JWT_SECRET_KEY': environ.get('JWT_SECRET') or None,
        'JWT_ACCESS_TOKEN_EXPIRES': parse_duration(environ.get('JWT_EXPIRES_IN', '7d')),
        'JWT_PENDING_TOKEN_EXPIRES': timedelta(minutes=5),
        'JWT_TOKEN_LOCATION': ['headers'],

        # HTTP
        'CORS_ORIGIN': environ.get('CORS_ORIGIN', 'http://localhost:3002'),
        'MAX_CONTENT_LENGTH': 10 * 1024 * 1024,
        'CLIENT_BUILD_PATH': environ.get('CLIENT_BUILD_PATH', os.path.join('client', 'dist')),

        # Cached refresh times and background jobs
        'LAST_UPDATE_FILE': environ.get('LAST_UPDATE_FILE', DEFAULT_LAST_UPDATE_FILE),
        'SCHEDULER_ENABLED': _flag(environ.get('SCHEDULER_ENABLED'), default=True),
        'SCHEDULER_TIMEZONE': environ.get('SCHEDULER_TIMEZONE', 'Europe/Dublin'),
        'MARKET_REFRESH_MINUTES': int(environ.get('MARKET_REFRESH_MINUTES', '30')),

        # Two-factor authentication
        'TOTP_ISSUER': environ.get('TOTP_ISSUER', 'Investment Tracker'),
        'TWO_FACTOR_ENCRYPTION_KEY': environ.get('TWO_FACTOR_ENCRYPTION_KEY') or None,
        'BCRYPT_ROUNDS': int(environ.get('BCRYPT_ROUNDS', '12')),
    }
