"""
JWT authentication for the API.

Session tokens are flask-jwt-extended access tokens whose identity is the user
id. A short-lived "pending" token is issued after a correct password when the
user still has to pass the 2FA step; it is never accepted as a session token.
"""

import logging
from functools import wraps

from flask import current_app, g, jsonify, request
from flask_jwt_extended import (
    JWTManager, create_access_token, current_user, decode_token,
    verify_jwt_in_request
)
from flask_jwt_extended.exceptions import JWTExtendedException
from jwt import PyJWTError

from config import ConfigurationError
from models import db, User

logger = logging.getLogger(__name__)

PENDING_CLAIM = 'twoFactorPending'

jwt = JWTManager()


@jwt.user_lookup_loader
def load_user(jwt_header, jwt_data):
    try:
        user_id = int(jwt_data['sub'])
    except (KeyError, TypeError, ValueError):
        return None
    return db.session.get(User, user_id)


@jwt.user_lookup_error_loader
def user_lookup_failed(jwt_header, jwt_data):
    return jsonify({'error': 'Invalid token'}), 401


@jwt.unauthorized_loader
def missing_token(reason):
    return jsonify({'error': 'Access token required'}), 401


@jwt.invalid_token_loader
def invalid_token(reason):
    logger.debug('Rejected token: %s', reason)
    return jsonify({'error': 'Invalid or expired token'}), 403


@jwt.expired_token_loader
def expired_token(jwt_header, jwt_data):
    return jsonify({'error': 'Invalid or expired token'}), 403


@jwt.token_verification_loader
def is_session_token(jwt_header, jwt_data):
    return not jwt_data.get(PENDING_CLAIM, False)


@jwt.token_verification_failed_loader
def session_token_rejected(jwt_header, jwt_data):
    return jsonify({'error': 'Invalid or expired token'}), 403


def require_secret():
    if not current_app.config.get('JWT_SECRET_KEY'):
        raise ConfigurationError('JWT_SECRET not configured')


def token_required(fn):
    """Decorator that requires a valid Bearer session token."""
    @wraps(fn)
    def decorator(*args, **kwargs):
        parts = request.headers.get('Authorization', '').split()
        if len(parts) < 2:
            return jsonify({'error': 'Access token required'}), 401

        require_secret()
        verify_jwt_in_request()

        g.current_user = current_user.to_principal()
        return fn(*args, **kwargs)
    return decorator


def current_user_id():
    return g.current_user['id']


def issue_session_token(user):
    require_secret()
    return create_access_token(identity=str(user.id), additional_claims={'userId': user.id})


def issue_pending_token(user):
    """Short-lived challenge token binding the 2FA step to a password login."""
    require_secret()
    return create_access_token(
        identity=str(user.id),
        additional_claims={'userId': user.id, PENDING_CLAIM: True},
        expires_delta=current_app.config['JWT_PENDING_TOKEN_EXPIRES']
    )


def read_pending_token(token):
    """Return the user id of a valid pending token, or None."""
    require_secret()
    if not token or not isinstance(token, str):
        return None
    try:
        claims = decode_token(token)
    except (PyJWTError, JWTExtendedException) as e:
        logger.info('Rejected 2FA challenge token: %s', e)
        return None

    if not claims.get(PENDING_CLAIM):
        return None
    try:
        return int(claims['sub'])
    except (KeyError, TypeError, ValueError):
        return None
