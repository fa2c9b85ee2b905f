"""
Registration, login and profile endpoints, mounted at /api/auth.
"""

import logging
import re

import bcrypt
from flask import Blueprint, current_app, jsonify

from auth import token_required, current_user_id, issue_session_token, issue_pending_token
from extensions import get_two_factor
from models import db, User
from routes import json_body, server_error

logger = logging.getLogger(__name__)

auth_bp = Blueprint('auth', __name__)

EMAIL_PATTERN = re.compile(r'^[^@\s]+@[^@\s]+\.[^@\s]+$')
MIN_PASSWORD_LENGTH = 6


def hash_password(password):
    rounds = current_app.config.get('BCRYPT_ROUNDS', 12)
    return bcrypt.hashpw(password.encode('utf-8'), bcrypt.gensalt(rounds=rounds)).decode('utf-8')


def check_password(user, password):
    return bcrypt.checkpw(password.encode('utf-8'), user.password_hash.encode('utf-8'))


@auth_bp.route('/register', methods=['POST'])
def register():
    """Register a new user account."""
    data = json_body()
    email = str(data.get('email') or '').strip().lower()
    password = data.get('password') or ''
    name = str(data.get('name') or '').strip()
    base_currency = str(data.get('baseCurrency') or 'HKD').strip().upper()

    # Validation
    errors = []
    if not EMAIL_PATTERN.match(email):
        errors.append('Please enter a valid email address')
    if not isinstance(password, str) or len(password) < MIN_PASSWORD_LENGTH:
        errors.append('Password must be at least 6 characters long')
    if not name:
        errors.append('Name is required')
    if errors:
        return jsonify({'error': 'Invalid input', 'message': ', '.join(errors)}), 400

    try:
        if User.query.filter_by(email=email).first():
            return jsonify({
                'error': 'User already exists',
                'message': 'An account with this email address already exists. Please try logging in instead.'
            }), 400

        user = User(
            email=email,
            password_hash=hash_password(password),
            name=name,
            base_currency=base_currency
        )
        db.session.add(user)
        db.session.commit()
        logger.info('Registered user %s', user.id)

        return jsonify({
            'message': 'User created successfully',
            'user': user.to_principal(),
            'token': issue_session_token(user)
        }), 201
    except Exception:
        return server_error('Something went wrong. Please try again later.')


@auth_bp.route('/login', methods=['POST'])
def login():
    """Log in with email and password (plus a 2FA code when enabled)."""
    data = json_body()
    email = str(data.get('email') or '').strip().lower()
    password = data.get('password') or ''
    two_factor_token = data.get('twoFactorToken')

    if not email or not password or not isinstance(password, str):
        return jsonify({'error': 'Invalid input', 'message': 'Email and password are required'}), 400

    try:
        user = User.query.filter_by(email=email).first()
        if user is None or not check_password(user, password):
            return jsonify({'error': 'Invalid credentials'}), 401

        if user.two_factor_enabled:
            if not two_factor_token:
                return jsonify({
                    'message': '2FA required',
                    'requiresTwoFactor': True,
                    'userId': user.id,
                    'pendingToken': issue_pending_token(user)
                })

            if not get_two_factor().verify_token(user.id, str(two_factor_token)):
                return jsonify({
                    'error': 'Invalid 2FA token',
                    'message': 'The verification code is invalid or expired'
                }), 401

        return jsonify({
            'message': 'Login successful',
            'user': {**user.to_principal(), 'twoFactorEnabled': bool(user.two_factor_enabled)},
            'token': issue_session_token(user)
        })
    except Exception:
        return server_error('Login failed')


@auth_bp.route('/me', methods=['GET'])
@token_required
def get_current_user():
    """Get the current authenticated user."""
    try:
        user = db.session.get(User, current_user_id())
        if user is None:
            return jsonify({'error': 'User not found'}), 404
        return jsonify({'user': user.to_dict()})
    except Exception:
        return server_error('Failed to get user')


@auth_bp.route('/base-currency', methods=['PUT'])
@token_required
def update_base_currency():
    data = json_body()
    base_currency = data.get('baseCurrency')
    if not isinstance(base_currency, str) or len(base_currency.strip()) != 3:
        return jsonify({'error': 'Invalid input', 'message': 'Base currency must be a 3-letter code'}), 400

    try:
        user = db.session.get(User, current_user_id())
        user.base_currency = base_currency.strip().upper()
        db.session.commit()
        return jsonify({'user': user.to_dict()})
    except Exception:
        return server_error('Failed to update base currency')
