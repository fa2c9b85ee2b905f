"""
Two-factor authentication endpoints, mounted at /api/2fa.
"""

from flask import Blueprint, g, jsonify

from auth import token_required, current_user_id, issue_session_token, read_pending_token
from extensions import get_two_factor
from models import db, User
from routes import json_body, server_error
from two_factor import TwoFactorError, is_valid_code_format

two_factor_bp = Blueprint('two_factor', __name__)

INVALID_CODE = {
    'error': 'Invalid token',
    'message': 'The verification code is invalid or expired'
}


@two_factor_bp.route('/setup', methods=['POST'])
@token_required
def setup():
    """Generate a secret and QR code for the authenticator app."""
    try:
        user = g.current_user
        enrolment = get_two_factor().generate_secret(user['id'], user['email'])
        return jsonify({
            'message': '2FA setup generated successfully',
            'secret': enrolment['secret'],
            'qrCodeUrl': enrolment['qrCodeUrl'],
            'manualEntryKey': enrolment['manualEntryKey']
        })
    except TwoFactorError as e:
        return jsonify({'error': str(e), 'message': 'Disable 2FA before setting it up again'}), 400
    except Exception:
        return server_error('Failed to generate 2FA setup')


@two_factor_bp.route('/verify', methods=['POST'])
@token_required
def verify():
    """Confirm setup with a code from the app and enable 2FA."""
    data = json_body()
    token = data.get('token')

    # Checked before the stored secret is ever read
    if not is_valid_code_format(token):
        return jsonify({'error': 'Invalid input', 'message': 'Token must be 6 digits'}), 400

    try:
        backup_codes = get_two_factor().verify_and_enable(current_user_id(), token)
        if backup_codes is None:
            return jsonify(INVALID_CODE), 400

        return jsonify({
            'message': '2FA enabled successfully',
            'backupCodes': backup_codes
        })
    except Exception:
        return server_error('Failed to verify 2FA token')


@two_factor_bp.route('/verify-login', methods=['POST'])
def verify_login():
    """Second login step: exchange a challenge token plus code for a session token."""
    data = json_body()
    user_id = data.get('userId')
    token = data.get('token')

    if not user_id or not token:
        return jsonify({
            'error': 'Missing required fields',
            'message': 'User ID and token are required'
        }), 400

    try:
        if isinstance(user_id, bool):
            raise ValueError(user_id)
        user_id = int(user_id)
    except (TypeError, ValueError):
        return jsonify({'error': 'Invalid input', 'message': 'User ID must be a number'}), 400

    if read_pending_token(data.get('pendingToken')) != user_id:
        return jsonify({
            'error': 'Invalid challenge',
            'message': 'Sign in with your password again'
        }), 401

    try:
        user = db.session.get(User, user_id)
        if user is None:
            return jsonify({'error': 'User not found', 'message': 'User does not exist'}), 404

        if not get_two_factor().verify_token(user_id, token):
            return jsonify(INVALID_CODE), 400

        return jsonify({
            'message': '2FA verification successful',
            'verified': True,
            'user': {**user.to_principal(), 'twoFactorEnabled': True},
            'token': issue_session_token(user)
        })
    except Exception:
        return server_error('Failed to verify 2FA token')


@two_factor_bp.route('/status', methods=['GET'])
@token_required
def status():
    try:
        return jsonify({'enabled': get_two_factor().is_enabled(current_user_id())})
    except Exception:
        return server_error('Failed to check 2FA status')


@two_factor_bp.route('/disable', methods=['POST'])
@token_required
def disable():
    try:
        get_two_factor().disable(current_user_id())
        return jsonify({'message': '2FA disabled successfully'})
    except Exception:
        return server_error('Failed to disable 2FA')
