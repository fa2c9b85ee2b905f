"""
API blueprints and the small helpers they share.
"""

import logging

from flask import jsonify, request

from extensions import get_performance_history
from models import db

logger = logging.getLogger(__name__)


def json_body():
    """
    Parsed JSON object of the request, or {} for an empty body.

    Malformed JSON raises the app's 400 "Invalid JSON" error, so call this
    outside a route's catch-all try block.
    """
    if not request.get_data(cache=True):
        return {}
    data = request.get_json(force=True)
    return data if isinstance(data, dict) else {}


def is_number(value):
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def server_error(message, error='Internal server error'):
    """Log the active exception, roll back the session and build a 500 response."""
    logger.exception(message)
    db.session.rollback()
    return jsonify({'error': error, 'message': message}), 500


def refresh_today_snapshot(user_id, action):
    """Recalculate today's snapshot after a mutation; failures are only logged."""
    try:
        get_performance_history().calculate_today_snapshot(user_id)
    except Exception:
        db.session.rollback()
        logger.warning('Performance snapshot update failed after %s', action, exc_info=True)
