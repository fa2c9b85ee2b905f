"""
Performance history endpoints, mounted at /api/performance.
"""

import re

from flask import Blueprint, jsonify, request

from auth import token_required, current_user_id
from extensions import get_performance_history, get_scheduler
from models import PerformanceHistory
from performance_history import parse_date
from routes import json_body, is_number, server_error

performance_bp = Blueprint('performance', __name__)

DATE_PATTERN = re.compile(r'^\d{4}-\d{2}-\d{2}$')
SNAPSHOT_FIELDS = ('totalPL', 'investmentPL', 'currencyPL', 'dailyPL')


def _valid_date(value):
    if not isinstance(value, str) or not DATE_PATTERN.match(value):
        return False
    try:
        parse_date(value)
    except ValueError:
        return False
    return True


def _limit_arg(default=None):
    value = request.args.get('limit')
    if value is None:
        return default
    try:
        return max(int(value), 1)
    except ValueError:
        return default


@performance_bp.route('', methods=['GET'])
@token_required
def list_performance():
    try:
        history = get_performance_history().get_performance_history(current_user_id(), _limit_arg())
        return jsonify([snapshot.to_dict() for snapshot in history])
    except Exception:
        return server_error('Failed to get performance history')


@performance_bp.route('/range', methods=['GET'])
@token_required
def performance_range():
    start_date = request.args.get('startDate')
    end_date = request.args.get('endDate')
    if not _valid_date(start_date) or not _valid_date(end_date):
        return jsonify({'error': 'Start date and end date are required'}), 400

    try:
        history = get_performance_history().get_range(current_user_id(), start_date, end_date)
        return jsonify([snapshot.to_dict() for snapshot in history])
    except Exception:
        return server_error('Failed to get performance range')


@performance_bp.route('/latest', methods=['GET'])
@token_required
def latest_performance():
    try:
        latest = (
            PerformanceHistory.query
            .filter_by(user_id=current_user_id())
            .order_by(PerformanceHistory.date.desc())
            .first()
        )
        if latest is None:
            return jsonify({'error': 'No performance data found'}), 404
        return jsonify(latest.to_dict())
    except Exception:
        return server_error('Failed to get latest performance')


@performance_bp.route('', methods=['POST'])
@token_required
def create_performance():
    """Store a snapshot supplied by the client, replacing that day's entry."""
    data = json_body()
    if not _valid_date(data.get('date')) or not all(is_number(data.get(field)) for field in SNAPSHOT_FIELDS):
        return jsonify({
            'error': 'Invalid input',
            'message': 'date (YYYY-MM-DD), totalPL, investmentPL, currencyPL and dailyPL are required'
        }), 400

    try:
        snapshot = get_performance_history().store_snapshot(
            current_user_id(),
            parse_date(data['date']),
            data['totalPL'],
            data['investmentPL'],
            data['currencyPL'],
            data['dailyPL']
        )
        return jsonify(snapshot.to_dict()), 201
    except Exception:
        return server_error('Failed to store performance data')


@performance_bp.route('/calculate-today', methods=['POST'])
@token_required
def calculate_today():
    try:
        snapshot = get_performance_history().calculate_today_snapshot(current_user_id())
        return jsonify(snapshot.to_dict())
    except Exception:
        return server_error('Failed to calculate performance snapshot')


@performance_bp.route('/calculate-snapshot', methods=['POST'])
@token_required
def calculate_snapshot():
    data = json_body()
    if not _valid_date(data.get('date')):
        return jsonify({'error': 'Valid date (YYYY-MM-DD) is required'}), 400

    try:
        snapshot = get_performance_history().calculate_and_store_snapshot(current_user_id(), data['date'])
        return jsonify(snapshot.to_dict())
    except Exception:
        return server_error('Failed to calculate performance snapshot')


@performance_bp.route('/backfill', methods=['POST'])
@token_required
def backfill():
    data = json_body()
    start_date = data.get('startDate')
    end_date = data.get('endDate')
    if not _valid_date(start_date) or not _valid_date(end_date):
        return jsonify({'error': 'Valid start date and end date (YYYY-MM-DD) are required'}), 400

    try:
        created = get_performance_history().backfill_performance_history(current_user_id(), start_date, end_date)
        return jsonify({'message': 'Performance history backfill completed', 'created': created})
    except Exception:
        return server_error('Failed to backfill performance history')


@performance_bp.route('/chart', methods=['GET'])
@token_required
def chart():
    """Snapshots for the dashboard chart, oldest first."""
    try:
        history = get_performance_history().get_performance_history(current_user_id(), _limit_arg(30))
        return jsonify([
            {
                'date': snapshot.date.isoformat(),
                'totalPL': snapshot.total_pl,
                'investmentPL': snapshot.investment_pl,
                'currencyPL': snapshot.currency_pl,
                'dailyPL': snapshot.daily_pl
            }
            for snapshot in reversed(history)
        ])
    except Exception:
        return server_error('Failed to get performance chart data')


@performance_bp.route('/trigger-daily-calculation', methods=['POST'])
@token_required
def trigger_daily_calculation():
    try:
        result = get_scheduler().trigger_daily_calculation()
        return jsonify({'message': 'Daily calculation triggered successfully', **result})
    except Exception:
        return server_error('Failed to trigger daily calculation')


@performance_bp.route('/scheduler-status', methods=['GET'])
@token_required
def scheduler_status():
    try:
        return jsonify(get_scheduler().get_status())
    except Exception:
        return server_error('Failed to get scheduler status')
