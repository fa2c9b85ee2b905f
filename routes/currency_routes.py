"""
Currency pair endpoints, mounted at /api/currencies.
"""

import logging
from datetime import datetime, timezone

from flask import Blueprint, jsonify, request

from auth import token_required, current_user_id
from exchange_rates import ExchangeRateService, split_pair
from extensions import get_exchange_rates, get_last_updates
from models import db, CurrencyPair
from routes import json_body, is_number, refresh_today_snapshot, server_error

logger = logging.getLogger(__name__)

currencies_bp = Blueprint('currencies', __name__)


def _now_iso():
    return datetime.now(timezone.utc).isoformat(timespec='milliseconds').replace('+00:00', 'Z')


def _find_pair(pair_id):
    return CurrencyPair.query.filter_by(id=pair_id, user_id=current_user_id()).first()


def _pair_not_found():
    return jsonify({'error': 'Currency pair not found'}), 404


def _user_pairs(user_id):
    pairs = CurrencyPair.query.filter_by(user_id=user_id).order_by(CurrencyPair.created_at.desc()).all()
    return [pair.to_dict() for pair in pairs]


# =============================================================================
# PUBLIC ENDPOINTS
# =============================================================================

@currencies_bp.route('/popular-pairs', methods=['GET'])
def popular_pairs():
    base_currency = (request.args.get('baseCurrency') or 'HKD').upper()
    return jsonify(ExchangeRateService.get_popular_pairs(base_currency))


@currencies_bp.route('/last-update', methods=['GET'])
def last_update():
    try:
        last = get_exchange_rates().get_last_update_time()
        return jsonify({
            'lastUpdate': str(last) if last is not None else None,
            'timestamp': _now_iso()
        })
    except Exception:
        return server_error('Failed to get last update time')


@currencies_bp.route('/all-last-updates', methods=['GET'])
def all_last_updates():
    """Refresh times for every data source."""
    return jsonify({**get_last_updates().get_all_last_update_times(), 'timestamp': _now_iso()})


@currencies_bp.route('/public-rate/<path:pair>', methods=['GET'])
def public_rate(pair):
    try:
        from_currency, to_currency = split_pair(pair)
    except ValueError:
        return jsonify({'error': 'Invalid currency pair format'}), 400

    try:
        rate = get_exchange_rates().get_exchange_rate(from_currency, to_currency)
        return jsonify({
            'pair': f'{from_currency}/{to_currency}',
            'rate': rate,
            'timestamp': _now_iso()
        })
    except Exception:
        return server_error('Failed to get exchange rate')


# =============================================================================
# AUTHENTICATED ENDPOINTS
# =============================================================================

@currencies_bp.route('', methods=['GET'])
@token_required
def list_pairs():
    """List the user's pairs; ?refresh=1 fetches fresh rates first."""
    user_id = current_user_id()
    refresh = request.args.get('refresh') in ('1', 'true')

    if refresh:
        try:
            get_exchange_rates().update_all_currency_pairs(user_id, force_refresh=True)
        except Exception:
            db.session.rollback()
            logger.warning('Currency refresh failed, returning cached pairs instead', exc_info=True)

    try:
        return jsonify(_user_pairs(user_id))
    except Exception:
        return server_error('Failed to list currency pairs')


@currencies_bp.route('/<int:pair_id>', methods=['GET'])
@token_required
def get_pair(pair_id):
    try:
        pair = _find_pair(pair_id)
        if pair is None:
            return _pair_not_found()
        return jsonify(pair.to_dict())
    except Exception:
        return server_error('Failed to get currency pair')


@currencies_bp.route('', methods=['POST'])
@token_required
def create_pair():
    """Create a pair; its current rate is looked up, not supplied."""
    data = json_body()
    pair_name = data.get('pair')
    avg_cost = data.get('avgCost')
    amount = data.get('amount')

    errors = []
    try:
        from_currency, to_currency = split_pair(pair_name)
    except ValueError:
        errors.append('Pair must look like USD/HKD')
    if not is_number(avg_cost) or avg_cost <= 0:
        errors.append('Average cost must be a positive number')
    if not is_number(amount) or amount <= 0:
        errors.append('Amount must be a positive number')
    if errors:
        return jsonify({'error': 'Invalid input', 'message': ', '.join(errors)}), 400

    try:
        current_rate = get_exchange_rates().get_exchange_rate(from_currency, to_currency)
        pair = CurrencyPair(
            user_id=current_user_id(),
            pair=f'{from_currency}/{to_currency}',
            current_rate=current_rate,
            avg_cost=avg_cost,
            amount=amount
        )
        db.session.add(pair)
        db.session.commit()
        logger.info('Created currency pair %s (%s)', pair.id, pair.pair)

        refresh_today_snapshot(current_user_id(), 'currency pair creation')
        return jsonify(pair.to_dict()), 201
    except Exception:
        return server_error('Failed to create currency pair')


@currencies_bp.route('/<int:pair_id>', methods=['PUT'])
@token_required
def update_pair(pair_id):
    data = json_body()
    fields = {'currentRate': 'current_rate', 'avgCost': 'avg_cost', 'amount': 'amount'}

    for field in fields:
        if field in data and (not is_number(data[field]) or data[field] <= 0):
            return jsonify({'error': 'Invalid input', 'message': f'{field} must be a positive number'}), 400

    try:
        pair = _find_pair(pair_id)
        if pair is None:
            return _pair_not_found()

        for field, attribute in fields.items():
            if field in data:
                setattr(pair, attribute, data[field])
        db.session.commit()

        refresh_today_snapshot(current_user_id(), 'currency pair update')
        return jsonify(pair.to_dict())
    except Exception:
        return server_error('Failed to update currency pair')


@currencies_bp.route('/<int:pair_id>', methods=['DELETE'])
@token_required
def delete_pair(pair_id):
    try:
        pair = _find_pair(pair_id)
        if pair is None:
            return _pair_not_found()

        db.session.delete(pair)
        db.session.commit()

        refresh_today_snapshot(current_user_id(), 'currency pair deletion')
        return jsonify({'message': 'Currency pair deleted successfully'})
    except Exception:
        return server_error('Failed to delete currency pair')


@currencies_bp.route('/update-rates', methods=['POST'])
@token_required
def update_rates():
    """Force-refresh every pair of the user."""
    user_id = current_user_id()
    try:
        get_exchange_rates().update_all_currency_pairs(user_id, force_refresh=True)
        refresh_today_snapshot(user_id, 'currency update')
        return jsonify({
            'message': 'Exchange rates updated successfully',
            'pairs': _user_pairs(user_id)
        })
    except Exception:
        return server_error('Failed to update exchange rates')
