"""
Investment and bank account endpoints, mounted at /api/accounts.

Every mutation recalculates today's performance snapshot; a failed
recalculation is logged and never fails the request.
"""

import logging
from datetime import date, datetime

from flask import Blueprint, jsonify

from auth import token_required, current_user_id
from models import db, Account, BalanceHistory
from performance_history import parse_date
from routes import json_body, is_number, refresh_today_snapshot, server_error

logger = logging.getLogger(__name__)

accounts_bp = Blueprint('accounts', __name__)

ACCOUNT_TYPES = ('INVESTMENT', 'BANK')


def _find_account(account_id):
    return Account.query.filter_by(id=account_id, user_id=current_user_id()).first()


def _account_not_found():
    return jsonify({'error': 'Account not found'}), 404


def add_balance_history(account, balance, note, entry_date=None):
    """Record balance for entry_date (default today), replacing that day's entry."""
    entry_date = entry_date or date.today()
    entry = BalanceHistory.query.filter_by(account_id=account.id, date=entry_date).first()
    if entry is None:
        entry = BalanceHistory(account_id=account.id, date=entry_date)
        db.session.add(entry)
    entry.balance = balance
    entry.note = note
    return entry


def _latest_history(account):
    return (
        BalanceHistory.query
        .filter_by(account_id=account.id)
        .order_by(BalanceHistory.date.desc(), BalanceHistory.id.desc())
        .first()
    )


def _validate_account(data, partial=False):
    """Return a list of validation messages for an account payload."""
    errors = []

    if not partial or 'name' in data:
        if not isinstance(data.get('name'), str) or not data['name'].strip():
            errors.append('Name is required')

    if not partial:
        currency = data.get('currency')
        if not isinstance(currency, str) or len(currency.strip()) != 3:
            errors.append('Currency must be a 3-letter code')

    if 'accountType' in data and data['accountType'] not in ACCOUNT_TYPES:
        errors.append('Account type must be INVESTMENT or BANK')

    if data.get('accountNumber') is not None and not isinstance(data['accountNumber'], str):
        errors.append('Account number must be a string')

    for field, label in (('originalCapital', 'Original capital'), ('currentBalance', 'Current balance')):
        if partial and field not in data:
            continue
        value = data.get(field)
        if not is_number(value) or value < 0:
            errors.append(f'{label} must be a non-negative number')

    return errors


def _parse_entry_date(value):
    if value is None:
        return None
    return parse_date(value)


@accounts_bp.route('', methods=['GET'])
@token_required
def list_accounts():
    """List the user's accounts with their balance history."""
    try:
        accounts = Account.query.filter_by(user_id=current_user_id()).order_by(Account.created_at.desc()).all()
        return jsonify([account.to_dict(include_history=True) for account in accounts])
    except Exception:
        return server_error('Failed to list accounts')


@accounts_bp.route('/<int:account_id>', methods=['GET'])
@token_required
def get_account(account_id):
    try:
        account = _find_account(account_id)
        if account is None:
            return _account_not_found()
        return jsonify(account.to_dict(include_history=True))
    except Exception:
        return server_error('Failed to get account')


@accounts_bp.route('', methods=['POST'])
@token_required
def create_account():
    """Create an account with an initial balance history entry."""
    data = json_body()
    errors = _validate_account(data)
    if errors:
        return jsonify({'error': 'Invalid input', 'message': ', '.join(errors)}), 400

    try:
        account = Account(
            user_id=current_user_id(),
            name=data['name'].strip(),
            currency=data['currency'].strip().upper(),
            account_type=data.get('accountType', 'INVESTMENT'),
            account_number=data.get('accountNumber'),
            original_capital=data['originalCapital'],
            current_balance=data['currentBalance']
        )
        db.session.add(account)
        db.session.flush()
        add_balance_history(account, account.current_balance, 'Initial balance')
        db.session.commit()
        logger.info('Created account %s for user %s', account.id, account.user_id)

        refresh_today_snapshot(current_user_id(), 'account creation')
        return jsonify(account.to_dict(include_history=True)), 201
    except Exception:
        return server_error('Failed to create account')


@accounts_bp.route('/<int:account_id>', methods=['PUT'])
@token_required
def update_account(account_id):
    """
    Partially update an account.

    A currentBalance change is recorded in the history for `date` (default
    today). When that date is older than the latest history entry the
    account keeps the latest entry's balance.
    """
    data = json_body()
    errors = _validate_account(data, partial=True)
    try:
        entry_date = _parse_entry_date(data.get('date'))
    except ValueError:
        errors.append('Date must be YYYY-MM-DD')
    if errors:
        return jsonify({'error': 'Invalid input', 'message': ', '.join(errors)}), 400

    try:
        account = _find_account(account_id)
        if account is None:
            return _account_not_found()

        if 'name' in data:
            account.name = data['name'].strip()
        if 'accountType' in data:
            account.account_type = data['accountType']
        if 'accountNumber' in data:
            account.account_number = data['accountNumber']
        if 'originalCapital' in data:
            account.original_capital = data['originalCapital']

        if 'currentBalance' in data:
            entry_date = entry_date or date.today()
            latest = _latest_history(account)
            add_balance_history(account, data['currentBalance'], 'Balance updated', entry_date)

            if latest is not None and entry_date < latest.date:
                # Backdated entry: the newest history entry still defines the balance
                account.current_balance = latest.balance
            else:
                account.current_balance = data['currentBalance']
                account.last_updated = datetime.utcnow()

        db.session.commit()
        refresh_today_snapshot(current_user_id(), 'account update')
        return jsonify(account.to_dict(include_history=True))
    except Exception:
        return server_error('Failed to update account')


@accounts_bp.route('/<int:account_id>', methods=['DELETE'])
@token_required
def delete_account(account_id):
    try:
        account = _find_account(account_id)
        if account is None:
            return _account_not_found()

        db.session.delete(account)
        db.session.commit()
        logger.info('Deleted account %s', account_id)

        refresh_today_snapshot(current_user_id(), 'account deletion')
        return jsonify({'message': 'Account deleted successfully'})
    except Exception:
        return server_error('Failed to delete account')


@accounts_bp.route('/<int:account_id>/history', methods=['POST'])
@token_required
def add_history(account_id):
    data = json_body()
    balance = data.get('balance')
    note = data.get('note')
    if not is_number(balance) or not note:
        return jsonify({'error': 'Invalid input', 'message': 'Balance and note are required'}), 400
    try:
        entry_date = _parse_entry_date(data.get('date'))
    except ValueError:
        return jsonify({'error': 'Invalid input', 'message': 'Date must be YYYY-MM-DD'}), 400

    try:
        account = _find_account(account_id)
        if account is None:
            return _account_not_found()

        add_balance_history(account, balance, note, entry_date)
        db.session.commit()

        refresh_today_snapshot(current_user_id(), 'adding history')
        return jsonify({'message': 'Balance history entry added'}), 201
    except Exception:
        return server_error('Failed to add balance history')


@accounts_bp.route('/<int:account_id>/history/<int:history_id>', methods=['PUT'])
@token_required
def update_history(account_id, history_id):
    data = json_body()
    balance = data.get('balance')
    note = data.get('note')
    if not is_number(balance) or not note or not data.get('date'):
        return jsonify({'error': 'Invalid input', 'message': 'Balance, note, and date are required'}), 400
    try:
        entry_date = parse_date(data['date'])
    except ValueError:
        return jsonify({'error': 'Invalid input', 'message': 'Date must be YYYY-MM-DD'}), 400

    try:
        account = _find_account(account_id)
        if account is None:
            return _account_not_found()

        entry = BalanceHistory.query.filter_by(id=history_id, account_id=account.id).first()
        if entry is None:
            return jsonify({'error': 'History entry not found'}), 404

        clash = (
            BalanceHistory.query
            .filter(BalanceHistory.account_id == account.id,
                    BalanceHistory.date == entry_date,
                    BalanceHistory.id != entry.id)
            .first()
        )
        if clash is not None:
            return jsonify({
                'error': 'Invalid input',
                'message': 'A balance history entry already exists for this date'
            }), 400

        entry.balance = balance
        entry.note = note
        entry.date = entry_date
        db.session.commit()

        refresh_today_snapshot(current_user_id(), 'updating history')
        return jsonify({'message': 'Balance history entry updated'})
    except Exception:
        return server_error('Failed to update balance history')


@accounts_bp.route('/<int:account_id>/history/<int:history_id>', methods=['DELETE'])
@token_required
def delete_history(account_id, history_id):
    try:
        account = _find_account(account_id)
        if account is None:
            return _account_not_found()

        BalanceHistory.query.filter_by(id=history_id, account_id=account.id).delete()
        db.session.commit()

        refresh_today_snapshot(current_user_id(), 'deleting history')
        return jsonify({'message': 'Balance history entry deleted'})
    except Exception:
        return server_error('Failed to delete balance history')
