"""
Daily profit and loss snapshots.

Total P&L comes from INVESTMENT accounts only, currency P&L from currency
pairs, and investment P&L is what remains once currency effects are removed.
All figures are converted to the user's base currency.
"""

import logging
from datetime import date as date_type, timedelta

from models import db, Account, CurrencyPair, PerformanceHistory, User
from exchange_rates import split_pair

logger = logging.getLogger(__name__)


def parse_date(value):
    """'YYYY-MM-DD' (or a date) -> date; raises ValueError otherwise."""
    if isinstance(value, date_type):
        return value
    return date_type.fromisoformat(str(value)[:10])


class PerformanceHistoryService:
    """Calculates, stores and reads performance snapshots."""

    def __init__(self, exchange_rates):
        self.exchange_rates = exchange_rates

    def _investment_total(self, accounts, base_currency):
        total = 0.0
        for account in accounts:
            if account.account_type and account.account_type != 'INVESTMENT':
                continue
            account_pl = account.current_balance - account.original_capital
            if account.currency == base_currency:
                total += account_pl
            else:
                total += account_pl * self.exchange_rates.get_exchange_rate(account.currency, base_currency)
        return total

    def _currency_total(self, pairs, base_currency):
        total = 0.0
        for pair in pairs:
            try:
                from_currency, to_currency = split_pair(pair.pair)
            except ValueError:
                logger.warning('Skipping currency pair with invalid format: %s', pair.pair)
                continue

            # P&L is denominated in the quote currency
            pair_pl = pair.amount * pair.current_rate - pair.amount * pair.avg_cost
            if to_currency == base_currency:
                total += pair_pl
            elif from_currency == base_currency:
                if pair.current_rate:
                    total += pair_pl / pair.current_rate
            else:
                total += pair_pl * self.exchange_rates.get_exchange_rate(to_currency, base_currency)
        return total

    def calculate_and_store_snapshot(self, user_id, date=None):
        """Compute the snapshot for date (default today) and upsert it."""
        target_date = parse_date(date) if date else date_type.today()
        logger.info('Calculating performance snapshot for user %s on %s...', user_id, target_date)

        user = db.session.get(User, user_id)
        base_currency = (user.base_currency if user else None) or 'HKD'

        accounts = Account.query.filter_by(user_id=user_id).all()
        pairs = CurrencyPair.query.filter_by(user_id=user_id).all()

        total_pl = self._investment_total(accounts, base_currency)
        currency_pl = self._currency_total(pairs, base_currency)
        investment_pl = total_pl - currency_pl

        previous = PerformanceHistory.query.filter_by(
            user_id=user_id, date=target_date - timedelta(days=1)
        ).first()
        daily_pl = investment_pl - (previous.investment_pl if previous else 0)

        snapshot = self.store_snapshot(user_id, target_date, total_pl, investment_pl, currency_pl, daily_pl)
        logger.info(
            'Performance snapshot stored for %s: total=%.2f investment=%.2f currency=%.2f daily=%.2f',
            target_date, total_pl, investment_pl, currency_pl, daily_pl
        )
        return snapshot

    def store_snapshot(self, user_id, date, total_pl, investment_pl, currency_pl, daily_pl):
        """Insert or replace the snapshot for (user_id, date)."""
        snapshot = PerformanceHistory.query.filter_by(user_id=user_id, date=date).first()
        if snapshot is None:
            snapshot = PerformanceHistory(user_id=user_id, date=date)
            db.session.add(snapshot)

        snapshot.total_pl = total_pl
        snapshot.investment_pl = investment_pl
        snapshot.currency_pl = currency_pl
        snapshot.daily_pl = daily_pl
        db.session.commit()
        return snapshot

    def calculate_today_snapshot(self, user_id):
        return self.calculate_and_store_snapshot(user_id)

    def get_performance_history(self, user_id, limit=None):
        """Snapshots newest first."""
        query = PerformanceHistory.query.filter_by(user_id=user_id).order_by(PerformanceHistory.date.desc())
        if limit:
            query = query.limit(limit)
        return query.all()

    def get_range(self, user_id, start_date, end_date):
        return (
            PerformanceHistory.query
            .filter(
                PerformanceHistory.user_id == user_id,
                PerformanceHistory.date >= parse_date(start_date),
                PerformanceHistory.date <= parse_date(end_date)
            )
            .order_by(PerformanceHistory.date.asc())
            .all()
        )

    def has_snapshot(self, user_id, date):
        return PerformanceHistory.query.filter_by(user_id=user_id, date=parse_date(date)).first() is not None

    def backfill_performance_history(self, user_id, start_date, end_date):
        """Calculate snapshots for every missing date in [start_date, end_date]. Returns the count."""
        current = parse_date(start_date)
        end = parse_date(end_date)
        created = 0
        logger.info('Backfilling performance history from %s to %s...', current, end)

        while current <= end:
            if not self.has_snapshot(user_id, current):
                try:
                    self.calculate_and_store_snapshot(user_id, current)
                    created += 1
                except Exception:
                    db.session.rollback()
                    logger.warning('Failed to calculate snapshot for %s', current, exc_info=True)
            current += timedelta(days=1)

        logger.info('Performance history backfill completed (%d snapshots)', created)
        return created
