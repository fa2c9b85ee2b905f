"""
Exchange rate lookups for currency pairs.

Yahoo Finance (via yfinance) is the primary source, with a cross rate through
USD and the exchangerate-api.com USD table as fallbacks. Rates are cached in
the exchange_rates table.
"""

import logging
from datetime import datetime, timedelta

import requests
import yfinance as yf

from models import db, CurrencyPair

logger = logging.getLogger(__name__)

FALLBACK_URL = 'https://api.exchangerate-api.com/v4/latest/USD'
REQUEST_TIMEOUT = 5

# Cached rates are reused for 5 minutes; when every source fails a cached
# rate up to 15 minutes old is still served instead of 1.0.
CACHE_DURATION = timedelta(minutes=5)
FORCE_UPDATE_DURATION = timedelta(minutes=15)

POPULAR_CURRENCIES = ['USD', 'EUR', 'GBP', 'JPY', 'CAD', 'AUD', 'SGD', 'HKD']


class ExchangeRateError(Exception):
    """Raised when no source could provide a rate."""


def split_pair(pair):
    """'USD/HKD' -> ('USD', 'HKD'); raises ValueError for anything else."""
    if not isinstance(pair, str) or '/' not in pair:
        raise ValueError(f'Invalid currency pair format: {pair!r}')
    from_currency, _, to_currency = pair.partition('/')
    from_currency = from_currency.strip().upper()
    to_currency = to_currency.strip().upper()
    if not from_currency or not to_currency:
        raise ValueError(f'Invalid currency pair format: {pair!r}')
    return from_currency, to_currency


def _parse_timestamp(value):
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))


class ExchangeRateService:
    """Fetches, caches and applies exchange rates."""

    def __init__(self, database, last_updates=None):
        self.database = database
        self.last_updates = last_updates

    def fetch_yahoo_finance_rate(self, from_currency, to_currency):
        """Latest close for e.g. USDHKD=X."""
        symbol = f'{from_currency}{to_currency}=X'
        logger.info('Fetching %s/%s rate from Yahoo Finance...', from_currency, to_currency)

        hist = yf.Ticker(symbol).history(period='5d')
        if hist.empty:
            raise ExchangeRateError(f'No price data from Yahoo Finance for {symbol}')

        rate = float(hist['Close'].iloc[-1])
        if rate <= 0:
            raise ExchangeRateError(f'Invalid price from Yahoo Finance for {symbol}: {rate}')
        return rate

    def fetch_fallback_rate(self, from_currency, to_currency):
        """Rate derived from the exchangerate-api.com USD table."""
        response = requests.get(FALLBACK_URL, timeout=REQUEST_TIMEOUT)
        response.raise_for_status()
        rates = response.json().get('rates')
        if not rates:
            raise ExchangeRateError('No rates data from fallback API')

        if from_currency == 'USD':
            return float(rates[to_currency])
        if to_currency == 'USD':
            return 1 / float(rates[from_currency])
        return float(rates[to_currency]) / float(rates[from_currency])

    def _fetch_rate(self, from_currency, to_currency):
        try:
            return self.fetch_yahoo_finance_rate(from_currency, to_currency)
        except Exception as e:
            logger.warning('Yahoo Finance failed for %s/%s (%s), trying fallback...', from_currency, to_currency, e)

        if 'USD' not in (from_currency, to_currency):
            try:
                from_to_usd = self.fetch_yahoo_finance_rate(from_currency, 'USD')
                usd_to_target = self.fetch_yahoo_finance_rate('USD', to_currency)
                return from_to_usd * usd_to_target
            except Exception as e:
                logger.warning('Yahoo Finance cross rate failed (%s), using exchangerate-api...', e)

        try:
            return self.fetch_fallback_rate(from_currency, to_currency)
        except (requests.RequestException, KeyError, ValueError, ZeroDivisionError, ExchangeRateError) as e:
            raise ExchangeRateError(f'Failed to fetch {from_currency}/{to_currency}: {e}') from e

    def get_cached_rate(self, from_currency, to_currency):
        row = self.database.get(
            'SELECT rate, updated_at FROM exchange_rates WHERE pair = ?',
            [f'{from_currency}/{to_currency}']
        )
        if row is None:
            return None
        return {'rate': row['rate'], 'timestamp': _parse_timestamp(row['updated_at'])}

    def cache_rate(self, from_currency, to_currency, rate):
        self.database.run(
            'INSERT OR REPLACE INTO exchange_rates (pair, rate, updated_at) VALUES (?, ?, CURRENT_TIMESTAMP)',
            [f'{from_currency}/{to_currency}', rate]
        )

    def get_exchange_rate(self, from_currency, to_currency):
        """Rate for from/to; 1.0 for the same currency or when every source fails."""
        if from_currency == to_currency:
            return 1.0

        cached = None
        try:
            cached = self.get_cached_rate(from_currency, to_currency)
            if cached is not None and datetime.utcnow() - cached['timestamp'] < CACHE_DURATION:
                return cached['rate']

            rate = self._fetch_rate(from_currency, to_currency)
            self.cache_rate(from_currency, to_currency, rate)
            return rate
        except Exception:
            logger.exception('Error getting exchange rate for %s/%s', from_currency, to_currency)

        if cached is not None and datetime.utcnow() - cached['timestamp'] <= FORCE_UPDATE_DURATION:
            logger.warning('Using cached %s/%s rate from %s', from_currency, to_currency, cached['timestamp'])
            return cached['rate']
        return 1.0

    def update_all_currency_pairs(self, user_id, force_refresh=False):
        """Refresh every currency pair of a user. Returns the number of pairs."""
        pairs = CurrencyPair.query.filter_by(user_id=user_id).all()
        if not pairs:
            logger.info('No currency pairs to update for user %s', user_id)
            return 0

        for pair in pairs:
            try:
                from_currency, to_currency = split_pair(pair.pair)
            except ValueError:
                logger.warning('Invalid currency pair format: %s', pair.pair)
                continue

            if from_currency == to_currency:
                new_rate = 1.0
            elif force_refresh:
                try:
                    new_rate = self._fetch_rate(from_currency, to_currency)
                    self.cache_rate(from_currency, to_currency, new_rate)
                except ExchangeRateError as e:
                    logger.warning('Failed to update rate for %s, keeping current rate: %s', pair.pair, e)
                    new_rate = pair.current_rate
            else:
                new_rate = self.get_exchange_rate(from_currency, to_currency)

            pair.current_rate = new_rate

        db.session.commit()
        logger.info('Updated %d currency pairs for user %s', len(pairs), user_id)

        if self.last_updates is not None:
            self.last_updates.update_currency_time()
        return len(pairs)

    def get_last_update_time(self):
        row = self.database.get('SELECT MAX(updated_at) AS last_update FROM exchange_rates')
        return row['last_update'] if row else None

    @staticmethod
    def get_popular_pairs(base_currency='HKD'):
        """Suggested pairs quoted against base_currency, plus a few reverse pairs."""
        pairs = [f'{currency}/{base_currency}' for currency in POPULAR_CURRENCIES if currency != base_currency]
        for quote in ('USD', 'EUR', 'GBP'):
            if base_currency != quote:
                pairs.append(f'{base_currency}/{quote}')
        return pairs
