"""
Tracks when each market data source was last refreshed.

The three timestamps (epoch milliseconds) live in memory and are written to a
small JSON file after every update, so they survive restarts. Persistence
problems are logged and never reach the caller.
"""

import json
import logging
import os
import tempfile
import threading
import time
from datetime import datetime, timezone

logger = logging.getLogger(__name__)

CURRENCY = 'currency'
IB_PORTFOLIO = 'ibPortfolio'
MANUAL_INVESTMENTS = 'manualInvestments'
KEYS = (CURRENCY, IB_PORTFOLIO, MANUAL_INVESTMENTS)

STALE_AFTER_MINUTES = 30


def _default_times():
    return {key: None for key in KEYS}


def _to_iso(timestamp_ms):
    if timestamp_ms is None:
        return None
    moment = datetime.fromtimestamp(timestamp_ms / 1000, tz=timezone.utc)
    return moment.isoformat(timespec='milliseconds').replace('+00:00', 'Z')


class LastUpdateService:
    """Last refresh times for currency, ibPortfolio and manualInvestments."""

    def __init__(self, path, clock=time.time):
        self.path = path
        self.clock = clock
        self._times = _default_times()
        self._lock = threading.Lock()

    def initialize(self):
        """Ensure the cache directory exists and load any saved times."""
        self._ensure_cache_dir()
        self._load_from_file()

    def shutdown(self):
        with self._lock:
            self._save_to_file()

    def _ensure_cache_dir(self):
        cache_dir = os.path.dirname(os.path.abspath(self.path))
        os.makedirs(cache_dir, exist_ok=True)

    def _load_from_file(self):
        if not os.path.exists(self.path):
            return

        try:
            with open(self.path, 'r', encoding='utf-8') as cache_file:
                data = json.load(cache_file)
            if not isinstance(data, dict):
                raise ValueError('last update file must contain a JSON object')
        except (OSError, ValueError) as e:
            logger.error('Failed to load last update times: %s', e)
            self._times = _default_times()
            return

        times = _default_times()
        for key in KEYS:
            value = data.get(key)
            if isinstance(value, (int, float)) and not isinstance(value, bool):
                times[key] = int(value)
        self._times = times
        logger.info('Loaded last update times from %s', self.path)

    def _save_to_file(self):
        """Write all three keys atomically (temp file + rename)."""
        try:
            self._ensure_cache_dir()
            cache_dir = os.path.dirname(os.path.abspath(self.path))
            fd, tmp_path = tempfile.mkstemp(dir=cache_dir, prefix='.last_updates.', suffix='.tmp')
            try:
                with os.fdopen(fd, 'w', encoding='utf-8') as tmp_file:
                    json.dump(self._times, tmp_file, indent=2)
                os.replace(tmp_path, self.path)
            except BaseException:
                if os.path.exists(tmp_path):
                    os.remove(tmp_path)
                raise
        except OSError as e:
            logger.error('Failed to save last update times: %s', e)

    def _now_ms(self):
        return int(self.clock() * 1000)

    def update(self, key):
        if key not in KEYS:
            raise ValueError(f'Unknown data source: {key}')
        with self._lock:
            self._times[key] = self._now_ms()
            self._save_to_file()
        logger.info('Updated %s last refresh time', key)

    def update_currency_time(self):
        self.update(CURRENCY)

    def update_ib_portfolio_time(self):
        self.update(IB_PORTFOLIO)

    def update_manual_investments_time(self):
        self.update(MANUAL_INVESTMENTS)

    def get_last_update(self, key):
        return _to_iso(self._times[key])

    def get_currency_last_update(self):
        return self.get_last_update(CURRENCY)

    def get_ib_portfolio_last_update(self):
        return self.get_last_update(IB_PORTFOLIO)

    def get_manual_investments_last_update(self):
        return self.get_last_update(MANUAL_INVESTMENTS)

    def get_all_last_update_times(self):
        times = dict(self._times)
        result = {key: _to_iso(times[key]) for key in KEYS}
        result.update({f'{key}Timestamp': times[key] for key in KEYS})
        return result

    def get_time_since_last_update(self, key):
        """Whole minutes since the last update of key, or None if never updated."""
        timestamp = self._times[key]
        if timestamp is None:
            return None
        return (self._now_ms() - timestamp) // 1000 // 60

    def needs_refresh(self, key):
        elapsed = self.get_time_since_last_update(key)
        return elapsed is None or elapsed >= STALE_AFTER_MINUTES
