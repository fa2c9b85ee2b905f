import json
import os
import shutil
import tempfile
import unittest

from last_update import CURRENCY, IB_PORTFOLIO, KEYS, MANUAL_INVESTMENTS, LastUpdateService
from support import FakeClock


class LastUpdateServiceTests(unittest.TestCase):
    def setUp(self):
        self.tmp_dir = tempfile.mkdtemp()
        self.path = os.path.join(self.tmp_dir, 'cache', 'last_updates.json')
        self.clock = FakeClock()
        self.service = LastUpdateService(self.path, clock=self.clock)
        self.service.initialize()

    def tearDown(self):
        shutil.rmtree(self.tmp_dir, ignore_errors=True)

    def test_initialize_creates_cache_directory(self):
        self.assertTrue(os.path.isdir(os.path.dirname(self.path)))

    def test_needs_refresh_follows_staleness_window(self):
        self.assertTrue(self.service.needs_refresh(CURRENCY))

        self.service.update_currency_time()
        self.assertFalse(self.service.needs_refresh(CURRENCY))

        self.clock.advance(minutes=29)
        self.assertFalse(self.service.needs_refresh(CURRENCY))

        self.clock.advance(minutes=2)
        self.assertTrue(self.service.needs_refresh(CURRENCY))

    def test_time_since_last_update(self):
        self.assertIsNone(self.service.get_time_since_last_update(IB_PORTFOLIO))

        self.service.update_ib_portfolio_time()
        self.clock.advance(minutes=12, seconds=30)

        self.assertEqual(self.service.get_time_since_last_update(IB_PORTFOLIO), 12)

    def test_update_persists_all_keys(self):
        self.service.update_manual_investments_time()

        with open(self.path, encoding='utf-8') as cache_file:
            saved = json.load(cache_file)

        self.assertEqual(set(saved), set(KEYS))
        self.assertEqual(saved[MANUAL_INVESTMENTS], int(self.clock.now * 1000))
        self.assertIsNone(saved[CURRENCY])

    def test_times_survive_restart(self):
        self.service.update_currency_time()

        restarted = LastUpdateService(self.path, clock=self.clock)
        restarted.initialize()

        self.assertFalse(restarted.needs_refresh(CURRENCY))
        self.assertEqual(restarted.get_currency_last_update(), self.service.get_currency_last_update())

    def test_all_last_update_times(self):
        self.service.update_currency_time()
        times = self.service.get_all_last_update_times()

        self.assertEqual(times['currency'], '2023-11-14T22:13:20.000Z')
        self.assertEqual(times['currencyTimestamp'], 1_700_000_000_000)
        self.assertIsNone(times['ibPortfolio'])
        self.assertIsNone(times['manualInvestmentsTimestamp'])

    def test_corrupt_file_resets_to_null(self):
        with open(self.path, 'w', encoding='utf-8') as cache_file:
            cache_file.write('{not json')

        service = LastUpdateService(self.path, clock=self.clock)
        with self.assertLogs('last_update', level='ERROR'):
            service.initialize()

        times = service.get_all_last_update_times()
        for key in KEYS:
            self.assertIsNone(times[key])

    def test_unknown_key_is_rejected(self):
        with self.assertRaises(ValueError):
            self.service.update('otherAssets')

    def test_save_failure_is_logged_not_raised(self):
        os.makedirs(os.path.join(self.tmp_dir, 'blocked'))
        service = LastUpdateService(os.path.join(self.tmp_dir, 'blocked'), clock=self.clock)

        with self.assertLogs('last_update', level='ERROR'):
            service.update_currency_time()

        self.assertFalse(service.needs_refresh(CURRENCY))


if __name__ == '__main__':
    unittest.main()
