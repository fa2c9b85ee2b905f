import unittest
from unittest import mock

from last_update import CURRENCY
from models import db, CurrencyPair
from scheduler import SchedulerService, DAILY_JOB_ID, MARKET_JOB_ID
from support import AppTestCase


class SchedulerServiceTests(AppTestCase):
    def setUp(self):
        super().setUp()
        _, self.first = self.register(email='first@example.com')
        _, self.second = self.register(email='second@example.com')

        self.performance_history = mock.Mock()
        self.exchange_rates = mock.Mock()
        self.last_updates = mock.Mock()
        self.service = SchedulerService(self.app, self.performance_history, self.exchange_rates, self.last_updates)

    def test_daily_snapshots_for_every_user(self):
        result = self.service.calculate_daily_snapshots()

        self.assertEqual(result, {'successful': 2, 'failed': 0})
        self.performance_history.calculate_today_snapshot.assert_has_calls(
            [mock.call(self.first['id']), mock.call(self.second['id'])], any_order=True
        )

    def test_one_failing_user_does_not_stop_the_rest(self):
        self.performance_history.calculate_today_snapshot.side_effect = [RuntimeError('boom'), mock.DEFAULT]

        with self.assertLogs('scheduler', level='ERROR'):
            result = self.service.trigger_daily_calculation()

        self.assertEqual(result, {'successful': 1, 'failed': 1})

    def test_currency_refresh_skipped_while_fresh(self):
        self.last_updates.needs_refresh.return_value = False

        self.service.refresh_currency_rates()

        self.last_updates.needs_refresh.assert_called_once_with(CURRENCY)
        self.exchange_rates.update_all_currency_pairs.assert_not_called()

    def test_currency_refresh_only_for_users_with_pairs(self):
        self.last_updates.needs_refresh.return_value = True
        with self.app.app_context():
            db.session.add(CurrencyPair(user_id=self.second['id'], pair='USD/HKD',
                                        avg_cost=7.7, current_rate=7.8, amount=100))
            db.session.commit()

        self.service.refresh_currency_rates()

        self.exchange_rates.update_all_currency_pairs.assert_called_once_with(self.second['id'], force_refresh=True)

    def test_lifecycle_and_status(self):
        self.assertEqual(self.service.get_status()['isRunning'], False)

        with mock.patch.object(SchedulerService, 'calculate_today_if_missing', lambda service: None):
            self.service.initialize()
            self.addCleanup(self.service.stop)
            scheduler = self.service.scheduler
            self.service.initialize()

            self.assertIs(self.service.scheduler, scheduler)
            self.assertIsNotNone(scheduler.get_job(DAILY_JOB_ID))
            self.assertIsNotNone(scheduler.get_job(MARKET_JOB_ID))
            status = self.service.get_status()
            self.assertTrue(status['isRunning'])
            self.assertGreaterEqual(status['tasks'], 2)

            self.service.stop()

        self.assertFalse(self.service.is_running)


if __name__ == '__main__':
    unittest.main()
