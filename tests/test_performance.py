import unittest
from datetime import date, timedelta
from unittest import mock

from exchange_rates import ExchangeRateService
from models import db, Account, CurrencyPair, PerformanceHistory
from support import AppTestCase


class PerformanceHistoryServiceTests(AppTestCase):
    def setUp(self):
        super().setUp()
        patcher = mock.patch.object(ExchangeRateService, 'get_exchange_rate', return_value=7.8)
        self.get_rate = patcher.start()
        self.addCleanup(patcher.stop)

        _, self.user = self.register()
        self.ctx = self.app.app_context()
        self.ctx.push()
        self.addCleanup(self.ctx.pop)
        self.service = self.app.extensions['performance_history']

    def add_account(self, currency, capital, balance, account_type='INVESTMENT'):
        db.session.add(Account(user_id=self.user['id'], name=f'{currency} account', currency=currency,
                               account_type=account_type, original_capital=capital, current_balance=balance))
        db.session.commit()

    def add_pair(self, pair, avg_cost, current_rate, amount):
        db.session.add(CurrencyPair(user_id=self.user['id'], pair=pair, avg_cost=avg_cost,
                                    current_rate=current_rate, amount=amount))
        db.session.commit()

    def test_snapshot_splits_total_into_investment_and_currency(self):
        self.add_account('HKD', 1000, 1500)
        self.add_account('USD', 100, 200)
        self.add_account('HKD', 5000, 9000, account_type='BANK')
        self.add_pair('USD/HKD', avg_cost=7.7, current_rate=7.8, amount=1000)
        self.add_pair('HKD/USD', avg_cost=0.12, current_rate=0.13, amount=1000)

        snapshot = self.service.calculate_and_store_snapshot(self.user['id'], '2024-05-02')

        currency_pl = 100 + 10 / 0.13
        self.assertAlmostEqual(snapshot.total_pl, 500 + 100 * 7.8)
        self.assertAlmostEqual(snapshot.currency_pl, currency_pl)
        self.assertAlmostEqual(snapshot.investment_pl, 1280 - currency_pl)
        self.assertAlmostEqual(snapshot.daily_pl, snapshot.investment_pl)

    def test_cross_pairs_convert_through_quote_currency(self):
        self.add_pair('EUR/USD', avg_cost=1.0, current_rate=1.1, amount=100)

        snapshot = self.service.calculate_and_store_snapshot(self.user['id'], '2024-05-02')

        self.assertAlmostEqual(snapshot.currency_pl, 10 * 7.8)
        self.get_rate.assert_called_with('USD', 'HKD')

    def test_daily_pl_is_change_from_previous_day(self):
        self.add_account('HKD', 1000, 1500)
        self.service.store_snapshot(self.user['id'], date(2024, 5, 1), 400, 400, 0, 0)

        snapshot = self.service.calculate_and_store_snapshot(self.user['id'], '2024-05-02')

        self.assertAlmostEqual(snapshot.daily_pl, 100)

    def test_snapshots_are_upserted_per_day(self):
        self.add_account('HKD', 1000, 1500)
        self.service.calculate_and_store_snapshot(self.user['id'], '2024-05-02')
        Account.query.first().current_balance = 1700
        db.session.commit()

        self.service.calculate_and_store_snapshot(self.user['id'], '2024-05-02')

        rows = PerformanceHistory.query.filter_by(user_id=self.user['id']).all()
        self.assertEqual(len(rows), 1)
        self.assertAlmostEqual(rows[0].total_pl, 700)

    def test_backfill_skips_existing_dates(self):
        self.service.store_snapshot(self.user['id'], date(2024, 5, 2), 1, 1, 0, 1)

        created = self.service.backfill_performance_history(self.user['id'], '2024-05-01', '2024-05-04')

        self.assertEqual(created, 3)
        existing = PerformanceHistory.query.filter_by(user_id=self.user['id'], date=date(2024, 5, 2)).one()
        self.assertEqual(existing.total_pl, 1)

    def test_history_is_newest_first(self):
        for day in range(1, 4):
            self.service.store_snapshot(self.user['id'], date(2024, 5, day), day, day, 0, 0)

        history = self.service.get_performance_history(self.user['id'], limit=2)

        self.assertEqual([snapshot.date.day for snapshot in history], [3, 2])


class PerformanceRoutesTests(AppTestCase):
    def setUp(self):
        super().setUp()
        self.token, self.user = self.register()
        self.headers = self.auth(self.token)

    def post_snapshot(self, day, total):
        return self.client.post('/api/performance', json={
            'date': day,
            'totalPL': total,
            'investmentPL': total,
            'currencyPL': 0,
            'dailyPL': 0
        }, headers=self.headers)

    def test_latest_is_not_found_without_data(self):
        response = self.client.get('/api/performance/latest', headers=self.headers)

        self.assertEqual(response.status_code, 404)

    def test_create_and_read_snapshots(self):
        self.assertEqual(self.post_snapshot('2024-05-01', 10).status_code, 201)
        self.assertEqual(self.post_snapshot('2024-05-02', 20).status_code, 201)
        self.assertEqual(self.post_snapshot('2024-05-02', 25).status_code, 201)

        listed = self.client.get('/api/performance', headers=self.headers).get_json()
        latest = self.client.get('/api/performance/latest', headers=self.headers).get_json()
        in_range = self.client.get('/api/performance/range?startDate=2024-05-01&endDate=2024-05-01',
                                   headers=self.headers).get_json()
        chart = self.client.get('/api/performance/chart?limit=30', headers=self.headers).get_json()

        self.assertEqual([item['date'] for item in listed], ['2024-05-02', '2024-05-01'])
        self.assertEqual(latest['totalPL'], 25)
        self.assertEqual([item['date'] for item in in_range], ['2024-05-01'])
        self.assertEqual([item['date'] for item in chart], ['2024-05-01', '2024-05-02'])

    def test_create_snapshot_validates_input(self):
        response = self.client.post('/api/performance', json={'date': '05/01/2024', 'totalPL': 'x'},
                                    headers=self.headers)

        self.assertEqual(response.status_code, 400)

    def test_range_requires_dates(self):
        response = self.client.get('/api/performance/range?startDate=2024-05-01', headers=self.headers)

        self.assertEqual(response.status_code, 400)

    def test_calculate_today_and_snapshot(self):
        today = self.client.post('/api/performance/calculate-today', headers=self.headers)
        dated = self.client.post('/api/performance/calculate-snapshot', json={'date': '2024-02-29'},
                                 headers=self.headers)
        invalid = self.client.post('/api/performance/calculate-snapshot', json={'date': '2024-02-30'},
                                   headers=self.headers)

        self.assertEqual(today.status_code, 200)
        self.assertEqual(today.get_json()['date'], date.today().isoformat())
        self.assertEqual(dated.get_json()['date'], '2024-02-29')
        self.assertEqual(invalid.status_code, 400)

    def test_backfill(self):
        start = (date.today() - timedelta(days=2)).isoformat()
        end = date.today().isoformat()

        response = self.client.post('/api/performance/backfill', json={'startDate': start, 'endDate': end},
                                    headers=self.headers)

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.get_json()['created'], 3)

    def test_scheduler_endpoints(self):
        self.register(email='second@example.com')

        status = self.client.get('/api/performance/scheduler-status', headers=self.headers).get_json()
        triggered = self.client.post('/api/performance/trigger-daily-calculation', headers=self.headers)

        self.assertFalse(status['isRunning'])
        self.assertEqual(triggered.status_code, 200)
        self.assertEqual(triggered.get_json()['successful'], 2)
        with self.app.app_context():
            self.assertEqual(PerformanceHistory.query.filter_by(date=date.today()).count(), 2)


if __name__ == '__main__':
    unittest.main()
