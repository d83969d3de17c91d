import unittest
import uuid
from unittest import mock
from benefit_service.errors import Busy, ConflictExhausted, StorageError
from benefit_service.extensions import LOCKING_EXTENSION
from benefit_service.services.concurrency import LockingStrategy
from tests.base import BenefitTestCase

BASE_URL = '/api/v1/benefits'


class TestBenefitRoutes(BenefitTestCase):

    def create(self, **fields):
        payload = {'name': 'Benefit A', 'description': 'Description A', 'balance': '1000.00'}
        payload.update(fields)
        resp = self.client.post(BASE_URL, json=payload)
        self.assertEqual(resp.status_code, 201, resp.get_json())
        return resp.get_json()

    def test_health(self):
        resp = self.client.get('/health')
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.get_json()['status'], 'healthy')

    def test_create_and_get(self):
        created = self.create()
        self.assertEqual(created['version'], 0)
        self.assertTrue(created['active'])
        self.assertEqual(created['balance'], '1000.00')

        resp = self.client.get(f"{BASE_URL}/{created['id']}")
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.get_json(), created)

    def test_create_accepts_legacy_valor_field(self):
        created = self.create(balance=None, valor=250.5)
        self.assertEqual(created['balance'], '250.50')

    def test_create_validation(self):
        cases = [
            {'name': '   ', 'balance': '10.00'},
            {'name': 'No balance'},
            {'name': 'Negative', 'balance': '-1'},
            {'name': 'Zero', 'balance': 0},
            {'name': 'Too precise', 'balance': '1.001'},
            {'name': 'Bad flag', 'balance': '1.00', 'active': 'yes'},
        ]
        for payload in cases:
            with self.subTest(payload=payload):
                resp = self.client.post(BASE_URL, json=payload)
                self.assertEqual(resp.status_code, 400)
                self.assertEqual(resp.get_json()['kind'], 'INVALID_INPUT')

        resp = self.client.post(BASE_URL, data='not json', content_type='text/plain')
        self.assertEqual(resp.status_code, 400)

    def test_get_unknown_or_malformed_id(self):
        for benefit_id in (uuid.uuid4(), 'abc'):
            with self.subTest(benefit_id=benefit_id):
                resp = self.client.get(f'{BASE_URL}/{benefit_id}')
                self.assertEqual(resp.status_code, 404)
                self.assertEqual(resp.get_json()['kind'], 'NOT_FOUND')

    def test_list_active_and_search(self):
        food = self.create(name='Food allowance')
        transport = self.create(name='Transport')
        self.client.delete(f"{BASE_URL}/{transport['id']}")

        all_ids = {b['id'] for b in self.client.get(BASE_URL).get_json()}
        self.assertEqual(all_ids, {food['id'], transport['id']})

        active = self.client.get(f'{BASE_URL}/active').get_json()
        self.assertEqual([b['id'] for b in active], [food['id']])

        found = self.client.get(f'{BASE_URL}/search', query_string={'name': 'FOOD'}).get_json()
        self.assertEqual([b['id'] for b in found], [food['id']])

        resp = self.client.get(f'{BASE_URL}/search')
        self.assertEqual(resp.status_code, 400)

    def test_update_bumps_version_and_checks_stale_version(self):
        created = self.create()
        url = f"{BASE_URL}/{created['id']}"

        resp = self.client.put(url, json={'name': 'Benefit A Updated', 'balance': '1500.00', 'version': 0})
        self.assertEqual(resp.status_code, 200)
        updated = resp.get_json()
        self.assertEqual(updated['name'], 'Benefit A Updated')
        self.assertEqual(updated['balance'], '1500.00')
        self.assertEqual(updated['version'], 1)
        self.assertIsNone(updated['description'])

        resp = self.client.put(url, json={'name': 'Lost update', 'balance': '1.00', 'version': 0})
        self.assertEqual(resp.status_code, 409)
        self.assertEqual(resp.get_json()['kind'], 'STALE_VERSION')
        self.assertEqual(self.client.get(url).get_json()['name'], 'Benefit A Updated')

    def test_update_unknown_benefit(self):
        resp = self.client.put(f'{BASE_URL}/{uuid.uuid4()}', json={'name': 'X', 'balance': '1.00'})
        self.assertEqual(resp.status_code, 404)

    def test_soft_delete_keeps_record_readable(self):
        created = self.create()
        url = f"{BASE_URL}/{created['id']}"

        resp = self.client.delete(url)
        self.assertEqual(resp.status_code, 204)

        resp = self.client.get(url)
        self.assertEqual(resp.status_code, 200)
        self.assertFalse(resp.get_json()['active'])
        self.assertEqual(resp.get_json()['version'], 1)

        self.assertEqual(self.client.delete(f'{BASE_URL}/{uuid.uuid4()}').status_code, 404)

    def test_collection_accepts_trailing_slash(self):
        resp = self.client.post(f'{BASE_URL}/', json={'name': 'Slash', 'balance': '5.00'})
        self.assertEqual(resp.status_code, 201)

        resp = self.client.get(f'{BASE_URL}/')
        self.assertEqual(resp.status_code, 200)
        self.assertEqual([b['name'] for b in resp.get_json()], ['Slash'])

    def test_create_normalizes_trailing_zeros(self):
        created = self.create(balance='12.500')
        self.assertEqual(created['balance'], '12.50')

    def test_unknown_route_is_json(self):
        resp = self.client.get('/nope')
        self.assertEqual(resp.status_code, 404)
        self.assertEqual(resp.get_json()['kind'], 'NOT_FOUND')


class TestTransferRoute(BenefitTestCase):

    def setUp(self):
        super().setUp()
        self.from_id = str(self.make_benefit('1000.00', name='From'))
        self.to_id = str(self.make_benefit('500.00', name='To'))

    def transfer(self, **fields):
        payload = {'fromId': self.from_id, 'toId': self.to_id, 'amount': '300.00'}
        payload.update(fields)
        return self.client.post(f'{BASE_URL}/transfer', json=payload)

    def balances(self):
        return (
            self.client.get(f'{BASE_URL}/{self.from_id}').get_json()['balance'],
            self.client.get(f'{BASE_URL}/{self.to_id}').get_json()['balance'],
        )

    def test_successful_transfer(self):
        resp = self.transfer()
        self.assertEqual(resp.status_code, 200)
        receipt = resp.get_json()['transfer']
        self.assertEqual(receipt['from_balance'], '700.00')
        self.assertEqual(receipt['to_balance'], '800.00')
        self.assertEqual(receipt['amount'], '300.00')
        self.assertEqual(self.balances(), ('700.00', '800.00'))

    def test_numeric_json_amount(self):
        resp = self.transfer(amount=300)
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(self.balances(), ('700.00', '800.00'))

    def test_amount_with_trailing_zeros(self):
        resp = self.transfer(amount='300.000')
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.get_json()['transfer']['amount'], '300.00')
        self.assertEqual(self.balances(), ('700.00', '800.00'))

        resp = self.transfer(amount='0.001')
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.get_json()['kind'], 'INVALID_AMOUNT')

    def test_credit_past_balance_limit(self):
        rich_id = str(self.make_benefit('9999999999950.00', name='Rich'))
        resp = self.transfer(toId=rich_id, amount='60.00')
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.get_json()['kind'], 'BALANCE_LIMIT_EXCEEDED')
        self.assertEqual(resp.get_json()['which'], 'to')
        self.assertEqual(self.balances(), ('1000.00', '500.00'))

    def test_business_rule_failures(self):
        inactive_id = str(self.make_benefit('10.00', name='Inactive', active=False))
        cases = [
            ({'toId': self.from_id}, 'SELF_TRANSFER'),
            ({'amount': '0'}, 'INVALID_AMOUNT'),
            ({'amount': '-300.00'}, 'INVALID_AMOUNT'),
            ({'amount': None}, 'INVALID_AMOUNT'),
            ({'toId': inactive_id}, 'INACTIVE'),
            ({'amount': '5000.00'}, 'INSUFFICIENT_BALANCE'),
        ]
        for fields, kind in cases:
            with self.subTest(kind=kind, fields=fields):
                resp = self.transfer(**fields)
                self.assertEqual(resp.status_code, 400)
                body = resp.get_json()
                self.assertEqual(body['kind'], kind)
                self.assertIn('message', body)
        self.assertEqual(self.balances(), ('1000.00', '500.00'))

    def test_insufficient_balance_reports_amounts(self):
        body = self.transfer(amount='5000.00').get_json()
        self.assertEqual(body['available'], '1000.00')
        self.assertEqual(body['requested'], '5000.00')

    def test_not_found_names_the_side(self):
        resp = self.transfer(toId=str(uuid.uuid4()))
        self.assertEqual(resp.status_code, 404)
        self.assertEqual(resp.get_json()['kind'], 'NOT_FOUND')
        self.assertEqual(resp.get_json()['which'], 'to')

        resp = self.transfer(fromId=str(uuid.uuid4()))
        self.assertEqual(resp.status_code, 404)
        self.assertEqual(resp.get_json()['which'], 'from')
        self.assertEqual(self.balances(), ('1000.00', '500.00'))

    def test_missing_ids(self):
        resp = self.client.post(f'{BASE_URL}/transfer', json={'amount': '1.00'})
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.get_json()['kind'], 'INVALID_INPUT')


class TestTransferRouteOptimistic(TestTransferRoute):
    strategy = 'optimistic'


class TestTransferRouteFailures(BenefitTestCase):
    """Statuses for failures raised by the concurrency strategy or the database."""

    def setUp(self):
        super().setUp()
        self.from_id = str(self.make_benefit('1000.00', name='From'))
        self.to_id = str(self.make_benefit('500.00', name='To'))

    def transfer(self):
        return self.client.post(
            f'{BASE_URL}/transfer',
            json={'fromId': self.from_id, 'toId': self.to_id, 'amount': '300.00'},
        )

    def strategy_raises(self, error):
        locking = mock.create_autospec(LockingStrategy, instance=True)
        locking.execute.side_effect = error
        self.app.extensions[LOCKING_EXTENSION] = locking

    def test_busy_is_503(self):
        self.strategy_raises(Busy('Timed out waiting for a record lock'))
        resp = self.transfer()
        self.assertEqual(resp.status_code, 503)
        self.assertEqual(resp.get_json()['kind'], 'BUSY')

    def test_conflict_exhausted_is_409(self):
        self.strategy_raises(ConflictExhausted(5))
        resp = self.transfer()
        self.assertEqual(resp.status_code, 409)
        self.assertEqual(resp.get_json()['kind'], 'CONFLICT_EXHAUSTED')
        self.assertEqual(resp.get_json()['attempts'], 5)

    def test_storage_error_is_500(self):
        self.strategy_raises(StorageError('Database unavailable'))
        resp = self.transfer()
        self.assertEqual(resp.status_code, 500)
        self.assertEqual(resp.get_json()['kind'], 'STORAGE_ERROR')

    def test_record_held_by_another_unit_of_work_times_out(self):
        strategy = self.app.extensions[LOCKING_EXTENSION]
        strategy.lock_timeout = 0.05

        with strategy.locks.hold([uuid.UUID(self.to_id)], timeout=1):
            resp = self.transfer()

        self.assertEqual(resp.status_code, 503)
        self.assertEqual(resp.get_json()['kind'], 'BUSY')
        self.assertEqual(len(strategy.locks), 0)
        self.assertEqual(self.client.get(f'{BASE_URL}/{self.from_id}').get_json()['balance'], '1000.00')


if __name__ == '__main__':
    unittest.main()
