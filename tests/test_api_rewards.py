"""
Tests for the Rewards API endpoints.

Tests cover:
- Identity and role headers
- Account snapshot and catalog
- Earning, adjusting and redeeming
- Voucher lifecycle, lookup and event trail
- Expiring points and missing points reports
- History and company summaries
- Error response shape
"""
import pytest

from app.services import RewardsService


def _error_code(response):
    return response.get_json()['error']['code']


# ==============================================================================
# Identity
# ==============================================================================

class TestIdentity:
    """Rewards endpoints need the gateway identity headers."""

    def test_missing_user_header(self, client):
        response = client.get('/api/rewards/account')

        assert response.status_code == 401
        assert _error_code(response) == 'AUTH_REQUIRED'

    def test_oversized_user_header(self, client):
        response = client.get('/api/rewards/account', headers={'X-User-Id': 'u' * 65})
        assert response.status_code == 401

    def test_health_is_open(self, client):
        response = client.get('/health')

        assert response.status_code == 200
        assert response.get_json()['status'] == 'healthy'


class TestRoles:
    """Support and fulfilment operations are refused to plain customers."""

    @pytest.mark.parametrize('method, url, body', [
        ('post', '/api/rewards/adjust', {'points': 1000000, 'reason': 'Self credit'}),
        ('post', '/api/rewards/earn', {'points': 250000, 'description': 'Self credit'}),
        ('post', '/api/rewards/catalog', {'rewards': [{'id': 'x', 'title': 'X', 'points': 1, 'type': 'bundle'}]}),
        ('patch', '/api/rewards/vouchers/1', {'status': 'confirmed'}),
        ('patch', '/api/rewards/missing-points/1', {'status': 'resolved'}),
        ('post', '/api/rewards/expiring/1/expire', None),
        ('get', '/api/rewards/vouchers/lookup/EASI-AAAA0000', None),
    ])
    def test_customer_is_forbidden(self, client, auth_headers, method, url, body):
        response = getattr(client, method)(url, json=body, headers=auth_headers)

        assert response.status_code == 403
        assert _error_code(response) == 'FORBIDDEN'

    def test_customer_cannot_credit_themselves(self, client):
        headers = {'X-User-Id': 'customer-42', 'X-User-Role': 'customer'}

        client.post('/api/rewards/adjust', json={'points': 1000000, 'reason': 'Self credit'}, headers=headers)
        client.post('/api/rewards/earn', json={'points': 250000, 'description': 'Self credit'}, headers=headers)

        account = client.get('/api/rewards/account', headers=headers).get_json()
        assert account['points'] == 0
        assert account['tier'] == 'Bronze'

    def test_staff_role_is_allowed(self, client, role_headers):
        response = client.post('/api/rewards/adjust', json={
            'points': 500, 'reason': 'Goodwill',
        }, headers=role_headers('Support'))

        assert response.status_code == 200
        assert response.get_json()['points'] == 500

    def test_role_not_on_list(self, client, role_headers):
        response = client.post('/api/rewards/catalog', json={'rewards': []}, headers=role_headers('support'))

        assert response.status_code == 403

    def test_unknown_role(self, client, role_headers):
        response = client.get('/api/rewards/account', headers=role_headers('superuser'))

        assert response.status_code == 401
        assert _error_code(response) == 'AUTH_REQUIRED'


# ==============================================================================
# Account and catalog
# ==============================================================================

class TestAccount:
    """Tests for GET /api/rewards/account."""

    def test_new_account_snapshot(self, client, auth_headers):
        response = client.get('/api/rewards/account', headers=auth_headers)

        assert response.status_code == 200
        data = response.get_json()
        assert data['points'] == 0
        assert data['tier'] == 'Bronze'
        assert data['points_to_next_tier'] == 50001
        assert data['redeemed_rewards'] == []
        assert data['benefits']

    def test_pooled_account(self, client):
        headers = {'X-User-Id': 'alice', 'X-Company-Id': 'co-api', 'X-User-Role': 'system'}
        client.post('/api/rewards/earn', json={'points': 700, 'description': 'Order #1'}, headers=headers)

        response = client.get('/api/rewards/account', headers={'X-User-Id': 'bob', 'X-Company-Id': 'co-api'})

        assert response.get_json()['points'] == 700


class TestCatalog:
    """Tests for /api/rewards/catalog."""

    def test_list_catalog(self, client, auth_headers, catalog):
        response = client.get('/api/rewards/catalog', headers=auth_headers)

        assert response.status_code == 200
        data = response.get_json()
        assert data['count'] == len(catalog)
        assert data['rewards'][0]['points'] <= data['rewards'][-1]['points']

    def test_list_catalog_by_type(self, client, auth_headers, catalog):
        response = client.get('/api/rewards/catalog?type=voucher', headers=auth_headers)

        assert {r['type'] for r in response.get_json()['rewards']} == {'voucher'}

    def test_load_catalog(self, client, role_headers):
        payload = {'rewards': [
            {'id': 'api-swag', 'title': 'Tote', 'points': 800, 'type': 'swag', 'stock': 10},
        ]}

        response = client.post('/api/rewards/catalog', json=payload, headers=role_headers('admin'))

        assert response.status_code == 201
        assert response.get_json()['rewards'][0]['stock'] == 10

    def test_load_invalid_catalog(self, client, role_headers):
        payload = {'rewards': [{'id': 'api-bad', 'title': 'Bad', 'points': 10, 'type': 'raffle'}]}

        response = client.post('/api/rewards/catalog', json=payload, headers=role_headers('admin'))

        assert response.status_code == 400
        assert _error_code(response) == 'INVALID_REWARD'

    def test_load_requires_list(self, client, role_headers):
        response = client.post('/api/rewards/catalog', json={}, headers=role_headers('admin'))

        assert response.status_code == 400
        assert _error_code(response) == 'MISSING_FIELD'


# ==============================================================================
# Earn / adjust / redeem
# ==============================================================================

class TestEarnAndAdjust:
    """Tests for POST /api/rewards/earn and /adjust."""

    def test_earn(self, client, role_headers):
        response = client.post('/api/rewards/earn', json={
            'points': 1500, 'description': 'Order #2001', 'order_id': '2001',
        }, headers=role_headers('system'))

        assert response.status_code == 200
        data = response.get_json()
        assert data['points'] == 1500
        assert data['account']['yearly_spend'] == 1500

    def test_earn_description_defaults_to_order(self, client, role_headers):
        client.post('/api/rewards/earn', json={'points': 10, 'order_id': '2002'}, headers=role_headers('system'))

        entry = RewardsService('user-api').points_history()['entries'][0]
        assert entry.description == 'Order 2002'

    def test_earn_requires_points(self, client, role_headers):
        response = client.post('/api/rewards/earn', json={'description': 'x'}, headers=role_headers('system'))

        assert response.status_code == 400
        assert _error_code(response) == 'MISSING_FIELD'

    @pytest.mark.parametrize('points', [0, -5, 'lots'])
    def test_earn_rejects_bad_amount(self, client, role_headers, points):
        response = client.post('/api/rewards/earn', json={
            'points': points, 'description': 'Bad',
        }, headers=role_headers('system'))

        assert response.status_code == 400
        assert _error_code(response) == 'INVALID_AMOUNT'

    def test_adjust_cannot_overdraw(self, client, role_headers):
        response = client.post('/api/rewards/adjust', json={
            'points': -10, 'reason': 'Correction',
        }, headers=role_headers('support'))

        assert response.status_code == 422
        assert _error_code(response) == 'INSUFFICIENT_POINTS'


class TestRedeem:
    """Tests for POST /api/rewards/redeem."""

    def test_redeem_voucher(self, client, auth_headers, catalog):
        RewardsService('user-api').earn_points(20000, 'Order #2100')

        response = client.post('/api/rewards/redeem', json={'reward_id': 'voucher-500'}, headers=auth_headers)

        assert response.status_code == 201
        data = response.get_json()
        assert data['new_balance'] == 0
        assert data['voucher']['status'] == 'pending'
        assert data['ledger_entry']['points_amount'] == -20000

    def test_insufficient_points(self, client, auth_headers, catalog):
        response = client.post('/api/rewards/redeem', json={'reward_id': 'voucher-500'}, headers=auth_headers)

        assert response.status_code == 422
        assert _error_code(response) == 'INSUFFICIENT_POINTS'

    def test_unknown_reward(self, client, auth_headers, catalog):
        response = client.post('/api/rewards/redeem', json={'reward_id': 'voucher-1'}, headers=auth_headers)

        assert response.status_code == 404
        assert _error_code(response) == 'REWARD_NOT_FOUND'

    def test_out_of_stock(self, client, auth_headers, catalog):
        RewardsService('user-api').earn_points(5000, 'Order #2101')
        client.post('/api/rewards/redeem', json={'reward_id': 'swag-cap'}, headers=auth_headers)

        response = client.post('/api/rewards/redeem', json={'reward_id': 'swag-cap'}, headers=auth_headers)

        assert response.status_code == 409
        assert _error_code(response) == 'REWARD_UNAVAILABLE'

    def test_reward_id_required(self, client, auth_headers):
        response = client.post('/api/rewards/redeem', json={}, headers=auth_headers)
        assert response.status_code == 400


# ==============================================================================
# Vouchers
# ==============================================================================

class TestVouchers:
    """Tests for /api/rewards/vouchers."""

    @pytest.fixture
    def voucher(self, app, catalog):
        service = RewardsService('user-api')
        service.earn_points(15000, 'Order #2200')
        return service.redeem_reward('voucher-150')['voucher']

    @pytest.fixture
    def voucher_id(self, voucher):
        return voucher['id']

    def test_list_vouchers(self, client, auth_headers, voucher_id):
        response = client.get('/api/rewards/vouchers?status=pending', headers=auth_headers)

        assert response.status_code == 200
        assert [v['id'] for v in response.get_json()['vouchers']] == [voucher_id]

    def test_confirm_then_use(self, client, auth_headers, role_headers, voucher_id):
        url = f'/api/rewards/vouchers/{voucher_id}'

        response = client.patch(url, json={'status': 'confirmed'}, headers=role_headers('fulfilment'))
        assert response.status_code == 200

        available = client.get('/api/rewards/vouchers/available', headers=auth_headers).get_json()
        assert available['count'] == 1

        response = client.patch(url, json={
            'status': 'used', 'order_id': '2201', 'used_date': '2026-10-01T10:00:00Z',
        }, headers=role_headers('fulfilment'))

        assert response.status_code == 200
        voucher = response.get_json()['voucher']
        assert voucher['status'] == 'used'
        assert voucher['order_id'] == '2201'
        assert voucher['used_date'].startswith('2026-10-01T10:00:00')

    def test_used_date_offset_is_converted_to_utc(self, client, role_headers, voucher_id):
        url = f'/api/rewards/vouchers/{voucher_id}'
        client.patch(url, json={'status': 'confirmed'}, headers=role_headers('fulfilment'))

        response = client.patch(url, json={
            'status': 'used', 'order_id': '2204', 'used_date': '2026-10-01T18:00:00+08:00',
        }, headers=role_headers('fulfilment'))

        assert response.get_json()['voucher']['used_date'] == '2026-10-01T10:00:00'

    def test_invalid_transition(self, client, role_headers, voucher_id):
        response = client.patch(
            f'/api/rewards/vouchers/{voucher_id}',
            json={'status': 'used', 'order_id': '2202'},
            headers=role_headers('fulfilment'),
        )

        assert response.status_code == 409
        assert _error_code(response) == 'INVALID_STATUS_TRANSITION'

    def test_bad_used_date(self, client, role_headers, voucher_id):
        response = client.patch(
            f'/api/rewards/vouchers/{voucher_id}',
            json={'status': 'used', 'order_id': '2203', 'used_date': 'last week'},
            headers=role_headers('fulfilment'),
        )
        assert response.status_code == 400

    def test_unknown_voucher(self, client, role_headers):
        response = client.patch(
            '/api/rewards/vouchers/999', json={'status': 'confirmed'}, headers=role_headers('support')
        )

        assert response.status_code == 404
        assert _error_code(response) == 'VOUCHER_NOT_FOUND'

    def test_event_trail(self, client, auth_headers, role_headers, voucher_id):
        client.patch(
            f'/api/rewards/vouchers/{voucher_id}', json={'status': 'confirmed'}, headers=role_headers('fulfilment')
        )

        response = client.get(f'/api/rewards/vouchers/{voucher_id}/events', headers=auth_headers)

        assert response.status_code == 200
        data = response.get_json()
        assert data['total'] == 2
        assert [e['event_type'] for e in data['events']] == ['confirmed', 'issued']
        assert data['events'][0]['previous_status'] == 'pending'

    def test_event_trail_of_another_account(self, client, voucher_id):
        response = client.get(f'/api/rewards/vouchers/{voucher_id}/events', headers={'X-User-Id': 'stranger'})

        assert response.status_code == 404

    def test_lookup_by_confirmation_code(self, client, role_headers, voucher):
        code = voucher['confirmation_code'].lower()

        response = client.get(f'/api/rewards/vouchers/lookup/{code}', headers=role_headers('support'))

        assert response.status_code == 200
        assert response.get_json()['voucher']['id'] == voucher['id']

    def test_lookup_unknown_code(self, client, role_headers):
        response = client.get('/api/rewards/vouchers/lookup/EASI-NOPE0000', headers=role_headers('fulfilment'))

        assert response.status_code == 404
        assert _error_code(response) == 'VOUCHER_NOT_FOUND'


# ==============================================================================
# Expiring and missing points
# ==============================================================================

class TestExpiringPoints:
    """Tests for /api/rewards/expiring."""

    def test_list_and_expire(self, client, auth_headers, role_headers):
        RewardsService('user-api').earn_points(900, 'Order #2300')

        data = client.get('/api/rewards/expiring?days=400', headers=auth_headers).get_json()
        assert data['total_points'] == 900
        batch_id = data['batches'][0]['id']

        response = client.post(f'/api/rewards/expiring/{batch_id}/expire', headers=role_headers('system'))
        assert response.get_json()['expired'] is True
        assert response.get_json()['points'] == 0

        response = client.post(f'/api/rewards/expiring/{batch_id}/expire', headers=role_headers('system'))
        assert response.get_json()['expired'] is False

    def test_negative_days(self, client, auth_headers):
        response = client.get('/api/rewards/expiring?days=-1', headers=auth_headers)
        assert response.status_code == 400


class TestMissingPoints:
    """Tests for /api/rewards/missing-points."""

    def test_report_and_resolve(self, client, auth_headers, role_headers):
        response = client.post('/api/rewards/missing-points', json={
            'order_id': '2400', 'order_date': '2026-09-15', 'expected_points': 400, 'reason': 'Not credited',
        }, headers=auth_headers)

        assert response.status_code == 201
        report_id = response.get_json()['report']['id']

        response = client.patch(
            f'/api/rewards/missing-points/{report_id}',
            json={'status': 'resolved', 'resolution_note': 'Credited'},
            headers=role_headers('support'),
        )
        assert response.get_json()['report']['status'] == 'resolved'

        reports = client.get('/api/rewards/missing-points', headers=auth_headers).get_json()
        assert reports['count'] == 1

    def test_missing_field(self, client, auth_headers):
        response = client.post('/api/rewards/missing-points', json={'order_id': '2401'}, headers=auth_headers)

        assert response.status_code == 400
        assert _error_code(response) == 'MISSING_FIELD'


# ==============================================================================
# History and company summary
# ==============================================================================

class TestHistory:
    """Tests for GET /api/rewards/history."""

    def test_history_pagination(self, client, auth_headers):
        service = RewardsService('user-api')
        for n in range(3):
            service.earn_points(100, f'Order #25{n}')

        data = client.get('/api/rewards/history?limit=2', headers=auth_headers).get_json()

        assert data['total'] == 3
        assert data['has_more'] is True
        assert data['entries'][0]['description'] == 'Order #252'

    def test_history_type_filter(self, client, auth_headers):
        service = RewardsService('user-api')
        service.earn_points(100, 'Order #2600')
        service.earn_points(50, 'Birthday', category='bonus')

        data = client.get('/api/rewards/history?type=earned_bonus', headers=auth_headers).get_json()

        assert [e['transaction_type'] for e in data['entries']] == ['earned_bonus']


class TestCompanySummary:
    """Tests for GET /api/rewards/company/<id>/summary."""

    def test_member_can_view(self, client):
        headers = {'X-User-Id': 'alice', 'X-Company-Id': 'co-sum'}
        RewardsService('alice', company_id='co-sum').earn_points(300, 'Order #2700')

        response = client.get('/api/rewards/company/co-sum/summary', headers=headers)

        assert response.status_code == 200
        assert response.get_json()['total_points_earned'] == 300

    def test_non_member_is_refused(self, client, auth_headers):
        response = client.get('/api/rewards/company/co-sum/summary', headers=auth_headers)

        assert response.status_code == 401
        assert _error_code(response) == 'AUTHORIZATION_ERROR'
