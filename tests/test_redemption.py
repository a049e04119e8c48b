"""
Tests for reward redemption.

Covers:
- Voucher and non-voucher redemption
- Insufficient points and unknown rewards (no ledger mutation)
- Redemption against a stale balance read (conditional debit)
- Swag stock
- The storefront end-to-end scenario
"""
import pytest
from datetime import timedelta
from sqlalchemy.orm.attributes import set_committed_value

from app.extensions import db
from app.models.rewards import (
    PointsLedgerEntry,
    RewardItem,
    VoucherRedemption,
    RedeemedReward,
    LedgerTransactionType,
    VoucherStatus,
    TierLevel,
)
from app.services import RewardsService, rewards_catalog
from app.utils.exceptions import (
    InsufficientPointsError,
    UnknownRewardError,
    RewardUnavailableError,
)


def _redemption_entries(account):
    return PointsLedgerEntry.query.filter(
        PointsLedgerEntry.account_id == account.id,
        PointsLedgerEntry.points_amount < 0,
    ).all()


class TestRedeemVoucher:
    """Tests for redeeming voucher rewards."""

    def test_voucher_redemption_issues_pending_voucher(self, rewards, catalog):
        rewards.earn_points(25000, 'Order #3001', order_id='3001')

        result = rewards.redeem_reward('voucher-500')

        assert result['success'] is True
        assert result['new_balance'] == 5000
        assert result['ledger_entry']['transaction_type'] == 'redeemed_voucher'
        assert result['ledger_entry']['points_amount'] == -20000

        voucher = result['voucher']
        assert voucher['status'] == 'pending'
        assert voucher['value'] == 500.0
        assert voucher['points_used'] == 20000
        assert voucher['confirmation_code'].startswith('EASI-')

    def test_voucher_expiry_defaults_to_thirty_days(self, rewards, catalog):
        rewards.earn_points(25000, 'Order #3002')
        rewards.redeem_reward('voucher-500')

        voucher = VoucherRedemption.query.filter_by(account_id=rewards.account.id).one()
        assert voucher.expiry_date - voucher.redeemed_date == timedelta(days=30)

    def test_voucher_expiry_uses_reward_validity_days(self, rewards, catalog):
        rewards.earn_points(15000, 'Order #3003')
        rewards.redeem_reward('voucher-150')

        voucher = VoucherRedemption.query.filter_by(account_id=rewards.account.id).one()
        assert voucher.expiry_date - voucher.redeemed_date == timedelta(days=14)

    def test_confirmation_code_uses_configured_prefix(self, app, rewards, catalog):
        app.config['VOUCHER_CODE_PREFIX'] = 'TEST'
        rewards.earn_points(15000, 'Order #3004')

        result = rewards.redeem_reward('voucher-150')

        assert result['voucher']['confirmation_code'].startswith('TEST-')

    def test_redeemed_reward_ids_are_recorded(self, rewards, catalog):
        rewards.earn_points(40000, 'Order #3005')
        rewards.redeem_reward('voucher-500')
        rewards.redeem_reward('voucher-150')

        assert rewards.account.redeemed_reward_ids == ['voucher-500', 'voucher-150']


class TestRedeemOtherRewards:
    """Bundle and swag rewards debit without issuing a voucher."""

    def test_bundle_redemption(self, rewards, catalog):
        rewards.earn_points(100000, 'Bulk order')

        result = rewards.redeem_reward('bundle-120')

        assert result['voucher'] is None
        assert result['ledger_entry']['transaction_type'] == LedgerTransactionType.REDEEMED_REWARD.value
        assert rewards.points == 0
        assert VoucherRedemption.query.count() == 0

    def test_swag_redemption_decrements_stock(self, rewards, catalog):
        rewards.earn_points(30000, 'Order #3006')

        rewards.redeem_reward('swag-bartool')

        assert db.session.get(RewardItem, 'swag-bartool').stock == 49

    def test_out_of_stock_swag_rejected_without_mutation(self, rewards, catalog):
        rewards.earn_points(5000, 'Order #3007')
        rewards.redeem_reward('swag-cap')
        balance = rewards.points

        with pytest.raises(RewardUnavailableError):
            rewards.redeem_reward('swag-cap')

        assert rewards.points == balance
        assert db.session.get(RewardItem, 'swag-cap').stock == 0
        assert RedeemedReward.query.filter_by(reward_id='swag-cap').count() == 1

    def test_failed_debit_returns_claimed_stock(self, rewards, catalog):
        rewards.earn_points(500, 'Small order')
        db.session.refresh(rewards.account)
        # Stale read lets the request past the pre-check
        set_committed_value(rewards.account, 'points', 5000)

        with pytest.raises(InsufficientPointsError):
            rewards.redeem_reward('swag-cap')

        assert db.session.get(RewardItem, 'swag-cap').stock == 1

    def test_swag_without_stock_is_unlimited(self, rewards, catalog):
        rewards_catalog.load_catalog([
            {'id': 'swag-stickers', 'title': 'Sticker Pack', 'points': 200, 'type': 'swag'},
        ])
        rewards.earn_points(1000, 'Order #3008')

        for _ in range(3):
            rewards.redeem_reward('swag-stickers')

        assert rewards.points == 400
        assert db.session.get(RewardItem, 'swag-stickers').stock is None
        assert RedeemedReward.query.filter_by(reward_id='swag-stickers').count() == 3


class TestRedemptionPreconditions:
    """Failures leave the ledger untouched."""

    def test_insufficient_points(self, rewards, catalog):
        rewards.earn_points(19999, 'Order #3008')

        with pytest.raises(InsufficientPointsError) as exc_info:
            rewards.redeem_reward('voucher-500')

        assert exc_info.value.current == 19999
        assert exc_info.value.required == 20000
        assert rewards.points == 19999
        assert _redemption_entries(rewards.account) == []

    def test_unknown_reward(self, rewards, catalog):
        rewards.earn_points(50000, 'Order #3009')

        with pytest.raises(UnknownRewardError):
            rewards.redeem_reward('voucher-9999')

        assert rewards.points == 50000

    def test_inactive_reward_is_unknown(self, rewards, catalog):
        from app.services import rewards_catalog

        rewards.earn_points(50000, 'Order #3010')
        rewards_catalog.load_catalog([{
            'id': 'voucher-1500', 'title': 'Retired', 'points': 50000,
            'type': 'voucher', 'value': 1500, 'isActive': False,
        }])

        with pytest.raises(UnknownRewardError):
            rewards.redeem_reward('voucher-1500')

    def test_try_redeem_returns_false(self, rewards, catalog):
        rewards.earn_points(100, 'Order #3011')

        assert rewards.try_redeem_reward('voucher-500') is False
        assert rewards.try_redeem_reward('no-such-reward') is False
        assert rewards.points == 100

    def test_try_redeem_returns_true(self, rewards, catalog):
        rewards.earn_points(20000, 'Order #3012')

        assert rewards.try_redeem_reward('voucher-500') is True
        assert rewards.points == 0


class TestConcurrentRedemption:
    """Two sessions redeeming against one balance."""

    def test_stale_balance_read_cannot_overdraw(self, app, catalog):
        first_device = RewardsService('user-race')
        first_device.earn_points(20000, 'Order #4001')
        account = first_device.account

        # Second device redeems and commits first
        RewardsService('user-race').redeem_reward('voucher-150')

        # First device still holds the balance it read before that
        db.session.refresh(account)
        set_committed_value(account, 'points', 20000)
        with pytest.raises(InsufficientPointsError):
            first_device.redeem_reward('voucher-150')

        db.session.refresh(account)
        assert account.points == 5000
        assert len(_redemption_entries(account)) == 1
        assert VoucherRedemption.query.filter_by(account_id=account.id).count() == 1
        assert first_device.verify_ledger()['ok'] is True

    def test_pooled_account_members_share_balance(self, app, catalog):
        alice = RewardsService('alice', company_id='co-1')
        bob = RewardsService('bob', company_id='co-1')

        alice.earn_points(20000, 'Company order')

        assert bob.try_redeem_reward('voucher-150') is True
        assert alice.try_redeem_reward('voucher-150') is False
        assert alice.points == bob.points == 5000

        entry = PointsLedgerEntry.query.filter_by(
            transaction_type=LedgerTransactionType.REDEEMED_VOUCHER.value
        ).one()
        assert entry.user_id == 'bob'
        assert entry.company_id == 'co-1'


class TestEndToEnd:
    """Storefront scenario: Silver member redeems a voucher, then orders."""

    def test_silver_member_redeems_then_earns(self, silver_rewards):
        assert silver_rewards.points == 125000
        assert silver_rewards.lifetime_points == 250000
        assert silver_rewards.yearly_spend == 125000
        assert silver_rewards.tier == TierLevel.SILVER.value

        result = silver_rewards.redeem_reward('voucher-500')

        assert silver_rewards.points == 105000
        assert result['ledger_entry']['transaction_type'] == 'redeemed_voucher'
        assert result['ledger_entry']['points_amount'] == -20000
        vouchers = silver_rewards.vouchers_by_status(VoucherStatus.PENDING.value)
        assert len(vouchers) == 1
        assert float(vouchers[0].value) == 500

        silver_rewards.earn_points(15000, 'Order #5001', order_id='5001')

        assert silver_rewards.points == 120000
        assert silver_rewards.lifetime_points == 265000
        assert silver_rewards.yearly_spend == 140000
        assert silver_rewards.tier == TierLevel.SILVER.value
        assert silver_rewards.points_to_next_tier == 60001
        assert silver_rewards.verify_ledger()['ok'] is True
