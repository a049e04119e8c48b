"""
Redemption for the rewards program.

Turns points into a catalog reward:
1. Look up the reward (inactive or unknown ids fail fast)
2. Pre-check the balance for a quick, friendly failure
3. For swag with a stock count, claim one unit with a guarded UPDATE
4. Debit the ledger; the conditional balance UPDATE is the real guard,
   so two concurrent redemptions can never both succeed past the balance
5. Record the RedeemedReward and, for vouchers, issue a pending
   VoucherRedemption with its own confirmation code and expiry, plus its
   ``issued`` VoucherEvent

Everything happens in one transaction: any failure rolls back the stock
claim, the debit and the voucher together.
"""

from datetime import datetime, timedelta
from typing import Dict, Any

from flask import current_app
from sqlalchemy import update

from ..extensions import db
from ..models.rewards import (
    RewardsAccount,
    RewardItem,
    RewardItemType,
    RedeemedReward,
    VoucherRedemption,
    VoucherStatus,
    VoucherEventType,
    LedgerTransactionType,
)
from ..utils.exceptions import InsufficientPointsError, RewardUnavailableError, UnknownRewardError
from .points_ledger import PointsLedgerService
from .voucher_lifecycle import record_voucher_event
from . import rewards_catalog

CODE_ATTEMPTS = 5


class RedemptionService:
    """Redeems catalog rewards against one account."""

    def __init__(self, account: RewardsAccount, actor_user_id: str = None):
        self.account = account
        self.ledger = PointsLedgerService(account, actor_user_id=actor_user_id)

    def redeem_reward(self, reward_id: str, now: datetime = None) -> Dict[str, Any]:
        """
        Redeem a reward.

        Args:
            reward_id: Catalog id, e.g. ``voucher-500``
            now: Reference time (defaults to utcnow)

        Returns:
            Dict with the ledger entry, new balance and issued voucher (if any)

        Raises:
            UnknownRewardError: reward not in the active catalog
            InsufficientPointsError: balance below the reward cost
            RewardUnavailableError: swag out of stock
        """
        reward = rewards_catalog.get_reward(reward_id)
        now = now or datetime.utcnow()

        if self.account.points < reward.points:
            current_app.logger.info(
                f"Redemption refused: account {self.account.id} has {self.account.points} pts, "
                f"{reward.id} costs {reward.points}"
            )
            raise InsufficientPointsError(self.account.points, reward.points)

        is_voucher = reward.reward_type == RewardItemType.VOUCHER.value
        txn_type = LedgerTransactionType.REDEEMED_VOUCHER if is_voucher else LedgerTransactionType.REDEEMED_REWARD

        try:
            # Swag without a stock count is unlimited
            if reward.reward_type == RewardItemType.SWAG.value and reward.stock is not None:
                self._claim_stock(reward)

            entry = self.ledger.debit(
                reward.points,
                txn_type,
                f"Redeemed: {reward.title}",
                reference_id=reward.id,
                reference_type='reward',
                now=now,
            )

            db.session.add(RedeemedReward(
                account_id=self.account.id,
                reward_id=reward.id,
                ledger_entry_id=entry.id,
                redeemed_by=self.ledger.actor_user_id,
                created_at=now,
            ))

            voucher = None
            if is_voucher and reward.value is not None:
                voucher = self._issue_voucher(reward, entry.id, now)

            db.session.commit()
        except Exception:
            db.session.rollback()
            raise

        current_app.logger.info(
            f"Reward redeemed: account {self.account.id} {reward.id} -{reward.points} pts. "
            f"New balance: {entry.points_balance_after}"
        )

        return {
            'success': True,
            'reward': reward.to_dict(),
            'points_used': reward.points,
            'new_balance': entry.points_balance_after,
            'ledger_entry': entry.to_dict(),
            'voucher': voucher.to_dict() if voucher else None,
        }

    def try_redeem_reward(self, reward_id: str, now: datetime = None) -> bool:
        """
        Boolean form of ``redeem_reward``: False when the balance is too low
        or the reward is unknown. Other failures still raise.
        """
        try:
            self.redeem_reward(reward_id, now=now)
        except (InsufficientPointsError, UnknownRewardError) as e:
            current_app.logger.warning(f"Redemption of {reward_id!r} rejected: {e.message}")
            return False
        return True

    def _claim_stock(self, reward: RewardItem) -> None:
        claimed = db.session.execute(
            update(RewardItem)
            .where(RewardItem.id == reward.id, RewardItem.stock > 0)
            .values(stock=RewardItem.stock - 1)
            .execution_options(synchronize_session=False)
        ).rowcount
        if claimed != 1:
            raise RewardUnavailableError(reward.id)
        db.session.refresh(reward)

    def _issue_voucher(self, reward: RewardItem, ledger_entry_id: int, now: datetime) -> VoucherRedemption:
        validity_days = reward.validity_days or current_app.config.get('VOUCHER_VALIDITY_DAYS', 30)
        prefix = current_app.config.get('VOUCHER_CODE_PREFIX', 'EASI')

        # Unique constraint on confirmation_code backs this up
        for _ in range(CODE_ATTEMPTS):
            code = VoucherRedemption.generate_confirmation_code(prefix)
            if not VoucherRedemption.query.filter_by(confirmation_code=code).first():
                break

        voucher = VoucherRedemption(
            account_id=self.account.id,
            ledger_entry_id=ledger_entry_id,
            reward_id=reward.id,
            title=reward.title,
            value=reward.value,
            points_used=reward.points,
            status=VoucherStatus.PENDING.value,
            confirmation_code=code,
            redeemed_date=now,
            expiry_date=now + timedelta(days=validity_days),
        )
        db.session.add(voucher)
        db.session.flush()
        record_voucher_event(
            voucher, VoucherEventType.ISSUED, None, voucher.status,
            actor=self.ledger.actor_user_id, now=now,
        )
        return voucher
