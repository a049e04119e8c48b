"""
Rewards Service: the per-session entry point to the rewards program.

One instance is built per request/session for the acting user, and owns
that user's account (or their company's pooled account). It wires the
ledger, redemption, voucher, expiry, missing-points and audit services
together. There is no module-level state; pass the instance to whatever
needs it.

Usage:
    rewards = RewardsService(user_id='u-1')
    rewards.earn_points(1500, 'Order #1042', order_id='1042')
    rewards.redeem_reward('voucher-500')
    rewards.points_history(limit=20)
"""

from datetime import datetime
from typing import Dict, Any, List, Optional

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models.rewards import (
    RewardsAccount,
    PointsLedgerEntry,
    PointsExpiry,
    VoucherRedemption,
    MissingPointsReport,
    LedgerTransactionType,
    TierLevel,
    LEGACY_IMPORT_REFERENCE,
)
from ..utils.exceptions import AuthorizationError, InvalidAmountError, ValidationError
from . import tier_classifier
from .points_ledger import PointsLedgerService
from .redemption import RedemptionService
from .voucher_lifecycle import VoucherLifecycleService
from .expiry_scheduler import ExpiryScheduler
from .missing_points import MissingPointsService
from .audit_query import AuditQueryService


def open_account(user_id: str = None, company_id: str = None) -> RewardsAccount:
    """
    Get the account for a user, or the pooled account for a company,
    creating it with a zero balance on first use.
    """
    if not user_id and not company_id:
        raise AuthorizationError('user_id or company_id is required to open an account')

    def _lookup():
        if company_id:
            return RewardsAccount.query.filter_by(company_id=company_id).first()
        return RewardsAccount.query.filter_by(user_id=user_id).first()

    account = _lookup()
    if account:
        return account

    account = RewardsAccount(
        user_id=None if company_id else user_id,
        company_id=company_id,
        points=0,
        tier=TierLevel.BRONZE.value,
        lifetime_points=0,
        yearly_spend=0,
        spend_baseline=0,
        version=0,
    )
    try:
        db.session.add(account)
        db.session.commit()
    except IntegrityError:
        # Opened concurrently by another session
        db.session.rollback()
        account = _lookup()
        if account is None:
            raise
        return account

    current_app.logger.info(
        f"Rewards account opened: {account.id} "
        f"({'company ' + company_id if company_id else 'user ' + user_id})"
    )
    return account


class RewardsService:
    """Rewards operations for one acting user."""

    def __init__(self, user_id: str, company_id: str = None):
        if not user_id:
            raise AuthorizationError('user_id is required')
        self.user_id = user_id
        self.company_id = company_id
        self._account = None

    # ==================== Account ====================

    @property
    def account(self) -> RewardsAccount:
        if self._account is None:
            self._account = open_account(user_id=self.user_id, company_id=self.company_id)
        return self._account

    @property
    def ledger(self) -> PointsLedgerService:
        return PointsLedgerService(self.account, actor_user_id=self.user_id)

    @property
    def points(self) -> int:
        return self.account.points

    @property
    def tier(self) -> str:
        return self.account.tier

    @property
    def lifetime_points(self) -> int:
        return self.account.lifetime_points

    @property
    def yearly_spend(self) -> int:
        return self.account.yearly_spend

    @property
    def points_to_next_tier(self) -> int:
        return tier_classifier.points_to_next_tier(self.account.yearly_spend)

    def summary(self) -> Dict[str, Any]:
        """Account snapshot with tier benefits and progress."""
        account = self.account
        upcoming = tier_classifier.next_tier(account.tier)
        data = account.to_dict()
        data.update({
            'points_to_next_tier': self.points_to_next_tier,
            'next_tier': upcoming.value if upcoming else None,
            'tier_progress': tier_classifier.tier_progress(account.yearly_spend),
            'benefits': tier_classifier.tier_benefits(account.tier),
            'pooled': account.is_pooled,
        })
        return data

    def import_legacy_balance(
        self,
        points: int,
        lifetime_points: int = None,
        yearly_spend: int = 0,
        description: str = 'Legacy balance import',
    ) -> RewardsAccount:
        """
        Seed a fresh account from a legacy snapshot.

        The balance lands as one ``adjusted`` entry so the ledger still sums
        to it. Lifetime points and rolling spend are carried as baselines;
        the spend baseline ages out of the rolling window like any purchase.

        Raises:
            ValidationError: the account already has ledger history
        """
        account = self.account
        if account.ledger_entries.first() is not None:
            raise ValidationError('legacy import is only allowed on an empty account', field='points')
        for name, value in (('points', points), ('yearly_spend', yearly_spend)):
            if isinstance(value, bool) or not isinstance(value, int) or value < 0:
                raise InvalidAmountError(value, f"{name} must be a non-negative integer, got {value!r}")
        lifetime_points = points if lifetime_points is None else lifetime_points
        if isinstance(lifetime_points, bool) or not isinstance(lifetime_points, int) or lifetime_points < points:
            raise InvalidAmountError(lifetime_points, 'lifetime_points must be an integer no lower than points')

        now = datetime.utcnow()
        try:
            if points:
                self.ledger.append_entry(
                    points_amount=points,
                    transaction_type=LedgerTransactionType.ADJUSTED,
                    description=description,
                    reference_type=LEGACY_IMPORT_REFERENCE,
                    now=now,
                )
            account.lifetime_points = lifetime_points
            account.yearly_spend = yearly_spend
            account.spend_baseline = yearly_spend
            account.spend_baseline_at = now
            account.tier = tier_classifier.classify(yearly_spend).value
            account.version = account.version + 1
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise

        current_app.logger.info(
            f"Legacy balance imported: account {account.id} points={points} "
            f"lifetime={lifetime_points} spend={yearly_spend} tier={account.tier}"
        )
        return account

    # ==================== Mutations ====================

    def earn_points(self, points: int, description: str, order_id: str = None, category: str = 'purchase') -> int:
        return self.ledger.earn_points(points, description, order_id=order_id, category=category)

    def adjust_points(self, points: int, reason: str, reference_id: str = None) -> int:
        return self.ledger.adjust_points(points, reason, reference_id=reference_id)

    def redeem_reward(self, reward_id: str) -> Dict[str, Any]:
        return RedemptionService(self.account, actor_user_id=self.user_id).redeem_reward(reward_id)

    def try_redeem_reward(self, reward_id: str) -> bool:
        return RedemptionService(self.account, actor_user_id=self.user_id).try_redeem_reward(reward_id)

    def update_voucher_status(
        self,
        redemption_id: int,
        new_status: str,
        used_date: Optional[datetime] = None,
        order_id: Optional[str] = None,
    ) -> VoucherRedemption:
        return VoucherLifecycleService(self.account, actor_user_id=self.user_id).update_voucher_status(
            redemption_id, new_status, used_date=used_date, order_id=order_id
        )

    def expire_points(self, points_expiry_id: int) -> Optional[PointsLedgerEntry]:
        return ExpiryScheduler(self.account, actor_user_id=self.user_id).expire_points(points_expiry_id)

    def report_missing_points(self, order_id: str, order_date, expected_points: int, reason: str) -> MissingPointsReport:
        return MissingPointsService(self.account, actor_user_id=self.user_id).report_missing_points(
            order_id, order_date, expected_points, reason
        )

    def update_missing_points_status(
        self, report_id: int, new_status: str, resolution_note: str = None
    ) -> MissingPointsReport:
        return MissingPointsService(self.account, actor_user_id=self.user_id).update_status(
            report_id, new_status, resolution_note=resolution_note
        )

    def recalculate_yearly_spend(self) -> Dict[str, Any]:
        return self.ledger.recalculate_yearly_spend()

    # ==================== Reads ====================

    def expiring_points(self, days_ahead: int = None) -> List[PointsExpiry]:
        return ExpiryScheduler(self.account, actor_user_id=self.user_id).get_expiring_points(days_ahead)

    def vouchers_by_status(self, status: str = None) -> List[VoucherRedemption]:
        return VoucherLifecycleService(self.account).vouchers_by_status(status)

    def available_vouchers(self) -> List[VoucherRedemption]:
        return VoucherLifecycleService(self.account).available_vouchers()

    def missing_points(self, status: str = None) -> List[MissingPointsReport]:
        return MissingPointsService(self.account).list_reports(status)

    def points_history(self, limit: int = None, offset: int = None, transaction_types=None) -> Dict[str, Any]:
        """Reverse-chronological ledger view."""
        return AuditQueryService().account_history(
            self.account, limit=limit, offset=offset, transaction_types=transaction_types
        )

    def voucher_events(self, redemption_id: int, limit: int = None, offset: int = None) -> Dict[str, Any]:
        """Audit trail of one of this account's vouchers, newest first."""
        voucher = VoucherLifecycleService(self.account).get_voucher(redemption_id)
        return AuditQueryService().voucher_events(voucher_id=voucher.id, limit=limit, offset=offset)

    def verify_ledger(self) -> Dict[str, Any]:
        return AuditQueryService().verify_ledger(self.account)
