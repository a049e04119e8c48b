"""
Points Ledger for the rewards program.

The ledger is the only writer of an account's balance. Every change goes
through ``append_entry``, which:
- moves the cached balance with a single conditional UPDATE (so a debit
  can never take the balance below zero, even against a stale read)
- records an immutable PointsLedgerEntry whose ``points_balance_after``
  is the balance that UPDATE produced
- bumps ``lifetime_points`` and ``yearly_spend`` for every credit,
  then re-classifies the tier

Points and spend are coupled 1:1 whatever the earn category: crediting N
points adds N to rolling spend. Debits never reduce spend. The coupling
lives in ``SPEND_LINKED_TYPES``.

Usage:
    ledger = PointsLedgerService(account, actor_user_id='user-1')
    new_balance = ledger.earn_points(1500, 'Order #1042', order_id='1042')
"""

from datetime import datetime, timedelta
from typing import Optional, Dict, Any

from flask import current_app
from sqlalchemy import update, func, or_

from ..extensions import db
from ..models.rewards import (
    RewardsAccount,
    PointsLedgerEntry,
    PointsExpiry,
    LedgerTransactionType,
    SPEND_LINKED_TYPES,
    LEGACY_IMPORT_REFERENCE,
)
from ..utils.exceptions import InvalidAmountError, InsufficientPointsError, ValidationError
from . import tier_classifier


# earn_points category -> ledger transaction type
EARN_CATEGORIES = {
    'purchase': LedgerTransactionType.EARNED_PURCHASE,
    'bonus': LedgerTransactionType.EARNED_BONUS,
    'referral': LedgerTransactionType.EARNED_REFERRAL,
    'milestone': LedgerTransactionType.EARNED_MILESTONE,
    'adjustment': LedgerTransactionType.ADJUSTED,
    'restore': LedgerTransactionType.RESTORED,
}


def _require_positive(points) -> int:
    if isinstance(points, bool) or not isinstance(points, int) or points <= 0:
        raise InvalidAmountError(points)
    return points


class PointsLedgerService:
    """
    Append-only ledger bound to one rewards account.

    ``actor_user_id`` is recorded on every entry; for pooled company
    accounts it identifies which member of the company acted.
    """

    def __init__(self, account: RewardsAccount, actor_user_id: str = None):
        self.account = account
        self.actor_user_id = actor_user_id or account.user_id

    # ==================== Core Append ====================

    def append_entry(
        self,
        points_amount: int,
        transaction_type: LedgerTransactionType,
        description: str,
        reference_id: str = None,
        reference_type: str = None,
        require_balance: bool = False,
        now: datetime = None,
    ) -> PointsLedgerEntry:
        """
        Apply a signed balance change and append its ledger entry.

        Flushes but does not commit; callers own the transaction.

        Args:
            points_amount: Signed change (+ credit, - debit), never zero
            transaction_type: Ledger transaction type
            description: Human-readable description
            reference_id: Optional order / voucher / report id
            reference_type: Kind of reference
            require_balance: Refuse the debit if it would overdraw the account

        Raises:
            InsufficientPointsError: require_balance and the balance is too low
        """
        if points_amount == 0:
            raise InvalidAmountError(points_amount, 'Ledger entries cannot be zero points')

        now = now or datetime.utcnow()
        txn_type = LedgerTransactionType(transaction_type)
        account = self.account

        values = {
            'points': RewardsAccount.points + points_amount,
            'version': RewardsAccount.version + 1,
            'updated_at': now,
        }
        if points_amount > 0:
            values['lifetime_points'] = RewardsAccount.lifetime_points + points_amount
            if txn_type.value in SPEND_LINKED_TYPES:
                values['yearly_spend'] = RewardsAccount.yearly_spend + points_amount

        stmt = update(RewardsAccount).where(RewardsAccount.id == account.id)
        if require_balance and points_amount < 0:
            stmt = stmt.where(RewardsAccount.points >= -points_amount)

        result = db.session.execute(
            stmt.values(**values).execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            db.session.refresh(account)
            raise InsufficientPointsError(account.points, -points_amount)

        db.session.refresh(account)

        entry = PointsLedgerEntry(
            account=account,
            user_id=self.actor_user_id,
            company_id=account.company_id,
            points_amount=points_amount,
            transaction_type=txn_type.value,
            points_balance_after=account.points,
            description=description,
            reference_id=reference_id,
            reference_type=reference_type,
            created_at=now,
        )
        db.session.add(entry)

        if 'yearly_spend' in values:
            self.reclassify_tier()

        db.session.flush()
        return entry

    def reclassify_tier(self) -> str:
        """Re-evaluate the account tier from its current rolling spend."""
        tier = tier_classifier.classify(self.account.yearly_spend).value
        if tier != self.account.tier:
            current_app.logger.info(
                f"Tier change: account {self.account.id} {self.account.tier} -> {tier} "
                f"(spend {self.account.yearly_spend})"
            )
            self.account.tier = tier
        return tier

    # ==================== Credits ====================

    def credit(
        self,
        points: int,
        description: str,
        category: str = 'purchase',
        reference_id: str = None,
        reference_type: str = None,
        now: datetime = None,
    ) -> PointsLedgerEntry:
        """
        Append a credit and open its expiry batch. Flushes, does not commit.

        Raises:
            InvalidAmountError: points is not a positive integer
            ValidationError: unknown category
        """
        _require_positive(points)
        txn_type = EARN_CATEGORIES.get(category)
        if txn_type is None:
            raise ValidationError(
                f"category must be one of: {sorted(EARN_CATEGORIES)}", field='category'
            )

        now = now or datetime.utcnow()
        entry = self.append_entry(
            points_amount=points,
            transaction_type=txn_type,
            description=description,
            reference_id=reference_id,
            reference_type=reference_type,
            now=now,
        )
        self._open_expiry_batch(entry, now)
        return entry

    def earn_points(
        self,
        points: int,
        description: str,
        order_id: str = None,
        category: str = 'purchase',
    ) -> int:
        """
        Credit points to the account.

        Args:
            points: Positive integer amount
            description: Human-readable description
            order_id: Order the points were earned on
            category: purchase | bonus | referral | milestone | adjustment | restore

        Returns:
            New balance
        """
        try:
            entry = self.credit(
                points,
                description,
                category=category,
                reference_id=order_id,
                reference_type='order' if order_id else None,
            )
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise

        current_app.logger.info(
            f"Points earned: account {self.account.id} +{points} pts "
            f"({entry.transaction_type}). New balance: {entry.points_balance_after}"
        )
        return entry.points_balance_after

    # ==================== Debits ====================

    def debit(
        self,
        points: int,
        transaction_type: LedgerTransactionType,
        description: str,
        reference_id: str = None,
        reference_type: str = None,
        now: datetime = None,
    ) -> PointsLedgerEntry:
        """
        Append a debit that must not overdraw the account, consuming
        expiry batches oldest first. Flushes, does not commit.

        Raises:
            InvalidAmountError: points is not a positive integer
            InsufficientPointsError: balance is lower than points
        """
        _require_positive(points)
        entry = self.append_entry(
            points_amount=-points,
            transaction_type=transaction_type,
            description=description,
            reference_id=reference_id,
            reference_type=reference_type,
            require_balance=True,
            now=now,
        )
        self.consume_batches_fifo(points)
        return entry

    def adjust_points(self, points: int, reason: str, reference_id: str = None) -> int:
        """
        Support-issued correction, positive or negative.

        Negative adjustments cannot overdraw the account and never reduce
        lifetime points.

        Returns:
            New balance
        """
        if isinstance(points, bool) or not isinstance(points, int) or points == 0:
            raise InvalidAmountError(points, f"Adjustment must be a non-zero integer, got {points!r}")
        if not reason:
            raise ValidationError('reason is required', field='reason')

        try:
            if points > 0:
                entry = self.credit(
                    points, reason, category='adjustment',
                    reference_id=reference_id, reference_type='adjustment' if reference_id else None,
                )
            else:
                entry = self.debit(
                    -points, LedgerTransactionType.ADJUSTED, reason,
                    reference_id=reference_id, reference_type='adjustment' if reference_id else None,
                )
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise

        current_app.logger.info(
            f"Points adjusted: account {self.account.id} {points:+d} pts. "
            f"New balance: {entry.points_balance_after}. Reason: {reason}"
        )
        return entry.points_balance_after

    # ==================== Expiry Batches ====================

    def _open_expiry_batch(self, entry: PointsLedgerEntry, now: datetime) -> Optional[PointsExpiry]:
        expiry_days = current_app.config.get('POINTS_EXPIRY_DAYS', 365)
        if not expiry_days:
            return None

        batch = PointsExpiry(
            account_id=self.account.id,
            ledger_entry_id=entry.id,
            points=entry.points_amount,
            original_points=entry.points_amount,
            earned_date=now,
            expiry_date=now + timedelta(days=expiry_days),
            source=entry.description,
        )
        db.session.add(batch)
        db.session.flush()
        return batch

    def consume_batches_fifo(self, points: int) -> int:
        """
        Draw ``points`` from the account's expiry batches, soonest expiry first.

        Returns:
            Points actually drawn (less than requested when part of the
            balance has no batch, e.g. imported legacy points)
        """
        remaining = points
        batches = PointsExpiry.query.filter_by(
            account_id=self.account.id
        ).order_by(PointsExpiry.expiry_date.asc(), PointsExpiry.id.asc()).all()

        for batch in batches:
            if remaining <= 0:
                break
            take = min(batch.points, remaining)
            batch.points -= take
            remaining -= take
            if batch.points == 0:
                db.session.delete(batch)

        db.session.flush()
        return points - remaining

    # ==================== Rolling Spend ====================

    def recalculate_yearly_spend(self, now: datetime = None) -> Dict[str, Any]:
        """
        Recompute trailing-window spend from the ledger and re-classify.

        Credits older than ROLLING_SPEND_DAYS drop out, as does an imported
        spend baseline. The legacy import credit itself is not spend; its
        spend is the baseline. Skips the write when the account
        changed underneath (the next run picks it up).
        """
        now = now or datetime.utcnow()
        window_days = current_app.config.get('ROLLING_SPEND_DAYS', 365)
        window_start = now - timedelta(days=window_days)
        account = self.account

        ledger_spend = db.session.query(
            func.coalesce(func.sum(PointsLedgerEntry.points_amount), 0)
        ).filter(
            PointsLedgerEntry.account_id == account.id,
            PointsLedgerEntry.transaction_type.in_(SPEND_LINKED_TYPES),
            PointsLedgerEntry.points_amount > 0,
            PointsLedgerEntry.created_at >= window_start,
            or_(
                PointsLedgerEntry.reference_type.is_(None),
                PointsLedgerEntry.reference_type != LEGACY_IMPORT_REFERENCE,
            ),
        ).scalar()

        baseline = 0
        if account.spend_baseline and account.spend_baseline_at and account.spend_baseline_at >= window_start:
            baseline = account.spend_baseline

        spend = int(ledger_spend or 0) + baseline
        tier = tier_classifier.classify(spend).value
        previous = {'yearly_spend': account.yearly_spend, 'tier': account.tier}

        if spend == account.yearly_spend and tier == account.tier:
            return {'changed': False, **previous}

        result = db.session.execute(
            update(RewardsAccount)
            .where(RewardsAccount.id == account.id, RewardsAccount.version == account.version)
            .values(yearly_spend=spend, tier=tier, version=RewardsAccount.version + 1, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            db.session.rollback()
            current_app.logger.warning(
                f"Rolling spend refresh skipped for account {account.id}: concurrent update"
            )
            return {'changed': False, 'skipped': True, **previous}

        db.session.commit()
        db.session.refresh(account)

        if previous['tier'] != tier:
            current_app.logger.info(
                f"Tier change: account {account.id} {previous['tier']} -> {tier} "
                f"(rolling spend {previous['yearly_spend']} -> {spend})"
            )

        return {
            'changed': True,
            'yearly_spend': spend,
            'tier': tier,
            'previous_yearly_spend': previous['yearly_spend'],
            'previous_tier': previous['tier'],
        }
