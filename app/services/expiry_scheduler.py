"""
Expiry Scheduler for the rewards program.

Expires credited point batches and lapsed vouchers.

- ``expire_points`` is idempotent: the batch row is claimed with a
  conditional DELETE, so a second call (or a concurrent sweep) finds
  nothing and appends nothing
- sweeps always re-query due batches at run time, never a cached list
- both sweeps are safe to run alongside redemptions; a batch partly spent
  between read and claim is re-read and retried
"""

from datetime import datetime, timedelta
from typing import Dict, Any, List, Optional

from flask import current_app
from sqlalchemy import delete, update

from ..extensions import db
from ..models.rewards import (
    RewardsAccount,
    PointsExpiry,
    VoucherRedemption,
    VoucherStatus,
    VoucherEventType,
    LedgerTransactionType,
)
from .points_ledger import PointsLedgerService
from .voucher_lifecycle import record_voucher_event

CLAIM_ATTEMPTS = 3


class ExpiryScheduler:
    """Point batch expiry for one account."""

    def __init__(self, account: RewardsAccount, actor_user_id: str = None):
        self.account = account
        self.ledger = PointsLedgerService(account, actor_user_id=actor_user_id)

    def get_expiring_points(self, days_ahead: int = None, now: datetime = None) -> List[PointsExpiry]:
        """
        Batches expiring within ``days_ahead`` days (already-due included),
        soonest first.
        """
        if days_ahead is None:
            days_ahead = current_app.config.get('POINTS_EXPIRY_WARNING_DAYS', 30)
        horizon = (now or datetime.utcnow()) + timedelta(days=days_ahead)

        return PointsExpiry.query.filter(
            PointsExpiry.account_id == self.account.id,
            PointsExpiry.expiry_date <= horizon,
        ).order_by(PointsExpiry.expiry_date.asc(), PointsExpiry.id.asc()).all()

    def expire_points(self, points_expiry_id: int, now: datetime = None):
        """
        Expire one batch: append an ``expired`` debit and drop the batch.

        No-op (returns None) when the batch is already gone.

        Returns:
            The expiry PointsLedgerEntry, or None
        """
        for _ in range(CLAIM_ATTEMPTS):
            batch = db.session.get(PointsExpiry, points_expiry_id)
            if batch is None or batch.account_id != self.account.id:
                current_app.logger.debug(
                    f"Expiry batch {points_expiry_id} not found on account {self.account.id}; nothing to expire"
                )
                return None

            observed_points = batch.points
            source = batch.source

            claimed = db.session.execute(
                delete(PointsExpiry).where(
                    PointsExpiry.id == batch.id,
                    PointsExpiry.points == observed_points,
                )
            ).rowcount

            if claimed == 1:
                break

            # Batch was drawn down or removed since we read it
            db.session.expire(batch)
        else:
            current_app.logger.warning(
                f"Could not claim expiry batch {points_expiry_id} after {CLAIM_ATTEMPTS} attempts"
            )
            return None

        try:
            entry = self.ledger.append_entry(
                points_amount=-observed_points,
                transaction_type=LedgerTransactionType.EXPIRED,
                description=f"Points expired: {source}",
                reference_id=str(points_expiry_id),
                reference_type='expiry',
                now=now,
            )
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise

        current_app.logger.info(
            f"Points expired: account {self.account.id} -{observed_points} pts "
            f"(batch {points_expiry_id}). New balance: {entry.points_balance_after}"
        )
        return entry


# ==================== Sweeps ====================

def expire_due_points(now: datetime = None, dry_run: bool = False, batch_size: int = 500) -> Dict[str, Any]:
    """
    Expire every batch whose expiry date has passed, across all accounts.

    Args:
        now: Reference time (defaults to utcnow)
        dry_run: Report what would expire without writing
        batch_size: Max batches handled per run

    Returns:
        Summary dict
    """
    now = now or datetime.utcnow()
    due = db.session.query(PointsExpiry.id, PointsExpiry.account_id, PointsExpiry.points).filter(
        PointsExpiry.expiry_date <= now
    ).order_by(PointsExpiry.expiry_date.asc(), PointsExpiry.id.asc()).limit(batch_size).all()

    results = {
        'due': len(due),
        'expired_batches': 0,
        'expired_points': 0,
        'accounts': set(),
        'errors': [],
        'dry_run': dry_run,
        'run_date': now.isoformat(),
    }

    if dry_run:
        results['expired_points'] = sum(row.points for row in due)
        results['accounts'] = len({row.account_id for row in due})
        return results

    accounts: Dict[int, ExpiryScheduler] = {}
    for row in due:
        scheduler = accounts.get(row.account_id)
        if scheduler is None:
            account = db.session.get(RewardsAccount, row.account_id)
            scheduler = ExpiryScheduler(account, actor_user_id='system')
            accounts[row.account_id] = scheduler
        try:
            entry = scheduler.expire_points(row.id, now=now)
        except Exception as e:
            current_app.logger.error(f"Failed to expire batch {row.id} for account {row.account_id}: {e}")
            results['errors'].append({'batch_id': row.id, 'account_id': row.account_id, 'error': str(e)})
            continue
        if entry is not None:
            results['expired_batches'] += 1
            results['expired_points'] += -entry.points_amount
            results['accounts'].add(row.account_id)

    results['accounts'] = len(results['accounts'])
    current_app.logger.info(
        f"Points expiry sweep: {results['expired_batches']} batches, "
        f"{results['expired_points']} pts across {results['accounts']} accounts"
    )
    return results


def expire_overdue_vouchers(now: datetime = None, account_id: Optional[int] = None) -> Dict[str, Any]:
    """
    Move pending/confirmed vouchers past their expiry date to ``expired``.

    Each voucher is moved with an UPDATE guarded on the status it was read
    with, so a voucher used concurrently is left alone. Every voucher moved
    gets an ``expired`` VoucherEvent in the same transaction.
    """
    now = now or datetime.utcnow()
    query = VoucherRedemption.query.filter(
        VoucherRedemption.status.in_([VoucherStatus.PENDING.value, VoucherStatus.CONFIRMED.value]),
        VoucherRedemption.expiry_date < now,
    )
    if account_id is not None:
        query = query.filter(VoucherRedemption.account_id == account_id)

    expired = 0
    try:
        for voucher in query.order_by(VoucherRedemption.id.asc()).all():
            previous = voucher.status
            changed = db.session.execute(
                update(VoucherRedemption)
                .where(VoucherRedemption.id == voucher.id, VoucherRedemption.status == previous)
                .values(status=VoucherStatus.EXPIRED.value)
                .execution_options(synchronize_session=False)
            ).rowcount
            if changed != 1:
                continue
            record_voucher_event(
                voucher, VoucherEventType.EXPIRED, previous, VoucherStatus.EXPIRED.value,
                actor='system', now=now,
            )
            expired += 1
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    if expired:
        current_app.logger.info(f"Voucher expiry sweep: {expired} vouchers expired")
    return {'expired': expired, 'run_date': now.isoformat()}


def refresh_rolling_spend(now: datetime = None) -> Dict[str, Any]:
    """Recompute rolling spend and tier for every account with spend."""
    now = now or datetime.utcnow()
    account_ids = [
        row.id for row in db.session.query(RewardsAccount.id).filter(
            (RewardsAccount.yearly_spend > 0) | (RewardsAccount.spend_baseline > 0)
        ).all()
    ]

    results = {'processed': 0, 'changed': 0, 'tier_changes': 0, 'skipped': 0}
    for account_id in account_ids:
        account = db.session.get(RewardsAccount, account_id)
        outcome = PointsLedgerService(account, actor_user_id='system').recalculate_yearly_spend(now=now)
        results['processed'] += 1
        if outcome.get('skipped'):
            results['skipped'] += 1
        elif outcome['changed']:
            results['changed'] += 1
            if outcome['tier'] != outcome['previous_tier']:
                results['tier_changes'] += 1

    current_app.logger.info(
        f"Rolling spend refresh: {results['processed']} accounts, "
        f"{results['changed']} changed, {results['tier_changes']} tier changes"
    )
    return results
