"""
Audit Query Service for the rewards program.

Read-side projections over the append-only ledger: paginated history for
an account, per-user and per-company views, the company pool summary, a
reconciliation check of cached balances against the ledger and the
voucher event trail.

Nothing here writes.
"""

from typing import Dict, Any, List, Optional

from sqlalchemy import func, case

from ..extensions import db
from ..models.rewards import (
    RewardsAccount,
    PointsLedgerEntry,
    LedgerTransactionType,
    VoucherEvent,
)
from ..utils.exceptions import ValidationError

DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 200

REDEMPTION_TYPES = (
    LedgerTransactionType.REDEEMED_VOUCHER.value,
    LedgerTransactionType.REDEEMED_REWARD.value,
)


def _page_bounds(limit: Optional[int], offset: Optional[int]):
    limit = DEFAULT_PAGE_SIZE if limit is None else limit
    offset = 0 if offset is None else offset
    if limit <= 0 or offset < 0:
        raise ValidationError('limit must be positive and offset non-negative')
    return min(limit, MAX_PAGE_SIZE), offset


def _paginate(query, limit: Optional[int], offset: Optional[int], model=PointsLedgerEntry) -> Dict[str, Any]:
    limit, offset = _page_bounds(limit, offset)
    total = query.count()
    entries = query.order_by(
        model.created_at.desc(), model.id.desc()
    ).offset(offset).limit(limit).all()
    return {
        'entries': entries,
        'total': total,
        'limit': limit,
        'offset': offset,
        'has_more': offset + len(entries) < total,
    }


def _filter_types(query, transaction_types):
    if not transaction_types:
        return query
    if isinstance(transaction_types, str):
        transaction_types = [transaction_types]
    try:
        values = [LedgerTransactionType(t).value for t in transaction_types]
    except ValueError:
        raise ValidationError(
            f"type must be one of: {[t.value for t in LedgerTransactionType]}", field='type'
        )
    return query.filter(PointsLedgerEntry.transaction_type.in_(values))


class AuditQueryService:
    """Ledger read models."""

    def account_history(
        self,
        account: RewardsAccount,
        limit: int = None,
        offset: int = None,
        transaction_types=None,
    ) -> Dict[str, Any]:
        """Reverse-chronological ledger for one account."""
        query = _filter_types(
            PointsLedgerEntry.query.filter_by(account_id=account.id), transaction_types
        )
        return _paginate(query, limit, offset)

    def user_history(self, user_id: str, limit: int = None, offset: int = None) -> Dict[str, Any]:
        """Everything a user did, across their own and any pooled account."""
        query = PointsLedgerEntry.query.filter_by(user_id=user_id)
        return _paginate(query, limit, offset)

    def company_history(self, company_id: str, limit: int = None, offset: int = None) -> Dict[str, Any]:
        query = PointsLedgerEntry.query.filter_by(company_id=company_id)
        return _paginate(query, limit, offset)

    def company_summary(self, company_id: str) -> Dict[str, Any]:
        """
        Totals for a company pool and each member's contribution.

        Contributions are ranked by points earned, highest first.
        """
        account = RewardsAccount.query.filter_by(company_id=company_id).first()

        earned = func.coalesce(func.sum(case(
            (PointsLedgerEntry.points_amount > 0, PointsLedgerEntry.points_amount), else_=0
        )), 0)
        redeemed = func.coalesce(func.sum(case(
            (PointsLedgerEntry.transaction_type.in_(REDEMPTION_TYPES), -PointsLedgerEntry.points_amount),
            else_=0,
        )), 0)
        expired = func.coalesce(func.sum(case(
            (PointsLedgerEntry.transaction_type == LedgerTransactionType.EXPIRED.value,
             -PointsLedgerEntry.points_amount),
            else_=0,
        )), 0)

        totals = db.session.query(
            earned.label('earned'), redeemed.label('redeemed'), expired.label('expired')
        ).filter(PointsLedgerEntry.company_id == company_id).one()

        rows = db.session.query(
            PointsLedgerEntry.user_id,
            earned.label('earned'),
            redeemed.label('redeemed'),
            func.count(PointsLedgerEntry.id).label('transactions'),
        ).filter(
            PointsLedgerEntry.company_id == company_id
        ).group_by(PointsLedgerEntry.user_id).order_by(
            earned.desc(), PointsLedgerEntry.user_id.asc()
        ).all()

        contributions = [
            {
                'rank': rank,
                'user_id': row.user_id,
                'points_earned': int(row.earned),
                'points_redeemed': int(row.redeemed),
                'transactions': row.transactions,
            }
            for rank, row in enumerate(rows, start=1)
        ]

        return {
            'company_id': company_id,
            'total_points_earned': int(totals.earned),
            'total_points_redeemed': int(totals.redeemed),
            'total_points_expired': int(totals.expired),
            'current_balance': account.points if account else 0,
            'lifetime_points_earned': account.lifetime_points if account else 0,
            'tier_level': account.tier if account else 'Bronze',
            'contributions': contributions,
        }

    def voucher_events(
        self,
        voucher_id: int = None,
        account: RewardsAccount = None,
        limit: int = None,
        offset: int = None,
    ) -> Dict[str, Any]:
        """Voucher audit trail, newest first, for one voucher or a whole account."""
        if voucher_id is None and account is None:
            raise ValidationError('voucher_id or account is required')
        query = VoucherEvent.query
        if voucher_id is not None:
            query = query.filter_by(voucher_id=voucher_id)
        if account is not None:
            query = query.filter_by(account_id=account.id)
        return _paginate(query, limit, offset, model=VoucherEvent)

    def verify_ledger(self, account: RewardsAccount) -> Dict[str, Any]:
        """
        Check the running sum against every snapshot and the cached balance.

        Returns:
            Dict with ``ok``, the ledger sum, the cached balance and every
            entry whose ``points_balance_after`` breaks the running sum
        """
        running = 0
        mismatches: List[Dict[str, Any]] = []
        entries = PointsLedgerEntry.query.filter_by(account_id=account.id).order_by(
            PointsLedgerEntry.id.asc()
        ).yield_per(500)

        count = 0
        for entry in entries:
            running += entry.points_amount
            count += 1
            if entry.points_balance_after != running:
                mismatches.append({
                    'entry_id': entry.id,
                    'expected_balance': running,
                    'recorded_balance': entry.points_balance_after,
                })

        return {
            'account_id': account.id,
            'ok': not mismatches and running == account.points,
            'entries': count,
            'ledger_sum': running,
            'cached_balance': account.points,
            'mismatches': mismatches,
        }
