"""
Loyalty rewards ledger models.

This module holds the persistent shape of the rewards program:
- RewardsAccount: one per user (or per company for pooled accounts),
  caching the balance, tier, lifetime points and rolling spend
- PointsLedgerEntry: append-only record of every balance change
- PointsExpiry: a credited batch of points that expires on its own schedule
- RewardItem: the redeemable catalog (voucher | bundle | swag)
- VoucherRedemption: an issued voucher and its lifecycle state
- RedeemedReward: every reward ever redeemed by an account
- MissingPointsReport: customer reports of points that never arrived
- VoucherEvent: append-only audit trail of voucher lifecycle events

Design notes:
- The account's ``points`` is a cache; the ledger sum is authoritative and
  ``AuditQueryService.verify_ledger`` checks the two agree
- Ledger rows refuse UPDATE and DELETE at the mapper level; corrections are
  new ``adjusted`` / ``restored`` entries
"""

from datetime import datetime
from enum import Enum
from typing import Dict, Any, List, Optional

from sqlalchemy import event

from ..extensions import db
from ..utils.exceptions import LedgerIntegrityError


# ==================== Enums ====================

class TierLevel(str, Enum):
    """Loyalty tiers, lowest first."""
    BRONZE = 'Bronze'
    SILVER = 'Silver'
    GOLD = 'Gold'


class LedgerTransactionType(str, Enum):
    """Types of ledger entries."""
    EARNED_PURCHASE = 'earned_purchase'     # Order credit (positive)
    EARNED_BONUS = 'earned_bonus'           # Promotional bonus (positive)
    EARNED_REFERRAL = 'earned_referral'     # Referral bonus (positive)
    EARNED_MILESTONE = 'earned_milestone'   # Milestone / achievement (positive)
    REDEEMED_VOUCHER = 'redeemed_voucher'   # Voucher reward (negative)
    REDEEMED_REWARD = 'redeemed_reward'     # Bundle / swag reward (negative)
    EXPIRED = 'expired'                     # Batch expiry (negative)
    ADJUSTED = 'adjusted'                   # Support correction (+/-)
    RESTORED = 'restored'                   # Missing points restored (positive)


# Every earn credit moves rolling spend by the same amount as the points
SPEND_LINKED_TYPES = frozenset({
    LedgerTransactionType.EARNED_PURCHASE.value,
    LedgerTransactionType.EARNED_BONUS.value,
    LedgerTransactionType.EARNED_REFERRAL.value,
    LedgerTransactionType.EARNED_MILESTONE.value,
    LedgerTransactionType.ADJUSTED.value,
    LedgerTransactionType.RESTORED.value,
})

# Ledger reference for a legacy balance import; its spend is carried as a baseline
LEGACY_IMPORT_REFERENCE = 'legacy_import'


class RewardItemType(str, Enum):
    """Variants of the rewards catalog."""
    VOUCHER = 'voucher'
    BUNDLE = 'bundle'
    SWAG = 'swag'


class VoucherStatus(str, Enum):
    """Voucher lifecycle states."""
    PENDING = 'pending'       # Redeemed, awaiting fulfilment acknowledgement
    CONFIRMED = 'confirmed'   # Usable against an order
    USED = 'used'             # Consumed in an order (terminal)
    EXPIRED = 'expired'       # Lapsed before use (terminal)


class VoucherEventType(str, Enum):
    """Voucher audit events."""
    ISSUED = 'issued'
    CONFIRMED = 'confirmed'
    USED = 'used'
    EXPIRED = 'expired'


class MissingPointsStatus(str, Enum):
    """Missing points report states."""
    REPORTED = 'reported'
    INVESTIGATING = 'investigating'
    RESOLVED = 'resolved'
    REJECTED = 'rejected'


def _iso(value) -> Optional[str]:
    return value.isoformat() if value else None


# ==================== Models ====================

class RewardsAccount(db.Model):
    """
    Rewards account for a user, or a shared pool for a company.

    Exactly one of ``user_id`` / ``company_id`` identifies the owner:
    individual accounts set ``user_id``; pooled company accounts set
    ``company_id`` and leave ``user_id`` empty.
    """
    __tablename__ = 'rewards_accounts'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.String(64), unique=True)
    company_id = db.Column(db.String(64), unique=True)

    # Cached balances (reconcile to ledger)
    points = db.Column(db.Integer, default=0, nullable=False)
    tier = db.Column(db.String(10), default=TierLevel.BRONZE.value, nullable=False)
    lifetime_points = db.Column(db.Integer, default=0, nullable=False)
    yearly_spend = db.Column(db.Integer, default=0, nullable=False)

    # Spend carried over from a legacy snapshot, counted while inside the window
    spend_baseline = db.Column(db.Integer, default=0, nullable=False)
    spend_baseline_at = db.Column(db.DateTime)

    # Bumped on every balance change
    version = db.Column(db.Integer, default=0, nullable=False)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow)

    # Relationships
    ledger_entries = db.relationship(
        'PointsLedgerEntry', back_populates='account', lazy='dynamic',
        order_by='PointsLedgerEntry.id'
    )
    expiry_batches = db.relationship(
        'PointsExpiry', back_populates='account', lazy='dynamic',
        order_by='PointsExpiry.expiry_date'
    )
    voucher_redemptions = db.relationship(
        'VoucherRedemption', back_populates='account', lazy='dynamic',
        order_by='VoucherRedemption.id'
    )
    redeemed_rewards = db.relationship(
        'RedeemedReward', back_populates='account', lazy='dynamic',
        order_by='RedeemedReward.id'
    )
    missing_points = db.relationship(
        'MissingPointsReport', back_populates='account', lazy='dynamic',
        order_by='MissingPointsReport.id'
    )

    __table_args__ = (
        db.CheckConstraint(
            'user_id IS NOT NULL OR company_id IS NOT NULL',
            name='owner'
        ),
    )

    def __repr__(self):
        owner = f'company={self.company_id}' if self.company_id else f'user={self.user_id}'
        return f'<RewardsAccount {owner} pts={self.points} tier={self.tier}>'

    @property
    def is_pooled(self) -> bool:
        return self.company_id is not None

    @property
    def redeemed_reward_ids(self) -> List[str]:
        return [r.reward_id for r in self.redeemed_rewards]

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to dictionary for API responses."""
        return {
            'id': self.id,
            'user_id': self.user_id,
            'company_id': self.company_id,
            'points': self.points,
            'tier': self.tier,
            'lifetime_points': self.lifetime_points,
            'yearly_spend': self.yearly_spend,
            'redeemed_rewards': self.redeemed_reward_ids,
            'created_at': _iso(self.created_at),
            'updated_at': _iso(self.updated_at),
        }


class PointsLedgerEntry(db.Model):
    """
    One immutable, timestamped points balance change.

    ``points_balance_after`` is the account balance immediately after this
    entry, so for an account ordered by id each snapshot equals the running
    sum of ``points_amount``.
    """
    __tablename__ = 'points_ledger_entries'

    id = db.Column(db.Integer, primary_key=True)
    account_id = db.Column(db.Integer, db.ForeignKey('rewards_accounts.id'), nullable=False)

    # Who acted (pooled accounts still record the individual user)
    user_id = db.Column(db.String(64))
    company_id = db.Column(db.String(64))

    points_amount = db.Column(db.Integer, nullable=False)  # + credit, - debit
    transaction_type = db.Column(db.String(30), nullable=False)  # LedgerTransactionType
    points_balance_after = db.Column(db.Integer, nullable=False)
    description = db.Column(db.String(500), nullable=False)

    # Optional link to an order, voucher or report
    reference_id = db.Column(db.String(100))
    reference_type = db.Column(db.String(50))  # order, voucher, reward, missing_points, expiry

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    account = db.relationship('RewardsAccount', back_populates='ledger_entries')

    __table_args__ = (
        db.Index('ix_points_ledger_account_created', 'account_id', 'created_at'),
        db.Index('ix_points_ledger_user_created', 'user_id', 'created_at'),
        db.Index('ix_points_ledger_company_created', 'company_id', 'created_at'),
        db.Index('ix_points_ledger_reference', 'reference_type', 'reference_id'),
    )

    def __repr__(self):
        return f'<PointsLedgerEntry {self.id}: {self.points_amount:+d} pts ({self.transaction_type})>'

    @property
    def is_credit(self) -> bool:
        return self.points_amount > 0

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to dictionary for API responses."""
        return {
            'id': self.id,
            'timestamp': _iso(self.created_at),
            'points_amount': self.points_amount,
            'transaction_type': self.transaction_type,
            'points_balance_after': self.points_balance_after,
            'description': self.description,
            'reference_id': self.reference_id,
            'reference_type': self.reference_type,
            'user_id': self.user_id,
            'company_id': self.company_id,
        }


@event.listens_for(PointsLedgerEntry, 'before_update')
def _refuse_ledger_update(mapper, connection, target):
    raise LedgerIntegrityError(f'Ledger entry {target.id} cannot be modified')


@event.listens_for(PointsLedgerEntry, 'before_delete')
def _refuse_ledger_delete(mapper, connection, target):
    raise LedgerIntegrityError(f'Ledger entry {target.id} cannot be deleted')


class PointsExpiry(db.Model):
    """
    A still-unexpired batch of credited points.

    Each credit spawns at most one batch. Debits consume batches oldest
    first, so ``points`` is what is left of the grant; the row is deleted
    when fully consumed or expired.
    """
    __tablename__ = 'points_expiry_batches'

    id = db.Column(db.Integer, primary_key=True)
    account_id = db.Column(db.Integer, db.ForeignKey('rewards_accounts.id'), nullable=False)
    ledger_entry_id = db.Column(db.Integer, db.ForeignKey('points_ledger_entries.id'))

    points = db.Column(db.Integer, nullable=False)
    original_points = db.Column(db.Integer, nullable=False)
    earned_date = db.Column(db.DateTime, nullable=False)
    expiry_date = db.Column(db.DateTime, nullable=False)
    source = db.Column(db.String(500), nullable=False)

    account = db.relationship('RewardsAccount', back_populates='expiry_batches')

    __table_args__ = (
        db.Index('ix_points_expiry_account_date', 'account_id', 'expiry_date'),
        db.Index('ix_points_expiry_date', 'expiry_date'),
    )

    def __repr__(self):
        return f'<PointsExpiry {self.id}: {self.points} pts expires {self.expiry_date:%Y-%m-%d}>'

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to dictionary for API responses."""
        return {
            'id': self.id,
            'points': self.points,
            'earned_date': _iso(self.earned_date),
            'expiry_date': _iso(self.expiry_date),
            'source': self.source,
        }


class RewardItem(db.Model):
    """
    Redeemable rewards catalog entry.

    Closed union over ``reward_type``:
    - voucher: requires ``value``; ``validity_days`` optional
    - bundle: no value, no stock
    - swag: optional ``stock``; None means unlimited

    Shape is enforced by ``rewards_catalog.validate_reward_entry`` when the
    catalog is loaded.
    """
    __tablename__ = 'reward_items'

    id = db.Column(db.String(64), primary_key=True)  # e.g. voucher-500
    title = db.Column(db.String(200), nullable=False)
    description = db.Column(db.String(1000), default='')
    points = db.Column(db.Integer, nullable=False)
    reward_type = db.Column(db.String(20), nullable=False)  # RewardItemType

    value = db.Column(db.Numeric(10, 2))  # voucher face value
    stock = db.Column(db.Integer)  # swag only
    validity_days = db.Column(db.Integer)  # voucher only
    image_url = db.Column(db.String(500))

    is_active = db.Column(db.Boolean, default=True, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __repr__(self):
        return f'<RewardItem {self.id}: {self.points} pts>'

    def to_dict(self) -> Dict[str, Any]:
        """Serialize using the catalog wire shape."""
        data = {
            'id': self.id,
            'title': self.title,
            'description': self.description or '',
            'points': self.points,
            'type': self.reward_type,
        }
        if self.reward_type == RewardItemType.VOUCHER.value:
            data['value'] = float(self.value) if self.value is not None else None
            data['validityDays'] = self.validity_days
        elif self.reward_type == RewardItemType.SWAG.value:
            data['stock'] = self.stock
        if self.image_url:
            data['imageUrl'] = self.image_url
        return data


class VoucherRedemption(db.Model):
    """
    A voucher issued by redeeming a voucher-type reward.

    Lifecycle: pending -> confirmed -> used, or pending/confirmed -> expired.
    ``used`` and ``expired`` are terminal. Rows are never deleted.
    """
    __tablename__ = 'voucher_redemptions'

    id = db.Column(db.Integer, primary_key=True)
    account_id = db.Column(db.Integer, db.ForeignKey('rewards_accounts.id'), nullable=False)
    ledger_entry_id = db.Column(db.Integer, db.ForeignKey('points_ledger_entries.id'))

    # Snapshot of the reward at redemption time
    reward_id = db.Column(db.String(64), nullable=False)
    title = db.Column(db.String(200), nullable=False)
    value = db.Column(db.Numeric(10, 2), nullable=False)
    points_used = db.Column(db.Integer, nullable=False)

    status = db.Column(db.String(20), default=VoucherStatus.PENDING.value, nullable=False)
    confirmation_code = db.Column(db.String(50), unique=True, nullable=False)

    redeemed_date = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    expiry_date = db.Column(db.DateTime, nullable=False)
    confirmed_date = db.Column(db.DateTime)
    used_date = db.Column(db.DateTime)
    order_id = db.Column(db.String(100))  # Order the voucher was used on

    account = db.relationship('RewardsAccount', back_populates='voucher_redemptions')
    events = db.relationship(
        'VoucherEvent', back_populates='voucher', lazy='dynamic',
        order_by='VoucherEvent.id'
    )

    __table_args__ = (
        db.Index('ix_voucher_redemptions_account_status', 'account_id', 'status'),
        db.Index('ix_voucher_redemptions_status_expiry', 'status', 'expiry_date'),
    )

    def __repr__(self):
        return f'<VoucherRedemption {self.confirmation_code}: {self.status}>'

    @property
    def is_terminal(self) -> bool:
        return self.status in (VoucherStatus.USED.value, VoucherStatus.EXPIRED.value)

    def is_overdue(self, now: datetime = None) -> bool:
        return (now or datetime.utcnow()) > self.expiry_date

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to dictionary for API responses."""
        return {
            'id': self.id,
            'reward_id': self.reward_id,
            'title': self.title,
            'value': float(self.value),
            'points_used': self.points_used,
            'status': self.status,
            'redeemed_date': _iso(self.redeemed_date),
            'expiry_date': _iso(self.expiry_date),
            'used_date': _iso(self.used_date),
            'order_id': self.order_id,
            'confirmation_code': self.confirmation_code,
        }

    @staticmethod
    def generate_confirmation_code(prefix: str = 'EASI') -> str:
        """Generate a voucher confirmation code."""
        import secrets
        import string
        chars = string.ascii_uppercase + string.digits
        random_part = ''.join(secrets.choice(chars) for _ in range(8))
        return f'{prefix}-{random_part}'


class VoucherEvent(db.Model):
    """
    Append-only audit record of one voucher lifecycle event.

    Written in the same transaction as the change it records, so every
    issue, transition and sweep expiry leaves exactly one row.
    """
    __tablename__ = 'voucher_events'

    id = db.Column(db.Integer, primary_key=True)
    voucher_id = db.Column(db.Integer, db.ForeignKey('voucher_redemptions.id'), nullable=False)
    account_id = db.Column(db.Integer, db.ForeignKey('rewards_accounts.id'), nullable=False)

    event_type = db.Column(db.String(20), nullable=False)  # VoucherEventType
    previous_status = db.Column(db.String(20))  # None when issued
    new_status = db.Column(db.String(20), nullable=False)
    actor = db.Column(db.String(64))  # acting user, or 'system' for sweeps
    order_id = db.Column(db.String(100))

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    voucher = db.relationship('VoucherRedemption', back_populates='events')

    __table_args__ = (
        db.Index('ix_voucher_events_voucher_created', 'voucher_id', 'created_at'),
        db.Index('ix_voucher_events_account_created', 'account_id', 'created_at'),
    )

    def __repr__(self):
        return f'<VoucherEvent {self.voucher_id}: {self.event_type} {self.previous_status} -> {self.new_status}>'

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to dictionary for API responses."""
        return {
            'id': self.id,
            'voucher_id': self.voucher_id,
            'event_type': self.event_type,
            'previous_status': self.previous_status,
            'new_status': self.new_status,
            'actor': self.actor,
            'order_id': self.order_id,
            'timestamp': _iso(self.created_at),
        }


@event.listens_for(VoucherEvent, 'before_update')
def _refuse_voucher_event_update(mapper, connection, target):
    raise LedgerIntegrityError(f'Voucher event {target.id} cannot be modified')


@event.listens_for(VoucherEvent, 'before_delete')
def _refuse_voucher_event_delete(mapper, connection, target):
    raise LedgerIntegrityError(f'Voucher event {target.id} cannot be deleted')


class RedeemedReward(db.Model):
    """Every reward an account has redeemed, voucher or not."""
    __tablename__ = 'redeemed_rewards'

    id = db.Column(db.Integer, primary_key=True)
    account_id = db.Column(db.Integer, db.ForeignKey('rewards_accounts.id'), nullable=False)
    reward_id = db.Column(db.String(64), nullable=False)
    ledger_entry_id = db.Column(db.Integer, db.ForeignKey('points_ledger_entries.id'))
    redeemed_by = db.Column(db.String(64))
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    account = db.relationship('RewardsAccount', back_populates='redeemed_rewards')

    def __repr__(self):
        return f'<RedeemedReward {self.reward_id} account={self.account_id}>'


class MissingPointsReport(db.Model):
    """
    Customer report of points missing for an order.

    Filing or resolving a report never touches the ledger; a support agent
    credits points separately with a ``restored`` or ``adjusted`` entry.
    """
    __tablename__ = 'missing_points_reports'

    id = db.Column(db.Integer, primary_key=True)
    account_id = db.Column(db.Integer, db.ForeignKey('rewards_accounts.id'), nullable=False)
    user_id = db.Column(db.String(64))

    order_id = db.Column(db.String(100), nullable=False)
    order_date = db.Column(db.Date, nullable=False)
    expected_points = db.Column(db.Integer, nullable=False)
    reason = db.Column(db.String(1000), nullable=False)

    status = db.Column(db.String(20), default=MissingPointsStatus.REPORTED.value, nullable=False)
    reported_date = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    resolved_date = db.Column(db.DateTime)
    resolution_note = db.Column(db.String(1000))

    account = db.relationship('RewardsAccount', back_populates='missing_points')

    __table_args__ = (
        db.Index('ix_missing_points_account_status', 'account_id', 'status'),
    )

    def __repr__(self):
        return f'<MissingPointsReport {self.id}: order {self.order_id} ({self.status})>'

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to dictionary for API responses."""
        return {
            'id': self.id,
            'order_id': self.order_id,
            'order_date': _iso(self.order_date),
            'expected_points': self.expected_points,
            'reason': self.reason,
            'status': self.status,
            'reported_date': _iso(self.reported_date),
            'resolved_date': _iso(self.resolved_date),
            'resolution_note': self.resolution_note,
        }
