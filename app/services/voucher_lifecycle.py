"""
Voucher Lifecycle for the rewards program.

State machine:

    pending ──> confirmed ──> used
       │            │
       └──> expired <┘

``used`` and ``expired`` are terminal. A voucher cannot become ``used``
without the order it was used on, nor once it is past its expiry date.
Rejected transitions leave the record untouched and are logged at ERROR:
they indicate an integration bug, not a customer mistake. Every accepted
change appends a VoucherEvent in the same transaction.
"""

from datetime import datetime
from typing import List, Optional

from flask import current_app
from sqlalchemy import update

from ..extensions import db
from ..models.rewards import RewardsAccount, VoucherRedemption, VoucherStatus, VoucherEvent, VoucherEventType
from ..utils.exceptions import InvalidTransitionError, UnknownVoucherError, ValidationError


ALLOWED_TRANSITIONS = {
    VoucherStatus.PENDING.value: {VoucherStatus.CONFIRMED.value, VoucherStatus.EXPIRED.value},
    VoucherStatus.CONFIRMED.value: {VoucherStatus.USED.value, VoucherStatus.EXPIRED.value},
    VoucherStatus.USED.value: set(),
    VoucherStatus.EXPIRED.value: set(),
}

# Target status -> audit event
TRANSITION_EVENTS = {
    VoucherStatus.CONFIRMED.value: VoucherEventType.CONFIRMED,
    VoucherStatus.USED.value: VoucherEventType.USED,
    VoucherStatus.EXPIRED.value: VoucherEventType.EXPIRED,
}


def record_voucher_event(
    voucher: VoucherRedemption,
    event_type: VoucherEventType,
    previous_status: Optional[str],
    new_status: str,
    actor: str = None,
    order_id: str = None,
    now: datetime = None,
) -> VoucherEvent:
    """Add a voucher audit row to the session; the caller commits."""
    voucher_event = VoucherEvent(
        voucher_id=voucher.id,
        account_id=voucher.account_id,
        event_type=VoucherEventType(event_type).value,
        previous_status=previous_status,
        new_status=new_status,
        actor=actor,
        order_id=order_id,
        created_at=now or datetime.utcnow(),
    )
    db.session.add(voucher_event)
    return voucher_event


class VoucherLifecycleService:
    """Voucher state transitions and lookups for one account."""

    def __init__(self, account: RewardsAccount, actor_user_id: str = None):
        self.account = account
        self.actor_user_id = actor_user_id or account.user_id

    def get_voucher(self, redemption_id: int) -> VoucherRedemption:
        voucher = VoucherRedemption.query.filter_by(
            id=redemption_id, account_id=self.account.id
        ).first() if redemption_id is not None else None
        if not voucher:
            raise UnknownVoucherError(redemption_id)
        return voucher

    def update_voucher_status(
        self,
        redemption_id: int,
        new_status: str,
        used_date: Optional[datetime] = None,
        order_id: Optional[str] = None,
        now: datetime = None,
    ) -> VoucherRedemption:
        """
        Move a voucher to ``new_status``.

        Args:
            redemption_id: VoucherRedemption id on this account
            new_status: confirmed | used | expired
            used_date: When it was used (defaults to now; ``used`` only)
            order_id: Order it was used on (required for ``used``)

        Raises:
            UnknownVoucherError: voucher not on this account
            ValidationError: unknown status
            InvalidTransitionError: transition not allowed
        """
        now = now or datetime.utcnow()
        voucher = self.get_voucher(redemption_id)

        try:
            target = VoucherStatus(new_status).value
        except ValueError:
            raise ValidationError(
                f"status must be one of: {[s.value for s in VoucherStatus]}", field='status'
            )

        current = voucher.status
        allowed = target in ALLOWED_TRANSITIONS[current]
        reason = 'terminal state' if voucher.is_terminal else None
        if allowed and target == VoucherStatus.USED.value:
            if not order_id:
                allowed, reason = False, 'order_id is required to mark a voucher used'
            elif voucher.is_overdue(now):
                allowed, reason = False, 'voucher has expired'

        if not allowed:
            error = InvalidTransitionError('voucher', current, target, reason)
            current_app.logger.error(
                f"Rejected voucher transition on account {self.account.id}, "
                f"voucher {voucher.id}: {error.message}"
            )
            raise error

        values = {'status': target}
        if target == VoucherStatus.CONFIRMED.value:
            values['confirmed_date'] = now
        elif target == VoucherStatus.USED.value:
            values['used_date'] = used_date or now
            values['order_id'] = order_id

        # Guard on the observed status so a concurrent sweep or caller wins cleanly
        try:
            changed = db.session.execute(
                update(VoucherRedemption)
                .where(VoucherRedemption.id == voucher.id, VoucherRedemption.status == current)
                .values(**values)
                .execution_options(synchronize_session=False)
            ).rowcount
            if changed == 1:
                record_voucher_event(
                    voucher, TRANSITION_EVENTS[target], current, target,
                    actor=self.actor_user_id, order_id=values.get('order_id'), now=now,
                )
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise

        db.session.refresh(voucher)
        if changed != 1:
            error = InvalidTransitionError('voucher', voucher.status, target, 'status changed concurrently')
            current_app.logger.error(f"Rejected voucher transition for voucher {voucher.id}: {error.message}")
            raise error

        current_app.logger.info(
            f"Voucher {voucher.confirmation_code} on account {self.account.id}: {current} -> {target}"
        )
        return voucher

    def vouchers_by_status(self, status: Optional[str] = None) -> List[VoucherRedemption]:
        """Vouchers on the account, newest first, optionally filtered by status."""
        query = VoucherRedemption.query.filter_by(account_id=self.account.id)
        if status:
            try:
                query = query.filter_by(status=VoucherStatus(status).value)
            except ValueError:
                raise ValidationError(
                    f"status must be one of: {[s.value for s in VoucherStatus]}", field='status'
                )
        return query.order_by(VoucherRedemption.redeemed_date.desc(), VoucherRedemption.id.desc()).all()

    def available_vouchers(self, now: datetime = None) -> List[VoucherRedemption]:
        """Confirmed vouchers that have not passed their expiry date, usable at checkout."""
        now = now or datetime.utcnow()
        return VoucherRedemption.query.filter(
            VoucherRedemption.account_id == self.account.id,
            VoucherRedemption.status == VoucherStatus.CONFIRMED.value,
            VoucherRedemption.expiry_date >= now,
        ).order_by(VoucherRedemption.expiry_date.asc()).all()


def find_by_confirmation_code(code: str) -> VoucherRedemption:
    """Look up any account's voucher by its confirmation code."""
    voucher = VoucherRedemption.query.filter_by(
        confirmation_code=(code or '').strip().upper()
    ).first()
    if not voucher:
        raise UnknownVoucherError(code)
    return voucher
