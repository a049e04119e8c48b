"""
Missing points reports.

Filing a report never touches the ledger. Resolution is a manual trust
decision: support credits the points separately (``restore`` or
``adjustment`` earn) and then marks the report resolved.

    reported ──> investigating ──> resolved | rejected
        └──────────────────────────> resolved | rejected
"""

from datetime import datetime, date
from typing import List, Optional, Union

from flask import current_app

from ..extensions import db
from ..models.rewards import RewardsAccount, MissingPointsReport, MissingPointsStatus
from ..utils.exceptions import (
    InvalidAmountError,
    InvalidTransitionError,
    UnknownMissingPointsError,
    ValidationError,
)

_CLOSED = {MissingPointsStatus.RESOLVED.value, MissingPointsStatus.REJECTED.value}

REPORT_TRANSITIONS = {
    MissingPointsStatus.REPORTED.value: {MissingPointsStatus.INVESTIGATING.value} | _CLOSED,
    MissingPointsStatus.INVESTIGATING.value: set(_CLOSED),
    MissingPointsStatus.RESOLVED.value: set(),
    MissingPointsStatus.REJECTED.value: set(),
}


def _parse_order_date(value: Union[str, date, datetime]) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value.strip()[:10]).date()
        except ValueError:
            pass
    raise ValidationError('order_date must be an ISO date (YYYY-MM-DD)', field='order_date')


class MissingPointsService:
    """Missing points reports for one account."""

    def __init__(self, account: RewardsAccount, actor_user_id: str = None):
        self.account = account
        self.actor_user_id = actor_user_id or account.user_id

    def report_missing_points(
        self,
        order_id: str,
        order_date,
        expected_points: int,
        reason: str,
        now: datetime = None,
    ) -> MissingPointsReport:
        """File a report in status ``reported``."""
        if not order_id:
            raise ValidationError('order_id is required', field='order_id')
        if isinstance(expected_points, bool) or not isinstance(expected_points, int) or expected_points <= 0:
            raise InvalidAmountError(expected_points)
        if not reason or not str(reason).strip():
            raise ValidationError('reason is required', field='reason')

        report = MissingPointsReport(
            account_id=self.account.id,
            user_id=self.actor_user_id,
            order_id=str(order_id),
            order_date=_parse_order_date(order_date),
            expected_points=expected_points,
            reason=str(reason).strip(),
            status=MissingPointsStatus.REPORTED.value,
            reported_date=now or datetime.utcnow(),
        )
        try:
            db.session.add(report)
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise

        current_app.logger.info(
            f"Missing points reported: account {self.account.id} order {report.order_id} "
            f"expects {expected_points} pts"
        )
        return report

    def update_status(
        self,
        report_id: int,
        new_status: str,
        resolution_note: Optional[str] = None,
        now: datetime = None,
    ) -> MissingPointsReport:
        """
        Move a report along its workflow. Never credits points.

        Raises:
            UnknownMissingPointsError: report not on this account
            InvalidTransitionError: transition not allowed
        """
        report = MissingPointsReport.query.filter_by(
            id=report_id, account_id=self.account.id
        ).first() if report_id is not None else None
        if not report:
            raise UnknownMissingPointsError(report_id)

        try:
            target = MissingPointsStatus(new_status).value
        except ValueError:
            raise ValidationError(
                f"status must be one of: {[s.value for s in MissingPointsStatus]}", field='status'
            )

        if target not in REPORT_TRANSITIONS[report.status]:
            error = InvalidTransitionError('missing points report', report.status, target)
            current_app.logger.error(f"Rejected report transition for report {report.id}: {error.message}")
            raise error

        previous = report.status
        try:
            report.status = target
            if target in _CLOSED:
                report.resolved_date = now or datetime.utcnow()
            if resolution_note:
                report.resolution_note = resolution_note
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise

        current_app.logger.info(f"Missing points report {report.id}: {previous} -> {target}")
        return report

    def list_reports(self, status: Optional[str] = None) -> List[MissingPointsReport]:
        query = MissingPointsReport.query.filter_by(account_id=self.account.id)
        if status:
            query = query.filter_by(status=status)
        return query.order_by(MissingPointsReport.reported_date.desc()).all()
