"""
Tests for missing points reports.
"""
import pytest
from datetime import date

from app.models.rewards import PointsLedgerEntry, MissingPointsStatus
from app.services import RewardsService
from app.utils.exceptions import (
    InvalidAmountError,
    InvalidTransitionError,
    UnknownMissingPointsError,
    ValidationError,
)


@pytest.fixture
def report(rewards):
    return rewards.report_missing_points('9100', '2026-09-01', 1500, 'Order not credited')


class TestReportMissingPoints:
    """Tests for report_missing_points()."""

    def test_report_is_filed_as_reported(self, rewards, report):
        assert report.status == MissingPointsStatus.REPORTED.value
        assert report.order_id == '9100'
        assert report.order_date == date(2026, 9, 1)
        assert report.expected_points == 1500
        assert report.user_id == 'user-1'
        assert report.resolved_date is None

    def test_filing_does_not_touch_ledger(self, rewards, report):
        assert rewards.points == 0
        assert PointsLedgerEntry.query.count() == 0

    def test_accepts_date_objects(self, rewards):
        filed = rewards.report_missing_points('9101', date(2026, 8, 30), 200, 'Scan failed')
        assert filed.order_date == date(2026, 8, 30)

    @pytest.mark.parametrize('order_id, order_date, points, reason, error', [
        ('', '2026-09-01', 100, 'Missing', ValidationError),
        ('9102', 'yesterday', 100, 'Missing', ValidationError),
        ('9102', '2026-09-01', 0, 'Missing', InvalidAmountError),
        ('9102', '2026-09-01', -5, 'Missing', InvalidAmountError),
        ('9102', '2026-09-01', 100, '   ', ValidationError),
    ])
    def test_invalid_reports_rejected(self, rewards, order_id, order_date, points, reason, error):
        with pytest.raises(error):
            rewards.report_missing_points(order_id, order_date, points, reason)

        assert rewards.missing_points() == []


class TestReportStatus:
    """Tests for update_missing_points_status()."""

    def test_investigate_then_resolve(self, rewards, report):
        rewards.update_missing_points_status(report.id, 'investigating')
        assert report.resolved_date is None

        resolved = rewards.update_missing_points_status(
            report.id, 'resolved', resolution_note='Credited manually'
        )

        assert resolved.status == MissingPointsStatus.RESOLVED.value
        assert resolved.resolved_date is not None
        assert resolved.resolution_note == 'Credited manually'

    def test_reject_directly(self, rewards, report):
        rejected = rewards.update_missing_points_status(report.id, 'rejected')

        assert rejected.status == MissingPointsStatus.REJECTED.value
        assert rejected.resolved_date is not None

    def test_resolving_never_credits_points(self, rewards, report):
        rewards.update_missing_points_status(report.id, 'resolved')

        assert rewards.points == 0
        assert PointsLedgerEntry.query.count() == 0

    @pytest.mark.parametrize('closed', ['resolved', 'rejected'])
    def test_closed_reports_are_final(self, rewards, report, closed):
        rewards.update_missing_points_status(report.id, closed)

        with pytest.raises(InvalidTransitionError):
            rewards.update_missing_points_status(report.id, 'investigating')

    def test_cannot_return_to_reported(self, rewards, report):
        rewards.update_missing_points_status(report.id, 'investigating')

        with pytest.raises(InvalidTransitionError):
            rewards.update_missing_points_status(report.id, 'reported')

    def test_unknown_status(self, rewards, report):
        with pytest.raises(ValidationError):
            rewards.update_missing_points_status(report.id, 'escalated')

    def test_other_accounts_report(self, app, report):
        with pytest.raises(UnknownMissingPointsError):
            RewardsService('user-stranger').update_missing_points_status(report.id, 'resolved')

    def test_list_by_status(self, rewards, report):
        second = rewards.report_missing_points('9103', '2026-09-02', 300, 'Promo not applied')
        rewards.update_missing_points_status(second.id, 'investigating')

        assert [r.id for r in rewards.missing_points('reported')] == [report.id]
        assert [r.id for r in rewards.missing_points('investigating')] == [second.id]
        assert len(rewards.missing_points()) == 2
