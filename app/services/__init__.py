"""
Business logic services for the rewards ledger.
"""
from .points_ledger import PointsLedgerService
from .redemption import RedemptionService
from .voucher_lifecycle import VoucherLifecycleService
from .expiry_scheduler import ExpiryScheduler
from .missing_points import MissingPointsService
from .audit_query import AuditQueryService
from .rewards_service import RewardsService, open_account

__all__ = [
    'PointsLedgerService',
    'RedemptionService',
    'VoucherLifecycleService',
    'ExpiryScheduler',
    'MissingPointsService',
    'AuditQueryService',
    'RewardsService',
    'open_account',
]
