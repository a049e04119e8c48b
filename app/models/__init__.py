"""
Database models for the rewards ledger.
"""
from .rewards import (
    # Enums
    TierLevel,
    LedgerTransactionType,
    SPEND_LINKED_TYPES,
    LEGACY_IMPORT_REFERENCE,
    RewardItemType,
    VoucherStatus,
    VoucherEventType,
    MissingPointsStatus,
    # Models
    RewardsAccount,
    PointsLedgerEntry,
    PointsExpiry,
    RewardItem,
    VoucherRedemption,
    RedeemedReward,
    MissingPointsReport,
    VoucherEvent,
)
