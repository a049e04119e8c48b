"""
Utility modules for the rewards ledger.
"""
from .logging_config import setup_logging
from .errors import (
    ErrorCode,
    error_response,
    exception_response,
    bad_request,
    unauthorized,
    forbidden,
    not_found,
    internal_error
)
from .exceptions import (
    RewardsError,
    NotFoundError,
    UnknownRewardError,
    UnknownVoucherError,
    UnknownMissingPointsError,
    ValidationError,
    InvalidAmountError,
    CatalogValidationError,
    InsufficientPointsError,
    RewardUnavailableError,
    InvalidTransitionError,
    LedgerIntegrityError,
    AuthorizationError
)
