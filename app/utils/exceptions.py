"""
Custom exceptions for the rewards ledger.

Every precondition failure in the ledger raises one of these before any
state is mutated. The API layer maps ``code`` onto a standard error
response; callers that want a boolean contract catch them instead.
"""


class RewardsError(Exception):
    """Base exception for all rewards ledger errors."""

    def __init__(self, message: str, code: str = "REWARDS_ERROR"):
        self.message = message
        self.code = code
        super().__init__(message)


class NotFoundError(RewardsError):
    """Resource not found."""

    def __init__(self, resource: str, identifier=None, code: str = None):
        message = f"{resource} not found"
        if identifier is not None:
            message = f"{resource} with ID {identifier} not found"
        super().__init__(message, code or f"{resource.upper().replace(' ', '_')}_NOT_FOUND")


class UnknownRewardError(NotFoundError):
    """Reward id is not in the catalog (or is inactive)."""

    def __init__(self, identifier=None):
        self.reward_id = identifier
        super().__init__("Reward", identifier, "REWARD_NOT_FOUND")


class UnknownVoucherError(NotFoundError):
    """Voucher redemption id is not on the account."""

    def __init__(self, identifier=None):
        self.redemption_id = identifier
        super().__init__("Voucher", identifier, "VOUCHER_NOT_FOUND")


class UnknownMissingPointsError(NotFoundError):
    """Missing points report id is not on the account."""

    def __init__(self, identifier=None):
        super().__init__("Missing points report", identifier, "MISSING_POINTS_NOT_FOUND")


class ValidationError(RewardsError):
    """Invalid input data."""

    def __init__(self, message: str, field: str = None):
        self.field = field
        code = f"INVALID_{field.upper()}" if field else "VALIDATION_ERROR"
        super().__init__(message, code)


class InvalidAmountError(ValidationError):
    """Non-positive (or zero, for adjustments) point amount."""

    def __init__(self, amount, message: str = None):
        self.amount = amount
        super().__init__(message or f"Points amount must be a positive integer, got {amount!r}")
        self.code = "INVALID_AMOUNT"


class CatalogValidationError(ValidationError):
    """Malformed reward catalog entry, rejected at load time."""

    def __init__(self, message: str, reward_id=None):
        self.reward_id = reward_id
        if reward_id:
            message = f"Reward '{reward_id}': {message}"
        super().__init__(message)
        self.code = "INVALID_REWARD"


class InsufficientPointsError(RewardsError):
    """Not enough points for the operation."""

    def __init__(self, current: int, required: int):
        self.current = current
        self.required = required
        message = f"Not enough points. Current: {current}, Required: {required}"
        super().__init__(message, "INSUFFICIENT_POINTS")


class RewardUnavailableError(RewardsError):
    """Reward exists but cannot be redeemed right now (e.g. swag out of stock)."""

    def __init__(self, reward_id, reason: str = "out of stock"):
        self.reward_id = reward_id
        super().__init__(f"Reward '{reward_id}' is unavailable: {reason}", "REWARD_UNAVAILABLE")


class InvalidTransitionError(RewardsError):
    """Invalid status transition for a voucher or report."""

    def __init__(self, resource: str, from_status: str, to_status: str, reason: str = None):
        self.from_status = from_status
        self.to_status = to_status
        message = f"Cannot change {resource} status from '{from_status}' to '{to_status}'"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message, "INVALID_STATUS_TRANSITION")


class LedgerIntegrityError(RewardsError):
    """Attempt to edit or delete an append-only ledger entry."""

    def __init__(self, message: str = "Ledger entries are append-only"):
        super().__init__(message, "LEDGER_IMMUTABLE")


class AuthorizationError(RewardsError):
    """Caller identity missing or not allowed."""

    def __init__(self, message: str = "Not authorized for this operation"):
        super().__init__(message, "AUTHORIZATION_ERROR")
