"""Business-rule failures raised inside a ledger unit of work."""

import enum


class LedgerErrorKind(str, enum.Enum):
    USER_NOT_FOUND = "USER_NOT_FOUND"
    ACCOUNT_RESTRICTED = "ACCOUNT_RESTRICTED"
    DUPLICATE = "DUPLICATE"
    CLAIM_NOT_FOUND = "CLAIM_NOT_FOUND"
    ALREADY_REVERSED = "ALREADY_REVERSED"
    INSUFFICIENT_BALANCE = "INSUFFICIENT_BALANCE"
    INVALID_AMOUNT = "INVALID_AMOUNT"
    NO_KEYS = "NO_KEYS"
    NO_ACTIVE_STREAK = "NO_ACTIVE_STREAK"
    CASE_NOT_AVAILABLE = "CASE_NOT_AVAILABLE"
    COOLDOWN_ACTIVE = "COOLDOWN_ACTIVE"
    NOT_ENOUGH_REFERRALS = "NOT_ENOUGH_REFERRALS"
    NO_LEVEL_REWARDS = "NO_LEVEL_REWARDS"
    REDEMPTION_NOT_FOUND = "REDEMPTION_NOT_FOUND"
    INVALID_STATUS_TRANSITION = "INVALID_STATUS_TRANSITION"
    CODE_REQUIRED = "CODE_REQUIRED"
    CANCEL_REASON_REQUIRED = "CANCEL_REASON_REQUIRED"


_DEFAULTS: dict[LedgerErrorKind, tuple[int, str]] = {
    LedgerErrorKind.USER_NOT_FOUND: (404, "User not found."),
    LedgerErrorKind.ACCOUNT_RESTRICTED: (403, "Account is not active."),
    LedgerErrorKind.DUPLICATE: (409, "This action was already processed."),
    LedgerErrorKind.CLAIM_NOT_FOUND: (404, "No claim found for reversal."),
    LedgerErrorKind.ALREADY_REVERSED: (409, "This reward was already reversed."),
    LedgerErrorKind.INSUFFICIENT_BALANCE: (400, "Insufficient balance."),
    LedgerErrorKind.INVALID_AMOUNT: (400, "Invalid amount."),
    LedgerErrorKind.NO_KEYS: (400, "No Level-Up Case keys available."),
    LedgerErrorKind.NO_ACTIVE_STREAK: (400, "No active streak yet. Complete daily offers to start one."),
    LedgerErrorKind.CASE_NOT_AVAILABLE: (400, "This streak case is not available yet."),
    LedgerErrorKind.COOLDOWN_ACTIVE: (429, "Case cooldown is still active."),
    LedgerErrorKind.NOT_ENOUGH_REFERRALS: (403, "You need 10 active referrals to open this case."),
    LedgerErrorKind.NO_LEVEL_REWARDS: (400, "No unclaimed level rewards yet."),
    LedgerErrorKind.REDEMPTION_NOT_FOUND: (404, "Withdrawal request not found."),
    LedgerErrorKind.INVALID_STATUS_TRANSITION: (400, "Action is not valid for this withdrawal state."),
    LedgerErrorKind.CODE_REQUIRED: (400, "Enter CODE before marking this gift card as sent."),
    LedgerErrorKind.CANCEL_REASON_REQUIRED: (400, "Enter a cancel reason (minimum 3 characters)."),
}


class LedgerError(Exception):
    """Raised to abort the surrounding unit of work with a classified reason.

    ``details`` carries structured extras for the response body, such as the
    next wheel availability when a cooldown is active.
    """

    def __init__(
        self,
        kind: LedgerErrorKind,
        message: str | None = None,
        *,
        status_code: int | None = None,
        details: dict[str, object] | None = None,
    ) -> None:
        default_status, default_message = _DEFAULTS.get(kind, (400, kind.value))
        self.kind = kind
        self.message = message or default_message
        self.status_code = status_code or default_status
        self.details = details or {}
        super().__init__(self.message)

    def to_detail(self) -> str | dict[str, object]:
        """Body for HTTPException.detail; a plain message unless extras are attached."""
        if not self.details:
            return self.message
        return {"message": self.message, **self.details}
