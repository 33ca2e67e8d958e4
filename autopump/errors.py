"""Custom exception hierarchy for the claim pipeline."""
from typing import Any, Dict, Optional


class AutoPumpError(Exception):
    """Base exception for all AutoPump errors."""
    code: str = "AUTOPUMP_ERROR"

    def __init__(self, message: str, details: Dict[str, Any] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message, "details": self.details}


class InsufficientFunds(AutoPumpError):
    """Claimable estimate is below the threshold. A no-op decision, not a failure."""
    code = "INSUFFICIENT_FUNDS"

    def __init__(self, claimable_lamports: int, threshold_lamports: int):
        super().__init__(
            f"Claimable fees ({claimable_lamports / 1e9:.9f} SOL) below threshold "
            f"({threshold_lamports / 1e9:.9f} SOL)",
            {"claimable_lamports": claimable_lamports, "threshold_lamports": threshold_lamports},
        )
        self.claimable_lamports = claimable_lamports
        self.threshold_lamports = threshold_lamports


class NoFundsReceived(AutoPumpError):
    """Claim transaction settled but the wallet balance did not increase."""
    code = "NO_FUNDS_RECEIVED"

    def __init__(self, signature: str, balance_before: int, balance_after: int):
        super().__init__(
            f"Claim {signature[:16]}... settled with balance delta "
            f"{balance_after - balance_before} lamports",
            {
                "signature": signature,
                "balance_before": balance_before,
                "balance_after": balance_after,
            },
        )
        self.signature = signature


class TradeServiceRejected(AutoPumpError):
    """The trade service declined the request (e.g. nothing to claim)."""
    code = "TRADE_SERVICE_REJECTED"

    def __init__(self, message: str, action: str, status_code: Optional[int] = None):
        super().__init__(message, {"action": action, "status_code": status_code})
        self.action = action
        self.status_code = status_code


class TradeServiceUnavailable(AutoPumpError):
    """The trade service could not be reached."""
    code = "TRADE_SERVICE_UNAVAILABLE"

    def __init__(self, message: str, action: str):
        super().__init__(message, {"action": action})
        self.action = action


class TransactionFailed(AutoPumpError):
    """Submission or confirmation failed after exhausting retries."""
    code = "TRANSACTION_FAILED"

    def __init__(
        self,
        message: str,
        signature: Optional[str] = None,
        attempts: int = 0,
        hint: Optional[str] = None,
    ):
        super().__init__(message, {"signature": signature, "attempts": attempts, "hint": hint})
        self.signature = signature
        self.attempts = attempts
        self.hint = hint


class InvalidSplit(AutoPumpError):
    """A treasury or buyback share came out non-positive after the reserve check."""
    code = "INVALID_SPLIT"

    def __init__(self, claimed_lamports: int, treasury_lamports: int, buyback_lamports: int):
        super().__init__(
            f"Invalid split of {claimed_lamports} lamports: treasury={treasury_lamports}, "
            f"buyback={buyback_lamports}",
            {
                "claimed_lamports": claimed_lamports,
                "treasury_lamports": treasury_lamports,
                "buyback_lamports": buyback_lamports,
            },
        )


class InvalidBurnAmount(AutoPumpError):
    """Burn amount is unparsable, non-positive, or truncates to zero base units."""
    code = "INVALID_BURN_AMOUNT"

    def __init__(self, token_amount: str, reason: str):
        super().__init__(
            f"Invalid token amount {token_amount!r}: {reason}",
            {"token_amount": token_amount, "reason": reason},
        )


class PersistenceError(AutoPumpError):
    """The store is unavailable or a write failed."""
    code = "PERSISTENCE_ERROR"

    def __init__(self, message: str, operation: str):
        super().__init__(message, {"operation": operation})
        self.operation = operation


class ClaimInProgress(AutoPumpError):
    """A pipeline run is already in flight."""
    code = "CLAIM_IN_PROGRESS"

    def __init__(self, message: str = "Claim operation already in progress"):
        super().__init__(message)


class ConfigurationError(AutoPumpError):
    """Configuration is missing or invalid."""
    code = "CONFIG_ERROR"
