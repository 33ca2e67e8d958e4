"""Shared data types for the claim pipeline."""

from __future__ import annotations

import time
from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from autopump.config import lamports_to_sol


class TxStatus(Enum):
    """Lifecycle of a claim, buyback or burn record."""
    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self is not TxStatus.PENDING


class PipelineStage(Enum):
    """Ordered stages of one orchestration run."""
    VALIDATE_THRESHOLD = "validate_threshold"
    CLAIM = "claim"
    TREASURY = "treasury"
    BUYBACK = "buyback"
    BURN = "burn"


class SchedulerState(Enum):
    IDLE = "idle"
    CHECKING = "checking"
    CLAIM_LOCKED = "claim_locked"


# =============================================================================
# Persisted records
# =============================================================================

@dataclass
class ClaimRecord:
    id: int
    signature: str
    claimed_amount: int
    treasury_amount: int
    buyback_amount: int
    status: TxStatus = TxStatus.PENDING
    error_message: Optional[str] = None
    timestamp: Optional[datetime] = None


@dataclass
class BuybackRecord:
    id: int
    claim_id: int
    signature: str
    tokens_purchased: int
    sol_spent: int
    status: TxStatus = TxStatus.PENDING
    error_message: Optional[str] = None
    timestamp: Optional[datetime] = None


@dataclass
class BurnRecord:
    id: int
    buyback_id: int
    signature: str
    tokens_burned: str
    status: TxStatus = TxStatus.PENDING
    error_message: Optional[str] = None
    timestamp: Optional[datetime] = None


@dataclass
class MonitorCheck:
    id: int
    claimable_fees: int
    threshold: int
    triggered: bool
    notes: Optional[str] = None
    timestamp: Optional[datetime] = None


@dataclass
class SystemStatus:
    is_paused: bool = False
    last_check_timestamp: Optional[datetime] = None
    total_checks: int = 0
    total_claims: int = 0
    error_count: int = 0
    last_error: Optional[str] = None
    last_error_timestamp: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        for key in ("last_check_timestamp", "last_error_timestamp"):
            if data[key] is not None:
                data[key] = data[key].isoformat()
        return data


@dataclass
class SystemStats:
    """Aggregate totals for status output. SOL values are display-only."""
    total_claimed_sol: float = 0.0
    total_treasury_sol: float = 0.0
    total_buyback_sol: float = 0.0
    total_tokens_burned: str = "0"
    total_claims: int = 0
    total_buybacks: int = 0
    total_burns: int = 0
    last_claim_timestamp: Optional[datetime] = None
    is_paused: bool = False


# =============================================================================
# Stage results
# =============================================================================

@dataclass
class FeeDecision:
    should_claim: bool
    claimable_fees: int
    reason: str


@dataclass
class ClaimResult:
    success: bool
    signature: Optional[str] = None
    claim_id: Optional[int] = None
    claimed_amount: int = 0
    treasury_amount: int = 0
    buyback_amount: int = 0
    error: Optional[str] = None
    timestamp: float = field(default_factory=time.time)


@dataclass
class BuybackResult:
    success: bool
    signature: Optional[str] = None
    buyback_id: Optional[int] = None
    tokens_purchased: int = 0
    tokens_purchased_display: str = "0"
    sol_spent: int = 0
    error: Optional[str] = None
    timestamp: float = field(default_factory=time.time)


@dataclass
class BurnResult:
    success: bool
    signature: Optional[str] = None
    burn_id: Optional[int] = None
    tokens_burned: str = "0"
    raw_amount: int = 0
    created_incinerator_account: bool = False
    error: Optional[str] = None
    timestamp: float = field(default_factory=time.time)


@dataclass
class OrchestrationResult:
    """Aggregate of one pipeline run, successful or aborted."""
    success: bool
    run_id: Optional[str] = None
    claim_signature: Optional[str] = None
    treasury_signature: Optional[str] = None
    buyback_signature: Optional[str] = None
    burn_signature: Optional[str] = None
    claim_id: Optional[int] = None
    buyback_id: Optional[int] = None
    burn_id: Optional[int] = None
    claimed_amount: int = 0
    treasury_amount: int = 0
    buyback_amount: int = 0
    sol_spent: int = 0
    tokens_burned: str = "0"
    completed_stages: List[PipelineStage] = field(default_factory=list)
    failed_stage: Optional[PipelineStage] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    skipped: bool = False
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["completed_stages"] = [stage.value for stage in self.completed_stages]
        data["failed_stage"] = self.failed_stage.value if self.failed_stage else None
        data["claimed_sol"] = lamports_to_sol(self.claimed_amount)
        data["treasury_sol"] = lamports_to_sol(self.treasury_amount)
        data["buyback_sol"] = lamports_to_sol(self.buyback_amount)
        return data
