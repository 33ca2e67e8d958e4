"""Claim pipeline stages and the orchestrator that chains them."""

from autopump.services.burn import BurnService, to_raw_amount, verify_burn_address
from autopump.services.buyback import BuybackService
from autopump.services.fee_claim import FeeClaimService, compute_split
from autopump.services.fee_monitor import FeeMonitor, vault_estimator
from autopump.services.orchestrator import ClaimOrchestrator
from autopump.services.treasury import TreasuryService

__all__ = [
    "BurnService",
    "BuybackService",
    "ClaimOrchestrator",
    "FeeClaimService",
    "FeeMonitor",
    "TreasuryService",
    "compute_split",
    "to_raw_amount",
    "vault_estimator",
    "verify_burn_address",
]
