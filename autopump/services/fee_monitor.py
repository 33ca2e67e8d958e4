"""Fee threshold decisions against the on-chain claimable estimate."""

import logging
from typing import Awaitable, Callable

from autopump.config import AutoPumpConfig, lamports_to_sol
from autopump.errors import InsufficientFunds
from autopump.solana_execution import RPC_ERRORS
from autopump.types import FeeDecision

logger = logging.getLogger(__name__)

Estimator = Callable[[], Awaitable[int]]


class FeeMonitor:
    """
    Decides whether accrued creator fees are worth claiming.

    The estimate is advisory: it is logged and stored in monitor_checks but
    never used as a claimed amount.
    """

    def __init__(self, config: AutoPumpConfig, store, estimator: Estimator):
        self.config = config
        self.store = store
        self._estimator = estimator

    async def get_claimable_fees(self) -> int:
        return await self._estimator()

    async def should_claim(self, force: bool = False) -> FeeDecision:
        threshold = self.config.claim_threshold_lamports
        try:
            claimable = await self.get_claimable_fees()
        except (*RPC_ERRORS, ValueError) as e:
            logger.error(f"[MONITOR] Failed to read claimable fees: {type(e).__name__}: {e}")
            return FeeDecision(
                should_claim=False,
                claimable_fees=0,
                reason=f"Failed to check fees: {type(e).__name__}",
            )

        claimable_sol = lamports_to_sol(claimable)
        threshold_sol = lamports_to_sol(threshold)

        if force:
            decision = FeeDecision(True, claimable, f"Manual claim forced ({claimable_sol:.6f} SOL estimated)")
            notes = "Manual trigger (force=true)"
        elif claimable >= threshold:
            decision = FeeDecision(
                True,
                claimable,
                f"Claimable fees ({claimable_sol:.6f} SOL) meet threshold ({threshold_sol:.6f} SOL)",
            )
            notes = "Threshold met"
        else:
            decision = FeeDecision(
                False,
                claimable,
                f"Claimable fees ({claimable_sol:.6f} SOL) below threshold ({threshold_sol:.6f} SOL)",
            )
            notes = "Below threshold"

        await self.store.insert_monitor_check(claimable, threshold, decision.should_claim, notes)
        logger.info(f"[MONITOR] {decision.reason}")
        return decision

    async def validate_for_claim(self, force: bool = False) -> int:
        """
        Gate a pipeline run on the threshold.

        Returns:
            The advisory claimable estimate in lamports

        Raises:
            InsufficientFunds: If the decision is negative
        """
        decision = await self.should_claim(force)
        if not decision.should_claim:
            raise InsufficientFunds(decision.claimable_fees, self.config.claim_threshold_lamports)
        return decision.claimable_fees


def vault_estimator(reader, creator: str) -> Estimator:
    """Bind a CreatorVaultReader to the creator wallet."""

    async def _estimate() -> int:
        return await reader.get_claimable_fees(creator)

    return _estimate
