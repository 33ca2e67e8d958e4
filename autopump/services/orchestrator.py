"""
Claim orchestration: threshold → claim → treasury → buyback → burn.

Each stage is gated on the previous one. The first failure aborts the run;
stages that already settled on-chain are not compensated.
"""

import logging
from decimal import Decimal
from typing import Optional

from autopump.config import lamports_to_sol
from autopump.errors import AutoPumpError, InsufficientFunds
from autopump.logging_config import RunContext
from autopump.solana_execution import RPC_ERRORS
from autopump.types import OrchestrationResult, PipelineStage

logger = logging.getLogger(__name__)


class ClaimOrchestrator:
    """Runs one complete claim pipeline and reports a single result."""

    def __init__(self, monitor, claim_service, treasury_service, buyback_service, burn_service, notifier=None):
        self.monitor = monitor
        self.claim_service = claim_service
        self.treasury_service = treasury_service
        self.buyback_service = buyback_service
        self.burn_service = burn_service
        self.notifier = notifier

    async def run(self, force: bool = False) -> OrchestrationResult:
        with RunContext() as ctx:
            result = OrchestrationResult(success=False, run_id=ctx.run_id)
            logger.info(f"[ORCHESTRATOR] Starting claim pipeline (force={force})")

            stage: Optional[PipelineStage] = None
            try:
                stage = PipelineStage.VALIDATE_THRESHOLD
                estimate = await self.monitor.validate_for_claim(force)
                result.completed_stages.append(stage)

                stage = PipelineStage.CLAIM
                claim = await self.claim_service.claim(estimate)
                result.claim_signature = claim.signature
                result.claim_id = claim.claim_id
                result.claimed_amount = claim.claimed_amount
                result.treasury_amount = claim.treasury_amount
                result.buyback_amount = claim.buyback_amount
                result.completed_stages.append(stage)

                stage = PipelineStage.TREASURY
                result.treasury_signature = await self.treasury_service.transfer(claim.treasury_amount)
                result.completed_stages.append(stage)

                stage = PipelineStage.BUYBACK
                buyback = await self.buyback_service.buy(claim.claim_id, claim.buyback_amount)
                result.buyback_signature = buyback.signature
                result.buyback_id = buyback.buyback_id
                result.sol_spent = buyback.sol_spent
                result.completed_stages.append(stage)

                stage = PipelineStage.BURN
                burn = await self.burn_service.burn(buyback.buyback_id, buyback.tokens_purchased_display)
                result.burn_signature = burn.signature
                result.burn_id = burn.burn_id
                result.tokens_burned = burn.tokens_burned
                result.completed_stages.append(stage)

            except InsufficientFunds as e:
                logger.info(f"[ORCHESTRATOR] Skipped: {e.message}")
                result.skipped = True
                result.error = e.message
                result.error_code = e.code
                return result
            except AutoPumpError as e:
                return await self._abort(result, stage, e.message, e.code)
            except RPC_ERRORS as e:
                return await self._abort(result, stage, f"Ledger unavailable: {type(e).__name__}: {e}", "LEDGER_ERROR")
            except Exception as e:
                logger.exception(f"[ORCHESTRATOR] Unexpected error in stage {stage.value if stage else 'start'}")
                return await self._abort(result, stage, f"{type(e).__name__}: {e}", "UNEXPECTED_ERROR")

            result.success = True
            logger.info(
                f"[ORCHESTRATOR] Pipeline complete: claimed {lamports_to_sol(result.claimed_amount):.6f} SOL, "
                f"treasury {lamports_to_sol(result.treasury_amount):.6f} SOL, "
                f"buyback {lamports_to_sol(result.buyback_amount):.6f} SOL, "
                f"burned {_fmt_tokens(result.tokens_burned)} tokens"
            )
            await self._notify(result)
            return result

    async def _abort(
        self, result: OrchestrationResult, stage: Optional[PipelineStage], message: str, code: str
    ) -> OrchestrationResult:
        result.failed_stage = stage
        result.error = message
        result.error_code = code
        done = ", ".join(s.value for s in result.completed_stages) or "none"
        logger.error(
            f"[ORCHESTRATOR] Pipeline aborted at {stage.value if stage else 'start'} "
            f"({code}): {message}. Completed stages: {done}"
        )
        await self._notify(result)
        return result

    async def _notify(self, result: OrchestrationResult) -> None:
        if self.notifier is not None:
            await self.notifier.notify(result)


def _fmt_tokens(value: str) -> str:
    return f"{Decimal(value):,}"
