"""
Creator fee claim with balance-verified settlement.

The amount split between treasury and buyback is always the measured
balance delta of the operating wallet, never the pre-claim estimate.
"""

import logging
from typing import Optional, Tuple

from solders.keypair import Keypair
from solders.transaction import VersionedTransaction

from autopump.config import AutoPumpConfig, lamports_to_sol
from autopump.errors import (
    InvalidSplit,
    NoFundsReceived,
    PersistenceError,
    TransactionFailed,
)
from autopump.solana_execution import RPC_ERRORS, LedgerClient, explorer_url, sign_versioned_transaction
from autopump.types import ClaimResult, TxStatus

logger = logging.getLogger(__name__)


def compute_split(
    claimed: int,
    balance_after: int,
    treasury_percent: int,
    buyback_percent: int,
    min_reserve: int,
) -> Tuple[int, int]:
    """
    Split a claimed amount into (treasury, buyback) lamports.

    Shares are floored. When paying both out would leave the wallet below
    `min_reserve`, the split is taken from `balance_after - min_reserve`.

    Raises:
        InvalidSplit: If either share is not positive
    """
    treasury = claimed * treasury_percent // 100
    buyback = claimed * buyback_percent // 100

    if balance_after - (treasury + buyback) < min_reserve:
        available = balance_after - min_reserve
        logger.warning(
            f"[CLAIM] Split would breach reserve, using {lamports_to_sol(max(available, 0)):.6f} SOL"
        )
        treasury = available * treasury_percent // 100
        buyback = available * buyback_percent // 100

    if treasury <= 0 or buyback <= 0:
        raise InvalidSplit(claimed, treasury, buyback)
    return treasury, buyback


class FeeClaimService:
    """Claims creator fees and records the measured result."""

    def __init__(
        self,
        config: AutoPumpConfig,
        ledger: LedgerClient,
        trade_client,
        store,
        keypair: Keypair,
    ):
        self.config = config
        self.ledger = ledger
        self.trade_client = trade_client
        self.store = store
        self.keypair = keypair
        self.wallet = str(keypair.pubkey())

    async def _build_signed(self) -> VersionedTransaction:
        tx_bytes = await self.trade_client.build_claim_transaction(self.wallet)
        return sign_versioned_transaction(tx_bytes, self.keypair)

    async def claim(self, estimated_amount: Optional[int] = None) -> ClaimResult:
        """
        Claim all accrued creator fees.

        Args:
            estimated_amount: Advisory estimate, logged only

        Raises:
            TradeServiceRejected, TradeServiceUnavailable, TransactionFailed,
            NoFundsReceived, InvalidSplit, PersistenceError
        """
        if estimated_amount is not None:
            logger.info(f"[CLAIM] Starting claim (estimated {lamports_to_sol(estimated_amount):.6f} SOL)")
        else:
            logger.info("[CLAIM] Starting claim")

        balance_before = await self.ledger.get_balance(self.wallet)
        logger.info(f"[CLAIM] Balance before: {lamports_to_sol(balance_before):.9f} SOL")

        signed = await self._build_signed()
        try:
            signature = await self.ledger.send_and_confirm(signed, rebuild=self._build_signed)
        except TransactionFailed as e:
            if e.signature:
                await self._record_failure(e.signature, 0, e.message)
            raise

        logger.info(f"[CLAIM] Claim confirmed: {explorer_url(signature)}")

        claimed = 0
        try:
            balance_after = await self.ledger.get_balance(self.wallet)
            claimed = balance_after - balance_before
            logger.info(
                f"[CLAIM] Balance after: {lamports_to_sol(balance_after):.9f} SOL "
                f"(delta {lamports_to_sol(claimed):.9f} SOL)"
            )
            if claimed <= 0:
                raise NoFundsReceived(signature, balance_before, balance_after)

            treasury, buyback = compute_split(
                claimed,
                balance_after,
                self.config.treasury_percent,
                self.config.buyback_percent,
                self.config.min_reserve_lamports,
            )
        except (NoFundsReceived, InvalidSplit) as e:
            await self._record_failure(signature, max(claimed, 0), e.message)
            raise
        except RPC_ERRORS as e:
            await self._record_failure(signature, 0, f"{type(e).__name__}: {e}")
            raise

        claim_id = await self.store.settle_claim(signature, claimed, treasury, buyback, TxStatus.CONFIRMED)

        logger.info(
            f"[CLAIM] Claim {claim_id} settled: claimed={lamports_to_sol(claimed):.9f} "
            f"treasury={lamports_to_sol(treasury):.9f} buyback={lamports_to_sol(buyback):.9f} SOL"
        )
        return ClaimResult(
            success=True,
            signature=signature,
            claim_id=claim_id,
            claimed_amount=claimed,
            treasury_amount=treasury,
            buyback_amount=buyback,
        )

    async def _record_failure(self, signature: str, claimed: int, message: str) -> Optional[int]:
        """Persist a failed claim once a signature exists. The caller re-raises."""
        try:
            claim_id = await self.store.settle_claim(signature, claimed, 0, 0, TxStatus.FAILED, message)
            logger.error(f"[CLAIM] Claim {claim_id} marked failed: {message}")
            return claim_id
        except PersistenceError as e:
            logger.error(f"[CLAIM] Could not record failed claim {signature[:16]}...: {e.message}")
            return None
