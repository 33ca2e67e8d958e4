"""Token buyback through the trade service."""

import logging
from typing import Optional

from solders.keypair import Keypair
from solders.transaction import VersionedTransaction

from autopump.config import AutoPumpConfig, lamports_to_sol
from autopump.errors import AutoPumpError, PersistenceError, TransactionFailed
from autopump.solana_execution import RPC_ERRORS, LedgerClient, explorer_url, sign_versioned_transaction
from autopump.types import BuybackResult, TxStatus

logger = logging.getLogger(__name__)


class BuybackService:
    """
    Buys the project token with the buyback share of a claim.

    `sol_spent` is the measured wallet balance drop (budget plus fees),
    and tokens purchased come from the confirmed transaction's metadata.
    """

    def __init__(
        self,
        config: AutoPumpConfig,
        ledger: LedgerClient,
        trade_client,
        store,
        keypair: Keypair,
        vault_reader=None,
    ):
        self.config = config
        self.ledger = ledger
        self.trade_client = trade_client
        self.store = store
        self.keypair = keypair
        self.vault_reader = vault_reader
        self.wallet = str(keypair.pubkey())

    async def buy(self, claim_id: int, amount_lamports: int) -> BuybackResult:
        """
        Spend exactly `amount_lamports` on the token and record the buyback.

        Raises:
            TradeServiceRejected, TradeServiceUnavailable, TransactionFailed,
            PersistenceError
        """
        mint = self.config.token_mint
        logger.info(f"[BUYBACK] Buying {mint} with {lamports_to_sol(amount_lamports):.9f} SOL (claim {claim_id})")

        balance_before = await self.ledger.get_balance(self.wallet)

        async def _build_signed() -> VersionedTransaction:
            tx_bytes = await self.trade_client.build_buy_transaction(self.wallet, mint, amount_lamports)
            return sign_versioned_transaction(tx_bytes, self.keypair)

        signed = await _build_signed()
        try:
            signature = await self.ledger.send_and_confirm(signed, rebuild=_build_signed)
        except TransactionFailed as e:
            if e.signature:
                await self._record_failure(claim_id, e.signature, 0, 0, e.message)
            raise

        logger.info(f"[BUYBACK] Buy confirmed: {explorer_url(signature)}")

        sol_spent = 0
        try:
            balance_after = await self.ledger.get_balance(self.wallet)
            sol_spent = balance_before - balance_after
            tokens_raw, tokens_display = await self.ledger.get_token_balance_change(signature, self.wallet, mint)
            if tokens_raw <= 0:
                raise TransactionFailed(
                    f"Buy {signature[:16]}... confirmed but no tokens were received", signature=signature
                )
        except AutoPumpError as e:
            await self._record_failure(claim_id, signature, 0, max(sol_spent, 0), e.message)
            raise
        except RPC_ERRORS as e:
            await self._record_failure(claim_id, signature, 0, max(sol_spent, 0), f"{type(e).__name__}: {e}")
            raise

        buyback_id = await self.store.settle_buyback(claim_id, signature, tokens_raw, sol_spent, TxStatus.CONFIRMED)

        logger.info(
            f"[BUYBACK] Buyback {buyback_id} settled: {tokens_display} tokens "
            f"for {lamports_to_sol(sol_spent):.9f} SOL"
        )
        return BuybackResult(
            success=True,
            signature=signature,
            buyback_id=buyback_id,
            tokens_purchased=tokens_raw,
            tokens_purchased_display=tokens_display,
            sol_spent=sol_spent,
        )

    async def estimate_buyback_tokens(self, amount_lamports: int) -> int:
        """Advisory raw-token quote from the bonding curve. Never persisted."""
        if self.vault_reader is None:
            return 0
        try:
            curve = await self.vault_reader.get_bonding_curve(self.config.token_mint)
        except (*RPC_ERRORS, ValueError) as e:
            logger.warning(f"[BUYBACK] Failed to estimate buyback tokens: {type(e).__name__}: {e}")
            return 0
        if curve is None or curve.complete:
            return 0
        estimate = curve.tokens_out(amount_lamports)
        logger.debug(f"[BUYBACK] Estimated {estimate} raw tokens for {lamports_to_sol(amount_lamports):.9f} SOL")
        return estimate

    async def _record_failure(
        self, claim_id: int, signature: str, tokens_raw: int, sol_spent: int, message: str
    ) -> Optional[int]:
        try:
            buyback_id = await self.store.settle_buyback(
                claim_id, signature, tokens_raw, sol_spent, TxStatus.FAILED, message
            )
            logger.error(f"[BUYBACK] Buyback {buyback_id} marked failed: {message}")
            return buyback_id
        except PersistenceError as e:
            logger.error(f"[BUYBACK] Could not record failed buyback {signature[:16]}...: {e.message}")
            return None
