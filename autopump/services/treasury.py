"""Treasury share transfer."""

import logging

from solders.keypair import Keypair

from autopump.config import AutoPumpConfig, lamports_to_sol
from autopump.solana_execution import LedgerClient, explorer_url

logger = logging.getLogger(__name__)


class TreasuryService:
    """Sends the treasury share of a claim to the fixed treasury wallet."""

    def __init__(self, config: AutoPumpConfig, ledger: LedgerClient, keypair: Keypair):
        self.config = config
        self.ledger = ledger
        self.keypair = keypair

    async def transfer(self, amount_lamports: int) -> str:
        """
        Transfer `amount_lamports` to the treasury. Errors propagate unchanged.

        Returns:
            Confirmed transaction signature
        """
        logger.info(
            f"[TREASURY] Transferring {lamports_to_sol(amount_lamports):.9f} SOL "
            f"to {self.config.treasury_address}"
        )
        signature = await self.ledger.transfer_sol(self.keypair, self.config.treasury_address, amount_lamports)
        logger.info(f"[TREASURY] Transfer confirmed: {explorer_url(signature)}")
        return signature
