"""
Token burn by transfer to the Solana incinerator.

Amounts arrive in display units (e.g. "194000.5") and are converted to raw
base units with exact decimal arithmetic before anything is signed.
"""

import logging
from decimal import ROUND_FLOOR, Decimal, DecimalException, localcontext
from typing import List, Optional

from solders.instruction import Instruction
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from spl.token.instructions import (
    TransferCheckedParams,
    create_associated_token_account,
    get_associated_token_address,
    transfer_checked,
)

from autopump.config import INCINERATOR_ADDRESS, AutoPumpConfig
from autopump.errors import InvalidBurnAmount, PersistenceError, TransactionFailed
from autopump.solana_execution import LedgerClient, explorer_url
from autopump.types import BurnResult, TxStatus

logger = logging.getLogger(__name__)

# SPL token amounts are u64
MAX_RAW_AMOUNT = 2**64 - 1


def to_raw_amount(token_amount: str, decimals: int) -> int:
    """
    Convert a display amount to raw base units, flooring any excess precision.

    >>> to_raw_amount("194000.5", 6)
    194000500000

    Raises:
        InvalidBurnAmount: If the amount is unparsable, non-finite,
            non-positive, or floors to zero base units
    """
    try:
        display = Decimal(str(token_amount).strip())
    except DecimalException:
        raise InvalidBurnAmount(str(token_amount), "not a number")
    if not display.is_finite():
        raise InvalidBurnAmount(str(token_amount), "not finite")
    if display <= 0:
        raise InvalidBurnAmount(str(token_amount), "must be positive")

    with localcontext() as ctx:
        ctx.prec = 78
        try:
            raw = int(display.scaleb(decimals).to_integral_value(rounding=ROUND_FLOOR))
        except DecimalException:
            raise InvalidBurnAmount(str(token_amount), "out of range")
    if raw == 0:
        raise InvalidBurnAmount(str(token_amount), f"below the smallest unit at {decimals} decimals")
    if raw > MAX_RAW_AMOUNT:
        raise InvalidBurnAmount(str(token_amount), "exceeds the maximum token amount")
    return raw


def verify_burn_address(address: str) -> bool:
    """True when `address` is the canonical incinerator; warns otherwise."""
    if address == INCINERATOR_ADDRESS:
        return True
    logger.warning(f"[BURN] Burn address {address} is not the Solana incinerator ({INCINERATOR_ADDRESS})")
    return False


class BurnService:
    """Sends purchased tokens to the incinerator's token account."""

    def __init__(self, config: AutoPumpConfig, ledger: LedgerClient, store, keypair: Keypair):
        self.config = config
        self.ledger = ledger
        self.store = store
        self.keypair = keypair
        verify_burn_address(config.burn_address)

    async def _token_program(self, mint: Pubkey) -> Pubkey:
        # Legacy SPL Token and Token-2022 mints are both owned by their program
        info = await self.ledger.get_account_info(mint)
        if info is None:
            raise TransactionFailed(f"Token mint {mint} not found")
        return info.owner

    async def build_burn_instructions(self, raw_amount: int, decimals: int) -> List[Instruction]:
        """Instructions for one burn; creates the incinerator's token account only when missing."""
        owner = self.keypair.pubkey()
        mint = Pubkey.from_string(self.config.token_mint)
        incinerator = Pubkey.from_string(self.config.burn_address)
        program_id = await self._token_program(mint)

        source = get_associated_token_address(owner, mint, program_id)
        destination = get_associated_token_address(incinerator, mint, program_id)

        instructions: List[Instruction] = []
        if await self.ledger.get_account_info(destination) is None:
            logger.info(f"[BURN] Creating incinerator token account {destination}")
            instructions.append(
                create_associated_token_account(
                    payer=owner, owner=incinerator, mint=mint, token_program_id=program_id
                )
            )

        instructions.append(
            transfer_checked(
                TransferCheckedParams(
                    program_id=program_id,
                    source=source,
                    mint=mint,
                    dest=destination,
                    owner=owner,
                    amount=raw_amount,
                    decimals=decimals,
                )
            )
        )
        return instructions

    async def burn(self, buyback_id: int, token_amount: str) -> BurnResult:
        """
        Irreversibly burn `token_amount` display units and record the burn.

        Raises:
            InvalidBurnAmount, TransactionFailed, PersistenceError
        """
        mint = self.config.token_mint
        decimals = await self.ledger.get_token_decimals(mint)
        raw_amount = to_raw_amount(token_amount, decimals)
        logger.info(
            f"[BURN] Burning {token_amount} tokens ({raw_amount} raw, {decimals} decimals) "
            f"from buyback {buyback_id}"
        )

        instructions = await self.build_burn_instructions(raw_amount, decimals)
        created_account = len(instructions) > 1

        try:
            signature = await self.ledger.send_instructions(self.keypair, instructions)
        except TransactionFailed as e:
            if e.signature:
                await self._record_failure(buyback_id, e.signature, token_amount, e.message)
            raise

        logger.info(f"[BURN] Burn confirmed: {explorer_url(signature)}")

        burn_id = await self.store.settle_burn(buyback_id, signature, token_amount, TxStatus.CONFIRMED)

        return BurnResult(
            success=True,
            signature=signature,
            burn_id=burn_id,
            tokens_burned=token_amount,
            raw_amount=raw_amount,
            created_incinerator_account=created_account,
        )

    async def _record_failure(
        self, buyback_id: int, signature: str, token_amount: str, message: str
    ) -> Optional[int]:
        try:
            burn_id = await self.store.settle_burn(buyback_id, signature, token_amount, TxStatus.FAILED, message)
            logger.error(f"[BURN] Burn {burn_id} marked failed: {message}")
            return burn_id
        except PersistenceError as e:
            logger.error(f"[BURN] Could not record failed burn {signature[:16]}...: {e.message}")
            return None
