"""Solana ledger access with bounded retries and time-bounded confirmation."""

from __future__ import annotations

import asyncio
import logging
import random
import re
import time
from decimal import Decimal
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Sequence, Tuple, Union

import httpx
from solana.exceptions import SolanaRpcException
from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Commitment
from solana.rpc.core import RPCException
from solana.rpc.types import TxOpts
from solders.hash import Hash
from solders.instruction import Instruction
from solders.keypair import Keypair
from solders.message import Message
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.system_program import TransferParams, transfer
from solders.transaction import Transaction, VersionedTransaction
from solders.transaction_status import TransactionConfirmationStatus

from autopump.errors import TransactionFailed

logger = logging.getLogger(__name__)

SignedTransaction = Union[Transaction, VersionedTransaction]
RebuildFn = Callable[[], Awaitable[SignedTransaction]]

EXPLORER_BASE = "https://solscan.io/tx/"
RPC_ERRORS = (SolanaRpcException, RPCException, httpx.HTTPError, asyncio.TimeoutError, OSError)


def _backoff_delay(base: float, attempt: int, max_delay: float = 10.0) -> float:
    """Exponential backoff with jitter to prevent thundering herd."""
    delay = min(max_delay, base * (2 ** attempt))
    jitter = delay * 0.1 * random.random()
    return delay + jitter


def explorer_url(signature: str, cluster: str = "mainnet") -> str:
    suffix = "?cluster=devnet" if cluster == "devnet" else ""
    return f"{EXPLORER_BASE}{signature}{suffix}"


def _is_blockhash_expired(error: Optional[str]) -> bool:
    if not error:
        return False
    lower = error.lower()
    return "blockhash" in lower or "blockhashnotfound" in lower


def _is_already_processed(error: Optional[str]) -> bool:
    if not error:
        return False
    lower = error.lower()
    return "alreadyprocessed" in lower or "already been processed" in lower


def describe_error(error: Optional[str]) -> Optional[str]:
    """Return a short, human-readable hint for common Solana errors."""
    if not error:
        return None

    lower = error.lower()
    if "alreadyprocessed" in lower or "already been processed" in lower:
        return "Transaction already processed; likely duplicate or replayed."
    if "blockhash" in lower:
        return "Blockhash expired; rebuild and re-sign the transaction."
    if "accountinuse" in lower:
        return "Account in use; retry with backoff."
    if "insufficientfunds" in lower or "insufficient funds" in lower:
        return "Insufficient funds for fee or transfer."
    if "invalidaccountdata" in lower:
        return "Invalid account data; verify mint/account ownership."
    if "uninitializedaccount" in lower:
        return "Account not initialized; create associated token account."
    if "confirmation_timeout" in lower:
        return "Transaction was not confirmed in time; it may still land."

    match = re.search(r"InstructionErrorCustom\((\d+)\)", error)
    if match:
        return f"Custom program error {match.group(1)}; program-specific constraint failed."
    return None


def classify_error(error: Optional[str]) -> str:
    """Classify an RPC or transaction error as retryable, permanent or unknown."""
    if not error:
        return "unknown"

    lower = error.lower()
    if "alreadyprocessed" in lower or "already been processed" in lower:
        return "permanent"
    if "insufficientfunds" in lower or "insufficient funds" in lower:
        return "permanent"
    if "invalidaccountdata" in lower or "uninitializedaccount" in lower:
        return "permanent"
    if "signatureverificationfailed" in lower:
        return "permanent"
    if "instructionerror" in lower or "custom program error" in lower:
        return "permanent"
    if "blockhash" in lower or "accountinuse" in lower:
        return "retryable"
    if "timeout" in lower or "timed out" in lower or "confirmation_timeout" in lower:
        return "retryable"
    if "connection" in lower or "network" in lower:
        return "retryable"
    if "rate" in lower or "429" in lower or "503" in lower:
        return "retryable"
    return "unknown"


def sign_versioned_transaction(tx_bytes: bytes, keypair: Keypair) -> VersionedTransaction:
    """Sign an unsigned serialized transaction returned by a trade service."""
    unsigned = VersionedTransaction.from_bytes(tx_bytes)
    return VersionedTransaction(unsigned.message, [keypair])


def token_balance_delta(
    pre_balances: Optional[Iterable[Any]],
    post_balances: Optional[Iterable[Any]],
    owner: str,
    mint: str,
) -> Tuple[int, str]:
    """
    Compute the change of `owner`'s balance of `mint` across a transaction.

    Returns:
        (raw base-unit delta, display-unit delta as a decimal string)
    """

    def _matching(balances):
        found: Dict[int, Any] = {}
        for balance in balances or []:
            if str(balance.mint) != mint:
                continue
            if balance.owner is not None and str(balance.owner) != owner:
                continue
            found[balance.account_index] = balance
        return found

    pre = _matching(pre_balances)
    post = _matching(post_balances)

    raw_delta = 0
    decimals = 0
    for index in set(pre) | set(post):
        before = int(pre[index].ui_token_amount.amount) if index in pre else 0
        after = int(post[index].ui_token_amount.amount) if index in post else 0
        raw_delta += after - before
        source = post.get(index) or pre.get(index)
        decimals = source.ui_token_amount.decimals

    display = Decimal(raw_delta).scaleb(-decimals) if decimals else Decimal(raw_delta)
    return raw_delta, format(display.normalize(), "f") if raw_delta else "0"


class LedgerClient:
    """
    Thin async wrapper over the Solana JSON-RPC API.

    Features:
    - Bounded submission retries with exponential backoff
    - Time-bounded confirmation polling that raises instead of hanging
    - Blockhash-expiry rebuilds via an optional rebuild callback
    - Per-mint decimals cache
    """

    def __init__(
        self,
        rpc_url: str,
        *,
        commitment: str = "confirmed",
        max_retries: int = 3,
        retry_delay: float = 1.0,
        confirmation_timeout: float = 60.0,
        poll_interval: float = 0.5,
        client: Optional[AsyncClient] = None,
    ):
        self.rpc_url = rpc_url
        self.commitment = commitment
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.confirmation_timeout = confirmation_timeout
        self.poll_interval = poll_interval
        self._client = client or AsyncClient(rpc_url, commitment=Commitment(commitment))
        self._decimals_cache: Dict[str, int] = {}

    async def close(self) -> None:
        await self._client.close()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_balance(self, address: Union[str, Pubkey]) -> int:
        """Lamport balance of an address."""
        resp = await self._client.get_balance(_pubkey(address), commitment=Commitment(self.commitment))
        return int(resp.value)

    async def get_account_info(self, address: Union[str, Pubkey]) -> Optional[Any]:
        """Account info, or None when the account does not exist."""
        resp = await self._client.get_account_info(_pubkey(address))
        return resp.value

    async def get_token_decimals(self, mint: Union[str, Pubkey]) -> int:
        key = str(mint)
        cached = self._decimals_cache.get(key)
        if cached is not None:
            return cached
        resp = await self._client.get_token_supply(_pubkey(mint))
        decimals = int(resp.value.decimals)
        self._decimals_cache[key] = decimals
        return decimals

    async def get_minimum_balance_for_rent_exemption(self, data_len: int) -> int:
        resp = await self._client.get_minimum_balance_for_rent_exemption(data_len)
        return int(resp.value)

    async def get_latest_blockhash(self) -> Hash:
        resp = await self._client.get_latest_blockhash()
        return resp.value.blockhash

    async def get_token_balance_change(self, signature: str, owner: str, mint: str) -> Tuple[int, str]:
        """Token balance delta of `owner` for `mint` in a confirmed transaction."""
        resp = await self._client.get_transaction(
            Signature.from_string(signature),
            encoding="jsonParsed",
            commitment=Commitment(self.commitment),
            max_supported_transaction_version=0,
        )
        if resp.value is None:
            raise TransactionFailed(f"Transaction {signature[:16]}... not found", signature=signature)
        meta = resp.value.transaction.meta
        if meta is None:
            raise TransactionFailed(f"Transaction {signature[:16]}... has no metadata", signature=signature)
        return token_balance_delta(meta.pre_token_balances, meta.post_token_balances, owner, mint)

    async def check_connection(self) -> bool:
        try:
            version = await self._client.get_version()
            logger.debug(f"Solana RPC connection healthy: {version.value}")
            return True
        except RPC_ERRORS as e:
            logger.error(f"Solana RPC connection failed: {e}")
            return False

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def send_transaction(self, signed_tx: SignedTransaction) -> str:
        """Submit a signed transaction once and return its signature."""
        opts = TxOpts(skip_preflight=False, preflight_commitment=Commitment(self.commitment))
        resp = await self._client.send_raw_transaction(bytes(signed_tx), opts=opts)
        if not resp.value:
            raise TransactionFailed("send_returned_no_value")
        return str(resp.value)

    async def confirm_transaction(self, signature: str, timeout: Optional[float] = None) -> None:
        """
        Poll until the signature reaches the configured commitment.

        Raises:
            TransactionFailed: If the transaction errored or the timeout elapsed
        """
        timeout = timeout if timeout is not None else self.confirmation_timeout
        sig = Signature.from_string(signature)
        start = time.monotonic()
        poll_count = 0

        while time.monotonic() - start < timeout:
            try:
                resp = await self._client.get_signature_statuses([sig])
                value = resp.value[0] if resp.value else None
            except RPC_ERRORS as exc:
                logger.debug(f"Status check failed: {exc}")
                value = None

            if value is not None:
                if value.err:
                    error_str = str(value.err)
                    logger.warning(f"Transaction {signature[:16]}... failed: {error_str}")
                    raise TransactionFailed(
                        f"Transaction {signature[:16]}... failed: {error_str}",
                        signature=signature,
                        hint=describe_error(error_str),
                    )
                if _reached_commitment(value.confirmation_status, self.commitment):
                    logger.info(f"Transaction {signature[:16]}... {self.commitment}")
                    return

            poll_count += 1
            await asyncio.sleep(min(self.poll_interval * (1.2 ** min(poll_count, 10)), 2.0))

        logger.warning(f"Transaction {signature[:16]}... confirmation timeout after {timeout}s")
        raise TransactionFailed(
            f"Transaction {signature[:16]}... confirmation_timeout after {timeout}s",
            signature=signature,
            hint=describe_error("confirmation_timeout"),
        )

    async def _landed(self, signature: str) -> bool:
        """Whether the signature reached the configured commitment without error."""
        try:
            resp = await self._client.get_signature_statuses([Signature.from_string(signature)])
        except RPC_ERRORS as exc:
            logger.debug(f"Status lookup failed: {exc}")
            return False
        value = resp.value[0] if resp.value else None
        if value is None or value.err:
            return False
        return _reached_commitment(value.confirmation_status, self.commitment)

    async def send_and_confirm(
        self,
        signed_tx: SignedTransaction,
        *,
        rebuild: Optional[RebuildFn] = None,
    ) -> str:
        """
        Submit and confirm with bounded retries.

        A transaction whose blockhash expired is rebuilt through `rebuild`;
        otherwise the same signed bytes are resent, which the network
        deduplicates by signature. Before every resend, and whenever the
        network reports the transaction as already processed, the last
        signature is looked up so a send that landed late is returned
        instead of reported as failed.
        """
        current_tx = signed_tx
        last_error: Optional[str] = None
        last_signature: Optional[str] = None

        for attempt in range(self.max_retries):
            if last_signature is not None and await self._landed(last_signature):
                logger.info(f"Transaction {last_signature[:16]}... landed after confirmation timeout")
                return last_signature

            try:
                signature = await self.send_transaction(current_tx)
                last_signature = signature
                logger.info(f"Transaction sent (attempt {attempt + 1}/{self.max_retries}): {signature[:16]}...")
                await self.confirm_transaction(signature)
                return signature
            except TransactionFailed as exc:
                last_error = exc.message
            except RPC_ERRORS as exc:
                last_error = str(exc)

            if last_signature is not None and _is_already_processed(last_error):
                logger.info(f"Transaction {last_signature[:16]}... already processed, confirming")
                await self.confirm_transaction(last_signature)
                return last_signature

            if classify_error(last_error) == "permanent":
                logger.error(f"Permanent transaction error: {last_error}")
                raise TransactionFailed(
                    last_error,
                    signature=last_signature,
                    attempts=attempt + 1,
                    hint=describe_error(last_error),
                )

            logger.warning(f"Transaction attempt {attempt + 1}/{self.max_retries} failed: {last_error}")
            if attempt < self.max_retries - 1:
                await asyncio.sleep(_backoff_delay(self.retry_delay, attempt))
                if _is_blockhash_expired(last_error) and rebuild is not None:
                    logger.info("Blockhash expired, rebuilding transaction")
                    current_tx = await rebuild()

        if last_signature is not None and await self._landed(last_signature):
            logger.info(f"Transaction {last_signature[:16]}... landed after confirmation timeout")
            return last_signature

        logger.error(f"Transaction failed after {self.max_retries} attempts: {last_error}")
        raise TransactionFailed(
            f"Transaction failed after {self.max_retries} attempts: {last_error}",
            signature=last_signature,
            attempts=self.max_retries,
            hint=describe_error(last_error),
        )

    async def build_transaction(self, payer: Keypair, instructions: Sequence[Instruction]) -> Transaction:
        """Build and sign a legacy transaction against a fresh blockhash."""
        blockhash = await self.get_latest_blockhash()
        message = Message.new_with_blockhash(list(instructions), payer.pubkey(), blockhash)
        tx = Transaction.new_unsigned(message)
        tx.sign([payer], blockhash)
        return tx

    async def send_instructions(self, payer: Keypair, instructions: List[Instruction]) -> str:
        """Build, sign, submit and confirm a set of instructions."""

        async def _rebuild() -> Transaction:
            return await self.build_transaction(payer, instructions)

        tx = await _rebuild()
        return await self.send_and_confirm(tx, rebuild=_rebuild)

    async def transfer_sol(self, payer: Keypair, destination: Union[str, Pubkey], lamports: int) -> str:
        """System-program transfer of `lamports` from `payer` to `destination`."""
        if lamports <= 0:
            raise ValueError("Amount must be positive")
        ix = transfer(
            TransferParams(
                from_pubkey=payer.pubkey(),
                to_pubkey=_pubkey(destination),
                lamports=lamports,
            )
        )
        return await self.send_instructions(payer, [ix])


def _pubkey(address: Union[str, Pubkey]) -> Pubkey:
    return address if isinstance(address, Pubkey) else Pubkey.from_string(address)


_COMMITMENT_ORDER = (
    TransactionConfirmationStatus.Processed,
    TransactionConfirmationStatus.Confirmed,
    TransactionConfirmationStatus.Finalized,
)
_REQUIRED_RANK = {"processed": 0, "confirmed": 1, "finalized": 2}


def _reached_commitment(status: Optional[TransactionConfirmationStatus], commitment: str) -> bool:
    if status is None:
        return False
    for rank, level in enumerate(_COMMITMENT_ORDER):
        if status == level:
            return rank >= _REQUIRED_RANK.get(commitment, 1)
    return False
