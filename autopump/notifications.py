"""
Webhook notifications for pipeline outcomes.

Posts Discord/Slack-compatible {"content": ...} payloads. Delivery is best
effort: a failed notification is logged and never fails a pipeline run.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import aiohttp

from autopump.config import lamports_to_sol
from autopump.solana_execution import explorer_url
from autopump.types import OrchestrationResult

logger = logging.getLogger(__name__)


def format_message(result: OrchestrationResult, token_symbol: str = "tokens") -> Dict[str, Any]:
    """Build the webhook body for a pipeline result."""
    if result.success:
        lines = [
            "🔥 **Auto Pump - Claim Complete**",
            "",
            f"✅ Claimed: {lamports_to_sol(result.claimed_amount):.6f} SOL",
            f"💰 Treasury: {lamports_to_sol(result.treasury_amount):.6f} SOL",
            f"🔄 Buyback: {lamports_to_sol(result.buyback_amount):.6f} SOL",
            f"🔥 Burned: {result.tokens_burned} {token_symbol}",
            "",
            f"Claim: [{_short(result.claim_signature)}]({explorer_url(result.claim_signature)})",
            f"Treasury: [{_short(result.treasury_signature)}]({explorer_url(result.treasury_signature)})",
            f"Buyback: [{_short(result.buyback_signature)}]({explorer_url(result.buyback_signature)})",
            f"Burn: [{_short(result.burn_signature)}]({explorer_url(result.burn_signature)})",
        ]
    else:
        timestamp = datetime.fromtimestamp(result.timestamp, tz=timezone.utc).isoformat()
        stage = result.failed_stage.value if result.failed_stage else "unknown"
        lines = [
            "⚠️ **Auto Pump - Claim Failed**",
            "",
            f"Stage: {stage}",
            f"Error: {result.error}",
            f"Time: {timestamp}",
        ]
        for label, signature in (
            ("Claim", result.claim_signature),
            ("Treasury", result.treasury_signature),
            ("Buyback", result.buyback_signature),
            ("Burn", result.burn_signature),
        ):
            if signature:
                lines.append(f"{label}: [{_short(signature)}]({explorer_url(signature)})")
    return {"content": "\n".join(lines)}


def _short(signature: Optional[str]) -> str:
    return f"{signature[:8]}...{signature[-8:]}" if signature else "n/a"


class WebhookNotifier:
    """Delivers pipeline outcomes to a single webhook URL."""

    def __init__(
        self,
        url: Optional[str],
        token_symbol: str = "tokens",
        retry_count: int = 3,
        retry_delay_seconds: float = 1.0,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.url = url
        self.token_symbol = token_symbol
        self.retry_count = retry_count
        self.retry_delay_seconds = retry_delay_seconds
        self._session = session

    @property
    def enabled(self) -> bool:
        return bool(self.url)

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create aiohttp session."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=30))
        return self._session

    async def notify(self, result: OrchestrationResult) -> bool:
        """
        Send a notification for `result`.

        Returns:
            True if delivered, False if disabled or every attempt failed
        """
        if not self.enabled:
            return False

        body = format_message(result, self.token_symbol)
        session = await self._get_session()

        for attempt in range(self.retry_count):
            try:
                async with session.post(self.url, json=body) as resp:
                    if resp.status in (200, 201, 204):
                        logger.debug(f"Webhook notification sent (success={result.success})")
                        return True
                    text = await resp.text()
                    logger.warning(f"Webhook notification failed ({resp.status}): {text[:200]}")
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                logger.error(f"Webhook notification error: {type(e).__name__}: {e}")

            if attempt < self.retry_count - 1:
                await asyncio.sleep(self.retry_delay_seconds * (attempt + 1))

        logger.error(f"Webhook notification dropped after {self.retry_count} attempts")
        return False

    async def close(self) -> None:
        """Close the aiohttp session."""
        if self._session and not self._session.closed:
            await self._session.close()
