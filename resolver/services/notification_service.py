"""
Notification Service for Subjective Market Verifiers

Tells verifiers when a subjective market enters its commit or reveal phase.
Every message is logged; when a webhook is configured it is also POSTed
there. Delivery is fire-and-forget: failures are logged and never reach the
caller.
"""

import asyncio
import logging
from typing import List, Optional, Set

import aiohttp

from resolver.config import settings


PHASE_INSTRUCTIONS = {
    "commit": "Please commit your outcome",
    "reveal": "Please reveal your outcome",
}


class NotificationService:
    """Service for sending verifier phase notifications."""

    def __init__(self, webhook_url: Optional[str] = None, timeout: Optional[float] = None):
        self.logger = logging.getLogger(__name__)
        self.webhook_url = webhook_url if webhook_url is not None else settings.verifier_webhook_url
        self.timeout = aiohttp.ClientTimeout(total=timeout or settings.http_timeout)
        self._pending: Set[asyncio.Task] = set()

    async def send_webhook(self, payload: dict) -> bool:
        """POST a notification to the configured webhook."""
        if not self.webhook_url:
            return False

        try:
            async with aiohttp.ClientSession(timeout=self.timeout) as session:
                async with session.post(self.webhook_url, json=payload) as response:
                    if response.status >= 300:
                        error_text = await response.text()
                        raise Exception(f"Webhook error: {response.status} - {error_text}")
            return True
        except Exception as e:
            self.logger.error(f"Failed to deliver notification to {payload.get('verifier')}: {e}")
            return False

    async def notify_verifier(self, market_id: str, question: str, phase: str, verifier: str) -> bool:
        instruction = PHASE_INSTRUCTIONS.get(phase, phase)
        self.logger.info(f"-> {verifier}: {instruction}")
        return await self.send_webhook({
            "market_id": market_id,
            "question": question,
            "phase": phase,
            "verifier": verifier,
            "message": instruction
        })

    def notify_verifiers(self, market_id: str, question: str, phase: str, verifiers: List[str]) -> None:
        """Schedule one notification per verifier without waiting for delivery."""
        self.logger.info(f"Notifying {len(verifiers)} verifiers for {phase} phase")
        self.logger.info(f"Market: {question}")

        for verifier in verifiers:
            try:
                task = asyncio.get_running_loop().create_task(
                    self.notify_verifier(market_id, question, phase, verifier)
                )
            except RuntimeError as e:
                self.logger.error(f"Cannot schedule notification for {verifier}: {e}")
                continue
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)

    async def drain(self) -> None:
        """Wait for in-flight notifications; used on shutdown and in tests."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
