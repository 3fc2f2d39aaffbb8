"""
Base class for the long-running polling services.
"""
from abc import ABC, abstractmethod
import asyncio
import logging
import signal
from typing import Callable, Optional

from sqlalchemy.orm import Session

from resolver.database import SessionLocal


class PollingService(ABC):
    """Runs `run_cycle` on a fixed interval until stopped.

    A stop request lets the in-flight cycle finish and prevents the next one
    from starting.
    """

    def __init__(self, interval_seconds: float, session_factory: Callable[[], Session] = SessionLocal):
        self.interval_seconds = interval_seconds
        self.session_factory = session_factory
        self.logger = logging.getLogger(f"{self.__class__.__name__}")
        self._stop_event: Optional[asyncio.Event] = None

    @abstractmethod
    async def run_cycle(self, db: Session) -> None:
        """Process one bounded batch of work."""

    async def run_once(self) -> None:
        """Run a single cycle with a fresh session; errors are logged, never raised."""
        db = self.session_factory()
        try:
            self.logger.info("=== Starting cycle ===")
            await self.run_cycle(db)
            self.logger.info("=== Cycle complete ===")
        except Exception as e:
            db.rollback()
            self.logger.error(f"Cycle error: {e}", exc_info=True)
        finally:
            db.close()

    def stop(self) -> None:
        self.logger.info("Stop requested; finishing current cycle")
        if self._stop_event:
            self._stop_event.set()

    @property
    def stopping(self) -> bool:
        return bool(self._stop_event and self._stop_event.is_set())

    def install_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self.stop)
            except NotImplementedError:
                # Not supported on this platform's event loop
                self.logger.warning(f"Cannot install handler for {sig.name}")

    async def run_forever(self) -> None:
        self._stop_event = asyncio.Event()
        self.logger.info(f"Starting {self.__class__.__name__} every {self.interval_seconds} seconds")

        while not self._stop_event.is_set():
            await self.run_once()
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                pass

        self.logger.info(f"{self.__class__.__name__} stopped")
