"""
Subjective market coordinator: drives subjective markets through
active -> commit_phase -> reveal_phase -> resolved.

Each transition re-reads the market from the factory contract, makes the
phase call only when the chain has not already advanced, and then persists the
new status with a conditional update. A failed call leaves the local row
untouched so the next cycle retries from the same precondition.
"""
import enum
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy.orm import Session

from resolver.config import settings
from resolver.exceptions import ConfigurationError
from resolver.models.base import utcnow
from resolver.models.market import Market, MarketStatus, MarketType
from resolver.services.base_service import PollingService
from resolver.services.chain import ChainClient, SubjectiveFactoryContract
from resolver.services.notification_service import NotificationService
from resolver import store


class SubjectivePhase(enum.IntEnum):
    """Phase numbering used by the factory contract."""

    ACTIVE = 0
    COMMIT = 1
    REVEAL = 2
    RESOLVED = 3


class SubjectiveOracle(PollingService):
    """Timed commit-reveal coordinator for subjective markets."""

    def __init__(self, factory: SubjectiveFactoryContract, notifier: NotificationService,
                 commit_window: timedelta, reveal_window: timedelta, batch_size: int = 5,
                 interval_seconds: float = 60, **kwargs):
        super().__init__(interval_seconds, **kwargs)
        self.factory = factory
        self.notifier = notifier
        self.commit_window = commit_window
        self.reveal_window = reveal_window
        self.batch_size = batch_size

    @classmethod
    def from_settings(cls, **kwargs) -> "SubjectiveOracle":
        """Build the coordinator from configuration. Missing signer or factory is fatal."""
        private_key = settings.signer_key("oracle")
        if not private_key:
            raise ConfigurationError("No wallet configured. Set ORACLE_PRIVATE_KEY or PRIVATE_KEY")
        if not settings.subjective_factory_address:
            raise ConfigurationError("No factory contract configured. Set SUBJECTIVE_FACTORY_ADDRESS")

        client = ChainClient(settings.rpc_url, private_key, settings.chain_id, settings.tx_receipt_timeout)
        return cls(
            factory=SubjectiveFactoryContract(client, settings.subjective_factory_address),
            notifier=NotificationService(),
            commit_window=timedelta(hours=settings.commit_duration_hours),
            reveal_window=timedelta(hours=settings.reveal_duration_hours),
            batch_size=settings.subjective_batch_size,
            interval_seconds=settings.subjective_oracle_interval,
            **kwargs
        )

    def _subjective(self, db: Session, status: MarketStatus):
        return db.query(Market).filter(
            Market.market_type == MarketType.SUBJECTIVE.value,
            Market.status == status.value
        )

    def ready_for_commit(self, db: Session, now: datetime) -> List[Market]:
        return self._subjective(db, MarketStatus.ACTIVE).filter(
            Market.resolution_time <= now
        ).order_by(Market.resolution_time.asc()).limit(self.batch_size).all()

    def ready_for_reveal(self, db: Session, now: datetime) -> List[Market]:
        return self._subjective(db, MarketStatus.COMMIT_PHASE).filter(
            Market.status_updated_at < now - self.commit_window
        ).order_by(Market.status_updated_at.asc()).limit(self.batch_size).all()

    def ready_for_resolution(self, db: Session, now: datetime) -> List[Market]:
        return self._subjective(db, MarketStatus.REVEAL_PHASE).filter(
            Market.status_updated_at < now - self.reveal_window
        ).order_by(Market.status_updated_at.asc()).limit(self.batch_size).all()

    def _live_phase(self, market: Market) -> Optional[SubjectivePhase]:
        try:
            return SubjectivePhase(self.factory.get_market(market.market_id).phase)
        except Exception as e:
            self.logger.error(f"Could not read on-chain state of market {market.id}: {e}")
            return None

    def _notify(self, market: Market, phase: str, verifiers: List[str]) -> None:
        try:
            self.notifier.notify_verifiers(market.id, market.question, phase, verifiers)
        except Exception as e:
            self.logger.error(f"Verifier notification failed for market {market.id}: {e}")

    def start_commit_phase(self, db: Session, market: Market, now: Optional[datetime] = None) -> bool:
        self.logger.info(f"Starting commit phase for market {market.id}")
        live_phase = self._live_phase(market)
        if live_phase is None:
            return False

        if live_phase < SubjectivePhase.COMMIT:
            try:
                self.factory.start_commit_phase(market.market_id)
            except Exception as e:
                self.logger.error(f"Error starting commit phase for market {market.id}: {e}")
                return False
            self.logger.info(f"Commit phase started on-chain for market {market.market_id}")

        try:
            verifiers = self.factory.get_market(market.market_id).verifiers
            self.logger.info(f"Found {len(verifiers)} verifiers")
            self._notify(market, "commit", verifiers)
        except Exception as e:
            self.logger.error(f"Could not read verifiers for market {market.id}: {e}")

        if store.transition_market_status(db, market, MarketStatus.COMMIT_PHASE.value, now):
            self.logger.info(f"Market {market.id} updated to commit_phase in DB")
            return True
        return False

    def start_reveal_phase(self, db: Session, market: Market, now: Optional[datetime] = None) -> bool:
        self.logger.info(f"Starting reveal phase for market {market.id}")
        try:
            commitments = self.factory.commitment_events(market.market_id)
        except Exception as e:
            self.logger.error(f"Error collecting commitments for market {market.id}: {e}")
            return False

        self.logger.info(f"Collected {len(commitments)} commitments")
        if not commitments:
            self.logger.warning(f"No commitments found for market {market.id}, cannot proceed to reveal")
            return False

        live_phase = self._live_phase(market)
        if live_phase is None:
            return False

        if live_phase < SubjectivePhase.REVEAL:
            try:
                self.factory.start_reveal_phase(market.market_id)
            except Exception as e:
                self.logger.error(f"Error starting reveal phase for market {market.id}: {e}")
                return False
            self.logger.info(f"Reveal phase started on-chain for market {market.market_id}")

        verifiers = list(dict.fromkeys(commitment.verifier for commitment in commitments))
        self._notify(market, "reveal", verifiers)

        if store.transition_market_status(db, market, MarketStatus.REVEAL_PHASE.value, now):
            self.logger.info(f"Market {market.id} updated to reveal_phase in DB")
            return True
        return False

    def force_resolve_market(self, db: Session, market: Market, now: Optional[datetime] = None) -> bool:
        self.logger.info(f"Force resolving market {market.id}")
        try:
            reveals = self.factory.reveal_events(market.market_id)
            self.logger.info(f"Collected {len(reveals)} reveals")
            if not reveals:
                self.logger.warning(f"No reveals found for market {market.id}, market may be invalid")
        except Exception as e:
            self.logger.warning(f"Error collecting reveals for market {market.id}: {e}")

        live_phase = self._live_phase(market)
        if live_phase is None:
            return False

        try:
            if live_phase < SubjectivePhase.RESOLVED:
                self.factory.force_resolve_market(market.market_id)
                self.logger.info(f"Market {market.market_id} resolved on-chain")
            outcome = self.factory.get_market(market.market_id).outcome
        except Exception as e:
            self.logger.error(f"Error force resolving market {market.id}: {e}")
            return False

        self.logger.info(f"Final outcome: {'YES' if outcome == 1 else 'NO'}")
        if store.transition_market_status(db, market, MarketStatus.RESOLVED.value, now, outcome=outcome):
            self.logger.info(f"Market {market.id} resolved in DB")
            return True
        return False

    async def run_cycle(self, db: Session) -> None:
        now = utcnow()
        stages = (
            (self.ready_for_commit, self.start_commit_phase),
            (self.ready_for_reveal, self.start_reveal_phase),
            (self.ready_for_resolution, self.force_resolve_market),
        )
        for select, advance in stages:
            for market in select(db, now):
                if self.stopping:
                    return
                market_ref = market.id
                try:
                    advance(db, market)
                except Exception as e:
                    db.rollback()
                    self.logger.error(f"Error advancing market {market_ref}: {e}")
