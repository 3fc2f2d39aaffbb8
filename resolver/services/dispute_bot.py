"""
Dispute bot: submits candidate disputes on-chain, reconciles on-chain ids
from contract events and claims rewards for resolved disputes it owns.

Per dispute: candidate (dispute_id 0) -> submitted (dispute_id > 0, active)
-> settled (resolved | rejected) -> claimed.
"""
import asyncio
import uuid
from decimal import Decimal
from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session
from web3 import Web3

from resolver.config import settings
from resolver.exceptions import ConfigurationError, is_already_claimed
from resolver.models.dispute import Dispute, DisputeStatus
from resolver.models.market import Market
from resolver.services.base_service import PollingService
from resolver.services.chain import (
    ChainClient,
    DisputeContract,
    DisputeResolvedEvent,
    DisputeSubmittedEvent,
    OnChainDisputeStatus,
)
from resolver import store


class DisputeBot(PollingService):
    """Automated dispute submission and reward claiming for one signer."""

    CHECKPOINT_NAME = "dispute_events"

    def __init__(self, contract: DisputeContract, address: str, chain_id: int, stake_wei: int,
                 max_concurrent: int = 5, confidence_threshold: int = 50, submit_delay: float = 2.0,
                 claim_batch_size: int = 20, lease_seconds: int = 600, start_block: Optional[int] = None,
                 interval_seconds: float = 60, instance_id: Optional[str] = None,
                 market_address: Optional[str] = None, **kwargs):
        super().__init__(interval_seconds, **kwargs)
        self.contract = contract
        self.address = address.lower()
        self.chain_id = chain_id
        self.stake_wei = stake_wei
        self.max_concurrent = max_concurrent
        self.confidence_threshold = confidence_threshold
        self.submit_delay = submit_delay
        self.claim_batch_size = claim_batch_size
        self.lease_seconds = lease_seconds
        self.start_block = start_block
        self.instance_id = instance_id or f"{self.address}:{uuid.uuid4().hex[:8]}"
        # Market contract whose ids appear in DisputeSubmitted events
        self.market_address = market_address.lower() if market_address else None

    @classmethod
    def from_settings(cls, **kwargs) -> "DisputeBot":
        """Build the bot from configuration. Missing signer or contract is fatal."""
        private_key = settings.signer_key("dispute_bot")
        if not private_key:
            raise ConfigurationError("No wallet configured. Set DISPUTE_BOT_PRIVATE_KEY or PRIVATE_KEY")
        if not settings.dispute_address:
            raise ConfigurationError("No dispute contract configured. Set DISPUTE_ADDRESS")

        client = ChainClient(settings.rpc_url, private_key, settings.chain_id, settings.tx_receipt_timeout)
        contract = DisputeContract(client, settings.dispute_address, settings.event_scan_chunk_size)
        market_address = settings.market_aggregator_address
        if market_address == store.ZERO_ADDRESS:
            market_address = None
        return cls(
            contract=contract,
            address=client.address,
            chain_id=settings.chain_id,
            stake_wei=Web3.to_wei(Decimal(settings.dispute_stake_eth), "ether"),
            max_concurrent=settings.dispute_max_concurrent,
            confidence_threshold=settings.dispute_confidence_threshold,
            submit_delay=settings.dispute_submit_delay,
            claim_batch_size=settings.dispute_claim_batch_size,
            lease_seconds=settings.dispute_lease_seconds,
            start_block=settings.dispute_start_block,
            interval_seconds=settings.dispute_poll_interval,
            market_address=market_address,
            **kwargs
        )

    @property
    def stake(self) -> float:
        return float(Web3.from_wei(self.stake_wei, "ether"))

    # Event sync

    def _apply_submitted_event(self, db: Session, event: DisputeSubmittedEvent) -> bool:
        """Back-fill the on-chain id onto the matching local candidate, if any."""
        already_known = db.query(Dispute).filter(
            Dispute.chain_id == self.chain_id,
            Dispute.dispute_id == event.dispute_id
        ).first()
        if already_known:
            return False

        query = db.query(Dispute).join(Market, Dispute.market_id == Market.id).filter(
            Market.chain_id == self.chain_id,
            Market.market_id == event.market_id,
            Dispute.submitter == event.submitter.lower(),
            Dispute.dispute_id == 0
        )
        if self.market_address:
            query = query.filter(func.lower(Market.contract_address) == self.market_address)
        candidate = query.order_by(Dispute.submitted_at.asc()).first()
        if not candidate:
            return False

        if store.set_onchain_dispute_id(db, candidate, event.dispute_id,
                                        chain_id=self.chain_id, tx_hash=event.tx_hash):
            self.logger.info(f"Synced disputeId {event.dispute_id} to DB")
            return True
        return False

    def _apply_resolved_event(self, db: Session, event: DisputeResolvedEvent) -> bool:
        dispute = db.query(Dispute).filter(
            Dispute.chain_id == self.chain_id,
            Dispute.dispute_id == event.dispute_id
        ).first()
        if not dispute or dispute.status != DisputeStatus.ACTIVE.value:
            return False

        new_status = DisputeStatus.RESOLVED.value if event.accepted else DisputeStatus.REJECTED.value
        if store.transition_dispute_status(db, dispute, new_status):
            self.logger.info(f"Dispute {event.dispute_id} settled on-chain: {new_status}")
            return True
        return False

    def sync_dispute_states(self, db: Session) -> int:
        """Scan new contract events after the watermark, then advance the watermark.

        The watermark moves to the current height even when the scan fails, so
        a broken range is never retried indefinitely.
        """
        current_block = self.contract.block_number()
        last_block = store.get_checkpoint(db, self.CHECKPOINT_NAME, self.chain_id, self.contract.address)
        if last_block is None:
            last_block = self.start_block - 1 if self.start_block is not None else current_block
            self.logger.info(f"Starting from block {last_block + 1}")

        synced = 0
        if current_block > last_block:
            from_block = last_block + 1
            try:
                events = self.contract.submitted_events(from_block, current_block)
                if events:
                    self.logger.info(f"Found {len(events)} new dispute events")
                for event in events:
                    try:
                        if self._apply_submitted_event(db, event):
                            synced += 1
                    except Exception as e:
                        db.rollback()
                        self.logger.error(f"Failed to sync dispute event {event.dispute_id}: {e}")

                for event in self.contract.resolved_events(from_block, current_block):
                    try:
                        self._apply_resolved_event(db, event)
                    except Exception as e:
                        db.rollback()
                        self.logger.error(f"Failed to apply resolution of dispute {event.dispute_id}: {e}")
            except Exception as e:
                self.logger.error(f"Error scanning events in blocks {from_block}-{current_block}: {e}")

        store.save_checkpoint(db, self.CHECKPOINT_NAME, self.chain_id, self.contract.address,
                              max(last_block, current_block))
        return synced

    # Submission

    def pending_candidates(self, db: Session):
        return db.query(Dispute).filter(
            Dispute.status == DisputeStatus.ACTIVE.value,
            Dispute.dispute_id == 0,
            Dispute.submitter == self.address,
            Dispute.ai_confidence < self.confidence_threshold
        ).order_by(Dispute.submitted_at.asc()).limit(self.max_concurrent).all()

    def submit_candidate(self, db: Session, dispute: Dispute) -> bool:
        """Submit one candidate. Returns True when a transaction was sent."""
        if dispute.submitter != self.address:
            self.logger.warning(f"Dispute {dispute.id} was recorded for {dispute.submitter}, not this wallet, skipping")
            return False

        if not store.claim_dispute(db, dispute, self.instance_id, self.lease_seconds):
            self.logger.info(f"Dispute {dispute.id} is being submitted by another instance, skipping")
            return False

        if store.find_submitted_duplicate(db, dispute, self.address):
            self.logger.info(f"Dispute already exists for market {dispute.market_id}, removing duplicate")
            db.delete(dispute)
            db.commit()
            return False

        market = db.get(Market, dispute.market_id)
        if market is None:
            self.logger.warning(f"Market not found for dispute {dispute.id}")
            store.release_dispute(db, dispute, self.instance_id)
            return False

        self.logger.info(f"Submitting dispute for market {market.market_id}...")
        try:
            receipt = self.contract.submit_dispute(
                market.market_id, dispute.evidence_hash, dispute.proposed_outcome, self.stake_wei
            )
        except Exception:
            store.release_dispute(db, dispute, self.instance_id)
            raise

        events = [
            event for event in self.contract.submitted_events_from_receipt(receipt)
            if event.market_id == market.market_id
        ]
        if not events:
            self.logger.warning("Could not find DisputeSubmitted event in receipt")
            store.release_dispute(db, dispute, self.instance_id)
            return True

        event = events[0]
        store.set_onchain_dispute_id(
            db, dispute, event.dispute_id,
            stake=self.stake,
            chain_id=self.chain_id,
            tx_hash=event.tx_hash
        )
        self.logger.info(f"Dispute submitted with ID: {event.dispute_id}")
        return True

    async def submit_disputes(self, db: Session) -> None:
        candidates = self.pending_candidates(db)
        if not candidates:
            self.logger.info("No pending disputes to submit")
            return

        self.logger.info(f"Found {len(candidates)} disputes to submit")
        for dispute in candidates:
            if self.stopping:
                break
            dispute_ref = dispute.id
            try:
                sent = self.submit_candidate(db, dispute)
            except Exception as e:
                db.rollback()
                self.logger.error(f"Failed to submit dispute {dispute_ref}: {e}")
                continue

            if sent and self.submit_delay:
                await asyncio.sleep(self.submit_delay)

    # Claims

    def mark_claimed(self, db: Session, dispute: Dispute) -> None:
        store.transition_dispute_status(db, dispute, DisputeStatus.CLAIMED.value)

    def claim_reward(self, db: Session, dispute: Dispute) -> bool:
        """Claim one resolved dispute. Returns True when the local row ends up claimed."""
        if dispute.status == DisputeStatus.CLAIMED.value:
            return True

        try:
            live_status = self.contract.get_dispute_status(dispute.dispute_id)
            if live_status != OnChainDisputeStatus.RESOLVED:
                self.logger.info(f"Dispute {dispute.dispute_id} status is {live_status.name}, skipping")
                return False

            self.logger.info(f"Claiming reward for dispute {dispute.dispute_id}...")
            self.contract.claim_reward(dispute.dispute_id)
            self.logger.info(f"Claimed reward for dispute {dispute.dispute_id}")
        except Exception as e:
            if not is_already_claimed(e):
                self.logger.error(f"Failed to claim reward for dispute {dispute.dispute_id}: {e}")
                return False
            self.logger.info(f"Reward already claimed for dispute {dispute.dispute_id}")

        self.mark_claimed(db, dispute)
        return True

    async def claim_resolved_rewards(self, db: Session) -> None:
        resolved = db.query(Dispute).filter(
            Dispute.status == DisputeStatus.RESOLVED.value,
            Dispute.submitter == self.address,
            Dispute.dispute_id > 0
        ).limit(self.claim_batch_size).all()

        if not resolved:
            self.logger.info("No resolved disputes to claim")
            return

        self.logger.info(f"Checking {len(resolved)} resolved disputes for rewards...")
        for dispute in resolved:
            if self.stopping:
                break
            dispute_ref = dispute.dispute_id
            try:
                claimed = self.claim_reward(db, dispute)
            except Exception as e:
                db.rollback()
                self.logger.error(f"Failed to record claim for dispute {dispute_ref}: {e}")
                continue

            if claimed and self.submit_delay:
                await asyncio.sleep(self.submit_delay)

    async def run_cycle(self, db: Session) -> None:
        try:
            self.sync_dispute_states(db)
        except Exception as e:
            db.rollback()
            self.logger.error(f"Event sync failed, skipping submissions this cycle: {e}")
        else:
            await self.submit_disputes(db)

        await self.claim_resolved_rewards(db)
