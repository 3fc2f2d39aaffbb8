"""Shared fixtures: an in-memory database plus fakes for the chain and notifier."""
import itertools
import os
from datetime import timedelta

os.environ.setdefault("DATABASE_URL", "sqlite://")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from resolver.exceptions import AlreadyClaimedError, ChainError
from resolver.models import Base, Dispute, DisputeStatus, Market, MarketStatus, MarketType
from resolver.models.base import utcnow
from resolver.services.chain import (
    DisputeSubmittedEvent,
    OnChainDisputeStatus,
    SubjectiveMarketState,
)

CHAIN_ID = 97
BOT_ADDRESS = "0x" + "ab" * 20
AGGREGATOR_ADDRESS = "0x" + "cd" * 20
DISPUTE_ADDRESS = "0x52EbCBf8c967Fcb4b83644626822881ADaA9bffF"
CREATOR = "0x" + "01" * 20


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool
    )
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    yield factory
    engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def make_market(db):
    counter = itertools.count(1)

    def _make(**overrides) -> Market:
        values = dict(
            chain_id=CHAIN_ID,
            contract_address=AGGREGATOR_ADDRESS,
            market_id=next(counter),
            question="Will it rain in Lisbon tomorrow?",
            category="weather",
            market_type=MarketType.PUBLIC.value,
            status=MarketStatus.ACTIVE.value,
            resolution_time=utcnow() + timedelta(days=1),
            total_volume=10.0,
            creator=CREATOR
        )
        values.update(overrides)
        market = Market(**values)
        db.add(market)
        db.commit()
        db.refresh(market)
        return market

    return _make


@pytest.fixture
def make_dispute(db):
    def _make(market: Market, **overrides) -> Dispute:
        values = dict(
            chain_id=CHAIN_ID,
            dispute_id=0,
            market_id=market.id,
            submitter=BOT_ADDRESS,
            evidence_hash="0x" + "11" * 32,
            stake=0.0,
            status=DisputeStatus.ACTIVE.value,
            proposed_outcome=1,
            ai_confidence=20,
            submitted_at=utcnow()
        )
        values.update(overrides)
        dispute = Dispute(**values)
        db.add(dispute)
        db.commit()
        db.refresh(dispute)
        return dispute

    return _make


class FakeDisputeContract:
    """In-memory stand-in for the dispute contract."""

    def __init__(self, block: int = 100, submitter: str = BOT_ADDRESS):
        self.address = DISPUTE_ADDRESS
        self.block = block
        self.submitter = submitter
        self.submitted = []
        self.resolved = []
        self.scanned = []
        self.submissions = []
        self.statuses = {}
        self.claimed = set()
        self.claim_calls = []
        self.next_dispute_id = 1
        self.emit_event = True
        self.fail_scan = False
        self.fail_submit = False

    def block_number(self) -> int:
        return self.block

    def submitted_events(self, from_block, to_block):
        self.scanned.append((from_block, to_block))
        if self.fail_scan:
            raise ChainError("eth_getLogs failed")
        return [e for e in self.submitted if from_block <= e.block_number <= to_block]

    def resolved_events(self, from_block, to_block):
        return [e for e in self.resolved if from_block <= e.block_number <= to_block]

    def submit_dispute(self, market_id, evidence_hash, proposed_outcome, stake_wei):
        if self.fail_submit:
            raise ChainError("execution reverted: Market not resolved")
        dispute_id = self.next_dispute_id
        self.next_dispute_id += 1
        event = DisputeSubmittedEvent(
            dispute_id=dispute_id,
            market_id=market_id,
            submitter=self.submitter.upper().replace("0X", "0x"),
            evidence_hash=evidence_hash,
            proposed_outcome=proposed_outcome,
            block_number=self.block,
            tx_hash=f"0x{dispute_id:064x}"
        )
        self.submitted.append(event)
        self.submissions.append(event)
        return {"events": [event] if self.emit_event else []}

    def submitted_events_from_receipt(self, receipt):
        return receipt["events"]

    def get_dispute_status(self, dispute_id):
        return self.statuses.get(dispute_id, OnChainDisputeStatus.ACTIVE)

    def claim_reward(self, dispute_id):
        self.claim_calls.append(dispute_id)
        if dispute_id in self.claimed:
            raise AlreadyClaimedError("execution reverted: Already claimed")
        self.claimed.add(dispute_id)


class FakeFactory:
    """In-memory stand-in for the subjective market factory."""

    def __init__(self, verifiers=None):
        self.verifiers = verifiers if verifiers is not None else ["0xverifier1", "0xverifier2"]
        self.phases = {}
        self.outcomes = {}
        self.commitments = {}
        self.reveals = {}
        self.calls = []
        self.failing = set()

    def get_market(self, market_id):
        if "get_market" in self.failing:
            raise ChainError("rpc unavailable")
        return SubjectiveMarketState(
            market_id=market_id,
            question="",
            verifiers=list(self.verifiers),
            phase=self.phases.get(market_id, 0),
            outcome=self.outcomes.get(market_id, 0),
            reveal_count=len(self.reveals.get(market_id, []))
        )

    def _phase_call(self, name, market_id, phase):
        if name in self.failing:
            raise ChainError(f"{name} reverted")
        self.calls.append((name, market_id))
        self.phases[market_id] = phase

    def start_commit_phase(self, market_id):
        self._phase_call("start_commit_phase", market_id, 1)

    def start_reveal_phase(self, market_id):
        self._phase_call("start_reveal_phase", market_id, 2)

    def force_resolve_market(self, market_id):
        self._phase_call("force_resolve_market", market_id, 3)

    def commitment_events(self, market_id, from_block=0):
        if "commitment_events" in self.failing:
            raise ChainError("eth_getLogs failed")
        return list(self.commitments.get(market_id, []))

    def reveal_events(self, market_id, from_block=0):
        return list(self.reveals.get(market_id, []))


class FakeNotifier:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent = []

    def notify_verifiers(self, market_id, question, phase, verifiers):
        if self.fail:
            raise RuntimeError("webhook down")
        self.sent.append((market_id, phase, list(verifiers)))

    async def drain(self):
        return None


@pytest.fixture
def dispute_contract():
    return FakeDisputeContract()


@pytest.fixture
def factory():
    return FakeFactory()


@pytest.fixture
def notifier():
    return FakeNotifier()
