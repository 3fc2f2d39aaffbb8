"""
AI oracle: scores recently resolved markets for resolution anomalies and
records candidate disputes for the dispute bot to submit.
"""
import asyncio
import json
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import List, Optional, Sequence

from eth_account import Account
from sqlalchemy.orm import Session
from web3 import Web3

from resolver.config import settings
from resolver.exceptions import ConfigurationError
from resolver.models.base import utcnow
from resolver.models.dispute import Dispute, DisputeStatus
from resolver.models.market import Market, MarketStatus
from resolver.services.base_service import PollingService
from resolver.services.evidence import Evidence, EvidenceSource, build_evidence_sources, gather_evidence
from resolver.services.reasoning import (
    NEUTRAL_ANALYSIS,
    Analysis,
    ReasoningProvider,
    Verdict,
    build_reasoning_provider,
)
from resolver import store


@dataclass
class ScoringParameters:
    """Tunable anomaly penalties and thresholds."""

    low_confidence: int = 50
    fast_resolution_seconds: int = 3600
    fast_resolution_penalty: int = 20
    low_volume: float = 0.01
    low_volume_penalty: int = 15
    incorrect_verdict_penalty: int = 30
    dispute_threshold: int = 40

    @classmethod
    def from_settings(cls) -> "ScoringParameters":
        return cls(
            low_confidence=settings.anomaly_low_confidence,
            fast_resolution_seconds=settings.anomaly_fast_resolution_seconds,
            fast_resolution_penalty=settings.anomaly_fast_resolution_penalty,
            low_volume=settings.anomaly_low_volume,
            low_volume_penalty=settings.anomaly_low_volume_penalty,
            incorrect_verdict_penalty=settings.anomaly_incorrect_verdict_penalty,
            dispute_threshold=settings.anomaly_dispute_threshold
        )


@dataclass
class AnomalyReport:
    should_dispute: bool
    anomaly_score: int
    ai_confidence: int
    verdict: Verdict
    evidence: List[Evidence] = field(default_factory=list)


def score_anomaly(created_at: datetime, total_volume: float, analysis: Analysis,
                  now: datetime, params: ScoringParameters,
                  evidence: Optional[List[Evidence]] = None) -> AnomalyReport:
    """Accumulate the anomaly score for a resolved market.

    Penalties: the confidence shortfall below `low_confidence`, a resolution
    within `fast_resolution_seconds` of creation, volume below `low_volume`
    and an INCORRECT verdict. The market is disputed when the score exceeds
    `dispute_threshold`.
    """
    evidence = list(evidence or [])
    score = 0

    if analysis.confidence < params.low_confidence:
        score += params.low_confidence - analysis.confidence
        evidence.append(Evidence(source="evidence", reason=f"Low evidence confidence ({analysis.confidence}%)"))

    if (now - created_at).total_seconds() < params.fast_resolution_seconds:
        score += params.fast_resolution_penalty
        evidence.append(Evidence(source="timing", reason="Market resolved too quickly"))

    if float(total_volume or 0) < params.low_volume:
        score += params.low_volume_penalty
        evidence.append(Evidence(source="volume", reason="Suspiciously low trading volume"))

    if analysis.verdict == Verdict.INCORRECT:
        score += params.incorrect_verdict_penalty
        evidence.append(Evidence(source="verdict", reason="Evidence contradicts recorded outcome"))

    return AnomalyReport(
        should_dispute=score > params.dispute_threshold,
        anomaly_score=score,
        ai_confidence=max(0, min(100, 100 - score)),
        verdict=analysis.verdict,
        evidence=evidence
    )


def proposed_outcome_for(outcome: Optional[int]) -> int:
    """Outcome carried on the dispute: the recorded resolution, 0 while unknown."""
    return outcome if outcome is not None else 0


def evidence_hash(market_id: str, question: str, proposed_outcome: int,
                  evidence: Sequence[Evidence], timestamp: datetime) -> str:
    """keccak256 of the canonical JSON evidence payload."""
    payload = {
        "marketId": market_id,
        "question": question,
        "proposedOutcome": proposed_outcome,
        "evidence": [item.to_dict() for item in evidence],
        "timestamp": timestamp.isoformat()
    }
    encoded = json.dumps(payload, sort_keys=True, separators=(",", ":"))
    return Web3.to_hex(Web3.keccak(text=encoded))


class AIOracleService(PollingService):
    """Monitors market resolutions and records candidate disputes for anomalies."""

    def __init__(self, evidence_sources: Sequence[EvidenceSource], reasoning: Optional[ReasoningProvider],
                 submitter: str, params: Optional[ScoringParameters] = None,
                 interval_seconds: Optional[float] = None, evidence_delay: Optional[float] = None,
                 lookback_hours: Optional[int] = None, batch_size: Optional[int] = None, **kwargs):
        super().__init__(interval_seconds if interval_seconds is not None else settings.ai_check_interval, **kwargs)
        self.evidence_sources = list(evidence_sources)
        self.reasoning = reasoning
        self.submitter = submitter.lower()
        self.params = params or ScoringParameters.from_settings()
        self.evidence_delay = evidence_delay if evidence_delay is not None else settings.oracle_evidence_delay
        self.lookback_hours = lookback_hours if lookback_hours is not None else settings.oracle_lookback_hours
        self.batch_size = batch_size if batch_size is not None else settings.oracle_batch_size

    @classmethod
    def from_settings(cls, **kwargs) -> "AIOracleService":
        """Candidates are recorded under the dispute bot's wallet, the only wallet that submits them.

        ORACLE_ADDRESS names that wallet when the bot's key is not available here.
        """
        bot_key = settings.signer_key("dispute_bot")
        bot_address = Account.from_key(bot_key).address if bot_key else None
        submitter = bot_address or settings.oracle_address
        if not submitter:
            raise ConfigurationError("No dispute bot wallet configured. Set DISPUTE_BOT_PRIVATE_KEY or ORACLE_ADDRESS")
        if bot_address and settings.oracle_address and settings.oracle_address.lower() != bot_address.lower():
            raise ConfigurationError(
                f"ORACLE_ADDRESS {settings.oracle_address} does not match the dispute bot wallet {bot_address}"
            )
        return cls(
            evidence_sources=build_evidence_sources(settings.evidence_sources),
            reasoning=build_reasoning_provider(settings.reasoning_provider),
            submitter=submitter,
            **kwargs
        )

    async def analyze(self, question: str, evidence: List[Evidence], outcome: Optional[int]) -> Analysis:
        """Reasoning step with the neutral fallback."""
        if not evidence or self.reasoning is None:
            return NEUTRAL_ANALYSIS
        try:
            return await self.reasoning.analyze(question, evidence, outcome)
        except Exception as e:
            self.logger.warning(f"Reasoning provider {self.reasoning.name} failed, using neutral default: {e}")
            return NEUTRAL_ANALYSIS

    async def detect_anomalies(self, market: Market, now: Optional[datetime] = None) -> AnomalyReport:
        now = now or utcnow()
        self.logger.info(f"Analyzing market {market.id}: \"{market.question}\"")

        evidence = await gather_evidence(self.evidence_sources, market.question)
        analysis = await self.analyze(market.question, evidence, market.outcome)
        report = score_anomaly(market.created_at, market.total_volume, analysis, now, self.params, evidence)

        self.logger.info(
            f"Anomaly score: {report.anomaly_score}, confidence: {report.ai_confidence}%, "
            f"verdict: {report.verdict.value}"
        )
        return report

    def record_candidate(self, db: Session, market: Market, report: AnomalyReport,
                         now: Optional[datetime] = None) -> Dispute:
        now = now or utcnow()
        proposed = proposed_outcome_for(market.outcome)
        dispute = Dispute(
            chain_id=market.chain_id,
            dispute_id=0,
            market_id=market.id,
            submitter=self.submitter,
            evidence_hash=evidence_hash(market.id, market.question, proposed, report.evidence, now),
            stake=0.0,
            status=DisputeStatus.ACTIVE.value,
            proposed_outcome=proposed,
            ai_confidence=report.ai_confidence,
            submitted_at=now
        )
        db.add(dispute)
        db.commit()
        db.refresh(dispute)
        return dispute

    def recently_resolved(self, db: Session, now: datetime) -> List[Market]:
        cutoff = now - timedelta(hours=self.lookback_hours)
        return db.query(Market).filter(
            Market.status == MarketStatus.RESOLVED.value,
            Market.status_updated_at >= cutoff
        ).order_by(Market.status_updated_at.asc()).limit(self.batch_size).all()

    async def process_market(self, db: Session, market: Market) -> Optional[Dispute]:
        if store.find_dispute(db, market.id, self.submitter):
            self.logger.debug(f"Dispute already recorded for market {market.id}, skipping")
            return None

        report = await self.detect_anomalies(market)
        if not report.should_dispute:
            self.logger.info(f"Market {market.id} appears legitimate")
            return None

        dispute = self.record_candidate(db, market, report)
        self.logger.info(f"Anomaly detected! Candidate dispute {dispute.id} recorded for market {market.id}")
        return dispute

    async def run_cycle(self, db: Session) -> None:
        markets = self.recently_resolved(db, utcnow())
        if not markets:
            self.logger.info("No recently resolved markets to analyze")
            return

        self.logger.info(f"Analyzing {len(markets)} resolved markets...")
        for index, market in enumerate(markets):
            if self.stopping:
                break
            try:
                await self.process_market(db, market)
            except Exception as e:
                db.rollback()
                self.logger.error(f"Error analyzing market {market.id}: {e}")

            if self.evidence_delay and index < len(markets) - 1:
                await asyncio.sleep(self.evidence_delay)

        self.logger.info("Analysis complete")
