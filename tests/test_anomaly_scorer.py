"""Anomaly scoring and the AI oracle cycle."""
from datetime import timedelta

import pytest
from eth_account import Account

from resolver.config import settings
from resolver.exceptions import ConfigurationError
from resolver.models import Dispute, MarketStatus
from resolver.models.base import utcnow
from resolver.services.dispute_bot import DisputeBot
from resolver.services.anomaly_scorer import (
    AIOracleService,
    ScoringParameters,
    evidence_hash,
    proposed_outcome_for,
    score_anomaly,
)
from resolver.services.evidence import Evidence, EvidenceSource, HeuristicEvidenceSource, gather_evidence
from resolver.services.reasoning import (
    NEUTRAL_ANALYSIS,
    Analysis,
    HeuristicReasoningProvider,
    LLMReasoningProvider,
    ReasoningProvider,
    Verdict,
)

from conftest import AGGREGATOR_ADDRESS, BOT_ADDRESS, CHAIN_ID

BOT_KEY = "0x" + "02" * 32


class BrokenSource(EvidenceSource):
    name = "broken"

    async def fetch_evidence(self, question):
        raise RuntimeError("news api timeout")


class StaticSource(EvidenceSource):
    name = "static"

    def __init__(self, *items):
        self.items = list(items)

    async def fetch_evidence(self, question):
        return list(self.items)


class BrokenReasoning(ReasoningProvider):
    name = "broken"

    async def analyze(self, question, evidence, outcome=None):
        raise RuntimeError("model unavailable")


class FixedReasoning(ReasoningProvider):
    name = "fixed"

    def __init__(self, analysis):
        self.analysis = analysis
        self.calls = 0

    async def analyze(self, question, evidence, outcome=None):
        self.calls += 1
        return self.analysis


@pytest.fixture
def params():
    return ScoringParameters()


def _oracle(session_factory, sources, reasoning, **kwargs):
    return AIOracleService(
        evidence_sources=sources,
        reasoning=reasoning,
        submitter=BOT_ADDRESS,
        params=ScoringParameters(),
        evidence_delay=0,
        lookback_hours=24,
        batch_size=20,
        session_factory=session_factory,
        **kwargs
    )


def test_every_penalty_triggers_dispute(params):
    now = utcnow()
    report = score_anomaly(
        created_at=now - timedelta(minutes=10),
        total_volume=0,
        analysis=Analysis(confidence=30, verdict=Verdict.INCORRECT),
        now=now,
        params=params
    )

    assert report.anomaly_score == 85
    assert report.ai_confidence == 15
    assert report.should_dispute
    assert {item.source for item in report.evidence} == {"evidence", "timing", "volume", "verdict"}


def test_clean_market_scores_zero(params):
    now = utcnow()
    report = score_anomaly(
        created_at=now - timedelta(days=3),
        total_volume=250.0,
        analysis=Analysis(confidence=80, verdict=Verdict.CORRECT),
        now=now,
        params=params
    )

    assert report.anomaly_score == 0
    assert report.ai_confidence == 100
    assert not report.should_dispute
    assert report.evidence == []


def test_threshold_is_exclusive(params):
    now = utcnow()
    report = score_anomaly(
        created_at=now - timedelta(days=3),
        total_volume=0,
        analysis=Analysis(confidence=25, verdict=Verdict.UNCLEAR),
        now=now,
        params=params
    )

    assert report.anomaly_score == 40
    assert not report.should_dispute


def test_confidence_is_clamped():
    now = utcnow()
    params = ScoringParameters(incorrect_verdict_penalty=200)
    report = score_anomaly(now - timedelta(days=3), 100.0, Analysis(80, Verdict.INCORRECT), now, params)

    assert report.ai_confidence == 0


def test_proposed_outcome_carries_recorded_result():
    assert proposed_outcome_for(1) == 1
    assert proposed_outcome_for(0) == 0
    assert proposed_outcome_for(None) == 0


def test_evidence_hash_is_deterministic():
    stamp = utcnow()
    evidence = [Evidence(source="timing", reason="Market resolved too quickly")]

    first = evidence_hash("m-1", "Will it rain?", 1, evidence, stamp)
    second = evidence_hash("m-1", "Will it rain?", 1, list(evidence), stamp)

    assert first == second
    assert first.startswith("0x") and len(first) == 66
    assert evidence_hash("m-1", "Will it rain?", 0, evidence, stamp) != first


async def test_failing_source_yields_no_evidence():
    evidence = await gather_evidence([BrokenSource()], "Will it rain?")

    assert evidence == []


async def test_failing_source_does_not_hide_others():
    item = Evidence(source="static", reason="Reported by a wire service", confidence=70)

    evidence = await gather_evidence([BrokenSource(), StaticSource(item)], "Will it rain?")

    assert evidence == [item]


async def test_heuristic_source_flags_test_markets():
    evidence = await HeuristicEvidenceSource().fetch_evidence("Is this a TEST market?")

    assert len(evidence) == 1
    assert evidence[0].confidence == 30


async def test_heuristic_reasoning_takes_lowest_confidence():
    evidence = [
        Evidence(source="a", reason="x", confidence=70),
        Evidence(source="b", reason="y", confidence=30),
        Evidence(source="c", reason="z"),
    ]

    analysis = await HeuristicReasoningProvider().analyze("q", evidence)

    assert analysis.confidence == 30
    assert analysis.verdict == Verdict.UNCLEAR


async def test_reasoning_failure_falls_back_to_neutral(session_factory):
    oracle = _oracle(session_factory, [], BrokenReasoning())

    analysis = await oracle.analyze("q", [Evidence(source="a", reason="x")], 1)

    assert analysis == NEUTRAL_ANALYSIS


async def test_no_evidence_skips_reasoning(session_factory):
    reasoning = FixedReasoning(Analysis(10, Verdict.INCORRECT))
    oracle = _oracle(session_factory, [BrokenSource()], reasoning)

    analysis = await oracle.analyze("q", [], 1)

    assert analysis == NEUTRAL_ANALYSIS
    assert reasoning.calls == 0


def test_llm_response_parsing():
    analysis = LLMReasoningProvider.parse_response(
        'Sure, here it is: {"confidence": 120, "verdict": "incorrect", "reasoning": "contradicted"}'
    )

    assert analysis.confidence == 100
    assert analysis.verdict == Verdict.INCORRECT
    assert analysis.reasoning == "contradicted"


def test_llm_response_without_verdict_is_rejected():
    with pytest.raises(ValueError):
        LLMReasoningProvider.parse_response('{"confidence": 40}')


def test_recently_resolved_respects_lookback(db, session_factory, make_market):
    now = utcnow()
    recent = make_market(status=MarketStatus.RESOLVED.value, status_updated_at=now - timedelta(hours=2))
    make_market(status=MarketStatus.RESOLVED.value, status_updated_at=now - timedelta(hours=48))
    make_market(status=MarketStatus.ACTIVE.value, status_updated_at=now - timedelta(hours=1))
    oracle = _oracle(session_factory, [], None)

    markets = oracle.recently_resolved(db, now)

    assert [m.id for m in markets] == [recent.id]


async def test_anomalous_market_records_candidate(db, session_factory, make_market):
    market = make_market(
        question="Is this a test market?",
        status=MarketStatus.RESOLVED.value,
        outcome=1,
        total_volume=0.0
    )
    oracle = _oracle(session_factory, [HeuristicEvidenceSource()], HeuristicReasoningProvider())

    dispute = await oracle.process_market(db, market)

    assert dispute is not None
    assert dispute.dispute_id == 0
    assert dispute.submitter == BOT_ADDRESS
    assert dispute.proposed_outcome == 1
    # 20 confidence shortfall + 20 fast resolution + 15 low volume
    assert dispute.ai_confidence == 45
    assert dispute.evidence_hash.startswith("0x")


async def test_legitimate_market_records_nothing(db, session_factory, make_market):
    market = make_market(status=MarketStatus.RESOLVED.value, outcome=1, total_volume=500.0,
                         created_at=utcnow() - timedelta(days=5))
    oracle = _oracle(session_factory, [HeuristicEvidenceSource()], HeuristicReasoningProvider())

    assert await oracle.process_market(db, market) is None
    assert db.query(Dispute).count() == 0


async def test_market_is_only_disputed_once(db, session_factory, make_market):
    market = make_market(question="Demo market", status=MarketStatus.RESOLVED.value, outcome=0, total_volume=0.0)
    reasoning = FixedReasoning(Analysis(10, Verdict.INCORRECT))
    oracle = _oracle(session_factory, [HeuristicEvidenceSource()], reasoning)

    assert await oracle.process_market(db, market) is not None
    assert await oracle.process_market(db, market) is None

    assert db.query(Dispute).filter(Dispute.market_id == market.id).count() == 1
    assert reasoning.calls == 1


async def test_run_once_scans_recent_resolutions(session_factory, make_market):
    make_market(question="Demo market", status=MarketStatus.RESOLVED.value, outcome=1, total_volume=0.0)
    make_market(question="Will it rain?", status=MarketStatus.ACTIVE.value, total_volume=0.0)
    oracle = _oracle(session_factory, [HeuristicEvidenceSource()], HeuristicReasoningProvider())

    await oracle.run_once()

    db = session_factory()
    try:
        assert db.query(Dispute).count() == 1
    finally:
        db.close()


async def test_market_is_not_disputed_again_after_submission(db, session_factory, dispute_contract, make_market):
    market = make_market(question="Demo market", status=MarketStatus.RESOLVED.value, outcome=0, total_volume=0.0)
    oracle = _oracle(session_factory, [HeuristicEvidenceSource()], FixedReasoning(Analysis(10, Verdict.INCORRECT)))
    bot = DisputeBot(contract=dispute_contract, address=BOT_ADDRESS, chain_id=CHAIN_ID, stake_wei=10 ** 17,
                     submit_delay=0, market_address=AGGREGATOR_ADDRESS, session_factory=session_factory)

    assert await oracle.process_market(db, market) is not None
    await bot.submit_disputes(db)
    assert await oracle.process_market(db, market) is None

    rows = db.query(Dispute).filter(Dispute.market_id == market.id).all()
    assert [(row.submitter, row.dispute_id) for row in rows] == [(BOT_ADDRESS, 1)]
    assert len(dispute_contract.submissions) == 1


@pytest.fixture
def oracle_settings(monkeypatch):
    for name in ("private_key", "dispute_bot_private_key", "oracle_private_key", "oracle_address"):
        monkeypatch.setattr(settings, name, None)
    monkeypatch.setattr(settings, "reasoning_provider", "heuristic")
    return monkeypatch


def test_candidates_are_recorded_under_bot_wallet(oracle_settings):
    oracle_settings.setattr(settings, "dispute_bot_private_key", BOT_KEY)

    oracle = AIOracleService.from_settings()

    assert oracle.submitter == Account.from_key(BOT_KEY).address.lower()


def test_oracle_address_names_bot_wallet_without_key(oracle_settings):
    oracle_settings.setattr(settings, "oracle_address", BOT_ADDRESS.upper().replace("0X", "0x"))

    assert AIOracleService.from_settings().submitter == BOT_ADDRESS


def test_oracle_address_must_match_bot_wallet(oracle_settings):
    oracle_settings.setattr(settings, "dispute_bot_private_key", BOT_KEY)
    oracle_settings.setattr(settings, "oracle_address", "0x" + "77" * 20)

    with pytest.raises(ConfigurationError):
        AIOracleService.from_settings()


def test_oracle_requires_a_submitter(oracle_settings):
    with pytest.raises(ConfigurationError):
        AIOracleService.from_settings()


@pytest.fixture
def llm(monkeypatch):
    monkeypatch.setattr(settings, "openai_api_key", "sk-test")
    monkeypatch.setattr(settings, "anthropic_api_key", "ak-test")
    provider = LLMReasoningProvider()
    posts = []

    async def fake_post(url, headers, data):
        posts.append((url, headers, data))
        if provider.llm_provider == "openai":
            return {"choices": [{"message": {"content": '{"confidence": 30, "verdict": "INCORRECT"}'}}]}
        return {"content": [{"text": '{"confidence": 90, "verdict": "CORRECT"}'}]}

    monkeypatch.setattr(provider, "_post_json", fake_post)
    provider.posts = posts
    return provider


async def test_llm_openai_request(llm):
    llm.llm_provider = "openai"
    evidence = [Evidence(source="timing", reason="Market resolved too quickly")]

    analysis = await llm.analyze("Did it rain?", evidence, outcome=1)

    assert analysis.verdict == Verdict.INCORRECT
    assert analysis.confidence == 30
    url, headers, data = llm.posts[0]
    assert url == LLMReasoningProvider.ENDPOINTS["openai"]
    assert headers["Authorization"] == "Bearer sk-test"
    assert [m["role"] for m in data["messages"]] == ["system", "user"]
    assert "RECORDED OUTCOME: YES" in data["messages"][1]["content"]


async def test_llm_anthropic_request(llm):
    llm.llm_provider = "anthropic"

    analysis = await llm.analyze("Did it rain?", [Evidence(source="news", reason="Reports disagree")], outcome=0)

    assert analysis.verdict == Verdict.CORRECT
    url, headers, data = llm.posts[0]
    assert url == LLMReasoningProvider.ENDPOINTS["anthropic"]
    assert headers["x-api-key"] == "ak-test"
    assert data["system"] == LLMReasoningProvider.SYSTEM_PROMPT
    assert [m["role"] for m in data["messages"]] == ["user"]


def test_llm_unknown_provider_is_rejected(llm):
    llm.llm_provider = "local"

    with pytest.raises(ValueError):
        llm.build_request("prompt")
