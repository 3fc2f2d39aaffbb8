"""
Evidence sources for the anomaly scorer.

Each source answers `fetch_evidence(question)` with a list of `Evidence`
items. A source that is unavailable or fails contributes nothing; it never
aborts the scoring pipeline.
"""
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Optional, Sequence
import logging

import aiohttp

from resolver.config import settings


@dataclass
class Evidence:
    source: str  # heuristic, newsapi, timing, volume, ...
    reason: str
    url: Optional[str] = None
    confidence: Optional[int] = None  # 0-100 belief the recorded outcome is right, if the source has one

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class EvidenceSource(ABC):
    name = "source"

    @abstractmethod
    async def fetch_evidence(self, question: str) -> List[Evidence]:
        """Evidence relevant to a market question."""


class HeuristicEvidenceSource(EvidenceSource):
    """Keyword flags on the question itself; no network."""

    name = "heuristic"

    SUSPICIOUS_KEYWORDS = {
        "test": "Test market detected",
        "demo": "Demo market detected",
    }

    def __init__(self, flagged_confidence: int = 30):
        self.flagged_confidence = flagged_confidence

    async def fetch_evidence(self, question: str) -> List[Evidence]:
        lower = question.lower()
        return [
            Evidence(source=self.name, reason=reason, confidence=self.flagged_confidence)
            for keyword, reason in self.SUSPICIOUS_KEYWORDS.items()
            if keyword in lower
        ]


class NewsApiEvidenceSource(EvidenceSource):
    """Recent news articles matching the question, via NewsAPI."""

    name = "newsapi"

    def __init__(self, api_key: Optional[str] = None, url: Optional[str] = None,
                 timeout: Optional[float] = None, page_size: int = 5):
        self.logger = logging.getLogger(self.__class__.__name__)
        self.api_key = api_key if api_key is not None else settings.newsapi_key
        self.url = url or settings.newsapi_url
        self.timeout = aiohttp.ClientTimeout(total=timeout or settings.http_timeout)
        self.page_size = page_size

    async def fetch_evidence(self, question: str) -> List[Evidence]:
        if not self.api_key:
            return []

        params = {
            "q": question[:500],
            "pageSize": self.page_size,
            "sortBy": "relevancy",
            "language": "en"
        }
        headers = {"X-Api-Key": self.api_key}

        async with aiohttp.ClientSession(timeout=self.timeout) as session:
            async with session.get(self.url, params=params, headers=headers) as response:
                if response.status != 200:
                    error_text = await response.text()
                    raise Exception(f"NewsAPI error: {response.status} - {error_text}")
                data = await response.json()

        return [
            Evidence(
                source=self.name,
                reason=article.get("title") or "",
                url=article.get("url")
            )
            for article in data.get("articles", [])
            if article.get("title")
        ]


SOURCE_REGISTRY = {
    HeuristicEvidenceSource.name: HeuristicEvidenceSource,
    NewsApiEvidenceSource.name: NewsApiEvidenceSource,
}


def build_evidence_sources(names: str) -> List[EvidenceSource]:
    """Sources from a comma separated list such as 'heuristic,newsapi'."""
    logger = logging.getLogger(__name__)
    sources = []
    for name in (n.strip() for n in names.split(",")):
        if not name:
            continue
        source_cls = SOURCE_REGISTRY.get(name)
        if source_cls is None:
            logger.warning(f"Unknown evidence source: {name}")
            continue
        sources.append(source_cls())
    return sources


async def gather_evidence(sources: Sequence[EvidenceSource], question: str) -> List[Evidence]:
    """Evidence from every source; a failing source contributes nothing."""
    logger = logging.getLogger(__name__)
    evidence: List[Evidence] = []
    for source in sources:
        try:
            evidence.extend(await source.fetch_evidence(question))
        except Exception as e:
            logger.warning(f"Evidence source {source.name} failed: {e}")
    return evidence
