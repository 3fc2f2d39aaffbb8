"""
Reasoning providers for the anomaly scorer.

A provider reads a market question plus gathered evidence and answers with a
confidence (0-100) that the recorded outcome is right and a verdict. Callers
fall back to NEUTRAL_ANALYSIS when a provider is unavailable or fails.
"""
import enum
import json
import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

import aiohttp

from resolver.config import settings
from resolver.services.evidence import Evidence


class Verdict(str, enum.Enum):
    CORRECT = "CORRECT"
    INCORRECT = "INCORRECT"
    UNCLEAR = "UNCLEAR"


@dataclass
class Analysis:
    confidence: int
    verdict: Verdict
    reasoning: str = ""


NEUTRAL_ANALYSIS = Analysis(confidence=50, verdict=Verdict.UNCLEAR, reasoning="neutral default")


class ReasoningProvider(ABC):
    name = "provider"

    @abstractmethod
    async def analyze(self, question: str, evidence: List[Evidence], outcome: Optional[int] = None) -> Analysis:
        """Judge whether the recorded outcome of a market is supported by the evidence."""


class HeuristicReasoningProvider(ReasoningProvider):
    """Takes the lowest confidence any evidence item carries; never decides a verdict."""

    name = "heuristic"

    async def analyze(self, question: str, evidence: List[Evidence], outcome: Optional[int] = None) -> Analysis:
        scored = [item.confidence for item in evidence if item.confidence is not None]
        if not scored:
            return NEUTRAL_ANALYSIS
        return Analysis(
            confidence=min(scored),
            verdict=Verdict.UNCLEAR,
            reasoning=f"{len(scored)} heuristic flag(s)"
        )


class LLMReasoningProvider(ReasoningProvider):
    """Asks the configured LLM for a JSON verdict."""

    name = "llm"

    SYSTEM_PROMPT = """You audit prediction market resolutions.
Given a market question, its recorded outcome and a list of evidence items,
decide whether the recorded outcome is supported.

Return only a JSON object:
{
    "confidence": 85,       // 0-100, confidence the recorded outcome is correct
    "verdict": "CORRECT",   // CORRECT, INCORRECT or UNCLEAR
    "reasoning": "short explanation"
}"""

    ENDPOINTS = {
        "openai": "https://api.openai.com/v1/chat/completions",
        "anthropic": "https://api.anthropic.com/v1/messages",
    }

    def __init__(self):
        self.logger = logging.getLogger(__name__)
        self.llm_provider = settings.llm_provider
        self.llm_model = settings.llm_model
        self.temperature = settings.llm_temperature
        self.max_tokens = settings.llm_max_tokens
        self.timeout = aiohttp.ClientTimeout(total=settings.http_timeout * 4)

    def build_request(self, prompt: str, system_prompt: Optional[str] = None) -> Tuple[Dict[str, str], dict]:
        """Headers and body for one completion on the configured provider."""
        data = {"model": self.llm_model, "max_tokens": self.max_tokens, "temperature": self.temperature}

        if self.llm_provider == "openai":
            if not settings.openai_api_key:
                raise ValueError("OpenAI API key not configured")
            headers = {"Authorization": f"Bearer {settings.openai_api_key}"}
            messages = [{"role": "system", "content": system_prompt}] if system_prompt else []
            data["messages"] = messages + [{"role": "user", "content": prompt}]
        elif self.llm_provider == "anthropic":
            if not settings.anthropic_api_key:
                raise ValueError("Anthropic API key not configured")
            headers = {"x-api-key": settings.anthropic_api_key, "anthropic-version": "2023-06-01"}
            data["messages"] = [{"role": "user", "content": prompt}]
            if system_prompt:
                data["system"] = system_prompt
        else:
            raise ValueError(f"Unsupported LLM provider: {self.llm_provider}")

        headers["Content-Type"] = "application/json"
        return headers, data

    def extract_text(self, result: dict) -> str:
        if self.llm_provider == "openai":
            return result["choices"][0]["message"]["content"]
        return result["content"][0]["text"]

    async def _post_json(self, url: str, headers: Dict[str, str], data: dict) -> dict:
        async with aiohttp.ClientSession(timeout=self.timeout) as session:
            async with session.post(url, headers=headers, json=data) as response:
                if response.status != 200:
                    error_text = await response.text()
                    raise Exception(f"{self.llm_provider} API error: {response.status} - {error_text}")
                return await response.json()

    async def _call_llm(self, prompt: str, system_prompt: Optional[str] = None) -> str:
        """Call the configured LLM service."""
        headers, data = self.build_request(prompt, system_prompt)
        result = await self._post_json(self.ENDPOINTS[self.llm_provider], headers, data)
        return self.extract_text(result)

    @staticmethod
    def parse_response(response: str) -> Analysis:
        """Parse the model's JSON answer, tolerating prose around it."""
        try:
            payload = json.loads(response)
        except json.JSONDecodeError:
            json_match = re.search(r'\{.*\}', response, re.DOTALL)
            if not json_match:
                raise ValueError("Could not parse LLM response as JSON")
            payload = json.loads(json_match.group())

        for field in ("confidence", "verdict"):
            if field not in payload:
                raise ValueError(f"Missing required field: {field}")

        confidence = max(0, min(100, int(round(float(payload["confidence"])))))
        verdict = Verdict(str(payload["verdict"]).upper())
        return Analysis(confidence=confidence, verdict=verdict, reasoning=str(payload.get("reasoning", "")))

    async def analyze(self, question: str, evidence: List[Evidence], outcome: Optional[int] = None) -> Analysis:
        evidence_lines = "\n".join(
            f"- [{item.source}] {item.reason}" + (f" ({item.url})" if item.url else "")
            for item in evidence
        )
        prompt = f"""MARKET QUESTION: {question}
RECORDED OUTCOME: {"YES" if outcome == 1 else "NO" if outcome == 0 else outcome}

EVIDENCE:
{evidence_lines}

Please provide your analysis as a JSON object."""

        response = await self._call_llm(prompt, self.SYSTEM_PROMPT)
        analysis = self.parse_response(response)
        self.logger.info(f"LLM verdict: {analysis.verdict.value} ({analysis.confidence}%)")
        return analysis


def build_reasoning_provider(name: str) -> ReasoningProvider:
    if name == LLMReasoningProvider.name:
        return LLMReasoningProvider()
    return HeuristicReasoningProvider()
