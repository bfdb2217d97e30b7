from __future__ import annotations

import json
import logging
import re
from dataclasses import asdict, dataclass, field
from typing import Any

import httpx

from .aggregator import SignalAggregator
from .bundle import ConsolidatedBundle
from .config import Settings
from .logging_utils import resolve_logger
from .providers import describe_error


@dataclass
class TrendRecord:
    topic: str
    summary: str = ""
    audience: str = ""
    customer_phrases: list[str] = field(default_factory=list)
    sources: list[str] = field(default_factory=list)
    evidence_urls: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class TrendSearchResult:
    bundle: ConsolidatedBundle
    trends: list[TrendRecord]

    def to_dict(self) -> dict[str, Any]:
        return {
            "bundle": self.bundle.to_dict(),
            "trends": [item.to_dict() for item in self.trends],
        }


def parse_json_object(text: str) -> dict[str, Any] | None:
    """Try to parse a JSON object from mixed model output."""

    if not text.strip():
        return None

    try:
        data = json.loads(text)
        if isinstance(data, dict):
            return data
    except json.JSONDecodeError:
        pass

    fenced = re.search(r"```(?:json)?\s*([\s\S]*?)```", text)
    candidates = [fenced.group(1)] if fenced else []
    match = re.search(r"\{[\s\S]*\}", text)
    if match:
        candidates.append(match.group(0))

    for candidate in candidates:
        try:
            data = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        if isinstance(data, dict):
            return data
    return None


class LLMClient:
    def __init__(
        self,
        base_url: str,
        api_key: str,
        temperature: float = 0.3,
        transport: httpx.AsyncBaseTransport | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.temperature = temperature
        self.transport = transport
        self.logger = resolve_logger(logger, __name__)

    @property
    def enabled(self) -> bool:
        return bool(self.api_key and self.base_url)

    async def chat(self, model: str, system_prompt: str, user_prompt: str, max_tokens: int = 2000) -> str | None:
        if not self.enabled:
            return None

        payload = {
            "model": model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            "temperature": self.temperature,
            "max_tokens": max_tokens,
            "response_format": {"type": "json_object"},
        }
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

        try:
            async with httpx.AsyncClient(timeout=80.0, transport=self.transport) as client:
                response = await client.post(f"{self.base_url}/chat/completions", headers=headers, json=payload)
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            self.logger.error(f"Synthesis call failed: {describe_error(exc)}")
            return None

        choices = data.get("choices") if isinstance(data, dict) else None
        if not choices:
            return None
        content = (choices[0].get("message") or {}).get("content", "")
        if isinstance(content, list):
            content = "\n".join(
                str(part.get("text", "")) if isinstance(part, dict) else str(part) for part in content
            )
        text = str(content).strip()
        return text or None


SYSTEM_PROMPT = (
    "You turn raw trend intelligence into structured trend records. "
    "Each provider block is labeled; attribute every claim to the providers that support it. "
    'Output ONLY JSON: {"trends": [{"topic", "summary", "audience", "customer_phrases", "sources", "evidence_urls"}]}.'
)


def _str_list(value: Any) -> list[str]:
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, list):
        return []
    return [str(item).strip() for item in value if str(item).strip()]


class SynthesisGateway:
    """Downstream structured-extraction step over a finished bundle."""

    def __init__(self, llm: LLMClient, model: str, logger: logging.Logger | None = None) -> None:
        self.llm = llm
        self.model = model
        self.logger = resolve_logger(logger, __name__)

    @classmethod
    def from_settings(cls, settings: Settings, logger: logging.Logger | None = None) -> "SynthesisGateway":
        llm = LLMClient(
            base_url=settings.llm_base_url,
            api_key=settings.llm_api_key,
            temperature=settings.llm_temperature,
            logger=logger,
        )
        return cls(llm=llm, model=settings.llm_model, logger=logger)

    def build_prompt(self, bundle: ConsolidatedBundle) -> str:
        consulted = [name for name, status in bundle.provider_status.items() if status.configured]
        silent = [name for name in consulted if name not in bundle.active_providers]
        lines = [
            f'TOPIC: "{bundle.topic}"',
            f"RISK LEVEL: {bundle.risk_level} ({bundle.band})",
            f"PROVIDERS WITH DATA: {', '.join(bundle.active_providers) or 'none'}",
        ]
        if silent:
            lines.append(f"PROVIDERS WITH NO DATA: {', '.join(silent)}")
        lines.append("")
        lines.append(bundle.combined_text())
        return "\n".join(lines)

    def normalize(self, payload: dict[str, Any] | None, bundle: ConsolidatedBundle) -> list[TrendRecord]:
        raw_trends = payload.get("trends") if isinstance(payload, dict) else None
        if not isinstance(raw_trends, list):
            return []

        active = bundle.active_providers
        citations = set(bundle.all_citations)
        records: list[TrendRecord] = []
        for item in raw_trends:
            if not isinstance(item, dict):
                continue
            topic = str(item.get("topic", "")).strip()
            if not topic:
                continue
            sources = [name for name in _str_list(item.get("sources")) if name.lower() in active]
            sources = list(dict.fromkeys(name.lower() for name in sources))
            if not sources and active:
                sources = [active[0]]
            records.append(
                TrendRecord(
                    topic=topic,
                    summary=str(item.get("summary", "")).strip(),
                    audience=str(item.get("audience", "")).strip(),
                    customer_phrases=_str_list(item.get("customer_phrases")),
                    sources=sources,
                    evidence_urls=[url for url in _str_list(item.get("evidence_urls")) if url in citations],
                )
            )
        return records

    async def synthesize(self, bundle: ConsolidatedBundle) -> list[TrendRecord]:
        if bundle.is_empty:
            self.logger.warning(f"No provider data for '{bundle.topic}', skipping synthesis")
            return []
        if not self.llm.enabled:
            self.logger.info("Synthesis disabled: no LLM credentials")
            return []

        text = await self.llm.chat(self.model, SYSTEM_PROMPT, self.build_prompt(bundle))
        if text is None:
            return []
        records = self.normalize(parse_json_object(text), bundle)
        self.logger.info(f"Synthesized {len(records)} trend record(s) for '{bundle.topic}'")
        return records


async def search_trends(
    topic: str,
    risk_level: int,
    aggregator: SignalAggregator | None = None,
    gateway: SynthesisGateway | None = None,
    settings: Settings | None = None,
    logger: logging.Logger | None = None,
) -> TrendSearchResult:
    """Aggregate raw signals for ``topic`` and hand the bundle to synthesis."""
    settings = settings or Settings.from_env()
    aggregator = aggregator or SignalAggregator(settings, logger=logger)
    gateway = gateway or SynthesisGateway.from_settings(settings, logger=logger)

    bundle = await aggregator.aggregate(topic, risk_level)
    trends = await gateway.synthesize(bundle)
    return TrendSearchResult(bundle=bundle, trends=trends)
