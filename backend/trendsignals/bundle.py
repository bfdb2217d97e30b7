from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from typing import Any

from .cache import utc_now_iso


@dataclass(frozen=True)
class RawFinding:
    source_provider: str
    url: str
    title: str = ""
    body_text: str = ""
    published_age_hint: str | None = None
    engagement_hint: int | None = None


@dataclass
class ProviderResult:
    """What one adapter hands back from ``fetch``: text, findings, soft errors."""

    text: str = ""
    findings: list[RawFinding] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    @property
    def has_data(self) -> bool:
        return bool(self.text.strip() or self.findings)

    def __iter__(self):
        # Allows ``text, findings = await adapter.fetch(...)``.
        yield self.text
        yield self.findings


@dataclass(frozen=True)
class ProviderStatus:
    configured: bool = True
    ok: bool = False
    timed_out: bool = False
    error_message: str | None = None
    finding_count: int = 0
    elapsed_ms: int = 0


@dataclass(frozen=True)
class ConsolidatedBundle:
    topic: str
    risk_level: int
    band: str
    per_provider_text: dict[str, str]
    provider_status: dict[str, ProviderStatus]
    all_citations: tuple[str, ...] = ()
    findings: tuple[RawFinding, ...] = ()
    created_at: str = field(default_factory=utc_now_iso)

    @property
    def active_providers(self) -> list[str]:
        return [name for name, text in self.per_provider_text.items() if text.strip()]

    @property
    def is_empty(self) -> bool:
        return not self.active_providers and not self.findings

    def combined_text(self) -> str:
        blocks = [text for text in self.per_provider_text.values() if text.strip()]
        return "\n\n".join(blocks)

    def to_dict(self) -> dict[str, Any]:
        return {
            "topic": self.topic,
            "risk_level": self.risk_level,
            "band": self.band,
            "per_provider_text": dict(self.per_provider_text),
            "provider_status": {name: asdict(status) for name, status in self.provider_status.items()},
            "all_citations": list(self.all_citations),
            "findings": [asdict(item) for item in self.findings],
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ConsolidatedBundle":
        status_raw = data.get("provider_status") or {}
        findings_raw = data.get("findings") or []
        return cls(
            topic=str(data.get("topic", "")),
            risk_level=int(data.get("risk_level", 0)),
            band=str(data.get("band", "")),
            per_provider_text={str(k): str(v) for k, v in (data.get("per_provider_text") or {}).items()},
            provider_status={str(name): ProviderStatus(**value) for name, value in status_raw.items()},
            all_citations=tuple(str(url) for url in data.get("all_citations") or []),
            findings=tuple(RawFinding(**item) for item in findings_raw if isinstance(item, dict)),
            created_at=str(data.get("created_at") or utc_now_iso()),
        )

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False)

    @classmethod
    def from_json(cls, raw: str) -> "ConsolidatedBundle":
        return cls.from_dict(json.loads(raw))
