from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

repo_env = Path(__file__).resolve().parents[2] / ".env"

load_dotenv()
if repo_env.exists():
    # Prefer repository .env for deterministic local runs.
    load_dotenv(repo_env, override=True)


PROVIDER_NAMES = ("web", "news", "social", "marketplace")


def _parse_csv(value: str | None) -> list[str]:
    if not value:
        return []
    parts = [part.strip().lower() for part in value.replace(";", ",").split(",")]
    return [part for part in parts if part]


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return float(raw)


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return int(raw)


@dataclass
class Settings:
    # Web search (Gemini with Google Search grounding).
    gemini_api_key: str = ""
    gemini_model: str = "gemini-2.5-flash"
    gemini_base_url: str = "https://generativelanguage.googleapis.com/v1beta"

    # News search (Brave).
    brave_api_key: str = ""
    brave_base_url: str = "https://api.search.brave.com/res/v1"

    # Live social search (xAI Grok).
    xai_api_key: str = ""
    xai_model: str = "grok-3"
    xai_base_url: str = "https://api.x.ai/v1"

    # Marketplace scraping (Decodo).
    decodo_username: str = ""
    decodo_password: str = ""
    decodo_base_url: str = "https://scraper-api.decodo.com/v2"
    marketplace_target: str = "amazon_search"
    marketplace_pages: int = 1
    marketplace_max_retries: int = 2
    marketplace_backoff_seconds: float = 2.0
    marketplace_backoff_multiplier: float = 2.0

    # Deadlines, in seconds.
    web_deadline_seconds: float = 60.0
    news_deadline_seconds: float = 60.0
    social_deadline_seconds: float = 60.0
    marketplace_deadline_seconds: float = 45.0
    aggregate_deadline_seconds: float = 90.0
    http_timeout_seconds: float = 35.0

    enabled_providers: list[str] = field(default_factory=list)

    cache_path: str = ""
    cache_ttl_seconds: int = 24 * 60 * 60
    cache_max_bundles: int = 200

    # Synthesis collaborator (OpenAI-compatible chat completions).
    llm_base_url: str = "https://api.openai.com/v1"
    llm_api_key: str = ""
    llm_model: str = "gpt-4o-mini"
    llm_temperature: float = 0.3

    log_level: str = "INFO"

    def provider_enabled(self, name: str) -> bool:
        if not self.enabled_providers:
            return True
        return name in self.enabled_providers

    def deadline_for(self, name: str) -> float:
        deadlines = {
            "web": self.web_deadline_seconds,
            "news": self.news_deadline_seconds,
            "social": self.social_deadline_seconds,
            "marketplace": self.marketplace_deadline_seconds,
        }
        deadline = deadlines.get(name, self.aggregate_deadline_seconds)
        if self.aggregate_deadline_seconds > 0:
            deadline = min(deadline, self.aggregate_deadline_seconds)
        return deadline

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            gemini_api_key=os.getenv("GEMINI_API_KEY", ""),
            gemini_model=os.getenv("GEMINI_MODEL") or cls.gemini_model,
            gemini_base_url=os.getenv("GEMINI_BASE_URL") or cls.gemini_base_url,
            brave_api_key=os.getenv("BRAVE_API_KEY", ""),
            brave_base_url=os.getenv("BRAVE_BASE_URL") or cls.brave_base_url,
            xai_api_key=os.getenv("XAI_API_KEY") or os.getenv("GROK_API_KEY") or "",
            xai_model=os.getenv("XAI_MODEL") or cls.xai_model,
            xai_base_url=os.getenv("XAI_BASE_URL") or cls.xai_base_url,
            decodo_username=os.getenv("DECODO_USERNAME", ""),
            decodo_password=os.getenv("DECODO_PASSWORD", ""),
            decodo_base_url=os.getenv("DECODO_BASE_URL") or cls.decodo_base_url,
            marketplace_target=os.getenv("MARKETPLACE_TARGET") or cls.marketplace_target,
            marketplace_pages=_env_int("MARKETPLACE_PAGES", cls.marketplace_pages),
            marketplace_max_retries=_env_int("MARKETPLACE_MAX_RETRIES", cls.marketplace_max_retries),
            marketplace_backoff_seconds=_env_float("MARKETPLACE_BACKOFF_SECONDS", cls.marketplace_backoff_seconds),
            marketplace_backoff_multiplier=_env_float(
                "MARKETPLACE_BACKOFF_MULTIPLIER", cls.marketplace_backoff_multiplier
            ),
            web_deadline_seconds=_env_float("WEB_DEADLINE_SECONDS", cls.web_deadline_seconds),
            news_deadline_seconds=_env_float("NEWS_DEADLINE_SECONDS", cls.news_deadline_seconds),
            social_deadline_seconds=_env_float("SOCIAL_DEADLINE_SECONDS", cls.social_deadline_seconds),
            marketplace_deadline_seconds=_env_float(
                "MARKETPLACE_DEADLINE_SECONDS", cls.marketplace_deadline_seconds
            ),
            aggregate_deadline_seconds=_env_float("AGGREGATE_DEADLINE_SECONDS", cls.aggregate_deadline_seconds),
            http_timeout_seconds=_env_float("HTTP_TIMEOUT_SECONDS", cls.http_timeout_seconds),
            enabled_providers=_parse_csv(os.getenv("ENABLED_PROVIDERS")),
            cache_path=os.getenv("CACHE_PATH", ""),
            cache_ttl_seconds=_env_int("CACHE_TTL_SECONDS", cls.cache_ttl_seconds),
            cache_max_bundles=_env_int("CACHE_MAX_BUNDLES", cls.cache_max_bundles),
            llm_base_url=os.getenv("LLM_BASE_URL") or cls.llm_base_url,
            llm_api_key=os.getenv("LLM_API_KEY", ""),
            llm_model=os.getenv("LLM_MODEL") or cls.llm_model,
            llm_temperature=_env_float("LLM_TEMPERATURE", cls.llm_temperature),
            log_level=os.getenv("LOG_LEVEL") or cls.log_level,
        )
