from __future__ import annotations

import asyncio
import logging
import sqlite3
import time
from datetime import datetime, timezone
from typing import Sequence

from .bundle import ConsolidatedBundle, ProviderResult, ProviderStatus, RawFinding
from .cache import ResponseCache
from .config import Settings
from .expander import expand
from .logging_utils import resolve_logger
from .marketplace import MarketplaceSearchAdapter
from .providers import NewsSearchAdapter, ProviderAdapter, SocialSearchAdapter, WebSearchAdapter, describe_error
from .strategy import ProviderConfig, Strategy, resolve, validate_risk_level
from .timeouts import DeadlineExceeded, with_deadline

MAX_ERROR_DETAILS = 3


def build_adapters(
    settings: Settings,
    cache: ResponseCache | None = None,
    logger: logging.Logger | None = None,
) -> list[ProviderAdapter]:
    """All adapters in launch order; launch order decides URL attribution on collisions."""
    return [
        WebSearchAdapter(settings, logger=logger),
        NewsSearchAdapter(settings, logger=logger),
        SocialSearchAdapter(settings, logger=logger),
        MarketplaceSearchAdapter(settings, logger=logger, cache=cache),
    ]


def format_provider_block(adapter: ProviderAdapter, topic: str, result: ProviderResult, status: ProviderStatus) -> str:
    if not result.text.strip():
        return ""
    today = datetime.now(timezone.utc).strftime("%B %d, %Y")
    header = [
        f"=== {adapter.label} INTELLIGENCE ({today}) ===",
        f'Provider: {adapter.name}',
        f'Query: "{topic}"',
        f"Findings: {status.finding_count}",
    ]
    return "\n".join(header) + "\n\n" + result.text.strip()


class SignalAggregator:
    """Fans a topic out to every provider and folds the results into one bundle."""

    def __init__(
        self,
        settings: Settings,
        adapters: Sequence[ProviderAdapter] | None = None,
        cache: ResponseCache | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.settings = settings
        self.logger = resolve_logger(logger, __name__)
        self.cache = cache
        self.adapters = list(adapters) if adapters is not None else build_adapters(settings, cache=cache, logger=logger)

    def plan(self, topic: str, risk_level: int) -> tuple[Strategy, dict[str, list[str]]]:
        strategy = resolve(risk_level)
        angles: dict[str, list[str]] = {}
        for adapter in self.adapters:
            config = strategy.config_for(adapter.name)
            angles[adapter.name] = expand(topic, risk_level, config.angle_count)
        return strategy, angles

    async def _run_provider(
        self,
        adapter: ProviderAdapter,
        angles: list[str],
        config: ProviderConfig,
    ) -> tuple[ProviderResult, ProviderStatus]:
        deadline = self.settings.deadline_for(adapter.name)
        started = time.monotonic()
        try:
            result = await with_deadline(
                adapter.fetch(angles, config),
                deadline,
                f"{adapter.name} provider did not respond within {deadline:.0f}s",
                logger=self.logger,
            )
        except DeadlineExceeded as exc:
            return ProviderResult(), ProviderStatus(
                ok=False,
                timed_out=True,
                error_message=exc.message,
                elapsed_ms=int((time.monotonic() - started) * 1000),
            )
        except Exception as exc:  # noqa: BLE001
            self.logger.error(f"[{adapter.label}] unexpected failure: {describe_error(exc)}")
            return ProviderResult(), ProviderStatus(
                ok=False,
                error_message=describe_error(exc),
                elapsed_ms=int((time.monotonic() - started) * 1000),
            )

        elapsed_ms = int((time.monotonic() - started) * 1000)
        if not result.has_data and result.errors:
            return result, ProviderStatus(
                ok=False,
                error_message="; ".join(result.errors[:MAX_ERROR_DETAILS]),
                elapsed_ms=elapsed_ms,
            )
        return result, ProviderStatus(ok=True, finding_count=len(result.findings), elapsed_ms=elapsed_ms)

    async def aggregate(self, topic: str, risk_level: int) -> ConsolidatedBundle:
        validate_risk_level(risk_level)
        topic = (topic or "").strip()
        if not topic:
            raise ValueError("topic must be a non-empty string")

        strategy, angles = self.plan(topic, risk_level)
        self.logger.info(
            f"Aggregating '{topic}' at risk {risk_level} ({strategy.band.value}) "
            f"across {len(self.adapters)} provider(s)"
        )

        launched: list[ProviderAdapter] = []
        tasks: list[asyncio.Task[tuple[ProviderResult, ProviderStatus]]] = []
        for adapter in self.adapters:
            if not self.settings.provider_enabled(adapter.name):
                self.logger.info(f"[{adapter.label}] disabled, skipping")
                continue
            if not adapter.configured:
                self.logger.info(f"[{adapter.label}] not configured, skipping")
                continue
            launched.append(adapter)
            tasks.append(
                asyncio.create_task(
                    self._run_provider(adapter, angles[adapter.name], strategy.config_for(adapter.name)),
                    name=f"provider-{adapter.name}",
                )
            )

        settled = await asyncio.gather(*tasks, return_exceptions=True) if tasks else []
        outcomes: dict[str, tuple[ProviderResult, ProviderStatus]] = {}
        for adapter, outcome in zip(launched, settled):
            if isinstance(outcome, BaseException):
                outcomes[adapter.name] = (ProviderResult(), ProviderStatus(ok=False, error_message=describe_error(outcome)))
            else:
                outcomes[adapter.name] = outcome

        bundle = self._merge(topic, strategy, outcomes)
        for name, status in bundle.provider_status.items():
            if not status.configured:
                continue
            state = "ok" if status.ok else "timed out" if status.timed_out else f"error ({status.error_message})"
            self.logger.info(f"Provider {name}: {state}, {status.finding_count} findings in {status.elapsed_ms}ms")
        self.logger.info(
            f"Bundle for '{topic}': {len(bundle.active_providers)} active provider(s), "
            f"{len(bundle.all_citations)} unique citations"
        )

        if self.cache is not None:
            try:
                self.cache.record_bundle(topic, risk_level, bundle.to_json())
            except sqlite3.Error as exc:
                self.logger.error(f"Could not record bundle for '{topic}': {exc}")
        return bundle

    def _merge(
        self,
        topic: str,
        strategy: Strategy,
        outcomes: dict[str, tuple[ProviderResult, ProviderStatus]],
    ) -> ConsolidatedBundle:
        per_provider_text: dict[str, str] = {}
        provider_status: dict[str, ProviderStatus] = {}
        findings: list[RawFinding] = []
        seen: set[str] = set()

        # Adapter order, never completion order, decides who owns a shared URL.
        for adapter in self.adapters:
            if adapter.name not in outcomes:
                per_provider_text[adapter.name] = ""
                provider_status[adapter.name] = ProviderStatus(configured=False, ok=False)
                continue

            result, status = outcomes[adapter.name]
            per_provider_text[adapter.name] = format_provider_block(adapter, topic, result, status)
            provider_status[adapter.name] = status
            for item in result.findings:
                url = item.url.strip()
                if not url or url in seen:
                    continue
                seen.add(url)
                findings.append(item)

        return ConsolidatedBundle(
            topic=topic,
            risk_level=strategy.risk_level,
            band=strategy.band.value,
            per_provider_text=per_provider_text,
            provider_status=provider_status,
            all_citations=tuple(item.url.strip() for item in findings),
            findings=tuple(findings),
        )


async def aggregate(
    topic: str,
    risk_level: int,
    settings: Settings | None = None,
    logger: logging.Logger | None = None,
) -> ConsolidatedBundle:
    settings = settings or Settings.from_env()
    cache = (
        ResponseCache(settings.cache_path, logger=logger, max_bundles=settings.cache_max_bundles)
        if settings.cache_path
        else None
    )
    try:
        return await SignalAggregator(settings, cache=cache, logger=logger).aggregate(topic, risk_level)
    finally:
        if cache is not None:
            cache.close()
