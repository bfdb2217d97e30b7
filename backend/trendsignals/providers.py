from __future__ import annotations

import asyncio
import logging
import re
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Iterable, Sequence
from urllib.parse import urlparse

import httpx

from .bundle import ProviderResult, RawFinding
from .config import Settings
from .logging_utils import resolve_logger
from .strategy import ProviderConfig

Extractor = Callable[[Any], Any]
AngleOutcome = tuple[str, list[RawFinding]]
_NUMBER_PATTERN = re.compile(r"\d{1,3}(?:,\d{3})+(?:\.\d+)?|\d+(?:\.\d+)?")


def extract_domain(url: str) -> str:
    try:
        domain = urlparse(url).netloc.lower().strip()
        if domain.startswith("www."):
            return domain[4:]
        return domain
    except Exception:
        return ""


def dig(data: Any, *path: str | int) -> Any:
    """Walk nested dicts/lists; any missing step yields None instead of raising."""
    current = data
    for key in path:
        if isinstance(key, int):
            if not isinstance(current, list) or not -len(current) <= key < len(current):
                return None
            current = current[key]
        else:
            if not isinstance(current, dict):
                return None
            current = current.get(key)
        if current is None:
            return None
    return current


def first_match(data: Any, extractors: Sequence[tuple[str, Extractor]]) -> tuple[str, Any] | None:
    """Try each named extractor in order; the first truthy result wins."""
    for name, extractor in extractors:
        try:
            value = extractor(data)
        except (KeyError, IndexError, TypeError, ValueError, AttributeError):
            value = None
        if value:
            return name, value
    return None


def pick_str(item: dict[str, Any], *keys: str) -> str:
    for key in keys:
        value = item.get(key)
        if value is None:
            continue
        text = str(value).strip()
        if text:
            return text
    return ""


def pick_int(item: dict[str, Any], *keys: str) -> int | None:
    for key in keys:
        value = item.get(key)
        if value is None or isinstance(value, bool):
            continue
        if isinstance(value, (int, float)):
            return int(value)
        # First number only: "4.6 (1,234)" is a rating, not 461234 reviews.
        match = _NUMBER_PATTERN.search(str(value))
        if match:
            return int(float(match.group(0).replace(",", "")))
    return None


def dedupe_findings(findings: Iterable[RawFinding]) -> list[RawFinding]:
    seen: set[str] = set()
    unique: list[RawFinding] = []
    for item in findings:
        key = item.url.strip()
        if not key or key in seen:
            continue
        seen.add(key)
        unique.append(item)
    return unique


def describe_error(exc: BaseException) -> str:
    if isinstance(exc, httpx.HTTPStatusError):
        return f"HTTP {exc.response.status_code}"
    if isinstance(exc, httpx.TimeoutException):
        return "request timed out"
    message = str(exc).strip()
    return f"{type(exc).__name__}: {message}" if message else type(exc).__name__


def search_focus(config: ProviderConfig) -> str:
    if config.community_first:
        return "emerging, niche, underground, early signals"
    if config.include_community_sources:
        return "viral, trending, growing, breakout"
    return "popular, best-selling, established"


def time_window(days: int) -> str:
    if days <= 1:
        return "the past 24 hours"
    if days <= 7:
        return f"the past {days} days"
    if days <= 31:
        return "the past month"
    return f"the past {days} days"


class ProviderAdapter:
    """Base for one external signal source.

    ``fetch`` is the failure-isolation boundary: whatever happens below it, the
    caller gets a ``ProviderResult`` (possibly empty, with readable ``errors``).
    Subclasses implement ``_search_angle``; angles run concurrently.
    """

    name = "provider"
    label = "PROVIDER"

    def __init__(
        self,
        settings: Settings,
        transport: httpx.AsyncBaseTransport | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.settings = settings
        self.transport = transport
        self.logger = resolve_logger(logger, __name__)

    @property
    def configured(self) -> bool:
        raise NotImplementedError

    def _client(self, timeout: float | None = None) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=timeout if timeout is not None else self.settings.http_timeout_seconds,
            transport=self.transport,
        )

    async def fetch(self, angles: Sequence[str], config: ProviderConfig) -> ProviderResult:
        if not self.configured:
            return ProviderResult()

        selected = [angle for angle in angles if str(angle).strip()][: max(1, config.angle_count)]
        if not selected:
            return ProviderResult()

        try:
            result = await self._fetch(selected, config)
        except Exception as exc:  # noqa: BLE001
            self.logger.error(f"[{self.label}] fetch failed: {describe_error(exc)}")
            return ProviderResult(errors=[describe_error(exc)])

        self.logger.info(
            f"[{self.label}] {len(selected)} angle(s) -> {len(result.findings)} findings, "
            f"{len(result.text)} chars, {len(result.errors)} error(s)"
        )
        return result

    async def _fetch(self, angles: list[str], config: ProviderConfig) -> ProviderResult:
        outcomes = await asyncio.gather(
            *(self._search_angle(angle, config) for angle in angles),
            return_exceptions=True,
        )

        sections: list[str] = []
        findings: list[RawFinding] = []
        errors: list[str] = []
        for angle, outcome in zip(angles, outcomes):
            if isinstance(outcome, BaseException):
                reason = describe_error(outcome)
                self.logger.warning(f"[{self.label}] angle '{angle}' failed: {reason}")
                errors.append(f"{angle}: {reason}")
                continue
            text, items = outcome
            if text.strip():
                sections.append(text.strip())
            findings.extend(items)

        return ProviderResult(
            text="\n\n".join(sections),
            findings=dedupe_findings(findings),
            errors=errors,
        )

    async def _search_angle(self, angle: str, config: ProviderConfig) -> AngleOutcome:
        raise NotImplementedError


# --- Web search: Gemini with Google Search grounding -------------------------------

_WEB_TEXT_EXTRACTORS: list[tuple[str, Extractor]] = [
    (
        "candidate_parts",
        lambda data: "\n".join(
            str(part.get("text", "")).strip()
            for part in dig(data, "candidates", 0, "content", "parts") or []
            if isinstance(part, dict) and str(part.get("text", "")).strip()
        ),
    ),
    ("text", lambda data: str(dig(data, "text") or "").strip()),
    ("output_text", lambda data: str(dig(data, "output_text") or "").strip()),
]


def _grounding_chunks(data: Any) -> list[dict[str, Any]]:
    chunks = (
        dig(data, "candidates", 0, "groundingMetadata", "groundingChunks")
        or dig(data, "candidates", 0, "grounding_metadata", "grounding_chunks")
        or []
    )
    citations = []
    for chunk in chunks:
        web = dig(chunk, "web") if isinstance(chunk, dict) else None
        if isinstance(web, dict) and web.get("uri"):
            citations.append({"title": pick_str(web, "title"), "url": str(web["uri"]).strip()})
    return citations


def _plain_citations(data: Any) -> list[dict[str, Any]]:
    raw = dig(data, "citations") or []
    citations = []
    for item in raw if isinstance(raw, list) else []:
        if isinstance(item, str) and item.strip():
            citations.append({"title": "", "url": item.strip()})
        elif isinstance(item, dict):
            url = pick_str(item, "url", "uri", "link")
            if url:
                citations.append({"title": pick_str(item, "title"), "url": url})
    return citations


_WEB_CITATION_EXTRACTORS: list[tuple[str, Extractor]] = [
    ("grounding_chunks", _grounding_chunks),
    ("citations", _plain_citations),
]


class WebSearchAdapter(ProviderAdapter):
    name = "web"
    label = "WEB SEARCH"

    @property
    def configured(self) -> bool:
        return bool(self.settings.gemini_api_key)

    def _build_prompt(self, angle: str, config: ProviderConfig) -> str:
        return (
            f'Search the web for current news, discussions and trending content about "{angle}".\n'
            f"Search focus: {search_focus(config)} content from {time_window(config.freshness_window_days)}.\n"
            "Report specific findings: what it is, where it was found, when it was published, "
            "why it matters, and exact customer language quotes where available. "
            "Reject anything older than the time window."
        )

    async def _search_angle(self, angle: str, config: ProviderConfig) -> AngleOutcome:
        payload = {
            "contents": [{"role": "user", "parts": [{"text": self._build_prompt(angle, config)}]}],
            "tools": [{"google_search": {}}],
        }
        url = f"{self.settings.gemini_base_url.rstrip('/')}/models/{self.settings.gemini_model}:generateContent"

        async with self._client() as client:
            response = await client.post(url, params={"key": self.settings.gemini_api_key}, json=payload)
        response.raise_for_status()
        data = response.json()

        text_match = first_match(data, _WEB_TEXT_EXTRACTORS)
        citation_match = first_match(data, _WEB_CITATION_EXTRACTORS)
        if text_match is None and citation_match is None:
            self.logger.warning(f"[{self.label}] no known response shape for '{angle}'")
            return "", []

        content = text_match[1] if text_match else ""
        citations = (citation_match[1] if citation_match else [])[: config.max_results_per_angle]

        findings = [
            RawFinding(
                source_provider=self.name,
                url=item["url"],
                title=item["title"] or extract_domain(item["url"]),
                published_age_hint=time_window(config.freshness_window_days),
            )
            for item in citations
        ]

        lines = [f'--- ANGLE: "{angle}" ---']
        if content:
            lines.append(content)
        if citations:
            lines.append("Sources found:")
            lines.extend(
                f"[{index}] {item['title'] or 'Source'}: {item['url']}" for index, item in enumerate(citations, 1)
            )
        return "\n".join(lines), findings


# --- News search: Brave web + news endpoints ---------------------------------------

def freshness_token(days: int) -> str:
    if days <= 1:
        return "pd"
    if days <= 7:
        return "pw"
    if days <= 31:
        return "pm"
    return "py"


class NewsSearchAdapter(ProviderAdapter):
    name = "news"
    label = "NEWS SEARCH"

    COMMUNITY_TERMS = "discussion community thread opinions"
    NEWS_MAX_COUNT = 20

    @property
    def configured(self) -> bool:
        return bool(self.settings.brave_api_key)

    async def _get(self, client: httpx.AsyncClient, endpoint: str, params: dict[str, Any]) -> dict[str, Any]:
        response = await client.get(
            f"{self.settings.brave_base_url.rstrip('/')}/{endpoint}/search",
            params=params,
            headers={
                "Accept": "application/json",
                "X-Subscription-Token": self.settings.brave_api_key,
            },
        )
        response.raise_for_status()
        data = response.json()
        return data if isinstance(data, dict) else {}

    async def _search_angle(self, angle: str, config: ProviderConfig) -> AngleOutcome:
        freshness = freshness_token(config.freshness_window_days)
        count = config.max_results_per_angle

        async with self._client() as client:
            requests: list[Awaitable[dict[str, Any]]] = [
                self._get(client, "web", {"q": angle, "count": count, "freshness": freshness, "extra_snippets": "true"}),
                self._get(client, "news", {"q": angle, "count": min(count, self.NEWS_MAX_COUNT), "freshness": freshness}),
            ]
            if config.include_community_sources:
                requests.append(
                    self._get(
                        client,
                        "web",
                        {
                            "q": f"{angle} {self.COMMUNITY_TERMS}",
                            "count": count,
                            "freshness": freshness,
                            "extra_snippets": "true",
                        },
                    )
                )
            responses = await asyncio.gather(*requests, return_exceptions=True)

        failures = [item for item in responses if isinstance(item, BaseException)]
        if len(failures) == len(responses):
            raise failures[0]
        for failure in failures:
            self.logger.warning(f"[{self.label}] partial failure for '{angle}': {describe_error(failure)}")

        web_data = responses[0] if isinstance(responses[0], dict) else {}
        news_data = responses[1] if isinstance(responses[1], dict) else {}
        community_data = responses[2] if len(responses) > 2 and isinstance(responses[2], dict) else {}

        web_results = dig(web_data, "web", "results") or dig(web_data, "results") or []
        news_results = dig(news_data, "results") or dig(news_data, "news", "results") or dig(web_data, "news", "results") or []
        discussion_results = dig(web_data, "discussions", "results") or []
        community_results = dig(community_data, "web", "results") or dig(community_data, "results") or []

        sections = {
            "COMMUNITY DISCUSSIONS": discussion_results,
            "COMMUNITY VOICES": community_results if config.include_community_sources else [],
            "WEB RESULTS": web_results,
            "NEWS RESULTS": news_results,
        }
        if config.community_first:
            order = ["COMMUNITY DISCUSSIONS", "COMMUNITY VOICES", "WEB RESULTS", "NEWS RESULTS"]
        else:
            order = ["WEB RESULTS", "NEWS RESULTS", "COMMUNITY DISCUSSIONS", "COMMUNITY VOICES"]

        lines = [f'--- ANGLE: "{angle}" (freshness: {freshness}) ---']
        findings: list[RawFinding] = []
        for heading in order:
            items = [item for item in sections[heading] if isinstance(item, dict)][:count]
            rendered = self._render_section(heading, items, findings)
            if rendered:
                lines.append(rendered)

        if len(lines) == 1:
            return "", []
        return "\n\n".join(lines), findings

    def _render_section(self, heading: str, items: list[dict[str, Any]], findings: list[RawFinding]) -> str:
        rows: list[str] = []
        for item in items:
            url = pick_str(item, "url", "link")
            if not url:
                continue
            title = pick_str(item, "title")
            description = pick_str(item, "description", "snippet")
            age = pick_str(item, "age", "page_age") or None
            snippets = item.get("extra_snippets") if isinstance(item.get("extra_snippets"), list) else []

            row = [f"[{url}]", f"Title: {title}", f"Content: {description}"]
            if snippets:
                row.append(f"Quotes: {' | '.join(str(s) for s in snippets[:2])}")
            meta_url = item.get("meta_url")
            hostname = pick_str(meta_url, "hostname") if isinstance(meta_url, dict) else ""
            if hostname:
                row.append(f"Source: {hostname}")
            if age:
                row.append(f"Age: {age}")
            rows.append("\n".join(row))

            findings.append(
                RawFinding(
                    source_provider=self.name,
                    url=url,
                    title=title,
                    body_text=description,
                    published_age_hint=age,
                )
            )
        if not rows:
            return ""
        return f"{heading} ({len(rows)})\n" + "\n\n".join(rows)


# --- Social search: xAI live search ------------------------------------------------

def _message_text(data: Any) -> str:
    content = dig(data, "choices", 0, "message", "content")
    if isinstance(content, list):
        parts = []
        for part in content:
            if isinstance(part, dict) and part.get("type") == "text":
                parts.append(str(part.get("text", "")))
            elif isinstance(part, str):
                parts.append(part)
        return "\n".join(parts).strip()
    return str(content or "").strip()


_SOCIAL_TEXT_EXTRACTORS: list[tuple[str, Extractor]] = [
    ("message_content", _message_text),
    ("output_text", lambda data: str(dig(data, "output_text") or "").strip()),
    ("content", lambda data: str(dig(data, "content") or "").strip()),
]


def _url_list(raw: Any) -> list[str]:
    urls = []
    for item in raw if isinstance(raw, list) else []:
        if isinstance(item, str) and item.strip():
            urls.append(item.strip())
        elif isinstance(item, dict):
            url = pick_str(item, "url", "uri", "link")
            if url:
                urls.append(url)
    return urls


_SOCIAL_CITATION_EXTRACTORS: list[tuple[str, Extractor]] = [
    ("citations", lambda data: _url_list(dig(data, "citations"))),
    ("message_citations", lambda data: _url_list(dig(data, "choices", 0, "message", "citations"))),
    ("search_results", lambda data: _url_list(dig(data, "search_results"))),
]


class SocialSearchAdapter(ProviderAdapter):
    name = "social"
    label = "SOCIAL SEARCH"

    SYSTEM_PROMPT = (
        "You are searching live social, news and web data. Find what is actually being discussed "
        "right now: exact phrases from real posts, slang, memes, emotional tone, visual preferences "
        "and purchase intent. Only report what the live search returns and quote it directly."
    )

    @property
    def configured(self) -> bool:
        return bool(self.settings.xai_api_key)

    def date_range(self, config: ProviderConfig, today: datetime | None = None) -> tuple[str, str]:
        end = (today or datetime.now(timezone.utc)).date()
        start = end - timedelta(days=config.freshness_window_days)
        return start.isoformat(), end.isoformat()

    def source_types(self, config: ProviderConfig) -> list[dict[str, Any]]:
        x_source: dict[str, Any] = {"type": "x"}
        if config.min_engagement_threshold:
            x_source["post_favorite_count"] = config.min_engagement_threshold
        if config.min_view_threshold:
            x_source["post_view_count"] = config.min_view_threshold
        sources = [x_source, {"type": "news", "country": "US"}]
        if config.include_community_sources:
            sources.append({"type": "web", "country": "US"})
        return sources

    async def _search_angle(self, angle: str, config: ProviderConfig) -> AngleOutcome:
        from_date, to_date = self.date_range(config)
        payload = {
            "model": self.settings.xai_model,
            "stream": False,
            "temperature": 0.3,
            "messages": [
                {"role": "system", "content": self.SYSTEM_PROMPT},
                {
                    "role": "user",
                    "content": (
                        f'Search live posts and news for: "{angle}"\n'
                        f"Date range: {from_date} to {to_date}\n"
                        "Return specific findings with quotes and sources."
                    ),
                },
            ],
            "search_parameters": {
                "mode": "on",
                "from_date": from_date,
                "to_date": to_date,
                "return_citations": True,
                "max_search_results": config.max_results_per_angle,
                "sources": self.source_types(config),
            },
        }
        headers = {
            "Authorization": f"Bearer {self.settings.xai_api_key}",
            "Content-Type": "application/json",
        }

        async with self._client() as client:
            response = await client.post(
                f"{self.settings.xai_base_url.rstrip('/')}/chat/completions",
                headers=headers,
                json=payload,
            )
        response.raise_for_status()
        data = response.json()

        text_match = first_match(data, _SOCIAL_TEXT_EXTRACTORS)
        citation_match = first_match(data, _SOCIAL_CITATION_EXTRACTORS)
        if text_match is None and citation_match is None:
            self.logger.warning(f"[{self.label}] no known response shape for '{angle}'")
            return "", []

        content = text_match[1] if text_match else ""
        urls = (citation_match[1] if citation_match else [])[: config.max_results_per_angle]
        usage = dig(data, "usage")
        sources_used = (pick_int(usage, "num_sources_used", "num_sources") if isinstance(usage, dict) else None) or 0
        self.logger.debug(f"[{self.label}] '{angle}' used {sources_used} sources, {len(urls)} citations")

        findings = [
            RawFinding(
                source_provider=self.name,
                url=url,
                title=extract_domain(url),
                published_age_hint=f"{from_date} to {to_date}",
            )
            for url in urls
        ]

        lines = [f'--- ANGLE: "{angle}" ({from_date} to {to_date}, sources searched: {sources_used}) ---']
        if content:
            lines.append(content)
        if urls:
            lines.append("Sources cited:")
            lines.extend(f"[{index}] {url}" for index, url in enumerate(urls, 1))
        return "\n".join(lines), findings
