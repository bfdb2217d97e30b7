"""Marketplace search adapter (Decodo scraping API).

Responses are deeply nested and not schema-stable, so product extraction is an
ordered list of strategies tried in turn. Transient provider statuses are retried
with escalating backoff; permanent failures are not retried.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable

import httpx

from .bundle import RawFinding
from .cache import ResponseCache
from .config import Settings
from .providers import AngleOutcome, Extractor, ProviderAdapter, dig, first_match, pick_int, pick_str
from .strategy import ProviderConfig

# 613 is the provider's own "temporary failure, try again" status, reported in the body.
TRANSIENT_STATUS_CODES = frozenset({429, 500, 502, 503, 504, 613})
AMAZON_BASE_URL = "https://www.amazon.com"


class TransientProviderError(Exception):
    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class PermanentProviderError(Exception):
    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


def _looks_like_product(item: Any) -> bool:
    return isinstance(item, dict) and bool(pick_str(item, "title", "name") or pick_str(item, "url", "link", "asin"))


def _product_list(value: Any) -> list[dict[str, Any]]:
    if not isinstance(value, list):
        return []
    return [item for item in value if _looks_like_product(item)]


def _from_contents(data: Any, *path: str) -> list[dict[str, Any]]:
    products: list[dict[str, Any]] = []
    for result in dig(data, "results") or []:
        if not isinstance(result, dict):
            continue
        products.extend(_product_list(dig(result.get("content"), *path)))
    return products


PRODUCT_EXTRACTORS: list[tuple[str, Extractor]] = [
    ("results.content.results.organic", lambda data: _from_contents(data, "results", "organic")),
    ("results.content.results", lambda data: _from_contents(data, "results")),
    ("results.content.organic", lambda data: _from_contents(data, "organic")),
    ("results.content.products", lambda data: _from_contents(data, "products")),
    ("results.content.listings", lambda data: _from_contents(data, "listings")),
    ("content.results", lambda data: _product_list(dig(data, "content", "results"))),
    ("content.listings", lambda data: _product_list(dig(data, "content", "listings"))),
    ("results", lambda data: _product_list(dig(data, "results"))),
]


def extract_products(data: Any) -> tuple[str, list[dict[str, Any]]] | None:
    return first_match(data, PRODUCT_EXTRACTORS)


def product_url(item: dict[str, Any]) -> str:
    url = pick_str(item, "url", "link", "product_url")
    if url.startswith("/"):
        return f"{AMAZON_BASE_URL}{url}"
    if not url:
        asin = pick_str(item, "asin")
        if asin:
            return f"{AMAZON_BASE_URL}/dp/{asin}"
    return url


def body_status(data: Any) -> int | None:
    first = dig(data, "results", 0)
    status = pick_int(first, "status_code") if isinstance(first, dict) else None
    if status is None and isinstance(data, dict):
        status = pick_int(data, "status_code")
    return status


class MarketplaceSearchAdapter(ProviderAdapter):
    name = "marketplace"
    label = "MARKETPLACE SEARCH"

    def __init__(
        self,
        settings: Settings,
        transport: httpx.AsyncBaseTransport | None = None,
        logger: logging.Logger | None = None,
        cache: ResponseCache | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        super().__init__(settings=settings, transport=transport, logger=logger)
        self.cache = cache
        self._sleep = sleep

    @property
    def configured(self) -> bool:
        return bool(self.settings.decodo_username and self.settings.decodo_password)

    async def _request(self, payload: dict[str, Any]) -> Any:
        try:
            async with self._client() as client:
                response = await client.post(
                    f"{self.settings.decodo_base_url.rstrip('/')}/scrape",
                    json=payload,
                    auth=(self.settings.decodo_username, self.settings.decodo_password),
                    headers={"Accept": "application/json"},
                )
        except httpx.TimeoutException:
            raise
        except httpx.TransportError as exc:
            raise TransientProviderError(f"transport error: {exc}") from exc

        if response.status_code in TRANSIENT_STATUS_CODES:
            raise TransientProviderError(f"HTTP {response.status_code}", response.status_code)
        if response.status_code >= 400:
            raise PermanentProviderError(f"HTTP {response.status_code}", response.status_code)

        data = response.json()
        status = body_status(data)
        if status in TRANSIENT_STATUS_CODES:
            raise TransientProviderError(f"provider status {status}", status)
        if status is not None and status >= 400:
            raise PermanentProviderError(f"provider status {status}", status)
        return data

    async def scrape(self, query: str, page: int = 1) -> Any:
        """One marketplace query with read-through cache and bounded retry."""
        target = self.settings.marketplace_target
        cache_key = ResponseCache.make_key(self.name, target, query, page)
        if self.cache is not None:
            cached = self.cache.get(cache_key)
            if cached is not None:
                self.logger.info(f"[{self.label}] using cached results for '{query}' page {page}")
                return cached

        payload = {"target": target, "query": query, "page_from": page, "parse": True}
        attempts = max(0, self.settings.marketplace_max_retries) + 1
        delay = self.settings.marketplace_backoff_seconds

        for attempt in range(1, attempts + 1):
            try:
                data = await self._request(payload)
            except TransientProviderError as exc:
                if attempt >= attempts:
                    self.logger.warning(f"[{self.label}] giving up on '{query}' after {attempt} attempts: {exc}")
                    raise
                self.logger.info(
                    f"[{self.label}] attempt {attempt}/{attempts} for '{query}' hit {exc}, retrying in {delay:.1f}s"
                )
                await self._sleep(delay)
                delay *= self.settings.marketplace_backoff_multiplier
                continue

            if self.cache is not None:
                self.cache.set(cache_key, data, self.settings.cache_ttl_seconds)
            return data

        raise TransientProviderError("retry budget exhausted")

    async def _search_angle(self, angle: str, config: ProviderConfig) -> AngleOutcome:
        pages = list(range(1, max(1, self.settings.marketplace_pages) + 1))
        responses = await asyncio.gather(*(self.scrape(angle, page) for page in pages), return_exceptions=True)

        products: list[dict[str, Any]] = []
        failures: list[BaseException] = []
        for response in responses:
            if isinstance(response, BaseException):
                failures.append(response)
                continue
            match = extract_products(response)
            if match is None:
                self.logger.warning(f"[{self.label}] no known product shape for '{angle}'")
                continue
            strategy, items = match
            self.logger.debug(f"[{self.label}] '{angle}' parsed {len(items)} products via {strategy}")
            products.extend(items)

        if failures and len(failures) == len(responses):
            raise failures[0]

        threshold = config.min_engagement_threshold
        findings: list[RawFinding] = []
        rows: list[str] = []
        for item in products:
            if len(findings) >= config.max_results_per_angle:
                break
            url = product_url(item)
            if not url:
                continue
            reviews = pick_int(item, "reviews_count", "rating_count", "num_reviews", "reviews")
            if threshold and (reviews or 0) < threshold:
                continue
            title = pick_str(item, "title", "name")
            rating = pick_str(item, "rating", "stars")
            price = pick_str(item, "price_str", "price", "price_raw")
            seller = pick_str(item, "shop_name", "seller", "manufacturer")

            findings.append(
                RawFinding(
                    source_provider=self.name,
                    url=url,
                    title=title,
                    body_text=" | ".join(part for part in (seller, price) if part),
                    engagement_hint=reviews,
                )
            )
            row = [f"[{url}]", f"Title: {title}"]
            if price:
                row.append(f"Price: {price}")
            row.append(f"Reviews: {reviews if reviews is not None else 'unknown'}")
            if rating:
                row.append(f"Rating: {rating}")
            if seller:
                row.append(f"Seller: {seller}")
            rows.append("\n".join(row))

        if not rows:
            return "", []
        header = f'--- ANGLE: "{angle}" ({self.settings.marketplace_target}, {len(rows)} listings) ---'
        return header + "\n" + "\n\n".join(rows), findings
