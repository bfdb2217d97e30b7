"""
Shared fixtures for trend signal tests.

All outbound HTTP is served by ``httpx.MockTransport``; nothing leaves the process.
"""

from __future__ import annotations

import asyncio
import json
from typing import Any, Callable

import httpx
import pytest

from trendsignals.bundle import ProviderResult, RawFinding
from trendsignals.config import Settings
from trendsignals.synthesis import LLMClient, SynthesisGateway


@pytest.fixture
def settings() -> Settings:
    """Settings with every provider configured and instant retries."""
    return Settings(
        gemini_api_key="gemini-test",
        brave_api_key="brave-test",
        xai_api_key="xai-test",
        decodo_username="user",
        decodo_password="pass",
        llm_api_key="llm-test",
        marketplace_backoff_seconds=0.5,
        cache_path="",
    )


@pytest.fixture
def bare_settings() -> Settings:
    """Settings with no credentials at all."""
    return Settings()


def json_transport(handler: Callable[[httpx.Request], Any], calls: list[httpx.Request] | None = None) -> httpx.MockTransport:
    """Wrap a handler returning ``(status, body)`` or a body dict into a MockTransport."""

    def respond(request: httpx.Request) -> httpx.Response:
        if calls is not None:
            calls.append(request)
        outcome = handler(request)
        if isinstance(outcome, httpx.Response):
            return outcome
        if isinstance(outcome, tuple):
            status, body = outcome
        else:
            status, body = 200, outcome
        return httpx.Response(status, content=json.dumps(body).encode(), headers={"Content-Type": "application/json"})

    return httpx.MockTransport(respond)


def llm_reply(payload: dict[str, Any]) -> dict[str, Any]:
    return {"choices": [{"message": {"content": json.dumps(payload)}}]}


def gateway_for(handler, calls=None, api_key="llm-test") -> SynthesisGateway:
    llm = LLMClient("https://llm.test/v1", api_key, transport=json_transport(handler, calls))
    return SynthesisGateway(llm, model="test-model")


class FakeAdapter:
    """Stands in for a provider adapter; records what it was asked."""

    def __init__(self, name, urls=(), delay=0.0, configured=True, error=None, text=None):
        self.name = name
        self.label = f"{name.upper()} SEARCH"
        self.urls = list(urls)
        self.delay = delay
        self.configured = configured
        self.error = error
        self.text = text if text is not None else f"{name} says hello"
        self.calls = []

    async def fetch(self, angles, config):
        self.calls.append((list(angles), config))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        findings = [RawFinding(source_provider=self.name, url=url, title=url) for url in self.urls]
        return ProviderResult(text=self.text, findings=findings)
