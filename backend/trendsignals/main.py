from __future__ import annotations

import logging
from typing import Any

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from .aggregator import SignalAggregator
from .cache import ResponseCache
from .config import PROVIDER_NAMES, Settings
from .logging_utils import configure_logging
from .strategy import MAX_RISK_LEVEL, MIN_RISK_LEVEL
from .synthesis import SynthesisGateway, search_trends

settings = Settings.from_env()
configure_logging(settings.log_level)
logger = logging.getLogger(__name__)

cache = ResponseCache(settings.cache_path, max_bundles=settings.cache_max_bundles) if settings.cache_path else None
aggregator = SignalAggregator(settings, cache=cache)
gateway = SynthesisGateway.from_settings(settings)

app = FastAPI(title="Trend Signal Aggregator", version="0.1.0")
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("shutdown")
async def close_cache() -> None:
    if cache is not None:
        cache.close()


class SignalRequest(BaseModel):
    topic: str = Field(min_length=1, max_length=200)
    risk_level: int = Field(default=50, ge=MIN_RISK_LEVEL, le=MAX_RISK_LEVEL)


@app.get("/api/system/capabilities")
async def system_capabilities() -> dict[str, Any]:
    configured = {
        adapter.name: adapter.configured and settings.provider_enabled(adapter.name) for adapter in aggregator.adapters
    }
    return {
        "llm_enabled": gateway.llm.enabled,
        "providers": {name: configured.get(name, False) for name in PROVIDER_NAMES},
        "enabled_providers": [name for name in PROVIDER_NAMES if settings.provider_enabled(name)],
        "deadlines": {name: settings.deadline_for(name) for name in PROVIDER_NAMES},
        "aggregate_deadline": settings.aggregate_deadline_seconds,
        "cache_enabled": cache is not None,
    }


@app.post("/api/signals")
async def collect_signals(body: SignalRequest) -> dict[str, Any]:
    try:
        bundle = await aggregator.aggregate(body.topic, body.risk_level)
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    return bundle.to_dict()


@app.post("/api/trends")
async def collect_trends(body: SignalRequest) -> dict[str, Any]:
    try:
        result = await search_trends(body.topic, body.risk_level, aggregator=aggregator, gateway=gateway, settings=settings)
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    logger.info(f"Trend search for '{body.topic}' returned {len(result.trends)} record(s)")
    return result.to_dict()
