"""Risk level to retrieval strategy mapping.

A single 0-100 risk level picks one of four bands. Every provider config for a
search is derived from that one band so providers stay in lockstep.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

MIN_RISK_LEVEL = 0
MAX_RISK_LEVEL = 100


class RiskBand(str, Enum):
    CONSERVATIVE = "conservative"
    BALANCED = "balanced"
    AGGRESSIVE = "aggressive"
    PREDICTIVE = "predictive"


@dataclass(frozen=True)
class ProviderConfig:
    freshness_window_days: int
    max_results_per_angle: int
    angle_count: int
    min_engagement_threshold: int | None = None
    include_community_sources: bool = False
    community_first: bool = False
    min_view_threshold: int | None = None


@dataclass(frozen=True)
class Strategy:
    risk_level: int
    band: RiskBand
    per_provider: dict[str, ProviderConfig]

    def config_for(self, provider: str) -> ProviderConfig:
        return self.per_provider[provider]


# Upper bounds are inclusive: 25 is still conservative, 26 is balanced.
_BAND_UPPER_BOUNDS = (
    (25, RiskBand.CONSERVATIVE),
    (50, RiskBand.BALANCED),
    (75, RiskBand.AGGRESSIVE),
    (100, RiskBand.PREDICTIVE),
)

_BAND_TABLE: dict[RiskBand, dict[str, ProviderConfig]] = {
    RiskBand.CONSERVATIVE: {
        "web": ProviderConfig(freshness_window_days=30, max_results_per_angle=10, angle_count=2),
        "news": ProviderConfig(freshness_window_days=30, max_results_per_angle=15, angle_count=2),
        "social": ProviderConfig(
            freshness_window_days=60,
            max_results_per_angle=15,
            angle_count=3,
            min_engagement_threshold=5000,
            min_view_threshold=100000,
        ),
        "marketplace": ProviderConfig(
            freshness_window_days=365,
            max_results_per_angle=20,
            angle_count=2,
            min_engagement_threshold=50,
        ),
    },
    RiskBand.BALANCED: {
        "web": ProviderConfig(
            freshness_window_days=7,
            max_results_per_angle=10,
            angle_count=3,
            include_community_sources=True,
        ),
        "news": ProviderConfig(
            freshness_window_days=7,
            max_results_per_angle=15,
            angle_count=3,
            include_community_sources=True,
        ),
        "social": ProviderConfig(
            freshness_window_days=30,
            max_results_per_angle=20,
            angle_count=4,
            min_engagement_threshold=1000,
            include_community_sources=True,
            min_view_threshold=20000,
        ),
        "marketplace": ProviderConfig(
            freshness_window_days=180,
            max_results_per_angle=20,
            angle_count=3,
            min_engagement_threshold=10,
            include_community_sources=True,
        ),
    },
    RiskBand.AGGRESSIVE: {
        "web": ProviderConfig(
            freshness_window_days=7,
            max_results_per_angle=10,
            angle_count=4,
            include_community_sources=True,
            community_first=True,
        ),
        "news": ProviderConfig(
            freshness_window_days=1,
            max_results_per_angle=20,
            angle_count=4,
            include_community_sources=True,
            community_first=True,
        ),
        "social": ProviderConfig(
            freshness_window_days=14,
            max_results_per_angle=20,
            angle_count=4,
            min_engagement_threshold=100,
            include_community_sources=True,
            community_first=True,
            min_view_threshold=5000,
        ),
        "marketplace": ProviderConfig(
            freshness_window_days=90,
            max_results_per_angle=20,
            angle_count=4,
            min_engagement_threshold=1,
            include_community_sources=True,
            community_first=True,
        ),
    },
    RiskBand.PREDICTIVE: {
        "web": ProviderConfig(
            freshness_window_days=2,
            max_results_per_angle=10,
            angle_count=5,
            include_community_sources=True,
            community_first=True,
        ),
        "news": ProviderConfig(
            freshness_window_days=1,
            max_results_per_angle=25,
            angle_count=5,
            include_community_sources=True,
            community_first=True,
        ),
        "social": ProviderConfig(
            freshness_window_days=7,
            max_results_per_angle=25,
            angle_count=5,
            include_community_sources=True,
            community_first=True,
        ),
        "marketplace": ProviderConfig(
            freshness_window_days=30,
            max_results_per_angle=20,
            angle_count=5,
            include_community_sources=True,
            community_first=True,
        ),
    },
}


def validate_risk_level(risk_level: object) -> int:
    # bool is an int subclass; True/False are caller bugs, not levels.
    if isinstance(risk_level, bool) or not isinstance(risk_level, int):
        raise ValueError(f"risk level must be an integer, got {risk_level!r}")
    if risk_level < MIN_RISK_LEVEL or risk_level > MAX_RISK_LEVEL:
        raise ValueError(f"risk level must be between {MIN_RISK_LEVEL} and {MAX_RISK_LEVEL}, got {risk_level}")
    return risk_level


def risk_band(risk_level: int) -> RiskBand:
    level = validate_risk_level(risk_level)
    for upper, band in _BAND_UPPER_BOUNDS:
        if level <= upper:
            return band
    return RiskBand.PREDICTIVE


def resolve(risk_level: int) -> Strategy:
    band = risk_band(risk_level)
    return Strategy(risk_level=risk_level, band=band, per_provider=dict(_BAND_TABLE[band]))
