from __future__ import annotations

from .strategy import RiskBand, risk_band

# Ordered from safe/mainstream to niche/underground. Order is load-bearing:
# providers under tight budgets only consume the first few angles.
SUFFIX_CATALOG = (
    "trending",
    "popular",
    "viral",
    "reddit",
    "community",
    "new",
    "niche",
    "underground",
    "meme",
    "early signs",
)

_ELIGIBLE_SUFFIXES = {
    RiskBand.CONSERVATIVE: 2,
    RiskBand.BALANCED: 5,
    RiskBand.AGGRESSIVE: 8,
    RiskBand.PREDICTIVE: len(SUFFIX_CATALOG),
}


def eligible_suffixes(risk_level: int) -> tuple[str, ...]:
    return SUFFIX_CATALOG[: _ELIGIBLE_SUFFIXES[risk_band(risk_level)]]


def expand(topic: str, risk_level: int, angle_count: int) -> list[str]:
    """Derive up to ``angle_count`` query angles for ``topic``.

    The topic itself is always the first angle. Suffixes the topic already
    contains are skipped so "trending hats" never becomes "trending hats trending".
    """
    suffixes = eligible_suffixes(risk_level)
    budget = max(1, int(angle_count))

    angles = [topic]
    padded = f" {' '.join(topic.lower().split())} "
    for suffix in suffixes:
        if len(angles) >= budget:
            break
        if f" {suffix} " in padded:
            continue
        candidate = f"{topic} {suffix}"
        if candidate not in angles:
            angles.append(candidate)
    return angles[:budget]
