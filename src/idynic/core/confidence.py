from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import UTC, date, datetime

SOURCE_WEIGHTS: dict[str, float] = {
    "certification": 1.5,
    "resume": 1.0,
    "story": 0.8,
    "inferred": 0.6,
}

# Years until a piece of evidence counts half; None never decays.
HALF_LIFE_YEARS: dict[str, float | None] = {
    "skill": 4.0,
    "achievement": 7.0,
    "attribute": 15.0,
    "education": None,
    "certification": None,
}

STRENGTH_MULTIPLIERS: dict[str, float] = {
    "strong": 1.2,
    "medium": 1.0,
    "weak": 0.7,
}

MAX_CONFIDENCE = 0.95


@dataclass(slots=True)
class EvidenceSignal:
    strength: str
    source_type: str
    evidence_date: date | None = None


def base_confidence(evidence_count: int) -> float:
    if evidence_count <= 0:
        return 0.0
    if evidence_count == 1:
        return 0.5
    if evidence_count == 2:
        return 0.7
    if evidence_count == 3:
        return 0.8
    return 0.9


def recency_decay(evidence_date: date | None, claim_type: str, *, today: date | None = None) -> float:
    half_life = HALF_LIFE_YEARS.get(claim_type)
    if half_life is None or evidence_date is None:
        return 1.0

    today = today or datetime.now(UTC).date()
    years = max(0.0, (today - evidence_date).days / 365.25)
    return math.pow(0.5, years / half_life)


def claim_confidence(signals: list[EvidenceSignal], claim_type: str, *, today: date | None = None) -> float:
    if not signals:
        return 0.0

    weights = [
        STRENGTH_MULTIPLIERS.get(signal.strength, 1.0)
        * recency_decay(signal.evidence_date, claim_type, today=today)
        * SOURCE_WEIGHTS.get(signal.source_type, 1.0)
        for signal in signals
    ]
    average = sum(weights) / len(weights)
    return round(min(MAX_CONFIDENCE, base_confidence(len(signals)) * average), 4)
