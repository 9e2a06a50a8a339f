from __future__ import annotations

from dataclasses import replace
from typing import Iterable, Sequence

from .types import Detection, ModelResult

# A class survives when at least half of the successful models report it.
VOTE_THRESHOLD: float = 0.5
# Multiplicative confidence bonus at a unanimous vote.
AGREEMENT_BOOST: float = 0.2

HIGH_CONSENSUS_CONFIDENCE: float = 0.85
MEDIUM_CONSENSUS_CONFIDENCE: float = 0.65


def consolidate_detections(
    detections: Iterable[Detection], model_count: int
) -> list[Detection]:
    """Majority-vote detections by defect class and boost agreed confidences.

    ``detections`` is the flattened output of every successful model, in
    configured adapter order. Each retained class is represented by its
    highest-confidence detection; on equal confidence the first one seen wins.
    The result keeps the order in which classes first appeared.
    """
    if model_count <= 0:
        raise ValueError("model_count must be positive")

    by_class: dict[str, list[Detection]] = {}
    for detection in detections:
        by_class.setdefault(detection.defect_class, []).append(detection)

    consolidated: list[Detection] = []
    for group in by_class.values():
        vote_ratio = len(group) / model_count
        if vote_ratio < VOTE_THRESHOLD:
            continue
        best = group[0]
        for candidate in group[1:]:
            if candidate.confidence > best.confidence:
                best = candidate
        boosted = min(1.0, best.confidence * (1 + vote_ratio * AGREEMENT_BOOST))
        consolidated.append(replace(best, confidence=boosted))
    return consolidated


def mean_confidence(results: Sequence[ModelResult]) -> float:
    if not results:
        return 0.0
    return sum(r.confidence for r in results) / len(results)


def determine_consensus_level(results: Sequence[ModelResult]) -> str:
    """Classify agreement across models as ``high``, ``medium`` or ``low``.

    Any disagreement on compliance is ``low`` regardless of confidence.
    """
    if len(results) < 2:
        return "low"

    first = results[0].is_compliant
    compliance_agreement = all(r.is_compliant == first for r in results)
    average = mean_confidence(results)

    if compliance_agreement and average >= HIGH_CONSENSUS_CONFIDENCE:
        return "high"
    if compliance_agreement and average >= MEDIUM_CONSENSUS_CONFIDENCE:
        return "medium"
    return "low"


__all__ = [
    "AGREEMENT_BOOST",
    "HIGH_CONSENSUS_CONFIDENCE",
    "MEDIUM_CONSENSUS_CONFIDENCE",
    "VOTE_THRESHOLD",
    "consolidate_detections",
    "determine_consensus_level",
    "mean_confidence",
]
