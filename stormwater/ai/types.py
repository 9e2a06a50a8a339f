from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol

DEFECT_CLASSES: tuple[str, ...] = (
    "silt_fence_tear",
    "silt_fence_overtopping",
    "silt_fence_gap",
    "inlet_clogged",
    "inlet_bypassed",
    "inlet_overflow",
    "sediment_tracking",
    "bare_soil",
    "perimeter_gap",
    "construction_entrance_rutting",
)
UNKNOWN_DEFECT: str = "unknown"

# Ordered from least to most severe.
SEVERITIES: tuple[str, ...] = ("low", "medium", "high", "critical")

CONSENSUS_LEVELS: tuple[str, ...] = ("high", "medium", "low")

REVIEW_INSUFFICIENT_MODELS = "Insufficient models available for ensemble"
REVIEW_TOO_MANY_FAILURES = "Too many model failures"
REVIEW_MODEL_DISAGREEMENT = "Models disagree on classification"

REVIEW_REASONS: frozenset[str] = frozenset(
    {REVIEW_INSUFFICIENT_MODELS, REVIEW_TOO_MANY_FAILURES, REVIEW_MODEL_DISAGREEMENT}
)

_RECOMMENDED_ACTIONS: dict[str, str] = {
    "silt_fence_tear": "Repair or replace damaged silt fence section",
    "silt_fence_overtopping": "Add additional height or install secondary control",
    "silt_fence_gap": "Close gap and reinforce connection points",
    "inlet_clogged": "Clear sediment and clean filter fabric",
    "inlet_bypassed": "Reinstall inlet protection properly",
    "inlet_overflow": "Add additional inlet capacity or diversion",
    "sediment_tracking": "Deploy wheel wash or sweep access road",
    "bare_soil": "Apply temporary stabilization (mulch, blankets)",
    "perimeter_gap": "Extend perimeter control to close gaps",
    "construction_entrance_rutting": "Add crushed stone and regrade entrance",
    UNKNOWN_DEFECT: "Inspect manually and determine corrective action",
}


def recommended_action(defect_class: str) -> str:
    """Return the default corrective action for a defect class."""
    return _RECOMMENDED_ACTIONS.get(defect_class, _RECOMMENDED_ACTIONS[UNKNOWN_DEFECT])


@dataclass(frozen=True)
class BoundingBox:
    x: float
    y: float
    width: float
    height: float

    def to_dict(self) -> dict[str, float]:
        return {"x": self.x, "y": self.y, "width": self.width, "height": self.height}


@dataclass(frozen=True)
class Detection:
    """One candidate BMP defect reported by one model."""

    defect_class: str
    confidence: float
    severity: str
    bounding_box: BoundingBox | None = None
    description: str | None = None

    def __post_init__(self) -> None:
        if self.defect_class not in DEFECT_CLASSES and self.defect_class != UNKNOWN_DEFECT:
            raise ValueError(f"Unsupported defect class {self.defect_class!r}")
        if self.severity not in SEVERITIES:
            raise ValueError(f"Unsupported severity {self.severity!r}")
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError("Confidence must be between 0 and 1")

    @property
    def requires_immediate_action(self) -> bool:
        return self.severity in {"high", "critical"}

    @property
    def recommended_action(self) -> str:
        return recommended_action(self.defect_class)

    def to_dict(self) -> dict[str, Any]:
        return {
            "defect_class": self.defect_class,
            "confidence": self.confidence,
            "severity": self.severity,
            "bounding_box": self.bounding_box.to_dict() if self.bounding_box else None,
            "description": self.description,
            "recommended_action": self.recommended_action,
            "requires_immediate_action": self.requires_immediate_action,
        }


@dataclass(frozen=True)
class ModelResult:
    """A single backend's complete response for one image."""

    model_id: str
    detections: tuple[Detection, ...] = ()
    is_compliant: bool = True
    confidence: float = 0.0
    raw_response: str | None = None
    processing_time_ms: int = 0

    def __post_init__(self) -> None:
        # Callers may hand in a list; store an immutable tuple.
        object.__setattr__(self, "detections", tuple(self.detections))
        if self.processing_time_ms < 0:
            raise ValueError("processing_time_ms must be non-negative")
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError("Confidence must be between 0 and 1")

    def to_dict(self) -> dict[str, Any]:
        return {
            "model_id": self.model_id,
            "detections": [d.to_dict() for d in self.detections],
            "is_compliant": self.is_compliant,
            "confidence": self.confidence,
            "raw_response": self.raw_response,
            "processing_time_ms": self.processing_time_ms,
        }


@dataclass(frozen=True)
class EnsembleResult:
    detections: tuple[Detection, ...]
    is_compliant: bool
    confidence: float
    consensus_level: str
    requires_manual_review: bool
    review_reason: str | None = None
    model_results: tuple[ModelResult, ...] = field(default_factory=tuple)
    processing_time_ms: int = 0

    def __post_init__(self) -> None:
        if self.consensus_level not in CONSENSUS_LEVELS:
            raise ValueError(f"Unsupported consensus level {self.consensus_level!r}")
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError("Confidence must be between 0 and 1")
        if self.requires_manual_review:
            if self.review_reason not in REVIEW_REASONS:
                raise ValueError(f"Unsupported review reason {self.review_reason!r}")
        elif self.review_reason is not None:
            raise ValueError("review_reason is only set when manual review is required")

    @property
    def model_count(self) -> int:
        return len(self.model_results)

    def to_dict(self) -> dict[str, Any]:
        return {
            "detections": [d.to_dict() for d in self.detections],
            "is_compliant": self.is_compliant,
            "confidence": self.confidence,
            "consensus_level": self.consensus_level,
            "requires_manual_review": self.requires_manual_review,
            "review_reason": self.review_reason,
            "model_results": [r.to_dict() for r in self.model_results],
            "processing_time_ms": self.processing_time_ms,
        }


class VisionAdapter(Protocol):
    """Capability every vision backend exposes to the ensemble."""

    model_id: str

    def is_available(self) -> bool: ...

    def classify_image(self, image_base64: str, prompt: str) -> ModelResult: ...


__all__ = [
    "BoundingBox",
    "CONSENSUS_LEVELS",
    "DEFECT_CLASSES",
    "Detection",
    "EnsembleResult",
    "ModelResult",
    "REVIEW_INSUFFICIENT_MODELS",
    "REVIEW_MODEL_DISAGREEMENT",
    "REVIEW_REASONS",
    "REVIEW_TOO_MANY_FAILURES",
    "SEVERITIES",
    "UNKNOWN_DEFECT",
    "VisionAdapter",
    "recommended_action",
]
