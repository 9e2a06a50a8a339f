from __future__ import annotations

import json
import time
from dataclasses import dataclass

from .types import BoundingBox, Detection, ModelResult, VisionAdapter


_SCENARIO_DETECTIONS: dict[str, tuple[Detection, ...]] = {
    "compliant": (),
    "silt_fence_tear": (
        Detection("silt_fence_tear", 0.92, "high", BoundingBox(100, 50, 200, 150)),
    ),
    "inlet_clogged": (
        Detection("inlet_clogged", 0.88, "high", BoundingBox(150, 100, 120, 120)),
    ),
    "sediment_tracking": (
        Detection("sediment_tracking", 0.90, "critical", BoundingBox(0, 200, 400, 100)),
    ),
    "multiple_defects": (
        Detection("silt_fence_tear", 0.89, "high", BoundingBox(50, 30, 150, 100)),
        Detection("perimeter_gap", 0.86, "medium", BoundingBox(250, 40, 100, 80)),
    ),
    "low_quality": (
        Detection("unknown", 0.55, "medium", BoundingBox(100, 100, 200, 200)),
    ),
}

SCENARIOS: tuple[str, ...] = tuple(_SCENARIO_DETECTIONS)


@dataclass(frozen=True)
class ScenarioVisionAdapter(VisionAdapter):
    """Offline adapter that answers every image with a fixed scenario."""

    model_id: str
    scenario: str = "compliant"
    available: bool = True
    fail: bool = False
    delay_seconds: float = 0.0
    confidence: float = 0.9

    def __post_init__(self) -> None:
        if self.scenario not in _SCENARIO_DETECTIONS:
            raise ValueError(
                f"Unknown scenario {self.scenario!r}; expected one of {', '.join(SCENARIOS)}"
            )
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError("Confidence must be between 0 and 1")

    def is_available(self) -> bool:
        return self.available

    def classify_image(self, image_base64: str, prompt: str) -> ModelResult:
        started = time.perf_counter()
        if self.delay_seconds > 0:
            time.sleep(self.delay_seconds)
        if self.fail:
            raise RuntimeError(f"Scenario adapter {self.model_id} configured to fail")

        detections = _SCENARIO_DETECTIONS[self.scenario]
        confidence = 0.55 if self.scenario == "low_quality" else self.confidence
        raw = json.dumps(
            {
                "scenario": self.scenario,
                "defects": [d.defect_class for d in detections],
                "confidence": confidence,
            }
        )
        return ModelResult(
            model_id=self.model_id,
            detections=detections,
            is_compliant=not detections,
            confidence=confidence,
            raw_response=raw,
            processing_time_ms=int((time.perf_counter() - started) * 1000),
        )


__all__ = ["SCENARIOS", "ScenarioVisionAdapter"]
