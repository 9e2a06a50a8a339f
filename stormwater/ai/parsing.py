"""Turn free-form vision model replies into :class:`ModelResult` fields.

Models are asked for JSON but frequently wrap it in prose or markdown fences,
so the first ``{...}`` block in the reply is parsed. Unknown defect names map
to ``unknown`` and severities are folded onto the four-level scale.
"""

from __future__ import annotations

import json
import re
from typing import Any

from .types import DEFECT_CLASSES, UNKNOWN_DEFECT, BoundingBox, Detection

DEFAULT_DETECTION_CONFIDENCE: float = 0.8
DEFAULT_MODEL_CONFIDENCE: float = 0.8

_JSON_OBJECT = re.compile(r"\{[\s\S]*\}")


def parse_model_output(message: str) -> tuple[list[Detection], bool, float]:
    """Return ``(detections, is_compliant, confidence)`` for a model reply."""
    match = _JSON_OBJECT.search(message or "")
    if not match:
        raise RuntimeError("Model response did not contain a JSON object")
    try:
        payload = json.loads(match.group(0))
    except json.JSONDecodeError as exc:
        raise RuntimeError("Model response was not valid JSON") from exc
    if not isinstance(payload, dict):
        raise RuntimeError("Model response JSON was not an object")

    detections: list[Detection] = []
    raw_defects = payload.get("defects")
    if isinstance(raw_defects, list):
        for entry in raw_defects:
            if isinstance(entry, dict):
                detections.append(_parse_detection(entry))

    confidence = _clamp_confidence(
        payload.get("confidence"), default=DEFAULT_MODEL_CONFIDENCE
    )
    return detections, not detections, confidence


def normalize_defect_class(value: Any) -> str:
    if not isinstance(value, str):
        return UNKNOWN_DEFECT
    label = re.sub(r"[\s-]+", "_", value.strip().lower())
    return label if label in DEFECT_CLASSES else UNKNOWN_DEFECT


def normalize_severity(value: Any) -> str:
    label = value.strip().lower() if isinstance(value, str) else ""
    if label in {"critical", "severe"}:
        return "critical"
    if label in {"high", "serious"}:
        return "high"
    if label in {"medium", "moderate"}:
        return "medium"
    return "low"


def _parse_detection(entry: dict[str, Any]) -> Detection:
    description = entry.get("description")
    if isinstance(description, str):
        description = description.strip() or None
    else:
        description = None
    return Detection(
        defect_class=normalize_defect_class(entry.get("type") or entry.get("class")),
        confidence=_clamp_confidence(
            entry.get("confidence"), default=DEFAULT_DETECTION_CONFIDENCE
        ),
        severity=normalize_severity(entry.get("severity")),
        bounding_box=_parse_bounding_box(entry.get("boundingBox") or entry.get("location")),
        description=description,
    )


def _parse_bounding_box(value: Any) -> BoundingBox | None:
    if not isinstance(value, dict):
        return None
    try:
        return BoundingBox(
            x=float(value["x"]),
            y=float(value["y"]),
            width=float(value["width"]),
            height=float(value["height"]),
        )
    except (KeyError, TypeError, ValueError):
        return None


def _clamp_confidence(value: Any, default: float) -> float:
    if value is None:
        return default
    try:
        score = float(value)
    except (TypeError, ValueError):
        return default
    if score != score:  # NaN
        return default
    return max(0.0, min(1.0, score))


__all__ = [
    "DEFAULT_DETECTION_CONFIDENCE",
    "DEFAULT_MODEL_CONFIDENCE",
    "normalize_defect_class",
    "normalize_severity",
    "parse_model_output",
]
