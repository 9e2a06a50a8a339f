from __future__ import annotations

import pytest

from stormwater.ai.types import (
    CONSENSUS_LEVELS,
    DEFECT_CLASSES,
    REVIEW_MODEL_DISAGREEMENT,
    REVIEW_REASONS,
    BoundingBox,
    Detection,
    EnsembleResult,
    ModelResult,
    recommended_action,
)


def test_detection_rejects_out_of_range_confidence() -> None:
    with pytest.raises(ValueError):
        Detection("silt_fence_tear", 1.2, "high")
    with pytest.raises(ValueError):
        Detection("silt_fence_tear", -0.1, "high")


def test_detection_rejects_unknown_vocabulary() -> None:
    with pytest.raises(ValueError):
        Detection("pothole", 0.5, "high")
    with pytest.raises(ValueError):
        Detection("silt_fence_tear", 0.5, "extreme")


def test_detection_immediate_action_and_recommendation() -> None:
    urgent = Detection("sediment_tracking", 0.9, "critical")
    minor = Detection("bare_soil", 0.9, "low")

    assert urgent.requires_immediate_action
    assert not minor.requires_immediate_action
    assert urgent.recommended_action == "Deploy wheel wash or sweep access road"
    assert "manually" in recommended_action("unknown")


def test_every_catalogue_class_has_an_action() -> None:
    for defect_class in DEFECT_CLASSES:
        assert recommended_action(defect_class) != recommended_action("unknown")


def test_model_result_freezes_detection_list() -> None:
    result = ModelResult(
        model_id="gpt-4o",
        detections=[Detection("inlet_bypassed", 0.7, "medium")],
        is_compliant=False,
        confidence=0.8,
    )

    assert isinstance(result.detections, tuple)
    with pytest.raises(ValueError):
        ModelResult(model_id="gpt-4o", processing_time_ms=-1)


def test_ensemble_result_to_dict_is_json_ready() -> None:
    detection = Detection("inlet_clogged", 0.9, "high", BoundingBox(1, 2, 3, 4))
    model = ModelResult(model_id="claude", detections=(detection,), is_compliant=False, confidence=0.9)
    result = EnsembleResult(
        detections=(detection,),
        is_compliant=False,
        confidence=0.9,
        consensus_level="medium",
        requires_manual_review=False,
        model_results=(model,),
        processing_time_ms=12,
    )

    payload = result.to_dict()

    assert payload["detections"][0]["bounding_box"] == {"x": 1, "y": 2, "width": 3, "height": 4}
    assert payload["detections"][0]["recommended_action"] == "Clear sediment and clean filter fabric"
    assert payload["model_results"][0]["model_id"] == "claude"
    assert result.model_count == 1


def test_model_result_rejects_out_of_range_confidence() -> None:
    with pytest.raises(ValueError):
        ModelResult(model_id="gpt-4o", confidence=1.4)
    with pytest.raises(ValueError):
        ModelResult(model_id="gpt-4o", confidence=float("nan"))


@pytest.mark.parametrize(
    "overrides",
    [
        {"consensus_level": "unanimous"},
        {"confidence": 1.5},
        {"requires_manual_review": True, "review_reason": "Looks odd"},
        {"requires_manual_review": True, "review_reason": None},
        {"review_reason": REVIEW_MODEL_DISAGREEMENT},
    ],
)
def test_ensemble_result_rejects_inconsistent_fields(overrides) -> None:
    fields = {
        "detections": (),
        "is_compliant": True,
        "confidence": 0.9,
        "consensus_level": "high",
        "requires_manual_review": False,
    }
    fields.update(overrides)

    with pytest.raises(ValueError):
        EnsembleResult(**fields)


def test_ensemble_result_accepts_every_review_reason() -> None:
    for reason in REVIEW_REASONS:
        result = EnsembleResult(
            detections=(),
            is_compliant=False,
            confidence=0.0,
            consensus_level="low",
            requires_manual_review=True,
            review_reason=reason,
        )
        assert result.consensus_level in CONSENSUS_LEVELS
