import base64
import time
import unittest

from stormwater.ai.ensemble import (
    BMP_ANALYSIS_PROMPT,
    REVIEW_INSUFFICIENT_MODELS,
    REVIEW_MODEL_DISAGREEMENT,
    REVIEW_TOO_MANY_FAILURES,
    VisionEnsembleService,
)
from stormwater.ai.mock import ScenarioVisionAdapter
from stormwater.ai.types import Detection, ModelResult, VisionAdapter


class _StaticAdapter(VisionAdapter):
    def __init__(
        self,
        model_id: str,
        *,
        detections: tuple[Detection, ...] = (),
        is_compliant: bool | None = None,
        confidence: float = 0.9,
        available: bool = True,
        error: Exception | None = None,
        availability_error: Exception | None = None,
    ) -> None:
        self.model_id = model_id
        self._available = available
        self._error = error
        self._availability_error = availability_error
        self._result = ModelResult(
            model_id=model_id,
            detections=detections,
            is_compliant=(not detections) if is_compliant is None else is_compliant,
            confidence=confidence,
            processing_time_ms=100,
        )
        self.calls: list[tuple[str, str]] = []

    def is_available(self) -> bool:
        if self._availability_error is not None:
            raise self._availability_error
        return self._available

    def classify_image(self, image_base64: str, prompt: str) -> ModelResult:
        self.calls.append((image_base64, prompt))
        if self._error is not None:
            raise self._error
        return self._result


class _DelayedAdapter(_StaticAdapter):
    def __init__(
        self,
        model_id: str,
        *,
        classify_delay: float = 0.0,
        probe_delay: float = 0.0,
        **kwargs,
    ) -> None:
        super().__init__(model_id, **kwargs)
        self._classify_delay = classify_delay
        self._probe_delay = probe_delay

    def is_available(self) -> bool:
        time.sleep(self._probe_delay)
        return super().is_available()

    def classify_image(self, image_base64: str, prompt: str) -> ModelResult:
        time.sleep(self._classify_delay)
        return super().classify_image(image_base64, prompt)


def _silt_fence(confidence: float = 0.85) -> Detection:
    return Detection(defect_class="silt_fence_tear", confidence=confidence, severity="high")


class VisionEnsembleServiceTests(unittest.TestCase):
    def test_insufficient_available_models_skip_classification(self) -> None:
        online = _StaticAdapter("gpt-4o")
        offline = _StaticAdapter("claude", available=False)
        service = VisionEnsembleService([online, offline])

        result = service.analyze_with_ensemble("base64image")

        self.assertTrue(result.requires_manual_review)
        self.assertEqual(result.review_reason, REVIEW_INSUFFICIENT_MODELS)
        self.assertIn("Insufficient", result.review_reason)
        self.assertFalse(result.is_compliant)
        self.assertEqual(result.consensus_level, "low")
        self.assertEqual(result.model_results, ())
        self.assertEqual(online.calls, [])
        self.assertEqual(offline.calls, [])

    def test_too_many_failures_requires_review(self) -> None:
        adapters = [
            _StaticAdapter("gpt-4o", confidence=0.7),
            _StaticAdapter("claude", error=RuntimeError("API Error")),
            _StaticAdapter("gemini", error=ValueError("malformed response")),
        ]
        service = VisionEnsembleService(adapters)

        result = service.analyze_with_ensemble("base64image")

        self.assertTrue(result.requires_manual_review)
        self.assertIn("Too many model failures", result.review_reason)
        self.assertEqual(result.review_reason, REVIEW_TOO_MANY_FAILURES)
        self.assertEqual([r.model_id for r in result.model_results], ["gpt-4o"])
        self.assertAlmostEqual(result.confidence, 0.7)
        self.assertEqual(result.detections, ())

    def test_unanimous_compliance_is_high_consensus(self) -> None:
        adapters = [
            _StaticAdapter("gpt-4o", confidence=0.9),
            _StaticAdapter("claude", confidence=0.9),
            _StaticAdapter("gemini", confidence=0.9),
        ]
        service = VisionEnsembleService(adapters)

        result = service.analyze_with_ensemble("base64image")

        self.assertEqual(result.consensus_level, "high")
        self.assertTrue(result.is_compliant)
        self.assertFalse(result.requires_manual_review)
        self.assertIsNone(result.review_reason)
        self.assertEqual(result.detections, ())
        for adapter in adapters:
            self.assertEqual(len(adapter.calls), 1)

    def test_medium_consensus_does_not_require_review(self) -> None:
        adapters = [
            _StaticAdapter("gpt-4o", confidence=0.7),
            _StaticAdapter("claude", confidence=0.7),
        ]
        result = VisionEnsembleService(adapters).analyze_with_ensemble("base64image")

        self.assertEqual(result.consensus_level, "medium")
        self.assertFalse(result.requires_manual_review)

    def test_disagreement_requires_review(self) -> None:
        adapters = [
            _StaticAdapter("gpt-4o", is_compliant=True, confidence=0.95),
            _StaticAdapter("claude", is_compliant=False, confidence=0.95),
        ]
        service = VisionEnsembleService(adapters)

        result = service.analyze_with_ensemble("base64image")

        self.assertEqual(result.consensus_level, "low")
        self.assertTrue(result.requires_manual_review)
        self.assertEqual(result.review_reason, REVIEW_MODEL_DISAGREEMENT)

    def test_majority_vote_keeps_agreed_defect(self) -> None:
        adapters = [
            _StaticAdapter("gpt-4o", detections=(_silt_fence(),)),
            _StaticAdapter("claude", detections=(_silt_fence(),)),
            _StaticAdapter("gemini", is_compliant=True),
        ]
        service = VisionEnsembleService(adapters)

        result = service.analyze_with_ensemble("base64image")

        self.assertEqual(len(result.detections), 1)
        detection = result.detections[0]
        self.assertEqual(detection.defect_class, "silt_fence_tear")
        self.assertEqual(detection.severity, "high")
        self.assertAlmostEqual(detection.confidence, 0.85 * (1 + (2 / 3) * 0.2))
        self.assertAlmostEqual(detection.confidence, 0.9633, places=4)
        self.assertFalse(result.is_compliant)

    def test_unanimous_detection_is_boosted(self) -> None:
        detection = Detection(defect_class="inlet_clogged", confidence=0.8, severity="high")
        adapters = [
            _StaticAdapter(model_id, detections=(detection,))
            for model_id in ("gpt-4o", "claude", "gemini")
        ]
        result = VisionEnsembleService(adapters).analyze_with_ensemble("base64image")

        self.assertEqual(len(result.detections), 1)
        self.assertAlmostEqual(result.detections[0].confidence, 0.96)

    def test_minority_detection_discarded(self) -> None:
        adapters = [
            _StaticAdapter("gpt-4o", detections=(_silt_fence(),)),
            _StaticAdapter("claude", is_compliant=True),
            _StaticAdapter("gemini", is_compliant=True),
        ]
        result = VisionEnsembleService(adapters).analyze_with_ensemble("base64image")

        self.assertEqual(result.detections, ())
        self.assertTrue(result.is_compliant)

    def test_single_failure_is_tolerated(self) -> None:
        adapters = [
            _StaticAdapter("gpt-4o"),
            _StaticAdapter("claude"),
            _StaticAdapter("failing", error=RuntimeError("API Error")),
        ]
        result = VisionEnsembleService(adapters).analyze_with_ensemble("base64image")

        self.assertEqual(len(result.model_results), 2)
        self.assertEqual([r.model_id for r in result.model_results], ["gpt-4o", "claude"])
        self.assertFalse(result.requires_manual_review)

    def test_confidence_is_mean_of_model_confidences(self) -> None:
        adapters = [
            _StaticAdapter("gpt-4o", detections=(_silt_fence(0.5),), confidence=0.9),
            _StaticAdapter("claude", detections=(_silt_fence(0.6),), confidence=0.6),
            _StaticAdapter("gemini", detections=(_silt_fence(0.7),), confidence=0.75),
        ]
        result = VisionEnsembleService(adapters).analyze_with_ensemble("base64image")

        self.assertAlmostEqual(result.confidence, (0.9 + 0.6 + 0.75) / 3)
        self.assertAlmostEqual(result.detections[0].confidence, 0.7 * 1.2)

    def test_availability_probe_errors_count_as_unavailable(self) -> None:
        adapters = [
            _StaticAdapter("gpt-4o"),
            _StaticAdapter("claude"),
            _StaticAdapter("gemini", availability_error=ConnectionError("dns failure")),
        ]
        service = VisionEnsembleService(adapters)

        available = service.get_available_adapters()
        result = service.analyze_with_ensemble("base64image")

        self.assertEqual([a.model_id for a in available], ["gpt-4o", "claude"])
        self.assertEqual(len(result.model_results), 2)
        self.assertEqual(adapters[2].calls, [])

    def test_slow_adapter_is_excluded_after_timeout(self) -> None:
        adapters = [
            ScenarioVisionAdapter(model_id="fast-1"),
            ScenarioVisionAdapter(model_id="fast-2"),
            ScenarioVisionAdapter(model_id="stalled", delay_seconds=1.5),
        ]
        service = VisionEnsembleService(adapters, adapter_timeout=0.2)

        started = time.monotonic()
        result = service.analyze_with_ensemble(b"image-bytes")
        elapsed = time.monotonic() - started

        self.assertLess(elapsed, 1.0)
        self.assertEqual([r.model_id for r in result.model_results], ["fast-1", "fast-2"])
        self.assertFalse(result.requires_manual_review)

    def test_results_follow_configured_order_not_completion_order(self) -> None:
        def _tear(source: str) -> Detection:
            return Detection("silt_fence_tear", 0.8, "high", description=source)

        adapters = [
            _DelayedAdapter("first", classify_delay=0.3, detections=(_tear("first"),)),
            _DelayedAdapter("second", detections=(_tear("second"),)),
        ]

        result = VisionEnsembleService(adapters).analyze_with_ensemble("base64image")

        self.assertEqual([r.model_id for r in result.model_results], ["first", "second"])
        self.assertEqual(len(result.detections), 1)
        self.assertEqual(result.detections[0].description, "first")
        self.assertAlmostEqual(result.detections[0].confidence, 0.96)

    def test_slow_availability_check_counts_as_unavailable(self) -> None:
        adapters = [
            _StaticAdapter("gpt-4o"),
            _StaticAdapter("claude"),
            _DelayedAdapter("gemini", probe_delay=1.5),
        ]
        service = VisionEnsembleService(adapters, availability_timeout=0.2)

        started = time.monotonic()
        available = service.get_available_adapters()
        elapsed = time.monotonic() - started

        self.assertLess(elapsed, 1.0)
        self.assertEqual([a.model_id for a in available], ["gpt-4o", "claude"])

        result = service.analyze_with_ensemble("base64image")
        self.assertEqual([r.model_id for r in result.model_results], ["gpt-4o", "claude"])
        self.assertEqual(adapters[2].calls, [])

    def test_adapters_run_concurrently(self) -> None:
        adapters = [
            ScenarioVisionAdapter(model_id=f"model-{index}", delay_seconds=0.3)
            for index in range(3)
        ]
        service = VisionEnsembleService(adapters)

        started = time.monotonic()
        result = service.analyze_with_ensemble(b"image-bytes")
        elapsed = time.monotonic() - started

        self.assertEqual(len(result.model_results), 3)
        self.assertLess(elapsed, 0.85)

    def test_non_model_result_counts_as_failure(self) -> None:
        class _BrokenAdapter(_StaticAdapter):
            def classify_image(self, image_base64: str, prompt: str):  # type: ignore[override]
                return {"detections": []}

        adapters = [
            _StaticAdapter("gpt-4o"),
            _BrokenAdapter("claude"),
        ]
        result = VisionEnsembleService(adapters).analyze_with_ensemble("base64image")

        self.assertTrue(result.requires_manual_review)
        self.assertEqual(result.review_reason, REVIEW_TOO_MANY_FAILURES)

    def test_bytes_payload_is_base64_encoded_and_default_prompt_used(self) -> None:
        adapters = [_StaticAdapter("gpt-4o"), _StaticAdapter("claude")]
        VisionEnsembleService(adapters).analyze_with_ensemble(b"\x89raw-bytes")

        expected = base64.b64encode(b"\x89raw-bytes").decode("ascii")
        for adapter in adapters:
            self.assertEqual(adapter.calls, [(expected, BMP_ANALYSIS_PROMPT)])

    def test_custom_prompt_is_forwarded(self) -> None:
        adapters = [_StaticAdapter("gpt-4o"), _StaticAdapter("claude")]
        VisionEnsembleService(adapters).analyze_with_ensemble("abc=", prompt="Only check inlets")

        for adapter in adapters:
            self.assertEqual(adapter.calls, [("abc=", "Only check inlets")])

    def test_processing_time_is_tracked(self) -> None:
        adapters = [
            ScenarioVisionAdapter(model_id="a", delay_seconds=0.05),
            ScenarioVisionAdapter(model_id="b", delay_seconds=0.05),
        ]
        result = VisionEnsembleService(adapters).analyze_with_ensemble("base64image")

        self.assertIsInstance(result.processing_time_ms, int)
        self.assertGreaterEqual(result.processing_time_ms, 40)

    def test_configuration_errors_raise(self) -> None:
        with self.assertRaises(ValueError):
            VisionEnsembleService([])
        with self.assertRaises(ValueError):
            VisionEnsembleService([_StaticAdapter("same"), _StaticAdapter("same")])
        with self.assertRaises(ValueError):
            VisionEnsembleService([_StaticAdapter("gpt-4o")], min_models_required=0)
        with self.assertRaises(ValueError):
            VisionEnsembleService([_StaticAdapter("gpt-4o")], adapter_timeout=0)

    def test_empty_image_payload_raises(self) -> None:
        service = VisionEnsembleService([_StaticAdapter("gpt-4o"), _StaticAdapter("claude")])
        with self.assertRaises(ValueError):
            service.analyze_with_ensemble(b"")
        with self.assertRaises(ValueError):
            service.analyze_with_ensemble("   ")


if __name__ == "__main__":
    unittest.main()
