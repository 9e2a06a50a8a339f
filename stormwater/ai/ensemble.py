from __future__ import annotations

import base64
import logging
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass
from typing import Any, Callable, Generic, Sequence, TypeVar

from .types import (
    REVIEW_INSUFFICIENT_MODELS,
    REVIEW_MODEL_DISAGREEMENT,
    REVIEW_REASONS,
    REVIEW_TOO_MANY_FAILURES,
    EnsembleResult,
    ModelResult,
    VisionAdapter,
)
from .voting import consolidate_detections, determine_consensus_level, mean_confidence


logger = logging.getLogger(__name__)

BMP_ANALYSIS_PROMPT = """Analyze this construction site photo for Best Management Practice (BMP) defects.

Look for these specific defect types:
- Silt fence tears, gaps, or overtopping
- Clogged, bypassed, or overflowing inlet protection
- Sediment tracking on roads
- Bare soil without stabilization
- Perimeter control gaps
- Construction entrance issues

For each defect found, provide:
1. Defect class (e.g., silt_fence_tear, inlet_clogged)
2. Severity (low/medium/high/critical)
3. Confidence level (0-1)
4. Location in image (approximate bounding box)

If no defects are visible, mark as compliant.
Respond in JSON format with fields 'defects' (list of objects with 'type', 'severity',
'confidence', 'description' and 'boundingBox' {x, y, width, height}) and 'confidence'
(your overall confidence between 0 and 1)."""

T = TypeVar("T")


@dataclass(frozen=True)
class _Outcome(Generic[T]):
    adapter: VisionAdapter
    value: T | None = None
    error: BaseException | None = None
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None and not self.timed_out


def _fan_out(
    adapters: Sequence[VisionAdapter],
    call: Callable[[VisionAdapter], T],
    timeout: float | None,
    stage: str,
) -> list[_Outcome[T]]:
    """Run ``call`` for every adapter concurrently and wait for all of them.

    All tasks share one deadline. Outcomes are returned in adapter order,
    never in completion order. Tasks still running at the deadline are
    abandoned and reported as timed out.
    """
    if not adapters:
        return []
    executor = ThreadPoolExecutor(
        max_workers=len(adapters), thread_name_prefix=f"ensemble-{stage}"
    )
    outcomes: list[_Outcome[T]] = []
    try:
        futures = [(adapter, executor.submit(call, adapter)) for adapter in adapters]
        deadline = None if timeout is None else time.monotonic() + timeout
        for adapter, future in futures:
            remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
            try:
                outcomes.append(_Outcome(adapter, value=future.result(timeout=remaining)))
            except FutureTimeoutError:
                future.cancel()
                outcomes.append(_Outcome(adapter, timed_out=True))
            except Exception as exc:
                outcomes.append(_Outcome(adapter, error=exc))
    finally:
        executor.shutdown(wait=False, cancel_futures=True)
    return outcomes


def _encode_image(image: Any) -> str:
    if isinstance(image, (bytes, bytearray, memoryview)):
        data = bytes(image)
        if not data:
            raise ValueError("Image payload is empty")
        return base64.b64encode(data).decode("ascii")
    if isinstance(image, str):
        text = image.strip()
        if not text:
            raise ValueError("Image payload is empty")
        return text
    raise TypeError(f"Unsupported image payload type {type(image).__name__}")


def _elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)


@dataclass
class VisionEnsembleService:
    """Run several vision backends on one photo and reconcile their answers.

    The service probes every adapter, classifies the image with the available
    ones in parallel, majority-votes their detections and decides whether the
    result can be filed automatically or needs a human reviewer. Backend
    failures and timeouts never raise; they only reduce the model count.
    """

    adapters: Sequence[VisionAdapter]
    min_models_required: int = 2
    adapter_timeout: float | None = 60.0
    availability_timeout: float | None = 5.0
    default_prompt: str = BMP_ANALYSIS_PROMPT

    def __post_init__(self) -> None:
        self.adapters = tuple(self.adapters)
        if not self.adapters:
            raise ValueError("At least one vision adapter must be configured")
        if self.min_models_required < 1:
            raise ValueError("min_models_required must be at least 1")
        seen: set[str] = set()
        for adapter in self.adapters:
            model_id = adapter.model_id
            if not model_id:
                raise ValueError(f"Adapter {adapter!r} has an empty model_id")
            if model_id in seen:
                raise ValueError(f"Duplicate adapter model_id {model_id!r}")
            seen.add(model_id)
        for name in ("adapter_timeout", "availability_timeout"):
            value = getattr(self, name)
            if value is not None and value <= 0:
                raise ValueError(f"{name} must be positive")

    @property
    def model_ids(self) -> list[str]:
        return [adapter.model_id for adapter in self.adapters]

    def analyze_with_ensemble(
        self, image: bytes | str, prompt: str | None = None
    ) -> EnsembleResult:
        started = time.perf_counter()
        image_base64 = _encode_image(image)
        instructions = prompt or self.default_prompt

        available = self.get_available_adapters()
        if len(available) < self.min_models_required:
            logger.warning(
                "Ensemble skipped available=%d required=%d configured=%d",
                len(available),
                self.min_models_required,
                len(self.adapters),
            )
            return self._manual_review_result(REVIEW_INSUFFICIENT_MODELS, (), started)

        results = self.run_classifications(available, image_base64, instructions)
        if len(results) < self.min_models_required:
            logger.warning(
                "Ensemble quorum lost succeeded=%d available=%d required=%d",
                len(results),
                len(available),
                self.min_models_required,
            )
            return self._manual_review_result(REVIEW_TOO_MANY_FAILURES, results, started)

        return self._assemble(results, started)

    def get_available_adapters(self) -> list[VisionAdapter]:
        """Return the adapters that currently report themselves available."""
        outcomes = _fan_out(
            self.adapters,
            lambda adapter: bool(adapter.is_available()),
            self.availability_timeout,
            "probe",
        )
        available: list[VisionAdapter] = []
        for outcome in outcomes:
            model_id = outcome.adapter.model_id
            if outcome.timed_out:
                logger.warning("Availability check timed out model=%s", model_id)
            elif outcome.error is not None:
                logger.warning(
                    "Availability check failed model=%s error=%s", model_id, outcome.error
                )
            elif outcome.value:
                available.append(outcome.adapter)
            else:
                logger.info("Vision model unavailable model=%s", model_id)
        return available

    def run_classifications(
        self,
        adapters: Sequence[VisionAdapter],
        image_base64: str,
        prompt: str,
    ) -> list[ModelResult]:
        """Classify the image with every adapter and keep the successes."""
        outcomes = _fan_out(
            adapters,
            lambda adapter: adapter.classify_image(image_base64, prompt),
            self.adapter_timeout,
            "classify",
        )
        results: list[ModelResult] = []
        for outcome in outcomes:
            model_id = outcome.adapter.model_id
            if outcome.timed_out:
                logger.warning(
                    "Classification timed out model=%s timeout=%.1fs",
                    model_id,
                    self.adapter_timeout,
                )
            elif outcome.error is not None:
                logger.warning(
                    "Classification failed model=%s error=%s", model_id, outcome.error
                )
            elif not isinstance(outcome.value, ModelResult):
                logger.warning(
                    "Classification returned %s instead of ModelResult model=%s",
                    type(outcome.value).__name__,
                    model_id,
                )
            else:
                logger.debug(
                    "Classification complete model=%s detections=%d compliant=%s confidence=%.2f time_ms=%d",
                    model_id,
                    len(outcome.value.detections),
                    outcome.value.is_compliant,
                    outcome.value.confidence,
                    outcome.value.processing_time_ms,
                )
                results.append(outcome.value)
        return results

    def _assemble(self, results: Sequence[ModelResult], started: float) -> EnsembleResult:
        all_detections = [d for result in results for d in result.detections]
        detections = consolidate_detections(all_detections, len(results))
        consensus_level = determine_consensus_level(results)
        requires_review = consensus_level == "low"

        result = EnsembleResult(
            detections=tuple(detections),
            is_compliant=not detections,
            confidence=mean_confidence(results),
            consensus_level=consensus_level,
            requires_manual_review=requires_review,
            review_reason=REVIEW_MODEL_DISAGREEMENT if requires_review else None,
            model_results=tuple(results),
            processing_time_ms=_elapsed_ms(started),
        )
        logger.info(
            "Ensemble complete models=%d detections=%d compliant=%s consensus=%s review=%s time_ms=%d",
            len(results),
            len(detections),
            result.is_compliant,
            consensus_level,
            requires_review,
            result.processing_time_ms,
        )
        return result

    def _manual_review_result(
        self, reason: str, results: Sequence[ModelResult], started: float
    ) -> EnsembleResult:
        # Nothing was assessed, so the photo is never reported as compliant.
        return EnsembleResult(
            detections=(),
            is_compliant=False,
            confidence=mean_confidence(results),
            consensus_level="low",
            requires_manual_review=True,
            review_reason=reason,
            model_results=tuple(results),
            processing_time_ms=_elapsed_ms(started),
        )


__all__ = [
    "BMP_ANALYSIS_PROMPT",
    "REVIEW_INSUFFICIENT_MODELS",
    "REVIEW_MODEL_DISAGREEMENT",
    "REVIEW_REASONS",
    "REVIEW_TOO_MANY_FAILURES",
    "VisionEnsembleService",
]
