from __future__ import annotations

import base64
import binascii
import io
import logging
import threading
import uuid
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Protocol

from PIL import Image, UnidentifiedImageError

from ..ai.ensemble import VisionEnsembleService
from ..ai.types import EnsembleResult


logger = logging.getLogger(__name__)


class ReviewNotifier(Protocol):
    def notify_manual_review(self, record: "InspectionRecord") -> None: ...


@dataclass(frozen=True)
class ReviewDecision:
    reviewer: str
    is_compliant: bool
    decided_at: datetime
    notes: str | None = None


@dataclass
class InspectionRecord:
    inspection_id: str
    site_id: str
    inspector_id: str
    analyzed_at: datetime
    image_width: int
    image_height: int
    result: EnsembleResult
    latitude: float | None = None
    longitude: float | None = None
    review: ReviewDecision | None = None

    @property
    def status(self) -> str:
        if self.review is not None:
            return "reviewed"
        if self.result.requires_manual_review:
            return "pending_review"
        return "auto_filed"

    def to_dict(self) -> Dict[str, Any]:
        review = None
        if self.review is not None:
            review = {
                "reviewer": self.review.reviewer,
                "is_compliant": self.review.is_compliant,
                "notes": self.review.notes,
                "decided_at": self.review.decided_at,
            }
        return {
            "inspection_id": self.inspection_id,
            "site_id": self.site_id,
            "inspector_id": self.inspector_id,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "analyzed_at": self.analyzed_at,
            "image_width": self.image_width,
            "image_height": self.image_height,
            "status": self.status,
            "result": self.result.to_dict(),
            "review": review,
        }


def decode_image_payload(image_b64: str) -> tuple[bytes, int, int]:
    """Decode a base64 (or data URI) photo and confirm Pillow can read it."""
    text = (image_b64 or "").strip()
    if text.startswith("data:") and "," in text:
        text = text.split(",", 1)[1]
    try:
        image_bytes = base64.b64decode(text, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise RuntimeError("Invalid base64 image payload") from exc
    if not image_bytes:
        raise RuntimeError("Image payload is empty")
    try:
        with Image.open(io.BytesIO(image_bytes)) as image:
            image.verify()
            width, height = image.size
    except (UnidentifiedImageError, OSError, SyntaxError, ValueError) as exc:
        raise RuntimeError("Image payload is not a readable image") from exc
    return image_bytes, width, height


@dataclass
class InspectionService:
    ensemble: VisionEnsembleService
    notifier: ReviewNotifier | None = None
    max_records: int = 1000
    _records: "OrderedDict[str, InspectionRecord]" = field(
        init=False, default_factory=OrderedDict
    )
    _lock: threading.Lock = field(init=False, default_factory=threading.Lock)

    def process_inspection(self, payload: Dict[str, Any]) -> InspectionRecord:
        image_bytes, width, height = decode_image_payload(payload["image_base64"])
        logger.info(
            "Running ensemble site=%s inspector=%s image_bytes=%d size=%dx%d",
            payload.get("site_id"),
            payload.get("inspector_id"),
            len(image_bytes),
            width,
            height,
        )

        result = self.ensemble.analyze_with_ensemble(image_bytes, payload.get("prompt"))
        record = InspectionRecord(
            inspection_id=uuid.uuid4().hex,
            site_id=str(payload.get("site_id")),
            inspector_id=str(payload.get("inspector_id")),
            analyzed_at=datetime.now(timezone.utc),
            image_width=width,
            image_height=height,
            result=result,
            latitude=payload.get("latitude"),
            longitude=payload.get("longitude"),
        )
        self._store(record)

        if result.requires_manual_review:
            logger.info(
                "Inspection routed to manual review inspection=%s reason=%s",
                record.inspection_id,
                result.review_reason,
            )
            self._notify(record)
        return record

    def get(self, inspection_id: str) -> InspectionRecord | None:
        with self._lock:
            return self._records.get(inspection_id)

    def pending_reviews(self) -> list[InspectionRecord]:
        with self._lock:
            records = [r for r in self._records.values() if r.status == "pending_review"]
        records.sort(key=lambda r: r.analyzed_at, reverse=True)
        return records

    def resolve_review(
        self,
        inspection_id: str,
        reviewer: str,
        is_compliant: bool,
        notes: str | None = None,
    ) -> InspectionRecord:
        with self._lock:
            record = self._records.get(inspection_id)
            if record is None:
                raise KeyError(inspection_id)
            if record.status != "pending_review":
                raise ValueError(
                    f"Inspection {inspection_id} is not awaiting review (status={record.status})"
                )
            record.review = ReviewDecision(
                reviewer=reviewer,
                is_compliant=is_compliant,
                decided_at=datetime.now(timezone.utc),
                notes=notes,
            )
        logger.info(
            "Review resolved inspection=%s reviewer=%s compliant=%s",
            inspection_id,
            reviewer,
            is_compliant,
        )
        return record

    def model_statuses(self) -> list[Dict[str, Any]]:
        available = {a.model_id for a in self.ensemble.get_available_adapters()}
        return [
            {
                "model_id": adapter.model_id,
                "adapter": adapter.__class__.__name__,
                "available": adapter.model_id in available,
            }
            for adapter in self.ensemble.adapters
        ]

    def _store(self, record: InspectionRecord) -> None:
        with self._lock:
            self._records[record.inspection_id] = record
            while len(self._records) > max(1, self.max_records):
                evicted, _ = self._records.popitem(last=False)
                logger.debug("Evicted inspection record %s", evicted)

    def _notify(self, record: InspectionRecord) -> None:
        if self.notifier is None:
            return
        try:
            self.notifier.notify_manual_review(record)
        except Exception:
            logger.exception(
                "Failed to send review notification inspection=%s", record.inspection_id
            )


__all__ = [
    "InspectionRecord",
    "InspectionService",
    "ReviewDecision",
    "ReviewNotifier",
    "decode_image_payload",
]
