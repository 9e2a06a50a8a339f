from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class AnalyzeRequest(BaseModel):
    site_id: str = Field(..., min_length=1, description="Construction site identifier")
    inspector_id: str = Field(..., min_length=1, description="Inspector submitting the photo")
    image_base64: str = Field(..., description="Base64 encoded inspection photo")
    latitude: Optional[float] = Field(default=None, ge=-90.0, le=90.0)
    longitude: Optional[float] = Field(default=None, ge=-180.0, le=180.0)
    prompt: Optional[str] = Field(
        default=None, description="Override for the default BMP analysis instructions"
    )


class BoundingBoxModel(BaseModel):
    x: float
    y: float
    width: float
    height: float


class DetectionModel(BaseModel):
    defect_class: str
    confidence: float
    severity: str
    bounding_box: BoundingBoxModel | None = None
    description: str | None = None
    recommended_action: str
    requires_immediate_action: bool


class ModelResultModel(BaseModel):
    model_config = ConfigDict(protected_namespaces=())

    model_id: str
    detections: List[DetectionModel]
    is_compliant: bool
    confidence: float
    raw_response: str | None = None
    processing_time_ms: int


class EnsembleResultModel(BaseModel):
    model_config = ConfigDict(protected_namespaces=())

    detections: List[DetectionModel]
    is_compliant: bool
    confidence: float
    consensus_level: str
    requires_manual_review: bool
    review_reason: str | None = None
    model_results: List[ModelResultModel]
    processing_time_ms: int


class ReviewDecisionModel(BaseModel):
    reviewer: str
    is_compliant: bool
    notes: str | None = None
    decided_at: datetime


class InspectionResponse(BaseModel):
    inspection_id: str
    site_id: str
    inspector_id: str
    latitude: float | None = None
    longitude: float | None = None
    analyzed_at: datetime
    image_width: int
    image_height: int
    status: str
    result: EnsembleResultModel
    review: ReviewDecisionModel | None = None


class ResolveReviewRequest(BaseModel):
    reviewer: str = Field(..., min_length=1)
    is_compliant: bool
    notes: str | None = None


class VisionModelStatus(BaseModel):
    model_config = ConfigDict(protected_namespaces=())

    model_id: str
    adapter: str
    available: bool


__all__ = [
    "AnalyzeRequest",
    "BoundingBoxModel",
    "DetectionModel",
    "EnsembleResultModel",
    "InspectionResponse",
    "ModelResultModel",
    "ResolveReviewRequest",
    "ReviewDecisionModel",
    "VisionModelStatus",
]
