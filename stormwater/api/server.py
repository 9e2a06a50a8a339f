from __future__ import annotations

import logging
from typing import List

from fastapi import FastAPI, HTTPException

from .schemas import (
    AnalyzeRequest,
    InspectionResponse,
    ResolveReviewRequest,
    VisionModelStatus,
)
from .service import InspectionService, ReviewNotifier
from ..ai.ensemble import VisionEnsembleService
from ..ai.mock import ScenarioVisionAdapter


logger = logging.getLogger(__name__)


def _default_ensemble() -> VisionEnsembleService:
    adapters = [
        ScenarioVisionAdapter(model_id=f"scenario-{index}", scenario="compliant")
        for index in range(1, 4)
    ]
    return VisionEnsembleService(adapters)


def create_app(
    ensemble: VisionEnsembleService | None = None,
    notifier: ReviewNotifier | None = None,
    max_records: int = 1000,
) -> FastAPI:
    selected_ensemble = ensemble or _default_ensemble()
    service = InspectionService(
        ensemble=selected_ensemble,
        notifier=notifier,
        max_records=max_records,
    )

    app = FastAPI(title="Stormwater Inspection API", version="0.1.0")
    app.state.ensemble = selected_ensemble
    app.state.service = service
    app.state.notifier = notifier

    logger.info(
        "API server initialised models=%s min_models=%d adapter_timeout=%s notifier=%s",
        ",".join(selected_ensemble.model_ids),
        selected_ensemble.min_models_required,
        selected_ensemble.adapter_timeout,
        notifier.__class__.__name__ if notifier is not None else "none",
    )

    @app.get("/health", response_model=dict[str, str])
    def healthcheck() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/v1/models", response_model=List[VisionModelStatus])
    def list_models() -> List[VisionModelStatus]:
        return [VisionModelStatus(**status) for status in service.model_statuses()]

    @app.post("/v1/inspections/analyze", response_model=InspectionResponse)
    def analyze_inspection(request: AnalyzeRequest) -> InspectionResponse:
        logger.info(
            "Analyze request site=%s inspector=%s payload_bytes=%d",
            request.site_id,
            request.inspector_id,
            len(request.image_base64 or ""),
        )
        try:
            record = service.process_inspection(request.model_dump())
        except Exception as exc:
            logger.exception(
                "Inspection analysis failed site=%s error=%s", request.site_id, exc
            )
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        logger.info(
            "Inspection processed id=%s status=%s compliant=%s consensus=%s",
            record.inspection_id,
            record.status,
            record.result.is_compliant,
            record.result.consensus_level,
        )
        return InspectionResponse(**record.to_dict())

    @app.get("/v1/inspections/{inspection_id}", response_model=InspectionResponse)
    def fetch_inspection(inspection_id: str) -> InspectionResponse:
        record = service.get(inspection_id)
        if record is None:
            raise HTTPException(status_code=404, detail="Inspection not found")
        return InspectionResponse(**record.to_dict())

    @app.get("/v1/reviews", response_model=List[InspectionResponse])
    def list_pending_reviews() -> List[InspectionResponse]:
        return [InspectionResponse(**record.to_dict()) for record in service.pending_reviews()]

    @app.post("/v1/reviews/{inspection_id}/resolve", response_model=InspectionResponse)
    def resolve_review(inspection_id: str, request: ResolveReviewRequest) -> InspectionResponse:
        try:
            record = service.resolve_review(
                inspection_id,
                reviewer=request.reviewer,
                is_compliant=request.is_compliant,
                notes=request.notes,
            )
        except KeyError as exc:
            raise HTTPException(status_code=404, detail="Inspection not found") from exc
        except ValueError as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc
        return InspectionResponse(**record.to_dict())

    return app


__all__ = ["create_app"]
