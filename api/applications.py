from __future__ import annotations

import math
from typing import Any, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Query

from api.deps import get_pipeline
from schemas.application import (
    ApplicationLookup,
    ApplicationRecord,
    ApplicationStatus,
    OfferCreate,
    OfferStatusUpdate,
)
from services.errors import (
    ApplicationNotFound,
    ApplicationValidationError,
    ConcurrencyConflict,
    InvalidTransition,
    OfferNotFound,
)
from services.pipeline import ApplicationPipeline

router = APIRouter(prefix="/api/applications", tags=["applications"])

MSG_APPLICATION_NOT_FOUND = "Application not found"


def _app_to_response(record: ApplicationRecord) -> dict[str, Any]:
    """Serialize application to dict with camelCase for frontend."""
    return record.model_dump(mode="json", by_alias=True)


@router.get("")
async def list_applications(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    status: Optional[ApplicationStatus] = None,
    pipeline: ApplicationPipeline = Depends(get_pipeline),
):
    records, total = await pipeline.list_applications(page=page, limit=limit, status=status)
    return {
        "applications": [_app_to_response(r) for r in records],
        "total": total,
        "page": page,
        "pages": math.ceil(total / limit) if total else 0,
    }


@router.get("/status/counts")
async def status_counts(pipeline: ApplicationPipeline = Depends(get_pipeline)):
    counts = await pipeline.status_counts()
    return {status.value: total for status, total in counts.items()}


@router.post("/lookup")
async def lookup_application(body: ApplicationLookup, pipeline: ApplicationPipeline = Depends(get_pipeline)):
    """Most recent application for a business name, falling back to the business phone."""
    try:
        record = await pipeline.find_application(body.business_name, body.business_phone)
    except ApplicationValidationError as e:
        raise HTTPException(status_code=400, detail={"message": "Invalid lookup", "errors": e.problems})
    except ApplicationNotFound:
        raise HTTPException(status_code=404, detail=MSG_APPLICATION_NOT_FOUND)
    return _app_to_response(record)


@router.get("/{application_id}")
async def get_application(application_id: str, pipeline: ApplicationPipeline = Depends(get_pipeline)):
    try:
        record = await pipeline.get_application(application_id)
    except ApplicationNotFound:
        raise HTTPException(status_code=404, detail=MSG_APPLICATION_NOT_FOUND)
    return _app_to_response(record)


@router.post("", status_code=202)
async def create_application(
    body: dict[str, Any] = Body(...),
    pipeline: ApplicationPipeline = Depends(get_pipeline),
):
    try:
        created = await pipeline.create_application(body)
    except ApplicationValidationError as e:
        raise HTTPException(status_code=400, detail={"message": "Invalid application", "errors": e.problems})
    except ConcurrencyConflict as e:
        raise HTTPException(status_code=409, detail=str(e))
    return created.model_dump(mode="json", by_alias=True)


@router.post("/{application_id}/resume", status_code=202)
async def resume_delivery(application_id: str, pipeline: ApplicationPipeline = Depends(get_pipeline)):
    try:
        record = await pipeline.resume_delivery(application_id)
    except ApplicationNotFound:
        raise HTTPException(status_code=404, detail=MSG_APPLICATION_NOT_FOUND)
    except (ConcurrencyConflict, InvalidTransition) as e:
        raise HTTPException(status_code=409, detail=str(e))
    return {"applicationId": record.id, "status": record.status.value, "message": "Delivery resumed"}


@router.post("/{application_id}/cancel")
async def cancel_application(application_id: str, pipeline: ApplicationPipeline = Depends(get_pipeline)):
    try:
        record = await pipeline.cancel_application(application_id)
    except ApplicationNotFound:
        raise HTTPException(status_code=404, detail=MSG_APPLICATION_NOT_FOUND)
    except (ConcurrencyConflict, InvalidTransition) as e:
        raise HTTPException(status_code=409, detail=str(e))
    return _app_to_response(record)


@router.post("/{application_id}/offers", status_code=201)
async def record_offer(
    application_id: str,
    body: OfferCreate,
    pipeline: ApplicationPipeline = Depends(get_pipeline),
):
    try:
        offer = await pipeline.record_offer(application_id, body.bank, body.terms)
    except ApplicationNotFound:
        raise HTTPException(status_code=404, detail=MSG_APPLICATION_NOT_FOUND)
    return offer.model_dump(mode="json", by_alias=True)


@router.patch("/{application_id}/offers/{offer_id}")
async def set_offer_status(
    application_id: str,
    offer_id: str,
    body: OfferStatusUpdate,
    pipeline: ApplicationPipeline = Depends(get_pipeline),
):
    try:
        offer = await pipeline.set_offer_status(application_id, offer_id, body.status)
    except ApplicationNotFound:
        raise HTTPException(status_code=404, detail=MSG_APPLICATION_NOT_FOUND)
    except OfferNotFound:
        raise HTTPException(status_code=404, detail="Offer not found")
    return offer.model_dump(mode="json", by_alias=True)
