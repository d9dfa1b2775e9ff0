# schoolcash/api/v1/endpoints/discounts.py
#
# Stateless discount check, used by the registration wizard before a
# desk exists: which fee lines apply to the student, and is the typed
# discount acceptable on the chosen one?

import logging

from fastapi import APIRouter, Depends, HTTPException

from schoolcash.api.deps import get_school_api
from schoolcash.core.backend import BackendError, SchoolAPI
from schoolcash.schemas.common import APIResponse
from schoolcash.schemas.desk import DiscountPreviewRequest
from schoolcash.schemas.payments import DiscountValidation
from schoolcash.services.discount_service import compute_discount
from schoolcash.services.summary_service import summary_from_snapshot

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/discounts", tags=["Discounts"])


@router.post("/preview", response_model=APIResponse[DiscountValidation])
async def preview_discount(body: DiscountPreviewRequest, api: SchoolAPI = Depends(get_school_api)):
    try:
        snapshot = await api.load_snapshot(body.academic_year_id)
    except BackendError as e:
        logger.error(f"Discount preview could not load school data: {e}")
        raise HTTPException(status_code=502, detail="School backend unavailable. Try again.")

    summary = summary_from_snapshot(snapshot, body.student_id)
    if summary is None:
        raise HTTPException(
            status_code=404,
            detail="Student not found or not registered for this academic year",
        )

    result = compute_discount(body.pricing_id, body.amount, summary.applicable_pricing)
    return APIResponse(
        success=result.is_valid,
        message=result.errors[0] if result.errors else "OK",
        data=result,
    )
