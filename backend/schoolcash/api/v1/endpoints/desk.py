# ============================================================
# schoolcash/api/v1/endpoints/desk.py
#
# The cashier's payment desk, one resource per open desk:
#
#   POST   /desk/sessions                      open (loads snapshot)
#   GET    /desk/sessions/{id}                 state + summary + validation
#   DELETE /desk/sessions/{id}                 close
#   POST   /desk/sessions/{id}/student         pick a student (resets form)
#   POST   /desk/sessions/{id}/refresh         reload data from the backend
#   POST   /desk/sessions/{id}/toggle          select / deselect installment
#   POST   /desk/sessions/{id}/amount          allocated amount
#   POST   /desk/sessions/{id}/given-amount    cash handed over
#   POST   /desk/sessions/{id}/methods         add a payment method line
#   PATCH  /desk/sessions/{id}/methods/{index} edit a method line
#   DELETE /desk/sessions/{id}/methods/{installment_id}/{index}
#   POST   /desk/sessions/{id}/discount        apply / clear discount
#   POST   /desk/sessions/{id}/submit          commit the batch
#
# Every response carries the full desk state so the dashboard can
# re-render from one payload.
# ============================================================

import logging

from fastapi import APIRouter, Depends, HTTPException, status

from schoolcash.api.deps import get_desk, get_registry, get_school_api
from schoolcash.core.backend import BackendError, SchoolAPI
from schoolcash.schemas.common import APIResponse
from schoolcash.schemas.desk import (
    AddMethodRequest,
    AllocationRequest,
    DeskStateResponse,
    DiscountRequest,
    GivenAmountRequest,
    OpenDeskRequest,
    SelectStudentRequest,
    ToggleInstallmentRequest,
    UpdateMethodRequest,
)
from schoolcash.services.desk_service import DeskController, DeskRegistry, open_desk

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/desk/sessions", tags=["Cash Desk"])


def _state(controller: DeskController, success: bool = True, message: str = "") -> APIResponse[DeskStateResponse]:
    return APIResponse(
        success=success,
        message=message or ("OK" if success else "No change applied"),
        data=controller.state(),
    )


@router.post("", response_model=APIResponse[DeskStateResponse], status_code=201)
async def open_desk_session(
    body: OpenDeskRequest,
    api: SchoolAPI = Depends(get_school_api),
    registry: DeskRegistry = Depends(get_registry),
):
    try:
        controller = await open_desk(api, body)
    except BackendError as e:
        logger.error(f"Could not load school data for a new desk: {e}")
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="School backend unavailable. Try again.",
        )
    registry.add(controller)
    return _state(controller, message="Desk opened")


@router.get("/{desk_id}", response_model=APIResponse[DeskStateResponse])
async def get_desk_state(controller: DeskController = Depends(get_desk)):
    return _state(controller)


@router.delete("/{desk_id}", response_model=APIResponse[None])
async def close_desk_session(desk_id: str, registry: DeskRegistry = Depends(get_registry)):
    if not registry.close(desk_id):
        raise HTTPException(status_code=404, detail="Desk session not found or already closed")
    return APIResponse(message="Desk closed")


@router.post("/{desk_id}/student", response_model=APIResponse[DeskStateResponse])
async def select_student(body: SelectStudentRequest, controller: DeskController = Depends(get_desk)):
    if body.student_id is not None:
        return _state(controller, controller.select_student(body.student_id))
    return _state(controller, controller.select_student_by_registration_number(body.registration_number))


@router.post("/{desk_id}/refresh", response_model=APIResponse[DeskStateResponse])
async def refresh_desk(
    controller: DeskController = Depends(get_desk),
    api: SchoolAPI = Depends(get_school_api),
):
    try:
        snapshot = await api.load_snapshot(controller.session.academic_year_id)
    except BackendError as e:
        logger.error(f"Desk {controller.session.id} refresh failed: {e}")
        raise HTTPException(status_code=502, detail="School backend unavailable. Try again.")
    controller.replace_snapshot(snapshot)
    return _state(controller, message="Data refreshed")


@router.post("/{desk_id}/toggle", response_model=APIResponse[DeskStateResponse])
async def toggle_installment(body: ToggleInstallmentRequest, controller: DeskController = Depends(get_desk)):
    return _state(controller, controller.toggle(body.installment_id))


@router.post("/{desk_id}/amount", response_model=APIResponse[DeskStateResponse])
async def set_allocation(body: AllocationRequest, controller: DeskController = Depends(get_desk)):
    return _state(controller, controller.set_amount(body.installment_id, body.amount))


@router.post("/{desk_id}/given-amount", response_model=APIResponse[DeskStateResponse])
async def set_given_amount(body: GivenAmountRequest, controller: DeskController = Depends(get_desk)):
    return _state(controller, controller.set_given_amount(body.amount))


@router.post("/{desk_id}/methods", response_model=APIResponse[DeskStateResponse])
async def add_method(body: AddMethodRequest, controller: DeskController = Depends(get_desk)):
    return _state(controller, controller.add_method(body.installment_id, body.method_id))


@router.patch("/{desk_id}/methods/{index}", response_model=APIResponse[DeskStateResponse])
async def update_method(index: int, body: UpdateMethodRequest, controller: DeskController = Depends(get_desk)):
    return _state(controller, controller.update_method(body.installment_id, index, body.field, body.value))


@router.delete("/{desk_id}/methods/{installment_id}/{index}", response_model=APIResponse[DeskStateResponse])
async def remove_method(installment_id: int, index: int, controller: DeskController = Depends(get_desk)):
    return _state(controller, controller.remove_method(installment_id, index))


@router.post("/{desk_id}/discount", response_model=APIResponse[DeskStateResponse])
async def apply_discount(body: DiscountRequest, controller: DeskController = Depends(get_desk)):
    result = controller.apply_discount(body.pricing_id, body.amount)
    return _state(controller, result.is_valid, result.errors[0] if result.errors else "Discount updated")


@router.post("/{desk_id}/submit", response_model=APIResponse[DeskStateResponse])
async def submit_payment(controller: DeskController = Depends(get_desk)):
    """
    Validates, then commits installment by installment.
    A partial failure still returns 200: the state lists what was
    recorded and what was not, and the receipt covers the recorded part.
    """
    result, _receipt = await controller.submit()
    if result.success:
        message = f"{result.committed_count} payment(s) recorded"
    else:
        message = result.error or "Payment not recorded"
    return _state(controller, result.success, message)
