"""Budget router - FastAPI endpoints for the quote lifecycle"""

import logging
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends, File, Query, UploadFile
from fastapi.responses import Response
from sqlalchemy.orm import Session

from ...auth import CurrentUser, get_current_user
from ...database import get_db
from ...models_budget import Budget, BudgetFile
from ...services.escrow_service import EscrowProvider, get_escrow_provider
from ...shared.validators import minutes_to_hours
from ..scheduling.schemas import AvailabilityWindowResponse, CandidateDatesResponse, SlotResponse
from .schemas import (
    ApprovalResponse,
    BudgetCreate,
    BudgetFileResponse,
    BudgetRespond,
    BudgetResponse,
    RespondedResponse,
    ScheduleSelection,
)
from .service import BudgetService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/budgets", tags=["Budgets"])


def get_budget_service(
    db: Session = Depends(get_db),
    escrow: EscrowProvider = Depends(get_escrow_provider),
) -> BudgetService:
    """Dependency injection for BudgetService"""
    return BudgetService(db, escrow)


def _as_float(value) -> Optional[float]:
    return float(value) if value is not None else None


def file_to_response(f: BudgetFile) -> BudgetFileResponse:
    return BudgetFileResponse(
        id=f.id,
        filename=f.filename,
        mimeType=f.mime_type,
        kind=f.kind,
        sizeMB=round(f.size_bytes / (1024 * 1024), 2),
        uploadedAt=f.uploaded_at,
    )


def budget_to_response(b: Budget, service: BudgetService) -> BudgetResponse:
    remaining = service.hours_remaining(b)
    return BudgetResponse(
        id=b.id,
        serviceId=b.service_id,
        clientId=b.client_id,
        providerId=b.provider_id,
        problemDescription=b.problem_description,
        solutionDescription=b.solution_description,
        estimatedHours=_as_float(b.estimated_hours),
        materialsCost=float(b.materials_cost or 0),
        hourlyRate=_as_float(b.hourly_rate),
        total=float(b.total or 0),
        state=b.state,
        responded=bool(b.responded),
        actionable=b.is_actionable,
        selectedSlots=[
            SlotResponse(
                id=s.id,
                date=s.slot_date,
                startTime=s.start_time,
                endTime=s.end_time,
                durationHours=float(minutes_to_hours(s.duration_minutes)),
            )
            for s in b.slots
        ],
        hoursAllocated=float(minutes_to_hours(b.allocated_minutes)),
        hoursRemaining=_as_float(remaining),
        files=[file_to_response(f) for f in b.files],
        createdAt=b.created_at,
        updatedAt=b.updated_at,
        respondedAt=b.responded_at,
        decidedAt=b.decided_at,
    )


# ============================================================================
# LISTINGS
# ============================================================================


@router.get("/client/{client_id}", response_model=list[BudgetResponse])
async def list_budgets_by_client(
    client_id: int,
    actionable: bool = Query(False, description="Hide zero-total and unanswered budgets"),
    current_user: CurrentUser = Depends(get_current_user),
    service: BudgetService = Depends(get_budget_service),
):
    budgets = service.list_by_client(client_id, current_user, actionable=actionable)
    return [budget_to_response(b, service) for b in budgets]


@router.get("/provider/{provider_id}", response_model=list[BudgetResponse])
async def list_budgets_by_provider(
    provider_id: int,
    actionable: bool = Query(False, description="Hide zero-total and unanswered budgets"),
    current_user: CurrentUser = Depends(get_current_user),
    service: BudgetService = Depends(get_budget_service),
):
    budgets = service.list_by_provider(provider_id, current_user, actionable=actionable)
    return [budget_to_response(b, service) for b in budgets]


@router.get("/service/{service_id}", response_model=list[BudgetResponse])
async def list_budgets_by_service(
    service_id: int,
    actionable: bool = Query(False),
    current_user: CurrentUser = Depends(get_current_user),
    service: BudgetService = Depends(get_budget_service),
):
    budgets = service.list_by_service(service_id, current_user, actionable=actionable)
    return [budget_to_response(b, service) for b in budgets]


@router.get("/state/{state}", response_model=list[BudgetResponse])
async def list_budgets_by_state(
    state: str,
    actionable: bool = Query(False),
    current_user: CurrentUser = Depends(get_current_user),
    service: BudgetService = Depends(get_budget_service),
):
    """Admin-only listing of budgets in a given state"""
    budgets = service.list_by_state(state, current_user, actionable=actionable)
    return [budget_to_response(b, service) for b in budgets]


# ============================================================================
# ATTACHMENTS
# ============================================================================


@router.get("/files/{file_id}")
async def download_file(
    file_id: int,
    current_user: CurrentUser = Depends(get_current_user),
    service: BudgetService = Depends(get_budget_service),
):
    """Download an attachment with its original MIME type"""
    f = service.get_file(file_id, current_user)
    headers = {"Content-Disposition": f'inline; filename="{f.filename}"'}
    return Response(content=f.content, media_type=f.mime_type, headers=headers)


@router.delete("/files/{file_id}", status_code=204)
async def delete_file(
    file_id: int,
    current_user: CurrentUser = Depends(get_current_user),
    service: BudgetService = Depends(get_budget_service),
):
    service.delete_file(file_id, current_user)
    return Response(status_code=204)


@router.post("/{budget_id}/files", response_model=BudgetFileResponse, status_code=201)
async def attach_file(
    budget_id: int,
    file: UploadFile = File(...),
    current_user: CurrentUser = Depends(get_current_user),
    service: BudgetService = Depends(get_budget_service),
):
    """Attach a photo or video (max 5MB) to a pending budget"""
    contents = await file.read()
    logger.info(f"📤 Upload to budget {budget_id}: {file.filename} ({file.content_type}, {len(contents)} bytes)")
    f = service.attach_file(budget_id, file.filename, contents, file.content_type, current_user)
    return file_to_response(f)


@router.get("/{budget_id}/files", response_model=list[BudgetFileResponse])
async def list_files(
    budget_id: int,
    current_user: CurrentUser = Depends(get_current_user),
    service: BudgetService = Depends(get_budget_service),
):
    return [file_to_response(f) for f in service.list_files(budget_id, current_user)]


# ============================================================================
# CORE LIFECYCLE
# ============================================================================


@router.post("", response_model=BudgetResponse, status_code=201)
async def create_budget(
    data: BudgetCreate,
    current_user: CurrentUser = Depends(get_current_user),
    service: BudgetService = Depends(get_budget_service),
):
    """Request a quote for a service"""
    budget = service.create_budget(data, current_user)
    return budget_to_response(budget, service)


@router.get("/{budget_id}", response_model=BudgetResponse)
async def get_budget(
    budget_id: int,
    current_user: CurrentUser = Depends(get_current_user),
    service: BudgetService = Depends(get_budget_service),
):
    return budget_to_response(service.get_budget(budget_id, current_user), service)


@router.get("/{budget_id}/responded", response_model=RespondedResponse)
async def is_responded(
    budget_id: int,
    current_user: CurrentUser = Depends(get_current_user),
    service: BudgetService = Depends(get_budget_service),
):
    return RespondedResponse(budgetId=budget_id, responded=service.is_responded(budget_id, current_user))


@router.put("/{budget_id}/respond", response_model=BudgetResponse)
async def respond_to_budget(
    budget_id: int,
    data: BudgetRespond,
    current_user: CurrentUser = Depends(get_current_user),
    service: BudgetService = Depends(get_budget_service),
):
    """Provider quotes hours, materials and the proposed solution"""
    budget = service.respond_to_budget(budget_id, data, current_user)
    return budget_to_response(budget, service)


@router.get("/{budget_id}/availability", response_model=list[AvailabilityWindowResponse])
async def get_availability(
    budget_id: int,
    current_user: CurrentUser = Depends(get_current_user),
    service: BudgetService = Depends(get_budget_service),
):
    """Provider availability for this budget in canonical form"""
    return [AvailabilityWindowResponse(**w.as_dict()) for w in service.get_availability(budget_id, current_user)]


@router.get("/{budget_id}/candidate-dates", response_model=CandidateDatesResponse)
async def candidate_dates(
    budget_id: int,
    weekday: str = Query(..., description="LUNES, MARTES, ..."),
    current_user: CurrentUser = Depends(get_current_user),
    service: BudgetService = Depends(get_budget_service),
):
    result = service.candidate_dates(budget_id, weekday, current_user)
    return CandidateDatesResponse(
        weekday=result["weekday"],
        windows=[AvailabilityWindowResponse(**w) for w in result["windows"]],
        dates=result["dates"],
        hoursRemaining=float(result["hoursRemaining"] or Decimal("0")),
    )


@router.put("/{budget_id}/schedule", response_model=BudgetResponse)
async def select_schedule(
    budget_id: int,
    data: ScheduleSelection,
    current_user: CurrentUser = Depends(get_current_user),
    service: BudgetService = Depends(get_budget_service),
):
    """Replace the selected work sessions"""
    budget = service.select_schedule(budget_id, data, current_user)
    return budget_to_response(budget, service)


# Sync handler: escrow calls block and must run in the threadpool
@router.post("/{budget_id}/approve", response_model=ApprovalResponse)
def approve_budget(
    budget_id: int,
    current_user: CurrentUser = Depends(get_current_user),
    service: BudgetService = Depends(get_budget_service),
):
    budget, milestones = service.approve_budget(budget_id, current_user)
    return ApprovalResponse(
        message=f"Presupuesto aprobado. Se crearon {len(milestones)} hitos de pago.",
        budget=budget_to_response(budget, service),
        milestonesCreated=len(milestones),
    )


@router.post("/{budget_id}/reject", response_model=BudgetResponse)
async def reject_budget(
    budget_id: int,
    current_user: CurrentUser = Depends(get_current_user),
    service: BudgetService = Depends(get_budget_service),
):
    budget = service.reject_budget(budget_id, current_user)
    return budget_to_response(budget, service)


@router.delete("/{budget_id}", status_code=204)
async def delete_budget(
    budget_id: int,
    current_user: CurrentUser = Depends(get_current_user),
    service: BudgetService = Depends(get_budget_service),
):
    service.delete_budget(budget_id, current_user)
    return Response(status_code=204)
