"""Milestone router - FastAPI endpoints for milestone execution and payment"""

import logging
from typing import Optional

from fastapi import APIRouter, Body, Depends
from sqlalchemy.orm import Session

from ...auth import CurrentUser, get_current_user
from ...database import get_db
from ...models_milestone import Milestone, MilestoneDispute
from ...services.escrow_service import EscrowProvider, get_escrow_provider
from .schemas import (
    DisputeCreate,
    DisputeResponse,
    MilestoneCancel,
    MilestoneComplete,
    MilestoneResponse,
    MilestoneStatusResponse,
    ReleaseResponse,
)
from .service import MilestoneService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/milestones", tags=["Milestones"])


def get_milestone_service(
    db: Session = Depends(get_db),
    escrow: EscrowProvider = Depends(get_escrow_provider),
) -> MilestoneService:
    """Dependency injection for MilestoneService"""
    return MilestoneService(db, escrow)


def milestone_to_response(m: Milestone) -> MilestoneResponse:
    return MilestoneResponse(
        id=m.id,
        budgetId=m.budget_id,
        sequenceNumber=m.sequence_number,
        description=m.description,
        percentage=float(m.percentage),
        amount=float(m.amount),
        state=m.state,
        scheduledStart=m.scheduled_start,
        estimatedCompletion=m.estimated_completion,
        startedAt=m.started_at,
        completedAt=m.completed_at,
        completionEvidence=m.completion_evidence,
        completionComment=m.completion_comment,
        clientApprovedAt=m.client_approved_at,
        releasedAt=m.released_at,
        cancelledAt=m.cancelled_at,
        cancellationReason=m.cancellation_reason,
        escrowRef=m.escrow_ref,
        createdAt=m.created_at,
        updatedAt=m.updated_at,
    )


def dispute_to_response(d: MilestoneDispute) -> DisputeResponse:
    return DisputeResponse(
        id=d.id,
        reason=d.reason,
        description=d.description,
        raisedBy=d.raised_by,
        previousState=d.previous_state,
        raisedAt=d.raised_at,
    )


# ============================================================================
# QUERIES
# ============================================================================


@router.get("/budget/{budget_id}", response_model=list[MilestoneResponse])
async def list_milestones_by_budget(
    budget_id: int,
    current_user: CurrentUser = Depends(get_current_user),
    service: MilestoneService = Depends(get_milestone_service),
):
    """All milestones of a budget ordered by sequence number"""
    return [milestone_to_response(m) for m in service.list_by_budget(budget_id, current_user)]


@router.get("/client/{client_id}", response_model=list[MilestoneResponse])
async def list_milestones_by_client(
    client_id: int,
    current_user: CurrentUser = Depends(get_current_user),
    service: MilestoneService = Depends(get_milestone_service),
):
    """The client's milestones across all budgets"""
    return [milestone_to_response(m) for m in service.list_by_client(client_id, current_user)]


@router.get("/{milestone_id}", response_model=MilestoneResponse)
async def get_milestone(
    milestone_id: int,
    current_user: CurrentUser = Depends(get_current_user),
    service: MilestoneService = Depends(get_milestone_service),
):
    return milestone_to_response(service.get_milestone(milestone_id, current_user))


@router.get("/{milestone_id}/status", response_model=MilestoneStatusResponse)
async def get_milestone_status(
    milestone_id: int,
    current_user: CurrentUser = Depends(get_current_user),
    service: MilestoneService = Depends(get_milestone_service),
):
    milestone, dispute = service.get_status(milestone_id, current_user)
    return MilestoneStatusResponse(
        milestone=milestone_to_response(milestone),
        openDispute=dispute_to_response(dispute) if dispute else None,
    )


# ============================================================================
# TRANSITIONS
# ============================================================================


@router.post("/{milestone_id}/start", response_model=MilestoneResponse)
async def start_milestone(
    milestone_id: int,
    current_user: CurrentUser = Depends(get_current_user),
    service: MilestoneService = Depends(get_milestone_service),
):
    return milestone_to_response(service.start_milestone(milestone_id, current_user))


@router.post("/{milestone_id}/complete", response_model=MilestoneResponse)
async def complete_milestone(
    milestone_id: int,
    data: Optional[MilestoneComplete] = Body(None),
    current_user: CurrentUser = Depends(get_current_user),
    service: MilestoneService = Depends(get_milestone_service),
):
    """Provider marks the session's work as done, optionally with evidence"""
    return milestone_to_response(service.complete_milestone(milestone_id, current_user, data))


@router.post("/{milestone_id}/approve", response_model=MilestoneResponse)
async def approve_milestone(
    milestone_id: int,
    current_user: CurrentUser = Depends(get_current_user),
    service: MilestoneService = Depends(get_milestone_service),
):
    return milestone_to_response(service.approve_milestone(milestone_id, current_user))


# Sync handler: escrow calls block and must run in the threadpool
@router.post("/{milestone_id}/release", response_model=ReleaseResponse)
def release_funds(
    milestone_id: int,
    current_user: CurrentUser = Depends(get_current_user),
    service: MilestoneService = Depends(get_milestone_service),
):
    """Release the escrowed amount to the provider"""
    milestone, amount = service.release_funds(milestone_id, current_user)
    return ReleaseResponse(
        milestoneId=milestone.id,
        amountReleased=float(amount),
        newState=milestone.state,
        message="Fondos liberados al prestador",
    )


@router.post("/{milestone_id}/dispute", response_model=MilestoneResponse)
async def raise_dispute(
    milestone_id: int,
    data: DisputeCreate,
    current_user: CurrentUser = Depends(get_current_user),
    service: MilestoneService = Depends(get_milestone_service),
):
    return milestone_to_response(service.raise_dispute(milestone_id, current_user, data))


# Sync handler: escrow calls block and must run in the threadpool
@router.post("/{milestone_id}/cancel", response_model=MilestoneResponse)
def cancel_milestone(
    milestone_id: int,
    data: Optional[MilestoneCancel] = Body(None),
    current_user: CurrentUser = Depends(get_current_user),
    service: MilestoneService = Depends(get_milestone_service),
):
    return milestone_to_response(service.cancel_milestone(milestone_id, current_user, data))
