"""Milestone domain schemas - Pydantic models for validation"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, field_validator


class MilestoneComplete(BaseModel):
    """Optional proof of work sent by the provider"""

    evidence: Optional[str] = None  # URL or reference to photos of the finished work
    comment: Optional[str] = None


class DisputeCreate(BaseModel):
    reason: str
    description: Optional[str] = None

    @field_validator("reason")
    @classmethod
    def validate_reason(cls, v: str) -> str:
        v = (v or "").strip()
        if not v:
            raise ValueError("Debes indicar el motivo de la disputa")
        if len(v) > 255:
            raise ValueError("El motivo no puede superar los 255 caracteres")
        return v


class MilestoneCancel(BaseModel):
    reason: Optional[str] = None


class MilestoneResponse(BaseModel):
    """Schema for milestone response"""

    id: int
    budgetId: int
    sequenceNumber: int
    description: str
    percentage: float
    amount: float
    state: str
    scheduledStart: datetime
    estimatedCompletion: datetime
    startedAt: Optional[datetime] = None
    completedAt: Optional[datetime] = None
    completionEvidence: Optional[str] = None
    completionComment: Optional[str] = None
    clientApprovedAt: Optional[datetime] = None
    releasedAt: Optional[datetime] = None
    cancelledAt: Optional[datetime] = None
    cancellationReason: Optional[str] = None
    escrowRef: str
    createdAt: Optional[datetime] = None
    updatedAt: Optional[datetime] = None


class DisputeResponse(BaseModel):
    id: int
    reason: str
    description: Optional[str]
    raisedBy: int
    previousState: str
    raisedAt: Optional[datetime]


class MilestoneStatusResponse(BaseModel):
    milestone: MilestoneResponse
    openDispute: Optional[DisputeResponse] = None


class ReleaseResponse(BaseModel):
    milestoneId: int
    amountReleased: float
    newState: str
    message: str
