"""Budget domain schemas - Pydantic models for validation"""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, field_validator

from ..scheduling.schemas import SlotRequest, SlotResponse

MIN_PROBLEM_DESCRIPTION_LENGTH = 10


class BudgetCreate(BaseModel):
    """Schema for a client's quote request"""

    serviceId: int
    problemDescription: str

    @field_validator("problemDescription")
    @classmethod
    def validate_problem_description(cls, v: str) -> str:
        v = (v or "").strip()
        if not v:
            raise ValueError("Por favor describe el problema")
        if len(v) < MIN_PROBLEM_DESCRIPTION_LENGTH:
            raise ValueError(
                f"La descripción debe tener al menos {MIN_PROBLEM_DESCRIPTION_LENGTH} caracteres"
            )
        return v


class BudgetRespond(BaseModel):
    """Schema for the provider's costed answer"""

    estimatedHours: Decimal
    materialsCost: Decimal = Decimal("0")
    solutionDescription: str

    @field_validator("estimatedHours")
    @classmethod
    def validate_hours(cls, v: Decimal) -> Decimal:
        if v <= 0:
            raise ValueError("Las horas estimadas deben ser mayores a 0")
        return v

    @field_validator("materialsCost")
    @classmethod
    def validate_materials(cls, v: Decimal) -> Decimal:
        if v < 0:
            raise ValueError("El costo de materiales no puede ser negativo")
        return v


class ScheduleSelection(BaseModel):
    """Schema for the client's full set of selected sessions"""

    slots: list[SlotRequest]


class BudgetFileResponse(BaseModel):
    id: int
    filename: str
    mimeType: str
    kind: str
    sizeMB: float
    uploadedAt: Optional[datetime]


class BudgetResponse(BaseModel):
    """Schema for budget response"""

    id: int
    serviceId: int
    clientId: int
    providerId: int
    problemDescription: str
    solutionDescription: Optional[str]
    estimatedHours: Optional[float]
    materialsCost: float
    hourlyRate: Optional[float]
    total: float
    state: str
    responded: bool
    actionable: bool
    selectedSlots: list[SlotResponse]
    hoursAllocated: float
    hoursRemaining: Optional[float]
    files: list[BudgetFileResponse]
    createdAt: Optional[datetime]
    updatedAt: Optional[datetime]
    respondedAt: Optional[datetime]
    decidedAt: Optional[datetime]


class ApprovalResponse(BaseModel):
    message: str
    budget: BudgetResponse
    milestonesCreated: int


class RespondedResponse(BaseModel):
    budgetId: int
    responded: bool
