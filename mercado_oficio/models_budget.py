"""
Budget (quote) Models for the service request workflow
"""

import enum

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    LargeBinary,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .database import Base


class BudgetState(str, enum.Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class FileKind(str, enum.Enum):
    IMAGEN = "IMAGEN"
    VIDEO = "VIDEO"


class Budget(Base):
    """A client's quote request for a service and the provider's costed answer"""

    __tablename__ = "budgets"

    id = Column(Integer, primary_key=True, index=True)
    client_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    provider_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    service_id = Column(Integer, ForeignKey("services.id"), nullable=False, index=True)

    # Client-authored
    problem_description = Column(Text, nullable=False)

    # Provider-authored (set by respond)
    solution_description = Column(Text, nullable=True)
    estimated_hours = Column(Numeric(8, 2), nullable=True)
    materials_cost = Column(Numeric(12, 2), default=0, nullable=False)
    hourly_rate = Column(Numeric(12, 2), nullable=True)  # Copied from the service at response time
    total = Column(Numeric(12, 2), default=0, nullable=False)

    # Status workflow: PENDING → APPROVED | REJECTED
    # responded is a sub-flag of PENDING: the provider has quoted, the client must decide
    state = Column(String(20), default=BudgetState.PENDING.value, nullable=False, index=True)
    responded = Column(Boolean, default=False, nullable=False)

    # Timestamps
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())
    responded_at = Column(DateTime, nullable=True)
    decided_at = Column(DateTime, nullable=True)  # Approval or rejection time

    # Optimistic concurrency
    version = Column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    files = relationship(
        "BudgetFile", back_populates="budget", cascade="all, delete-orphan", order_by="BudgetFile.id"
    )
    slots = relationship(
        "BudgetSlot",
        back_populates="budget",
        cascade="all, delete-orphan",
        order_by="BudgetSlot.position",
    )
    milestones = relationship(
        "Milestone", back_populates="budget", order_by="Milestone.sequence_number"
    )

    @property
    def is_actionable(self) -> bool:
        """Whether listings should show this budget to either party"""
        if not self.total or self.total <= 0:
            return False
        return not (self.state == BudgetState.PENDING.value and not self.responded)

    @property
    def allocated_minutes(self) -> int:
        return sum(slot.duration_minutes for slot in self.slots)


class BudgetFile(Base):
    """Photo or video attached by the client to illustrate the problem"""

    __tablename__ = "budget_files"

    id = Column(Integer, primary_key=True, index=True)
    budget_id = Column(Integer, ForeignKey("budgets.id", ondelete="CASCADE"), nullable=False, index=True)
    filename = Column(String(255), nullable=False)
    mime_type = Column(String(100), nullable=False)
    kind = Column(String(10), nullable=False)  # IMAGEN, VIDEO
    size_bytes = Column(Integer, nullable=False)
    content = Column(LargeBinary, nullable=False)
    uploaded_at = Column(DateTime, server_default=func.now())

    budget = relationship("Budget", back_populates="files")


class BudgetSlot(Base):
    """A work session the client picked from the provider's availability"""

    __tablename__ = "budget_slots"

    id = Column(Integer, primary_key=True, index=True)
    budget_id = Column(Integer, ForeignKey("budgets.id", ondelete="CASCADE"), nullable=False, index=True)
    position = Column(Integer, nullable=False)  # Order in which the client added it
    slot_date = Column(Date, nullable=False)
    start_time = Column(String(5), nullable=False)  # HH:MM format
    end_time = Column(String(5), nullable=False)
    duration_minutes = Column(Integer, nullable=False)

    budget = relationship("Budget", back_populates="slots")
