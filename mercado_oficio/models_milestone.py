"""
Milestone Models for escrow-backed execution of an approved budget
"""

import enum

from sqlalchemy import (
    Column,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .database import Base


class MilestoneState(str, enum.Enum):
    PENDIENTE = "PENDIENTE"
    EN_PROGRESO = "EN_PROGRESO"
    COMPLETADO = "COMPLETADO"
    APROBADO_CLIENTE = "APROBADO_CLIENTE"
    PAGADO = "PAGADO"
    DISPUTADO = "DISPUTADO"
    CANCELADO = "CANCELADO"


TERMINAL_MILESTONE_STATES = {MilestoneState.PAGADO.value, MilestoneState.CANCELADO.value}


class Milestone(Base):
    """One scheduled, separately escrowed portion of an approved budget"""

    __tablename__ = "milestones"
    __table_args__ = (
        UniqueConstraint("budget_id", "sequence_number", name="uq_milestone_budget_sequence"),
    )

    id = Column(Integer, primary_key=True, index=True)
    budget_id = Column(Integer, ForeignKey("budgets.id"), nullable=False, index=True)
    sequence_number = Column(Integer, nullable=False)  # 1-based execution order within the budget

    description = Column(Text, nullable=False)
    percentage = Column(Numeric(6, 2), nullable=False)  # Share of the budget total (0-100)
    amount = Column(Numeric(12, 2), nullable=False)

    # Status workflow: PENDIENTE → EN_PROGRESO → COMPLETADO → APROBADO_CLIENTE → PAGADO
    # DISPUTADO from COMPLETADO/APROBADO_CLIENTE, CANCELADO from any non-terminal state
    state = Column(String(20), default=MilestoneState.PENDIENTE.value, nullable=False, index=True)

    # Scheduling (seeded from the selected slot)
    scheduled_start = Column(DateTime, nullable=False)
    estimated_completion = Column(DateTime, nullable=False)

    # Execution audit trail
    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    completion_evidence = Column(Text, nullable=True)
    completion_comment = Column(Text, nullable=True)
    client_approved_at = Column(DateTime, nullable=True)
    released_at = Column(DateTime, nullable=True)
    cancelled_at = Column(DateTime, nullable=True)
    cancellation_reason = Column(Text, nullable=True)

    # Opaque reference to the funds held by the escrow provider - never parsed
    escrow_ref = Column(String(255), nullable=False)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    # Optimistic concurrency
    version = Column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    budget = relationship("Budget", back_populates="milestones")
    disputes = relationship(
        "MilestoneDispute",
        back_populates="milestone",
        cascade="all, delete-orphan",
        order_by="MilestoneDispute.id",
    )

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_MILESTONE_STATES


class MilestoneDispute(Base):
    """A dispute raised by either party; resolution happens outside this system"""

    __tablename__ = "milestone_disputes"

    id = Column(Integer, primary_key=True, index=True)
    milestone_id = Column(Integer, ForeignKey("milestones.id"), nullable=False, index=True)
    raised_by = Column(Integer, ForeignKey("users.id"), nullable=False)
    reason = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    previous_state = Column(String(20), nullable=False)
    raised_at = Column(DateTime, server_default=func.now())

    milestone = relationship("Milestone", back_populates="disputes")
