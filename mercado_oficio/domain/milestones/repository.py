"""Milestone repository - Database operations for milestones"""

from typing import Optional

from sqlalchemy.orm import Session

from ...models_budget import Budget
from ...models_milestone import Milestone, MilestoneDispute


class MilestoneRepository:
    """Repository for milestone database operations; the service owns commits"""

    @staticmethod
    def get_milestone_by_id(db: Session, milestone_id: int, for_update: bool = False) -> Optional[Milestone]:
        query = db.query(Milestone).filter(Milestone.id == milestone_id)
        if for_update:
            query = query.with_for_update().populate_existing()
        return query.first()

    @staticmethod
    def get_milestones_by_budget(db: Session, budget_id: int) -> list[Milestone]:
        return (
            db.query(Milestone)
            .filter(Milestone.budget_id == budget_id)
            .order_by(Milestone.sequence_number)
            .all()
        )

    @staticmethod
    def get_milestones_by_client(db: Session, client_id: int) -> list[Milestone]:
        """All milestones of a client's budgets, grouped by budget then sequence"""
        return (
            db.query(Milestone)
            .join(Budget, Milestone.budget_id == Budget.id)
            .filter(Budget.client_id == client_id)
            .order_by(Milestone.budget_id, Milestone.sequence_number)
            .all()
        )

    @staticmethod
    def add_milestones(db: Session, milestones: list[Milestone]) -> None:
        db.add_all(milestones)

    @staticmethod
    def add_dispute(db: Session, milestone: Milestone, **dispute_data) -> MilestoneDispute:
        dispute = MilestoneDispute(**dispute_data)
        milestone.disputes.append(dispute)
        db.flush()
        return dispute
