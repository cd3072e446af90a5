"""Budget repository - Database operations for budgets"""

from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from ...models import Service
from ...models_budget import Budget, BudgetFile, BudgetSlot


class BudgetRepository:
    """
    Repository for budget database operations.

    Methods add and flush but never commit: the service decides the
    transaction boundary so multi-entity changes stay atomic.
    """

    @staticmethod
    def get_budget_by_id(db: Session, budget_id: int, for_update: bool = False) -> Optional[Budget]:
        """Get a budget; ``for_update`` locks the row and re-reads it from the database"""
        query = db.query(Budget).filter(Budget.id == budget_id)
        if for_update:
            query = query.with_for_update().populate_existing()
        return query.first()

    @staticmethod
    def get_budgets_by_client(db: Session, client_id: int) -> list[Budget]:
        return (
            db.query(Budget)
            .filter(Budget.client_id == client_id)
            .order_by(Budget.created_at.desc(), Budget.id.desc())
            .all()
        )

    @staticmethod
    def get_budgets_by_provider(db: Session, provider_id: int) -> list[Budget]:
        return (
            db.query(Budget)
            .filter(Budget.provider_id == provider_id)
            .order_by(Budget.created_at.desc(), Budget.id.desc())
            .all()
        )

    @staticmethod
    def get_budgets_by_service(db: Session, service_id: int) -> list[Budget]:
        return (
            db.query(Budget)
            .filter(Budget.service_id == service_id)
            .order_by(Budget.created_at.desc(), Budget.id.desc())
            .all()
        )

    @staticmethod
    def get_budgets_by_state(db: Session, state: str) -> list[Budget]:
        return (
            db.query(Budget)
            .filter(Budget.state == state)
            .order_by(Budget.created_at.desc(), Budget.id.desc())
            .all()
        )

    @staticmethod
    def create_budget(db: Session, **budget_data) -> Budget:
        budget = Budget(**budget_data)
        db.add(budget)
        db.flush()
        return budget

    @staticmethod
    def delete_budget(db: Session, budget: Budget) -> None:
        """Delete a budget; files and slots go with it"""
        db.delete(budget)
        db.flush()

    @staticmethod
    def replace_slots(db: Session, budget: Budget, slots: list[BudgetSlot]) -> None:
        """Swap the whole selected-slot set of a budget"""
        budget.slots.clear()
        db.flush()
        for position, slot in enumerate(slots, start=1):
            slot.position = position
            budget.slots.append(slot)
        db.flush()

    @staticmethod
    def get_service_by_id(db: Session, service_id: int) -> Optional[Service]:
        return db.query(Service).filter(Service.id == service_id).first()

    @staticmethod
    def get_file_by_id(db: Session, file_id: int) -> Optional[BudgetFile]:
        return db.query(BudgetFile).filter(BudgetFile.id == file_id).first()

    @staticmethod
    def count_files(db: Session, budget_id: int) -> int:
        return db.query(func.count(BudgetFile.id)).filter(BudgetFile.budget_id == budget_id).scalar() or 0

    @staticmethod
    def add_file(db: Session, budget: Budget, **file_data) -> BudgetFile:
        budget_file = BudgetFile(budget_id=budget.id, **file_data)
        db.add(budget_file)
        db.flush()
        return budget_file

    @staticmethod
    def delete_file(db: Session, budget_file: BudgetFile) -> None:
        db.delete(budget_file)
        db.flush()
