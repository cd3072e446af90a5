"""Budget service - Business logic for the quote lifecycle"""

import logging
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from sqlalchemy.orm import Session

from ...auth import CurrentUser
from ...config import (
    CANDIDATE_DATES_HORIZON_DAYS,
    CURRENCY_DECIMALS,
    MAX_ATTACHMENTS_PER_BUDGET,
)
from ...errors import (
    AuthorizationError,
    IncompleteScheduleError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from ...models import Service
from ...models_budget import Budget, BudgetFile, BudgetSlot, BudgetState
from ...models_milestone import Milestone
from ...services.escrow_service import EscrowProvider
from ...shared.clock import today, utcnow
from ...shared.transactions import commit_or_conflict
from ...shared.validators import (
    format_hhmm,
    hours_to_minutes,
    is_whole_minutes,
    minutes_to_hours,
    normalize_weekday,
)
from ..milestones.generator import MilestoneGenerator
from ..milestones.repository import MilestoneRepository
from ..scheduling.availability import AvailabilityWindow, parse_availability, windows_for_weekday
from ..scheduling.selector import ScheduleSelector, propose_candidate_dates
from .files import classify_mime_type, sanitize_filename, validate_size
from .repository import BudgetRepository
from .schemas import BudgetCreate, BudgetRespond, ScheduleSelection

logger = logging.getLogger(__name__)


class BudgetService:
    """Service layer for budget business logic"""

    def __init__(self, db: Session, escrow: Optional[EscrowProvider] = None):
        self.db = db
        self.escrow = escrow
        self.repo = BudgetRepository()
        self.milestone_repo = MilestoneRepository()

    # ========================================================================
    # ACCESS HELPERS
    # ========================================================================

    def _get_for_update(self, budget_id: int) -> Budget:
        budget = self.repo.get_budget_by_id(self.db, budget_id, for_update=True)
        if not budget:
            raise NotFoundError(f"Budget {budget_id} not found")
        return budget

    @staticmethod
    def _require_client(budget: Budget, user: CurrentUser, attempted: str) -> None:
        if budget.client_id != user.id:
            logger.warning(f"⚠️ User {user.id} tried to {attempted} budget {budget.id} owned by client {budget.client_id}")
            raise AuthorizationError(f"Only the requesting client can {attempted} this budget")

    @staticmethod
    def _require_provider(budget: Budget, user: CurrentUser, attempted: str) -> None:
        if budget.provider_id != user.id:
            logger.warning(f"⚠️ User {user.id} tried to {attempted} budget {budget.id} assigned to {budget.provider_id}")
            raise AuthorizationError(f"Only the assigned provider can {attempted} this budget")

    @staticmethod
    def _require_pending(budget: Budget, attempted: str) -> None:
        if budget.state != BudgetState.PENDING.value:
            logger.warning(f"⚠️ Rejected {attempted} on budget {budget.id} in state {budget.state}")
            raise InvalidStateError(attempted, budget.state)

    @staticmethod
    def _require_responded(budget: Budget, attempted: str) -> None:
        if not budget.responded:
            raise InvalidStateError(
                attempted,
                budget.state,
                message=f"Cannot {attempted}: the provider has not responded to this budget yet",
            )

    def get_budget(self, budget_id: int, user: CurrentUser) -> Budget:
        """Get a budget visible to its client, its provider or an admin"""
        budget = self.repo.get_budget_by_id(self.db, budget_id)
        if not budget:
            raise NotFoundError(f"Budget {budget_id} not found")
        if not (user.is_admin or user.id in (budget.client_id, budget.provider_id)):
            raise AuthorizationError("You are not a party to this budget")
        return budget

    def _availability(self, budget: Budget) -> list[AvailabilityWindow]:
        service = self.repo.get_service_by_id(self.db, budget.service_id)
        return parse_availability(service.availability if service else None)

    def hours_remaining(self, budget: Budget) -> Optional[Decimal]:
        if budget.estimated_hours is None:
            return None
        return minutes_to_hours(hours_to_minutes(budget.estimated_hours) - budget.allocated_minutes)

    # ========================================================================
    # CREATION AND ATTACHMENTS
    # ========================================================================

    def create_budget(self, data: BudgetCreate, user: CurrentUser) -> Budget:
        """Create a PENDING budget for a service on behalf of the calling client"""
        logger.info(f"📥 Creating budget for service {data.serviceId} by user {user.id}")

        problem = (data.problemDescription or "").strip()
        if not problem:
            raise ValidationError("Por favor describe el problema")

        service = self.repo.get_service_by_id(self.db, data.serviceId)
        if not service:
            raise NotFoundError(f"Service {data.serviceId} not found")
        if service.user_id == user.id:
            raise ValidationError("No puedes solicitar un presupuesto a tu propio servicio")

        budget = self.repo.create_budget(
            self.db,
            client_id=user.id,
            provider_id=service.user_id,
            service_id=service.id,
            problem_description=problem,
            materials_cost=Decimal("0"),
            total=Decimal("0"),
            state=BudgetState.PENDING.value,
            responded=False,
        )
        self.db.commit()
        self.db.refresh(budget)
        logger.info(f"✅ Budget {budget.id} created: client {user.id} → provider {service.user_id}")
        return budget

    def attach_file(
        self,
        budget_id: int,
        filename: Optional[str],
        content: bytes,
        mime_type: Optional[str],
        user: CurrentUser,
    ) -> BudgetFile:
        """Attach a photo or video to a PENDING budget"""
        budget = self._get_for_update(budget_id)
        self._require_client(budget, user, "attach files to")
        self._require_pending(budget, "attach file")

        kind = classify_mime_type(mime_type)
        validate_size(len(content))
        if self.repo.count_files(self.db, budget.id) >= MAX_ATTACHMENTS_PER_BUDGET:
            raise ValidationError(f"Máximo {MAX_ATTACHMENTS_PER_BUDGET} archivos por presupuesto")

        budget_file = self.repo.add_file(
            self.db,
            budget,
            filename=sanitize_filename(filename),
            mime_type=mime_type.split(";")[0].strip().lower(),
            kind=kind.value,
            size_bytes=len(content),
            content=content,
        )
        budget.updated_at = utcnow()
        commit_or_conflict(self.db, "attach file", budget.state)
        self.db.refresh(budget_file)
        logger.info(f"📎 File {budget_file.id} ({kind.value}, {len(content)} bytes) attached to budget {budget.id}")
        return budget_file

    def list_files(self, budget_id: int, user: CurrentUser) -> list[BudgetFile]:
        return list(self.get_budget(budget_id, user).files)

    def get_file(self, file_id: int, user: CurrentUser) -> BudgetFile:
        budget_file = self.repo.get_file_by_id(self.db, file_id)
        if not budget_file:
            raise NotFoundError(f"File {file_id} not found")
        self.get_budget(budget_file.budget_id, user)
        return budget_file

    def delete_file(self, file_id: int, user: CurrentUser) -> None:
        budget_file = self.repo.get_file_by_id(self.db, file_id)
        if not budget_file:
            raise NotFoundError(f"File {file_id} not found")

        budget = self._get_for_update(budget_file.budget_id)
        self._require_client(budget, user, "delete files of")
        self._require_pending(budget, "delete file")

        self.repo.delete_file(self.db, budget_file)
        budget.updated_at = utcnow()
        commit_or_conflict(self.db, "delete file", budget.state)
        logger.info(f"🗑️ File {file_id} removed from budget {budget.id}")

    # ========================================================================
    # PROVIDER RESPONSE
    # ========================================================================

    def respond_to_budget(self, budget_id: int, data: BudgetRespond, user: CurrentUser) -> Budget:
        """
        Record the provider's costed answer.

        Responding again while still PENDING replaces the quote and clears any
        slots the client had selected against the previous hours.
        """
        budget = self._get_for_update(budget_id)
        self._require_provider(budget, user, "respond to")
        self._require_pending(budget, "respond")

        solution = (data.solutionDescription or "").strip()
        if not solution:
            raise ValidationError("La descripción de la solución es obligatoria")
        hours = Decimal(data.estimatedHours)
        materials = Decimal(data.materialsCost or 0)
        if hours <= 0:
            raise ValidationError("Las horas estimadas deben ser mayores a 0")
        if materials < 0:
            raise ValidationError("El costo de materiales no puede ser negativo")
        # Slots are booked in whole minutes and amounts stored at currency precision
        if not is_whole_minutes(hours):
            raise ValidationError(
                f"Las horas estimadas ({hours}) deben equivaler a minutos enteros, por ejemplo 1.25 o 1.5"
            )
        currency_quantum = Decimal(1).scaleb(-CURRENCY_DECIMALS)
        if materials != materials.quantize(currency_quantum):
            raise ValidationError(
                f"El costo de materiales admite como máximo {CURRENCY_DECIMALS} decimales"
            )

        service: Optional[Service] = self.repo.get_service_by_id(self.db, budget.service_id)
        if not service or service.hourly_rate is None:
            raise ValidationError("El servicio no tiene una tarifa por hora configurada")
        hourly_rate = Decimal(service.hourly_rate)

        total = (hourly_rate * hours + materials).quantize(currency_quantum, rounding=ROUND_HALF_UP)

        if budget.responded and budget.slots:
            logger.info(f"🔄 Budget {budget.id} re-quoted; clearing {len(budget.slots)} selected slot(s)")
            self.repo.replace_slots(self.db, budget, [])

        budget.solution_description = solution
        budget.estimated_hours = hours
        budget.materials_cost = materials
        budget.hourly_rate = hourly_rate
        budget.total = total
        budget.responded = True
        budget.responded_at = utcnow()

        commit_or_conflict(self.db, "respond", BudgetState.PENDING.value)
        self.db.refresh(budget)
        logger.info(f"✅ Budget {budget.id} responded: {hours}h x {hourly_rate} + {materials} = {total}")
        return budget

    def is_responded(self, budget_id: int, user: CurrentUser) -> bool:
        return bool(self.get_budget(budget_id, user).responded)

    # ========================================================================
    # SCHEDULE SELECTION
    # ========================================================================

    def build_selector(self, budget: Budget) -> ScheduleSelector:
        """A selector seeded with the provider's availability and nothing selected"""
        return ScheduleSelector(
            budget.estimated_hours or 0,
            self._availability(budget),
            earliest_date=today(),
        )

    def get_availability(self, budget_id: int, user: CurrentUser) -> list[AvailabilityWindow]:
        return self._availability(self.get_budget(budget_id, user))

    def candidate_dates(self, budget_id: int, weekday: str, user: CurrentUser) -> dict:
        """Dates within the horizon on ``weekday`` plus the provider's windows that day"""
        budget = self.get_budget(budget_id, user)
        try:
            day = normalize_weekday(weekday)
        except ValueError as e:
            raise ValidationError(str(e)) from e

        day_windows = windows_for_weekday(self._availability(budget), day)
        dates = list(propose_candidate_dates(day, CANDIDATE_DATES_HORIZON_DAYS, start=today())) if day_windows else []
        return {
            "weekday": day,
            "windows": [w.as_dict() for w in day_windows],
            "dates": dates,
            "hoursRemaining": self.hours_remaining(budget) or Decimal("0"),
        }

    def select_schedule(self, budget_id: int, data: ScheduleSelection, user: CurrentUser) -> Budget:
        """
        Replace the budget's selected slots.

        The submitted slots are replayed one by one through a fresh selector,
        so availability, overlap and remaining-hours rules are checked here
        regardless of what the client computed.
        """
        budget = self._get_for_update(budget_id)
        self._require_client(budget, user, "schedule")
        self._require_pending(budget, "select schedule")
        self._require_responded(budget, "select schedule")

        selector = self.build_selector(budget)
        for requested in data.slots:
            selector.add_slot(requested.date, requested.startTime, requested.endTime)

        self.repo.replace_slots(
            self.db,
            budget,
            [
                BudgetSlot(
                    slot_date=slot.slot_date,
                    start_time=format_hhmm(slot.start_time),
                    end_time=format_hhmm(slot.end_time),
                    duration_minutes=slot.duration_minutes,
                )
                for slot in selector.slots
            ],
        )
        budget.updated_at = utcnow()
        commit_or_conflict(self.db, "select schedule", BudgetState.PENDING.value)
        self.db.refresh(budget)
        logger.info(
            f"📅 Budget {budget.id}: {len(selector.slots)} slot(s) selected, {selector.hours_remaining}h remaining"
        )
        return budget

    # ========================================================================
    # DECISION
    # ========================================================================

    def approve_budget(self, budget_id: int, user: CurrentUser) -> tuple[Budget, list[Milestone]]:
        """
        Approve a fully scheduled budget and generate its milestones.

        The state change and the milestones commit together; any failure
        rolls both back and cancels escrows already opened for the batch.
        """
        if self.escrow is None:
            raise RuntimeError("BudgetService needs an escrow provider to approve budgets")

        budget = self._get_for_update(budget_id)
        self._require_client(budget, user, "approve")
        self._require_pending(budget, "approve")
        self._require_responded(budget, "approve")

        # Recomputed from persisted slots; never trust a client-side readiness flag
        required = hours_to_minutes(budget.estimated_hours)
        allocated = Decimal(budget.allocated_minutes)
        if allocated != required:
            remaining = minutes_to_hours(required - allocated)
            logger.warning(f"⚠️ Budget {budget.id} approval blocked: {remaining}h unallocated")
            self.db.rollback()
            raise IncompleteScheduleError(remaining)

        budget.state = BudgetState.APPROVED.value
        budget.decided_at = utcnow()

        generator = MilestoneGenerator(self.escrow)
        try:
            milestones = generator.generate(budget)
        except Exception:
            self.db.rollback()
            raise

        self.milestone_repo.add_milestones(self.db, milestones)
        try:
            commit_or_conflict(self.db, "approve", BudgetState.PENDING.value)
        except Exception:
            self.db.rollback()
            generator.compensate([m.escrow_ref for m in milestones])
            raise

        self.db.refresh(budget)
        logger.info(f"✅ Budget {budget.id} approved with {len(milestones)} milestone(s), total {budget.total}")
        return budget, milestones

    def reject_budget(self, budget_id: int, user: CurrentUser) -> Budget:
        budget = self._get_for_update(budget_id)
        self._require_client(budget, user, "reject")
        self._require_pending(budget, "reject")

        budget.state = BudgetState.REJECTED.value
        budget.decided_at = utcnow()
        commit_or_conflict(self.db, "reject", BudgetState.PENDING.value)
        self.db.refresh(budget)
        logger.info(f"❌ Budget {budget.id} rejected by client {user.id}")
        return budget

    def delete_budget(self, budget_id: int, user: CurrentUser) -> None:
        budget = self._get_for_update(budget_id)
        self._require_client(budget, user, "delete")
        self._require_pending(budget, "delete")

        self.repo.delete_budget(self.db, budget)
        commit_or_conflict(self.db, "delete", BudgetState.PENDING.value)
        logger.info(f"🗑️ Budget {budget_id} deleted by client {user.id}")

    # ========================================================================
    # LISTINGS
    # ========================================================================

    @staticmethod
    def _filter_actionable(budgets: list[Budget], actionable: bool) -> list[Budget]:
        if not actionable:
            return budgets
        return [b for b in budgets if b.is_actionable]

    def list_by_client(self, client_id: int, user: CurrentUser, actionable: bool = False) -> list[Budget]:
        if not (user.is_admin or user.id == client_id):
            raise AuthorizationError("You can only list your own budgets")
        return self._filter_actionable(self.repo.get_budgets_by_client(self.db, client_id), actionable)

    def list_by_provider(self, provider_id: int, user: CurrentUser, actionable: bool = False) -> list[Budget]:
        if not (user.is_admin or user.id == provider_id):
            raise AuthorizationError("You can only list budgets addressed to you")
        return self._filter_actionable(self.repo.get_budgets_by_provider(self.db, provider_id), actionable)

    def list_by_service(self, service_id: int, user: CurrentUser, actionable: bool = False) -> list[Budget]:
        service = self.repo.get_service_by_id(self.db, service_id)
        if not service:
            raise NotFoundError(f"Service {service_id} not found")
        if not (user.is_admin or user.id == service.user_id):
            raise AuthorizationError("Only the service owner can list its budgets")
        return self._filter_actionable(self.repo.get_budgets_by_service(self.db, service_id), actionable)

    def list_by_state(self, state: str, user: CurrentUser, actionable: bool = False) -> list[Budget]:
        if not user.is_admin:
            raise AuthorizationError("Listing budgets by state requires an admin")
        normalized = (state or "").strip().upper()
        if normalized not in {s.value for s in BudgetState}:
            raise ValidationError(f"Unknown budget state {state!r}")
        return self._filter_actionable(self.repo.get_budgets_by_state(self.db, normalized), actionable)
