"""Milestone service - Business logic for escrow-backed milestone execution"""

import logging
from decimal import Decimal
from typing import Optional

from sqlalchemy.orm import Session

from ...auth import CurrentUser
from ...errors import AuthorizationError, EscrowFailure, InvalidStateError, NotFoundError
from ...models_milestone import Milestone, MilestoneDispute, MilestoneState
from ...services.escrow_service import EscrowProvider
from ...shared.clock import utcnow
from ...shared.transactions import commit_or_conflict
from ..budgets.repository import BudgetRepository
from .repository import MilestoneRepository
from .schemas import DisputeCreate, MilestoneCancel, MilestoneComplete

logger = logging.getLogger(__name__)

PENDIENTE = MilestoneState.PENDIENTE.value
EN_PROGRESO = MilestoneState.EN_PROGRESO.value
COMPLETADO = MilestoneState.COMPLETADO.value
APROBADO_CLIENTE = MilestoneState.APROBADO_CLIENTE.value
PAGADO = MilestoneState.PAGADO.value
DISPUTADO = MilestoneState.DISPUTADO.value
CANCELADO = MilestoneState.CANCELADO.value


class MilestoneService:
    """Service layer for milestone business logic"""

    def __init__(self, db: Session, escrow: EscrowProvider):
        self.db = db
        self.escrow = escrow
        self.repo = MilestoneRepository()
        self.budget_repo = BudgetRepository()

    # ========================================================================
    # ACCESS HELPERS
    # ========================================================================

    def _get_for_update(self, milestone_id: int) -> Milestone:
        milestone = self.repo.get_milestone_by_id(self.db, milestone_id, for_update=True)
        if not milestone:
            raise NotFoundError(f"Milestone {milestone_id} not found")
        return milestone

    @staticmethod
    def _require_client(milestone: Milestone, user: CurrentUser, attempted: str) -> None:
        if milestone.budget.client_id != user.id:
            logger.warning(f"⚠️ User {user.id} tried to {attempted} milestone {milestone.id} as non-client")
            raise AuthorizationError(f"Only the budget's client can {attempted} this milestone")

    @staticmethod
    def _require_provider(milestone: Milestone, user: CurrentUser, attempted: str) -> None:
        if milestone.budget.provider_id != user.id:
            logger.warning(f"⚠️ User {user.id} tried to {attempted} milestone {milestone.id} as non-provider")
            raise AuthorizationError(f"Only the budget's provider can {attempted} this milestone")

    @staticmethod
    def _require_state(milestone: Milestone, allowed: set[str], attempted: str) -> None:
        """State is always read fresh from the locked row, never taken from the caller"""
        if milestone.state not in allowed:
            logger.warning(f"⚠️ Rejected {attempted} on milestone {milestone.id} in state {milestone.state}")
            raise InvalidStateError(attempted, milestone.state)

    @staticmethod
    def _is_party(milestone: Milestone, user: CurrentUser) -> bool:
        return user.is_admin or user.id in (milestone.budget.client_id, milestone.budget.provider_id)

    # ========================================================================
    # QUERIES
    # ========================================================================

    def get_milestone(self, milestone_id: int, user: CurrentUser) -> Milestone:
        milestone = self.repo.get_milestone_by_id(self.db, milestone_id)
        if not milestone:
            raise NotFoundError(f"Milestone {milestone_id} not found")
        if not self._is_party(milestone, user):
            raise AuthorizationError("You are not a party to this milestone")
        return milestone

    def get_status(self, milestone_id: int, user: CurrentUser) -> tuple[Milestone, Optional[MilestoneDispute]]:
        """The milestone plus its open dispute, if it is currently disputed"""
        milestone = self.get_milestone(milestone_id, user)
        open_dispute = None
        if milestone.state == DISPUTADO and milestone.disputes:
            open_dispute = milestone.disputes[-1]
        return milestone, open_dispute

    def list_by_budget(self, budget_id: int, user: CurrentUser) -> list[Milestone]:
        budget = self.budget_repo.get_budget_by_id(self.db, budget_id)
        if not budget:
            raise NotFoundError(f"Budget {budget_id} not found")
        if not (user.is_admin or user.id in (budget.client_id, budget.provider_id)):
            raise AuthorizationError("You are not a party to this budget")
        return self.repo.get_milestones_by_budget(self.db, budget_id)

    def list_by_client(self, client_id: int, user: CurrentUser) -> list[Milestone]:
        if not (user.is_admin or user.id == client_id):
            raise AuthorizationError("You can only list your own milestones")
        return self.repo.get_milestones_by_client(self.db, client_id)

    # ========================================================================
    # PROVIDER TRANSITIONS
    # ========================================================================

    def start_milestone(self, milestone_id: int, user: CurrentUser) -> Milestone:
        milestone = self._get_for_update(milestone_id)
        self._require_provider(milestone, user, "start")
        self._require_state(milestone, {PENDIENTE}, "start")

        milestone.state = EN_PROGRESO
        milestone.started_at = utcnow()
        commit_or_conflict(self.db, "start", PENDIENTE)
        self.db.refresh(milestone)
        logger.info(f"🚀 Milestone {milestone.id} started")
        return milestone

    def complete_milestone(
        self, milestone_id: int, user: CurrentUser, data: Optional[MilestoneComplete] = None
    ) -> Milestone:
        milestone = self._get_for_update(milestone_id)
        self._require_provider(milestone, user, "complete")
        self._require_state(milestone, {PENDIENTE, EN_PROGRESO}, "complete")

        previous = milestone.state
        milestone.state = COMPLETADO
        milestone.completed_at = utcnow()
        if data:
            milestone.completion_evidence = data.evidence
            milestone.completion_comment = data.comment
        commit_or_conflict(self.db, "complete", previous)
        self.db.refresh(milestone)
        logger.info(f"✅ Milestone {milestone.id} completed by provider {user.id}")
        return milestone

    # ========================================================================
    # CLIENT TRANSITIONS
    # ========================================================================

    def approve_milestone(self, milestone_id: int, user: CurrentUser) -> Milestone:
        milestone = self._get_for_update(milestone_id)
        self._require_client(milestone, user, "approve")
        self._require_state(milestone, {COMPLETADO}, "approve")

        milestone.state = APROBADO_CLIENTE
        milestone.client_approved_at = utcnow()
        commit_or_conflict(self.db, "approve", COMPLETADO)
        self.db.refresh(milestone)
        logger.info(f"👍 Milestone {milestone.id} approved by client {user.id}")
        return milestone

    def release_funds(self, milestone_id: int, user: CurrentUser) -> tuple[Milestone, Decimal]:
        """
        Release the milestone's escrow to the provider and mark it PAGADO.

        A failed release leaves the milestone in APROBADO_CLIENTE. Retrying is
        safe: the provider deduplicates releases of the same escrow reference,
        so a retry after a lost commit pays nothing twice.
        """
        milestone = self._get_for_update(milestone_id)
        self._require_client(milestone, user, "release funds for")
        self._require_state(milestone, {APROBADO_CLIENTE}, "release funds")

        try:
            self.escrow.release(milestone.escrow_ref)
        except EscrowFailure as e:
            self.db.rollback()
            logger.error(f"❌ Escrow release failed for milestone {milestone_id} (retryable={e.retryable}): {e}")
            raise

        milestone.state = PAGADO
        milestone.released_at = utcnow()
        commit_or_conflict(self.db, "release funds", APROBADO_CLIENTE)
        self.db.refresh(milestone)
        amount = Decimal(milestone.amount)
        logger.info(f"💸 Milestone {milestone.id} paid: {amount} released to provider {milestone.budget.provider_id}")
        return milestone, amount

    # ========================================================================
    # EITHER PARTY
    # ========================================================================

    def raise_dispute(self, milestone_id: int, user: CurrentUser, data: DisputeCreate) -> Milestone:
        milestone = self._get_for_update(milestone_id)
        if user.id not in (milestone.budget.client_id, milestone.budget.provider_id):
            raise AuthorizationError("Only the client or the provider can dispute this milestone")
        self._require_state(milestone, {COMPLETADO, APROBADO_CLIENTE}, "raise dispute")

        previous = milestone.state
        self.repo.add_dispute(
            self.db,
            milestone,
            raised_by=user.id,
            reason=data.reason,
            description=data.description,
            previous_state=previous,
        )
        milestone.state = DISPUTADO
        commit_or_conflict(self.db, "raise dispute", previous)
        self.db.refresh(milestone)
        logger.info(f"⚖️ Milestone {milestone.id} disputed by user {user.id}: {data.reason}")
        return milestone

    def cancel_milestone(
        self, milestone_id: int, user: CurrentUser, data: Optional[MilestoneCancel] = None
    ) -> Milestone:
        """Cancel a non-terminal milestone and void its escrow hold; nothing is paid out"""
        milestone = self._get_for_update(milestone_id)
        if not self._is_party(milestone, user):
            raise AuthorizationError("You are not a party to this milestone")
        self._require_state(milestone, {PENDIENTE, EN_PROGRESO, COMPLETADO, APROBADO_CLIENTE, DISPUTADO}, "cancel")

        try:
            self.escrow.cancel(milestone.escrow_ref)
        except EscrowFailure as e:
            self.db.rollback()
            logger.error(f"❌ Escrow cancel failed for milestone {milestone_id}: {e}")
            raise

        previous = milestone.state
        milestone.state = CANCELADO
        milestone.cancelled_at = utcnow()
        milestone.cancellation_reason = data.reason if data else None
        commit_or_conflict(self.db, "cancel", previous)
        self.db.refresh(milestone)
        logger.info(f"🛑 Milestone {milestone.id} cancelled by user {user.id} (was {previous})")
        return milestone
