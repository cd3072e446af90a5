"""
Milestone generation for an approved budget.

One milestone per selected slot, in chronological order. Each milestone's
share of the total is proportional to its slot's duration; the last one
absorbs rounding so percentages add to exactly 100 and amounts to exactly
the budget total.
"""

import logging
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Sequence

from ...config import CURRENCY_DECIMALS, MILESTONE_PERCENT_DECIMALS
from ...errors import NoScheduleError
from ...models_budget import Budget
from ...models_milestone import Milestone, MilestoneState
from ...services.escrow_service import EscrowProvider
from ...shared.validators import format_hhmm, parse_hhmm
from ..scheduling.selector import TimeSlot

logger = logging.getLogger(__name__)

HUNDRED = Decimal("100")


@dataclass(frozen=True)
class MilestonePlan:
    sequence_number: int
    slot: TimeSlot
    percentage: Decimal
    amount: Decimal
    description: str


def _quantum(decimals: int) -> Decimal:
    return Decimal(1).scaleb(-decimals)


def plan_milestones(
    total: Decimal,
    slots: Sequence[TimeSlot],
    percent_decimals: int = MILESTONE_PERCENT_DECIMALS,
    currency_decimals: int = CURRENCY_DECIMALS,
) -> list[MilestonePlan]:
    """
    Split ``total`` across ``slots`` by duration.

    Raises:
        NoScheduleError: If there are no slots to split across
    """
    if not slots:
        raise NoScheduleError("No hay horarios seleccionados para generar hitos")

    ordered = sorted(slots, key=lambda s: (s.slot_date, s.start_time))
    total_minutes = sum(slot.duration_minutes for slot in ordered)
    if total_minutes <= 0:
        raise NoScheduleError("Los horarios seleccionados no suman tiempo de trabajo")

    total = Decimal(total)
    pct_q = _quantum(percent_decimals)
    amount_q = _quantum(currency_decimals)
    count = len(ordered)

    plans = []
    pct_assigned = Decimal("0")
    amount_assigned = Decimal("0")
    for index, slot in enumerate(ordered, start=1):
        if index == count:
            percentage = HUNDRED - pct_assigned
            amount = total - amount_assigned
        else:
            percentage = (Decimal(slot.duration_minutes) / Decimal(total_minutes) * HUNDRED).quantize(
                pct_q, rounding=ROUND_HALF_UP
            )
            amount = (percentage / HUNDRED * total).quantize(amount_q, rounding=ROUND_HALF_UP)
        pct_assigned += percentage
        amount_assigned += amount

        description = (
            f"Sesión {index} de {count}: {slot.slot_date.strftime('%d/%m/%Y')} "
            f"{format_hhmm(slot.start_time)}-{format_hhmm(slot.end_time)}"
        )
        plans.append(
            MilestonePlan(
                sequence_number=index,
                slot=slot,
                percentage=percentage,
                amount=amount,
                description=description,
            )
        )
    return plans


class MilestoneGenerator:
    """Turns a budget's selected slots into escrow-backed milestones"""

    def __init__(
        self,
        escrow: EscrowProvider,
        percent_decimals: int = MILESTONE_PERCENT_DECIMALS,
        currency_decimals: int = CURRENCY_DECIMALS,
    ):
        self.escrow = escrow
        self.percent_decimals = percent_decimals
        self.currency_decimals = currency_decimals

    def generate(self, budget: Budget) -> list[Milestone]:
        """
        Build unsaved milestones for ``budget`` and open one escrow per milestone.

        If any escrow fails to open, the ones already opened are cancelled
        before the error propagates; the caller then rolls back its transaction.
        """
        slots = [
            TimeSlot(
                slot_date=s.slot_date,
                start_time=parse_hhmm(s.start_time),
                end_time=parse_hhmm(s.end_time),
            )
            for s in budget.slots
        ]
        plans = plan_milestones(
            Decimal(budget.total), slots, self.percent_decimals, self.currency_decimals
        )

        milestones: list[Milestone] = []
        opened: list[str] = []
        try:
            for plan in plans:
                escrow_ref = self.escrow.open_escrow(
                    plan.amount, reference=f"budget-{budget.id}-milestone-{plan.sequence_number}"
                )
                opened.append(escrow_ref)
                milestones.append(
                    Milestone(
                        budget_id=budget.id,
                        sequence_number=plan.sequence_number,
                        description=plan.description,
                        percentage=plan.percentage,
                        amount=plan.amount,
                        state=MilestoneState.PENDIENTE.value,
                        scheduled_start=plan.slot.starts_at,
                        estimated_completion=plan.slot.ends_at,
                        escrow_ref=escrow_ref,
                    )
                )
        except Exception:
            logger.error(
                f"❌ Milestone generation failed for budget {budget.id} after opening {len(opened)} escrow(s)"
            )
            self.compensate(opened)
            raise

        logger.info(f"✅ Planned {len(milestones)} milestone(s) for budget {budget.id}")
        return milestones

    def compensate(self, escrow_refs: Sequence[str]) -> None:
        """Cancel escrows that were opened for milestones that will never exist"""
        for escrow_ref in escrow_refs:
            try:
                self.escrow.cancel(escrow_ref)
            except Exception as e:
                # Left for manual reconciliation; the original failure is what the caller sees
                logger.error(f"❌ Could not cancel orphan escrow {escrow_ref}: {e}")
