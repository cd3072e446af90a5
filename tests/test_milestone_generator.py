from datetime import date, datetime, time
from decimal import Decimal

import pytest
from conftest import FakeEscrowProvider

from mercado_oficio.domain.milestones.generator import MilestoneGenerator, plan_milestones
from mercado_oficio.domain.scheduling.selector import TimeSlot
from mercado_oficio.errors import EscrowFailure, NoScheduleError
from mercado_oficio.models_budget import Budget, BudgetSlot


def _slot(day, start, end):
    return TimeSlot(day, time.fromisoformat(start), time.fromisoformat(end))


def test_split_is_proportional_to_duration():
    plans = plan_milestones(
        Decimal("150"),
        [_slot(date(2030, 3, 4), "09:00", "12:00"), _slot(date(2030, 3, 6), "14:00", "15:00")],
    )

    assert [(p.sequence_number, p.percentage, p.amount) for p in plans] == [
        (1, Decimal("75.00"), Decimal("112.50")),
        (2, Decimal("25.00"), Decimal("37.50")),
    ]
    assert sum(p.amount for p in plans) == Decimal("150.00")


def test_rounding_remainder_goes_to_the_last_milestone():
    day = date(2030, 3, 4)
    plans = plan_milestones(
        Decimal("100"),
        [_slot(day, "08:00", "09:00"), _slot(day, "10:00", "11:00"), _slot(day, "12:00", "13:00")],
    )

    assert [p.percentage for p in plans] == [Decimal("33.33"), Decimal("33.33"), Decimal("33.34")]
    assert [p.amount for p in plans] == [Decimal("33.33"), Decimal("33.33"), Decimal("33.34")]
    assert sum(p.percentage for p in plans) == Decimal("100")
    assert sum(p.amount for p in plans) == Decimal("100")


@pytest.mark.parametrize("total", ["99.99", "0.05", "1234.57", "150"])
def test_sums_are_exact_for_awkward_totals(total):
    day = date(2030, 3, 4)
    slots = [
        _slot(day, "08:00", "08:20"),
        _slot(day, "09:00", "10:10"),
        _slot(date(2030, 3, 5), "09:00", "09:45"),
        _slot(date(2030, 3, 6), "15:00", "18:00"),
    ]

    plans = plan_milestones(Decimal(total), slots)

    assert sum(p.percentage for p in plans) == Decimal("100")
    assert sum(p.amount for p in plans) == Decimal(total)
    assert [p.sequence_number for p in plans] == [1, 2, 3, 4]


def test_milestones_follow_chronological_order_not_selection_order():
    later = _slot(date(2030, 3, 11), "09:00", "10:00")
    earlier_same_day = _slot(date(2030, 3, 4), "09:00", "10:00")
    earliest = _slot(date(2030, 3, 4), "07:00", "08:00")

    plans = plan_milestones(Decimal("90"), [later, earlier_same_day, earliest])

    assert [p.slot for p in plans] == [earliest, earlier_same_day, later]
    assert plans[0].description == "Sesión 1 de 3: 04/03/2030 07:00-08:00"


def test_precision_is_configurable():
    day = date(2030, 3, 4)
    plans = plan_milestones(
        Decimal("100"),
        [_slot(day, "08:00", "09:00"), _slot(day, "10:00", "11:00"), _slot(day, "12:00", "13:00")],
        percent_decimals=0,
        currency_decimals=0,
    )

    assert [p.percentage for p in plans] == [Decimal("33"), Decimal("33"), Decimal("34")]
    assert [p.amount for p in plans] == [Decimal("33"), Decimal("33"), Decimal("34")]


def test_no_slots_is_an_error():
    with pytest.raises(NoScheduleError):
        plan_milestones(Decimal("150"), [])


def _budget_with_slots(*slots):
    budget = Budget(id=7, total=Decimal("150.00"))
    budget.slots = [
        BudgetSlot(position=i, slot_date=d, start_time=s, end_time=e, duration_minutes=0)
        for i, (d, s, e) in enumerate(slots, start=1)
    ]
    return budget


def test_generate_opens_one_escrow_per_milestone():
    escrow = FakeEscrowProvider()
    budget = _budget_with_slots((date(2030, 3, 4), "09:00", "12:00"), (date(2030, 3, 6), "14:00", "15:00"))

    milestones = MilestoneGenerator(escrow).generate(budget)

    assert [m.escrow_ref for m in milestones] == ["esc-1", "esc-2"]
    assert [amount for _, amount, _ in escrow.opened] == [Decimal("112.50"), Decimal("37.50")]
    assert milestones[0].state == "PENDIENTE"
    assert milestones[0].scheduled_start == datetime(2030, 3, 4, 9, 0)
    assert milestones[0].estimated_completion == datetime(2030, 3, 4, 12, 0)
    assert milestones[1].budget_id == 7


def test_generate_cancels_opened_escrows_when_one_fails():
    escrow = FakeEscrowProvider()
    escrow.fail_open_after = 1
    budget = _budget_with_slots((date(2030, 3, 4), "09:00", "12:00"), (date(2030, 3, 6), "14:00", "15:00"))

    with pytest.raises(EscrowFailure):
        MilestoneGenerator(escrow).generate(budget)

    assert escrow.cancelled == ["esc-1"]
