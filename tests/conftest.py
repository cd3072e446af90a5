import threading
from datetime import date, timedelta
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from mercado_oficio import models, models_budget, models_milestone  # noqa: F401
from mercado_oficio.auth import CurrentUser, create_access_token
from mercado_oficio.database import Base, build_engine, get_db
from mercado_oficio.domain.budgets.schemas import BudgetCreate, BudgetRespond, ScheduleSelection
from mercado_oficio.domain.budgets.service import BudgetService
from mercado_oficio.domain.scheduling.schemas import SlotRequest
from mercado_oficio.errors import EscrowFailure
from mercado_oficio.main import app
from mercado_oficio.models import Service, User, UserRole
from mercado_oficio.services.escrow_service import EscrowProvider, get_escrow_provider

CLIENT_ID = 1
PROVIDER_ID = 2
OTHER_ID = 3
ADMIN_ID = 4

AVAILABILITY = {"lunes": "09:00-13:00", "miércoles": "14:00-18:00"}


def next_weekday(weekday_index: int, weeks_ahead: int = 0) -> date:
    """The first date strictly after today falling on ``weekday_index`` (Monday == 0)"""
    today = date.today()
    days = (weekday_index - today.weekday()) % 7 or 7
    return today + timedelta(days=days + 7 * weeks_ahead)


def slot(day: date, start: str, end: str) -> SlotRequest:
    return SlotRequest(date=day, startTime=start, endTime=end)


class FakeEscrowProvider(EscrowProvider):
    """Records every call; can be told to fail opening after N escrows or on release"""

    def __init__(self):
        self.opened: list[tuple[str, Decimal, str]] = []
        self.released: list[str] = []
        self.cancelled: list[str] = []
        self.fail_open_after = None
        self.release_error = None
        # Optional threading.Barrier every caller must reach before an escrow opens
        self.open_gate = None
        self._lock = threading.Lock()

    def open_escrow(self, amount, reference):
        if self.open_gate is not None:
            self.open_gate.wait(timeout=10)
        with self._lock:
            if self.fail_open_after is not None and len(self.opened) >= self.fail_open_after:
                raise EscrowFailure("escrow provider timed out", retryable=True)
            escrow_ref = f"esc-{len(self.opened) + 1}"
            self.opened.append((escrow_ref, amount, reference))
        return escrow_ref

    def release(self, escrow_ref):
        if self.release_error is not None:
            raise self.release_error
        self.released.append(escrow_ref)

    def cancel(self, escrow_ref):
        self.cancelled.append(escrow_ref)


# -----------------------------
# Database
# -----------------------------


@pytest.fixture
def session_factory(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'test.db'}")
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    db = factory()
    db.add_all(
        [
            User(id=CLIENT_ID, email="cliente@example.com", first_name="Ana", role=UserRole.CLIENTE.value),
            User(id=PROVIDER_ID, email="plomero@example.com", first_name="Luis", role=UserRole.TRABAJADOR.value),
            User(id=OTHER_ID, email="otro@example.com", first_name="Eva", role=UserRole.CLIENTE.value),
            User(id=ADMIN_ID, email="admin@example.com", first_name="Root", role=UserRole.ADMIN.value),
        ]
    )
    db.flush()
    db.add(
        Service(
            id=1,
            user_id=PROVIDER_ID,
            trade_name="Plomero",
            description="Reparaciones de plomería",
            hourly_rate=Decimal("25"),
            availability=AVAILABILITY,
        )
    )
    db.commit()
    db.close()

    yield factory
    engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def escrow():
    return FakeEscrowProvider()


@pytest.fixture
def budget_service(db, escrow):
    return BudgetService(db, escrow)


# -----------------------------
# Callers
# -----------------------------


@pytest.fixture
def client_user():
    return CurrentUser(id=CLIENT_ID, role=UserRole.CLIENTE.value)


@pytest.fixture
def provider_user():
    return CurrentUser(id=PROVIDER_ID, role=UserRole.TRABAJADOR.value)


@pytest.fixture
def other_user():
    return CurrentUser(id=OTHER_ID, role=UserRole.CLIENTE.value)


@pytest.fixture
def admin_user():
    return CurrentUser(id=ADMIN_ID, role=UserRole.ADMIN.value)


# -----------------------------
# Budgets in each stage
# -----------------------------


@pytest.fixture
def pending_budget(budget_service, client_user):
    return budget_service.create_budget(
        BudgetCreate(serviceId=1, problemDescription="Leaking kitchen faucet"), client_user
    )


@pytest.fixture
def responded_budget(budget_service, pending_budget, provider_user):
    return budget_service.respond_to_budget(
        pending_budget.id,
        BudgetRespond(
            estimatedHours=Decimal("4"),
            materialsCost=Decimal("50"),
            solutionDescription="Cambiar el cartucho y los flexibles",
        ),
        provider_user,
    )


@pytest.fixture
def scheduled_budget(budget_service, responded_budget, client_user):
    """4h quote covered by 2h on a Monday and 2h on a Wednesday"""
    return budget_service.select_schedule(
        responded_budget.id,
        ScheduleSelection(
            slots=[
                slot(next_weekday(2), "14:00", "16:00"),
                slot(next_weekday(0), "09:00", "11:00"),
            ]
        ),
        client_user,
    )


@pytest.fixture
def approved(budget_service, scheduled_budget, client_user):
    """(budget, milestones) for an approved budget"""
    return budget_service.approve_budget(scheduled_budget.id, client_user)


# -----------------------------
# HTTP
# -----------------------------


def auth_headers(user_id: int, role: str) -> dict:
    return {"Authorization": f"Bearer {create_access_token(user_id, role)}"}


@pytest.fixture
def api(session_factory, escrow):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_escrow_provider] = lambda: escrow
    yield TestClient(app)
    app.dependency_overrides.clear()
