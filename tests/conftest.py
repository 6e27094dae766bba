"""
Shared fixtures: in-memory storage, a fixed clock and a small staff hierarchy

    admin (admin_sistema)
    manager (administrador)
    supervisor -> advisor
    other_advisor (no supervisor)
"""

import pytest
from datetime import date, datetime, timedelta, timezone
from types import SimpleNamespace

from microfinance.audit import AuditTrail
from microfinance.clients import ClientManager
from microfinance.datastore import DataStore
from microfinance.loans import LoanCoordinator
from microfinance.policy import Role
from microfinance.storage import InMemoryStorage
from microfinance.users import StaticIdentityProvider, UserManager


ADMIN_PASSWORD = "admin-password-1"


class FixedClock:
    """Callable clock that only moves when told to"""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, days: int = 0, hours: int = 0) -> None:
        self.now = self.now + timedelta(days=days, hours=hours)


@pytest.fixture
def storage():
    """Create in-memory storage for tests"""
    return InMemoryStorage()


@pytest.fixture
def transactions(storage, monkeypatch):
    """Names of the transaction calls made on the storage from now on"""
    calls = []

    def track(name):
        original = getattr(storage, name)

        def tracked():
            calls.append(name)
            return original()
        return tracked

    for name in ("begin_transaction", "commit", "rollback"):
        monkeypatch.setattr(storage, name, track(name))
    return calls


@pytest.fixture
def store(storage):
    return DataStore(storage)


@pytest.fixture
def audit(storage):
    """Create audit trail for tests"""
    return AuditTrail(storage)


@pytest.fixture
def clock():
    return FixedClock(datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc))


@pytest.fixture
def user_manager(store, audit):
    return UserManager(store, audit)


@pytest.fixture
def staff(user_manager):
    """Users and resolved principals of the standard hierarchy"""
    admin = user_manager.bootstrap_admin("admin@example.com", "Ana", "Rojas", ADMIN_PASSWORD)
    admin_p = user_manager.get_principal(admin.id)
    manager = user_manager.create_user(admin_p, "manager@example.com", "Mario", "Diaz",
                                       Role.ADMIN)
    supervisor = user_manager.create_user(admin_p, "supervisor@example.com", "Sara", "Vega",
                                          Role.SUPERVISOR)
    advisor = user_manager.create_user(admin_p, "advisor@example.com", "Luis", "Paz",
                                       Role.ADVISOR, supervisor_id=supervisor.id)
    other_advisor = user_manager.create_user(admin_p, "other@example.com", "Rosa", "Leon",
                                             Role.ADVISOR)
    return SimpleNamespace(
        admin=admin,
        manager=manager,
        supervisor=supervisor,
        advisor=advisor,
        other_advisor=other_advisor,
        admin_p=admin_p,
        manager_p=user_manager.get_principal(manager.id),
        supervisor_p=user_manager.get_principal(supervisor.id),
        advisor_p=user_manager.get_principal(advisor.id),
        other_advisor_p=user_manager.get_principal(other_advisor.id),
    )


@pytest.fixture
def client_manager(store, audit):
    return ClientManager(store, audit)


@pytest.fixture
def coordinator(store, audit, staff, clock):
    """Coordinator whose default principal is the system administrator"""
    return LoanCoordinator(store, StaticIdentityProvider(staff.admin_p), audit, clock=clock)


@pytest.fixture
def make_client(client_manager, staff):
    """Factory for clients owned by an advisor"""
    counter = {"n": 0}

    def _make(owner=None, **overrides):
        counter["n"] += 1
        principal = owner or staff.advisor_p
        data = {
            "dni": f"{40000000 + counter['n']:08d}",
            "nombre": "Carmen",
            "apellido": f"Torres{counter['n']}",
            "telefono": "987654321",
            "direccion": "Av. Grau 123",
        }
        data.update(overrides)
        return client_manager.create_client(principal, **data)

    return _make


@pytest.fixture
def make_active_loan(coordinator, staff):
    """Factory for approved loans"""

    def _make(client, monto="1000", interes="10", frecuencia="diario", total_cuotas=30,
              fecha_inicio=None):
        loan = coordinator.submit(client.id, monto, interes, frecuencia, total_cuotas,
                                  principal=staff.admin_p, fecha_inicio=fecha_inicio)
        return coordinator.approve(loan.id, principal=staff.admin_p)

    return _make


@pytest.fixture
def today(clock) -> date:
    return clock().date()
