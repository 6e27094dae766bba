"""
Data Store Module

Typed record access over a StorageInterface backend. This is the only place
that knows table names; managers and the loan coordinator receive a
DataStore instance and never touch the backend directly.
"""

import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Type, TypeVar

from .errors import ConflictError, NotFoundError
from .models import (
    CashClosing, Client, FinancialTransaction, Goal, Loan, Payment, User
)
from .policy import Role
from .storage import StorageInterface, StorageRecord, serialize_value


R = TypeVar("R", bound=StorageRecord)


class Tables:
    USERS = "usuarios"
    CLIENTS = "clientes"
    LOANS = "prestamos"
    PAYMENTS = "pagos"
    GOALS = "metas"
    CASH_CLOSINGS = "cuadres_caja"
    TRANSACTIONS = "transacciones"
    AUDIT = "audit_events"


def new_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DataStore:
    """
    Record-level operations for every table of the lending core.

    Filters are equality matches on stored field names; enum, Decimal and
    date values are serialized the same way records are.
    """

    def __init__(self, storage: StorageInterface):
        self.storage = storage

    def atomic(self):
        """Run a block of store operations as one transaction"""
        return self.storage.atomic()

    # Generic helpers

    def _get(self, table: str, record_type: Type[R], record_id: str) -> Optional[R]:
        data = self.storage.load(table, record_id)
        if data is None:
            return None
        return record_type.from_dict(data)

    def _find(self, table: str, record_type: Type[R],
              filters: Optional[Dict[str, Any]] = None) -> List[R]:
        filters = {key: serialize_value(value) for key, value in (filters or {}).items()}
        records = [record_type.from_dict(data) for data in self.storage.find(table, filters)]
        records.sort(key=lambda r: r.created_at)
        return records

    def _insert(self, table: str, record: R) -> R:
        self.storage.save(table, record.id, record.to_dict())
        return record

    def _update(self, table: str, record_type: Type[R], entity: str, record_id: str,
                patch: Dict[str, Any]) -> R:
        data = self.storage.load(table, record_id)
        if data is None:
            raise NotFoundError(entity, record_id)
        data.update({key: serialize_value(value) for key, value in patch.items()})
        data["updated_at"] = utcnow().isoformat()
        # Validate before writing
        record = record_type.from_dict(data)
        self.storage.save(table, record_id, record.to_dict())
        return record

    # Clients

    def get_client(self, client_id: str) -> Optional[Client]:
        return self._get(Tables.CLIENTS, Client, client_id)

    def list_clients(self, filters: Optional[Dict[str, Any]] = None) -> List[Client]:
        return self._find(Tables.CLIENTS, Client, filters)

    def insert_client(self, client: Client) -> Client:
        return self._insert(Tables.CLIENTS, client)

    def update_client(self, client_id: str, patch: Dict[str, Any]) -> Client:
        return self._update(Tables.CLIENTS, Client, "client", client_id, patch)

    def delete_client(self, client_id: str) -> bool:
        return self.storage.delete(Tables.CLIENTS, client_id)

    # Loans

    def get_loan(self, loan_id: str) -> Optional[Loan]:
        return self._get(Tables.LOANS, Loan, loan_id)

    def list_loans(self, filters: Optional[Dict[str, Any]] = None) -> List[Loan]:
        return self._find(Tables.LOANS, Loan, filters)

    def insert_loan(self, loan: Loan) -> Loan:
        return self._insert(Tables.LOANS, loan)

    def update_loan(self, loan_id: str, patch: Dict[str, Any],
                    expected: Optional[Dict[str, Any]] = None) -> Loan:
        """
        Update a loan, optionally as a compare-and-swap.

        Args:
            loan_id: Loan to update
            patch: Field values to write
            expected: Field values that must still hold at write time

        Raises:
            NotFoundError: If the loan does not exist
            ConflictError: If ``expected`` no longer matches
        """
        if expected is None:
            return self._update(Tables.LOANS, Loan, "loan", loan_id, patch)

        changes = {key: serialize_value(value) for key, value in patch.items()}
        changes["updated_at"] = utcnow().isoformat()
        # Validate the resulting record before the swap
        current = self.storage.load(Tables.LOANS, loan_id)
        if current is None:
            raise NotFoundError("loan", loan_id)
        Loan.from_dict({**current, **changes})

        updated = self.storage.update_if(
            Tables.LOANS, loan_id,
            {key: serialize_value(value) for key, value in expected.items()},
            changes
        )
        if updated is None:
            if not self.storage.exists(Tables.LOANS, loan_id):
                raise NotFoundError("loan", loan_id)
            raise ConflictError(
                f"Loan {loan_id} was modified concurrently",
                user_message="The loan was modified by another operation. Please try again",
                details={"loan_id": loan_id, "expected": serialize_value(expected)}
            )
        return Loan.from_dict(updated)

    def delete_loan(self, loan_id: str) -> bool:
        return self.storage.delete(Tables.LOANS, loan_id)

    # Payments

    def list_payments_by_loan(self, loan_id: str) -> List[Payment]:
        return self._find(Tables.PAYMENTS, Payment, {"prestamo_id": loan_id})

    def list_payments(self, filters: Optional[Dict[str, Any]] = None) -> List[Payment]:
        return self._find(Tables.PAYMENTS, Payment, filters)

    def insert_payment(self, payment: Payment) -> Payment:
        return self._insert(Tables.PAYMENTS, payment)

    def delete_payment(self, payment_id: str) -> bool:
        return self.storage.delete(Tables.PAYMENTS, payment_id)

    # Users

    def get_user(self, user_id: str) -> Optional[User]:
        return self._get(Tables.USERS, User, user_id)

    def list_users(self, filters: Optional[Dict[str, Any]] = None) -> List[User]:
        return self._find(Tables.USERS, User, filters)

    def insert_user(self, user: User) -> User:
        return self._insert(Tables.USERS, user)

    def update_user(self, user_id: str, patch: Dict[str, Any]) -> User:
        return self._update(Tables.USERS, User, "user", user_id, patch)

    def list_advisors_under_supervisor(self, supervisor_id: str) -> List[User]:
        """Advisors whose supervisor_id is ``supervisor_id`` (one hop), active or not"""
        return self._find(Tables.USERS, User, {
            "rol": Role.ADVISOR,
            "supervisor_id": supervisor_id,
        })

    # Goals

    def get_goal(self, goal_id: str) -> Optional[Goal]:
        return self._get(Tables.GOALS, Goal, goal_id)

    def list_goals(self, filters: Optional[Dict[str, Any]] = None) -> List[Goal]:
        return self._find(Tables.GOALS, Goal, filters)

    def insert_goal(self, goal: Goal) -> Goal:
        return self._insert(Tables.GOALS, goal)

    def update_goal(self, goal_id: str, patch: Dict[str, Any]) -> Goal:
        return self._update(Tables.GOALS, Goal, "goal", goal_id, patch)

    # Cash closings

    def get_cash_closing(self, closing_id: str) -> Optional[CashClosing]:
        return self._get(Tables.CASH_CLOSINGS, CashClosing, closing_id)

    def list_cash_closings(self, filters: Optional[Dict[str, Any]] = None) -> List[CashClosing]:
        return self._find(Tables.CASH_CLOSINGS, CashClosing, filters)

    def insert_cash_closing(self, closing: CashClosing) -> CashClosing:
        return self._insert(Tables.CASH_CLOSINGS, closing)

    def update_cash_closing(self, closing_id: str, patch: Dict[str, Any]) -> CashClosing:
        return self._update(Tables.CASH_CLOSINGS, CashClosing, "cash_closing", closing_id, patch)

    # Financial transactions

    def list_transactions(self, filters: Optional[Dict[str, Any]] = None) -> List[FinancialTransaction]:
        return self._find(Tables.TRANSACTIONS, FinancialTransaction, filters)

    def insert_transaction(self, transaction: FinancialTransaction) -> FinancialTransaction:
        return self._insert(Tables.TRANSACTIONS, transaction)
