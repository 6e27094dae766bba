"""
Finance Module

Back-office income/expense ledger with per-category and per-account
balances. Restricted to administrators.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional

from .audit import AuditEventType, AuditTrail
from .currency import ZERO, round_money, sum_money, to_decimal
from .datastore import DataStore, new_id, utcnow
from .errors import ValidationError
from .logging_config import get_logger, log_action
from .models import CashAccount, FinancialTransaction, TransactionType, parse_enum
from .policy import Principal, can_manage_finances, require

logger = get_logger(__name__)


def _signed(transaction: FinancialTransaction) -> Decimal:
    if transaction.tipo == TransactionType.INGRESO:
        return transaction.monto
    return -transaction.monto


def account_balances(transactions: List[FinancialTransaction]) -> Dict[str, Decimal]:
    """Income minus expenses for every cash account"""
    balances = {account.value: ZERO for account in CashAccount}
    for t in transactions:
        balances[t.cuenta.value] += _signed(t)
    return {k: round_money(v) for k, v in balances.items()}


class FinanceManager:
    """Records financial transactions and builds reports"""

    def __init__(self, store: DataStore, audit_trail: Optional[AuditTrail] = None,
                 clock: Optional[Callable[[], datetime]] = None):
        self.store = store
        self.audit = audit_trail
        self.clock = clock or utcnow

    def record_transaction(self, principal: Principal, tipo, monto, categoria: str,
                           cuenta, descripcion: str = "",
                           fecha: Optional[date] = None) -> FinancialTransaction:
        """
        Record an income or expense.

        Args:
            principal: Acting principal (admins only)
            tipo: ingreso or egreso
            monto: Amount, > 0
            categoria: Free-form category
            cuenta: caja, yape, banco or otro
            descripcion: Optional description
            fecha: Transaction date, defaults to today

        Returns:
            Created FinancialTransaction
        """
        require(can_manage_finances(principal), "manage finances", principal)
        tipo = parse_enum(TransactionType, tipo, "tipo")
        cuenta = parse_enum(CashAccount, cuenta, "cuenta")
        amount = to_decimal(monto, "monto")
        if amount <= 0:
            raise ValidationError("monto must be greater than zero", field="monto",
                                  code="invalid_amount")
        if not (categoria or "").strip():
            raise ValidationError("categoria is required", field="categoria")

        now = self.clock()
        transaction = FinancialTransaction(
            id=new_id(),
            created_at=now,
            updated_at=now,
            tipo=tipo,
            monto=round_money(amount),
            categoria=categoria.strip(),
            cuenta=cuenta,
            fecha=fecha or now.date(),
            descripcion=descripcion or "",
            created_by=principal.id
        )
        self.store.insert_transaction(transaction)

        if self.audit:
            self.audit.log_event(
                event_type=AuditEventType.FINANCIAL_TRANSACTION_RECORDED,
                entity_type="transaction",
                entity_id=transaction.id,
                metadata={"tipo": tipo, "monto": transaction.monto, "cuenta": cuenta},
                user_id=principal.id
            )
        log_action(logger, "info", "Financial transaction recorded", user_id=principal.id,
                   action="record_transaction", resource=f"transaction:{transaction.id}")
        return transaction

    def list_transactions(
        self,
        principal: Principal,
        tipo=None,
        desde: Optional[date] = None,
        hasta: Optional[date] = None,
        categoria: Optional[str] = None,
        cuenta=None
    ) -> List[FinancialTransaction]:
        """Transactions filtered by type, date range, category and account, newest first"""
        require(can_manage_finances(principal), "view finances", principal)
        filters: Dict[str, Any] = {}
        if tipo:
            filters["tipo"] = parse_enum(TransactionType, tipo, "tipo")
        if cuenta:
            filters["cuenta"] = parse_enum(CashAccount, cuenta, "cuenta")
        if categoria:
            filters["categoria"] = categoria
        transactions = [
            t for t in self.store.list_transactions(filters)
            if (desde is None or t.fecha >= desde) and (hasta is None or t.fecha <= hasta)
        ]
        transactions.sort(key=lambda t: (t.fecha, t.created_at), reverse=True)
        return transactions

    def report(self, principal: Principal, desde: Optional[date] = None,
               hasta: Optional[date] = None) -> Dict[str, Any]:
        """
        Totals, balance, per-category distribution and per-account balances
        for the given period.
        """
        transactions = self.list_transactions(principal, desde=desde, hasta=hasta)
        ingresos = [t for t in transactions if t.tipo == TransactionType.INGRESO]
        egresos = [t for t in transactions if t.tipo == TransactionType.EGRESO]

        def by_category(items: List[FinancialTransaction]) -> Dict[str, Decimal]:
            totals: Dict[str, Decimal] = {}
            for t in items:
                totals[t.categoria] = totals.get(t.categoria, ZERO) + t.monto
            return {k: round_money(v) for k, v in sorted(totals.items())}

        total_ingresos = sum_money(t.monto for t in ingresos)
        total_egresos = sum_money(t.monto for t in egresos)
        return {
            "periodo": {"desde": desde, "hasta": hasta},
            "total_ingresos": total_ingresos,
            "total_egresos": total_egresos,
            "balance": total_ingresos - total_egresos,
            "ingresos_por_categoria": by_category(ingresos),
            "egresos_por_categoria": by_category(egresos),
            "saldos_por_cuenta": account_balances(transactions),
            "cantidad_transacciones": len(transactions),
        }

    def balance(self, principal: Principal) -> Dict[str, Any]:
        """Current overall balance and balance per account"""
        transactions = self.list_transactions(principal)
        total = sum_money(_signed(t) for t in transactions)
        return {"balance": total, "saldos_por_cuenta": account_balances(transactions)}
