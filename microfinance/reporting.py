"""
Reporting Module

Dashboard portfolio summary computed from stored records. Every figure is
restricted to the clients the principal can see and uses derived loan
states, so overdue loans are counted as ``atrasado``.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional

from .currency import ZERO, round_money, sum_money
from .datastore import DataStore, utcnow
from .loans import summarize
from .models import LoanState
from .policy import Principal, scope_advisor_ids


def portfolio_summary(store: DataStore, principal: Principal,
                      now: Optional[datetime] = None) -> Dict[str, Any]:
    """
    Portfolio snapshot for the dashboard.

    Args:
        store: Data store
        principal: Acting principal, defines the visible scope
        now: Evaluation instant, defaults to the current UTC time

    Returns:
        Dict with client count, loans per derived state, outstanding
        portfolio, overdue portfolio, delinquency rate and today's collections
    """
    now = now or utcnow()
    scope = scope_advisor_ids(principal)
    clients = {
        c.id: c for c in store.list_clients()
        if scope is None or c.asesor_id in scope
    }

    por_estado = {state.value: 0 for state in LoanState}
    cartera = ZERO
    cartera_atrasada = ZERO
    loan_ids = set()
    for loan in store.list_loans():
        client = clients.get(loan.cliente_id)
        if client is None:
            continue
        loan_ids.add(loan.id)
        summary = summarize(loan, client, now)
        por_estado[summary.estado.value] += 1
        if summary.estado in (LoanState.ACTIVO, LoanState.ATRASADO):
            cartera += summary.saldo_pendiente
            if summary.estado == LoanState.ATRASADO:
                cartera_atrasada += summary.saldo_pendiente

    today = now.date()
    cobrado_hoy = [
        p for p in store.list_payments()
        if p.prestamo_id in loan_ids and p.fecha_pago.date() == today
    ]

    morosidad = ZERO
    if cartera > 0:
        morosidad = round_money(cartera_atrasada / cartera * Decimal("100"))

    return {
        "fecha": today,
        "total_clientes": len(clients),
        "prestamos_por_estado": por_estado,
        "prestamos_vigentes": por_estado[LoanState.ACTIVO.value] + por_estado[LoanState.ATRASADO.value],
        "cartera_total": round_money(cartera),
        "cartera_atrasada": round_money(cartera_atrasada),
        "tasa_morosidad": morosidad,
        "cobrado_hoy": sum_money(p.monto for p in cobrado_hoy),
        "pagos_hoy": len(cobrado_hoy),
    }
