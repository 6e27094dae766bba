"""
Collections Module

Daily collection work: installments due, payments received per day and the
end-of-day cash reconciliation ("cuadre de caja") of each collector.
"""

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional

from . import amortization
from .audit import AuditEventType, AuditTrail
from .currency import ZERO, round_money, sum_money, to_decimal
from .datastore import DataStore, new_id, utcnow
from .errors import ConflictError, InvalidStateError, NotFoundError, ValidationError
from .logging_config import get_logger, log_action
from .models import CashClosing, Client, ClosingState, LoanState, Payment, PaymentMethod
from .policy import Principal, can_review_cash_closing, require, scope_advisor_ids

logger = get_logger(__name__)


@dataclass
class PendingInstallment:
    """Next unpaid installment of an active loan that is already due"""
    prestamo_id: str
    cliente: Client
    numero_cuota: int
    total_cuotas: int
    monto_cuota: Decimal
    fecha_esperada: date
    dias_atraso: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "prestamo_id": self.prestamo_id,
            "cliente": {
                "id": self.cliente.id,
                "nombre": self.cliente.nombre,
                "apellido": self.cliente.apellido,
                "dni": self.cliente.dni,
                "telefono": self.cliente.telefono,
            },
            "numero_cuota": self.numero_cuota,
            "total_cuotas": self.total_cuotas,
            "monto_cuota": str(self.monto_cuota),
            "fecha_esperada": self.fecha_esperada.isoformat(),
            "dias_atraso": self.dias_atraso,
        }


class CollectionsManager:
    """Collections and cash reconciliation"""

    def __init__(
        self,
        store: DataStore,
        audit_trail: Optional[AuditTrail] = None,
        tolerance: Decimal = Decimal("1.00"),
        clock: Optional[Callable[[], datetime]] = None
    ):
        self.store = store
        self.audit = audit_trail
        self.tolerance = tolerance
        self.clock = clock or utcnow

    def _clients_in_scope(self, principal: Principal) -> Dict[str, Client]:
        scope = scope_advisor_ids(principal)
        return {
            c.id: c for c in self.store.list_clients()
            if scope is None or c.asesor_id in scope
        }

    def pending_installments(self, principal: Principal,
                             as_of: Optional[date] = None) -> List[PendingInstallment]:
        """
        Installments due on or before ``as_of`` for active loans the
        principal can see, most overdue first.
        """
        as_of = as_of or self.clock().date()
        clients = self._clients_in_scope(principal)
        result = []
        for loan in self.store.list_loans({"estado": LoanState.ACTIVO}):
            client = clients.get(loan.cliente_id)
            if client is None or loan.cuotas_pagadas >= loan.total_cuotas:
                continue
            due = amortization.next_due_date(loan.fecha_inicio, loan.frecuencia_pago,
                                             loan.cuotas_pagadas)
            if due > as_of:
                continue
            result.append(PendingInstallment(
                prestamo_id=loan.id,
                cliente=client,
                numero_cuota=loan.cuotas_pagadas + 1,
                total_cuotas=loan.total_cuotas,
                monto_cuota=amortization.compute_installment_amount(loan.monto_total,
                                                                    loan.total_cuotas),
                fecha_esperada=due,
                dias_atraso=(as_of - due).days
            ))
        result.sort(key=lambda p: p.dias_atraso, reverse=True)
        return result

    def payments_on(self, principal: Principal, day: date,
                    prestamo_id: Optional[str] = None) -> List[Payment]:
        """Payments recorded on ``day`` for loans in the principal's scope"""
        clients = self._clients_in_scope(principal)
        loan_ids = {
            loan.id for loan in self.store.list_loans()
            if loan.cliente_id in clients
        }
        filters = {"prestamo_id": prestamo_id} if prestamo_id else {}
        return [
            p for p in self.store.list_payments(filters)
            if p.prestamo_id in loan_ids and p.fecha_pago.date() == day
        ]

    def daily_summary(self, principal: Principal, day: date) -> Dict[str, Any]:
        """Totals per payment method for ``day``"""
        payments = self.payments_on(principal, day)
        by_method = {method.value: ZERO for method in PaymentMethod}
        for payment in payments:
            by_method[payment.metodo_pago.value] += payment.monto
        return {
            "fecha": day,
            "cantidad": len(payments),
            "total": sum_money(p.monto for p in payments),
            "por_metodo": {k: round_money(v) for k, v in by_method.items()},
        }

    def _collected_by(self, user_id: str, day: date) -> Decimal:
        return sum_money(
            p.monto for p in self.store.list_payments({"created_by": user_id})
            if p.fecha_pago.date() == day
        )

    def submit_cash_closing(
        self,
        principal: Principal,
        monto_efectivo,
        monto_yape,
        monto_transferencia,
        monto_otro,
        fecha: Optional[date] = None,
        comentarios: str = ""
    ) -> CashClosing:
        """
        Declare the money held at the end of the day.

        ``diferencia`` is what the principal collected in the system that day
        minus the declared total; closings whose absolute difference exceeds
        the tolerance are flagged for review.
        """
        amounts = {}
        for name, value in (("monto_efectivo", monto_efectivo), ("monto_yape", monto_yape),
                            ("monto_transferencia", monto_transferencia),
                            ("monto_otro", monto_otro)):
            amount = to_decimal(value, name)
            if amount < 0:
                raise ValidationError(f"{name} cannot be negative", field=name,
                                      code="invalid_amount")
            amounts[name] = round_money(amount)

        fecha = fecha or self.clock().date()
        pending = self.store.list_cash_closings({
            "usuario_id": principal.id,
            "fecha": fecha,
            "estado": ClosingState.PENDIENTE,
        })
        if pending:
            raise ConflictError(
                f"User {principal.id} already has a pending closing for {fecha}",
                user_message="There is already a pending cash closing for this day"
            )

        monto_total = sum_money(amounts.values())
        total_cobrado = self._collected_by(principal.id, fecha)
        diferencia = total_cobrado - monto_total
        now = self.clock()
        closing = CashClosing(
            id=new_id(),
            created_at=now,
            updated_at=now,
            usuario_id=principal.id,
            fecha=fecha,
            monto_total=monto_total,
            total_cobrado=total_cobrado,
            diferencia=diferencia,
            requiere_revision=abs(diferencia) > self.tolerance,
            comentarios=comentarios or "",
            **amounts
        )
        self.store.insert_cash_closing(closing)

        if self.audit:
            self.audit.log_event(
                event_type=AuditEventType.CASH_CLOSING_SUBMITTED,
                entity_type="cash_closing",
                entity_id=closing.id,
                metadata={"monto_total": monto_total, "diferencia": diferencia},
                user_id=principal.id
            )
        level = "warning" if closing.requiere_revision else "info"
        log_action(logger, level, "Cash closing submitted", user_id=principal.id,
                   action="submit_cash_closing", resource=f"cash_closing:{closing.id}",
                   extra={"diferencia": str(diferencia)})
        return closing

    def list_cash_closings(self, principal: Principal, estado: Optional[ClosingState] = None,
                           fecha: Optional[date] = None) -> List[CashClosing]:
        """Admins see every closing, everyone else only their own"""
        filters: Dict[str, Any] = {}
        if estado:
            filters["estado"] = estado
        if fecha:
            filters["fecha"] = fecha
        if not can_review_cash_closing(principal):
            filters["usuario_id"] = principal.id
        return self.store.list_cash_closings(filters)

    def review_cash_closing(self, principal: Principal, closing_id: str, aprobar: bool,
                            comentario: Optional[str] = None) -> CashClosing:
        """Approve or reject a pending closing (admins only)"""
        require(can_review_cash_closing(principal), "review cash closing", principal, closing_id)
        closing = self.store.get_cash_closing(closing_id)
        if closing is None:
            raise NotFoundError("cash_closing", closing_id)
        if closing.estado != ClosingState.PENDIENTE:
            raise InvalidStateError(
                f"Cash closing {closing_id} is {closing.estado.value}",
                current_state=closing.estado.value,
                user_message="Only pending cash closings can be reviewed"
            )
        if not aprobar and not (comentario or "").strip():
            raise ValidationError("A comment is required to reject a cash closing",
                                  field="comentario", code="comment_required")

        estado = ClosingState.APROBADO if aprobar else ClosingState.RECHAZADO
        updated = self.store.update_cash_closing(closing_id, {
            "estado": estado,
            "revisado_por": principal.id,
            "fecha_revision": self.clock(),
            "comentario_revision": (comentario or "").strip() or None,
        })
        if self.audit:
            self.audit.log_event(
                event_type=AuditEventType.CASH_CLOSING_REVIEWED,
                entity_type="cash_closing",
                entity_id=closing_id,
                metadata={"estado": estado},
                user_id=principal.id
            )
        return updated
