"""
Loan Module

Loan lifecycle coordination: submission, approval or rejection, payment
posting, term edits and deletion, plus read models that carry the derived
status (``atrasado`` is never stored).

State machine::

    pendiente -> activo -> completado
              -> rechazado

Payment posting writes the payment first and then advances the loan with a
compare-and-swap on ``cuotas_pagadas``/``estado``. When the loan update fails
the payment is deleted again; if that delete fails too a StoreFailureError
is raised. Failures are never retried here.
"""

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional, Tuple

from . import amortization
from .audit import AuditEventType, AuditTrail
from .currency import to_decimal
from .datastore import DataStore, new_id, utcnow
from .errors import (
    ConflictError, InvalidStateError, NotFoundError, StoreFailureError, ValidationError
)
from .logging_config import get_logger, log_action
from .models import Client, Frequency, Loan, LoanState, Payment, PaymentMethod, parse_enum
from .policy import (
    Principal, can_approve_or_reject_loan, can_delete_loan, can_post_payment,
    can_read_loan, can_submit_loan, can_write_loan, require, scope_advisor_ids
)
from .users import IdentityProvider

logger = get_logger(__name__)


@dataclass
class LoanSummary:
    """Stored loan plus the values derived from it at read time"""
    loan: Loan
    cliente: Optional[Client]
    estado: LoanState
    monto_cuota: Decimal
    proxima_fecha_pago: Optional[date]
    dias_atraso: int
    saldo_pendiente: Decimal

    def to_dict(self) -> Dict[str, Any]:
        data = self.loan.to_dict()
        data.update({
            "estado": self.estado.value,
            "estado_registrado": self.loan.estado.value,
            "monto_cuota": str(self.monto_cuota),
            "proxima_fecha_pago": (
                self.proxima_fecha_pago.isoformat() if self.proxima_fecha_pago else None
            ),
            "dias_atraso": self.dias_atraso,
            "saldo_pendiente": str(self.saldo_pendiente),
        })
        if self.cliente is not None:
            data["cliente"] = {
                "id": self.cliente.id,
                "dni": self.cliente.dni,
                "nombre": self.cliente.nombre,
                "apellido": self.cliente.apellido,
                "telefono": self.cliente.telefono,
                "asesor_id": self.cliente.asesor_id,
            }
        return data


def summarize(loan: Loan, cliente: Optional[Client], now: datetime) -> LoanSummary:
    """Build the read model of ``loan`` as of ``now``"""
    estado = amortization.derive_status(loan, None, now)
    in_repayment = estado in (LoanState.ACTIVO, LoanState.ATRASADO)
    return LoanSummary(
        loan=loan,
        cliente=cliente,
        estado=estado,
        monto_cuota=amortization.compute_installment_amount(loan.monto_total, loan.total_cuotas),
        proxima_fecha_pago=(
            amortization.next_due_date(loan.fecha_inicio, loan.frecuencia_pago, loan.cuotas_pagadas)
            if in_repayment else None
        ),
        dias_atraso=(
            amortization.days_overdue(loan.fecha_inicio, loan.frecuencia_pago,
                                      loan.cuotas_pagadas, now)
            if in_repayment else 0
        ),
        saldo_pendiente=amortization.remaining_balance(
            loan.monto_total, loan.total_cuotas, loan.cuotas_pagadas
        ),
    )


class LoanCoordinator:
    """
    Orchestrates loan state transitions.

    Every operation takes an optional ``principal``; when omitted the
    identity provider's current principal acts. The policy is consulted
    before any write, so an UnauthorizedError leaves the store untouched.
    """

    def __init__(
        self,
        store: DataStore,
        identity: IdentityProvider,
        audit_trail: Optional[AuditTrail] = None,
        clock: Optional[Callable[[], datetime]] = None
    ):
        self.store = store
        self.identity = identity
        self.audit = audit_trail
        self.clock = clock or utcnow

    def _principal(self, principal: Optional[Principal]) -> Principal:
        return principal if principal is not None else self.identity.get_current_principal()

    def _log_event(self, event_type: AuditEventType, entity_type: str, entity_id: str,
                   principal: Principal, **metadata) -> None:
        if self.audit:
            self.audit.log_event(
                event_type=event_type,
                entity_type=entity_type,
                entity_id=entity_id,
                metadata=metadata,
                user_id=principal.id
            )

    def _load(self, loan_id: str) -> Tuple[Loan, Client]:
        loan = self.store.get_loan(loan_id)
        if loan is None:
            raise NotFoundError("loan", loan_id)
        client = self.store.get_client(loan.cliente_id)
        if client is None:
            raise NotFoundError("client", loan.cliente_id)
        return loan, client

    @staticmethod
    def _validate_terms(monto, interes, frecuencia, total_cuotas):
        """Returns (monto, interes, monto_total, frequency, total_cuotas)"""
        frequency = parse_enum(Frequency, frecuencia, "frecuencia_pago")
        monto_total = amortization.compute_total(monto, interes)
        amortization.compute_installment_amount(monto_total, total_cuotas)
        return to_decimal(monto), to_decimal(interes), monto_total, frequency, total_cuotas

    # Transitions

    def submit(
        self,
        cliente_id: str,
        monto,
        interes,
        frecuencia,
        total_cuotas: int,
        principal: Optional[Principal] = None,
        fecha_inicio: Optional[date] = None
    ) -> Loan:
        """
        Submit a new loan application in state ``pendiente``.

        Args:
            cliente_id: Borrowing client
            monto: Principal amount, > 0
            interes: Flat interest percent, >= 0
            frecuencia: diario, semanal, quincenal or mensual
            total_cuotas: Number of installments, > 0
            principal: Acting principal
            fecha_inicio: Schedule start, defaults to today

        Returns:
            Persisted Loan

        Raises:
            ValidationError: On out-of-range terms (nothing is written)
            NotFoundError: If the client does not exist
            UnauthorizedError: If the principal cannot write the client's loans
        """
        principal = self._principal(principal)
        monto, interes, monto_total, frequency, total_cuotas = self._validate_terms(
            monto, interes, frecuencia, total_cuotas
        )
        client = self.store.get_client(cliente_id)
        if client is None:
            raise NotFoundError("client", cliente_id)
        require(can_submit_loan(principal, client), "submit loan", principal, cliente_id)

        now = self.clock()
        loan = Loan(
            id=new_id(),
            created_at=now,
            updated_at=now,
            cliente_id=cliente_id,
            monto=monto,
            interes=interes,
            monto_total=monto_total,
            frecuencia_pago=frequency,
            total_cuotas=total_cuotas,
            fecha_inicio=fecha_inicio or now.date(),
            created_by=principal.id
        )
        self.store.insert_loan(loan)

        self._log_event(AuditEventType.LOAN_SUBMITTED, "loan", loan.id, principal,
                        cliente_id=cliente_id, monto=monto, monto_total=monto_total,
                        total_cuotas=total_cuotas)
        log_action(logger, "info", "Loan submitted", user_id=principal.id,
                   action="submit_loan", resource=f"loan:{loan.id}",
                   extra={"monto_total": str(monto_total)})
        return loan

    def _decide(self, loan_id: str, principal: Principal, new_state: LoanState,
                comentario: Optional[str]) -> Loan:
        require(can_approve_or_reject_loan(principal), "decide loan", principal, loan_id)
        loan, _ = self._load(loan_id)
        if loan.estado != LoanState.PENDIENTE:
            raise InvalidStateError(
                f"Loan {loan_id} is {loan.estado.value}, expected pendiente",
                current_state=loan.estado.value,
                user_message="Only pending loans can be approved or rejected"
            )
        updated = self.store.update_loan(
            loan_id,
            {
                "estado": new_state,
                "aprobado_por": principal.id,
                "fecha_aprobacion": self.clock(),
                "comentario_aprobacion": comentario,
            },
            expected={"estado": LoanState.PENDIENTE}
        )
        event = (AuditEventType.LOAN_APPROVED if new_state == LoanState.ACTIVO
                 else AuditEventType.LOAN_REJECTED)
        self._log_event(event, "loan", loan_id, principal, comentario=comentario)
        log_action(logger, "info", f"Loan {new_state.value}", user_id=principal.id,
                   action=event.value, resource=f"loan:{loan_id}")
        return updated

    def approve(self, loan_id: str, principal: Optional[Principal] = None,
                comentario: Optional[str] = None) -> Loan:
        """Approve a pending loan (admins only); it becomes ``activo``"""
        principal = self._principal(principal)
        comentario = comentario.strip() if comentario and comentario.strip() else None
        return self._decide(loan_id, principal, LoanState.ACTIVO, comentario)

    def reject(self, loan_id: str, principal: Optional[Principal] = None,
               comentario: Optional[str] = None) -> Loan:
        """Reject a pending loan (admins only). A comment is mandatory."""
        principal = self._principal(principal)
        require(can_approve_or_reject_loan(principal), "reject loan", principal, loan_id)
        if not comentario or not comentario.strip():
            raise ValidationError("A comment is required to reject a loan",
                                  field="comentario", code="comment_required")
        return self._decide(loan_id, principal, LoanState.RECHAZADO, comentario.strip())

    def post_payment(
        self,
        loan_id: str,
        monto,
        metodo,
        principal: Optional[Principal] = None,
        comentario: Optional[str] = None,
        fecha_pago: Optional[datetime] = None
    ) -> Tuple[Payment, Loan]:
        """
        Record one installment payment on an active loan.

        Args:
            loan_id: Loan being paid
            monto: Amount received, > 0
            metodo: efectivo, yape, transferencia or otro
            principal: Acting principal
            comentario: Optional note
            fecha_pago: Payment timestamp, defaults to now

        Returns:
            Tuple of (Payment, updated Loan)

        Raises:
            ValidationError: If the amount or method is invalid
            UnauthorizedError: If the principal may not collect on this loan
            InvalidStateError: If the loan is not ``activo`` or fully paid
            ConflictError: If another update won the race (payment rolled back)
            StoreFailureError: If the store fails, including a failed rollback
        """
        principal = self._principal(principal)
        amount = to_decimal(monto, "monto")
        if amount <= 0:
            raise ValidationError("Payment amount must be greater than zero",
                                  field="monto", code="invalid_amount")
        method = parse_enum(PaymentMethod, metodo, "metodo_pago")

        loan, client = self._load(loan_id)
        require(can_post_payment(principal, loan, client), "post payment", principal, loan_id)
        if loan.estado != LoanState.ACTIVO:
            raise InvalidStateError(
                f"Loan {loan_id} is {loan.estado.value}, payments need an active loan",
                current_state=loan.estado.value,
                user_message="Payments can only be posted on active loans"
            )
        if loan.cuotas_pagadas >= loan.total_cuotas:
            raise InvalidStateError(
                f"Loan {loan_id} has no installments left",
                current_state=loan.estado.value,
                user_message="All installments of this loan are already paid"
            )

        now = self.clock()
        payment = Payment(
            id=new_id(),
            created_at=now,
            updated_at=now,
            prestamo_id=loan_id,
            monto=amount,
            fecha_pago=fecha_pago or now,
            metodo_pago=method,
            comentario=comentario,
            created_by=principal.id
        )
        self.store.insert_payment(payment)

        cuotas_pagadas = loan.cuotas_pagadas + 1
        nuevo_estado = (LoanState.COMPLETADO if cuotas_pagadas == loan.total_cuotas
                        else LoanState.ACTIVO)
        try:
            updated = self.store.update_loan(
                loan_id,
                {"cuotas_pagadas": cuotas_pagadas, "estado": nuevo_estado},
                expected={"cuotas_pagadas": loan.cuotas_pagadas, "estado": LoanState.ACTIVO}
            )
        except Exception as e:
            self._compensate(payment, principal, e)
            raise

        self._log_event(AuditEventType.PAYMENT_POSTED, "payment", payment.id, principal,
                        prestamo_id=loan_id, monto=amount, metodo_pago=method,
                        cuota=cuotas_pagadas)
        if nuevo_estado == LoanState.COMPLETADO:
            self._log_event(AuditEventType.LOAN_COMPLETED, "loan", loan_id, principal,
                            total_cuotas=loan.total_cuotas)
        log_action(logger, "info", "Payment posted", user_id=principal.id,
                   action="post_payment", resource=f"loan:{loan_id}",
                   extra={"payment_id": payment.id, "monto": str(amount),
                          "cuotas_pagadas": cuotas_pagadas, "estado": nuevo_estado.value})
        return payment, updated

    def _compensate(self, payment: Payment, principal: Principal, cause: Exception) -> None:
        """Delete a just-inserted payment after the loan update failed"""
        log_action(logger, "warning", "Loan update failed, rolling back payment",
                   user_id=principal.id, action="rollback_payment",
                   resource=f"loan:{payment.prestamo_id}",
                   extra={"payment_id": payment.id, "cause": type(cause).__name__})
        try:
            self.store.delete_payment(payment.id)
        except Exception as rollback_error:
            logger.error("Payment rollback failed for %s", payment.id, exc_info=True)
            raise StoreFailureError(
                "Payment was recorded but the loan was not updated and the rollback failed",
                {
                    "payment_id": payment.id,
                    "loan_id": payment.prestamo_id,
                    "cause": str(cause),
                    "rollback_error": str(rollback_error),
                }
            ) from rollback_error
        self._log_event(AuditEventType.PAYMENT_ROLLED_BACK, "payment", payment.id, principal,
                        prestamo_id=payment.prestamo_id, cause=type(cause).__name__)

    def update_terms(
        self,
        loan_id: str,
        principal: Optional[Principal] = None,
        monto=None,
        interes=None,
        total_cuotas: Optional[int] = None,
        frecuencia=None,
        fecha_inicio: Optional[date] = None
    ) -> Loan:
        """
        Edit the terms of a pending or active loan. ``monto_total`` is
        always recomputed from the resulting ``monto`` and ``interes``.
        """
        principal = self._principal(principal)
        loan, client = self._load(loan_id)
        require(can_write_loan(principal, loan, client), "update loan", principal, loan_id)
        if loan.estado.is_terminal:
            raise InvalidStateError(
                f"Loan {loan_id} is {loan.estado.value} and cannot be modified",
                current_state=loan.estado.value,
                user_message="Completed or rejected loans cannot be modified"
            )

        new_monto, new_interes, monto_total, frequency, cuotas = self._validate_terms(
            loan.monto if monto is None else monto,
            loan.interes if interes is None else interes,
            loan.frecuencia_pago if frecuencia is None else frecuencia,
            loan.total_cuotas if total_cuotas is None else total_cuotas
        )
        if cuotas < loan.cuotas_pagadas:
            raise ValidationError(
                f"total_cuotas cannot be lower than the {loan.cuotas_pagadas} installments paid",
                field="total_cuotas", code="invalid_schedule"
            )
        patch = {
            "monto": new_monto,
            "interes": new_interes,
            "monto_total": monto_total,
            "frecuencia_pago": frequency,
            "total_cuotas": cuotas,
        }
        if fecha_inicio is not None:
            patch["fecha_inicio"] = fecha_inicio
        if loan.estado == LoanState.ACTIVO and cuotas == loan.cuotas_pagadas:
            patch["estado"] = LoanState.COMPLETADO

        updated = self.store.update_loan(
            loan_id, patch,
            expected={"cuotas_pagadas": loan.cuotas_pagadas, "estado": loan.estado}
        )
        self._log_event(AuditEventType.LOAN_UPDATED, "loan", loan_id, principal,
                        monto=new_monto, interes=new_interes, monto_total=monto_total,
                        total_cuotas=cuotas, frecuencia_pago=frequency)
        return updated

    def delete(self, loan_id: str, principal: Optional[Principal] = None) -> None:
        """
        Delete a loan (admins only).

        Raises:
            ConflictError: If any payment references the loan
        """
        principal = self._principal(principal)
        loan, client = self._load(loan_id)
        require(can_delete_loan(principal, loan, client), "delete loan", principal, loan_id)
        with self.store.atomic():
            payments = self.store.list_payments_by_loan(loan_id)
            if payments:
                raise ConflictError(
                    f"Loan {loan_id} has {len(payments)} payments",
                    user_message="Loans with registered payments cannot be deleted",
                    details={"payments": len(payments)}
                )
            self.store.delete_loan(loan_id)
        self._log_event(AuditEventType.LOAN_DELETED, "loan", loan_id, principal,
                        cliente_id=loan.cliente_id, estado=loan.estado)
        log_action(logger, "info", "Loan deleted", user_id=principal.id,
                   action="delete_loan", resource=f"loan:{loan_id}")

    # Reads

    def get_loan(self, loan_id: str, principal: Optional[Principal] = None) -> LoanSummary:
        principal = self._principal(principal)
        loan, client = self._load(loan_id)
        require(can_read_loan(principal, loan, client), "read loan", principal, loan_id)
        return summarize(loan, client, self.clock())

    def list_loans(
        self,
        principal: Optional[Principal] = None,
        estado=None,
        cliente_id: Optional[str] = None,
        search: Optional[str] = None
    ) -> List[LoanSummary]:
        """
        Loans visible to the principal, newest first.

        Args:
            principal: Acting principal
            estado: Filter on the derived state (``atrasado`` included)
            cliente_id: Only loans of this client
            search: Case-insensitive match on client name, surname or DNI
        """
        principal = self._principal(principal)
        wanted = parse_enum(LoanState, estado, "estado") if estado else None
        scope = scope_advisor_ids(principal)
        clients = {c.id: c for c in self.store.list_clients()}
        filters = {"cliente_id": cliente_id} if cliente_id else {}
        now = self.clock()
        term = search.strip().lower() if search else None

        result = []
        for loan in self.store.list_loans(filters):
            client = clients.get(loan.cliente_id)
            if client is None or (scope is not None and client.asesor_id not in scope):
                continue
            if term and not (term in client.nombre.lower() or term in client.apellido.lower()
                             or term in client.dni):
                continue
            summary = summarize(loan, client, now)
            if wanted and summary.estado != wanted:
                continue
            result.append(summary)
        result.sort(key=lambda s: s.loan.created_at, reverse=True)
        return result

    def get_payments(self, loan_id: str, principal: Optional[Principal] = None) -> List[Payment]:
        principal = self._principal(principal)
        loan, client = self._load(loan_id)
        require(can_read_loan(principal, loan, client), "read loan", principal, loan_id)
        return self.store.list_payments_by_loan(loan_id)

    def get_schedule(self, loan_id: str,
                     principal: Optional[Principal] = None) -> List[amortization.Installment]:
        principal = self._principal(principal)
        loan, client = self._load(loan_id)
        require(can_read_loan(principal, loan, client), "read loan", principal, loan_id)
        return amortization.build_schedule(loan.fecha_inicio, loan.frecuencia_pago,
                                           loan.total_cuotas, loan.monto_total,
                                           loan.cuotas_pagadas)

    @staticmethod
    def simulate(monto, interes, frecuencia, total_cuotas: int,
                 fecha_inicio: date) -> Dict[str, Any]:
        """Loan simulator: totals and the full schedule, nothing is stored"""
        frequency = parse_enum(Frequency, frecuencia, "frecuencia_pago")
        monto_total = amortization.compute_total(monto, interes)
        schedule = amortization.build_schedule(fecha_inicio, frequency, total_cuotas, monto_total)
        return {
            "monto": to_decimal(monto),
            "interes": to_decimal(interes),
            "monto_total": monto_total,
            "total_intereses": monto_total - to_decimal(monto),
            "monto_cuota": amortization.compute_installment_amount(monto_total, total_cuotas),
            "cronograma": schedule,
        }
