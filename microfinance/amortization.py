"""
Amortization Engine Module

Pure flat-interest arithmetic: total payable, installment amounts, due-date
schedules and derived loan status. No I/O and no stored state; every value
here is recomputed from the loan's parameters on each call.

Money is Decimal rounded half-up to cents. Installment *i* (1-indexed) falls
due on ``fecha_inicio + i * frequency.days``.
"""

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import List, Optional, Sequence, Union

from .currency import CENT, round_money, to_decimal
from .errors import ValidationError
from .models import Frequency, Loan, LoanState

HUNDRED = Decimal("100")
MAX_PRINCIPAL = Decimal("1000000000")
MAX_INSTALLMENTS = 1000


@dataclass(frozen=True)
class Installment:
    """Single row of an installment schedule"""
    numero: int
    fecha: date
    monto: Decimal
    pagada: bool = False


def _as_frequency(frecuencia: Union[Frequency, str]) -> Frequency:
    if isinstance(frecuencia, Frequency):
        return frecuencia
    try:
        return Frequency(frecuencia)
    except ValueError:
        raise ValidationError(
            f"Unknown payment frequency: {frecuencia}",
            field="frecuencia_pago", code="invalid_schedule"
        )


def _as_count(total_cuotas, field: str = "total_cuotas") -> int:
    if isinstance(total_cuotas, bool) or not isinstance(total_cuotas, int) or total_cuotas <= 0:
        raise ValidationError(
            f"{field} must be a positive integer", field=field, code="invalid_schedule"
        )
    if total_cuotas > MAX_INSTALLMENTS:
        raise ValidationError(
            f"{field} cannot exceed {MAX_INSTALLMENTS}", field=field, code="invalid_schedule"
        )
    return total_cuotas


def _as_date(value: Union[date, datetime]) -> date:
    if isinstance(value, datetime):
        return value.date()
    return value


def compute_total(monto, interes) -> Decimal:
    """
    Total payable under flat interest.

    Args:
        monto: Principal, must be > 0 and at most MAX_PRINCIPAL
        interes: Interest rate in percent, must be >= 0

    Returns:
        ``monto * (1 + interes/100)`` rounded half-up to cents

    Raises:
        ValidationError: code ``invalid_amount`` on out-of-range inputs
    """
    monto = to_decimal(monto, "monto")
    interes = to_decimal(interes, "interes")
    if monto <= 0:
        raise ValidationError("monto must be greater than zero", field="monto", code="invalid_amount")
    if monto > MAX_PRINCIPAL:
        raise ValidationError(f"monto cannot exceed {MAX_PRINCIPAL}", field="monto",
                              code="invalid_amount")
    if interes < 0:
        raise ValidationError("interes cannot be negative", field="interes", code="invalid_amount")
    return round_money(monto * (1 + interes / HUNDRED))


def compute_installment_amount(monto_total, total_cuotas: int) -> Decimal:
    """Nominal installment: ``monto_total / total_cuotas`` rounded half-up to cents"""
    total_cuotas = _as_count(total_cuotas)
    return round_money(to_decimal(monto_total, "monto_total") / total_cuotas)


def installment_amounts(monto_total, total_cuotas: int) -> List[Decimal]:
    """
    Split ``monto_total`` into ``total_cuotas`` cent amounts that sum exactly
    to the total. Leftover cents go to the earliest installments, so every
    amount is within one cent of the nominal installment.
    """
    total_cuotas = _as_count(total_cuotas)
    cents = int(round_money(to_decimal(monto_total, "monto_total")) / CENT)
    base, remainder = divmod(cents, total_cuotas)
    return [
        (Decimal(base + (1 if i < remainder else 0)) * CENT).quantize(CENT)
        for i in range(total_cuotas)
    ]


def schedule_dates(fecha_inicio: date, frecuencia: Union[Frequency, str],
                   total_cuotas: int) -> List[date]:
    """Due dates of installments 1..total_cuotas"""
    step = _as_frequency(frecuencia).days
    total_cuotas = _as_count(total_cuotas)
    start = _as_date(fecha_inicio)
    return [start + timedelta(days=i * step) for i in range(1, total_cuotas + 1)]


def build_schedule(fecha_inicio: date, frecuencia: Union[Frequency, str],
                   total_cuotas: int, monto_total, cuotas_pagadas: int = 0) -> List[Installment]:
    """Full schedule with amounts and paid flags"""
    dates = schedule_dates(fecha_inicio, frecuencia, total_cuotas)
    amounts = installment_amounts(monto_total, total_cuotas)
    return [
        Installment(numero=i + 1, fecha=dates[i], monto=amounts[i], pagada=i < cuotas_pagadas)
        for i in range(total_cuotas)
    ]


def next_due_date(fecha_inicio: date, frecuencia: Union[Frequency, str],
                  cuotas_pagadas: int) -> date:
    """
    Due date of the next unpaid installment, i.e. installment
    ``cuotas_pagadas + 1`` of the schedule.
    """
    if cuotas_pagadas < 0:
        raise ValidationError("cuotas_pagadas cannot be negative", field="cuotas_pagadas")
    step = _as_frequency(frecuencia).days
    return _as_date(fecha_inicio) + timedelta(days=(cuotas_pagadas + 1) * step)


def days_overdue(fecha_inicio: date, frecuencia: Union[Frequency, str],
                 cuotas_pagadas: int, as_of: Union[date, datetime]) -> int:
    """Days elapsed since the next unpaid installment fell due (0 if not yet due)"""
    due = next_due_date(fecha_inicio, frecuencia, cuotas_pagadas)
    return max(0, (_as_date(as_of) - due).days)


def installments_due(fecha_inicio: date, frecuencia: Union[Frequency, str],
                     total_cuotas: int, as_of: Union[date, datetime]) -> int:
    """Number of installments whose due date is on or before ``as_of``"""
    step = _as_frequency(frecuencia).days
    total_cuotas = _as_count(total_cuotas)
    elapsed = (_as_date(as_of) - _as_date(fecha_inicio)).days
    return min(total_cuotas, max(0, elapsed // step))


def remaining_balance(monto_total, total_cuotas: int, cuotas_pagadas: int) -> Decimal:
    """Sum of the installments not yet paid, without building the schedule"""
    total_cuotas = _as_count(total_cuotas)
    paid = min(max(cuotas_pagadas, 0), total_cuotas)
    cents = int(round_money(to_decimal(monto_total, "monto_total")) / CENT)
    base, remainder = divmod(cents, total_cuotas)
    unpaid_cents = (total_cuotas - paid) * base + max(0, remainder - paid)
    return (Decimal(unpaid_cents) * CENT).quantize(CENT)


def derive_status(loan: Loan, payments: Optional[Sequence] = None,
                  now: Union[date, datetime, None] = None) -> LoanState:
    """
    Current lifecycle label of a loan.

    Args:
        loan: Stored loan record (never modified)
        payments: Payments posted on the loan; when given their count is the
            number of installments paid, otherwise ``loan.cuotas_pagadas``
        now: Reference instant for arrears detection

    Returns:
        ``completado`` once every installment is paid, the stored
        ``rechazado``/``pendiente`` state, ``atrasado`` when ``now`` is past
        the next due date, otherwise ``activo``
    """
    if now is None:
        raise ValidationError("A reference date is required to derive loan status", field="now")
    paid = len(payments) if payments is not None else loan.cuotas_pagadas
    if paid >= loan.total_cuotas or loan.estado == LoanState.COMPLETADO:
        return LoanState.COMPLETADO
    if loan.estado in (LoanState.RECHAZADO, LoanState.PENDIENTE):
        return loan.estado
    if _as_date(now) > next_due_date(loan.fecha_inicio, loan.frecuencia_pago, paid):
        return LoanState.ATRASADO
    return LoanState.ACTIVO
