"""
Test suite for the amortization engine

Flat-interest totals, installment rounding, due-date schedules and the
derived loan status. All arithmetic must be exact to the cent.
"""

import pytest
from datetime import date, datetime, timezone
from decimal import Decimal

from microfinance import amortization
from microfinance.errors import ValidationError
from microfinance.models import Frequency, Loan, LoanState


def _loan(estado=LoanState.ACTIVO, cuotas_pagadas=0, total_cuotas=30,
          frecuencia=Frequency.DIARIO, fecha_inicio=date(2024, 1, 1)):
    now = datetime(2024, 1, 1, tzinfo=timezone.utc)
    return Loan(
        id="LOAN001",
        created_at=now,
        updated_at=now,
        cliente_id="CLI001",
        monto=Decimal("1000"),
        interes=Decimal("10"),
        monto_total=Decimal("1100.00"),
        frecuencia_pago=frecuencia,
        total_cuotas=total_cuotas,
        fecha_inicio=fecha_inicio,
        cuotas_pagadas=cuotas_pagadas,
        estado=estado
    )


class TestComputeTotal:
    """Test flat-interest totals"""

    def test_reference_loan(self):
        """1000 at 10% is 1100.00"""
        assert amortization.compute_total(Decimal("1000"), Decimal("10")) == Decimal("1100.00")

    def test_zero_interest(self):
        assert amortization.compute_total("500", "0") == Decimal("500.00")

    def test_rounds_half_up_to_cents(self):
        """333.33 at 7.5% = 358.329... rounds to 358.33"""
        assert amortization.compute_total("333.33", "7.5") == Decimal("358.33")
        # 0.05 * 1.1 = 0.055 -> 0.06
        assert amortization.compute_total("0.05", "10") == Decimal("0.06")

    def test_deterministic(self):
        results = {amortization.compute_total("1234.56", "12.5") for _ in range(5)}
        assert results == {Decimal("1388.88")}

    def test_accepts_int_and_string_inputs(self):
        assert amortization.compute_total(1000, 10) == Decimal("1100.00")
        assert amortization.compute_total("1000.00", "10.0") == Decimal("1100.00")

    @pytest.mark.parametrize("monto", ["0", "-5", Decimal("-0.01")])
    def test_rejects_non_positive_principal(self, monto):
        with pytest.raises(ValidationError) as exc_info:
            amortization.compute_total(monto, "10")
        assert exc_info.value.code == "invalid_amount"
        assert exc_info.value.field == "monto"

    def test_rejects_negative_interest(self):
        with pytest.raises(ValidationError) as exc_info:
            amortization.compute_total("1000", "-1")
        assert exc_info.value.code == "invalid_amount"

    def test_rejects_non_numbers(self):
        with pytest.raises(ValidationError):
            amortization.compute_total("abc", "10")
        with pytest.raises(ValidationError):
            amortization.compute_total(None, "10")

    def test_rejects_principal_above_maximum(self):
        assert amortization.compute_total(amortization.MAX_PRINCIPAL, "0") == \
            amortization.MAX_PRINCIPAL
        with pytest.raises(ValidationError) as exc_info:
            amortization.compute_total("1e27", "10")
        assert exc_info.value.code == "invalid_amount"
        assert exc_info.value.field == "monto"

    def test_overflowing_interest_is_a_validation_error(self):
        with pytest.raises(ValidationError) as exc_info:
            amortization.compute_total("1000", "1e30")
        assert exc_info.value.code == "invalid_amount"


class TestInstallments:
    """Test installment amounts and the cent distribution"""

    def test_reference_installment(self):
        """1100 / 30 = 36.666... rounds to 36.67"""
        assert amortization.compute_installment_amount(Decimal("1100.00"), 30) == Decimal("36.67")

    def test_exact_division(self):
        assert amortization.compute_installment_amount("1200", 12) == Decimal("100.00")

    @pytest.mark.parametrize("total_cuotas", [0, -3, True, 2.5, "4"])
    def test_rejects_invalid_count(self, total_cuotas):
        with pytest.raises(ValidationError) as exc_info:
            amortization.compute_installment_amount("1100", total_cuotas)
        assert exc_info.value.code == "invalid_schedule"

    def test_count_limit(self):
        limit = amortization.MAX_INSTALLMENTS
        assert len(amortization.installment_amounts("1100.00", limit)) == limit
        with pytest.raises(ValidationError) as exc_info:
            amortization.schedule_dates(date(2024, 1, 1), "diario", limit + 1)
        assert exc_info.value.code == "invalid_schedule"
        assert exc_info.value.field == "total_cuotas"

    def test_nominal_sum_within_one_cent_per_installment(self):
        """The nominal installment times the count drifts at most n/2 cents"""
        nominal = amortization.compute_installment_amount("1100.00", 30)
        assert abs(nominal * 30 - Decimal("1100.00")) <= Decimal("0.01") * 30

    @pytest.mark.parametrize("monto_total,total_cuotas", [
        ("1100.00", 30), ("100.00", 3), ("0.10", 7), ("999.99", 12), ("5000.00", 1),
    ])
    def test_split_sums_exactly(self, monto_total, total_cuotas):
        amounts = amortization.installment_amounts(monto_total, total_cuotas)
        assert len(amounts) == total_cuotas
        assert sum(amounts) == Decimal(monto_total)
        assert max(amounts) - min(amounts) <= Decimal("0.01")

    def test_split_puts_extra_cents_first(self):
        assert amortization.installment_amounts("100.00", 3) == [
            Decimal("33.34"), Decimal("33.33"), Decimal("33.33")
        ]


class TestSchedule:
    """Test due dates and schedules"""

    @pytest.mark.parametrize("frecuencia,days", [
        ("diario", 1), ("semanal", 7), ("quincenal", 15), ("mensual", 30),
    ])
    def test_frequency_increments(self, frecuencia, days):
        dates = amortization.schedule_dates(date(2024, 1, 1), frecuencia, 3)
        assert [(d - date(2024, 1, 1)).days for d in dates] == [days, 2 * days, 3 * days]

    def test_unknown_frequency(self):
        with pytest.raises(ValidationError) as exc_info:
            amortization.schedule_dates(date(2024, 1, 1), "anual", 3)
        assert exc_info.value.code == "invalid_schedule"

    def test_build_schedule_marks_paid_installments(self):
        schedule = amortization.build_schedule(date(2024, 1, 1), Frequency.SEMANAL, 4,
                                               Decimal("400.00"), cuotas_pagadas=2)
        assert [i.numero for i in schedule] == [1, 2, 3, 4]
        assert [i.pagada for i in schedule] == [True, True, False, False]
        assert schedule[0].fecha == date(2024, 1, 8)
        assert schedule[-1].fecha == date(2024, 1, 29)
        assert sum(i.monto for i in schedule) == Decimal("400.00")

    def test_next_due_date_is_next_unpaid_installment(self):
        start = date(2024, 1, 1)
        assert amortization.next_due_date(start, "diario", 0) == date(2024, 1, 2)
        assert amortization.next_due_date(start, "semanal", 2) == date(2024, 1, 22)
        schedule = amortization.schedule_dates(start, "quincenal", 5)
        assert amortization.next_due_date(start, "quincenal", 3) == schedule[3]

    def test_days_overdue(self):
        start = date(2024, 1, 1)
        assert amortization.days_overdue(start, "diario", 0, date(2024, 1, 2)) == 0
        assert amortization.days_overdue(start, "diario", 0, date(2024, 1, 5)) == 3
        assert amortization.days_overdue(start, "mensual", 0, date(2024, 1, 15)) == 0

    def test_installments_due(self):
        start = date(2024, 1, 1)
        assert amortization.installments_due(start, "semanal", 4, date(2024, 1, 7)) == 0
        assert amortization.installments_due(start, "semanal", 4, date(2024, 1, 8)) == 1
        assert amortization.installments_due(start, "semanal", 4, date(2024, 6, 1)) == 4

    def test_remaining_balance(self):
        assert amortization.remaining_balance("100.00", 3, 0) == Decimal("100.00")
        assert amortization.remaining_balance("100.00", 3, 1) == Decimal("66.66")
        assert amortization.remaining_balance("100.00", 3, 3) == Decimal("0.00")

    @pytest.mark.parametrize("monto_total,total_cuotas", [
        ("1100.00", 30), ("100.00", 3), ("0.10", 7), ("999.99", 12), ("1000.03", 1000),
    ])
    def test_remaining_balance_matches_schedule(self, monto_total, total_cuotas):
        amounts = amortization.installment_amounts(monto_total, total_cuotas)
        for paid in range(0, total_cuotas + 1, max(1, total_cuotas // 10)):
            assert amortization.remaining_balance(monto_total, total_cuotas, paid) == \
                sum(amounts[paid:], Decimal("0.00"))

    def test_remaining_balance_rejects_oversized_count(self):
        with pytest.raises(ValidationError):
            amortization.remaining_balance("1100.00", amortization.MAX_INSTALLMENTS + 1, 0)


class TestDeriveStatus:
    """Test the derived lifecycle label"""

    def test_active_before_first_due_date(self):
        loan = _loan()
        assert amortization.derive_status(loan, now=date(2024, 1, 2)) == LoanState.ACTIVO

    def test_overdue_after_due_date(self):
        loan = _loan()
        assert amortization.derive_status(loan, now=date(2024, 1, 3)) == LoanState.ATRASADO

    def test_payments_count_overrides_stored_counter(self):
        loan = _loan(cuotas_pagadas=0)
        payments = ["p1", "p2"]
        # Next due is installment 3 on Jan 4
        assert amortization.derive_status(loan, payments, date(2024, 1, 4)) == LoanState.ACTIVO

    def test_completed_when_all_paid(self):
        loan = _loan(cuotas_pagadas=30)
        assert amortization.derive_status(loan, now=date(2030, 1, 1)) == LoanState.COMPLETADO

    def test_stored_completed_wins(self):
        loan = _loan(estado=LoanState.COMPLETADO, cuotas_pagadas=30)
        assert amortization.derive_status(loan, now=date(2024, 1, 2)) == LoanState.COMPLETADO

    @pytest.mark.parametrize("estado", [LoanState.PENDIENTE, LoanState.RECHAZADO])
    def test_pending_and_rejected_are_never_overdue(self, estado):
        loan = _loan(estado=estado)
        assert amortization.derive_status(loan, now=date(2025, 1, 1)) == estado

    def test_requires_reference_instant(self):
        with pytest.raises(ValidationError):
            amortization.derive_status(_loan())

    def test_idempotent_and_read_only(self):
        loan = _loan(cuotas_pagadas=3)
        before = loan.to_dict()
        now = datetime(2024, 1, 10, tzinfo=timezone.utc)
        first = amortization.derive_status(loan, None, now)
        second = amortization.derive_status(loan, None, now)
        assert first == second == LoanState.ATRASADO
        assert loan.to_dict() == before
