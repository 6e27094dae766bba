"""
Collections endpoints: pending installments, payments and cash closings
"""

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from ..loans import LoanCoordinator
from ..models import ClosingState, parse_enum
from ..policy import Principal
from .auth import MicrofinanceSystem, get_coordinator, get_current_principal, get_system
from .schemas import (
    CashClosingRequest, CashClosingReviewRequest, PaymentRequest, paginate, to_json
)


router = APIRouter()


@router.get("")
async def list_pending(
    fecha: Optional[date] = None,
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1),
    principal: Principal = Depends(get_current_principal),
    system: MicrofinanceSystem = Depends(get_system)
):
    """Installments due on or before ``fecha``, most overdue first"""
    pending = system.collections.pending_installments(principal, as_of=fecha)
    return paginate(pending, page, system.page_limit(limit), lambda p: p.to_dict())


@router.post("/pagos", status_code=status.HTTP_201_CREATED)
async def post_payment(
    request: PaymentRequest,
    coordinator: LoanCoordinator = Depends(get_coordinator)
):
    """Record an installment payment"""
    payment, loan = coordinator.post_payment(
        request.prestamo_id,
        monto=request.monto,
        metodo=request.metodo_pago,
        comentario=request.comentario,
        fecha_pago=request.fecha_pago
    )
    return {
        "pago": to_json(payment),
        "prestamo": coordinator.get_loan(loan.id).to_dict(),
        "message": "Payment registered successfully",
    }


@router.get("/pagos")
async def list_payments(
    fecha: Optional[date] = None,
    prestamo_id: Optional[str] = None,
    principal: Principal = Depends(get_current_principal),
    system: MicrofinanceSystem = Depends(get_system)
):
    """Payments recorded on a day with totals per method"""
    day = fecha or system.clock().date()
    payments = system.collections.payments_on(principal, day, prestamo_id=prestamo_id)
    return {
        "pagos": to_json(payments),
        "resumen": to_json(system.collections.daily_summary(principal, day)),
    }


@router.post("/cuadre-caja", status_code=status.HTTP_201_CREATED)
async def submit_cash_closing(
    request: CashClosingRequest,
    principal: Principal = Depends(get_current_principal),
    system: MicrofinanceSystem = Depends(get_system)
):
    """Submit the end-of-day cash closing"""
    closing = system.collections.submit_cash_closing(principal, **request.model_dump())
    return to_json(closing)


@router.get("/cuadre-caja")
async def list_cash_closings(
    estado: Optional[str] = None,
    fecha: Optional[date] = None,
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1),
    principal: Principal = Depends(get_current_principal),
    system: MicrofinanceSystem = Depends(get_system)
):
    """Cash closings (all for admins, own for everyone else)"""
    state = parse_enum(ClosingState, estado, "estado") if estado else None
    closings = system.collections.list_cash_closings(principal, estado=state, fecha=fecha)
    closings.sort(key=lambda c: c.created_at, reverse=True)
    return paginate(closings, page, system.page_limit(limit))


@router.post("/cuadre-caja/{closing_id}/revision")
async def review_cash_closing(
    closing_id: str,
    request: CashClosingReviewRequest,
    principal: Principal = Depends(get_current_principal),
    system: MicrofinanceSystem = Depends(get_system)
):
    """Approve or reject a pending cash closing"""
    closing = system.collections.review_cash_closing(
        principal, closing_id, request.aprobar, request.comentario
    )
    return to_json(closing)
