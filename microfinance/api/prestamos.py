"""
Loan endpoints
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from ..loans import LoanCoordinator
from .auth import MicrofinanceSystem, get_coordinator, get_system
from .schemas import (
    CreateLoanRequest, LoanDecisionRequest, SimulateLoanRequest, UpdateLoanRequest,
    paginate, to_json
)


router = APIRouter()


@router.get("")
async def list_loans(
    estado: Optional[str] = None,
    cliente_id: Optional[str] = None,
    search: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1),
    coordinator: LoanCoordinator = Depends(get_coordinator),
    system: MicrofinanceSystem = Depends(get_system)
):
    """List loans with their derived state, newest first"""
    loans = coordinator.list_loans(estado=estado, cliente_id=cliente_id, search=search)
    return paginate(loans, page, system.page_limit(limit), lambda s: s.to_dict())


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_loan(
    request: CreateLoanRequest,
    coordinator: LoanCoordinator = Depends(get_coordinator)
):
    """Submit a loan application (state pendiente)"""
    loan = coordinator.submit(
        cliente_id=request.cliente_id,
        monto=request.monto,
        interes=request.interes,
        frecuencia=request.frecuencia_pago,
        total_cuotas=request.total_cuotas,
        fecha_inicio=request.fecha_inicio
    )
    return coordinator.get_loan(loan.id).to_dict()


@router.post("/simulador")
async def simulate_loan(
    request: SimulateLoanRequest,
    system: MicrofinanceSystem = Depends(get_system)
):
    """Loan simulator, nothing is stored"""
    result = LoanCoordinator.simulate(
        monto=request.monto,
        interes=request.interes,
        frecuencia=request.frecuencia_pago,
        total_cuotas=request.total_cuotas,
        fecha_inicio=request.fecha_inicio or system.clock().date()
    )
    return to_json(result)


@router.get("/{loan_id}")
async def get_loan(
    loan_id: str,
    coordinator: LoanCoordinator = Depends(get_coordinator)
):
    """Loan details with payments"""
    data = coordinator.get_loan(loan_id).to_dict()
    data["pagos"] = to_json(coordinator.get_payments(loan_id))
    return data


@router.get("/{loan_id}/cronograma")
async def get_schedule(
    loan_id: str,
    coordinator: LoanCoordinator = Depends(get_coordinator)
):
    """Installment schedule"""
    return {"cronograma": to_json(coordinator.get_schedule(loan_id))}


@router.get("/{loan_id}/pagos")
async def get_payments(
    loan_id: str,
    coordinator: LoanCoordinator = Depends(get_coordinator)
):
    """Payments recorded for a loan"""
    return {"pagos": to_json(coordinator.get_payments(loan_id))}


@router.put("/{loan_id}")
async def update_loan(
    loan_id: str,
    request: UpdateLoanRequest,
    coordinator: LoanCoordinator = Depends(get_coordinator)
):
    """Edit the terms of a pending or active loan"""
    coordinator.update_terms(
        loan_id,
        monto=request.monto,
        interes=request.interes,
        total_cuotas=request.total_cuotas,
        frecuencia=request.frecuencia_pago,
        fecha_inicio=request.fecha_inicio
    )
    return coordinator.get_loan(loan_id).to_dict()


@router.post("/{loan_id}/aprobar")
async def approve_loan(
    loan_id: str,
    request: Optional[LoanDecisionRequest] = None,
    coordinator: LoanCoordinator = Depends(get_coordinator)
):
    """Approve a pending loan"""
    coordinator.approve(loan_id, comentario=request.comentario if request else None)
    return coordinator.get_loan(loan_id).to_dict()


@router.post("/{loan_id}/rechazar")
async def reject_loan(
    loan_id: str,
    request: LoanDecisionRequest,
    coordinator: LoanCoordinator = Depends(get_coordinator)
):
    """Reject a pending loan; a comment is required"""
    coordinator.reject(loan_id, comentario=request.comentario)
    return coordinator.get_loan(loan_id).to_dict()


@router.delete("/{loan_id}")
async def delete_loan(
    loan_id: str,
    coordinator: LoanCoordinator = Depends(get_coordinator)
):
    """Delete a loan without payments"""
    coordinator.delete(loan_id)
    return {"message": "Loan deleted successfully"}
