"""
Finance endpoints
"""

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from ..policy import Principal
from .auth import MicrofinanceSystem, get_current_principal, get_system
from .schemas import TransactionRequest, paginate, to_json


router = APIRouter()


@router.get("")
async def list_transactions(
    tipo: Optional[str] = None,
    categoria: Optional[str] = None,
    cuenta: Optional[str] = None,
    desde: Optional[date] = None,
    hasta: Optional[date] = None,
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1),
    principal: Principal = Depends(get_current_principal),
    system: MicrofinanceSystem = Depends(get_system)
):
    """List income and expense transactions, newest first"""
    transactions = system.finance.list_transactions(
        principal, tipo=tipo, desde=desde, hasta=hasta, categoria=categoria, cuenta=cuenta
    )
    return paginate(transactions, page, system.page_limit(limit))


@router.post("", status_code=status.HTTP_201_CREATED)
async def record_transaction(
    request: TransactionRequest,
    principal: Principal = Depends(get_current_principal),
    system: MicrofinanceSystem = Depends(get_system)
):
    """Record an income or expense"""
    transaction = system.finance.record_transaction(principal, **request.model_dump())
    return to_json(transaction)


@router.get("/reporte")
async def finance_report(
    desde: Optional[date] = None,
    hasta: Optional[date] = None,
    principal: Principal = Depends(get_current_principal),
    system: MicrofinanceSystem = Depends(get_system)
):
    """Totals, balance and distributions for a period"""
    return to_json(system.finance.report(principal, desde=desde, hasta=hasta))


@router.get("/balance")
async def finance_balance(
    principal: Principal = Depends(get_current_principal),
    system: MicrofinanceSystem = Depends(get_system)
):
    """Current balance overall and per account"""
    return to_json(system.finance.balance(principal))
