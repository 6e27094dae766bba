"""
Dashboard endpoints
"""

from fastapi import APIRouter, Depends

from ..policy import Principal
from ..reporting import portfolio_summary
from .auth import MicrofinanceSystem, get_current_principal, get_system
from .schemas import to_json


router = APIRouter()


@router.get("")
async def get_dashboard(
    principal: Principal = Depends(get_current_principal),
    system: MicrofinanceSystem = Depends(get_system)
):
    """Portfolio summary for the current user's scope"""
    return to_json(portfolio_summary(system.store, principal, system.clock()))
