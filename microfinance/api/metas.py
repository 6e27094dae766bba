"""
Goal endpoints
"""

from typing import Optional

from fastapi import APIRouter, Depends

from ..goals import fulfillment
from ..policy import Principal
from .auth import MicrofinanceSystem, get_current_principal, get_system
from .schemas import GoalProgressRequest, GoalRequest, to_json


router = APIRouter()


@router.get("")
async def list_goals(
    periodo: Optional[str] = None,
    asesor_id: Optional[str] = None,
    principal: Principal = Depends(get_current_principal),
    system: MicrofinanceSystem = Depends(get_system)
):
    """Goals with their fulfillment"""
    goals = system.goals.list_goals(principal, periodo=periodo, asesor_id=asesor_id)
    return {"data": [fulfillment(g).to_dict() for g in goals]}


@router.post("")
async def save_goal(
    request: GoalRequest,
    principal: Principal = Depends(get_current_principal),
    system: MicrofinanceSystem = Depends(get_system)
):
    """Create or replace the targets of an advisor for a period"""
    goal = system.goals.upsert_goal(principal, **request.model_dump())
    return to_json(goal)


@router.put("/{goal_id}/progreso")
async def update_progress(
    goal_id: str,
    request: GoalProgressRequest,
    principal: Principal = Depends(get_current_principal),
    system: MicrofinanceSystem = Depends(get_system)
):
    """Record actual values"""
    goal = system.goals.update_progress(principal, goal_id, **request.model_dump())
    return fulfillment(goal).to_dict()


@router.get("/reporte")
async def performance_report(
    periodo: str,
    principal: Principal = Depends(get_current_principal),
    system: MicrofinanceSystem = Depends(get_system)
):
    """Per-advisor fulfillment, averages and rating distribution"""
    return to_json(system.goals.performance_report(principal, periodo))
