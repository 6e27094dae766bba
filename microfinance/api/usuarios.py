"""
User management endpoints (system administrators)
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from ..models import Role, parse_enum
from ..policy import Principal, can_change_password, can_view_team, require
from .auth import MicrofinanceSystem, get_current_principal, get_system
from .schemas import (
    AssignSupervisorRequest, ChangePasswordRequest, CreateUserRequest, UpdateUserRequest,
    paginate, to_json
)


router = APIRouter()


@router.get("")
async def list_users(
    rol: Optional[str] = None,
    search: Optional[str] = None,
    activos: bool = False,
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1),
    principal: Principal = Depends(get_current_principal),
    system: MicrofinanceSystem = Depends(get_system)
):
    """List users"""
    role = parse_enum(Role, rol, "rol") if rol else None
    users = system.users.list_users(principal, rol=role, search=search,
                                    include_inactive=not activos)
    return paginate(users, page, system.page_limit(limit))


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_user(
    request: CreateUserRequest,
    principal: Principal = Depends(get_current_principal),
    system: MicrofinanceSystem = Depends(get_system)
):
    """Create user"""
    data = request.model_dump()
    data["rol"] = parse_enum(Role, data["rol"], "rol")
    user = system.users.create_user(principal, **data)
    return to_json(user)


@router.get("/{user_id}/asesores")
async def list_supervised_advisors(
    user_id: str,
    principal: Principal = Depends(get_current_principal),
    system: MicrofinanceSystem = Depends(get_system)
):
    """Active advisors under a supervisor"""
    require(can_view_team(principal, user_id), "view team", principal, user_id)
    return {"data": to_json(system.users.list_advisors_under_supervisor(user_id))}


@router.put("/{user_id}")
async def update_user(
    user_id: str,
    request: UpdateUserRequest,
    principal: Principal = Depends(get_current_principal),
    system: MicrofinanceSystem = Depends(get_system)
):
    """Update profile fields or role"""
    data = request.model_dump()
    if data["rol"]:
        data["rol"] = parse_enum(Role, data["rol"], "rol")
    user = system.users.update_user(principal, user_id, **data)
    return to_json(user)


@router.put("/{user_id}/supervisor")
async def assign_supervisor(
    user_id: str,
    request: AssignSupervisorRequest,
    principal: Principal = Depends(get_current_principal),
    system: MicrofinanceSystem = Depends(get_system)
):
    """Assign or clear the supervisor of an advisor"""
    user = system.users.assign_supervisor(principal, user_id, request.supervisor_id)
    return to_json(user)


@router.put("/{user_id}/password")
async def change_password(
    user_id: str,
    request: ChangePasswordRequest,
    principal: Principal = Depends(get_current_principal),
    system: MicrofinanceSystem = Depends(get_system)
):
    """Change a password (own account, or any account for system administrators)"""
    require(can_change_password(principal, user_id), "change password", principal, user_id)
    system.users.change_password(user_id, request.password)
    return {"message": "Password updated successfully"}


@router.delete("/{user_id}")
async def deactivate_user(
    user_id: str,
    principal: Principal = Depends(get_current_principal),
    system: MicrofinanceSystem = Depends(get_system)
):
    """Deactivate a user"""
    user = system.users.deactivate_user(principal, user_id)
    return to_json(user)
