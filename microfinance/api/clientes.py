"""
Client endpoints
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from ..loans import LoanCoordinator
from ..policy import Principal
from .auth import MicrofinanceSystem, get_coordinator, get_current_principal, get_system
from .schemas import CreateClientRequest, UpdateClientRequest, paginate, to_json


router = APIRouter()


@router.get("")
async def list_clients(
    search: Optional[str] = None,
    asesor_id: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1),
    principal: Principal = Depends(get_current_principal),
    system: MicrofinanceSystem = Depends(get_system)
):
    """List clients visible to the current user"""
    clients = system.clients.list_clients(principal, search=search, asesor_id=asesor_id)
    clients.sort(key=lambda c: c.created_at, reverse=True)
    return paginate(clients, page, system.page_limit(limit))


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_client(
    request: CreateClientRequest,
    principal: Principal = Depends(get_current_principal),
    system: MicrofinanceSystem = Depends(get_system)
):
    """Register a new client"""
    client = system.clients.create_client(principal, **request.model_dump())
    return to_json(client)


@router.get("/{client_id}")
async def get_client(
    client_id: str,
    principal: Principal = Depends(get_current_principal),
    system: MicrofinanceSystem = Depends(get_system),
    coordinator: LoanCoordinator = Depends(get_coordinator)
):
    """Client details with the client's loans"""
    client = system.clients.get_client(principal, client_id)
    data = to_json(client)
    data["prestamos"] = [s.to_dict() for s in coordinator.list_loans(cliente_id=client_id)]
    return data


@router.put("/{client_id}")
async def update_client(
    client_id: str,
    request: UpdateClientRequest,
    principal: Principal = Depends(get_current_principal),
    system: MicrofinanceSystem = Depends(get_system)
):
    """Update client fields"""
    changes = request.model_dump(exclude_unset=True)
    client = system.clients.update_client(principal, client_id, **changes)
    return to_json(client)


@router.delete("/{client_id}")
async def delete_client(
    client_id: str,
    principal: Principal = Depends(get_current_principal),
    system: MicrofinanceSystem = Depends(get_system)
):
    """Delete a client without active loans"""
    system.clients.delete_client(principal, client_id)
    return {"message": "Client deleted successfully"}
