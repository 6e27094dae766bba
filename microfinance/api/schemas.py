"""
Pydantic schemas for API requests and responses
"""

import math
from dataclasses import asdict
from decimal import Decimal
from datetime import date, datetime
from typing import Any, Callable, Dict, List, Optional, Sequence

from pydantic import BaseModel, Field

from ..storage import serialize_value


# Session schemas
class LoginRequest(BaseModel):
    email: str
    password: str


class SetupRequest(BaseModel):
    email: str
    nombre: str
    apellido: str
    password: str = Field(..., min_length=1)


# Client schemas
class CreateClientRequest(BaseModel):
    dni: str = Field(..., description="8-digit national ID")
    nombre: str
    apellido: str
    telefono: str = Field(..., description="9-digit phone number")
    direccion: str
    asesor_id: Optional[str] = None
    referencias: str = ""
    historial_pagos: str = "Nuevo"


class UpdateClientRequest(BaseModel):
    dni: Optional[str] = None
    nombre: Optional[str] = None
    apellido: Optional[str] = None
    telefono: Optional[str] = None
    direccion: Optional[str] = None
    asesor_id: Optional[str] = None
    referencias: Optional[str] = None
    historial_pagos: Optional[str] = None


# Loan schemas
class CreateLoanRequest(BaseModel):
    cliente_id: str
    monto: Decimal
    interes: Decimal = Field(..., description="Flat interest percent")
    frecuencia_pago: str = Field(..., description="diario, semanal, quincenal or mensual")
    total_cuotas: int
    fecha_inicio: Optional[date] = None


class UpdateLoanRequest(BaseModel):
    monto: Optional[Decimal] = None
    interes: Optional[Decimal] = None
    frecuencia_pago: Optional[str] = None
    total_cuotas: Optional[int] = None
    fecha_inicio: Optional[date] = None


class LoanDecisionRequest(BaseModel):
    comentario: Optional[str] = None


class SimulateLoanRequest(BaseModel):
    monto: Decimal
    interes: Decimal
    frecuencia_pago: str
    total_cuotas: int
    fecha_inicio: Optional[date] = None


class PaymentRequest(BaseModel):
    prestamo_id: str
    monto: Decimal
    metodo_pago: str = "efectivo"
    comentario: Optional[str] = None
    fecha_pago: Optional[datetime] = None


# Collections schemas
class CashClosingRequest(BaseModel):
    monto_efectivo: Decimal = Decimal("0")
    monto_yape: Decimal = Decimal("0")
    monto_transferencia: Decimal = Decimal("0")
    monto_otro: Decimal = Decimal("0")
    fecha: Optional[date] = None
    comentarios: str = ""


class CashClosingReviewRequest(BaseModel):
    aprobar: bool
    comentario: Optional[str] = None


# Finance schemas
class TransactionRequest(BaseModel):
    tipo: str = Field(..., description="ingreso or egreso")
    monto: Decimal
    categoria: str
    cuenta: str = Field(..., description="caja, yape, banco or otro")
    descripcion: str = ""
    fecha: Optional[date] = None


# Goal schemas
class GoalRequest(BaseModel):
    asesor_id: str
    periodo: str = Field(..., description="YYYY-MM")
    meta_clientes: int
    meta_cobranza: Decimal
    meta_morosidad: Decimal
    meta_cartera: Decimal


class GoalProgressRequest(BaseModel):
    actual_clientes: Optional[int] = None
    actual_cobranza: Optional[Decimal] = None
    actual_morosidad: Optional[Decimal] = None
    actual_cartera: Optional[Decimal] = None


# User schemas
class CreateUserRequest(BaseModel):
    email: str
    nombre: str
    apellido: str
    rol: str
    password: Optional[str] = None
    supervisor_id: Optional[str] = None
    telefono: str = ""


class UpdateUserRequest(BaseModel):
    nombre: Optional[str] = None
    apellido: Optional[str] = None
    telefono: Optional[str] = None
    rol: Optional[str] = None


class AssignSupervisorRequest(BaseModel):
    supervisor_id: Optional[str] = None


class ChangePasswordRequest(BaseModel):
    password: str


def to_json(value: Any) -> Any:
    """JSON-ready copy of records, dataclasses and plain values (Decimal as string)"""
    if hasattr(value, "to_public_dict"):
        return serialize_value(value.to_public_dict())
    if hasattr(value, "to_dict"):
        return serialize_value(value.to_dict())
    if hasattr(value, "__dataclass_fields__"):
        return serialize_value(asdict(value))
    if isinstance(value, dict):
        return {k: to_json(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_json(v) for v in value]
    return serialize_value(value)


def paginate(items: Sequence[Any], page: int, limit: int,
             serializer: Callable[[Any], Any] = to_json) -> Dict[str, Any]:
    """Slice ``items`` into the standard ``{data, pagination}`` envelope"""
    total = len(items)
    start = (page - 1) * limit
    data: List[Any] = [serializer(item) for item in items[start:start + limit]]
    return {
        "data": data,
        "pagination": {
            "total": total,
            "page": page,
            "limit": limit,
            "pages": math.ceil(total / limit) if limit else 0,
        },
    }
