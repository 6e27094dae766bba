"""
Domain Records Module

Stored records and enumerations shared by the lending core. Field names
follow the existing data store schema (``monto``, ``interes``,
``monto_total``, ``frecuencia_pago``, ``total_cuotas``, ``cuotas_pagadas``,
``estado``, ...) so rows can be exchanged with it unchanged.
"""

import re
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from .errors import ValidationError
from .policy import Role
from .storage import StorageRecord


DNI_PATTERN = re.compile(r"^\d{8}$")
PHONE_PATTERN = re.compile(r"^\d{9}$")
PERIOD_PATTERN = re.compile(r"^\d{4}-(0[1-9]|1[0-2])$")


def parse_enum(enum_cls, value, field: str):
    """Convert a raw value into ``enum_cls`` or raise ValidationError"""
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(str(member.value) for member in enum_cls)
        raise ValidationError(f"{field} must be one of: {allowed}", field=field)


class Frequency(Enum):
    """Installment cadence and its day increment"""
    DIARIO = "diario"          # every day
    SEMANAL = "semanal"        # every 7 days
    QUINCENAL = "quincenal"    # every 15 days
    MENSUAL = "mensual"        # every 30 days

    @property
    def days(self) -> int:
        return {
            Frequency.DIARIO: 1,
            Frequency.SEMANAL: 7,
            Frequency.QUINCENAL: 15,
            Frequency.MENSUAL: 30,
        }[self]


class LoanState(Enum):
    """Loan lifecycle states"""
    PENDIENTE = "pendiente"    # Submitted, awaiting an admin decision
    ACTIVO = "activo"          # Approved, accepting payments
    ATRASADO = "atrasado"      # Active and overdue (derived, never stored)
    COMPLETADO = "completado"  # All installments paid (terminal)
    RECHAZADO = "rechazado"    # Declined by an admin (terminal)

    @property
    def is_terminal(self) -> bool:
        return self in (LoanState.COMPLETADO, LoanState.RECHAZADO)


PERSISTED_LOAN_STATES = frozenset({
    LoanState.PENDIENTE, LoanState.ACTIVO, LoanState.COMPLETADO, LoanState.RECHAZADO
})


class PaymentMethod(Enum):
    EFECTIVO = "efectivo"
    YAPE = "yape"
    TRANSFERENCIA = "transferencia"
    OTRO = "otro"


class PaymentHistory(Enum):
    """Client payment-history label"""
    NUEVO = "Nuevo"
    BUENO = "Bueno"
    REGULAR = "Regular"
    MALO = "Malo"


class GoalRating(Enum):
    SOBRESALIENTE = "sobresaliente"  # average >= 100%
    OBJETIVO = "objetivo"            # average >= 80%
    MEJORABLE = "mejorable"


class ClosingState(Enum):
    PENDIENTE = "pendiente"
    APROBADO = "aprobado"
    RECHAZADO = "rechazado"


class TransactionType(Enum):
    INGRESO = "ingreso"
    EGRESO = "egreso"


class CashAccount(Enum):
    CAJA = "caja"
    YAPE = "yape"
    BANCO = "banco"
    OTRO = "otro"


@dataclass
class User(StorageRecord):
    """Staff member (principal) with exactly one role"""
    email: str
    nombre: str
    apellido: str
    rol: Role
    supervisor_id: Optional[str] = None  # Only meaningful for advisors
    telefono: str = ""
    activo: bool = True
    password_hash: Optional[str] = None
    password_salt: Optional[str] = None

    @property
    def nombre_completo(self) -> str:
        return f"{self.nombre} {self.apellido}".strip()

    def to_public_dict(self) -> dict:
        """Stored fields minus credentials"""
        data = self.to_dict()
        data.pop("password_hash", None)
        data.pop("password_salt", None)
        return data


@dataclass
class Client(StorageRecord):
    """Borrower owned by exactly one advisor"""
    dni: str
    nombre: str
    apellido: str
    telefono: str
    direccion: str
    asesor_id: str
    referencias: str = ""
    historial_pagos: PaymentHistory = PaymentHistory.NUEVO
    created_by: Optional[str] = None
    updated_by: Optional[str] = None

    def __post_init__(self):
        if not DNI_PATTERN.match(self.dni or ""):
            raise ValidationError("DNI must have exactly 8 digits", field="dni")
        if not PHONE_PATTERN.match(self.telefono or ""):
            raise ValidationError("Phone number must have exactly 9 digits", field="telefono")
        for name in ("nombre", "apellido", "direccion"):
            if not (getattr(self, name) or "").strip():
                raise ValidationError(f"{name} is required", field=name)

    @property
    def nombre_completo(self) -> str:
        return f"{self.nombre} {self.apellido}"


@dataclass
class Loan(StorageRecord):
    """
    Flat-interest loan. ``estado`` only ever holds a persisted state;
    ``atrasado`` is derived on read.
    """
    cliente_id: str
    monto: Decimal
    interes: Decimal                 # percent, e.g. Decimal('10') for 10%
    monto_total: Decimal             # monto * (1 + interes/100)
    frecuencia_pago: Frequency
    total_cuotas: int
    fecha_inicio: date
    cuotas_pagadas: int = 0
    estado: LoanState = LoanState.PENDIENTE
    created_by: Optional[str] = None
    aprobado_por: Optional[str] = None
    fecha_aprobacion: Optional[datetime] = None
    comentario_aprobacion: Optional[str] = None

    def __post_init__(self):
        if not 0 <= self.cuotas_pagadas <= self.total_cuotas:
            raise ValidationError(
                "cuotas_pagadas must be between 0 and total_cuotas", field="cuotas_pagadas"
            )
        if self.estado not in PERSISTED_LOAN_STATES:
            raise ValidationError(f"{self.estado.value} is not a stored loan state", field="estado")


@dataclass
class Payment(StorageRecord):
    """Append-only installment payment"""
    prestamo_id: str
    monto: Decimal
    fecha_pago: datetime
    metodo_pago: PaymentMethod
    comentario: Optional[str] = None
    created_by: Optional[str] = None


@dataclass
class Goal(StorageRecord):
    """Monthly targets and actuals for one advisor"""
    asesor_id: str
    periodo: str                     # YYYY-MM
    meta_clientes: int
    meta_cobranza: Decimal
    meta_morosidad: Decimal          # percent
    meta_cartera: Decimal
    actual_clientes: int = 0
    actual_cobranza: Decimal = Decimal("0")
    actual_morosidad: Decimal = Decimal("0")
    actual_cartera: Decimal = Decimal("0")
    created_by: Optional[str] = None


@dataclass
class CashClosing(StorageRecord):
    """End-of-day cash reconciliation submitted by a collector"""
    usuario_id: str
    fecha: date
    monto_efectivo: Decimal
    monto_yape: Decimal
    monto_transferencia: Decimal
    monto_otro: Decimal
    monto_total: Decimal             # sum of the four declared amounts
    total_cobrado: Decimal           # payments recorded by the user that day
    diferencia: Decimal              # total_cobrado - monto_total
    requiere_revision: bool = False
    estado: ClosingState = ClosingState.PENDIENTE
    comentarios: str = ""
    revisado_por: Optional[str] = None
    fecha_revision: Optional[datetime] = None
    comentario_revision: Optional[str] = None


@dataclass
class FinancialTransaction(StorageRecord):
    """Income or expense entry of the back-office ledger"""
    tipo: TransactionType
    monto: Decimal
    categoria: str
    cuenta: CashAccount
    fecha: date
    descripcion: str = ""
    created_by: Optional[str] = None
