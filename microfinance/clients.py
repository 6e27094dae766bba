"""
Client Module

Client intake and maintenance: national ID and phone validation, unique
DNI, ownership by one advisor and guarded deletion.
"""

from typing import Any, Dict, List, Optional

from .audit import AuditEventType, AuditTrail
from .datastore import DataStore, new_id, utcnow
from .errors import ConflictError, NotFoundError, ValidationError
from .logging_config import get_logger, log_action
from .models import Client, LoanState, PaymentHistory, parse_enum
from .policy import (
    Principal, Role, can_create_client_for, can_delete_client, can_read_client,
    can_reassign_client, can_write_client, require, scope_advisor_ids
)

logger = get_logger(__name__)

EDITABLE_FIELDS = ("nombre", "apellido", "telefono", "direccion", "referencias",
                   "historial_pagos", "asesor_id")


def matches_search(client: Client, search: Optional[str]) -> bool:
    """Case-insensitive match on name, surname or DNI"""
    if not search:
        return True
    term = search.strip().lower()
    return (term in client.nombre.lower()
            or term in client.apellido.lower()
            or term in client.dni)


class ClientManager:
    """Manages client records on behalf of a principal"""

    def __init__(self, store: DataStore, audit_trail: Optional[AuditTrail] = None):
        self.store = store
        self.audit = audit_trail

    def _log(self, event_type: AuditEventType, client_id: str, actor: str, **metadata):
        if self.audit:
            self.audit.log_event(
                event_type=event_type,
                entity_type="client",
                entity_id=client_id,
                metadata=metadata,
                user_id=actor
            )

    def _check_advisor(self, asesor_id: str) -> None:
        advisor = self.store.get_user(asesor_id)
        if advisor is None or not advisor.activo or advisor.rol != Role.ADVISOR:
            raise ValidationError("asesor_id must reference an active advisor", field="asesor_id")

    def _check_unique_dni(self, dni: str) -> None:
        if self.store.list_clients({"dni": dni}):
            raise ConflictError(
                f"Client with DNI {dni} already exists",
                user_message="A client with this DNI already exists"
            )

    def create_client(self, principal: Principal, dni: str, nombre: str, apellido: str,
                      telefono: str, direccion: str, asesor_id: Optional[str] = None,
                      referencias: str = "",
                      historial_pagos: PaymentHistory = PaymentHistory.NUEVO) -> Client:
        """
        Register a new client.

        Advisors always own the clients they register; supervisors may
        register for the advisors they supervise and admins for anyone.

        Args:
            principal: Acting principal
            dni: 8-digit national ID, unique
            nombre: First name
            apellido: Last name
            telefono: 9-digit phone number
            direccion: Address
            asesor_id: Owning advisor (defaults to the principal)
            referencias: Free-text references
            historial_pagos: Payment-history label

        Returns:
            Created Client
        """
        if asesor_id is None or principal.is_advisor:
            asesor_id = principal.id
        require(can_create_client_for(principal, asesor_id), "create client", principal)
        self._check_advisor(asesor_id)

        now = utcnow()
        client = Client(
            id=new_id(),
            created_at=now,
            updated_at=now,
            dni=(dni or "").strip(),
            nombre=(nombre or "").strip(),
            apellido=(apellido or "").strip(),
            telefono=(telefono or "").strip(),
            direccion=(direccion or "").strip(),
            asesor_id=asesor_id,
            referencias=referencias or "",
            historial_pagos=parse_enum(PaymentHistory, historial_pagos, "historial_pagos"),
            created_by=principal.id
        )
        self._check_unique_dni(client.dni)
        self.store.insert_client(client)

        self._log(AuditEventType.CLIENT_CREATED, client.id, principal.id,
                  dni=client.dni, asesor_id=asesor_id)
        log_action(logger, "info", "Client created", user_id=principal.id,
                   action="create_client", resource=f"client:{client.id}")
        return client

    def get_client(self, principal: Principal, client_id: str) -> Client:
        client = self.store.get_client(client_id)
        if client is None:
            raise NotFoundError("client", client_id)
        require(can_read_client(principal, client), "read client", principal, client_id)
        return client

    def list_clients(self, principal: Principal, search: Optional[str] = None,
                     asesor_id: Optional[str] = None) -> List[Client]:
        """Clients visible to the principal, optionally filtered"""
        scope = scope_advisor_ids(principal)
        filters = {"asesor_id": asesor_id} if asesor_id else {}
        clients = self.store.list_clients(filters)
        return [
            c for c in clients
            if (scope is None or c.asesor_id in scope) and matches_search(c, search)
        ]

    def update_client(self, principal: Principal, client_id: str, **changes: Any) -> Client:
        """
        Update editable client fields. The DNI is immutable.

        Raises:
            ValidationError: On a DNI change or an unknown field
        """
        client = self.store.get_client(client_id)
        if client is None:
            raise NotFoundError("client", client_id)
        require(can_write_client(principal, client), "update client", principal, client_id)

        dni = changes.pop("dni", None)
        if dni is not None and dni != client.dni:
            raise ValidationError("DNI cannot be changed", field="dni")
        unknown = set(changes) - set(EDITABLE_FIELDS)
        if unknown:
            raise ValidationError(f"Unknown client fields: {sorted(unknown)}",
                                  field=sorted(unknown)[0])

        patch: Dict[str, Any] = {k: v for k, v in changes.items() if v is not None}
        if "asesor_id" in patch and patch["asesor_id"] != client.asesor_id:
            require(can_reassign_client(principal, client, patch["asesor_id"]),
                    "reassign client", principal, client_id)
            self._check_advisor(patch["asesor_id"])
        if "historial_pagos" in patch:
            patch["historial_pagos"] = parse_enum(PaymentHistory, patch["historial_pagos"], "historial_pagos")
        for key in ("nombre", "apellido", "telefono", "direccion"):
            if key in patch:
                patch[key] = str(patch[key]).strip()
        if not patch:
            return client
        patch["updated_by"] = principal.id

        updated = self.store.update_client(client_id, patch)
        self._log(AuditEventType.CLIENT_UPDATED, client_id, principal.id,
                  fields=sorted(k for k in patch if k != "updated_by"))
        return updated

    def delete_client(self, principal: Principal, client_id: str) -> None:
        """
        Delete a client (admins only). Blocked while the client has active loans.
        """
        client = self.store.get_client(client_id)
        if client is None:
            raise NotFoundError("client", client_id)
        require(can_delete_client(principal, client), "delete client", principal, client_id)

        with self.store.atomic():
            active = self.store.list_loans({"cliente_id": client_id, "estado": LoanState.ACTIVO})
            if active:
                raise ConflictError(
                    f"Client {client_id} has {len(active)} active loans",
                    user_message="The client has active loans and cannot be deleted",
                    details={"active_loans": len(active)}
                )
            self.store.delete_client(client_id)
        self._log(AuditEventType.CLIENT_DELETED, client_id, principal.id, dni=client.dni)
        log_action(logger, "info", "Client deleted", user_id=principal.id,
                   action="delete_client", resource=f"client:{client_id}")
