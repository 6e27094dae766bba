"""
Access Policy Module

Role-based access control for clients, loans and back-office features.
This module is the single authority on what a principal may do; no other
module compares roles directly.

Ownership is one hop deep: an advisor owns their clients (``asesor_id``),
a supervisor covers exactly the advisors whose ``supervisor_id`` is theirs,
and both admin roles see everything. Loans are owned through their client.
All predicates are pure.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, FrozenSet, Optional

from .errors import UnauthorizedError


class Role(Enum):
    """Closed set of staff roles"""
    SYSTEM_ADMIN = "admin_sistema"
    ADMIN = "administrador"
    SUPERVISOR = "supervisor"
    ADVISOR = "asesor"

    @property
    def label(self) -> str:
        return {
            Role.SYSTEM_ADMIN: "Administrador del sistema",
            Role.ADMIN: "Administrador",
            Role.SUPERVISOR: "Supervisor",
            Role.ADVISOR: "Asesor",
        }[self]


ADMIN_ROLES = frozenset({Role.SYSTEM_ADMIN, Role.ADMIN})


@dataclass(frozen=True)
class Principal:
    """
    Authenticated staff member as seen by the policy.

    ``supervised_advisor_ids`` is resolved by the identity provider from the
    data store and is only meaningful for supervisors.
    """
    id: str
    role: Role
    supervisor_id: Optional[str] = None
    supervised_advisor_ids: FrozenSet[str] = field(default_factory=frozenset)
    nombre: str = ""

    @property
    def is_admin(self) -> bool:
        return self.role in ADMIN_ROLES

    @property
    def is_supervisor(self) -> bool:
        return self.role == Role.SUPERVISOR

    @property
    def is_advisor(self) -> bool:
        return self.role == Role.ADVISOR


def is_supervisor_of(supervisor_id: Optional[str], advisor: Any) -> bool:
    """
    Check the single supervision hop.

    Args:
        supervisor_id: ID of the would-be supervisor
        advisor: Advisor record (anything with ``supervisor_id``)

    Returns:
        True iff the advisor's ``supervisor_id`` equals ``supervisor_id``
    """
    if not supervisor_id or advisor is None:
        return False
    return getattr(advisor, "supervisor_id", None) == supervisor_id


def owns_advisor_scope(principal: Principal, asesor_id: Optional[str]) -> bool:
    """True if ``asesor_id`` falls inside the principal's ownership scope"""
    if principal.role in ADMIN_ROLES:
        return True
    if asesor_id is None:
        return False
    if principal.role == Role.SUPERVISOR:
        return asesor_id in principal.supervised_advisor_ids
    if principal.role == Role.ADVISOR:
        return asesor_id == principal.id
    return False


def scope_advisor_ids(principal: Principal) -> Optional[FrozenSet[str]]:
    """
    Advisor IDs whose clients the principal may see.

    Returns:
        None for admins (everything), otherwise the set of advisor IDs
    """
    if principal.role in ADMIN_ROLES:
        return None
    if principal.role == Role.SUPERVISOR:
        return frozenset(principal.supervised_advisor_ids)
    return frozenset({principal.id})


# Clients

def can_read_client(principal: Principal, client: Any) -> bool:
    return owns_advisor_scope(principal, getattr(client, "asesor_id", None))


def can_write_client(principal: Principal, client: Any) -> bool:
    return owns_advisor_scope(principal, getattr(client, "asesor_id", None))


def can_delete_client(principal: Principal, client: Any) -> bool:
    """Admins only. The caller must still confirm the client has no active loans."""
    return principal.role in ADMIN_ROLES and can_read_client(principal, client)


def can_create_client_for(principal: Principal, asesor_id: Optional[str]) -> bool:
    """Whether the principal may register a client owned by ``asesor_id``"""
    return owns_advisor_scope(principal, asesor_id)


def can_reassign_client(principal: Principal, client: Any, new_asesor_id: str) -> bool:
    """Move a client to another advisor; both advisors must be in scope"""
    if principal.role == Role.ADVISOR:
        return False
    return can_write_client(principal, client) and owns_advisor_scope(principal, new_asesor_id)


# Loans (owned through the loan's client)

def _loan_client_matches(loan: Any, client: Any) -> bool:
    return client is not None and getattr(loan, "cliente_id", None) == getattr(client, "id", None)


def can_read_loan(principal: Principal, loan: Any, client: Any) -> bool:
    return _loan_client_matches(loan, client) and can_read_client(principal, client)


def can_write_loan(principal: Principal, loan: Any, client: Any) -> bool:
    return _loan_client_matches(loan, client) and can_write_client(principal, client)


def can_delete_loan(principal: Principal, loan: Any, client: Any) -> bool:
    """Admins only. The caller must still confirm the loan has no payments."""
    return _loan_client_matches(loan, client) and can_delete_client(principal, client)


def can_submit_loan(principal: Principal, client: Any) -> bool:
    """Creation rights for a new loan on ``client``"""
    return can_write_client(principal, client)


def can_approve_or_reject_loan(principal: Principal) -> bool:
    return principal.role in ADMIN_ROLES


def can_post_payment(principal: Principal, loan: Any, client: Any) -> bool:
    """
    Admins and supervisors may post on any loan; advisors only on loans of
    their own clients. Whether the loan is ``activo`` is checked by the caller.
    """
    if principal.role in ADMIN_ROLES or principal.role == Role.SUPERVISOR:
        return True
    if principal.role == Role.ADVISOR:
        return _loan_client_matches(loan, client) and client.asesor_id == principal.id
    return False


# Back office

def can_manage_users(principal: Principal) -> bool:
    return principal.role == Role.SYSTEM_ADMIN


def can_manage_finances(principal: Principal) -> bool:
    return principal.role in ADMIN_ROLES


def can_manage_goals(principal: Principal) -> bool:
    return principal.role in ADMIN_ROLES


def can_view_goals(principal: Principal, asesor_id: Optional[str] = None) -> bool:
    """
    Admins see every goal; supervisors see goals of the advisors they
    supervise (any of them when ``asesor_id`` is omitted).
    """
    if principal.role in ADMIN_ROLES:
        return True
    if principal.role == Role.SUPERVISOR:
        return asesor_id is None or asesor_id in principal.supervised_advisor_ids
    return False


def can_update_goal_progress(principal: Principal, asesor_id: str) -> bool:
    return can_view_goals(principal, asesor_id)


def can_review_cash_closing(principal: Principal) -> bool:
    return principal.role in ADMIN_ROLES


def can_view_team(principal: Principal, supervisor_id: str) -> bool:
    """Admins see every team, a supervisor only their own"""
    return principal.role in ADMIN_ROLES or principal.id == supervisor_id


def can_change_password(principal: Principal, user_id: str) -> bool:
    return principal.id == user_id or can_manage_users(principal)


def require(allowed: bool, action: str, principal: Optional[Principal] = None,
            resource_id: Optional[str] = None) -> None:
    """
    Raise UnauthorizedError unless ``allowed``.

    Args:
        allowed: Result of a policy predicate
        action: Human readable action, used in the error message
        principal: Principal attempting the action
        resource_id: ID of the resource involved
    """
    if not allowed:
        raise UnauthorizedError(
            action,
            principal_id=principal.id if principal else None,
            resource_id=resource_id
        )
