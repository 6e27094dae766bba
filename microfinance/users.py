"""
Users and Identity Module

Staff user management and the identity providers that turn a request into
a Principal. Supervisor coverage is resolved here, one hop deep, from the
advisors whose ``supervisor_id`` points at the supervisor.
"""

import hashlib
import hmac
import secrets
from abc import ABC, abstractmethod
from datetime import timedelta
from typing import List, Optional

import jwt

from .audit import AuditEventType, AuditTrail
from .config import MicrofinanceConfig
from .datastore import DataStore, new_id, utcnow
from .errors import ConflictError, NotFoundError, UnauthorizedError, ValidationError
from .logging_config import get_logger, log_action
from .models import User
from .policy import Principal, Role, can_manage_users, require

logger = get_logger(__name__)

MIN_PASSWORD_LENGTH = 8


def _hash_password(password: str, salt: str) -> str:
    """scrypt password hash"""
    return hashlib.scrypt(password.encode(), salt=salt.encode(), n=16384, r=8, p=1).hex()


class UserManager:
    """Creates, updates and resolves staff users"""

    def __init__(self, store: DataStore, audit_trail: Optional[AuditTrail] = None):
        self.store = store
        self.audit = audit_trail

    def _log(self, event_type: AuditEventType, user: User, actor: Optional[str], **metadata):
        if self.audit:
            self.audit.log_event(
                event_type=event_type,
                entity_type="user",
                entity_id=user.id,
                metadata=metadata,
                user_id=actor
            )

    def _validate_supervisor(self, rol: Role, supervisor_id: Optional[str]) -> None:
        if supervisor_id is None:
            return
        if rol != Role.ADVISOR:
            raise ValidationError("Only advisors can have a supervisor", field="supervisor_id")
        supervisor = self.store.get_user(supervisor_id)
        if supervisor is None or not supervisor.activo or supervisor.rol != Role.SUPERVISOR:
            raise ValidationError("supervisor_id must reference an active supervisor",
                                  field="supervisor_id")

    def _new_user(self, email: str, nombre: str, apellido: str, rol: Role,
                  password: Optional[str], supervisor_id: Optional[str],
                  telefono: str) -> User:
        email = (email or "").strip().lower()
        if "@" not in email:
            raise ValidationError("A valid email is required", field="email")
        if not (nombre or "").strip():
            raise ValidationError("nombre is required", field="nombre")
        if not isinstance(rol, Role):
            try:
                rol = Role(rol)
            except ValueError:
                raise ValidationError(f"Unknown role: {rol}", field="rol")
        if self.store.list_users({"email": email}):
            raise ConflictError(f"User {email} already exists",
                                user_message="A user with this email already exists")
        self._validate_supervisor(rol, supervisor_id)

        now = utcnow()
        user = User(
            id=new_id(),
            created_at=now,
            updated_at=now,
            email=email,
            nombre=nombre.strip(),
            apellido=(apellido or "").strip(),
            rol=rol,
            supervisor_id=supervisor_id,
            telefono=telefono or ""
        )
        if password is not None:
            self._set_password(user, password)
        return self.store.insert_user(user)

    def _set_password(self, user: User, password: str) -> None:
        if len(password or "") < MIN_PASSWORD_LENGTH:
            raise ValidationError(
                f"Password must have at least {MIN_PASSWORD_LENGTH} characters", field="password"
            )
        user.password_salt = secrets.token_hex(16)
        user.password_hash = _hash_password(password, user.password_salt)

    def bootstrap_admin(self, email: str, nombre: str, apellido: str, password: str) -> User:
        """
        Create the first system administrator.

        Raises:
            ConflictError: If any user already exists
        """
        if self.store.list_users():
            raise ConflictError("Users already exist", user_message="The system is already set up")
        user = self._new_user(email, nombre, apellido, Role.SYSTEM_ADMIN, password, None, "")
        self._log(AuditEventType.USER_CREATED, user, None, rol=user.rol, bootstrap=True)
        log_action(logger, "info", "System administrator bootstrapped",
                   user_id=user.id, action="bootstrap_admin", resource="user")
        return user

    def create_user(self, principal: Principal, email: str, nombre: str, apellido: str,
                    rol: Role, password: Optional[str] = None,
                    supervisor_id: Optional[str] = None, telefono: str = "") -> User:
        """
        Create a staff user.

        Args:
            principal: Acting principal (must be a system administrator)
            email: Unique login email
            nombre: First name
            apellido: Last name
            rol: Role of the new user
            password: Optional initial password
            supervisor_id: Supervising user, advisors only
            telefono: Contact phone

        Returns:
            Created User
        """
        require(can_manage_users(principal), "manage users", principal)
        user = self._new_user(email, nombre, apellido, rol, password, supervisor_id, telefono)
        self._log(AuditEventType.USER_CREATED, user, principal.id,
                  rol=user.rol, supervisor_id=supervisor_id)
        log_action(logger, "info", "User created", user_id=principal.id,
                   action="create_user", resource=f"user:{user.id}",
                   extra={"rol": user.rol.value})
        return user

    def get_user(self, user_id: str) -> User:
        user = self.store.get_user(user_id)
        if user is None:
            raise NotFoundError("user", user_id)
        return user

    def list_users(self, principal: Principal, rol: Optional[Role] = None,
                   search: Optional[str] = None, include_inactive: bool = True) -> List[User]:
        """Users filtered by role and a case-insensitive name/email search"""
        require(can_manage_users(principal), "list users", principal)
        filters = {"rol": rol} if rol else {}
        if not include_inactive:
            filters["activo"] = True
        users = self.store.list_users(filters)
        if search:
            term = search.strip().lower()
            users = [
                u for u in users
                if term in u.nombre_completo.lower() or term in u.email.lower()
            ]
        return users

    def _active_system_admins(self) -> List[User]:
        return self.store.list_users({"rol": Role.SYSTEM_ADMIN, "activo": True})

    def update_user(self, principal: Principal, user_id: str, nombre: Optional[str] = None,
                    apellido: Optional[str] = None, telefono: Optional[str] = None,
                    rol: Optional[Role] = None) -> User:
        """Update profile fields or the role of a user"""
        require(can_manage_users(principal), "manage users", principal, user_id)
        user = self.get_user(user_id)
        patch = {}
        if nombre is not None:
            if not nombre.strip():
                raise ValidationError("nombre is required", field="nombre")
            patch["nombre"] = nombre.strip()
        if apellido is not None:
            patch["apellido"] = apellido.strip()
        if telefono is not None:
            patch["telefono"] = telefono
        if rol is not None and rol != user.rol:
            if user.rol == Role.SYSTEM_ADMIN and len(self._active_system_admins()) <= 1:
                raise ConflictError(
                    "Cannot demote the last system administrator",
                    user_message="At least one active system administrator is required"
                )
            patch["rol"] = rol
            if rol != Role.ADVISOR:
                patch["supervisor_id"] = None
        if not patch:
            return user
        updated = self.store.update_user(user_id, patch)
        self._log(AuditEventType.USER_UPDATED, updated, principal.id, changes=patch)
        return updated

    def assign_supervisor(self, principal: Principal, advisor_id: str,
                          supervisor_id: Optional[str]) -> User:
        """Point an advisor at a supervisor (or detach it with None)"""
        require(can_manage_users(principal), "manage users", principal, advisor_id)
        advisor = self.get_user(advisor_id)
        if advisor.rol != Role.ADVISOR:
            raise ValidationError("Only advisors can have a supervisor", field="supervisor_id")
        self._validate_supervisor(advisor.rol, supervisor_id)
        updated = self.store.update_user(advisor_id, {"supervisor_id": supervisor_id})
        self._log(AuditEventType.USER_UPDATED, updated, principal.id, supervisor_id=supervisor_id)
        return updated

    def deactivate_user(self, principal: Principal, user_id: str) -> User:
        """
        Deactivate a user. The last active system administrator cannot be
        deactivated.
        """
        require(can_manage_users(principal), "manage users", principal, user_id)
        user = self.get_user(user_id)
        if not user.activo:
            return user
        if user.rol == Role.SYSTEM_ADMIN and len(self._active_system_admins()) <= 1:
            raise ConflictError(
                "Cannot deactivate the last system administrator",
                user_message="At least one active system administrator is required"
            )
        updated = self.store.update_user(user_id, {"activo": False})
        self._log(AuditEventType.USER_DEACTIVATED, updated, principal.id)
        log_action(logger, "info", "User deactivated", user_id=principal.id,
                   action="deactivate_user", resource=f"user:{user_id}")
        return updated

    def change_password(self, user_id: str, new_password: str) -> None:
        user = self.get_user(user_id)
        self._set_password(user, new_password)
        self.store.update_user(user_id, {
            "password_hash": user.password_hash,
            "password_salt": user.password_salt,
        })

    def authenticate(self, email: str, password: str) -> User:
        """
        Check credentials.

        Raises:
            UnauthorizedError: On unknown email, wrong password or inactive user
        """
        users = self.store.list_users({"email": (email or "").strip().lower()})
        user = users[0] if users else None
        if (user is None or not user.activo or not user.password_hash
                or not hmac.compare_digest(
                    user.password_hash, _hash_password(password or "", user.password_salt))):
            log_action(logger, "warning", "Login failed", action="login",
                       extra={"email": email})
            raise UnauthorizedError("authenticate")
        return user

    def list_advisors_under_supervisor(self, supervisor_id: str) -> List[User]:
        return self.store.list_advisors_under_supervisor(supervisor_id)

    def get_principal(self, user_id: str) -> Principal:
        """
        Resolve a user into a Principal.

        Raises:
            UnauthorizedError: If the user is missing or inactive
        """
        user = self.store.get_user(user_id)
        if user is None or not user.activo:
            raise UnauthorizedError("authenticate", principal_id=user_id)
        supervised = frozenset()
        if user.rol == Role.SUPERVISOR:
            supervised = frozenset(a.id for a in self.list_advisors_under_supervisor(user.id))
        return Principal(
            id=user.id,
            role=user.rol,
            supervisor_id=user.supervisor_id,
            supervised_advisor_ids=supervised,
            nombre=user.nombre_completo
        )


def issue_token(user: User, config: MicrofinanceConfig) -> str:
    """Signed bearer token for ``user``"""
    now = utcnow()
    payload = {
        "sub": user.id,
        "rol": user.rol.value,
        "iat": now,
        "exp": now + timedelta(hours=config.jwt_expiry_hours),
    }
    return jwt.encode(payload, config.jwt_secret, algorithm=config.jwt_algorithm)


class IdentityProvider(ABC):
    """Source of the principal acting in the current request"""

    @abstractmethod
    def get_current_principal(self) -> Principal:
        pass


class StaticIdentityProvider(IdentityProvider):
    """Always returns the same principal (scripts and tests)"""

    def __init__(self, principal: Principal):
        self.principal = principal

    def get_current_principal(self) -> Principal:
        return self.principal


class TokenIdentityProvider(IdentityProvider):
    """Resolves a bearer JWT into a fresh Principal on every call"""

    def __init__(self, users: UserManager, token: Optional[str], config: MicrofinanceConfig):
        self.users = users
        self.token = token
        self.config = config

    def get_current_principal(self) -> Principal:
        if not self.token:
            raise UnauthorizedError("authenticate")
        try:
            payload = jwt.decode(self.token, self.config.jwt_secret,
                                 algorithms=[self.config.jwt_algorithm])
        except jwt.ExpiredSignatureError:
            raise UnauthorizedError("authenticate with an expired token")
        except jwt.InvalidTokenError:
            raise UnauthorizedError("authenticate with an invalid token")
        user_id = payload.get("sub")
        if not user_id:
            raise UnauthorizedError("authenticate with an invalid token")
        return self.users.get_principal(user_id)
