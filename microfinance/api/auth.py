"""
Authentication dependencies, system wiring and session endpoints
"""

from decimal import Decimal
from typing import Callable, Optional

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from ..audit import AuditTrail
from ..clients import ClientManager
from ..collections import CollectionsManager
from ..config import MicrofinanceConfig, get_config
from ..datastore import DataStore, utcnow
from ..errors import UnauthorizedError
from ..finance import FinanceManager
from ..goals import GoalManager
from ..loans import LoanCoordinator
from ..logging_config import get_logger, log_action
from ..policy import Principal
from ..storage import StorageInterface, create_storage
from ..users import StaticIdentityProvider, TokenIdentityProvider, UserManager, issue_token
from .schemas import LoginRequest, SetupRequest, to_json


logger = get_logger(__name__)

# JWT Security
security = HTTPBearer(auto_error=False)


class MicrofinanceSystem:
    """Lending core with all components initialized"""

    def __init__(self, config: Optional[MicrofinanceConfig] = None,
                 storage: Optional[StorageInterface] = None,
                 clock: Optional[Callable] = None):
        self.config = config or get_config()
        self.clock = clock or utcnow

        # Initialize storage
        self.storage = storage or create_storage(self.config.database_url)
        self.store = DataStore(self.storage)
        self.audit_trail = AuditTrail(self.storage) if self.config.enable_audit_logging else None

        # Initialize managers
        self.users = UserManager(self.store, self.audit_trail)
        self.clients = ClientManager(self.store, self.audit_trail)
        self.collections = CollectionsManager(
            self.store, self.audit_trail,
            tolerance=Decimal(self.config.cash_closing_tolerance),
            clock=self.clock
        )
        self.finance = FinanceManager(self.store, self.audit_trail, clock=self.clock)
        self.goals = GoalManager(self.store, self.audit_trail, clock=self.clock)

    def loan_coordinator(self, principal: Principal) -> LoanCoordinator:
        """Coordinator acting on behalf of ``principal``"""
        return LoanCoordinator(self.store, StaticIdentityProvider(principal),
                               self.audit_trail, clock=self.clock)

    def page_limit(self, limit: Optional[int]) -> int:
        if not limit or limit < 1:
            return self.config.default_page_size
        return min(limit, self.config.max_page_size)


# Dependency to get the system bound to the application
def get_system(request: Request) -> MicrofinanceSystem:
    return request.app.state.system


def get_current_principal(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    system: MicrofinanceSystem = Depends(get_system)
) -> Principal:
    """Dependency that validates the bearer JWT and returns the acting principal"""
    token = credentials.credentials if credentials else None
    try:
        return TokenIdentityProvider(system.users, token, system.config).get_current_principal()
    except UnauthorizedError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=e.message,
            headers={"WWW-Authenticate": "Bearer"}
        )


def get_coordinator(
    principal: Principal = Depends(get_current_principal),
    system: MicrofinanceSystem = Depends(get_system)
) -> LoanCoordinator:
    return system.loan_coordinator(principal)


router = APIRouter()


@router.post("/login")
async def login(
    request: LoginRequest,
    system: MicrofinanceSystem = Depends(get_system)
):
    """Authenticate user and return JWT token"""
    try:
        user = system.users.authenticate(request.email, request.password)
    except UnauthorizedError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED,
                            detail="Invalid email or password")

    log_action(logger, "info", "User authenticated successfully",
               user_id=user.id, action="login", resource="auth")
    return {
        "access_token": issue_token(user, system.config),
        "token_type": "bearer",
        "expires_in": system.config.jwt_expiry_hours * 3600,
        "usuario": to_json(user),
    }


@router.post("/setup", status_code=status.HTTP_201_CREATED)
async def setup(
    request: SetupRequest,
    system: MicrofinanceSystem = Depends(get_system)
):
    """Create the first system administrator"""
    user = system.users.bootstrap_admin(request.email, request.nombre,
                                        request.apellido, request.password)
    return {"usuario": to_json(user), "message": "System administrator created"}


@router.get("/me")
async def me(
    principal: Principal = Depends(get_current_principal),
    system: MicrofinanceSystem = Depends(get_system)
):
    """Current user profile"""
    user = system.users.get_user(principal.id)
    data = to_json(user)
    data["rol_nombre"] = user.rol.label
    data["asesores_supervisados"] = sorted(principal.supervised_advisor_ids)
    return data
