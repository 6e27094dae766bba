"""
Microfinance API Application Factory
"""

from typing import Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .. import __version__
from ..errors import (
    ConflictError, InvalidStateError, MicrofinanceError, NotFoundError, StoreFailureError,
    UnauthorizedError, ValidationError
)
from ..logging_config import get_logger, log_action, setup_logging
from .auth import MicrofinanceSystem, router as auth_router
from .clientes import router as clientes_router
from .cobranzas import router as cobranzas_router
from .dashboard import router as dashboard_router
from .finanzas import router as finanzas_router
from .metas import router as metas_router
from .prestamos import router as prestamos_router
from .usuarios import router as usuarios_router


logger = get_logger(__name__)

ERROR_STATUS = (
    (ValidationError, 400),
    (UnauthorizedError, 403),
    (NotFoundError, 404),
    (InvalidStateError, 409),
    (ConflictError, 409),
    (StoreFailureError, 503),
)


def status_for(error: MicrofinanceError) -> int:
    for error_type, status_code in ERROR_STATUS:
        if isinstance(error, error_type):
            return status_code
    return 500


def create_app(system: Optional[MicrofinanceSystem] = None) -> FastAPI:
    """Create and configure the FastAPI application"""
    system = system or MicrofinanceSystem()
    app = FastAPI(
        title="Microfinance Lending API",
        description="Client intake, loans, collections, finance and advisor goals",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc"
    )
    app.state.system = system

    # Add CORS middleware
    origins = [o.strip() for o in system.config.cors_origins.split(",") if o.strip()]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins or ["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(MicrofinanceError)
    async def handle_microfinance_error(request: Request, exc: MicrofinanceError):
        status_code = status_for(exc)
        level = "error" if status_code >= 500 else "warning"
        log_action(logger, level, str(exc), action=exc.code,
                   resource=f"{request.method} {request.url.path}")
        return JSONResponse(status_code=status_code, content=exc.to_dict())

    # Include routers
    app.include_router(auth_router, prefix="/auth", tags=["Auth"])
    app.include_router(clientes_router, prefix="/clientes", tags=["Clientes"])
    app.include_router(prestamos_router, prefix="/prestamos", tags=["Prestamos"])
    app.include_router(cobranzas_router, prefix="/cobranzas", tags=["Cobranzas"])
    app.include_router(finanzas_router, prefix="/finanzas", tags=["Finanzas"])
    app.include_router(metas_router, prefix="/metas", tags=["Metas"])
    app.include_router(usuarios_router, prefix="/usuarios", tags=["Usuarios"])
    app.include_router(dashboard_router, prefix="/dashboard", tags=["Dashboard"])

    # Health check endpoint
    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "service": "microfinance_api",
            "version": __version__
        }

    return app


def run_server(host: Optional[str] = None, port: Optional[int] = None, debug: bool = False):
    """Configure logging and serve the API with uvicorn"""
    system = MicrofinanceSystem()
    config = system.config
    setup_logging(level="DEBUG" if debug else config.log_level,
                  log_format=config.log_format, log_file=config.log_file)
    uvicorn.run(
        create_app(system),
        host=host or config.api_host,
        port=port or config.api_port,
        log_level="debug" if debug else "info"
    )
