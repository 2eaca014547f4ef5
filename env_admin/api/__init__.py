"""
Environment Administration API Application Factory
"""

import logging
import uvicorn

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .session import router as session_router
from .environments import router as environments_router
from .integrations import router as integrations_router
from .profiles import router as profiles_router
from .logins import router as logins_router
from .clt import router as clt_router
from .portal import router as portal_router
from .. import __version__
from ..exceptions import (
    AdminError, AuthenticationError, ConflictError, FilesystemError, ForbiddenError,
    NotFoundError, StorageIOError, ValidationError, VerificationFailedError
)

logger = logging.getLogger("env_admin.api")

# Checked in order; the first matching class decides the status code
ERROR_STATUS = (
    (NotFoundError, 404),
    (ConflictError, 409),
    (ForbiddenError, 403),
    (ValidationError, 400),
    (StorageIOError, 500),
    (FilesystemError, 500),
    (VerificationFailedError, 400),
    (AuthenticationError, 401),
)


def status_for(error: AdminError) -> int:
    for error_class, status_code in ERROR_STATUS:
        if isinstance(error, error_class):
            return status_code
    return 500


def create_app() -> FastAPI:
    """Create and configure the FastAPI application"""
    app = FastAPI(
        title="Environment Administration API",
        description="Provisioning, synchronization and access control for ported environments",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc"
    )
    
    # Add CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    
    @app.exception_handler(AdminError)
    async def admin_error_handler(request: Request, exc: AdminError):
        status_code = status_for(exc)
        if status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
        return JSONResponse(status_code=status_code, content=exc.to_dict())
    
    # Include routers
    app.include_router(session_router, prefix="/api/admin", tags=["Auth"])
    app.include_router(environments_router, prefix="/api/admin", tags=["Environments"])
    app.include_router(integrations_router, prefix="/api/admin/integrations", tags=["Integrations"])
    app.include_router(profiles_router, prefix="/api/admin/profiles", tags=["Profiles"])
    app.include_router(logins_router, prefix="/api/admin/logins", tags=["Logins"])
    app.include_router(clt_router, prefix="/api/admin/clt", tags=["CLT"])
    app.include_router(portal_router, prefix="/api/environment", tags=["Environment"])
    
    # Health check endpoint
    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "service": "env_admin_api",
            "version": __version__
        }
    
    return app


def run_server(host: str = "0.0.0.0", port: int = 7000, debug: bool = False,
               log_level: str = "info"):
    """Run the FastAPI server"""
    uvicorn.run(
        "env_admin.api:create_app",
        factory=True,
        host=host,
        port=port,
        reload=debug,
        log_level=log_level.lower()
    )
