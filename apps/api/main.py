# FastAPI entrypoint with all routes, middleware and error mapping

from contextlib import asynccontextmanager
from typing import Optional
import os

from fastapi import APIRouter, Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger

from apps.api.container import ServiceContainer
from auth.admin_routes import router as admin_router
from auth.rbac_dependencies import Principal, get_container, get_principal
from auth.security_middleware import (
    AuditLoggingMiddleware,
    SecurityHeadersMiddleware,
    SecurityLoggingMiddleware,
)
from core.errors import DocGateError
from documents.doc_routes import router as document_router

FRONTEND_DOMAINS = [
    origin.strip()
    for origin in os.getenv("CORS_ORIGINS", "http://localhost:5173,http://localhost:3000").split(",")
    if origin.strip()
]

router = APIRouter(prefix="/api", tags=["navigation"])


@router.get("/navigation")
def get_navigation(
    principal: Principal = Depends(get_principal),
    container=Depends(get_container)
):
    """Sidebar entries the caller holds the capability for."""
    return {"navigation": container.navigation.for_user(principal.user_id)}


# ==================== ERROR HANDLERS ====================

async def docgate_error_handler(request: Request, exc: DocGateError):
    if exc.status_code >= 500:
        logger.error(f"[API] {type(exc).__name__} on {request.method} {request.url.path}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = [
        {"field": ".".join(str(p) for p in err.get("loc", ())), "message": err.get("msg")}
        for err in exc.errors()
    ]
    return JSONResponse(
        status_code=400,
        content={"error": "Invalid request", "code": "ValidationError", "details": {"errors": errors}},
    )


async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception(f"[API] Unhandled {type(exc).__name__} on {request.method} {request.url.path}")
    return JSONResponse(status_code=500, content={"error": "Internal server error", "code": "InternalError"})


# ==================== APP FACTORY ====================

def create_app(container: Optional[ServiceContainer] = None) -> FastAPI:

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if getattr(app.state, "container", None) is None:
            app.state.container = ServiceContainer()
        logger.info("Initializing database...")
        app.state.container.startup()
        logger.info("✓ Database initialized")
        yield
        app.state.container.shutdown()

    app = FastAPI(
        title="DocGate API",
        description="Capability-based authorization and document hierarchy",
        version="1.0.0",
        lifespan=lifespan,
    )
    if container is not None:
        app.state.container = container

    # ==================== MIDDLEWARE STACK ====================

    app.add_middleware(AuditLoggingMiddleware)
    app.add_middleware(SecurityLoggingMiddleware)
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=FRONTEND_DOMAINS,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization", "Accept", "Origin"],
        max_age=86400,
    )

    app.add_exception_handler(DocGateError, docgate_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)

    app.include_router(router)              # /api/navigation
    app.include_router(document_router)     # /api/documents
    app.include_router(admin_router)        # /api/admin

    @app.get("/health")
    def health(container=Depends(get_container)):
        database_ok = container.db.health_check()
        return {
            "status": "healthy" if database_ok else "degraded",
            "database": database_ok,
            "capabilityCache": container.cache.stats(),
        }

    return app


app = create_app()
