"""
app.py: FastAPI application factory and startup lifecycle.

This is the ASGI application object imported by uvicorn.
It wires all services, registers routers, and runs startup initialization.

Usage (via launcher):
    python main.py

Usage (direct uvicorn):
    uvicorn app:app --reload
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from logistics_backend.controllers.admin_controller import router as admin_router
from logistics_backend.controllers.forms_controller import router as forms_router
from logistics_backend.controllers.notification_controller import router as notification_router
from logistics_backend.controllers.vendor_controller import router as vendor_router
from logistics_backend.repository.data_repository import DataRepository
from logistics_backend.services.access_service import AccessLinkService
from logistics_backend.services.allocation_service import AllocationReconciliationService
from logistics_backend.services.assignment_service import VehicleAssignmentService
from logistics_backend.services.audit_service import AuditService
from logistics_backend.services.auth_service import AuthService
from logistics_backend.services.container_service import ContainerService
from logistics_backend.services.form_service import TransportFormService
from logistics_backend.services.notification_service import (
    InboxNotifier,
    NotificationService,
    Notifier,
)
from logistics_backend.services.user_service import UserService
from logistics_backend.utils.config import Settings, get_settings
from logistics_backend.utils.logger import get_logger


logger = get_logger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    notifier: Optional[Notifier] = None,
) -> FastAPI:
    """
    Build and wire the FastAPI application.

    Instantiates all services with explicit dependency injection via app.state.
    Every dependency is traceable from this function.
    """
    settings = settings or get_settings()

    # --- Repository (SQLite connection factory + transactions) ---
    repository = DataRepository(settings)

    # --- Services ---
    audit_service = AuditService(repository=repository, settings=settings)
    notifier = notifier or InboxNotifier(repository=repository, settings=settings)
    reconciliation_service = AllocationReconciliationService(
        repository=repository,
        settings=settings,
        notifier=notifier,
        audit_service=audit_service,
    )
    form_service = TransportFormService(
        repository=repository,
        settings=settings,
        reconciliation_service=reconciliation_service,
        audit_service=audit_service,
    )
    container_service = ContainerService(
        repository=repository,
        settings=settings,
        form_service=form_service,
        audit_service=audit_service,
    )
    assignment_service = VehicleAssignmentService(
        repository=repository,
        settings=settings,
        audit_service=audit_service,
    )
    user_service = UserService(repository=repository, settings=settings, audit_service=audit_service)
    notification_service = NotificationService(repository=repository, settings=settings)
    access_link_service = AccessLinkService(
        repository=repository,
        settings=settings,
        audit_service=audit_service,
    )
    auth_service = AuthService(repository=repository, settings=settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Run startup initialization before accepting requests."""
        _startup(app, settings)
        yield

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        lifespan=lifespan,
    )

    # --- Routers ---
    app.include_router(forms_router)
    app.include_router(vendor_router)
    app.include_router(notification_router)
    app.include_router(admin_router)

    @app.get("/health", tags=["health"])
    async def health() -> dict[str, str]:
        return {"status": "ok", "version": settings.app_version}

    # --- Inject services into app.state for dependency resolution ---
    app.state.repository = repository
    app.state.audit_service = audit_service
    app.state.reconciliation_service = reconciliation_service
    app.state.form_service = form_service
    app.state.container_service = container_service
    app.state.assignment_service = assignment_service
    app.state.user_service = user_service
    app.state.notification_service = notification_service
    app.state.access_link_service = access_link_service
    app.state.auth_service = auth_service

    return app


def _startup(app: FastAPI, settings: Settings) -> None:
    """
    Idempotent startup sequence. Safe to re-run on server restarts.

    Schema must exist before the default accounts are seeded.
    """
    repository: DataRepository = app.state.repository
    user_service: UserService = app.state.user_service

    logger.info("Startup: initializing database schema")
    repository.initialize_database()

    if settings.seed_default_users:
        logger.info("Startup: seeding default users (skipped if already initialized)")
        user_service.initialize_default_users()

    logger.info("Startup complete, system ready")


# Module-level app object for uvicorn
app = create_app()
