# consultpay/main.py
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Callable, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from consultpay import __version__
from consultpay.core.config import Settings, load_settings
from consultpay.core.scheduler import AsyncioScheduler, Scheduler
from consultpay.integrations.consult_api import ConsultApi, resolve_api

# Import Routers
from consultpay.api.v1 import bookings
from consultpay.api.v1 import payments
from consultpay.services.booking_desk import BookingDesk
from consultpay.services.session_registry import PaymentSessionRegistry

logger = logging.getLogger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    api: Optional[ConsultApi] = None,
    scheduler_factory: Optional[Callable[[], Scheduler]] = None,
) -> FastAPI:
    """Build the payment session host.

    Every payment session gets a scheduler of its own from
    ``scheduler_factory`` (AsyncioScheduler bound to the serving loop by
    default).
    """
    settings = settings or load_settings()
    api = api or resolve_api(settings)
    registry = PaymentSessionRegistry()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("🚀 Payment host started (backend: %s)", api.name)
        yield
        logger.info("🛑 Closing %d open payment session(s)", registry.active_count())
        registry.close_all()

    app = FastAPI(
        title="Consultation Payments API",
        description="M-Pesa payment confirmation for consultation bookings",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.api = api
    app.state.registry = registry
    app.state.desk = BookingDesk(api)
    app.state.scheduler_factory = scheduler_factory or AsyncioScheduler

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Restrict in production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    # Include routers
    app.include_router(bookings.router, prefix="/api/bookings", tags=["bookings"])
    app.include_router(payments.router, prefix="/api/payments", tags=["payments"])

    @app.get("/")
    async def root():
        """Root endpoint"""
        return {
            "message": "Consultation Payments API",
            "version": __version__,
            "status": "running",
        }

    @app.get("/health")
    async def health():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "backend": api.name,
            "open_sessions": registry.active_count(),
        }

    return app


app = create_app()
