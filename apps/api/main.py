"""
Virtual Staging Credits - FastAPI Backend
Credit ledger API with health checks and the periodic expiry sweep.
"""

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from config import settings, validate_security_settings
from database import engine, Base
import models  # noqa: F401
from routers import health, credits, billing, metrics
from services.credits import CreditService, create_credit_service


logger = logging.getLogger(__name__)


async def _periodic_expiry_sweep(service: CreditService) -> None:
    interval_minutes = max(int(settings.EXPIRY_SWEEP_INTERVAL_MINUTES), 0)
    if interval_minutes <= 0:
        return
    while True:
        await asyncio.sleep(interval_minutes * 60)
        try:
            expired = await service.sweep_expired()
            if expired:
                print(f"⏳ Expiry sweep: expired {expired} credit balances")
        except Exception as exc:
            logger.exception("Expiry sweep tick failed: %s", exc)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown."""
    # Startup
    print("🚀 Starting Virtual Staging Credits API...")
    validate_security_settings()
    if settings.AUTO_CREATE_DB_SCHEMA:
        try:
            async with engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
            print("🗄️ Database schema verified.")
        except Exception as e:
            print(f"⚠️ Database bootstrap skipped: {e}")

    service = create_credit_service()
    app.state.credit_service = service
    print(f"📦 Loaded {len(service.packs.bundles())} purchasable credit packs.")

    sweep_task = None
    if int(settings.EXPIRY_SWEEP_INTERVAL_MINUTES) > 0:
        sweep_task = asyncio.create_task(_periodic_expiry_sweep(service))
        print(
            "📅 Credit expiry sweep enabled "
            f"(every {int(settings.EXPIRY_SWEEP_INTERVAL_MINUTES)} min)."
        )
    yield
    # Shutdown
    if sweep_task is not None:
        sweep_task.cancel()
        try:
            await sweep_task
        except asyncio.CancelledError:
            pass
    print("👋 Shutting down API...")


app = FastAPI(
    title="Virtual Staging Credits API",
    description="Staging credit ledger: idempotent grants, deductions and expiry",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(health.router, tags=["Health"])
app.include_router(credits.router, prefix="/credits", tags=["Credits"])
app.include_router(billing.router, prefix="/billing", tags=["Billing"])
app.include_router(metrics.router, tags=["Metrics"])


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "name": "Virtual Staging Credits API",
        "version": "0.1.0",
        "status": "running"
    }
