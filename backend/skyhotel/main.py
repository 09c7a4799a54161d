import logging
import os
from contextlib import asynccontextmanager
from logging.handlers import RotatingFileHandler
from pathlib import Path

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from skyhotel.config import settings

# ─── Logging setup (file + console) ───
_LOG_DIR = Path(__file__).resolve().parent.parent / "logs"
_LOG_DIR.mkdir(exist_ok=True)

_log_level = getattr(logging, os.environ.get("LOG_LEVEL", "INFO").upper(), logging.INFO)

logging.basicConfig(
    level=_log_level,
    format="%(asctime)s %(levelname)-8s [%(name)s] %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
    handlers=[
        logging.StreamHandler(),
        RotatingFileHandler(
            _LOG_DIR / "skyhotel.log",
            maxBytes=10 * 1024 * 1024,  # 10 MB
            backupCount=5,
            encoding="utf-8",
        ),
    ],
)

# Quiet noisy libraries
logging.getLogger("httpcore").setLevel(logging.WARNING)
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
logging.getLogger("apscheduler.executors.default").setLevel(logging.WARNING)

from skyhotel.exception_handlers import register_exception_handlers
from skyhotel.routers import (
    auth,
    blacklist,
    corporate_agreements,
    hotels,
    orders,
    pool_accounts,
    price_monitors,
    system,
    users,
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup: background scheduler for price checks and fulfillment sweeps
    scheduler = None
    if settings.scheduler_enabled:
        try:
            from apscheduler.schedulers.asyncio import AsyncIOScheduler
            from apscheduler.triggers.interval import IntervalTrigger

            scheduler = AsyncIOScheduler()

            async def _run_price_checks():
                from skyhotel.database import async_session_factory
                from skyhotel.services.price_watch_service import price_watch_service
                from skyhotel.services.provider_client import provider_client
                async with async_session_factory() as db:
                    reached = await price_watch_service.check_all(db, provider_client)
                    if reached:
                        logger.info(f"Price monitors: {reached} tasks reached target")

            async def _run_fulfillment_sweep():
                from skyhotel.services.fulfillment_driver import fulfillment_driver
                counts = await fulfillment_driver.sweep()
                if any(counts.values()):
                    logger.info(f"Fulfillment sweep: {counts}")

            scheduler.add_job(
                _run_price_checks,
                IntervalTrigger(minutes=settings.price_watch_check_interval_minutes),
                id="price_checks",
                max_instances=1,
                coalesce=True,
            )
            scheduler.add_job(
                _run_fulfillment_sweep,
                IntervalTrigger(minutes=settings.fulfillment_refresh_interval_minutes),
                id="fulfillment_sweep",
                max_instances=1,
                coalesce=True,
            )

            scheduler.start()
            logger.info("Background scheduler started")
        except Exception as e:
            logger.error(f"Scheduler failed to start: {e}")
            scheduler = None

    # Auto-seed admin/config if DB is empty (dev convenience)
    try:
        from skyhotel.seed import seed
        await seed()
    except Exception as e:
        logger.warning(f"Auto-seed skipped: {e}")

    yield

    # Shutdown
    if scheduler:
        scheduler.shutdown(wait=False)
        logger.info("Background scheduler stopped")

    from skyhotel.services.cache_service import cache_service
    from skyhotel.services.provider_client import provider_client
    await provider_client.close()
    await cache_service.close()


app = FastAPI(
    title="SkyHotel",
    description="Hotel booking orchestration for travel agents",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origin_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)

app.include_router(auth.router, prefix="/api/auth", tags=["auth"])
app.include_router(orders.router, prefix="/api/orders", tags=["orders"])
app.include_router(hotels.router, prefix="/api/hotels", tags=["hotels"])
app.include_router(blacklist.router, prefix="/api/blacklist", tags=["blacklist"])
app.include_router(price_monitors.router, prefix="/api/price-monitors", tags=["price-monitors"])
app.include_router(pool_accounts.router, prefix="/api/pool-accounts", tags=["pool-accounts"])
app.include_router(users.router, prefix="/api/users", tags=["users"])
app.include_router(system.router, prefix="/api/system", tags=["system"])
app.include_router(corporate_agreements.router, prefix="/api/corporate-agreements", tags=["corporate-agreements"])


@app.get("/api/health")
async def health_check():
    return {"status": "ok", "service": "skyhotel"}
