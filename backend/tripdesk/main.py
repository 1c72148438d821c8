import logging
import os
from contextlib import asynccontextmanager
from logging.handlers import RotatingFileHandler
from pathlib import Path

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from tripdesk.config import settings

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
            _LOG_DIR / "tripdesk.log",
            maxBytes=10 * 1024 * 1024,  # 10 MB
            backupCount=5,
            encoding="utf-8",
        ),
    ],
)

# Quiet noisy libraries
logging.getLogger("aiosqlite").setLevel(logging.WARNING)
logging.getLogger("apscheduler").setLevel(logging.WARNING)
logging.getLogger("uvicorn.access").setLevel(logging.WARNING)

from tripdesk.database import async_session_factory, init_models
from tripdesk.errors import NotFoundError, TripEngineError, ValidationError
from tripdesk.routers import tools, trips
from tripdesk.services.engine import build_engine_context
from tripdesk.services.trip_tools import TripTools

logger = logging.getLogger(__name__)


def _start_scheduler(trip_tools: TripTools) -> AsyncIOScheduler:
    scheduler = AsyncIOScheduler()

    async def _refresh_facts():
        async with async_session_factory() as db:
            result = await trip_tools.recompute_facts(db)
            if result["processed"]:
                logger.info(f"Fact refresh: {result['processed']} trips recomputed, {result['remaining']} pending")

    async def _audit_assignments():
        async with async_session_factory() as db:
            diverged = await trip_tools.consistency.audit(db, settings.reconcile_audit_batch)
            if diverged:
                logger.warning(f"Assignment audit: trips {[r['trip_id'] for r in diverged]} need repair")

    scheduler.add_job(
        _refresh_facts,
        IntervalTrigger(minutes=settings.facts_refresh_interval_minutes),
        id="refresh_facts",
        max_instances=1,
    )
    scheduler.add_job(
        _audit_assignments,
        CronTrigger(hour=settings.reconcile_audit_hour, minute=0),
        id="audit_assignments",
    )
    scheduler.start()
    logger.info("Background scheduler started")
    return scheduler


@asynccontextmanager
async def lifespan(app: FastAPI):
    if settings.auto_create_tables:
        await init_models()

    app.state.tools = TripTools(build_engine_context(settings), settings)

    scheduler = _start_scheduler(app.state.tools) if settings.scheduler_enabled else None

    yield

    if scheduler:
        scheduler.shutdown(wait=False)
        logger.info("Background scheduler stopped")


app = FastAPI(
    title="TripDesk",
    description="Trip resolution and data consistency engine",
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


@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError):
    return JSONResponse(status_code=422, content=exc.to_dict())


@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError):
    return JSONResponse(status_code=404, content=exc.to_dict())


@app.exception_handler(TripEngineError)
async def engine_error_handler(request: Request, exc: TripEngineError):
    return JSONResponse(status_code=400, content=exc.to_dict())


@app.exception_handler(SQLAlchemyError)
async def database_error_handler(request: Request, exc: SQLAlchemyError):
    logger.error(f"Database error on {request.method} {request.url.path}: {exc}")
    return JSONResponse(
        status_code=503,
        content={
            "error": "storage_unavailable",
            "cause": "The trip store could not complete the request",
            "alternatives": ["Retry the request shortly", "Check the database connection settings"],
        },
    )


app.include_router(tools.router, prefix="/api/tools", tags=["tools"])
app.include_router(trips.router, prefix="/api/trips", tags=["trips"])


@app.get("/api/health")
async def health_check():
    return {"status": "ok", "service": "tripdesk"}
