# tasktracker/main.py
import functools
import logging
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import exc as sa_exc
from starlette.exceptions import HTTPException as StarletteHTTPException
from tasktracker.config import settings
from tasktracker.core.clock import system_clock
from tasktracker.core.errors import NotFound, StoreFailure
from tasktracker.database import AsyncSessionLocal, Base, engine
from tasktracker.models.task import Task, TaskComment  # noqa: F401  (register tables)
from tasktracker.models.user import User  # noqa: F401
from tasktracker.routers import auth, task
from tasktracker.services.lifecycle import run_sweep
from tasktracker.services.scheduler import SweepScheduler
from tasktracker.utils.logger import setup_logging

logger = logging.getLogger(__name__)


app = FastAPI(title="Task Tracker API", version="1.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include Routers
app.include_router(auth.router)
app.include_router(task.router)


def error_body(message, **extra) -> dict:
    return {"success": False, "message": message, **extra}


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(exc.detail),
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=400,
        content=error_body("Validation failed", errors=jsonable_encoder(exc.errors())),
    )


@app.exception_handler(NotFound)
async def not_found_handler(request: Request, exc: NotFound):
    return JSONResponse(status_code=404, content=error_body(exc.message or "Not found"))


@app.exception_handler(StoreFailure)
async def store_failure_handler(request: Request, exc: StoreFailure):
    logger.warning("%s %s: %s", request.method, request.url.path, exc.message, exc_info=exc)
    return JSONResponse(status_code=503, content=error_body("Storage temporarily unavailable"))


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content=error_body(str(exc) or "Internal server error"))


def build_scheduler() -> SweepScheduler:
    job = functools.partial(
        run_sweep,
        AsyncSessionLocal,
        clock=system_clock,
        grace_period=settings.grace_period,
        concurrency=settings.PURGE_CONCURRENCY,
    )
    return SweepScheduler(
        job,
        clock=system_clock,
        interval=settings.sweep_interval,
        run_at=settings.sweep_run_at,
        timeout=settings.SWEEP_TIMEOUT_SECONDS,
    )


# Create DB Tables (quick start; use Alembic migrations in prod)
@app.on_event("startup")
async def startup_event():
    setup_logging(settings.LOG_LEVEL, settings.LOG_FILE)

    # create tables (async). ignore duplicate-object errors from previous partial runs.
    async with engine.begin() as conn:
        try:
            await conn.run_sync(Base.metadata.create_all)
        except sa_exc.IntegrityError as e:
            msg = str(getattr(e, "orig", e))
            if "duplicate key value violates unique constraint" in msg or "already exists" in msg:
                logger.warning("Ignored duplicate DDL error during create_all: %s", msg)
            else:
                raise

    if settings.SWEEP_ENABLED:
        app.state.scheduler = build_scheduler()
        app.state.scheduler.start()


@app.on_event("shutdown")
async def shutdown_event():
    scheduler = getattr(app.state, "scheduler", None)
    if scheduler is not None:
        await scheduler.stop()
    await engine.dispose()


@app.get("/")
def read_root():
    return {"message": "Task Management API is running!"}

if __name__ == "__main__":
    import uvicorn
    uvicorn.run("tasktracker.main:app", host="0.0.0.0", port=8000, reload=True)
