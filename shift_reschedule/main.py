import asyncio
import contextlib
import logging
import time
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from shift_reschedule.config import get_settings
from shift_reschedule.db import init_db
from shift_reschedule.errors import AppError
from shift_reschedule.routers import health, reschedule, shifts, staff
from shift_reschedule.schemas import ApiError
from shift_reschedule.sweeper import run_sweeper

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)
logger = logging.getLogger("shift-reschedule")


@asynccontextmanager
async def lifespan(_: FastAPI):
    settings = get_settings()
    if settings.dev_mode:
        await init_db()
        logger.info("Database tables initialized in dev mode.")
    sweeper: asyncio.Task | None = None
    if settings.reschedule_sweep_interval_seconds > 0:
        sweeper = asyncio.create_task(run_sweeper(settings.reschedule_sweep_interval_seconds))
    yield
    if sweeper is not None:
        sweeper.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await sweeper


app = FastAPI(title="Shift Reschedule Service", version="1.0.0", lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.include_router(reschedule.router)
app.include_router(staff.router)
app.include_router(shifts.router)
app.include_router(health.router)


@app.middleware("http")
async def request_context_middleware(request: Request, call_next):
    request_id = str(uuid.uuid4())
    correlation_id = request.headers.get("x-correlation-id", str(uuid.uuid4()))
    request.state.request_id = request_id
    request.state.correlation_id = correlation_id
    started = time.perf_counter()
    response = await call_next(request)
    elapsed_ms = round((time.perf_counter() - started) * 1000, 2)
    response.headers["x-request-id"] = request_id
    response.headers["x-correlation-id"] = correlation_id
    logger.info(
        "request_complete",
        extra={
            "request_id": request_id,
            "correlation_id": correlation_id,
            "path": request.url.path,
            "method": request.method,
            "status_code": response.status_code,
            "elapsed_ms": elapsed_ms,
        },
    )
    return response


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    correlation_id = getattr(request.state, "correlation_id", str(uuid.uuid4()))
    if exc.status_code >= 500:
        logger.error(
            "request_failed",
            extra={"correlation_id": correlation_id, "error_code": exc.error_code.value},
        )
    return JSONResponse(
        status_code=exc.status_code,
        content=ApiError(
            errorCode=exc.error_code,
            userMessage=exc.user_message,
            developerMessage=exc.developer_message,
            correlationId=correlation_id,
        ).model_dump(mode="json"),
    )
