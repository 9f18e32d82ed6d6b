import logging
import time
from contextlib import asynccontextmanager
from uuid import uuid4

from fastapi import FastAPI
from fastapi import Request, Response
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from grooming.core.config import settings
from grooming.core.exceptions import domain_exception_handler, http_exception_handler, validation_exception_handler
from grooming.core.logging import setup_logging
from grooming.core.metrics import REQUEST_COUNT, REQUEST_LATENCY, render_metrics
from grooming.core.request_context import request_id_ctx_var
from grooming.db.session import SessionLocal
from grooming.domain.errors import GroomingError
from grooming.tasks.notifications import build_dispatcher
from grooming.tasks.sweeper import NotificationSweeper

setup_logging()
logger = logging.getLogger("grooming.request")


@asynccontextmanager
async def lifespan(app: FastAPI):
    sweeper: NotificationSweeper | None = None
    db = None
    if settings.notification_sweeper_enabled:
        db = SessionLocal()
        sweeper = NotificationSweeper(build_dispatcher(db))
        sweeper.start()
    app.state.sweeper = sweeper
    try:
        yield
    finally:
        if sweeper is not None:
            sweeper.stop(timeout=settings.notification_channel_timeout_seconds)
        if db is not None:
            db.close()


app = FastAPI(title="Grooming Scheduler", version="0.1.0", lifespan=lifespan)
app.add_exception_handler(StarletteHTTPException, http_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(GroomingError, domain_exception_handler)


@app.middleware("http")
async def observability_middleware(request: Request, call_next):
    request_id = request.headers.get("x-request-id") or str(uuid4())
    token = request_id_ctx_var.set(request_id)
    start = time.perf_counter()
    path = request.url.path
    method = request.method
    try:
        response = await call_next(request)
    except Exception:
        elapsed = time.perf_counter() - start
        REQUEST_COUNT.labels(method=method, path=path, status_code=500).inc()
        REQUEST_LATENCY.labels(method=method, path=path).observe(elapsed)
        logger.exception(
            "request_failed method=%s path=%s status=500 duration_ms=%.2f",
            method,
            path,
            elapsed * 1000,
        )
        request_id_ctx_var.reset(token)
        raise

    elapsed = time.perf_counter() - start
    REQUEST_COUNT.labels(method=method, path=path, status_code=response.status_code).inc()
    REQUEST_LATENCY.labels(method=method, path=path).observe(elapsed)
    response.headers["X-Request-ID"] = request_id
    logger.info(
        "request_completed method=%s path=%s status=%s duration_ms=%.2f",
        method,
        path,
        response.status_code,
        elapsed * 1000,
    )
    request_id_ctx_var.reset(token)
    return response


@app.get("/health", tags=["health"])
def health(request: Request) -> dict[str, str]:
    sweeper = getattr(request.app.state, "sweeper", None)
    if sweeper is None:
        return {"status": "ok"}
    return {"status": "ok", "sweeper": "running" if sweeper.is_running else "stopped"}


@app.get("/metrics", tags=["observability"])
def metrics() -> Response:
    payload, content_type = render_metrics()
    return Response(content=payload, media_type=content_type)
