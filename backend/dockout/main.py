"""
VEP Dockout FastAPI Application Entry Point

Serves the dock-out workflow of a VEP token (stock transfer → picking → gross)
and the stateless SAP proxies. Domain exceptions raised anywhere below the
routers are turned into the ``{"success": false, "error": ...}`` envelope here.
"""
import logging
import time
import uuid
from typing import Optional, Tuple

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text

from dockout.config import settings
from dockout.database import create_tables, engine
from dockout.core.exceptions import DockoutException, to_http_exception
from dockout.upstream.http import upstream_client
from dockout.utils.logging import configure_logging, request_id_var
from dockout.routers import workflow, proxies, picking_logs

configure_logging(log_level=settings.LOG_LEVEL, log_format=settings.LOG_FORMAT)
logger = logging.getLogger(__name__)

API_PREFIX = "/api/v1"

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "strict-origin-when-cross-origin",
    "Permissions-Policy": "geolocation=(), microphone=(), camera=()",
    "X-XSS-Protection": "1; mode=block",
}

app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="VEP token dock-out workflow: stock transfer, picking and gross reconciliation against SAP and TEG",
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def request_context_middleware(request: Request, call_next):
    """
    Binds a request id for the whole call so upstream SAP/TEG log lines can be
    traced back to the operator action that caused them.
    """
    start = time.perf_counter()
    request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    request.state.request_id = request_id
    context_token = request_id_var.set(request_id)
    try:
        response = await call_next(request)
    finally:
        request_id_var.reset(context_token)

    duration_ms = (time.perf_counter() - start) * 1000
    if settings.ENABLE_REQUEST_ID:
        response.headers["X-Request-ID"] = request_id
        response.headers["X-Response-Time-Ms"] = f"{duration_ms:.2f}"

    if settings.ENABLE_REQUEST_LOGGING:
        logger.info(
            "request_completed method=%s path=%s status=%s duration_ms=%.2f request_id=%s",
            request.method,
            request.url.path,
            response.status_code,
            duration_ms,
            request_id,
        )

    if settings.ENABLE_SECURITY_HEADERS:
        response.headers.update(SECURITY_HEADERS)
        if not settings.DEBUG:
            response.headers["Strict-Transport-Security"] = (
                f"max-age={settings.STRICT_TRANSPORT_SECURITY_SECONDS}; includeSubDomains"
            )

    return response

# ── Global Exception Handlers ─────────────────────────────────────────────────

@app.exception_handler(DockoutException)
async def dockout_exception_handler(request: Request, exc: DockoutException) -> JSONResponse:
    http_exc = to_http_exception(exc)
    if http_exc.status_code >= 500:
        logger.warning("upstream_failure code=%s message=%s path=%s", exc.code, exc.message, request.url.path)
    return JSONResponse(
        status_code=http_exc.status_code,
        content={"success": False, "error": http_exc.detail},
    )


@app.exception_handler(ValueError)
async def value_error_handler(request: Request, exc: ValueError) -> JSONResponse:
    return JSONResponse(
        status_code=400,
        content={"success": False, "error": {"code": "VALIDATION_ERROR", "message": str(exc)}},
    )


# ── API Routers ───────────────────────────────────────────────────────────────
app.include_router(workflow.router, prefix=API_PREFIX)
app.include_router(proxies.router, prefix=API_PREFIX)
app.include_router(picking_logs.router, prefix=API_PREFIX)


# ── Lifecycle Events ──────────────────────────────────────────────────────────

@app.on_event("startup")
def startup_event():
    logger.info("Starting %s v%s (%s)", settings.APP_NAME, settings.APP_VERSION, settings.ENVIRONMENT)
    create_tables()
    logger.info("SAP stock move endpoint: %s", settings.SAP_STOCK_MOVE_URL)
    logger.info("SAP token details endpoint: %s", settings.SAP_TOKEN_DETAILS_URL)
    logger.info("TEG update endpoint: %s", settings.TEG_UPDATE_URL)


@app.on_event("shutdown")
async def shutdown_event():
    await upstream_client.close()
    logger.info("%s shutting down.", settings.APP_NAME)


# ── Health Endpoints ──────────────────────────────────────────────────────────

def _check_database() -> Tuple[bool, Optional[str]]:
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except Exception as exc:
        return False, str(exc)
    return True, None


@app.get("/", tags=["Health"])
def root():
    return {
        "app": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "docs": "/docs",
        "status": "running",
        "api": API_PREFIX,
    }


@app.get("/health", tags=["Health"])
def health_check():
    return {"status": "healthy", "app": settings.APP_NAME}


@app.get("/ready", tags=["Health"])
def readiness_check(request: Request):
    """
    Readiness for orchestrators. Only the database gates readiness; upstream
    credentials are reported but SAP and TEG are never called from here.
    """
    db_ok, db_error = _check_database() if settings.READINESS_CHECK_DATABASE else (True, None)

    return JSONResponse(
        status_code=200 if db_ok else 503,
        content={
            "status": "ready" if db_ok else "not_ready",
            "app": settings.APP_NAME,
            "version": settings.APP_VERSION,
            "request_id": getattr(request.state, "request_id", None),
            "checks": {
                "database": {
                    "enabled": settings.READINESS_CHECK_DATABASE,
                    "ok": db_ok,
                    "error": db_error,
                },
                "upstream_credentials": {
                    "sap": bool(settings.SAP_USERNAME and settings.SAP_PASSWORD),
                    "teg": bool(settings.TEG_USERNAME and settings.TEG_PASSWORD),
                },
            },
        },
    )
