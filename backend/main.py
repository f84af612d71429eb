# main.py — TaskRythm API application
# - One request id per request, echoed back and stamped on error bodies
# - Hardened response headers
# - Every error rendered as {statusCode, message, error, request_id}
# - /health pings the database

import os
import time
import uuid
import logging
from http import HTTPStatus
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from starlette.exceptions import HTTPException as StarletteHTTPException

from database import init_db, close_db, async_session_maker
from permissions import WorkspaceResolutionError
from telemetry import setup_telemetry

VERSION = "1.0.0"
ENVIRONMENT = os.getenv("ENVIRONMENT", "development")

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s [%(name)s] %(levelname)s %(message)s",
)
logger = logging.getLogger("taskrythm")

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "strict-origin-when-cross-origin",
    "Strict-Transport-Security": "max-age=31536000; includeSubDomains",
}


def _warn_on_missing_config() -> list:
    problems = []
    if not (os.getenv("AUTH0_ISSUER") or os.getenv("AUTH0_DOMAIN")):
        problems.append("AUTH0_ISSUER / AUTH0_DOMAIN not set; every bearer token will be rejected")
    if not os.getenv("AUTH0_AUDIENCE"):
        problems.append("AUTH0_AUDIENCE not set; token audience is not checked")
    if not os.getenv("GEMINI_API_KEY"):
        problems.append("GEMINI_API_KEY not set; /ai endpoints will answer 500")

    for problem in problems:
        logger.warning(problem)
    return problems


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"TaskRythm API v{VERSION} starting ({ENVIRONMENT})")
    await init_db()
    _warn_on_missing_config()
    setup_telemetry(app)
    yield
    await close_db()
    logger.info("TaskRythm API stopped")


app = FastAPI(
    title="TaskRythm",
    description="Multi-tenant project management API with AI planning assistants",
    version=VERSION,
    lifespan=lifespan,
)

_origins = os.getenv("CORS_ORIGINS") or os.getenv("FRONTEND_URL") or "http://localhost:3000"
app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in _origins.split(",") if o.strip()],
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "X-Request-ID"],
    expose_headers=["X-Request-ID"],
)


@app.middleware("http")
async def request_context(request: Request, call_next):
    request.state.request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
    started = time.perf_counter()

    response = await call_next(request)

    elapsed_ms = (time.perf_counter() - started) * 1000
    response.headers["X-Request-ID"] = request.state.request_id
    response.headers.update(SECURITY_HEADERS)
    logger.info(
        f"{request.method} {request.url.path} {response.status_code} "
        f"{elapsed_ms:.1f}ms rid={request.state.request_id}"
    )
    return response


# --- Error bodies ---

def error_body(request: Request, status_code: int, message, headers=None) -> JSONResponse:
    try:
        phrase = HTTPStatus(status_code).phrase
    except ValueError:
        phrase = "Error"
    return JSONResponse(
        status_code=status_code,
        headers=headers,
        content={
            "statusCode": status_code,
            "message": message,
            "error": phrase,
            "request_id": getattr(request.state, "request_id", None),
        },
    )


@app.exception_handler(StarletteHTTPException)
async def on_http_error(request: Request, exc: StarletteHTTPException):
    return error_body(request, exc.status_code, exc.detail, getattr(exc, "headers", None))


@app.exception_handler(RequestValidationError)
async def on_validation_error(request: Request, exc: RequestValidationError):
    messages = []
    for err in exc.errors():
        field = ".".join(str(p) for p in err.get("loc", ()) if p not in ("body", "query", "path"))
        msg = err.get("msg", "Invalid value")
        messages.append(f"{field}: {msg}" if field else msg)
    return error_body(request, 400, messages)


@app.exception_handler(WorkspaceResolutionError)
async def on_unresolvable_workspace(request: Request, exc: WorkspaceResolutionError):
    return error_body(request, 400, str(exc))


@app.exception_handler(Exception)
async def on_unexpected_error(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return error_body(request, 500, "Internal server error")


# --- Routers ---

from routers import auth, workspaces, projects, tasks, activity, ai

for module in (auth, workspaces, projects, tasks, activity, ai):
    app.include_router(module.router)


@app.get("/health")
async def health():
    try:
        async with async_session_maker() as db:
            await db.execute(text("SELECT 1"))
        database = "connected"
    except Exception as e:
        logger.error(f"Health check could not reach the database: {e}")
        database = "unreachable"

    return {
        "status": "healthy" if database == "connected" else "degraded",
        "version": VERSION,
        "environment": ENVIRONMENT,
        "database": database,
    }


@app.get("/")
async def root():
    return {"name": "TaskRythm", "version": VERSION, "docs": "/docs", "health": "/health"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=int(os.getenv("PORT", "4000")),
        reload=ENVIRONMENT == "development",
    )
