"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse

from attempt_engine.api import attempts_router, health_router
from attempt_engine.config import settings
from attempt_engine.core.errors import AttemptError
from attempt_engine.schemas.common import ErrorResponse

logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    format="%(asctime)s  %(name)-25s  %(levelname)-8s  %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("🚀 Attempt engine starting…")
    yield
    logger.info("✅ Attempt engine shut down")


app = FastAPI(
    title="Assessment Attempt Engine",
    description="Timed assessment attempts: snapshot, autosave, scoring",
    version="0.1.0",
    lifespan=lifespan,
)

# ── Middleware ─────────────────────────────────────────────────────────────────

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(TrustedHostMiddleware, allowed_hosts=settings.ALLOWED_HOSTS)

# ── Errors ────────────────────────────────────────────────────────────────────


@app.exception_handler(AttemptError)
async def attempt_error_handler(request: Request, exc: AttemptError):
    if exc.status_code >= 500:
        logger.error("%s %s → %s: %s", request.method, request.url.path, exc.error_code, exc.message)
    else:
        logger.info("%s %s → %s", request.method, request.url.path, exc.error_code)
    body = ErrorResponse(error_code=exc.error_code, message=exc.message, details=exc.details)
    return JSONResponse(status_code=exc.status_code, content=body.model_dump(mode="json"))


# ── Routers ───────────────────────────────────────────────────────────────────

app.include_router(health_router, tags=["Health"])
app.include_router(attempts_router, prefix="/api", tags=["Attempts"])


@app.get("/")
async def root():
    return {
        "name": "Assessment Attempt Engine",
        "version": "0.1.0",
        "docs": "/docs",
        "health": "/health",
    }
