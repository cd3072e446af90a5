import logging
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from . import models, models_budget, models_milestone  # noqa: F401 - register tables
from .config import CORS_ALLOW_ORIGINS
from .database import Base, engine
from .domain.budgets.router import router as budgets_router
from .domain.milestones.router import router as milestones_router
from .errors import EscrowFailure, MarketplaceError
from .services.escrow_service import get_escrow_provider

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# httpx logs every escrow request at INFO
for noisy in ("httpx", "httpcore"):
    logging.getLogger(noisy).setLevel(logging.WARNING)

# Seconds a client should wait before retrying after a transient escrow failure
ESCROW_RETRY_AFTER_SECONDS = 5

UNAUTHENTICATED_DETAIL = "Not authenticated. Send a Bearer token in the Authorization header."


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("🚀 Mercado Oficio API starting")
    try:
        Base.metadata.create_all(bind=engine, checkfirst=True)
    except Exception as e:
        # Several workers may race to create the same tables
        if "already exists" not in str(e) and "duplicate key" not in str(e):
            logger.error(f"❌ Could not create database tables: {e}")
            raise
    logger.info("✅ Database schema ready")

    yield

    escrow = get_escrow_provider()
    if hasattr(escrow, "close"):
        escrow.close()
    logger.info("👋 Mercado Oficio API stopped")


app = FastAPI(title="Mercado Oficio API", version="1.0.0", lifespan=lifespan)


@app.exception_handler(MarketplaceError)
async def marketplace_error_handler(request: Request, exc: MarketplaceError):
    """Render domain errors as {"detail", "error", ...context} with their own status code"""
    if exc.status_code >= 500:
        logger.error(f"❌ {request.method} {request.url.path} - {exc.code}: {exc.message}")
    else:
        logger.warning(f"⚠️ {request.method} {request.url.path} - {exc.code}: {exc.message}")

    headers = None
    if isinstance(exc, EscrowFailure) and exc.retryable:
        headers = {"Retry-After": str(ESCROW_RETRY_AFTER_SECONDS)}

    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "error": exc.code, **exc.context()},
        headers=headers,
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """A missing Authorization header is an authentication problem (401), not a bad payload"""
    errors = exc.errors()
    if any("authorization" in str(error.get("loc", "")).lower() for error in errors):
        logger.warning(f"⚠️ {request.url.path}: missing or malformed Authorization header")
        return JSONResponse(status_code=401, content={"detail": UNAUTHENTICATED_DETAIL})

    logger.warning(f"⚠️ Invalid payload for {request.method} {request.url.path}: {errors}")
    return JSONResponse(status_code=422, content={"detail": jsonable_errors(errors)})


def jsonable_errors(errors: list[dict]) -> list[dict]:
    """Pydantic error entries may carry exception objects in ``ctx``; keep them printable"""
    cleaned = []
    for error in errors:
        entry = {k: v for k, v in error.items() if k != "input"}
        if "ctx" in entry:
            entry["ctx"] = {k: str(v) for k, v in entry["ctx"].items()}
        cleaned.append(entry)
    return cleaned


@app.middleware("http")
async def log_requests(request: Request, call_next):
    started = time.perf_counter()
    try:
        response = await call_next(request)
    except Exception as e:
        logger.error(f"❌ {request.method} {request.url.path} failed: {e}")
        raise
    elapsed_ms = (time.perf_counter() - started) * 1000
    logger.info(f"{request.method} {request.url.path} → {response.status_code} ({elapsed_ms:.0f}ms)")
    return response


ALLOWED_ORIGINS = [origin.strip() for origin in CORS_ALLOW_ORIGINS.split(",") if origin.strip()]
logger.info(f"CORS origins: {ALLOWED_ORIGINS}")

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type"],
)

app.include_router(budgets_router)
app.include_router(milestones_router)


@app.get("/")
def root():
    return {"message": "Mercado Oficio API is running"}


@app.get("/health")
def health():
    return {"status": "healthy"}
