"""
Claim Resolution Engine - FastAPI Application

Main entry point for the claim resolution backend.

Pipeline:
- ScopeSheet -> GenerateIndustryEstimate -> AuditReport
- AuditReport + CarrierEstimate -> CompareEstimates -> comparison
- AuditReport -> PM Brain -> CLOSE | DISPUTE_OFFER | LEGAL_REVIEW | NEED_DOCS
- Claim + Policy -> Viability -> PURSUE | PURSUE_WITH_CONDITIONS | DO_NOT_PURSUE
- Legal escalation -> homeowner approval -> legal package -> notifications
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .routers import auth_router, audit_router, legal_router
from .database import init_db
from .dependencies import get_dispatcher
from .services.errors import (
    ClaimEngineError, DependencyError, InvalidArgumentError, MalformedResponseError,
    NotFoundError, PreconditionFailedError,
)

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


def error_status(exc: ClaimEngineError) -> int:
    """HTTP status for an engine error."""
    if isinstance(exc, NotFoundError):
        return 404
    if isinstance(exc, PreconditionFailedError):
        return 409
    if isinstance(exc, InvalidArgumentError):
        return 400
    if isinstance(exc, (MalformedResponseError, DependencyError)):
        return 502
    return 500


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize database on startup; drain notification threads on shutdown."""
    init_db()
    yield
    get_dispatcher().shutdown()
    get_dispatcher.cache_clear()
    logger.info("Notification dispatcher stopped")


# Create FastAPI app
app = FastAPI(
    lifespan=lifespan,
    title="Claim Resolution Engine",
    description="""
    Claim Resolution Engine - Insurance Claim Decision Support

    Compares contractor-grade estimates against carrier settlement offers,
    classifies the settlement, scores whether a claim is worth pursuing, and
    runs the homeowner-approved legal escalation workflow.

    ## Key Principles
    - Thresholds live in one versioned rule table
    - The model writes narrative; statuses and scores are re-derived by rules
    - Malformed model output fails closed, never defaulted
    - Approval tokens are single use and expire after 7 days
    """,
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc"
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ClaimEngineError)
async def claim_engine_error_handler(request: Request, exc: ClaimEngineError):
    status_code = error_status(exc)
    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: [{exc.code}] {exc.message}")
    return JSONResponse(status_code=status_code, content={"error": exc.to_dict()})


# Include routers
app.include_router(auth_router)
app.include_router(audit_router)
app.include_router(legal_router)


@app.get("/")
async def root():
    """Root endpoint - API information."""
    return {
        "name": "Claim Resolution Engine",
        "version": "1.0.0",
        "docs": "/docs",
    }


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "version": "1.0.0"}


# For running with: python -m app.main
if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8001)
