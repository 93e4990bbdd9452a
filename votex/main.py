# main.py
import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response

from .config import CORS_ORIGINS
from .errors import (
    AlreadyVoted,
    CaptureUnavailable,
    DuplicateIdentity,
    InvalidCredentials,
    PersistenceCorruption,
    PolicyViolation,
    Unauthenticated,
    ValidationError,
    VerificationFailure,
    VerificationTimeout,
    VotexError,
)
from .ledger import VotingLedger
from .routes.admin_routes import router as admin_router
from .routes.auth_routes import router as auth_router
from .routes.vote_routes import vote_router

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# first match wins, so specific errors come before their families
ERROR_STATUS = [
    (InvalidCredentials, 401),
    (Unauthenticated, 401),
    (AlreadyVoted, 409),
    (CaptureUnavailable, 503),
    (VerificationTimeout, 408),
    (ValidationError, 400),
    (PolicyViolation, 403),
    (DuplicateIdentity, 409),
    (VerificationFailure, 401),
    (PersistenceCorruption, 422),
]


def status_for(exc: VotexError) -> int:
    for cls, status in ERROR_STATUS:
        if isinstance(exc, cls):
            return status
    return 400


async def votex_error_handler(request: Request, exc: VotexError):
    status = status_for(exc)
    logger.info(f"{request.method} {request.url.path} -> {status} {type(exc).__name__}: {exc.message}")
    return JSONResponse(status_code=status, content={"detail": exc.message, "error": type(exc).__name__})


def create_app(ledger: Optional[VotingLedger] = None) -> FastAPI:
    """Build the API. Without a ledger one is opened from config on the first request."""
    app = FastAPI(title="VoteX - Identity-Gated Voting API")
    app.state.ledger = ledger

    app.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(VotexError, votex_error_handler)

    app.include_router(auth_router)
    app.include_router(vote_router)
    app.include_router(admin_router)

    @app.get("/health", tags=["Root"])
    async def health_check():
        return {"status": "healthy", "storage": "json"}

    @app.get("/", tags=["Root"])
    async def read_root():
        return {"message": "Welcome to the VoteX API"}

    @app.get("/favicon.ico", include_in_schema=False)
    async def favicon():
        return Response(status_code=204)

    return app


app = create_app()
