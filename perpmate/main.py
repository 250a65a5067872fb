import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from .api import deposits, health, webhooks, withdrawals
from .config import settings
from .core.errors import ErrorCategory, PerpmateError
from .logging_config import setup_logging
from .middleware import RequestLoggingMiddleware
from .services.funding import FundingService, get_funding_service

logger = logging.getLogger(__name__)

_STATUS_BY_CATEGORY = {
    ErrorCategory.INVALID_INPUT: 400,
    ErrorCategory.NO_ROUTE: 409,
    ErrorCategory.CUSTODY: 424,
    ErrorCategory.PROVIDER: 424,
    ErrorCategory.TRANSIENT_READ: 424,
}


def create_app(service: Optional[FundingService] = None) -> FastAPI:
    """Build the API. Without ``service`` one is built from settings at startup."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        funding = service
        if funding is None:
            setup_logging()
            funding = get_funding_service()
        app.state.funding = funding
        await funding.start()
        logger.info("PerpMate funding core started (%s)", "testnet" if funding.testnet else "mainnet")
        try:
            yield
        finally:
            await funding.stop()

    app = FastAPI(
        title="PerpMate Funding API",
        description="Deposit detection, auto-bridging and withdrawals for custodial USDC wallets",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )
    if service is not None:
        app.state.funding = service

    app.add_middleware(RequestLoggingMiddleware)

    @app.exception_handler(PerpmateError)
    async def perpmate_error_handler(request: Request, exc: PerpmateError) -> JSONResponse:
        status = _STATUS_BY_CATEGORY.get(exc.category, 500)
        return JSONResponse(
            status_code=status,
            content={"detail": exc.user_message, "category": exc.category.value},
        )

    # Include routers
    app.include_router(health.router, tags=["Health"])
    app.include_router(webhooks.router, tags=["Webhooks"])
    app.include_router(deposits.router, tags=["Deposits"])
    app.include_router(withdrawals.router, tags=["Withdrawals"])

    @app.get("/")
    async def root():
        """Root endpoint with basic info"""
        return {
            "name": "PerpMate Funding API",
            "version": "0.1.0",
            "docs": "/docs",
            "health": "/healthz",
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "perpmate.main:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower()
    )
