"""
FastAPI server: dividend and ICO API over the ledger, distribution store and token oracle.

Services are built once in the lifespan and attached to app.state; routers
resolve them through api_server.dependencies. Errors raised by the services
carry their own HTTP status and are rendered as {"success": false, ...}.
"""

from __future__ import annotations

import time
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

from backend_tokensale.api_server.dividends import router as dividends_router
from backend_tokensale.api_server.ico import router as ico_router
from backend_tokensale.api_server.wallet import router as wallet_router
from backend_tokensale.chain.oracle import BalanceOracle, build_oracle
from backend_tokensale.config.settings import Settings, get_settings
from backend_tokensale.core.exceptions import TokenSaleError
from backend_tokensale.core.timeutils import Clock
from backend_tokensale.database import Database, get_database
from backend_tokensale.dividends.service import DividendService
from backend_tokensale.dividends.tracker import DistributionTracker
from backend_tokensale.ico.service import IcoService
from backend_tokensale.ledger.purchase_ledger import PurchaseLedger
from backend_tokensale.logging import get_logger
from backend_tokensale.wallet.service import WalletService

logger = get_logger(__name__)

HTTP_ERROR_CODES = {
    401: "unauthorized",
    403: "forbidden",
    404: "not_found",
    405: "method_not_allowed",
}


def create_app(
    settings: Settings | None = None,
    *,
    database: Database | None = None,
    oracle: BalanceOracle | None = None,
    clock: Clock | None = None,
) -> FastAPI:
    """
    Build the API application.

    settings: defaults to get_settings() at startup.
    database / oracle / clock: injected collaborators; when omitted they are
    built from settings. An injected database is not disposed on shutdown.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        cfg = settings or get_settings()
        owns_db = database is None
        if database is None:
            db = get_database(cfg.database_url)
        else:
            db = database
            db.ensure_schema()
        token_oracle = oracle or build_oracle(cfg)
        ledger = PurchaseLedger(db)
        tracker = DistributionTracker(db)

        app.state.settings = cfg
        app.state.database = db
        app.state.dividend_service = DividendService(tracker, ledger, token_oracle, settings=cfg, clock=clock)
        app.state.ico_service = IcoService(db, ledger, settings=cfg, clock=clock)
        app.state.wallet_service = WalletService(ledger, token_oracle, settings=cfg, clock=clock)
        logger.info(
            "api_started",
            admin_enabled=bool(cfg.admin_api_key),
            token_configured=bool(cfg.token_address),
            min_holding_days=cfg.min_holding_days,
        )

        yield

        if owns_db:
            db.dispose()
        logger.info("api_stopped")

    app = FastAPI(
        title="Token Sale Dividend API",
        description="ICO purchases and profit-sharing dividends for token holders.",
        version="0.1.0",
        lifespan=lifespan,
    )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        started = time.perf_counter()
        response = await call_next(request)
        logger.info(
            "http_request",
            method=request.method,
            path=request.url.path,
            status=response.status_code,
            duration_ms=round((time.perf_counter() - started) * 1000, 2),
        )
        return response

    @app.exception_handler(TokenSaleError)
    def tokensale_error_handler(request: Request, exc: TokenSaleError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.warning("api_error", path=request.url.path, code=exc.code, error=exc.message)
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        errors = exc.errors()
        first = errors[0] if errors else {}
        location = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
        message = f"{location}: {first.get('msg', 'invalid request')}" if location else "invalid request"
        return JSONResponse(
            status_code=400,
            content={"success": False, "error": message, "code": "validation_error"},
        )

    @app.exception_handler(HTTPException)
    def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
        """Consistent JSON error response for HTTPException, including unknown routes."""
        code = HTTP_ERROR_CODES.get(exc.status_code, "http_error")
        return JSONResponse(
            status_code=exc.status_code,
            content={"success": False, "error": exc.detail, "code": code},
            headers=exc.headers,
        )

    @app.get("/health")
    def health() -> dict[str, Any]:
        return {"status": "ok"}

    app.include_router(dividends_router, prefix="/api")
    app.include_router(ico_router, prefix="/api")
    app.include_router(wallet_router, prefix="/api")
    return app


app = create_app()
