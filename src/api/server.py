"""
WALLET METER - FastAPI Server

Admin surface over the billing engine.

Endpoints:
- GET /health - Liveness and database check
- POST /resellers/{id}/charge - One-off charge (dry_run / force)
- POST /resellers/{id}/top-up - Credit the wallet
- POST /resellers/{id}/reenable - Re-enable wallet-suspended configs
- GET /resellers/{id}/ledger - Ledger entries and totals
- POST /configs/{id}/reset-traffic - Settle, then reset usage
- DELETE /configs/{id} - Settle, then delete
"""

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
import os
import structlog

from fastapi import FastAPI, HTTPException, Depends, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from billing.charging import ChargeEngine
from billing.reenable import ReenablementOrchestrator
from billing.wallet import WalletService
from core.config import BillingConfig, get_config
from core.errors import ConfigurationError, NotFoundError, SettlementError
from core.log_setup import configure_logging
from persistence.database import Database, get_database
from persistence.models import ResellerRecord
from persistence.repository import LedgerRepository, ResellerRepository
from provisioning.actions import ConfigActionService
from provisioning.provisioner import Provisioner, StaticProvisioner

logger = structlog.get_logger()

VERSION = "1.0.0"


# ============================================================================
# Pydantic Models
# ============================================================================

class ChargeRequest(BaseModel):
    """Options for a one-off charge."""
    dry_run: bool = Field(default=False, description="Compute the charge without writing")
    force: bool = Field(default=False, description="Ignore the idempotency window")


class TopUpRequest(BaseModel):
    """Wallet credit."""
    amount: int = Field(..., gt=0, description="Amount to credit, in wallet units")
    reference: Optional[str] = Field(None, description="Payment reference")


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    version: str
    database: str
    uptime_seconds: float


class LedgerResponse(BaseModel):
    reseller_id: int
    wallet_balance: int
    summary: Dict[str, Any]
    entries: List[Dict[str, Any]]


# ============================================================================
# Application State
# ============================================================================

class AppState:
    """Services shared by all requests."""

    def __init__(
        self,
        db: Optional[Database] = None,
        config: Optional[BillingConfig] = None,
        provisioner: Optional[Provisioner] = None,
        clock=None,
    ):
        self.db = db or get_database()
        self.config = config or get_config()
        self.provisioner = provisioner or StaticProvisioner()
        self.engine = ChargeEngine(self.db, self.config, self.provisioner, clock)
        self.reenabler = ReenablementOrchestrator(self.db, self.config, self.provisioner)
        self.wallet = WalletService(self.db, self.config, reenabler=self.reenabler)
        self.actions = ConfigActionService(self.db, self.config, self.provisioner, clock)
        self.resellers = ResellerRepository(self.db)
        self.ledger = LedgerRepository(self.db)
        self.start_time = datetime.now(timezone.utc)

    def get_reseller(self, reseller_id: int) -> ResellerRecord:
        reseller = self.resellers.get(reseller_id)
        if reseller is None:
            raise NotFoundError("reseller", reseller_id)
        return reseller


app_state: Optional[AppState] = None


# ============================================================================
# Application Factory
# ============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    global app_state
    configure_logging()
    logger.info("wallet_meter_starting", version=VERSION)
    if app_state is None:
        app_state = AppState()
    yield
    logger.info("wallet_meter_stopping")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    application = FastAPI(
        title="Wallet Meter",
        description="""
# Usage-metered wallet billing for resellers

- **Charges**: whole-GiB debits for usage since the last snapshot
- **Suspension**: configs disabled when the wallet falls to the threshold
- **Re-enabling**: configs brought back after a top-up
- **Final settlement**: outstanding usage billed before reset or delete
        """,
        version=VERSION,
        lifespan=lifespan,
    )

    application.add_middleware(
        CORSMiddleware,
        allow_origins=os.environ.get("CORS_ORIGINS", "*").split(","),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @application.exception_handler(NotFoundError)
    async def not_found_handler(request: Request, exc: NotFoundError):
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @application.exception_handler(ConfigurationError)
    async def configuration_handler(request: Request, exc: ConfigurationError):
        return JSONResponse(status_code=400, content={"detail": str(exc)})

    @application.exception_handler(SettlementError)
    async def settlement_handler(request: Request, exc: SettlementError):
        logger.error("settlement_failed_request", config_id=exc.config_id, action_type=exc.action_type)
        return JSONResponse(status_code=503, content={"detail": str(exc)})

    return application


app = create_app()


# ============================================================================
# Dependencies
# ============================================================================

def get_state() -> AppState:
    """Get application state."""
    if app_state is None:
        raise HTTPException(status_code=503, detail="Application not initialized")
    return app_state


# ============================================================================
# Endpoints
# ============================================================================

@app.get("/health", response_model=HealthResponse, tags=["System"])
def health_check(state: AppState = Depends(get_state)):
    """Health check endpoint."""
    state.db.execute("SELECT 1")
    uptime = (datetime.now(timezone.utc) - state.start_time).total_seconds()
    return HealthResponse(
        status="healthy",
        version=VERSION,
        database="ok",
        uptime_seconds=uptime,
    )


@app.post("/resellers/{reseller_id}/charge", tags=["Billing"])
def charge_reseller(
    reseller_id: int,
    request: Optional[ChargeRequest] = None,
    state: AppState = Depends(get_state),
):
    """
    Charge one reseller now.

    A dry run reports the cost and the balance after the charge without
    writing anything.
    """
    request = request or ChargeRequest()
    reseller = state.get_reseller(reseller_id)
    result = state.engine.charge_for_reseller(
        reseller,
        source="admin",
        force=request.force,
        dry_run=request.dry_run,
    )
    return result.to_dict()


@app.post("/resellers/{reseller_id}/top-up", tags=["Wallet"])
def top_up_wallet(
    reseller_id: int,
    request: TopUpRequest,
    state: AppState = Depends(get_state),
):
    """Credit the wallet; reactivates a wallet-suspended reseller above the threshold."""
    result = state.wallet.top_up(reseller_id, request.amount, request.reference)
    return result.to_dict()


@app.post("/resellers/{reseller_id}/reenable", tags=["Wallet"])
def reenable_configs(reseller_id: int, state: AppState = Depends(get_state)):
    reseller = state.get_reseller(reseller_id)
    return state.reenabler.reenable_wallet_suspended_configs(reseller).to_dict()


@app.get("/resellers/{reseller_id}/ledger", response_model=LedgerResponse, tags=["Billing"])
def get_ledger(
    reseller_id: int,
    limit: int = 100,
    state: AppState = Depends(get_state),
):
    """Ledger entries for a reseller, newest first."""
    if limit < 1 or limit > 1000:
        raise HTTPException(status_code=400, detail="limit must be between 1 and 1000")
    reseller = state.get_reseller(reseller_id)
    entries = state.ledger.list_for_reseller(reseller_id, limit=limit)
    return LedgerResponse(
        reseller_id=reseller_id,
        wallet_balance=reseller.wallet_balance,
        summary=state.ledger.get_reseller_summary(reseller_id),
        entries=[e.to_dict() for e in entries],
    )


@app.post("/configs/{config_id}/reset-traffic", tags=["Configs"])
def reset_config_traffic(config_id: int, state: AppState = Depends(get_state)):
    """Settle outstanding usage, then reset the config's traffic."""
    return state.actions.reset_traffic(config_id).to_dict()


@app.delete("/configs/{config_id}", tags=["Configs"])
def delete_config(config_id: int, state: AppState = Depends(get_state)):
    """Settle outstanding usage, then delete the config."""
    return state.actions.delete_config(config_id).to_dict()


# ============================================================================
# Run
# ============================================================================

def run(host: str = "0.0.0.0", port: Optional[int] = None):
    """Run the server."""
    import uvicorn
    uvicorn.run(
        "api.server:app",
        host=host,
        port=port or int(os.environ.get("PORT", 8000)),
        reload=os.environ.get("DEBUG", "false").lower() == "true",
    )


if __name__ == "__main__":
    run()
