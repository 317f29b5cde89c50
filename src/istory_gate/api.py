"""REST API for istory-gate.

Protected routes depend on AuthValidator and turn its verdict into an HTTP
response. The guarded actions themselves (reward minting, analysis stats,
content unlocks) belong to the application; these routes only gate them.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any

from fastapi import Depends, FastAPI, HTTPException, Request, status
from pydantic import BaseModel
from starlette.concurrency import run_in_threadpool

from .claims import ClaimStore
from .config import Config
from .onchain import ChainClient, ChainConfigRegistry, Confirmed, TransactionVerifier
from .validator import AuthMode, AuthRequest, AuthValidator, AuthVerdict, PaymentRequirement, VerdictDetail

logger = logging.getLogger(__name__)

RETRY_AFTER_SECONDS = "15"


# Pydantic models for API

class UnlockResponse(BaseModel):
    """Response from a successful paywall unlock."""

    tx_hash: str
    network: str
    amount: str  # smallest unit, as a string to survive JSON number limits
    confirmations: int
    unlocked_at: str


class CronResponse(BaseModel):
    status: str
    job: str


class AdminStatsResponse(BaseModel):
    """Gate statistics (admin only)."""

    total_claims: int
    claims_by_network: dict[str, int]
    networks: list[dict[str, Any]]
    paywall_enabled: bool


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str


# Dependency injection

class GateDeps:
    """Dependency container for the gate."""

    def __init__(
        self,
        config: Config,
        registry: ChainConfigRegistry,
        validator: AuthValidator,
        claims: ClaimStore,
        requirement: PaymentRequirement | None,
    ):
        self.config = config
        self.registry = registry
        self.validator = validator
        self.claims = claims
        self.requirement = requirement


_deps: GateDeps | None = None


def get_deps() -> GateDeps:
    if _deps is None:
        raise RuntimeError("Dependencies not initialized")
    return _deps


def build_deps(config: Config, client: ChainClient | None = None) -> GateDeps:
    """Wire registry, chain client, verifier, validator and claim store."""
    registry = ChainConfigRegistry.from_config(config)
    server_networks = registry.for_server()
    if client is None:
        client = ChainClient(server_networks, timeout=config.rpc.timeout_seconds)
    verifier = TransactionVerifier(
        client, server_networks, timeout=config.rpc.verification_timeout_seconds
    )
    validator = AuthValidator.from_config(config.secrets, verifier)
    requirement = PaymentRequirement.from_config(config.paywall)
    if requirement is None:
        logger.warning("paywall.recipient is not set; paywall unlocks are disabled")

    return GateDeps(config, registry, validator, ClaimStore(config.database.path), requirement)


def init_deps(config: Config, client: ChainClient | None = None) -> GateDeps:
    global _deps
    _deps = build_deps(config, client)
    return _deps


async def _read_params(request: Request) -> dict[str, Any]:
    """Merge query parameters with a JSON object body, body winning."""
    params: dict[str, Any] = dict(request.query_params)
    if request.method in ("POST", "PUT", "PATCH"):
        raw = await request.body()
        if raw:
            try:
                body = json.loads(raw)
            except ValueError:
                raise HTTPException(
                    status_code=status.HTTP_400_BAD_REQUEST,
                    detail="Request body must be JSON",
                )
            if isinstance(body, dict):
                params.update(body)
    return params


def raise_for_verdict(verdict: AuthVerdict) -> None:
    """Raise the HTTPException matching a denied verdict."""
    if verdict.granted:
        return

    detail = verdict.detail
    if detail is VerdictDetail.MISCONFIGURED:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Server configuration error",
        )
    if detail is VerdictDetail.ERROR:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Internal error",
        )

    if verdict.mode is not None and verdict.mode.is_secret:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
            headers={"WWW-Authenticate": "Bearer"},
        )

    body = {"code": detail.value, "reason": verdict.reason, "tx_hash": verdict.transaction_hash}
    if detail is VerdictDetail.MALFORMED:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=body)
    if detail is VerdictDetail.UNAVAILABLE:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=body,
            headers={"Retry-After": RETRY_AFTER_SECONDS},
        )
    if verdict.retryable:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=body,
            headers={"Retry-After": RETRY_AFTER_SECONDS},
        )
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=body)


async def _authorize(
    request: Request, deps: GateDeps, mode: AuthMode, requirement: PaymentRequirement | None = None
) -> AuthVerdict:
    params = await _read_params(request)
    auth_request = AuthRequest(headers=dict(request.headers), params=params)
    # Verification does blocking RPC calls
    verdict = await run_in_threadpool(deps.validator.authorize, auth_request, mode, requirement)
    raise_for_verdict(verdict)
    return verdict


async def require_cron(request: Request, deps: GateDeps = Depends(get_deps)) -> AuthVerdict:
    """Require the scheduled-job secret."""
    return await _authorize(request, deps, AuthMode.CRON)


async def require_admin(request: Request, deps: GateDeps = Depends(get_deps)) -> AuthVerdict:
    """Require the administrative secret."""
    return await _authorize(request, deps, AuthMode.ADMIN)


async def require_payment(request: Request, deps: GateDeps = Depends(get_deps)) -> AuthVerdict:
    """Require a confirmed payment matching the paywall requirement."""
    return await _authorize(request, deps, AuthMode.PAYMENT, deps.requirement)


# FastAPI app

app = FastAPI(
    title="iStory Gate",
    description="Authorization gate for iStory scheduled, admin and paywalled routes",
    version="0.1.0",
)


@app.get("/health", response_model=HealthResponse)
async def health():
    """Health check endpoint (no auth required)."""
    from . import __version__
    return HealthResponse(status="healthy", version=__version__)


@app.get("/api/client-config")
async def client_config(deps: GateDeps = Depends(get_deps)):
    """Chain configuration for the browser wallet connector (no auth required)."""
    return deps.registry.client_manifest()


@app.api_route(
    "/api/cron/distribute-rewards",
    methods=["GET", "POST"],
    response_model=CronResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def distribute_rewards(verdict: AuthVerdict = Depends(require_cron)):
    """Accept a scheduled reward-distribution run."""
    logger.info("Reward distribution triggered")
    return CronResponse(status="accepted", job="distribute-rewards")


@app.get("/api/admin/analysis-stats", response_model=AdminStatsResponse)
async def analysis_stats(
    verdict: AuthVerdict = Depends(require_admin),
    deps: GateDeps = Depends(get_deps),
):
    """Get gate statistics (admin only)."""
    stats = await run_in_threadpool(deps.claims.get_stats)
    return AdminStatsResponse(
        total_claims=stats["total_claims"],
        claims_by_network=stats["claims_by_network"],
        networks=[network.to_dict() for network in deps.registry.for_server()],
        paywall_enabled=deps.requirement is not None,
    )


@app.post("/api/paywall/unlock", response_model=UnlockResponse)
async def unlock(
    verdict: AuthVerdict = Depends(require_payment),
    deps: GateDeps = Depends(get_deps),
):
    """Unlock paywalled content with a confirmed on-chain payment.

    Each transaction hash buys exactly one unlock.
    """
    result = verdict.result
    if not isinstance(result, Confirmed) or verdict.payer is None or deps.requirement is None:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Internal error",
        )

    first = await run_in_threadpool(
        deps.claims.try_claim,
        result.transaction_hash,
        deps.requirement.network,
        verdict.payer,
        result.amount,
    )
    if not first:
        logger.warning(f"Payment {result.transaction_hash} already used")
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Payment already used",
        )

    logger.info(f"Unlocked with payment {result.transaction_hash} ({result.amount})")
    return UnlockResponse(
        tx_hash=result.transaction_hash,
        network=deps.requirement.network,
        amount=str(result.amount),
        confirmations=result.confirmations,
        unlocked_at=datetime.now(timezone.utc).isoformat(),
    )
