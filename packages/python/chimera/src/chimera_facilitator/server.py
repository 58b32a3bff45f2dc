"""HTTP surface for the facilitator, audit loop and payment gate.

Run with:

    uvicorn chimera_facilitator.server:app --factory --port 3000
"""

from __future__ import annotations

import json
import logging
from typing import Any, AsyncIterator, Dict, Optional

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse, StreamingResponse

from .audit_loop import AuditLoop
from .auditor import ChainGPTClient
from .chain import Web3ChainClient
from .config import Settings, load_settings
from .dispatcher import ExecutionDispatcher
from .errors import (
    AuditServiceError,
    ConfigurationError,
    ExecutionFailedError,
    InsufficientFundsError,
    InvalidSignatureError,
    PolicyViolationError,
    ReplayedNonceError,
)
from .facilitator import Facilitator
from .http import fastapi_payment_middleware_from_config, get_payment
from .intents import Intent
from .payment import EndpointPrice

logger = logging.getLogger(__name__)

JsonDict = Dict[str, Any]

GENERATE_ROUTE = "/api/contracts/generate"
AUDIT_ROUTE = "/api/contracts/audit"


def build_facilitator(settings: Settings) -> Facilitator:
    chain_settings = settings.chain
    if not chain_settings.facilitator_private_key:
        raise ConfigurationError("FACILITATOR_PRIVATE_KEY is required")
    chain = Web3ChainClient(
        chain_settings.facilitator_private_key,
        chain_settings.rpc_url,
        chain_settings.chain_id,
    )
    dispatcher = ExecutionDispatcher(
        chain,
        router_address=chain_settings.router_address,
        wrapped_native=chain_settings.wrapped_native,
    )
    return Facilitator(
        chain,
        settings.policy,
        chain_id=chain_settings.chain_id,
        dispatcher=dispatcher,
        verifying_contract=chain_settings.facilitator_address,
        confirmations=chain_settings.confirmations,
    )


def build_audit_loop(settings: Settings) -> AuditLoop:
    if not settings.audit.api_key:
        raise ConfigurationError("CHAINGPT_API_KEY is required")
    return AuditLoop(ChainGPTClient(settings.audit.api_key), threshold=settings.audit.threshold)


def _payment_routes(settings: Settings) -> Dict[str, EndpointPrice]:
    payment = settings.payment
    if not payment.recipient:
        raise ConfigurationError("FACILITATOR_WALLET_ADDRESS is required when payments are enabled")

    def price(key: str, description: str) -> EndpointPrice:
        return EndpointPrice(
            amount=payment.prices[key],
            token=payment.token,
            recipient=payment.recipient,
            chain_id=settings.chain.chain_id,
            verifying_contract=payment.verifying_contract,
            description=description,
        )

    return {
        f"POST {GENERATE_ROUTE}": price("generate", "Audited contract generation"),
        f"POST {AUDIT_ROUTE}": price("audit", "Contract security audit"),
    }


def _register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(InvalidSignatureError)
    async def invalid_signature(_request: Request, exc: InvalidSignatureError) -> JSONResponse:
        return JSONResponse(
            {"error": "invalid signature", "message": str(exc)},
            status_code=status.HTTP_401_UNAUTHORIZED,
        )

    @app.exception_handler(PolicyViolationError)
    async def policy_violation(_request: Request, exc: PolicyViolationError) -> JSONResponse:
        return JSONResponse(
            {
                "error": "policy violation",
                "violations": exc.violations,
                "replay": isinstance(exc, ReplayedNonceError),
            },
            status_code=status.HTTP_403_FORBIDDEN,
        )

    @app.exception_handler(InsufficientFundsError)
    async def insufficient_funds(_request: Request, exc: InsufficientFundsError) -> JSONResponse:
        return JSONResponse(
            {"error": "facilitator unavailable", "message": str(exc)},
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        )

    @app.exception_handler(ExecutionFailedError)
    async def execution_failed(_request: Request, exc: ExecutionFailedError) -> JSONResponse:
        return JSONResponse(
            {
                "error": "execution failed",
                "reason": exc.reason,
                "landed": exc.landed,
                "txHash": exc.tx_hash,
            },
            status_code=status.HTTP_502_BAD_GATEWAY,
        )

    @app.exception_handler(AuditServiceError)
    async def audit_service(_request: Request, exc: AuditServiceError) -> JSONResponse:
        return JSONResponse(
            {"error": "audit service failure", "message": str(exc)},
            status_code=status.HTTP_502_BAD_GATEWAY,
        )


def create_app(
    settings: Optional[Settings] = None,
    *,
    facilitator: Optional[Facilitator] = None,
    audit_loop: Optional[AuditLoop] = None,
) -> FastAPI:
    settings = settings or load_settings()
    facilitator = facilitator or build_facilitator(settings)
    if audit_loop is None and settings.audit.enabled:
        audit_loop = build_audit_loop(settings)

    app = FastAPI(title="Chimera Facilitator")
    _register_error_handlers(app)

    if settings.payment.enabled:
        middleware = fastapi_payment_middleware_from_config(_payment_routes(settings))

        @app.middleware("http")
        async def x402_middleware(request, call_next):
            return await middleware(request, call_next)

    @app.get("/health")
    async def health() -> JsonDict:
        return {"status": "ok"}

    @app.post("/api/intents/execute")
    async def execute_intent(payload: JsonDict) -> JSONResponse:
        try:
            intent = Intent.from_payload(payload.get("intent") or {})
        except ValueError as err:
            return JSONResponse({"error": str(err)}, status_code=status.HTTP_400_BAD_REQUEST)
        result = await facilitator.execute_user_intent(
            intent, payload.get("signature"), payload.get("userAddress")
        )
        return JSONResponse(result.to_dict())

    @app.post("/api/intents/estimate")
    async def estimate_intent(payload: JsonDict) -> JSONResponse:
        try:
            intent = Intent.from_payload(payload.get("intent") or {})
        except ValueError as err:
            return JSONResponse({"error": str(err)}, status_code=status.HTTP_400_BAD_REQUEST)
        cost = await facilitator.estimate_gas(intent)
        return JSONResponse({"type": intent.type, "estimatedCost": str(cost)})

    @app.get("/api/facilitator/balance")
    async def balance() -> JsonDict:
        return {
            "address": facilitator.chain.address,
            "balance": str(await facilitator.get_balance()),
        }

    @app.get("/api/facilitator/policy")
    async def policy() -> JsonDict:
        return facilitator.get_policy()

    @app.get("/api/facilitator/limits/{address}")
    async def limits(address: str) -> JsonDict:
        spend = facilitator.get_remaining_spend(address)
        return {
            "address": address,
            "spendRemaining": {k: str(v) for k, v in spend.items()},
            "txRemaining": facilitator.get_remaining_tx(address),
        }

    @app.post(GENERATE_ROUTE)
    async def generate_contract(payload: JsonDict, request: Request):
        prompt = payload.get("prompt")
        if not isinstance(prompt, str) or not prompt.strip():
            return JSONResponse({"error": "prompt is required"}, status_code=status.HTTP_400_BAD_REQUEST)
        if audit_loop is None:
            return JSONResponse(
                {"error": "audit loop disabled"}, status_code=status.HTTP_503_SERVICE_UNAVAILABLE
            )
        limit = settings.audit.max_retries
        requested = payload.get("maxRetries")
        if requested is None:
            max_retries = limit
        else:
            try:
                max_retries = int(requested)
            except (TypeError, ValueError):
                return JSONResponse(
                    {"error": "maxRetries must be an integer"},
                    status_code=status.HTTP_400_BAD_REQUEST,
                )
            if isinstance(requested, bool) or max_retries < 1:
                return JSONResponse(
                    {"error": "maxRetries must be at least 1"},
                    status_code=status.HTTP_400_BAD_REQUEST,
                )
            # Each attempt is a paid upstream call; never exceed the configured ceiling.
            max_retries = min(max_retries, limit)
        payment = get_payment(request)

        async def events() -> AsyncIterator[str]:
            if payment is not None:
                yield json.dumps({"type": "payment", "payment": payment}) + "\n"
            try:
                async for event in audit_loop.generate_with_audit(prompt, max_retries):
                    yield json.dumps(event) + "\n"
            except Exception as exc:
                # The loop already emitted an ``error`` event for this failure.
                logger.error("generation stream aborted: %s", exc)

        return StreamingResponse(events(), media_type="application/x-ndjson")

    @app.post(AUDIT_ROUTE)
    async def audit_contract(payload: JsonDict) -> JSONResponse:
        code = payload.get("code")
        if not isinstance(code, str) or not code.strip():
            return JSONResponse({"error": "code is required"}, status_code=status.HTTP_400_BAD_REQUEST)
        if audit_loop is None:
            return JSONResponse(
                {"error": "audit loop disabled"}, status_code=status.HTTP_503_SERVICE_UNAVAILABLE
            )
        result = await audit_loop.audit_only(code)
        return JSONResponse(result.to_dict())

    _ = (health, execute_intent, estimate_intent, balance, policy, limits, generate_contract, audit_contract)
    return app


def app() -> FastAPI:
    return create_app()


def main() -> None:
    import uvicorn

    logging.basicConfig(level=logging.INFO, format="chimera %(levelname)s %(name)s: %(message)s")
    settings = load_settings()
    uvicorn.run(create_app(settings), host="0.0.0.0", port=settings.port)
