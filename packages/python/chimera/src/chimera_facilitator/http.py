"""x402 payment middleware wrappers for FastAPI and Flask."""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Dict, Mapping, Optional

from .payment import X_PAYMENT_HEADER, EndpointPrice, PaymentGate

logger = logging.getLogger(__name__)

RoutesConfig = Mapping[str, EndpointPrice]


def _build_gates(routes: RoutesConfig, clock: Callable[[], float]) -> Dict[str, PaymentGate]:
    gates: Dict[str, PaymentGate] = {}
    for route, price in routes.items():
        method, _, path = route.partition(" ")
        if not path:
            raise ValueError(f"route must look like 'METHOD /path': {route!r}")
        if not price.endpoint:
            price.endpoint = path
        gates[f"{method.upper()} {path}"] = PaymentGate(price, clock=clock)
    return gates


def _check(gate: PaymentGate, header: Optional[str]) -> tuple[int, Dict[str, Any]]:
    """Return ``(status, body)``; status 200 means the request may continue."""

    if not header:
        return 402, gate.challenge()
    try:
        verification = gate.verify(header)
    except ValueError as err:
        return 400, {"error": "Invalid payment header format", "message": str(err)}
    if not verification.valid:
        logger.warning(
            "payment rejected endpoint=%s reason=%s", gate.price.endpoint, verification.error
        )
        return 402, verification.to_dict()
    return 200, verification.to_dict()


# =========================================================================
# FastAPI wrapper (async)
# =========================================================================


def fastapi_payment_middleware_from_config(
    routes: RoutesConfig,
    clock: Callable[[], float] = time.time,
):
    from fastapi.responses import JSONResponse

    gates = _build_gates(routes, clock)

    async def middleware(request, call_next):
        gate = gates.get(f"{request.method} {request.url.path}")
        if gate is None:
            return await call_next(request)

        status, body = _check(gate, request.headers.get(X_PAYMENT_HEADER))
        if status != 200:
            return JSONResponse(content=body, status_code=status)

        request.state.payment = body
        return await call_next(request)

    return middleware


# =========================================================================
# Flask wrapper (sync)
# =========================================================================


def flask_payment_middleware_from_config(
    app,
    routes: RoutesConfig,
    clock: Callable[[], float] = time.time,
):
    from flask import g, jsonify, request

    gates = _build_gates(routes, clock)

    def payment_guard():
        gate = gates.get(f"{request.method} {request.path}")
        if gate is None:
            return None

        status, body = _check(gate, request.headers.get(X_PAYMENT_HEADER))
        if status != 200:
            return jsonify(body), status

        g.payment = body
        return None

    app.before_request(payment_guard)
    return payment_guard


def get_payment(request) -> Optional[Dict[str, Any]]:
    """Payment attached by the FastAPI middleware, if any."""
    return getattr(request.state, "payment", None)
