"""x402 payment gate for priced endpoints.

Without an ``X-PAYMENT`` header the gate answers with a challenge. With one it
decodes the proof, recovers the payer from the EIP-712 ``Payment`` signature and
requires the exact configured amount and token. Nothing is persisted, so the
gate does not prevent a proof from being reused before its deadline.
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
import time
import uuid
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Tuple

from x402.schemas import PaymentRequirements

from .constants import DOMAIN_NAME, DOMAIN_VERSION
from .intents import PaymentDetails
from .signatures import verify_payment

logger = logging.getLogger(__name__)

JsonDict = Dict[str, Any]

X_PAYMENT_HEADER = "X-PAYMENT"
PAYMENT_SCHEME = "chimera-eip712"


@dataclass
class EndpointPrice:
    amount: str
    token: str
    recipient: str
    chain_id: int
    verifying_contract: Optional[str] = None
    endpoint: str = ""
    description: str = ""
    max_timeout_seconds: int = 300

    @property
    def network(self) -> str:
        return f"eip155:{self.chain_id}"


@dataclass
class PaymentVerification:
    valid: bool
    payer: Optional[str] = None
    amount: Optional[str] = None
    token: Optional[str] = None
    payment_id: Optional[str] = None
    error: Optional[str] = None
    expected: Optional[str] = None
    received: Optional[str] = None

    def to_dict(self) -> JsonDict:
        if self.valid:
            return {
                "verified": True,
                "payer": self.payer,
                "amount": self.amount,
                "token": self.token,
                "paymentId": self.payment_id,
            }
        body: JsonDict = {"error": self.error}
        if self.expected is not None:
            body["expected"] = self.expected
            body["received"] = self.received
        return body


def decode_payment_header(header: str) -> Tuple[PaymentDetails, str]:
    """Accept base64-encoded or plain JSON ``{paymentDetails, signature}``."""

    trimmed = header.strip()
    if not trimmed:
        raise ValueError("payment header is empty")
    try:
        payload = json.loads(trimmed)
    except ValueError:
        try:
            payload = json.loads(base64.b64decode(trimmed, validate=True))
        except (ValueError, binascii.Error) as err:
            raise ValueError("payment header must be JSON or base64-encoded JSON") from err

    if not isinstance(payload, dict):
        raise ValueError("payment header must decode to an object")
    signature = payload.get("signature")
    if not isinstance(signature, str) or not signature:
        raise ValueError("payment header missing signature")
    details = payload.get("paymentDetails") or payload.get("payment") or payload
    if not isinstance(details, dict):
        raise ValueError("paymentDetails must be an object")
    return PaymentDetails.from_payload(details), signature


def encode_payment_header(details: PaymentDetails, signature: str) -> str:
    payload = {
        "paymentDetails": {
            "paymentId": details.payment_id,
            "amount": details.amount,
            "token": details.token,
            "recipient": details.recipient,
            "endpoint": details.endpoint,
            "deadline": details.deadline,
        },
        "signature": signature,
    }
    return base64.b64encode(json.dumps(payload).encode()).decode()


class PaymentGate:
    def __init__(self, price: EndpointPrice, *, clock: Callable[[], float] = time.time) -> None:
        self.price = price
        self._clock = clock

    @property
    def domain(self) -> JsonDict:
        domain: JsonDict = {
            "name": DOMAIN_NAME,
            "version": DOMAIN_VERSION,
            "chainId": self.price.chain_id,
        }
        if self.price.verifying_contract:
            domain["verifyingContract"] = self.price.verifying_contract
        return domain

    def challenge(self) -> JsonDict:
        price = self.price
        payment_id = uuid.uuid4().hex
        deadline = int(self._clock()) + price.max_timeout_seconds
        requirements = PaymentRequirements(
            scheme=PAYMENT_SCHEME,
            network=price.network,
            asset=price.token,
            amount=price.amount,
            pay_to=price.recipient,
            max_timeout_seconds=price.max_timeout_seconds,
            extra={
                "paymentId": payment_id,
                "endpoint": price.endpoint,
                "deadline": deadline,
                "domain": self.domain,
            },
        )
        return {
            "error": "payment required",
            "paymentId": payment_id,
            "amount": price.amount,
            "token": price.token,
            "recipient": price.recipient,
            "chainId": price.chain_id,
            "verifyingContract": price.verifying_contract,
            "endpoint": price.endpoint,
            "deadline": deadline,
            "description": price.description,
            "requiredAmount": price.amount,
            "requiredToken": price.token,
            "accepts": [requirements.model_dump(by_alias=True, exclude_none=True)],
        }

    def verify(self, header: str) -> PaymentVerification:
        """Verify a payment header. Raises ``ValueError`` if it cannot be decoded."""

        details, signature = decode_payment_header(header)
        price = self.price

        if details.deadline < self._clock():
            return PaymentVerification(valid=False, error="Payment deadline expired")

        payer = verify_payment(details, signature, self.domain)
        if payer is None:
            return PaymentVerification(valid=False, error="Payment verification failed")

        if details.amount != price.amount:
            return PaymentVerification(
                valid=False,
                error="Invalid payment amount",
                expected=price.amount,
                received=details.amount,
            )
        if details.token.lower() != price.token.lower():
            return PaymentVerification(
                valid=False,
                error="Invalid payment token",
                expected=price.token,
                received=details.token,
            )
        if details.recipient.lower() != price.recipient.lower():
            return PaymentVerification(
                valid=False,
                error="Invalid payment recipient",
                expected=price.recipient,
                received=details.recipient,
            )

        logger.info("payment verified payer=%s amount=%s id=%s", payer, details.amount, details.payment_id)
        return PaymentVerification(
            valid=True,
            payer=payer,
            amount=details.amount,
            token=details.token,
            payment_id=details.payment_id,
        )
