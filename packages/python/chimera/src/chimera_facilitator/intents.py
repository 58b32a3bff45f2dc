"""Intent and payment models plus their EIP-712 typed-data encodings."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

from web3 import Web3


class IntentType(str, Enum):
    DEPLOY_CONTRACT = "deploy_contract"
    TRANSFER = "transfer"
    CALL_CONTRACT = "call_contract"
    SWAP = "swap"


EIP712_DOMAIN_TYPES: List[Dict[str, str]] = [
    {"name": "name", "type": "string"},
    {"name": "version", "type": "string"},
    {"name": "chainId", "type": "uint256"},
    {"name": "verifyingContract", "type": "address"},
]

INTENT_TYPES: List[Dict[str, str]] = [
    {"name": "type", "type": "string"},
    {"name": "nonce", "type": "uint256"},
    {"name": "deadline", "type": "uint256"},
    {"name": "dataHash", "type": "bytes32"},
]

PAYMENT_TYPES: List[Dict[str, str]] = [
    {"name": "paymentId", "type": "string"},
    {"name": "amount", "type": "string"},
    {"name": "token", "type": "string"},
    {"name": "recipient", "type": "address"},
    {"name": "endpoint", "type": "string"},
    {"name": "deadline", "type": "uint256"},
]


def canonical_json(data: Any) -> str:
    """Compact JSON with insertion order kept, matching ``JSON.stringify``."""
    return json.dumps(data, separators=(",", ":"), ensure_ascii=False)


def data_digest(data: Any) -> str:
    return Web3.to_hex(Web3.keccak(text=canonical_json(data)))


def _pick(payload: Mapping[str, Any], keys: List[str], default: Any = None) -> Any:
    for key in keys:
        if key in payload and payload[key] is not None:
            return payload[key]
    return default


def _parse_int(value: Any, *, field_name: str) -> int:
    if isinstance(value, bool):
        raise ValueError(f"{field_name} must be an integer")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        trimmed = value.strip()
        try:
            if trimmed.lower().startswith("0x"):
                return int(trimmed, 16)
            return int(trimmed, 10)
        except ValueError as err:
            raise ValueError(f"{field_name} must be a hexadecimal or decimal number") from err
    raise ValueError(f"{field_name} must be a string or integer value")


@dataclass
class Intent:
    type: str
    nonce: int
    deadline: int
    data: Dict[str, Any] = field(default_factory=dict)
    data_hash: Optional[str] = None

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "Intent":
        intent_type = _pick(payload, ["type", "intentType"])
        nonce = _pick(payload, ["nonce"])
        deadline = _pick(payload, ["deadline"])
        if intent_type is None or nonce is None or deadline is None:
            raise ValueError("intent requires type, nonce and deadline")

        data = _pick(payload, ["data"], {})
        if not isinstance(data, dict):
            raise ValueError("intent data must be an object")

        data_hash = _pick(payload, ["dataHash", "data_hash"])
        return cls(
            type=str(intent_type),
            nonce=_parse_int(nonce, field_name="nonce"),
            deadline=_parse_int(deadline, field_name="deadline"),
            data=data,
            data_hash=str(data_hash) if data_hash is not None else None,
        )

    def digest(self) -> str:
        return data_digest(self.data)

    def effective_data_hash(self) -> str:
        return self.data_hash or self.digest()

    def hash_matches_data(self) -> bool:
        if self.data_hash is None:
            return True
        return self.data_hash.lower() == self.digest().lower()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "nonce": self.nonce,
            "deadline": self.deadline,
            "dataHash": self.effective_data_hash(),
            "data": self.data,
        }


@dataclass
class PaymentDetails:
    payment_id: str
    amount: str
    token: str
    recipient: str
    endpoint: str
    deadline: int

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "PaymentDetails":
        payment_id = _pick(payload, ["paymentId", "payment_id", "id"])
        amount = _pick(payload, ["amount"])
        token = _pick(payload, ["token"])
        recipient = _pick(payload, ["recipient", "payTo"])
        endpoint = _pick(payload, ["endpoint"], "")
        deadline = _pick(payload, ["deadline"])
        if not all([payment_id, amount is not None, token, recipient, deadline is not None]):
            raise ValueError("payment details missing required fields")
        return cls(
            payment_id=str(payment_id),
            amount=str(amount),
            token=str(token),
            recipient=str(recipient),
            endpoint=str(endpoint),
            deadline=_parse_int(deadline, field_name="deadline"),
        )


def _typed_domain(domain: Mapping[str, Any]) -> tuple[List[Dict[str, str]], Dict[str, Any]]:
    fields: List[Dict[str, str]] = []
    values: Dict[str, Any] = {}
    for entry in EIP712_DOMAIN_TYPES:
        name = entry["name"]
        value = domain.get(name)
        if value is None:
            continue
        if name == "verifyingContract":
            value = Web3.to_checksum_address(value)
        elif name == "chainId":
            value = int(value)
        fields.append(entry)
        values[name] = value
    return fields, values


def intent_typed_data(intent: Intent, domain: Mapping[str, Any]) -> Dict[str, Any]:
    domain_fields, domain_values = _typed_domain(domain)
    return {
        "types": {"EIP712Domain": domain_fields, "Intent": INTENT_TYPES},
        "primaryType": "Intent",
        "domain": domain_values,
        "message": {
            "type": intent.type,
            "nonce": int(intent.nonce),
            "deadline": int(intent.deadline),
            "dataHash": bytes(Web3.to_bytes(hexstr=intent.effective_data_hash())),
        },
    }


def payment_typed_data(details: PaymentDetails, domain: Mapping[str, Any]) -> Dict[str, Any]:
    domain_fields, domain_values = _typed_domain(domain)
    return {
        "types": {"EIP712Domain": domain_fields, "Payment": PAYMENT_TYPES},
        "primaryType": "Payment",
        "domain": domain_values,
        "message": {
            "paymentId": details.payment_id,
            "amount": details.amount,
            "token": details.token,
            "recipient": Web3.to_checksum_address(details.recipient),
            "endpoint": details.endpoint,
            "deadline": int(details.deadline),
        },
    }
