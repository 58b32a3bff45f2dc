"""Chimera gasless facilitator (Python)."""

from __future__ import annotations

from .audit_loop import AuditIteration, AuditLoop
from .auditor import ChainGPTClient, CodeService
from .chain import ChainClient, Receipt, Web3ChainClient
from .config import PolicyConfig, Settings, load_settings
from .constants import (
    DEFAULT_ASSETS,
    DEFAULT_RPC_URLS,
    SUPPORTED_CHAIN_IDS,
    UnsupportedChainError,
    get_default_assets,
)
from .dispatcher import ExecutionDispatcher
from .errors import (
    AuditServiceError,
    ConfigurationError,
    ExecutionFailedError,
    ExtractionFailedError,
    InsufficientFundsError,
    InvalidSignatureError,
    PolicyViolationError,
    ReplayedNonceError,
)
from .extraction import AuditResult, SolidityExtractor
from .facilitator import ExecutionResult, Facilitator
from .http import (
    fastapi_payment_middleware_from_config,
    flask_payment_middleware_from_config,
)
from .intents import Intent, IntentType, PaymentDetails
from .ledger import InMemoryPolicyStore, PolicyLedger, PolicyStore, TransactionRecord
from .payment import EndpointPrice, PaymentGate, PaymentVerification
from .policy import PolicyResult, validate
from .signatures import sign_intent, sign_payment, verify_intent, verify_payment

__all__ = [
    "SUPPORTED_CHAIN_IDS",
    "DEFAULT_RPC_URLS",
    "DEFAULT_ASSETS",
    "UnsupportedChainError",
    "get_default_assets",
    "Settings",
    "PolicyConfig",
    "load_settings",
    "Intent",
    "IntentType",
    "PaymentDetails",
    "sign_intent",
    "sign_payment",
    "verify_intent",
    "verify_payment",
    "PolicyLedger",
    "PolicyStore",
    "InMemoryPolicyStore",
    "TransactionRecord",
    "PolicyResult",
    "validate",
    "ChainClient",
    "Web3ChainClient",
    "Receipt",
    "ExecutionDispatcher",
    "Facilitator",
    "ExecutionResult",
    "AuditLoop",
    "AuditIteration",
    "AuditResult",
    "ChainGPTClient",
    "CodeService",
    "SolidityExtractor",
    "EndpointPrice",
    "PaymentGate",
    "PaymentVerification",
    "fastapi_payment_middleware_from_config",
    "flask_payment_middleware_from_config",
    "InvalidSignatureError",
    "PolicyViolationError",
    "ReplayedNonceError",
    "InsufficientFundsError",
    "ExecutionFailedError",
    "ExtractionFailedError",
    "AuditServiceError",
    "ConfigurationError",
]
