"""Configuration loaded from the environment and an optional ``.env`` file."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from dotenv import dotenv_values

from .constants import (
    DEFAULT_RPC_URLS,
    DOMAIN_NAME,
    DOMAIN_VERSION,
    UnsupportedChainError,
    get_default_assets,
)
from .errors import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_CHAIN_ID = 97
DEFAULT_AUDIT_THRESHOLD = 80
DEFAULT_PRICE = "1000"


@dataclass
class PolicyConfig:
    """Static policy injected into the engine and ledger.

    Spend values are in native-currency units.
    """

    max_spend_per_tx: Decimal = Decimal("0.5")
    max_spend_per_hour: Decimal = Decimal("1.0")
    max_spend_per_day: Decimal = Decimal("5.0")
    max_tx_per_minute: int = 5
    max_tx_per_hour: int = 30
    max_tx_per_day: int = 100
    allowed_intent_types: List[str] = field(
        default_factory=lambda: ["deploy_contract", "transfer", "call_contract", "swap"]
    )
    allowed_contracts: List[str] = field(default_factory=list)
    denied_contracts: List[str] = field(default_factory=list)
    min_audit_score: int = DEFAULT_AUDIT_THRESHOLD
    require_audit: bool = True
    enforce_per_tx_cap: bool = False
    burn_nonce_on_failure: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "maxSpendPerTx": str(self.max_spend_per_tx),
            "maxSpendPerHour": str(self.max_spend_per_hour),
            "maxSpendPerDay": str(self.max_spend_per_day),
            "maxTxPerMinute": self.max_tx_per_minute,
            "maxTxPerHour": self.max_tx_per_hour,
            "maxTxPerDay": self.max_tx_per_day,
            "allowedIntentTypes": list(self.allowed_intent_types),
            "allowedContracts": list(self.allowed_contracts),
            "deniedContracts": list(self.denied_contracts),
            "minAuditScore": self.min_audit_score,
            "requireAudit": self.require_audit,
            "enforcePerTxCap": self.enforce_per_tx_cap,
            "burnNonceOnFailure": self.burn_nonce_on_failure,
        }


@dataclass
class ChainSettings:
    rpc_url: str
    chain_id: int
    facilitator_private_key: Optional[str]
    facilitator_address: Optional[str]
    router_address: Optional[str] = None
    wrapped_native: Optional[str] = None
    confirmations: int = 1


@dataclass
class AuditSettings:
    api_key: Optional[str]
    threshold: int = DEFAULT_AUDIT_THRESHOLD
    enabled: bool = True
    max_retries: int = 3


@dataclass
class PaymentSettings:
    enabled: bool
    token: str
    recipient: Optional[str]
    verifying_contract: Optional[str]
    prices: Dict[str, str] = field(default_factory=dict)


@dataclass
class Settings:
    port: int
    environment: str
    chain: ChainSettings
    audit: AuditSettings
    payment: PaymentSettings
    policy: PolicyConfig

    def domain(self) -> Dict[str, Any]:
        return {
            "name": DOMAIN_NAME,
            "version": DOMAIN_VERSION,
            "chainId": self.chain.chain_id,
            "verifyingContract": self.chain.facilitator_address,
        }


class _Resolver:
    """Reads values from ``os.environ`` first and the ``.env`` map second."""

    def __init__(self, env: Optional[Mapping[str, str]], env_file: Optional[Path]) -> None:
        self._env = os.environ if env is None else env
        self._file: Dict[str, str] = {}
        if env_file is not None and env_file.exists():
            self._file = {k: v for k, v in dotenv_values(env_file).items() if v is not None}

    def value(
        self,
        keys: Union[str, Sequence[str]],
        *,
        required: bool = False,
        default: Optional[str] = None,
    ) -> Optional[str]:
        key_list: Tuple[str, ...] = (keys,) if isinstance(keys, str) else tuple(keys)
        for key in key_list:
            value = self._env.get(key)
            if value is None:
                value = self._file.get(key)
            if value is not None and value.strip():
                return value.strip()
        if required:
            joined = "/".join(key_list)
            raise ConfigurationError(f"missing configuration value for {joined}")
        return default

    def integer(self, key: str, default: int) -> int:
        raw = self.value(key)
        if raw is None:
            return default
        try:
            return int(raw, 10)
        except ValueError as err:
            raise ConfigurationError(f"{key} must be an integer value") from err

    def decimal(self, key: str, default: Decimal) -> Decimal:
        raw = self.value(key)
        if raw is None:
            return default
        try:
            return Decimal(raw)
        except InvalidOperation as err:
            raise ConfigurationError(f"{key} must be a decimal value") from err

    def flag(self, key: str, default: bool) -> bool:
        raw = self.value(key)
        if raw is None:
            return default
        return raw.lower() in ("1", "true", "yes", "on")

    def address_list(self, key: str) -> List[str]:
        raw = self.value(key)
        if raw is None:
            return []
        return [item.strip() for item in raw.split(",") if item.strip()]


def _load_policy(resolver: _Resolver) -> PolicyConfig:
    base = PolicyConfig()
    allowed_types = resolver.address_list("POLICY_ALLOWED_INTENT_TYPES")
    return PolicyConfig(
        max_spend_per_tx=resolver.decimal("POLICY_MAX_SPEND_PER_TX", base.max_spend_per_tx),
        max_spend_per_hour=resolver.decimal("POLICY_MAX_SPEND_PER_HOUR", base.max_spend_per_hour),
        max_spend_per_day=resolver.decimal("POLICY_MAX_SPEND_PER_DAY", base.max_spend_per_day),
        max_tx_per_minute=resolver.integer("POLICY_MAX_TX_PER_MINUTE", base.max_tx_per_minute),
        max_tx_per_hour=resolver.integer("POLICY_MAX_TX_PER_HOUR", base.max_tx_per_hour),
        max_tx_per_day=resolver.integer("POLICY_MAX_TX_PER_DAY", base.max_tx_per_day),
        allowed_intent_types=allowed_types or base.allowed_intent_types,
        allowed_contracts=resolver.address_list("POLICY_ALLOWED_CONTRACTS"),
        denied_contracts=resolver.address_list("POLICY_DENIED_CONTRACTS"),
        min_audit_score=resolver.integer("AUDIT_SCORE_THRESHOLD", base.min_audit_score),
        require_audit=resolver.flag("POLICY_REQUIRE_AUDIT", base.require_audit),
        enforce_per_tx_cap=resolver.flag("POLICY_ENFORCE_PER_TX_CAP", base.enforce_per_tx_cap),
        burn_nonce_on_failure=resolver.flag(
            "POLICY_BURN_NONCE_ON_FAILURE", base.burn_nonce_on_failure
        ),
    )


def load_settings(
    env: Optional[Mapping[str, str]] = None,
    env_file: Optional[Path] = Path(".env"),
) -> Settings:
    """Build :class:`Settings` from ``env`` (defaults to ``os.environ``)."""

    resolver = _Resolver(env, env_file)

    chain_id = resolver.integer("BNB_CHAIN_ID", DEFAULT_CHAIN_ID)
    rpc_url = resolver.value(["BNB_RPC_URL", "RPC_URL"], default=DEFAULT_RPC_URLS.get(chain_id))
    if not rpc_url:
        raise ConfigurationError(f"No RPC URL configured for chain {chain_id}")

    try:
        assets: Dict[str, Any] = dict(get_default_assets(chain_id))
    except UnsupportedChainError:
        assets = {}

    facilitator_address = resolver.value("FACILITATOR_WALLET_ADDRESS")
    chain = ChainSettings(
        rpc_url=rpc_url,
        chain_id=chain_id,
        facilitator_private_key=resolver.value("FACILITATOR_PRIVATE_KEY"),
        facilitator_address=facilitator_address,
        router_address=resolver.value("SWAP_ROUTER_ADDRESS", default=assets.get("router")),
        wrapped_native=resolver.value("WRAPPED_NATIVE_ADDRESS", default=assets.get("wrapped_native")),
        confirmations=resolver.integer("CONFIRMATIONS", 1),
    )

    threshold = resolver.integer("AUDIT_SCORE_THRESHOLD", DEFAULT_AUDIT_THRESHOLD)
    audit = AuditSettings(
        api_key=resolver.value("CHAINGPT_API_KEY"),
        threshold=threshold,
        enabled=resolver.flag("ENABLE_AUDIT_LOOP", True),
        max_retries=resolver.integer("AUDIT_MAX_RETRIES", 3),
    )

    payment = PaymentSettings(
        enabled=resolver.flag("ENABLE_PAYMENTS", False),
        token=resolver.value(
            "PAYMENT_TOKEN",
            default=assets.get("payment_token") or "0x337610d27c682E347C9cD60BD4b3b107C9d34dDd",
        ),
        recipient=facilitator_address,
        verifying_contract=facilitator_address,
        prices={
            "generate": resolver.value("PRICE_GENERATE", default=DEFAULT_PRICE),
            "audit": resolver.value("PRICE_AUDIT", default=DEFAULT_PRICE),
        },
    )

    settings = Settings(
        port=resolver.integer("PORT", 3000),
        environment=resolver.value("ENVIRONMENT", default="development"),
        chain=chain,
        audit=audit,
        payment=payment,
        policy=_load_policy(resolver),
    )
    logger.info(
        "loaded configuration env=%s chain=%s facilitator=%s payments=%s audit_loop=%s",
        settings.environment,
        chain.chain_id,
        chain.facilitator_address,
        payment.enabled,
        audit.enabled,
    )
    return settings
