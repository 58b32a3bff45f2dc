"""Gas-sponsoring facilitator: verify, apply policy, dispatch, confirm, record."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Callable, Dict, Optional

from web3 import Web3

from . import policy as policy_engine
from .chain import ChainClient, Receipt
from .config import PolicyConfig
from .constants import DEFAULT_GAS_BASELINE, DOMAIN_NAME, DOMAIN_VERSION, FALLBACK_GAS_COST, GAS_BASELINES
from .dispatcher import ExecutionDispatcher
from .errors import (
    ExecutionFailedError,
    InsufficientFundsError,
    InvalidSignatureError,
    PolicyViolationError,
    ReplayedNonceError,
)
from .intents import Intent
from .ledger import PolicyLedger, TransactionRecord
from .signatures import verify_intent

logger = logging.getLogger(__name__)


@dataclass
class ExecutionResult:
    success: bool
    tx_hash: str
    block_number: int
    gas_used: int
    contract_address: Optional[str] = None
    policy_info: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        spend = self.policy_info.get("spendRemaining", {})
        return {
            "success": self.success,
            "txHash": self.tx_hash,
            "blockNumber": self.block_number,
            "gasUsed": str(self.gas_used),
            "contractAddress": self.contract_address,
            "policyInfo": {
                "spendRemaining": {k: str(v) for k, v in spend.items()},
                "txRemaining": dict(self.policy_info.get("txRemaining", {})),
            },
        }


def _raise_for(result: policy_engine.PolicyResult) -> None:
    if result.ok:
        return
    if result.replayed:
        raise ReplayedNonceError(result.violations)
    raise PolicyViolationError(result.violations)


class Facilitator:
    """Executes user intents with the facilitator's own funded account."""

    def __init__(
        self,
        chain: ChainClient,
        policy: Optional[PolicyConfig] = None,
        *,
        chain_id: int,
        ledger: Optional[PolicyLedger] = None,
        dispatcher: Optional[ExecutionDispatcher] = None,
        verifying_contract: Optional[str] = None,
        confirmations: int = 1,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.chain = chain
        self.policy = policy or PolicyConfig()
        self.chain_id = chain_id
        self.ledger = ledger or PolicyLedger(self.policy, clock=clock)
        self.dispatcher = dispatcher or ExecutionDispatcher(chain, clock=clock)
        self._verifying_contract = verifying_contract
        self._confirmations = confirmations
        logger.info(
            "facilitator initialised address=%s chain=%s max_spend_per_tx=%s max_tx_per_hour=%s",
            chain.address,
            chain_id,
            self.policy.max_spend_per_tx,
            self.policy.max_tx_per_hour,
        )

    @property
    def domain(self) -> Dict[str, Any]:
        return {
            "name": DOMAIN_NAME,
            "version": DOMAIN_VERSION,
            "chainId": self.chain_id,
            "verifyingContract": self._verifying_contract or self.chain.address,
        }

    async def execute_user_intent(
        self,
        intent: Intent,
        signature: Optional[str],
        user_address: Optional[str] = None,
        *,
        internal: bool = False,
        timeout: Optional[float] = None,
    ) -> ExecutionResult:
        logger.info("executing intent type=%s nonce=%s", intent.type, intent.nonce)

        if internal:
            logger.warning(
                "signature verification bypassed for internal operation type=%s nonce=%s",
                intent.type,
                intent.nonce,
            )
        else:
            signer = verify_intent(intent, signature or "", self.domain)
            if signer is None:
                raise InvalidSignatureError("Invalid intent signature")
            if user_address and signer.lower() != user_address.lower():
                raise InvalidSignatureError(
                    f"Intent signed by {signer}, not by claimed user {user_address}"
                )
            user_address = user_address or signer

        # Early exit before any chain read; the authoritative check runs under the lock.
        _raise_for(policy_engine.validate(intent, user_address, self.ledger, self.policy))

        estimated_cost: Optional[Decimal] = None
        if self.policy.enforce_per_tx_cap:
            estimated_cost = await self.estimate_gas(intent)
        balance = await self.get_balance()
        if balance <= 0 or (estimated_cost is not None and balance < estimated_cost):
            logger.error("facilitator balance too low balance=%s estimate=%s", balance, estimated_cost)
            raise InsufficientFundsError(f"Facilitator balance {balance} is too low")

        reservation: Optional[TransactionRecord] = None
        async with self.ledger.atomic(user_address):
            _raise_for(
                policy_engine.validate(
                    intent,
                    user_address,
                    self.ledger,
                    self.policy,
                    estimated_cost=estimated_cost,
                )
            )
            self.ledger.track_nonce(intent.nonce)
            if user_address:
                reservation = self.ledger.reserve(user_address, intent)
        logger.info("policy validation passed nonce=%s user=%s", intent.nonce, user_address)

        try:
            tx_hash = await self.dispatcher.dispatch(intent)
        except (ExecutionFailedError, InsufficientFundsError):
            self._on_failure(intent, user_address, reservation, landed=False)
            raise
        except Exception as exc:
            self._on_failure(intent, user_address, reservation, landed=False)
            raise ExecutionFailedError(str(exc), landed=False) from exc
        logger.info("transaction sent hash=%s", tx_hash)

        # Past this point the transaction is on the wire and may still be mined.
        try:
            receipt = await self.chain.wait_for_receipt(tx_hash, self._confirmations, timeout)
        except ExecutionFailedError as exc:
            await self._on_unconfirmed(intent, user_address, reservation, tx_hash, estimated_cost)
            exc.landed = None
            exc.tx_hash = exc.tx_hash or tx_hash
            raise
        except Exception as exc:
            await self._on_unconfirmed(intent, user_address, reservation, tx_hash, estimated_cost)
            raise ExecutionFailedError(str(exc), landed=None, tx_hash=tx_hash) from exc

        if receipt.status == 0:
            # Reverted transactions still consumed facilitator gas.
            self.ledger.record_transaction(user_address, intent, receipt, reservation)
            self._on_failure(intent, user_address, None, landed=True)
            raise ExecutionFailedError("transaction reverted", landed=True, tx_hash=receipt.tx_hash)

        self.ledger.record_transaction(user_address, intent, receipt, reservation)
        logger.info(
            "transaction confirmed hash=%s block=%s gas_used=%s",
            receipt.tx_hash,
            receipt.block_number,
            receipt.gas_used,
        )
        return self._result(receipt, user_address)

    def _on_failure(
        self,
        intent: Intent,
        user_address: Optional[str],
        reservation: Optional[TransactionRecord],
        *,
        landed: bool,
    ) -> None:
        if user_address and reservation is not None:
            self.ledger.release(user_address, reservation)
        if not landed and not self.policy.burn_nonce_on_failure:
            self.ledger.release_nonce(intent.nonce)
        logger.error(
            "execution failed nonce=%s landed=%s nonce_burned=%s",
            intent.nonce,
            landed,
            landed or self.policy.burn_nonce_on_failure,
        )

    async def _on_unconfirmed(
        self,
        intent: Intent,
        user_address: Optional[str],
        reservation: Optional[TransactionRecord],
        tx_hash: str,
        estimated_cost: Optional[Decimal],
    ) -> None:
        """The nonce stays burned whatever the failure policy says."""
        if user_address and reservation is not None:
            if estimated_cost is None:
                estimated_cost = await self.estimate_gas(intent)
            self.ledger.mark_unconfirmed(user_address, reservation, tx_hash, estimated_cost)
        logger.error(
            "no receipt for broadcast transaction nonce=%s hash=%s; outcome unknown",
            intent.nonce,
            tx_hash,
        )

    def _result(self, receipt: Receipt, user_address: Optional[str]) -> ExecutionResult:
        return ExecutionResult(
            success=True,
            tx_hash=receipt.tx_hash,
            block_number=receipt.block_number,
            gas_used=receipt.gas_used,
            contract_address=receipt.contract_address,
            policy_info={
                "spendRemaining": self.get_remaining_spend(user_address),
                "txRemaining": self.get_remaining_tx(user_address),
            },
        )

    async def estimate_gas(self, intent: Intent) -> Decimal:
        """Baseline cost for display; falls back to a fixed value on RPC errors."""
        gas = GAS_BASELINES.get(intent.type, DEFAULT_GAS_BASELINE)
        try:
            gas_price = await self.chain.get_gas_price()
        except Exception as exc:
            logger.warning("gas estimation failed: %s", exc)
            return Decimal(FALLBACK_GAS_COST)
        return Decimal(Web3.from_wei(gas * gas_price, "ether"))

    async def get_balance(self) -> Decimal:
        return Decimal(Web3.from_wei(await self.chain.get_balance(), "ether"))

    def get_policy(self) -> Dict[str, Any]:
        return self.policy.to_dict()

    def get_remaining_spend(self, user_address: Optional[str]) -> Dict[str, Decimal]:
        return self.ledger.get_remaining_spend(user_address)

    def get_remaining_tx(self, user_address: Optional[str]) -> Dict[str, int]:
        return self.ledger.get_remaining_tx(user_address)
