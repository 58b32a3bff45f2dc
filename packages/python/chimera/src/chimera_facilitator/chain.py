"""Chain access used by the dispatcher.

``ChainClient`` is the capability the facilitator depends on; ``Web3ChainClient``
implements it with ``AsyncWeb3`` and a local ``eth_account`` signer.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol, Sequence

from eth_account import Account
from web3 import AsyncWeb3
from web3.exceptions import TimeExhausted, Web3Exception

from .errors import ExecutionFailedError, InsufficientFundsError

logger = logging.getLogger(__name__)


@dataclass
class Receipt:
    tx_hash: str
    block_number: int
    gas_used: int
    effective_gas_price: int
    status: int = 1
    contract_address: Optional[str] = None

    @classmethod
    def from_web3(cls, receipt: Any) -> "Receipt":
        contract_address = receipt.get("contractAddress")
        return cls(
            tx_hash=AsyncWeb3.to_hex(receipt["transactionHash"]),
            block_number=int(receipt["blockNumber"]),
            gas_used=int(receipt["gasUsed"]),
            effective_gas_price=int(receipt.get("effectiveGasPrice") or 0),
            status=int(receipt.get("status", 1)),
            contract_address=str(contract_address) if contract_address else None,
        )


class ChainClient(Protocol):
    """Read state, call views, estimate, broadcast and confirm transactions."""

    @property
    def address(self) -> str:
        ...

    async def get_balance(self, address: Optional[str] = None) -> int:
        ...

    async def get_gas_price(self) -> int:
        ...

    async def get_block_number(self) -> int:
        ...

    async def estimate_gas(self, transaction: Dict[str, Any]) -> int:
        ...

    async def call(
        self, address: str, abi: List[Dict[str, Any]], function: str, args: Sequence[Any]
    ) -> Any:
        ...

    async def send_value(self, to: str, value: int) -> str:
        ...

    async def deploy(self, abi: List[Dict[str, Any]], bytecode: str, args: Sequence[Any]) -> str:
        ...

    async def transact(
        self,
        address: str,
        abi: List[Dict[str, Any]],
        function: str,
        args: Sequence[Any],
        value: int = 0,
    ) -> str:
        ...

    async def wait_for_receipt(
        self, tx_hash: str, confirmations: int = 1, timeout: Optional[float] = None
    ) -> Receipt:
        ...


def _is_insufficient_funds(exc: BaseException) -> bool:
    return "insufficient funds" in str(exc).lower()


class Web3ChainClient:
    """Signs with the facilitator key and broadcasts through an HTTP RPC."""

    def __init__(
        self,
        private_key: str,
        rpc_url: str,
        chain_id: int,
        *,
        request_timeout: int = 60,
        poll_interval: float = 2.0,
        web3: Optional[AsyncWeb3] = None,
    ) -> None:
        if not private_key:
            raise ValueError("Facilitator private key is required")
        self._account = Account.from_key(private_key)
        self._chain_id = chain_id
        self._poll_interval = poll_interval
        self._w3 = web3 or AsyncWeb3(
            AsyncWeb3.AsyncHTTPProvider(rpc_url, request_kwargs={"timeout": request_timeout})
        )
        # Serialises account-nonce assignment for concurrent sends.
        self._send_lock = asyncio.Lock()
        logger.info("chain client initialised address=%s chain=%s", self.address, chain_id)

    @property
    def address(self) -> str:
        return self._account.address

    async def get_balance(self, address: Optional[str] = None) -> int:
        target = AsyncWeb3.to_checksum_address(address or self.address)
        return int(await self._w3.eth.get_balance(target))

    async def get_gas_price(self) -> int:
        return int(await self._w3.eth.gas_price)

    async def get_block_number(self) -> int:
        return int(await self._w3.eth.block_number)

    async def estimate_gas(self, transaction: Dict[str, Any]) -> int:
        tx = {"from": self.address, **transaction}
        return int(await self._w3.eth.estimate_gas(tx))

    async def call(
        self, address: str, abi: List[Dict[str, Any]], function: str, args: Sequence[Any]
    ) -> Any:
        contract = self._w3.eth.contract(address=AsyncWeb3.to_checksum_address(address), abi=abi)
        try:
            return await contract.functions[function](*args).call()
        except (Web3Exception, ValueError) as exc:
            raise ExecutionFailedError(f"{function} call failed: {exc}", landed=False) from exc

    async def _base_tx(self, value: int = 0) -> Dict[str, Any]:
        return {
            "from": self.address,
            "chainId": self._chain_id,
            "nonce": await self._w3.eth.get_transaction_count(self.address, "pending"),
            "gasPrice": await self._w3.eth.gas_price,
            "value": int(value),
        }

    async def _sign_and_send(self, tx: Dict[str, Any]) -> str:
        signed = self._account.sign_transaction(tx)
        tx_hash = await self._w3.eth.send_raw_transaction(signed.raw_transaction)
        return AsyncWeb3.to_hex(tx_hash)

    async def _submit(self, build) -> str:
        async with self._send_lock:
            try:
                tx = await build()
                tx_hash = await self._sign_and_send(tx)
            except (Web3Exception, ValueError) as exc:
                if _is_insufficient_funds(exc):
                    raise InsufficientFundsError(
                        f"facilitator {self.address} cannot cover transaction: {exc}"
                    ) from exc
                raise ExecutionFailedError(str(exc), landed=False) from exc
        logger.info("transaction broadcast hash=%s", tx_hash)
        return tx_hash

    async def send_value(self, to: str, value: int) -> str:
        async def build() -> Dict[str, Any]:
            tx = await self._base_tx(value)
            tx["to"] = AsyncWeb3.to_checksum_address(to)
            tx["gas"] = await self._w3.eth.estimate_gas(
                {"from": self.address, "to": tx["to"], "value": tx["value"]}
            )
            return tx

        return await self._submit(build)

    async def deploy(self, abi: List[Dict[str, Any]], bytecode: str, args: Sequence[Any]) -> str:
        async def build() -> Dict[str, Any]:
            factory = self._w3.eth.contract(abi=abi, bytecode=bytecode)
            return await factory.constructor(*args).build_transaction(await self._base_tx())

        return await self._submit(build)

    async def transact(
        self,
        address: str,
        abi: List[Dict[str, Any]],
        function: str,
        args: Sequence[Any],
        value: int = 0,
    ) -> str:
        async def build() -> Dict[str, Any]:
            contract = self._w3.eth.contract(address=AsyncWeb3.to_checksum_address(address), abi=abi)
            call = contract.functions[function](*args)
            return await call.build_transaction(await self._base_tx(value))

        return await self._submit(build)

    async def wait_for_receipt(
        self, tx_hash: str, confirmations: int = 1, timeout: Optional[float] = None
    ) -> Receipt:
        logger.info("waiting for %s confirmation(s) of %s", confirmations, tx_hash)
        try:
            raw = await self._w3.eth.wait_for_transaction_receipt(
                tx_hash, timeout=timeout if timeout is not None else 120, poll_latency=self._poll_interval
            )
        except TimeExhausted as exc:
            raise ExecutionFailedError(
                f"no receipt for {tx_hash} before timeout", landed=None, tx_hash=tx_hash
            ) from exc
        receipt = Receipt.from_web3(raw)
        while confirmations > 1:
            head = await self.get_block_number()
            if head - receipt.block_number + 1 >= confirmations:
                break
            await asyncio.sleep(self._poll_interval)
        logger.info("transaction %s confirmed in block %s", tx_hash, receipt.block_number)
        return receipt
