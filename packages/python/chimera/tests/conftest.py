import asyncio
from typing import Any, Dict, List, Optional, Sequence

import pytest
from eth_account import Account

from chimera_facilitator.chain import Receipt
from chimera_facilitator.config import PolicyConfig
from chimera_facilitator.constants import DOMAIN_NAME, DOMAIN_VERSION
from chimera_facilitator.facilitator import Facilitator
from chimera_facilitator.intents import Intent
from chimera_facilitator.signatures import sign_intent

NOW = 1_700_000_000.0
CHAIN_ID = 97
USER_KEY = "0x" + "1" * 64
OTHER_KEY = "0x" + "2" * 64
FACILITATOR_ADDRESS = "0x" + "ab" * 20
RECIPIENT = "0x" + "cd" * 20
GAS_PRICE = 5 * 10**9


class FakeClock:
    def __init__(self, now: float = NOW) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeChainClient:
    """In-memory chain that records every call."""

    def __init__(
        self,
        *,
        balance: int = 10**18,
        gas_price: int = GAS_PRICE,
        gas_used: int = 21_000,
        receipt_status: int = 1,
    ) -> None:
        self.balance = balance
        self.gas_price = gas_price
        self.gas_used = gas_used
        self.receipt_status = receipt_status
        # Output per unit of input for router quotes.
        self.quote_rate = 2
        self.send_error: Optional[Exception] = None
        self.wait_error: Optional[Exception] = None
        self.calls: List[tuple] = []
        self._counter = 0

    @property
    def address(self) -> str:
        return FACILITATOR_ADDRESS

    def _next_hash(self) -> str:
        self._counter += 1
        return "0x" + f"{self._counter:064x}"

    async def _sent(self, *call: Any) -> str:
        self.calls.append(call)
        await asyncio.sleep(0)
        if self.send_error is not None:
            raise self.send_error
        return self._next_hash()

    async def get_balance(self, address: Optional[str] = None) -> int:
        self.calls.append(("get_balance",))
        await asyncio.sleep(0)
        return self.balance

    async def get_gas_price(self) -> int:
        self.calls.append(("get_gas_price",))
        return self.gas_price

    async def get_block_number(self) -> int:
        return 100

    async def estimate_gas(self, transaction: Dict[str, Any]) -> int:
        return 21_000

    async def call(self, address, abi, function, args) -> Any:
        self.calls.append(("call", address, function, list(args)))
        amount_in, path = args
        return [amount_in] * (len(path) - 1) + [amount_in * self.quote_rate]

    async def send_value(self, to: str, value: int) -> str:
        return await self._sent("send_value", to, value)

    async def deploy(self, abi: List[Dict[str, Any]], bytecode: str, args: Sequence[Any]) -> str:
        return await self._sent("deploy", bytecode, list(args))

    async def transact(self, address, abi, function, args, value=0) -> str:
        return await self._sent("transact", address, function, list(args), value)

    async def wait_for_receipt(self, tx_hash, confirmations=1, timeout=None) -> Receipt:
        self.calls.append(("wait_for_receipt", tx_hash))
        await asyncio.sleep(0)
        if self.wait_error is not None:
            raise self.wait_error
        return Receipt(
            tx_hash=tx_hash,
            block_number=100,
            gas_used=self.gas_used,
            effective_gas_price=self.gas_price,
            status=self.receipt_status,
        )

    def sends(self) -> List[tuple]:
        return [c for c in self.calls if c[0] in ("send_value", "deploy", "transact")]


def user_address(key: str = USER_KEY) -> str:
    return Account.from_key(key).address


def domain() -> Dict[str, Any]:
    return {
        "name": DOMAIN_NAME,
        "version": DOMAIN_VERSION,
        "chainId": CHAIN_ID,
        "verifyingContract": FACILITATOR_ADDRESS,
    }


def make_intent(intent_type: str = "transfer", nonce: int = 1, data=None, deadline=None) -> Intent:
    if data is None:
        data = {"to": RECIPIENT, "amount": "0.01"}
    return Intent(
        type=intent_type,
        nonce=nonce,
        deadline=int(NOW + 3600) if deadline is None else deadline,
        data=data,
    )


def signed(intent: Intent, key: str = USER_KEY) -> str:
    return sign_intent(intent, key, domain())


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def chain():
    return FakeChainClient()


@pytest.fixture
def policy():
    return PolicyConfig()


@pytest.fixture
def facilitator(chain, policy, clock):
    return Facilitator(chain, policy, chain_id=CHAIN_ID, clock=clock)
