"""Routes validated intents to chain-mutating actions."""

from __future__ import annotations

import logging
import time
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, List, Mapping, Optional

from web3 import Web3

from .chain import ChainClient
from .constants import (
    DEFAULT_SLIPPAGE_TOLERANCE,
    ERC20_TRANSFER_ABI,
    ROUTER_SWAP_ABI,
    SWAP_FUNCTIONS,
    ZERO_ADDRESS,
)
from .errors import ExecutionFailedError
from .intents import Intent, IntentType

logger = logging.getLogger(__name__)

SWAP_DEADLINE_SECONDS = 20 * 60


def is_native(token: Any) -> bool:
    if token is None:
        return True
    if not isinstance(token, str):
        return False
    value = token.strip().lower()
    return value in ("", "native", ZERO_ADDRESS)


def _require(data: Mapping[str, Any], key: str) -> Any:
    value = data.get(key)
    if value is None or value == "":
        raise ExecutionFailedError(f"{key} is required", landed=False)
    return value


def _to_int(value: Any, *, field: str) -> int:
    try:
        if isinstance(value, str) and value.lower().startswith("0x"):
            return int(value, 16)
        return int(value)
    except (TypeError, ValueError) as err:
        raise ExecutionFailedError(f"{field} must be an integer amount", landed=False) from err


def _ether_to_wei(value: Any, *, field: str) -> int:
    if value in (None, "", 0, "0"):
        return 0
    try:
        return int(Web3.to_wei(Decimal(str(value)), "ether"))
    except (InvalidOperation, ValueError) as err:
        raise ExecutionFailedError(f"{field} must be a decimal amount", landed=False) from err


class ExecutionDispatcher:
    """Turns an intent payload into a broadcast transaction hash."""

    def __init__(
        self,
        chain: ChainClient,
        *,
        router_address: Optional[str] = None,
        wrapped_native: Optional[str] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._chain = chain
        self._router = router_address
        self._wrapped_native = wrapped_native
        self._clock = clock
        self._handlers: Dict[str, Callable[[Dict[str, Any]], Any]] = {
            IntentType.DEPLOY_CONTRACT.value: self.deploy_contract,
            IntentType.TRANSFER.value: self.transfer,
            IntentType.CALL_CONTRACT.value: self.call_contract,
            IntentType.SWAP.value: self.execute_swap,
        }

    async def dispatch(self, intent: Intent) -> str:
        handler = self._handlers.get(intent.type)
        if handler is None:
            raise ExecutionFailedError(f"Unknown intent type: {intent.type}", landed=False)
        return await handler(intent.data)

    async def deploy_contract(self, data: Dict[str, Any]) -> str:
        bytecode = data.get("bytecode")
        if not bytecode:
            raise ExecutionFailedError("Contract bytecode is required", landed=False)
        logger.info("deploying contract")
        return await self._chain.deploy(
            data.get("abi") or [], bytecode, list(data.get("constructorArgs") or [])
        )

    async def transfer(self, data: Dict[str, Any]) -> str:
        to = _require(data, "to")
        amount = _require(data, "amount")
        token = data.get("token")
        if is_native(token):
            return await self._chain.send_value(to, _ether_to_wei(amount, field="amount"))
        return await self._chain.transact(
            token, ERC20_TRANSFER_ABI, "transfer", [Web3.to_checksum_address(to), _to_int(amount, field="amount")]
        )

    async def call_contract(self, data: Dict[str, Any]) -> str:
        contract = _require(data, "contract")
        method = _require(data, "method")
        return await self._chain.transact(
            contract,
            data.get("abi") or [],
            method,
            list(data.get("args") or []),
            value=_ether_to_wei(data.get("value"), field="value"),
        )

    def build_path(self, token_in: Any, token_out: Any) -> List[str]:
        if (is_native(token_in) or is_native(token_out)) and not self._wrapped_native:
            raise ExecutionFailedError("wrapped native token address is not configured", landed=False)
        wrapped = self._wrapped_native
        in_addr = wrapped if is_native(token_in) else str(token_in)
        out_addr = wrapped if is_native(token_out) else str(token_out)
        if not wrapped or wrapped.lower() in (in_addr.lower(), out_addr.lower()):
            return [in_addr, out_addr]
        # Token to token routes through the wrapped native pool.
        return [in_addr, wrapped, out_addr]

    async def quote(self, router: str, amount_in: int, path: List[str]) -> int:
        """Expected output of ``amount_in`` along ``path`` from the router."""
        amounts = await self._chain.call(router, ROUTER_SWAP_ABI, "getAmountsOut", [amount_in, path])
        if not amounts or int(amounts[-1]) <= 0:
            raise ExecutionFailedError("router returned no output for swap path", landed=False)
        return int(amounts[-1])

    async def min_amount_out(
        self, router: str, amount_in: int, path: List[str], tolerance: Any = None
    ) -> int:
        try:
            slippage = Decimal(str(tolerance if tolerance is not None else DEFAULT_SLIPPAGE_TOLERANCE))
        except InvalidOperation as err:
            raise ExecutionFailedError("slippageTolerance must be a percentage", landed=False) from err
        if not slippage.is_finite() or slippage < 0 or slippage >= 100:
            raise ExecutionFailedError("slippageTolerance must be between 0 and 100", landed=False)
        expected = await self.quote(router, amount_in, path)
        minimum = int(Decimal(expected) * (100 - slippage) / 100)
        logger.info("swap quote expected=%s min=%s slippage=%s%%", expected, minimum, slippage)
        return minimum

    async def select_swap(
        self, data: Dict[str, Any], router: Optional[str] = None
    ) -> tuple[str, List[Any], int]:
        """Return ``(function, args, value)`` for a router swap.

        Without an explicit ``amountOutMin`` the minimum comes from a
        ``getAmountsOut`` quote less ``slippageTolerance`` percent.
        """

        function = data.get("functionName")
        if function:
            if function not in SWAP_FUNCTIONS:
                raise ExecutionFailedError(f"Unsupported router function: {function}", landed=False)
            return function, list(data.get("args") or []), _to_int(data.get("value") or 0, field="value")

        token_in = data.get("tokenIn")
        token_out = data.get("tokenOut")
        if is_native(token_in) and is_native(token_out):
            raise ExecutionFailedError("swap requires at least one token", landed=False)

        amount_in = _to_int(_require(data, "amountIn"), field="amountIn")
        recipient = data.get("to") or data.get("recipient")
        if not recipient:
            raise ExecutionFailedError("swap recipient is required", landed=False)
        path = list(data.get("path") or self.build_path(token_in, token_out))
        path = [Web3.to_checksum_address(p) for p in path]
        recipient = Web3.to_checksum_address(recipient)
        deadline = int(data.get("deadline") or int(self._clock()) + SWAP_DEADLINE_SECONDS)

        if data.get("amountOutMin") not in (None, ""):
            amount_out_min = _to_int(data["amountOutMin"], field="amountOutMin")
        else:
            router = router or data.get("router") or self._router
            if not router:
                raise ExecutionFailedError("swap router address is required", landed=False)
            amount_out_min = await self.min_amount_out(
                router, amount_in, path, data.get("slippageTolerance")
            )

        if is_native(token_in):
            return "swapExactETHForTokens", [amount_out_min, path, recipient, deadline], amount_in
        if is_native(token_out):
            return "swapExactTokensForETH", [amount_in, amount_out_min, path, recipient, deadline], 0
        return "swapExactTokensForTokens", [amount_in, amount_out_min, path, recipient, deadline], 0

    async def execute_swap(self, data: Dict[str, Any]) -> str:
        router = data.get("router") or self._router
        if not router:
            raise ExecutionFailedError("swap router address is required", landed=False)
        function, args, value = await self.select_swap(data, router)
        logger.info("executing swap function=%s value=%s", function, value)
        return await self._chain.transact(router, ROUTER_SWAP_ABI, function, args, value=value)
