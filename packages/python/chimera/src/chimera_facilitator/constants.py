"""Shared constants for the Chimera facilitator."""

from __future__ import annotations

from typing import Dict, List, TypedDict


DOMAIN_NAME = "Chimera"
DOMAIN_VERSION = "1"

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

SUPPORTED_CHAIN_IDS: List[int] = [56, 97]

DEFAULT_RPC_URLS: Dict[int, str] = {
    56: "https://bsc-dataseed.binance.org",
    97: "https://data-seed-prebsc-1-s1.binance.org:8545",
}


class ChainAssets(TypedDict):
    router: str
    wrapped_native: str
    payment_token: str


DEFAULT_ASSETS: Dict[int, ChainAssets] = {
    56: {
        "router": "0x10ED43C718714eb63d5aA57B78B54704E256024E",
        "wrapped_native": "0xbb4CdB9CBd36B01bD1cBaEBF2De08d9173bc095c",
        "payment_token": "0x55d398326f99059fF775485246999027B3197955",
    },
    97: {
        "router": "0xD99D1c33F9fC3444f8101754aBC46c52416550D1",
        "wrapped_native": "0xae13d989daC2f0dEbFf460aC112a837C89BAa7cd",
        "payment_token": "0x337610d27c682E347C9cD60BD4b3b107C9d34dDd",
    },
}

# Fixed gas baselines per intent type, display only.
GAS_BASELINES: Dict[str, int] = {
    "deploy_contract": 2_000_000,
    "transfer": 21_000,
    "call_contract": 100_000,
    "swap": 200_000,
}
DEFAULT_GAS_BASELINE = 100_000
FALLBACK_GAS_COST = "0.001"

MAX_HISTORY_PER_USER = 1000

MINUTE = 60
HOUR = 60 * MINUTE
DAY = 24 * HOUR

ERC20_TRANSFER_ABI = [
    {
        "type": "function",
        "name": "transfer",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "to", "type": "address"},
            {"name": "amount", "type": "uint256"},
        ],
        "outputs": [{"name": "", "type": "bool"}],
    }
]

_ADDRESS_ARRAY = {"name": "path", "type": "address[]"}

ROUTER_SWAP_ABI = [
    {
        "type": "function",
        "name": "getAmountsOut",
        "stateMutability": "view",
        "inputs": [{"name": "amountIn", "type": "uint256"}, _ADDRESS_ARRAY],
        "outputs": [{"name": "amounts", "type": "uint256[]"}],
    },
    {
        "type": "function",
        "name": "swapExactETHForTokens",
        "stateMutability": "payable",
        "inputs": [
            {"name": "amountOutMin", "type": "uint256"},
            _ADDRESS_ARRAY,
            {"name": "to", "type": "address"},
            {"name": "deadline", "type": "uint256"},
        ],
        "outputs": [{"name": "amounts", "type": "uint256[]"}],
    },
    {
        "type": "function",
        "name": "swapExactTokensForETH",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "amountIn", "type": "uint256"},
            {"name": "amountOutMin", "type": "uint256"},
            _ADDRESS_ARRAY,
            {"name": "to", "type": "address"},
            {"name": "deadline", "type": "uint256"},
        ],
        "outputs": [{"name": "amounts", "type": "uint256[]"}],
    },
    {
        "type": "function",
        "name": "swapExactTokensForTokens",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "amountIn", "type": "uint256"},
            {"name": "amountOutMin", "type": "uint256"},
            _ADDRESS_ARRAY,
            {"name": "to", "type": "address"},
            {"name": "deadline", "type": "uint256"},
        ],
        "outputs": [{"name": "amounts", "type": "uint256[]"}],
    },
]

SWAP_FUNCTIONS = tuple(
    entry["name"] for entry in ROUTER_SWAP_ABI if entry["stateMutability"] != "view"
)

# Percent, applied to the router quote when a swap gives no amountOutMin.
DEFAULT_SLIPPAGE_TOLERANCE = "0.5"


class UnsupportedChainError(ValueError):
    """Raised when a chain id has no configured defaults."""


def get_default_assets(chain_id: int) -> ChainAssets:
    try:
        return DEFAULT_ASSETS[chain_id]
    except KeyError as exc:
        raise UnsupportedChainError(f"No default assets configured for chain {chain_id}") from exc
