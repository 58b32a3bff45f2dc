import pytest

from chimera_facilitator.constants import (
    DEFAULT_ASSETS,
    DEFAULT_RPC_URLS,
    ROUTER_SWAP_ABI,
    SUPPORTED_CHAIN_IDS,
    SWAP_FUNCTIONS,
    UnsupportedChainError,
    get_default_assets,
)


def test_supported_chains_match_expected():
    assert SUPPORTED_CHAIN_IDS == [56, 97]


def test_default_rpc_urls_cover_supported_chains():
    assert set(DEFAULT_RPC_URLS) == set(SUPPORTED_CHAIN_IDS)


def test_testnet_assets_match_expected():
    assets = get_default_assets(97)
    assert assets["router"] == "0xD99D1c33F9fC3444f8101754aBC46c52416550D1"
    assert assets["wrapped_native"] == "0xae13d989daC2f0dEbFf460aC112a837C89BAa7cd"
    assert set(DEFAULT_ASSETS) == {56, 97}


def test_swap_functions_come_from_router_abi():
    assert SWAP_FUNCTIONS == (
        "swapExactETHForTokens",
        "swapExactTokensForETH",
        "swapExactTokensForTokens",
    )
    assert ROUTER_SWAP_ABI[0]["name"] == "getAmountsOut"
    assert "getAmountsOut" not in SWAP_FUNCTIONS


def test_get_default_assets_raises_on_unsupported_chain():
    with pytest.raises(UnsupportedChainError):
        get_default_assets(1)
