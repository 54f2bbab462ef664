import pytest
from solders.keypair import Keypair

from agent_casino.config import Settings
from agent_casino.database.models import CoinSide
from agent_casino.utils import (
    clamp_dice_target,
    clamp_multiplier,
    format_sol,
    format_tx_link,
    is_valid_solana_address,
    parse_coin_choice,
)


def test_solana_address_validation():
    assert is_valid_solana_address(str(Keypair().pubkey())) == (True, "")
    assert not is_valid_solana_address("")[0]
    assert not is_valid_solana_address("0" * 44)[0]
    assert not is_valid_solana_address("abc")[0]


@pytest.mark.parametrize("raw,expected", [
    (None, CoinSide.HEADS), ("tails", CoinSide.TAILS), ("Tails", CoinSide.TAILS), ("edge", CoinSide.HEADS),
])
def test_parse_coin_choice(raw, expected):
    assert parse_coin_choice(raw) == expected


@pytest.mark.parametrize("raw,expected", [
    (None, 3), ("0", 3), ("-4", 1), ("2", 2), ("77", 5), ("3.7", 3), ("4abc", 4), (" 2", 2), ("abc", 3),
])
def test_clamp_dice_target(raw, expected):
    assert clamp_dice_target(raw) == expected


@pytest.mark.parametrize("raw,expected", [
    (None, 2.0), ("nan", 2.0), ("0.5", 1.01), ("7.25", 7.25), ("1e9", 100.0), ("3.5x", 3.5), ("x3", 2.0),
])
def test_clamp_multiplier(raw, expected):
    assert clamp_multiplier(raw, 2.0) == expected


def test_formatting():
    assert format_sol(0.001) == "0.001"
    assert format_sol(12.5) == "12.5000"
    assert format_tx_link("abc", "devnet") == "https://solscan.io/tx/abc?cluster=devnet"
    assert format_tx_link("abc", "mainnet-beta") == "https://solscan.io/tx/abc"


def test_settings_from_env(monkeypatch):
    monkeypatch.setenv("NETWORK", "mainnet-beta")
    monkeypatch.setenv("PRICE_USDC", "0.05")
    monkeypatch.setenv("REVEAL_MAX_ATTEMPTS", "15")
    monkeypatch.setenv("CORS_ORIGINS", "https://a.example,https://b.example")
    monkeypatch.delenv("RPC_URL", raising=False)
    monkeypatch.delenv("ORACLE_QUEUE", raising=False)

    settings = Settings.from_env()

    assert settings.rpc_url == "https://api.mainnet-beta.solana.com"
    assert settings.usdc_mint == "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"
    assert settings.price_usdc == 0.05
    assert settings.reveal_max_attempts == 15
    assert settings.cors_origins == ["https://a.example", "https://b.example"]


def test_settings_reject_unknown_network(monkeypatch):
    monkeypatch.setenv("NETWORK", "testnet")

    with pytest.raises(ValueError):
        Settings.from_env()
