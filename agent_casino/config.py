"""
Agent Casino configuration.

Values come from the environment (a .env file is loaded by the API entry
point). Network constants for devnet and mainnet live here as well.
"""
import os
from dataclasses import dataclass, field
from typing import List, Optional

# =============================================================================
# NETWORK CONSTANTS
# =============================================================================

DEFAULT_PROGRAM_ID = "5bo6H5rnN9nn8fud6d1pJHmSZ8bpowtQj18SGXG93zvV"

USDC_MINT_DEVNET = "4zMMC9srt5Ri5X14GAgXhaHii3GnPAEERYPJgZJDncDU"
USDC_MINT_MAINNET = "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"
USDC_DECIMALS = 6

# CAIP-2 chain identifiers used in x402 challenges
NETWORK_IDS = {
    "devnet": "solana:EtWTRABZaYq6iMfeYKouRu166VU2xqa1",
    "mainnet-beta": "solana:5eykt4UsFv8P8NJdTREpY1vzqKqZKvdp",
}

USDC_MINTS = {
    "devnet": USDC_MINT_DEVNET,
    "mainnet-beta": USDC_MINT_MAINNET,
}

# Switchboard on-demand queues
ORACLE_QUEUES = {
    "devnet": "EYiAmGSdsQTuCw413V5BzaruWuCCSDgTPtBGvLkXHbe7",
    "mainnet-beta": "A43DyUGA7s8eXPxqEjJY6EBu1KKbNgfxF8h17VAHn13w",
}

DEFAULT_RPC_URLS = {
    "devnet": "https://api.devnet.solana.com",
    "mainnet-beta": "https://api.mainnet-beta.solana.com",
}

# =============================================================================
# SETTLEMENT TUNING
# =============================================================================

REVEAL_POLL_INTERVAL = 2.5      # seconds between reveal attempts
REVEAL_MAX_ATTEMPTS = 12
REVEAL_ATTEMPT_TIMEOUT = 10.0   # seconds, per attempt
SETTLE_ATTEMPTS = 2             # combined reveal+settle: first try + one retry

# Combined reveal+settle runs with elevated priority, a stale reveal can expire
SETTLE_COMPUTE_UNIT_PRICE = 75_000   # micro-lamports
SETTLE_COMPUTE_UNIT_LIMIT = 400_000

REPLAY_CACHE_SIZE = 10_000


def _get_float(name: str, default: float) -> float:
    value = os.getenv(name)
    return float(value) if value else default


def _get_int(name: str, default: int) -> int:
    value = os.getenv(name)
    return int(value) if value else default


@dataclass
class Settings:
    """Runtime settings for the API and the settlement engine."""

    network: str = "devnet"
    rpc_url: str = DEFAULT_RPC_URLS["devnet"]
    program_id: str = DEFAULT_PROGRAM_ID

    # Casino wallet plays the games on behalf of paying callers
    casino_wallet_secret: Optional[str] = None
    # x402 payments go here (defaults to the casino wallet address)
    pay_to_wallet: Optional[str] = None

    price_usdc: float = 0.01
    bet_sol: float = 0.001

    oracle_gateway_url: str = "https://crossbar.switchboard.xyz"
    oracle_queue: str = ORACLE_QUEUES["devnet"]

    reveal_poll_interval: float = REVEAL_POLL_INTERVAL
    reveal_max_attempts: int = REVEAL_MAX_ATTEMPTS
    reveal_attempt_timeout: float = REVEAL_ATTEMPT_TIMEOUT
    settle_attempts: int = SETTLE_ATTEMPTS

    replay_cache_size: int = REPLAY_CACHE_SIZE
    db_path: str = "agent_casino.db"
    log_level: str = "INFO"
    cors_origins: List[str] = field(default_factory=lambda: ["*"])
    port: int = 3402

    @property
    def network_id(self) -> str:
        return NETWORK_IDS[self.network]

    @property
    def usdc_mint(self) -> str:
        return USDC_MINTS[self.network]

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from environment variables."""
        network = os.getenv("NETWORK", "devnet")
        if network not in NETWORK_IDS:
            raise ValueError(f"Unsupported NETWORK: {network} (expected devnet or mainnet-beta)")

        return cls(
            network=network,
            rpc_url=os.getenv("RPC_URL") or DEFAULT_RPC_URLS[network],
            program_id=os.getenv("PROGRAM_ID", DEFAULT_PROGRAM_ID),
            casino_wallet_secret=os.getenv("CASINO_WALLET_SECRET"),
            pay_to_wallet=os.getenv("PAY_TO_WALLET"),
            price_usdc=_get_float("PRICE_USDC", 0.01),
            bet_sol=_get_float("BET_SOL", 0.001),
            oracle_gateway_url=os.getenv("ORACLE_GATEWAY_URL", "https://crossbar.switchboard.xyz"),
            oracle_queue=os.getenv("ORACLE_QUEUE") or ORACLE_QUEUES[network],
            reveal_poll_interval=_get_float("REVEAL_POLL_INTERVAL", REVEAL_POLL_INTERVAL),
            reveal_max_attempts=_get_int("REVEAL_MAX_ATTEMPTS", REVEAL_MAX_ATTEMPTS),
            reveal_attempt_timeout=_get_float("REVEAL_ATTEMPT_TIMEOUT", REVEAL_ATTEMPT_TIMEOUT),
            settle_attempts=_get_int("SETTLE_ATTEMPTS", SETTLE_ATTEMPTS),
            replay_cache_size=_get_int("REPLAY_CACHE_SIZE", REPLAY_CACHE_SIZE),
            db_path=os.getenv("DB_PATH", "agent_casino.db"),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            cors_origins=os.getenv("CORS_ORIGINS", "*").split(","),
            port=_get_int("PORT", 3402),
        )
