"""Game settlement module for Agent Casino."""
from .solana_ops import SolanaChain, keypair_from_base58, LAMPORTS_PER_SOL
from .variants import VARIANTS, NON_ORACLE_GAME_TYPES, variant_for, anchor_discriminator
from .ledger import AgentStats, CasinoLedger, GameHandle, HouseState, parse_agent_stats, parse_house
from .oracle import OracleClient, SwitchboardGateway
from .randomness import RandomnessCoordinator, RetryPolicy, RevealProof
from .orchestrator import GameSettlementOrchestrator, is_retryable_settlement_failure

__all__ = [
    "SolanaChain",
    "keypair_from_base58",
    "LAMPORTS_PER_SOL",
    "VARIANTS",
    "NON_ORACLE_GAME_TYPES",
    "variant_for",
    "anchor_discriminator",
    "AgentStats",
    "CasinoLedger",
    "GameHandle",
    "HouseState",
    "parse_agent_stats",
    "parse_house",
    "OracleClient",
    "SwitchboardGateway",
    "RandomnessCoordinator",
    "RetryPolicy",
    "RevealProof",
    "GameSettlementOrchestrator",
    "is_retryable_settlement_failure",
]
