"""
FastAPI web backend for Agent Casino.

Exposes oracle-settled casino games as HTTP endpoints gated by x402 USDC
payments, so any agent that speaks x402 can play without the client SDK.

Free endpoints:
    GET  /v1/health
    GET  /v1/stats
    GET  /v1/agents/{address}/stats
    GET  /v1/agents/{address}/games?limit=10
    GET  /v1/attestations/{address}
    POST /v1/attestations/verify

Paid endpoints (x402 gated):
    GET /v1/games/coinflip?choice=heads|tails
    GET /v1/games/diceroll?target=1-5
    GET /v1/games/limbo?multiplier=1.01-100
    GET /v1/games/crash?multiplier=1.01-100
"""
import logging
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from solders.pubkey import Pubkey

from agent_casino.attestation import AttestationService
from agent_casino.config import Settings
from agent_casino.database import Database, GameStatus, GameType, SettledGame
from agent_casino.errors import (
    CasinoError,
    OracleUnavailable,
    RecordLayoutError,
    SettlementTransactionFailed,
)
from agent_casino.game import (
    CasinoLedger,
    GameSettlementOrchestrator,
    LAMPORTS_PER_SOL,
    RandomnessCoordinator,
    RetryPolicy,
    SolanaChain,
    SwitchboardGateway,
    keypair_from_base58,
)
from agent_casino.payments import (
    PAYMENT_HEADER,
    ChallengeResponse,
    PaymentGateway,
    PaymentTerms,
    ReplayCache,
)
from agent_casino.security import AuditEventType, AuditLogger, AuditSeverity
from agent_casino.utils import (
    DEFAULT_CRASH_MULTIPLIER,
    DEFAULT_LIMBO_MULTIPLIER,
    clamp_dice_target,
    clamp_multiplier,
    format_sol,
    format_tx_link,
    format_usdc,
    is_valid_solana_address,
    parse_coin_choice,
)

logger = logging.getLogger(__name__)

GAMES = ["coinflip", "diceroll", "limbo", "crash"]
MAX_HISTORY_LIMIT = 100


@dataclass
class CasinoServices:
    """Everything a request handler needs, wired once per app."""
    settings: Settings
    chain: SolanaChain
    ledger: CasinoLedger
    orchestrator: GameSettlementOrchestrator
    gateway: PaymentGateway
    attestations: AttestationService
    db: Database
    audit: AuditLogger
    pay_to: Pubkey


def build_services(settings: Settings) -> CasinoServices:
    """Wire the production services from settings."""
    if not settings.casino_wallet_secret:
        raise ValueError("CASINO_WALLET_SECRET is required")

    wallet = keypair_from_base58(settings.casino_wallet_secret)
    chain = SolanaChain(settings.rpc_url, wallet)
    program_id = Pubkey.from_string(settings.program_id)
    ledger = CasinoLedger(chain, program_id)

    coordinator = RandomnessCoordinator(
        chain,
        SwitchboardGateway(settings.oracle_gateway_url),
        RetryPolicy.from_settings(settings),
    )
    orchestrator = GameSettlementOrchestrator(
        chain,
        ledger,
        coordinator,
        Pubkey.from_string(settings.oracle_queue),
        settle_attempts=settings.settle_attempts,
    )

    audit = AuditLogger(settings.db_path)
    pay_to = Pubkey.from_string(settings.pay_to_wallet) if settings.pay_to_wallet else wallet.pubkey()

    return CasinoServices(
        settings=settings,
        chain=chain,
        ledger=ledger,
        orchestrator=orchestrator,
        gateway=PaymentGateway(chain, ReplayCache(settings.replay_cache_size), audit),
        attestations=AttestationService(settings.network, settings.program_id),
        db=Database(settings.db_path),
        audit=audit,
        pay_to=pay_to,
    )


# ===== MODELS =====

class VerifyAttestationRequest(BaseModel):
    attestation: dict


class VerifyAttestationResponse(BaseModel):
    valid: bool


# ===== APP =====

def create_app(settings: Optional[Settings] = None, services: Optional[CasinoServices] = None) -> FastAPI:
    """Build the API.

    Args:
        settings: Defaults to Settings.from_env()
        services: Pre-wired services (tests); built from settings otherwise
    """
    if services is None:
        services = build_services(settings or Settings.from_env())
    settings = services.settings

    bet_lamports = round(settings.bet_sol * LAMPORTS_PER_SOL)
    wallet_address = str(services.chain.address)

    app = FastAPI(title="Agent Casino x402 API", version="1.0.0")
    app.state.services = services

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=settings.cors_origins != ["*"],
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
        expose_headers=["*"],
    )

    # ===== ERROR HANDLING =====

    @app.exception_handler(CasinoError)
    async def casino_error_handler(request: Request, exc: CasinoError):
        logger.error(f"[API] {request.method} {request.url.path} -> {exc.code}: {exc}", exc_info=exc)
        return JSONResponse(status_code=exc.status_code, content={"error": exc.code})

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        logger.warning(f"[API] {request.method} {request.url.path} invalid request: {exc.errors()}")
        return JSONResponse(status_code=400, content={"error": "invalid_request"})

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.error(f"[API] {request.method} {request.url.path} failed: {exc}", exc_info=exc)
        return JSONResponse(status_code=500, content={"error": "internal_error"})

    def payment_terms(game: str) -> PaymentTerms:
        return PaymentTerms.for_network(
            settings.network,
            services.pay_to,
            settings.price_usdc,
            f"Play {game} at Agent Casino ({format_sol(settings.bet_sol)} SOL bet)",
        )

    def client_ip(request: Request) -> Optional[str]:
        return request.client.host if request.client else None

    async def play_paid(request: Request, game: str, game_type: GameType, choice_param, details: dict):
        """Gate on payment, play one game, persist and attest the result."""
        resource = request.url.path
        if request.url.query:
            resource += f"?{request.url.query}"

        outcome = await services.gateway.gate(
            resource,
            request.headers.get(PAYMENT_HEADER),
            payment_terms(game),
            ip_address=client_ip(request),
        )
        if isinstance(outcome, ChallengeResponse):
            return JSONResponse(status_code=outcome.status_code, content=outcome.body)

        payment_tx = outcome.proof.signature
        try:
            settled = await services.orchestrator.play(game_type, bet_lamports, choice_param)
        except OracleUnavailable as e:
            services.audit.log(
                event_type=AuditEventType.ORACLE_UNAVAILABLE,
                severity=AuditSeverity.WARNING,
                wallet=outcome.proof.payer,
                ip_address=client_ip(request),
                details=f"game={game} attempts={e.attempts} payment={payment_tx}",
            )
            raise
        except SettlementTransactionFailed as e:
            services.audit.log(
                event_type=AuditEventType.SETTLEMENT_FAILED,
                severity=AuditSeverity.CRITICAL,
                wallet=outcome.proof.payer,
                ip_address=client_ip(request),
                details=f"game={game} retryable={e.retryable} payment={payment_tx}",
            )
            raise

        attestation = record_settled_game(settled, payment_tx)
        services.audit.log(
            event_type=AuditEventType.GAME_SETTLED,
            severity=AuditSeverity.INFO,
            wallet=outcome.proof.payer,
            ip_address=client_ip(request),
            details=f"game={game} index={settled.game_index} won={settled.won} tx={settled.tx_signature}",
        )

        return {
            "game": game,
            **details,
            "won": settled.won,
            "result": settled.result,
            "payout": settled.payout / LAMPORTS_PER_SOL,
            "gameIndex": settled.game_index,
            "gameAddress": str(settled.address),
            "txSignature": settled.tx_signature,
            "explorer": format_tx_link(settled.tx_signature, settings.network),
            "attestationHash": attestation["attestation_hash"],
            "paymentTx": payment_tx,
        }

    def record_settled_game(game: SettledGame, payment_tx: Optional[str] = None) -> dict:
        address = str(game.address)
        services.db.save_game(game, payment_tx=payment_tx)
        attestation = services.attestations.format(game)
        if not services.db.save_attestation(address, attestation):
            attestation = services.db.get_attestation(address)
        return attestation

    # ===== FREE ENDPOINTS =====

    @app.get("/v1/health")
    async def health():
        return {
            "status": "ok",
            "wallet": wallet_address,
            "network": settings.network,
            "betSol": settings.bet_sol,
            "priceUSDC": settings.price_usdc,
            "x402": True,
            "games": GAMES,
        }

    @app.get("/v1/stats")
    async def stats():
        """House stats straight from the ledger."""
        return await services.ledger.get_house_stats()

    def rejected_address(address: str, what: str) -> Optional[JSONResponse]:
        is_valid, error = is_valid_solana_address(address)
        if is_valid:
            return None
        logger.warning(f"[API] Rejected {what} lookup for {address!r}: {error}")
        return JSONResponse(status_code=400, content={"error": "invalid_request"})

    @app.get("/v1/agents/{address}/stats")
    async def agent_stats(address: str):
        """Per-player totals from the ledger. Zeroes before the first game."""
        rejected = rejected_address(address, "agent stats")
        if rejected:
            return rejected
        return await services.ledger.get_agent_stats(Pubkey.from_string(address))

    @app.get("/v1/agents/{address}/games")
    async def agent_games(address: str, limit: int = 10):
        """Settled games this service has recorded for a player, newest first."""
        rejected = rejected_address(address, "game history")
        if rejected:
            return rejected

        limit = max(1, min(limit, MAX_HISTORY_LIMIT))
        games = services.db.get_player_games(address, limit=limit)
        return {
            "agent": address,
            "games": [
                {
                    "gameIndex": game.game_index,
                    "gameType": game.game_type.value,
                    "gameAddress": str(game.address),
                    "bet": game.amount / LAMPORTS_PER_SOL,
                    "won": game.won,
                    "result": game.result,
                    "payout": game.payout / LAMPORTS_PER_SOL,
                    "settledAt": game.settled_at,
                    "txSignature": game.tx_signature,
                }
                for game in games
            ],
        }

    @app.get("/v1/attestations/{address}")
    async def get_attestation(address: str):
        """Attestation for a settled on-chain game record."""
        rejected = rejected_address(address, "attestation")
        if rejected:
            return rejected

        stored = services.db.get_attestation(address)
        if stored:
            return stored

        game = await services.ledger.fetch_game_request(Pubkey.from_string(address))
        if game.status != GameStatus.SETTLED:
            raise RecordLayoutError(f"Game {address} is {game.status.value}, not settled")
        return record_settled_game(game)

    @app.post("/v1/attestations/verify")
    async def verify_attestation(request: VerifyAttestationRequest) -> VerifyAttestationResponse:
        return VerifyAttestationResponse(valid=services.attestations.verify(request.attestation))

    # ===== PAID ENDPOINTS =====

    @app.get("/v1/games/coinflip")
    async def coinflip(request: Request, choice: Optional[str] = None):
        side = parse_coin_choice(choice)
        return await play_paid(request, "coinflip", GameType.COIN_FLIP, side, {"choice": side.value})

    @app.get("/v1/games/diceroll")
    async def diceroll(request: Request, target: Optional[str] = None):
        target_value = clamp_dice_target(target)
        return await play_paid(request, "diceroll", GameType.DICE_ROLL, target_value, {"target": target_value})

    @app.get("/v1/games/limbo")
    async def limbo(request: Request, multiplier: Optional[str] = None):
        value = clamp_multiplier(multiplier, DEFAULT_LIMBO_MULTIPLIER)
        return await play_paid(request, "limbo", GameType.LIMBO, value, {"targetMultiplier": value})

    @app.get("/v1/games/crash")
    async def crash(request: Request, multiplier: Optional[str] = None):
        value = clamp_multiplier(multiplier, DEFAULT_CRASH_MULTIPLIER)
        return await play_paid(request, "crash", GameType.CRASH, value, {"cashoutMultiplier": value})

    logger.info(
        f"[API] Agent Casino ready on {settings.network}: wallet={wallet_address} "
        f"bet={format_sol(settings.bet_sol)} SOL price={format_usdc(settings.price_usdc)} USDC"
    )
    return app


# ===== MAIN =====

if __name__ == "__main__":
    import uvicorn

    load_dotenv()
    settings = Settings.from_env()

    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    logger.info("=" * 50)
    logger.info("Agent Casino x402 API Starting...")
    logger.info("=" * 50)

    uvicorn.run(create_app(settings), host="0.0.0.0", port=settings.port)
