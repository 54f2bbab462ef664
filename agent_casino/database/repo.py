"""
Database repository for Agent Casino.
Stores settled games and their attestations in SQLite.
"""
import json
import sqlite3
import logging
from typing import Optional, List

from solders.pubkey import Pubkey

from .models import SettledGame, GameType, GameStatus

logger = logging.getLogger(__name__)


class Database:
    """Database repository."""

    def __init__(self, db_path: str = "agent_casino.db"):
        self.db_path = db_path
        self._init_db()

    def _init_db(self):
        """Initialize database schema."""
        conn = sqlite3.connect(self.db_path)
        cursor = conn.cursor()

        # Settled games, keyed by the on-chain VrfRequest address
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS games (
                address TEXT PRIMARY KEY,
                game_index INTEGER NOT NULL,
                game_type TEXT NOT NULL,
                player TEXT NOT NULL,
                house TEXT NOT NULL,
                randomness_account TEXT NOT NULL,
                amount INTEGER NOT NULL,
                choice INTEGER NOT NULL,
                target_multiplier INTEGER DEFAULT 0,
                status TEXT NOT NULL,
                result INTEGER,
                payout INTEGER DEFAULT 0,
                created_at INTEGER,
                settled_at INTEGER,
                request_slot INTEGER,
                tx_signature TEXT,
                payment_tx TEXT
            )
        """)

        # Sealed attestation documents (immutable once written)
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS attestations (
                address TEXT PRIMARY KEY,
                attestation_hash TEXT NOT NULL,
                document TEXT NOT NULL,
                FOREIGN KEY (address) REFERENCES games(address)
            )
        """)

        cursor.execute("CREATE INDEX IF NOT EXISTS idx_games_player ON games(player)")

        conn.commit()
        conn.close()

    # === Game Operations ===

    def save_game(self, game: SettledGame, payment_tx: Optional[str] = None):
        """Save or update a game."""
        conn = sqlite3.connect(self.db_path)
        cursor = conn.cursor()

        cursor.execute("""
            INSERT OR REPLACE INTO games (
                address, game_index, game_type, player, house, randomness_account,
                amount, choice, target_multiplier, status, result, payout,
                created_at, settled_at, request_slot, tx_signature, payment_tx
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, (
            str(game.address), game.game_index, game.game_type.value,
            str(game.player), str(game.house), str(game.randomness_account),
            game.amount, game.choice, game.target_multiplier, game.status.value,
            game.result, game.payout, game.created_at, game.settled_at,
            game.request_slot, game.tx_signature, payment_tx
        ))

        conn.commit()
        conn.close()

    def get_game(self, address: str) -> Optional[SettledGame]:
        """Get game by VrfRequest address."""
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        cursor = conn.cursor()

        cursor.execute("SELECT * FROM games WHERE address = ?", (address,))
        row = cursor.fetchone()
        conn.close()

        if not row:
            return None

        return self._row_to_game(row)

    def get_player_games(self, player: str, limit: int = 10) -> List[SettledGame]:
        """Get recent games for a player."""
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        cursor = conn.cursor()

        cursor.execute("""
            SELECT * FROM games
            WHERE player = ?
            ORDER BY settled_at DESC
            LIMIT ?
        """, (player, limit))

        rows = cursor.fetchall()
        conn.close()

        return [self._row_to_game(row) for row in rows]

    def _row_to_game(self, row: sqlite3.Row) -> SettledGame:
        """Convert database row to SettledGame object."""
        return SettledGame(
            address=Pubkey.from_string(row["address"]),
            game_index=row["game_index"],
            game_type=GameType(row["game_type"]),
            player=Pubkey.from_string(row["player"]),
            house=Pubkey.from_string(row["house"]),
            randomness_account=Pubkey.from_string(row["randomness_account"]),
            amount=row["amount"],
            choice=row["choice"],
            target_multiplier=row["target_multiplier"] or 0,
            status=GameStatus(row["status"]),
            result=row["result"] or 0,
            payout=row["payout"] or 0,
            created_at=row["created_at"] or 0,
            settled_at=row["settled_at"] or 0,
            request_slot=row["request_slot"] or 0,
            tx_signature=row["tx_signature"],
        )

    # === Attestation Operations ===

    def save_attestation(self, address: str, attestation: dict) -> bool:
        """Store a sealed attestation.

        Returns False if one already exists for this game; attestations are
        never overwritten.
        """
        conn = sqlite3.connect(self.db_path)
        cursor = conn.cursor()

        cursor.execute("""
            INSERT OR IGNORE INTO attestations (address, attestation_hash, document)
            VALUES (?, ?, ?)
        """, (address, attestation["attestation_hash"], json.dumps(attestation)))

        inserted = cursor.rowcount == 1
        conn.commit()
        conn.close()

        if not inserted:
            logger.warning(f"[DB] Attestation for {address} already stored, keeping original")
        return inserted

    def get_attestation(self, address: str) -> Optional[dict]:
        """Get stored attestation document for a game."""
        conn = sqlite3.connect(self.db_path)
        cursor = conn.cursor()

        cursor.execute("SELECT document FROM attestations WHERE address = ?", (address,))
        row = cursor.fetchone()
        conn.close()

        if not row:
            return None
        return json.loads(row[0])
