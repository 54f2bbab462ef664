"""
Security audit logging.
Records payment and settlement events for forensics and monitoring.
"""
import logging
import sqlite3
from datetime import datetime
from enum import Enum
from typing import Optional

logger = logging.getLogger(__name__)


class AuditEventType(Enum):
    """Types of security events to audit."""
    # Payments
    PAYMENT_VERIFIED = "payment_verified"
    PAYMENT_REPLAYED = "payment_replayed"
    INVALID_PAYMENT = "invalid_payment"

    # Randomness
    ORACLE_UNAVAILABLE = "oracle_unavailable"

    # Games
    GAME_SETTLED = "game_settled"
    SETTLEMENT_FAILED = "settlement_failed"


class AuditSeverity(Enum):
    """Severity levels for audit events."""
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


class AuditLogger:
    """sqlite-backed audit log."""

    def __init__(self, db_path: str = "agent_casino.db"):
        self.db_path = db_path
        self._init_audit_table()

    def _init_audit_table(self):
        conn = sqlite3.connect(self.db_path)
        cursor = conn.cursor()

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS audit_logs (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                event_type TEXT NOT NULL,
                wallet TEXT,
                ip_address TEXT,
                details TEXT,
                severity TEXT NOT NULL,
                timestamp TEXT NOT NULL
            )
        """)

        cursor.execute("CREATE INDEX IF NOT EXISTS idx_audit_timestamp ON audit_logs(timestamp)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_audit_wallet ON audit_logs(wallet)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_audit_event_type ON audit_logs(event_type)")

        conn.commit()
        conn.close()

    def log(
        self,
        event_type: AuditEventType,
        severity: AuditSeverity = AuditSeverity.INFO,
        wallet: Optional[str] = None,
        ip_address: Optional[str] = None,
        details: Optional[str] = None,
    ):
        """Log a security event.

        Audit failures are logged and never propagate to the request.

        Args:
            event_type: Type of event
            severity: Severity level
            wallet: Payer or player wallet if applicable
            ip_address: Caller IP if applicable
            details: Free-form details
        """
        try:
            conn = sqlite3.connect(self.db_path)
            cursor = conn.cursor()

            cursor.execute("""
                INSERT INTO audit_logs (
                    event_type, wallet, ip_address, details, severity, timestamp
                ) VALUES (?, ?, ?, ?, ?, ?)
            """, (
                event_type.value,
                wallet,
                ip_address,
                details,
                severity.value,
                datetime.utcnow().isoformat(),
            ))

            conn.commit()
            conn.close()

            log_msg = f"[AUDIT] {event_type.value}"
            if wallet:
                log_msg += f" | wallet={wallet}"
            if ip_address:
                log_msg += f" | ip={ip_address}"
            if details:
                log_msg += f" | {details}"

            if severity == AuditSeverity.CRITICAL:
                logger.critical(log_msg)
            elif severity == AuditSeverity.WARNING:
                logger.warning(log_msg)
            else:
                logger.info(log_msg)

        except Exception as e:
            logger.error(f"Failed to write audit log: {e}", exc_info=True)

    def get_recent_events(
        self,
        limit: int = 100,
        severity: Optional[AuditSeverity] = None,
        event_type: Optional[AuditEventType] = None,
        wallet: Optional[str] = None,
    ) -> list:
        """Most recent audit events, newest first."""
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        cursor = conn.cursor()

        query = "SELECT * FROM audit_logs WHERE 1=1"
        params = []

        if severity:
            query += " AND severity = ?"
            params.append(severity.value)

        if event_type:
            query += " AND event_type = ?"
            params.append(event_type.value)

        if wallet:
            query += " AND wallet = ?"
            params.append(wallet)

        query += " ORDER BY id DESC LIMIT ?"
        params.append(limit)

        cursor.execute(query, params)
        rows = cursor.fetchall()
        conn.close()

        return [dict(row) for row in rows]
