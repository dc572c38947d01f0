"""SQLite storage for transactions, sync cursors and assistant conversations."""

import json
import sqlite3
from collections.abc import Iterator
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from .errors import DatabaseError, ValidationError
from .models import ConversationMessage, Transaction, TransactionQuery


SCHEMA = """
CREATE TABLE IF NOT EXISTS transactions (
    user_id         TEXT NOT NULL,
    transaction_id  TEXT NOT NULL,   -- Plaid transaction_id
    bank_id         TEXT NOT NULL,   -- Plaid item_id
    name            TEXT,            -- merchant name, falls back to Plaid description
    amount          REAL NOT NULL,   -- positive = money out
    currency        TEXT,
    pending         INTEGER NOT NULL DEFAULT 0,
    date            TEXT NOT NULL,   -- YYYY-MM-DD
    authorized_date TEXT,
    pfc_primary     TEXT,
    pfc_detailed    TEXT,
    pfc_confidence  TEXT,
    pfc_icon_url    TEXT,
    created_at      TEXT,
    updated_at      TEXT,
    PRIMARY KEY (user_id, transaction_id)
);

CREATE TABLE IF NOT EXISTS sync_cursors (
    user_id    TEXT NOT NULL,
    bank_id    TEXT NOT NULL,
    cursor     TEXT NOT NULL,
    updated_at TEXT,
    PRIMARY KEY (user_id, bank_id)
);

CREATE TABLE IF NOT EXISTS ai_messages (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id     TEXT NOT NULL,
    session_id  TEXT NOT NULL,
    role        TEXT NOT NULL,   -- 'user','assistant','tool'
    content     TEXT,
    tool_name   TEXT,
    tool_args   TEXT,            -- JSON object
    tool_result TEXT,            -- JSON object
    created_at  TEXT NOT NULL,
    expires_at  TEXT
);
"""

INDEXES = """
CREATE INDEX IF NOT EXISTS idx_tx_user_date ON transactions(user_id, date);
CREATE INDEX IF NOT EXISTS idx_tx_user_bank ON transactions(user_id, bank_id);
CREATE INDEX IF NOT EXISTS idx_tx_user_pfc ON transactions(user_id, pfc_primary);
CREATE INDEX IF NOT EXISTS idx_msg_session ON ai_messages(user_id, session_id, created_at);
CREATE INDEX IF NOT EXISTS idx_msg_expires ON ai_messages(expires_at);
"""

ORDER_COLUMNS = {"date": "date", "amount": "amount", "name": "name"}

FETCH_BATCH = 200


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _ts(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _parse_ts(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class Database:
    """SQLite database wrapper backing the transaction source and conversation store."""

    def __init__(self, db_path: str | Path | None = None):
        """Initialize database connection.

        Args:
            db_path: Path to SQLite file, or None/":memory:" for in-memory DB.
        """
        if db_path is None:
            db_path = ":memory:"
        self.db_path = str(db_path)
        self._conn: sqlite3.Connection | None = None

    def connect(self) -> sqlite3.Connection:
        """Get or create database connection."""
        if self._conn is None:
            self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
            # WAL only applies to file-based DBs
            if self.db_path != ":memory:":
                self._conn.execute("PRAGMA journal_mode=WAL")
        return self._conn

    def close(self) -> None:
        """Close database connection."""
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def init_schema(self) -> None:
        """Create all tables and indexes."""
        conn = self.connect()
        conn.executescript(SCHEMA)
        conn.executescript(INDEXES)
        conn.commit()

    def count_table(self, table: str) -> int:
        """Count rows in a table."""
        conn = self.connect()
        row = conn.execute(f"SELECT COUNT(*) as cnt FROM {table}").fetchone()  # noqa: S608
        return row["cnt"]

    # -------------------------------------------------------------------------
    # Transactions
    # -------------------------------------------------------------------------

    def upsert_transactions(self, user_id: str, items: list[Transaction]) -> int:
        """Insert or replace transactions, keeping the original created_at."""
        conn = self.connect()
        now = _ts(_utcnow())
        try:
            for tx in items:
                conn.execute(
                    """
                    INSERT INTO transactions
                    (user_id, transaction_id, bank_id, name, amount, currency, pending, date,
                     authorized_date, pfc_primary, pfc_detailed, pfc_confidence, pfc_icon_url,
                     created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT (user_id, transaction_id) DO UPDATE SET
                        bank_id = excluded.bank_id,
                        name = excluded.name,
                        amount = excluded.amount,
                        currency = excluded.currency,
                        pending = excluded.pending,
                        date = excluded.date,
                        authorized_date = excluded.authorized_date,
                        pfc_primary = excluded.pfc_primary,
                        pfc_detailed = excluded.pfc_detailed,
                        pfc_confidence = excluded.pfc_confidence,
                        pfc_icon_url = excluded.pfc_icon_url,
                        updated_at = excluded.updated_at
                    """,
                    (
                        user_id,
                        tx.transaction_id,
                        tx.bank_id,
                        tx.name,
                        tx.amount,
                        tx.currency,
                        1 if tx.pending else 0,
                        tx.date,
                        tx.authorized_date,
                        tx.pfc_primary,
                        tx.pfc_detailed,
                        tx.pfc_confidence,
                        tx.pfc_icon_url,
                        _ts(tx.created_at) or now,
                        now,
                    ),
                )
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise DatabaseError("create", f"failed to upsert transactions: {e}") from e
        return len(items)

    def delete_transactions(self, user_id: str, transaction_ids: list[str]) -> int:
        """Hard delete transactions by ID."""
        if not transaction_ids:
            return 0
        conn = self.connect()
        placeholders = ",".join("?" * len(transaction_ids))
        try:
            cursor = conn.execute(
                f"DELETE FROM transactions WHERE user_id = ? AND transaction_id IN ({placeholders})",  # noqa: S608
                [user_id, *transaction_ids],
            )
            conn.commit()
        except sqlite3.Error as e:
            raise DatabaseError("delete", f"failed to delete transactions: {e}") from e
        return cursor.rowcount

    def query_transactions(self, user_id: str, query: TransactionQuery) -> Iterator[Transaction]:
        """Stream a user's transactions matching query.

        Rows are fetched in batches; closing the iterator early releases the
        cursor. Ordering defaults to date ascending.

        Raises:
            ValidationError: If query.order_by is not a sortable column.
            DatabaseError: If the underlying query fails.
        """
        order_field = query.order_by or "date"
        column = ORDER_COLUMNS.get(order_field)
        if column is None:
            raise ValidationError(f"unsupported orderBy: {order_field}")

        sql = "SELECT * FROM transactions WHERE user_id = ?"
        params: list[Any] = [user_id]

        if query.pending is not None:
            sql += " AND pending = ?"
            params.append(1 if query.pending else 0)
        if query.category:
            sql += " AND pfc_primary = ?"
            params.append(query.category)
        if query.bank_id:
            sql += " AND bank_id = ?"
            params.append(query.bank_id)
        if query.merchant:
            sql += " AND name LIKE ? ESCAPE '\\'"
            params.append(f"%{_escape_like(query.merchant)}%")
        if query.date_from:
            sql += " AND date >= ?"
            params.append(query.date_from)
        if query.date_to:
            sql += " AND date <= ?"
            params.append(query.date_to)

        direction = "DESC" if query.desc else "ASC"
        sql += f" ORDER BY {column} {direction}, transaction_id {direction}"
        if query.limit > 0:
            sql += " LIMIT ?"
            params.append(query.limit)

        try:
            cursor = self.connect().execute(sql, params)
        except sqlite3.Error as e:
            raise DatabaseError("read", f"failed to query transactions: {e}") from e

        try:
            while True:
                try:
                    rows = cursor.fetchmany(FETCH_BATCH)
                except sqlite3.Error as e:
                    raise DatabaseError("read", f"failed to read transactions: {e}") from e
                if not rows:
                    return
                for row in rows:
                    yield self._row_to_transaction(row)
        finally:
            cursor.close()

    @staticmethod
    def _row_to_transaction(row: sqlite3.Row) -> Transaction:
        return Transaction(
            transaction_id=row["transaction_id"],
            bank_id=row["bank_id"],
            name=row["name"] or "",
            amount=row["amount"],
            currency=row["currency"] or "",
            date=row["date"],
            pending=bool(row["pending"]),
            authorized_date=row["authorized_date"],
            pfc_primary=row["pfc_primary"],
            pfc_detailed=row["pfc_detailed"],
            pfc_confidence=row["pfc_confidence"],
            pfc_icon_url=row["pfc_icon_url"],
            created_at=_parse_ts(row["created_at"]),
            updated_at=_parse_ts(row["updated_at"]),
        )

    # -------------------------------------------------------------------------
    # Sync cursors
    # -------------------------------------------------------------------------

    def get_cursor(self, user_id: str, bank_id: str) -> str:
        """Get the stored sync cursor for a bank, or "" if never synced."""
        row = self.connect().execute(
            "SELECT cursor FROM sync_cursors WHERE user_id = ? AND bank_id = ?",
            (user_id, bank_id),
        ).fetchone()
        return row["cursor"] if row else ""

    def set_cursor(self, user_id: str, bank_id: str, cursor: str) -> None:
        """Save the sync cursor for a bank."""
        conn = self.connect()
        try:
            conn.execute(
                "INSERT OR REPLACE INTO sync_cursors (user_id, bank_id, cursor, updated_at) VALUES (?, ?, ?, ?)",
                (user_id, bank_id, cursor, _ts(_utcnow())),
            )
            conn.commit()
        except sqlite3.Error as e:
            raise DatabaseError("update", f"failed to set cursor: {e}") from e

    # -------------------------------------------------------------------------
    # Assistant conversations
    # -------------------------------------------------------------------------

    def save_message(self, user_id: str, session_id: str, msg: ConversationMessage) -> None:
        """Append a message to a session."""
        conn = self.connect()
        created_at = msg.created_at or _utcnow()
        try:
            conn.execute(
                """
                INSERT INTO ai_messages
                (user_id, session_id, role, content, tool_name, tool_args, tool_result, created_at, expires_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    user_id,
                    session_id,
                    msg.role,
                    msg.content or None,
                    msg.tool_name,
                    json.dumps(msg.tool_args) if msg.tool_args is not None else None,
                    json.dumps(msg.tool_result) if msg.tool_result is not None else None,
                    _ts(created_at),
                    _ts(msg.expires_at),
                ),
            )
            conn.commit()
        except sqlite3.Error as e:
            raise DatabaseError("create", f"failed to save message: {e}") from e

    def list_messages(
        self,
        user_id: str,
        session_id: str,
        limit: int = 0,
        now: datetime | None = None,
    ) -> list[ConversationMessage]:
        """Return the most recent unexpired messages of a session, oldest first.

        Args:
            user_id: Owner of the session.
            session_id: Conversation session.
            limit: Maximum number of messages (0 = all).
            now: Reference time for expiry; defaults to the current UTC time.
        """
        sql = """
            SELECT * FROM ai_messages
            WHERE user_id = ? AND session_id = ?
              AND (expires_at IS NULL OR expires_at > ?)
            ORDER BY created_at DESC, id DESC
        """
        params: list[Any] = [user_id, session_id, _ts(now or _utcnow())]
        if limit > 0:
            sql += " LIMIT ?"
            params.append(limit)

        try:
            rows = self.connect().execute(sql, params).fetchall()
        except sqlite3.Error as e:
            raise DatabaseError("read", f"failed to list messages: {e}") from e

        messages = [
            ConversationMessage(
                role=row["role"],
                content=row["content"] or "",
                tool_name=row["tool_name"],
                tool_args=json.loads(row["tool_args"]) if row["tool_args"] else None,
                tool_result=json.loads(row["tool_result"]) if row["tool_result"] else None,
                created_at=_parse_ts(row["created_at"]),
                expires_at=_parse_ts(row["expires_at"]),
            )
            for row in rows
        ]
        messages.reverse()
        return messages

    def purge_expired_messages(self, now: datetime | None = None) -> int:
        """Delete messages whose expiry has passed."""
        conn = self.connect()
        try:
            cursor = conn.execute(
                "DELETE FROM ai_messages WHERE expires_at IS NOT NULL AND expires_at <= ?",
                (_ts(now or _utcnow()),),
            )
            conn.commit()
        except sqlite3.Error as e:
            raise DatabaseError("delete", f"failed to purge messages: {e}") from e
        return cursor.rowcount
