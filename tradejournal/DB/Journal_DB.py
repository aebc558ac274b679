# Journal_DB.py
# Description: DB Library for trading accounts, trades, pill colors, copy groups and daily journals.
#
"""
Journal_DB.py
-------------

SQLite-backed local store for the trade journal.

Every owned record is either attached to a signed-in user (`user_id` set) or is
ownerless "guest" data (`user_id IS NULL`). A trade with an account belongs to
whoever owns that account; a trade without one is owned through its own
`user_id` column, which is stamped at insert time.

The library provides:
- Schema creation with a version record.
- Thread-local connections (`threading.local`), WAL mode and foreign keys.
- CRUD for every owned table, filtered by owner.
- Bulk destructive operations (wipe a user's data, wipe guest data) that each
  run inside a single transaction, so a crash never leaves them half done.
- An ownership claim that moves guest records to a user, leg by leg.
- A tiny marker table used by the sync engine to remember an unfinished import.

Local identifiers are small sequential integers and never leave this module as
anything else; the remote service assigns its own identifiers.
"""
# Imports
import json
import logging
import sqlite3
import threading
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Dict, Optional, Any, Set, Union, Tuple
#
# Third-Party Libraries
#
# Local Imports
from tradejournal.Constants import ACCOUNT_TYPES, TRADE_SIDES, DEFAULT_PILL_COLOR
#
########################################################################################################################
#
# Functions:

logger = logging.getLogger(__name__)


# --- Custom Exceptions ---
class JournalDBError(Exception):
    """Base exception for TradeJournalDB related errors."""
    pass


class SchemaError(JournalDBError):
    """Exception for schema version mismatches or setup failures."""
    pass


class InputError(ValueError):
    """Custom exception for input validation errors."""
    pass


class ConflictError(JournalDBError):
    """
    Indicates a unique constraint violation.

    Attributes:
        entity (Optional[str]): The table involved in the conflict (e.g., "copy_members").
        entity_id (Any): The ID or unique identifier of the entity involved.
    """

    def __init__(self, message="Conflict detected.", entity: Optional[str] = None, entity_id: Any = None):
        super().__init__(message)
        self.entity = entity
        self.entity_id = entity_id

    def __str__(self):
        base = super().__str__()
        details = []
        if self.entity:
            details.append(f"Entity: {self.entity}")
        if self.entity_id:
            details.append(f"ID: {self.entity_id}")
        return f"{base} ({', '.join(details)})" if details else base


ACCOUNT_COLUMNS = (
    "name", "type", "balance", "currency", "capital", "profit_target", "max_loss",
    "consistency_rule", "prop_firm", "reset_date", "breach_report", "is_ranked_up",
    "prev_reset_date", "payout_goal",
)

TRADE_COLUMNS = (
    "account_id", "date", "symbol", "model", "bias", "side", "confluences", "entry_signal",
    "order_type", "sl_pips", "risk_percent", "pnl", "psychology", "mistakes", "comment_bias",
    "comment_execution", "comment_problems", "comment_fazit", "image_paths", "images_execution",
    "images_condition", "images_narrative", "trade_session",
)

COPY_GROUP_UPDATABLE = ("name", "leader_account_id", "is_active")

# A trade is owned through its account, or through its own column when it has none
TRADE_OWNER_SQL = "CASE WHEN t.account_id IS NULL THEN t.user_id ELSE a.user_id END"


# --- Database Class ---
class TradeJournalDB:
    """
    Manages the local SQLite journal database.

    Attributes:
        db_path (Path): Resolved path of the database file (":memory:" for in-memory DBs).
        db_path_str (str): What `sqlite3.connect` is given. In-memory DBs use a named
            shared-cache URI so every thread sees the same database.
        client_id (str): Identifier of this install, stored on the schema record.
    """
    _CURRENT_SCHEMA_VERSION = 1
    _SCHEMA_NAME = "trade_journal"

    _FULL_SCHEMA_SQL_V1 = """
PRAGMA foreign_keys = ON;

CREATE TABLE IF NOT EXISTS db_schema_version(
  schema_name TEXT PRIMARY KEY NOT NULL,
  version INTEGER NOT NULL,
  client_id TEXT
);

CREATE TABLE IF NOT EXISTS accounts(
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  name TEXT NOT NULL,
  type TEXT NOT NULL CHECK(type IN ('Live','Evaluation','Funded','Demo','Backtesting')),
  balance REAL DEFAULT 0,
  currency TEXT DEFAULT 'USD',
  capital REAL DEFAULT 0,
  profit_target REAL DEFAULT 0,
  max_loss REAL DEFAULT 0,
  consistency_rule TEXT DEFAULT '',
  prop_firm TEXT DEFAULT '',
  reset_date TEXT,
  breach_report TEXT,
  is_ranked_up INTEGER DEFAULT 0,
  prev_reset_date TEXT,
  payout_goal REAL DEFAULT 0,
  user_id TEXT,
  created_at DATETIME DEFAULT CURRENT_TIMESTAMP
);
CREATE INDEX IF NOT EXISTS idx_accounts_user ON accounts(user_id);

CREATE TABLE IF NOT EXISTS trades(
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  account_id INTEGER REFERENCES accounts(id) ON DELETE CASCADE,
  date TEXT NOT NULL,
  symbol TEXT NOT NULL,
  model TEXT,
  bias TEXT,
  side TEXT CHECK(side IS NULL OR side IN ('LONG','SHORT')),
  confluences TEXT,
  entry_signal TEXT,
  order_type TEXT,
  sl_pips REAL,
  risk_percent REAL,
  pnl REAL NOT NULL DEFAULT 0,
  psychology TEXT,
  mistakes TEXT,
  comment_bias TEXT,
  comment_execution TEXT,
  comment_problems TEXT,
  comment_fazit TEXT,
  image_paths TEXT,
  images_execution TEXT,
  images_condition TEXT,
  images_narrative TEXT,
  trade_session TEXT,
  account_type TEXT,
  user_id TEXT,
  created_at DATETIME DEFAULT CURRENT_TIMESTAMP
);
CREATE INDEX IF NOT EXISTS idx_trades_account ON trades(account_id);
CREATE INDEX IF NOT EXISTS idx_trades_user ON trades(user_id);

CREATE TABLE IF NOT EXISTS pill_colors(
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  user_id TEXT,
  category TEXT NOT NULL,
  value TEXT NOT NULL,
  color TEXT NOT NULL DEFAULT 'primary'
);
CREATE UNIQUE INDEX IF NOT EXISTS idx_pill_colors_owner_key
  ON pill_colors(COALESCE(user_id, ''), category, value);

CREATE TABLE IF NOT EXISTS copy_groups(
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  name TEXT NOT NULL,
  leader_account_id INTEGER REFERENCES accounts(id) ON DELETE CASCADE,
  is_active INTEGER DEFAULT 1,
  user_id TEXT,
  created_at DATETIME DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS copy_members(
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  group_id INTEGER NOT NULL REFERENCES copy_groups(id) ON DELETE CASCADE,
  follower_account_id INTEGER NOT NULL REFERENCES accounts(id) ON DELETE CASCADE,
  risk_multiplier REAL DEFAULT 1.0,
  UNIQUE(group_id, follower_account_id)
);

CREATE TABLE IF NOT EXISTS daily_journals(
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  user_id TEXT,
  date TEXT NOT NULL,
  goals TEXT,
  reflection TEXT DEFAULT '',
  is_completed INTEGER DEFAULT 0,
  created_at DATETIME DEFAULT CURRENT_TIMESTAMP
);
CREATE UNIQUE INDEX IF NOT EXISTS idx_daily_journals_owner_date
  ON daily_journals(COALESCE(user_id, ''), date);

CREATE TABLE IF NOT EXISTS user_profiles(
  user_id TEXT PRIMARY KEY NOT NULL,
  profile TEXT NOT NULL,
  updated_at DATETIME
);

CREATE TABLE IF NOT EXISTS sync_markers(
  name TEXT PRIMARY KEY NOT NULL,
  value TEXT,
  updated_at DATETIME
);

INSERT OR IGNORE INTO db_schema_version(schema_name, version) VALUES ('trade_journal', 0);
UPDATE db_schema_version SET version = 1 WHERE schema_name = 'trade_journal' AND version < 1;
"""

    def __init__(self, db_path: Union[str, Path], client_id: str):
        """
        Initializes the TradeJournalDB instance and ensures the schema exists.

        Args:
            db_path: Path to the SQLite database file or ":memory:". An in-memory database
                lives until `close_all_connections()` is called.
            client_id: A unique identifier for this install. Must not be empty.

        Raises:
            ValueError: If `client_id` is empty or None.
            JournalDBError: If directory creation or schema setup fails.
        """
        if isinstance(db_path, Path):
            self.is_memory_db = False
            self.db_path = db_path.resolve()
        else:
            self.is_memory_db = (db_path == ':memory:')
            self.db_path = Path(db_path).resolve() if not self.is_memory_db else Path(":memory:")
        if self.is_memory_db:
            self.db_path_str = f"file:tradejournal-{uuid.uuid4().hex}?mode=memory&cache=shared"
        else:
            self.db_path_str = str(self.db_path)

        if not client_id:
            raise ValueError("Client ID cannot be empty or None.")
        self.client_id = client_id

        if not self.is_memory_db:
            try:
                self.db_path.parent.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise JournalDBError(f"Failed to create database directory {self.db_path.parent}: {e}")

        logger.info(f"Initializing TradeJournalDB for path: {self.db_path_str} [Client ID: {self.client_id}]")
        self._local = threading.local()
        self._connections: Set[sqlite3.Connection] = set()
        self._connections_lock = threading.Lock()
        # Keeps a shared-cache memory DB alive while worker threads come and go
        self._anchor_conn: Optional[sqlite3.Connection] = None
        try:
            if self.is_memory_db:
                self._anchor_conn = self._open_connection()
            self._initialize_schema()
        except (JournalDBError, sqlite3.Error) as e:
            logger.critical(f"FATAL: DB Initialization failed for {self.db_path_str}: {e}", exc_info=True)
            self.close_all_connections()
            raise JournalDBError(f"Database initialization failed: {e}") from e

    # --- Connection Management ---
    def _open_connection(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path_str, check_same_thread=False, timeout=15, uri=self.is_memory_db)
        conn.row_factory = sqlite3.Row
        if not self.is_memory_db:
            conn.execute("PRAGMA journal_mode=WAL;")
        conn.execute("PRAGMA foreign_keys = ON;")
        with self._connections_lock:
            self._connections.add(conn)
        return conn

    def _forget_connection(self, conn: sqlite3.Connection) -> None:
        with self._connections_lock:
            self._connections.discard(conn)

    def _get_thread_connection(self) -> sqlite3.Connection:
        """
        Retrieves or creates a thread-local SQLite connection.

        Enables WAL mode for file-based databases and sets PRAGMA foreign_keys=ON.
        Every connection opened here is tracked so `close_all_connections()` can reach it.
        """
        conn = getattr(self._local, 'conn', None)
        if conn:
            try:
                conn.execute("SELECT 1")
            except (sqlite3.ProgrammingError, sqlite3.OperationalError):
                logger.warning(f"Thread-local connection for {self.db_path_str} was closed or became unusable. Reopening.")
                self._forget_connection(conn)
                conn = None

        if not conn:
            try:
                self._local.conn = self._open_connection()
                logger.debug(f"Opened SQLite connection to {self.db_path_str} for thread {threading.get_ident()}")
            except sqlite3.Error as e:
                logger.error(f"Failed to connect to database {self.db_path_str}: {e}", exc_info=True)
                self._local.conn = None
                raise JournalDBError(f"Failed to connect to database '{self.db_path_str}': {e}") from e
        return self._local.conn

    def get_connection(self) -> sqlite3.Connection:
        return self._get_thread_connection()

    def _close(self, conn: sqlite3.Connection) -> None:
        try:
            if conn.in_transaction:
                logger.warning(f"Connection to {self.db_path_str} is in an uncommitted transaction during close. Rolling back.")
                conn.rollback()
            conn.close()
        except sqlite3.Error as e:
            logger.warning(f"Error during SQLite connection close for {self.db_path_str}: {e}")
        finally:
            self._forget_connection(conn)

    def close_connection(self):
        """Closes the current thread's connection, rolling back any open transaction first."""
        conn = getattr(self._local, 'conn', None)
        if conn is None:
            return
        self._close(conn)
        self._local.conn = None
        logger.debug(f"Closed connection for thread {threading.get_ident()} to {self.db_path_str}.")

    def close_all_connections(self) -> int:
        """
        Closes every connection this instance opened, on any thread, and returns how many.

        Meant for shutdown, once no worker thread is still using the database. Threads
        that touch the instance afterwards transparently reopen. An in-memory database
        is discarded.
        """
        with self._connections_lock:
            connections = list(self._connections)
        for conn in connections:
            self._close(conn)
        self._local.conn = None
        self._anchor_conn = None
        logger.debug(f"Closed {len(connections)} connection(s) to {self.db_path_str}.")
        return len(connections)

    @property
    def open_connection_count(self) -> int:
        with self._connections_lock:
            return len(self._connections)

    # --- Query Execution ---
    def execute_query(self, query: str, params: Optional[Union[tuple, Dict[str, Any]]] = None, *,
                      commit: bool = False) -> sqlite3.Cursor:
        """
        Executes a single SQL statement.

        Args:
            query: The SQL query string.
            params: Optional parameters for the query (tuple or dict).
            commit: If True, and not inside `with db.transaction():`, commits after execution.

        Raises:
            ConflictError: On a "unique constraint failed" IntegrityError.
            JournalDBError: For other SQLite errors.
        """
        conn = self.get_connection()
        try:
            if logger.isEnabledFor(logging.DEBUG):
                logger.debug(f"Executing SQL: {query[:300]}... Params: {str(params)[:200]}...")
            cursor = conn.execute(query, params or ())
            if commit and not self._in_managed_transaction():
                conn.commit()
            return cursor
        except sqlite3.IntegrityError as e:
            logger.warning(f"Integrity constraint violation: {query[:300]}... Error: {e}")
            if "unique constraint failed" in str(e).lower():
                raise ConflictError(message=f"Unique constraint violation: {e}") from e
            raise JournalDBError(f"Database constraint violation: {e}") from e
        except sqlite3.Error as e:
            logger.error(f"Query execution failed: {query[:300]}... Error: {e}", exc_info=True)
            raise JournalDBError(f"Query execution failed: {e}") from e

    def _in_managed_transaction(self) -> bool:
        return getattr(self._local, 'tx_depth', 0) > 0

    def transaction(self) -> 'TransactionContextManager':
        """
        Returns a context manager for database transactions.

        Usage:
            with db.transaction():
                db.execute_query(...)
        """
        return TransactionContextManager(self)

    # --- Schema Initialization ---
    def _get_db_version(self, conn: sqlite3.Connection) -> int:
        try:
            cursor = conn.execute("SELECT version FROM db_schema_version WHERE schema_name = ? LIMIT 1",
                                  (self._SCHEMA_NAME,))
            result = cursor.fetchone()
            return result['version'] if result else 0
        except sqlite3.Error as e:
            if "no such table" in str(e).lower():
                return 0
            raise SchemaError(f"Could not determine schema version for '{self._SCHEMA_NAME}': {e}") from e

    def _initialize_schema(self):
        conn = self.get_connection()
        current_version = self._get_db_version(conn)
        if current_version == self._CURRENT_SCHEMA_VERSION:
            logger.debug(f"Database schema '{self._SCHEMA_NAME}' is up to date (Version {current_version}).")
            return
        if current_version > self._CURRENT_SCHEMA_VERSION:
            raise SchemaError(
                f"Database schema '{self._SCHEMA_NAME}' version ({current_version}) is newer than supported by code ({self._CURRENT_SCHEMA_VERSION}).")
        try:
            conn.executescript(self._FULL_SCHEMA_SQL_V1)
            conn.execute("UPDATE db_schema_version SET client_id = ? WHERE schema_name = ?",
                         (self.client_id, self._SCHEMA_NAME))
            conn.commit()
        except sqlite3.Error as e:
            logger.error(f"[{self._SCHEMA_NAME} V1] Schema application failed: {e}", exc_info=True)
            raise SchemaError(f"DB schema V1 setup failed for '{self._SCHEMA_NAME}': {e}") from e

        final_version = self._get_db_version(conn)
        if final_version != self._CURRENT_SCHEMA_VERSION:
            raise SchemaError(f"Schema version check failed. Expected {self._CURRENT_SCHEMA_VERSION}, got: {final_version}")
        logger.info(f"Database schema '{self._SCHEMA_NAME}' initialized to version {final_version}.")

    # --- Internal Helpers ---
    @staticmethod
    def _get_current_utc_timestamp_iso() -> str:
        return datetime.now(timezone.utc).isoformat(timespec='milliseconds').replace('+00:00', 'Z')

    @staticmethod
    def _owner_clause(column: str, user_id: Optional[str]) -> Tuple[str, tuple]:
        """SQL fragment selecting rows owned by `user_id`, or guest rows when it is None."""
        if user_id:
            return f"{column} = ?", (user_id,)
        return f"{column} IS NULL", ()

    @staticmethod
    def _rows_to_dicts(cursor: sqlite3.Cursor) -> List[Dict[str, Any]]:
        return [dict(row) for row in cursor.fetchall()]

    @staticmethod
    def _as_flag(value: Any) -> int:
        return 1 if value else 0

    # --- Accounts ---
    def get_accounts(self, user_id: Optional[str]) -> List[Dict[str, Any]]:
        clause, params = self._owner_clause("user_id", user_id)
        cursor = self.execute_query(f"SELECT * FROM accounts WHERE {clause} ORDER BY name ASC, id ASC", params)
        return self._rows_to_dicts(cursor)

    def get_account_by_id(self, account_id: int) -> Optional[Dict[str, Any]]:
        row = self.execute_query("SELECT * FROM accounts WHERE id = ?", (account_id,)).fetchone()
        return dict(row) if row else None

    def add_account(self, account: Dict[str, Any]) -> int:
        """
        Inserts an account and returns its new local id.

        Raises:
            InputError: If the name is missing or the type is not a known account type.
        """
        if not account.get("name"):
            raise InputError("Account name is required.")
        if account.get("type") not in ACCOUNT_TYPES:
            raise InputError(f"Invalid account type: {account.get('type')!r}. Expected one of {ACCOUNT_TYPES}.")

        data = {
            "name": account["name"],
            "type": account["type"],
            "balance": account.get("balance") or 0,
            "currency": account.get("currency") or "USD",
            "capital": account.get("capital") or 0,
            "profit_target": account.get("profit_target") or 0,
            "max_loss": account.get("max_loss") or 0,
            "consistency_rule": account.get("consistency_rule") or "",
            "prop_firm": account.get("prop_firm") or "",
            "reset_date": account.get("reset_date") or None,
            "breach_report": account.get("breach_report") or None,
            "is_ranked_up": self._as_flag(account.get("is_ranked_up")),
            "prev_reset_date": account.get("prev_reset_date") or None,
            "payout_goal": account.get("payout_goal") or 0,
            "user_id": account.get("user_id") or None,
        }
        columns = ", ".join(data.keys())
        placeholders = ", ".join(f":{k}" for k in data.keys())
        cursor = self.execute_query(f"INSERT INTO accounts ({columns}) VALUES ({placeholders})", data, commit=True)
        logger.debug(f"Added account '{data['name']}' with id {cursor.lastrowid}")
        return cursor.lastrowid

    def update_account(self, account_id: int, updates: Dict[str, Any]) -> bool:
        fields = {k: v for k, v in updates.items() if k in ACCOUNT_COLUMNS}
        if not fields:
            raise InputError("No valid account fields to update.")
        if "type" in fields and fields["type"] not in ACCOUNT_TYPES:
            raise InputError(f"Invalid account type: {fields['type']!r}.")
        if "is_ranked_up" in fields:
            fields["is_ranked_up"] = self._as_flag(fields["is_ranked_up"])
        set_clause = ", ".join(f"{k} = ?" for k in fields)
        cursor = self.execute_query(f"UPDATE accounts SET {set_clause} WHERE id = ?",
                                    (*fields.values(), account_id), commit=True)
        return cursor.rowcount > 0

    def delete_account(self, account_id: int) -> bool:
        """Deletes an account along with its trades, its memberships and the copy groups it leads."""
        with self.transaction():
            self.execute_query("DELETE FROM trades WHERE account_id = ?", (account_id,))
            self.execute_query(
                "DELETE FROM copy_members WHERE follower_account_id = ? "
                "OR group_id IN (SELECT id FROM copy_groups WHERE leader_account_id = ?)",
                (account_id, account_id))
            self.execute_query("DELETE FROM copy_groups WHERE leader_account_id = ?", (account_id,))
            cursor = self.execute_query("DELETE FROM accounts WHERE id = ?", (account_id,))
        return cursor.rowcount > 0

    # --- Trades ---
    def get_trades(self, user_id: Optional[str]) -> List[Dict[str, Any]]:
        """
        Returns the trades owned by `user_id`, newest first.

        Account-less trades are matched on their own `user_id`. Each row carries the joined
        `account_name`, `current_account_type` and `account_prop_firm`, and
        `account_type` falls back to the account's current type.
        """
        clause, params = self._owner_clause(f"({TRADE_OWNER_SQL})", user_id)
        query = f"""
            SELECT t.*,
                   COALESCE(t.account_type, a.type) AS account_type,
                   a.name AS account_name,
                   a.type AS current_account_type,
                   a.prop_firm AS account_prop_firm
            FROM trades t
            LEFT JOIN accounts a ON t.account_id = a.id
            WHERE {clause}
            ORDER BY t.date DESC, t.created_at DESC, t.id DESC
        """
        return self._rows_to_dicts(self.execute_query(query, params))

    def add_trade(self, trade: Dict[str, Any]) -> int:
        """
        Inserts a trade and returns the new local id.

        The account's current type is snapshotted onto the trade. The owner comes from
        the account when there is one, otherwise from `trade["user_id"]`.
        """
        if not trade.get("date") or not trade.get("symbol"):
            raise InputError("Trade date and symbol are required.")
        if trade.get("side") is not None and trade.get("side") not in TRADE_SIDES:
            raise InputError(f"Invalid trade side: {trade.get('side')!r}.")

        data = {col: trade.get(col) for col in TRADE_COLUMNS}
        if data["pnl"] is None:
            data["pnl"] = 0
        data["account_type"] = trade.get("account_type")
        data["user_id"] = trade.get("user_id") or None
        if data["account_id"] is not None:
            account = self.get_account_by_id(data["account_id"])
            if account is None:
                raise InputError(f"Account {data['account_id']} does not exist.")
            data["account_type"] = account["type"]
            data["user_id"] = account["user_id"]
        if trade.get("created_at"):
            data["created_at"] = trade["created_at"]

        columns = ", ".join(data.keys())
        placeholders = ", ".join(f":{k}" for k in data.keys())
        cursor = self.execute_query(f"INSERT INTO trades ({columns}) VALUES ({placeholders})", data, commit=True)
        return cursor.lastrowid

    def update_trade(self, trade_id: int, updates: Dict[str, Any]) -> bool:
        fields = {k: v for k, v in updates.items() if k in TRADE_COLUMNS}
        if not fields:
            raise InputError("No valid trade fields to update.")
        if "side" in fields and fields["side"] is not None and fields["side"] not in TRADE_SIDES:
            raise InputError(f"Invalid trade side: {fields['side']!r}.")
        set_clause = ", ".join(f"{k} = ?" for k in fields)
        cursor = self.execute_query(f"UPDATE trades SET {set_clause} WHERE id = ?",
                                    (*fields.values(), trade_id), commit=True)
        return cursor.rowcount > 0

    def delete_trade(self, trade_id: int) -> bool:
        cursor = self.execute_query("DELETE FROM trades WHERE id = ?", (trade_id,), commit=True)
        return cursor.rowcount > 0

    # --- Pill Colors ---
    def get_pill_colors(self, user_id: Optional[str]) -> List[Dict[str, Any]]:
        clause, params = self._owner_clause("user_id", user_id)
        cursor = self.execute_query(f"SELECT * FROM pill_colors WHERE {clause} ORDER BY category, value", params)
        return self._rows_to_dicts(cursor)

    def set_pill_color(self, category: str, value: str, color: Optional[str], user_id: Optional[str] = None) -> int:
        """Upserts the color for (owner, category, value). Guest rows compare equal on NULL owner."""
        if not category or value is None:
            raise InputError("Pill color category and value are required.")
        color = color or DEFAULT_PILL_COLOR
        with self.transaction():
            row = self.execute_query(
                "SELECT id FROM pill_colors WHERE user_id IS ? AND category = ? AND value = ?",
                (user_id or None, category, value)).fetchone()
            if row:
                self.execute_query("UPDATE pill_colors SET color = ? WHERE id = ?", (color, row["id"]))
                return row["id"]
            cursor = self.execute_query(
                "INSERT INTO pill_colors (user_id, category, value, color) VALUES (?, ?, ?, ?)",
                (user_id or None, category, value, color))
            return cursor.lastrowid

    # --- Copy Groups ---
    def get_copy_groups(self, user_id: Optional[str]) -> List[Dict[str, Any]]:
        """Returns the owner's copy groups, each with a `members` list."""
        clause, params = self._owner_clause("g.user_id", user_id)
        groups = self._rows_to_dicts(self.execute_query(f"""
            SELECT g.*, a.name AS leader_name
            FROM copy_groups g
            LEFT JOIN accounts a ON g.leader_account_id = a.id
            WHERE {clause}
            ORDER BY g.id ASC
        """, params))
        for group in groups:
            group["members"] = self._rows_to_dicts(self.execute_query("""
                SELECT m.*, a.name AS follower_name, a.type AS follower_type
                FROM copy_members m
                LEFT JOIN accounts a ON m.follower_account_id = a.id
                WHERE m.group_id = ?
                ORDER BY m.id ASC
            """, (group["id"],)))
        return groups

    def add_copy_group(self, name: str, leader_account_id: int, user_id: Optional[str] = None,
                       is_active: bool = True) -> int:
        if not name:
            raise InputError("Copy group name is required.")
        if self.get_account_by_id(leader_account_id) is None:
            raise InputError(f"Leader account {leader_account_id} does not exist.")
        cursor = self.execute_query(
            "INSERT INTO copy_groups (name, leader_account_id, is_active, user_id) VALUES (?, ?, ?, ?)",
            (name, leader_account_id, self._as_flag(is_active), user_id or None), commit=True)
        return cursor.lastrowid

    def update_copy_group(self, group_id: int, updates: Dict[str, Any]) -> bool:
        fields = {k: v for k, v in updates.items() if k in COPY_GROUP_UPDATABLE}
        if not fields:
            raise InputError("No valid fields to update")
        if "is_active" in fields:
            fields["is_active"] = self._as_flag(fields["is_active"])
        set_clause = ", ".join(f"{k} = ?" for k in fields)
        cursor = self.execute_query(f"UPDATE copy_groups SET {set_clause} WHERE id = ?",
                                    (*fields.values(), group_id), commit=True)
        return cursor.rowcount > 0

    def delete_copy_group(self, group_id: int) -> bool:
        with self.transaction():
            self.execute_query("DELETE FROM copy_members WHERE group_id = ?", (group_id,))
            cursor = self.execute_query("DELETE FROM copy_groups WHERE id = ?", (group_id,))
        return cursor.rowcount > 0

    def add_copy_member(self, group_id: int, follower_account_id: int, risk_multiplier: Optional[float] = None) -> int:
        try:
            cursor = self.execute_query(
                "INSERT INTO copy_members (group_id, follower_account_id, risk_multiplier) VALUES (?, ?, ?)",
                (group_id, follower_account_id, risk_multiplier or 1.0), commit=True)
        except ConflictError as e:
            raise ConflictError(f"Account {follower_account_id} already follows group {group_id}.",
                                entity="copy_members", entity_id=group_id) from e
        return cursor.lastrowid

    def remove_copy_member(self, member_id: int) -> bool:
        cursor = self.execute_query("DELETE FROM copy_members WHERE id = ?", (member_id,), commit=True)
        return cursor.rowcount > 0

    # --- Daily Journals ---
    def get_daily_journals(self, user_id: Optional[str]) -> List[Dict[str, Any]]:
        clause, params = self._owner_clause("user_id", user_id)
        cursor = self.execute_query(f"SELECT * FROM daily_journals WHERE {clause} ORDER BY date DESC", params)
        return self._rows_to_dicts(cursor)

    def save_daily_journal(self, journal: Dict[str, Any]) -> int:
        """Upserts the journal for (owner, date); `goals` is stored as a JSON string."""
        if not journal.get("date"):
            raise InputError("Journal date is required.")
        user_id = journal.get("user_id") or None
        goals = journal.get("goals")
        if goals is not None and not isinstance(goals, str):
            goals = json.dumps(goals)
        values = (goals, journal.get("reflection") or "", self._as_flag(journal.get("is_completed")))
        with self.transaction():
            row = self.execute_query("SELECT id FROM daily_journals WHERE user_id IS ? AND date = ?",
                                     (user_id, journal["date"])).fetchone()
            if row:
                self.execute_query(
                    "UPDATE daily_journals SET goals = ?, reflection = ?, is_completed = ? WHERE id = ?",
                    (*values, row["id"]))
                return row["id"]
            cursor = self.execute_query(
                "INSERT INTO daily_journals (user_id, date, goals, reflection, is_completed) VALUES (?, ?, ?, ?, ?)",
                (user_id, journal["date"], *values))
            return cursor.lastrowid

    # --- Profiles ---
    def get_profile(self, user_id: str) -> Optional[Dict[str, Any]]:
        row = self.execute_query("SELECT profile FROM user_profiles WHERE user_id = ?", (user_id,)).fetchone()
        if not row:
            return None
        try:
            return json.loads(row["profile"])
        except json.JSONDecodeError as e:
            logger.warning(f"Stored profile for user {user_id} is not valid JSON: {e}")
            return None

    def save_profile(self, user_id: str, profile: Dict[str, Any]) -> None:
        if not user_id:
            raise InputError("A profile can only be saved for a known user.")
        self.execute_query(
            "INSERT INTO user_profiles (user_id, profile, updated_at) VALUES (?, ?, ?) "
            "ON CONFLICT(user_id) DO UPDATE SET profile = excluded.profile, updated_at = excluded.updated_at",
            (user_id, json.dumps(profile), self._get_current_utc_timestamp_iso()), commit=True)

    # --- Bulk ownership operations ---
    def delete_user_data(self, user_id: str) -> Dict[str, int]:
        """
        Deletes every replicated record owned by `user_id` in one transaction.

        Daily journals and the profile are kept; they are merged rather than rebuilt on import.
        Re-running after a partial failure is safe: every statement is owner-scoped.
        """
        if not user_id:
            raise InputError("delete_user_data requires a user id.")
        counts: Dict[str, int] = {}
        with self.transaction():
            counts["trades"] = self.execute_query(
                "DELETE FROM trades WHERE account_id IN (SELECT id FROM accounts WHERE user_id = ?) "
                "OR (account_id IS NULL AND user_id = ?)", (user_id, user_id)).rowcount
            counts["copy_members"] = self.execute_query(
                "DELETE FROM copy_members WHERE follower_account_id IN (SELECT id FROM accounts WHERE user_id = ?) "
                "OR group_id IN (SELECT id FROM copy_groups WHERE user_id = ?)", (user_id, user_id)).rowcount
            counts["copy_groups"] = self.execute_query(
                "DELETE FROM copy_groups WHERE user_id = ?", (user_id,)).rowcount
            counts["accounts"] = self.execute_query(
                "DELETE FROM accounts WHERE user_id = ?", (user_id,)).rowcount
            counts["pill_colors"] = self.execute_query(
                "DELETE FROM pill_colors WHERE user_id = ?", (user_id,)).rowcount
        logger.info(f"Deleted local data for user {user_id}: {counts}")
        return counts

    def delete_guest_data(self) -> Dict[str, int]:
        """Deletes every ownerless record across all owned tables in one transaction."""
        counts: Dict[str, int] = {}
        with self.transaction():
            counts["trades"] = self.execute_query(
                "DELETE FROM trades WHERE (account_id IS NULL AND user_id IS NULL) "
                "OR account_id IN (SELECT id FROM accounts WHERE user_id IS NULL)").rowcount
            counts["copy_members"] = self.execute_query(
                "DELETE FROM copy_members WHERE follower_account_id IN (SELECT id FROM accounts WHERE user_id IS NULL) "
                "OR group_id IN (SELECT id FROM copy_groups WHERE user_id IS NULL)").rowcount
            counts["copy_groups"] = self.execute_query("DELETE FROM copy_groups WHERE user_id IS NULL").rowcount
            counts["accounts"] = self.execute_query("DELETE FROM accounts WHERE user_id IS NULL").rowcount
            counts["pill_colors"] = self.execute_query("DELETE FROM pill_colors WHERE user_id IS NULL").rowcount
            counts["daily_journals"] = self.execute_query("DELETE FROM daily_journals WHERE user_id IS NULL").rowcount
        logger.info(f"Deleted guest data: {counts}")
        return counts

    def claim_local_data(self, user_id: str) -> Dict[str, Any]:
        """
        Reassigns every ownerless record to `user_id`.

        Each table is its own leg: a failing leg is recorded under `errors` and the
        remaining legs still run. Trades with an account follow it; account-less
        guest trades are claimed by their own leg.
        Returns `{"claimed": {table: rows}, "errors": {table: message}}`.
        """
        if not user_id:
            raise InputError("claim_local_data requires a user id.")
        claimed: Dict[str, int] = {}
        errors: Dict[str, str] = {}
        legs = {
            "accounts": "UPDATE accounts SET user_id = ? WHERE user_id IS NULL",
            "trades": "UPDATE trades SET user_id = ? WHERE account_id IS NULL AND user_id IS NULL",
            "copy_groups": "UPDATE copy_groups SET user_id = ? WHERE user_id IS NULL",
            # Rows the user already has win over the guest copy
            "pill_colors": "UPDATE OR IGNORE pill_colors SET user_id = ? WHERE user_id IS NULL",
            "daily_journals": "UPDATE OR IGNORE daily_journals SET user_id = ? WHERE user_id IS NULL",
        }
        for table, statement in legs.items():
            try:
                claimed[table] = self.execute_query(statement, (user_id,), commit=True).rowcount
            except JournalDBError as e:
                logger.error(f"Claim leg '{table}' failed for user {user_id}: {e}")
                errors[table] = str(e)
        logger.info(f"Claimed local data for user {user_id}: {claimed} (errors: {list(errors)})")
        return {"claimed": claimed, "errors": errors}

    def count_records(self, user_id: Optional[str]) -> Dict[str, int]:
        """Counts the owner's accounts and trades."""
        clause, params = self._owner_clause("user_id", user_id)
        accounts = self.execute_query(f"SELECT COUNT(*) AS n FROM accounts WHERE {clause}", params).fetchone()["n"]
        clause, params = self._owner_clause(f"({TRADE_OWNER_SQL})", user_id)
        trades = self.execute_query(
            f"SELECT COUNT(*) AS n FROM trades t LEFT JOIN accounts a ON t.account_id = a.id WHERE {clause}",
            params).fetchone()["n"]
        return {"accounts": accounts, "trades": trades}

    # --- Sync markers ---
    def get_marker(self, name: str) -> Optional[str]:
        row = self.execute_query("SELECT value FROM sync_markers WHERE name = ?", (name,)).fetchone()
        return row["value"] if row else None

    def set_marker(self, name: str, value: str) -> None:
        self.execute_query(
            "INSERT INTO sync_markers (name, value, updated_at) VALUES (?, ?, ?) "
            "ON CONFLICT(name) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at",
            (name, value, self._get_current_utc_timestamp_iso()), commit=True)

    def clear_marker(self, name: str) -> None:
        self.execute_query("DELETE FROM sync_markers WHERE name = ?", (name,), commit=True)


class TransactionContextManager:
    """Commits on clean exit and rolls back on exception; only the outermost block owns the transaction."""

    def __init__(self, db_instance: TradeJournalDB):
        self.db = db_instance
        self.conn: Optional[sqlite3.Connection] = None
        self.is_outermost_transaction = False

    def __enter__(self) -> sqlite3.Connection:
        self.conn = self.db.get_connection()
        depth = getattr(self.db._local, 'tx_depth', 0)
        if depth == 0:
            if self.conn.in_transaction:
                self.conn.commit()
            self.conn.execute("BEGIN")
            self.is_outermost_transaction = True
            logger.debug(f"Transaction started on thread {threading.get_ident()}.")
        self.db._local.tx_depth = depth + 1
        return self.conn

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.db._local.tx_depth -= 1
        if not self.is_outermost_transaction:
            return False
        if exc_type:
            logger.error(f"Transaction failed, rolling back: {exc_type.__name__} - {exc_val}")
            try:
                self.conn.rollback()
            except sqlite3.Error as rb_err:
                logger.critical(f"Rollback FAILED on thread {threading.get_ident()}: {rb_err}", exc_info=True)
            return False
        try:
            self.conn.commit()
        except sqlite3.Error as commit_err:
            logger.error(f"Commit FAILED, attempting rollback: {commit_err}", exc_info=True)
            self.conn.rollback()
            raise JournalDBError(f"Commit failed: {commit_err}") from commit_err
        return False

#
# End of Journal_DB.py
########################################################################################################################
