# conftest.py
#
# Shared fixtures: a SQLite journal on tmp_path and an in-memory stand-in for the
# remote relational service.
#
# Imports
import asyncio
import copy
import uuid
from typing import Any, Dict, Iterable, List, Optional, Sequence
#
# Third-Party Imports
import pytest
#
# Local Imports
from tradejournal.config import SyncSettings
from tradejournal.Constants import (
    TABLE_ACCOUNTS, TABLE_COPY_GROUPS, TABLE_COPY_MEMBERS, TABLE_DAILY_JOURNALS, TABLE_PILL_COLORS,
    TABLE_PROFILES, TABLE_TRADES,
)
from tradejournal.DB.Journal_DB import TradeJournalDB
from tradejournal.DB.Local_Commands import LocalCommandSurface
from tradejournal.Journal.Journal_Library import JournalCollections, TradeJournalService
from tradejournal.remote_api.exceptions import APIConnectionError, APIRequestError
from tradejournal.remote_api.schemas import ADVANCED_ACCOUNT_COLS, ADVANCED_TRADE_COLS
from tradejournal.Sync.Sync_Engine import SyncEngine
from tradejournal.Sync.Sync_Scheduler import VirtualClock
#
#######################################################################################################################
#
# Functions:

USER_ID = "user-123"
OTHER_USER_ID = "user-456"

ALL_TABLES = (TABLE_ACCOUNTS, TABLE_TRADES, TABLE_PILL_COLORS, TABLE_COPY_GROUPS, TABLE_COPY_MEMBERS,
              TABLE_DAILY_JOURNALS, TABLE_PROFILES)


def _split_columns(columns: str) -> List[str]:
    parts, depth, current = [], 0, ""
    for ch in columns:
        if ch == "(":
            depth += 1
        elif ch == ")":
            depth -= 1
        if ch == "," and depth == 0:
            parts.append(current.strip())
            current = ""
        else:
            current += ch
    if current.strip():
        parts.append(current.strip())
    return parts


def _matches(row: Dict[str, Any], filters: Optional[Dict[str, Any]]) -> bool:
    for column, condition in (filters or {}).items():
        op, operand = condition if isinstance(condition, tuple) else ("eq", condition)
        value = row.get(column)
        if op == "eq" and value != operand:
            return False
        if op == "neq" and value == operand:
            return False
        if op == "in" and value not in list(operand):
            return False
        if op == "is" and value is not operand:
            return False
    return True


class FakeRemote:
    """
    In-memory PostgREST look-alike with the same method surface as RemoteRelationalClient.

    - Remote ids are UUID strings; insert order is preserved in the returned rows.
    - Advanced columns / copy tables can be removed to simulate an older deployment;
      touching them raises APIRequestError like the real service.
    - `fail(method, table)` injects an error; `unreachable` raises APIConnectionError;
      `gate` (an asyncio.Event) holds every call until it is set.
    """

    base_url = "https://fake-project.supabase.co"

    def __init__(self):
        self.tables: Dict[str, List[Dict[str, Any]]] = {t: [] for t in ALL_TABLES}
        self.calls: List[tuple] = []
        self.failures: Dict[tuple, list] = {}
        self.unreachable = False
        self.gate: Optional[asyncio.Event] = None
        self.access_token: Optional[str] = None
        self.closed = False
        self.set_capabilities()

    # --- Test controls ---
    def set_capabilities(self, advanced_trades: bool = True, advanced_accounts: bool = True,
                         copy_groups: bool = True) -> None:
        self.missing_columns = {
            TABLE_TRADES: set() if advanced_trades else set(ADVANCED_TRADE_COLS),
            TABLE_ACCOUNTS: set() if advanced_accounts else set(ADVANCED_ACCOUNT_COLS),
        }
        self.missing_tables = set() if copy_groups else {TABLE_COPY_GROUPS, TABLE_COPY_MEMBERS}

    def fail(self, method: str, table: str, exc: Optional[Exception] = None, times: Optional[int] = None) -> None:
        self.failures[(method, table)] = [exc or APIRequestError(f"{method} on {table} rejected"), times]

    def seed(self, table: str, rows: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
        return [self._store(table, row) for row in rows]

    def calls_for(self, method: str) -> List[str]:
        return [table for m, table in self.calls if m == method]

    # --- Internals ---
    def _store(self, table: str, row: Dict[str, Any]) -> Dict[str, Any]:
        stored = copy.deepcopy(row)
        stored.setdefault("id", str(uuid.uuid4()))
        self.tables[table].append(stored)
        return stored

    async def _enter(self, method: str, table: str, columns: Iterable[str] = ()) -> None:
        self.calls.append((method, table))
        await asyncio.sleep(0)
        if self.gate is not None:
            await self.gate.wait()
        if self.unreachable:
            raise APIConnectionError(f"Connection error to {self.base_url}")
        failure = self.failures.get((method, table))
        if failure is not None:
            exc, remaining = failure
            if remaining is not None:
                failure[1] -= 1
                if failure[1] <= 0:
                    del self.failures[(method, table)]
            raise exc
        if table in self.missing_tables:
            raise APIRequestError(f'Request rejected (404): relation "{table}" does not exist')
        unknown = set(columns) & self.missing_columns.get(table, set())
        if unknown:
            raise APIRequestError(f"Request rejected (400): column {table}.{sorted(unknown)[0]} does not exist")

    def _embed(self, table: str, row: Dict[str, Any], embed: str) -> None:
        name, _, inner = embed.partition("(")
        wanted = [c for c in inner.rstrip(")").split(",") if c and c != "*"]
        if name == TABLE_ACCOUNTS and table == TABLE_TRADES:
            parent = next((a for a in self.tables[TABLE_ACCOUNTS] if a["id"] == row.get("account_id")), None)
            row[name] = {c: parent.get(c) for c in wanted} if parent and wanted else copy.deepcopy(parent)
        elif name == TABLE_COPY_MEMBERS and table == TABLE_COPY_GROUPS:
            row[name] = [copy.deepcopy(m) for m in self.tables[TABLE_COPY_MEMBERS] if m.get("group_id") == row["id"]]

    # --- RemoteRelationalClient surface ---
    async def select(self, table: str, columns: str = "*", filters: Optional[Dict[str, Any]] = None,
                     order: Optional[str] = None, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        parts = _split_columns(columns)
        plain = [p for p in parts if "(" not in p]
        embeds = [p for p in parts if "(" in p]
        await self._enter("select", table, [c for c in plain if c != "*"])
        result = []
        for row in self.tables[table]:
            if not _matches(row, filters):
                continue
            out = copy.deepcopy(row) if "*" in plain else {c: copy.deepcopy(row.get(c)) for c in plain}
            for embed in embeds:
                self._embed(table, out, embed)
            result.append(out)
        if order:
            key = order.lstrip("-")
            result.sort(key=lambda r: str(r.get(key) or ""), reverse=order.startswith("-"))
        if limit is not None:
            result = result[:limit]
        return result

    async def insert(self, table: str, rows: Sequence[Dict[str, Any]], returning: bool = False):
        if not rows:
            return []
        await self._enter("insert", table, {c for r in rows for c in r})
        created = [self._store(table, r) for r in rows]
        return copy.deepcopy(created) if returning else []

    async def upsert(self, table: str, rows: Sequence[Dict[str, Any]], on_conflict: Sequence[str],
                     returning: bool = False):
        if not rows:
            return []
        await self._enter("upsert", table, {c for r in rows for c in r})
        out = []
        for row in rows:
            existing = next((r for r in self.tables[table]
                             if all(r.get(k) == row.get(k) for k in on_conflict)), None)
            if existing is not None:
                existing.update(copy.deepcopy(row))
                out.append(existing)
            else:
                out.append(self._store(table, row))
        return copy.deepcopy(out) if returning else []

    async def update(self, table: str, values: Dict[str, Any], filters: Dict[str, Any]):
        if not filters:
            raise ValueError("update() requires at least one filter")
        await self._enter("update", table, values.keys())
        for row in self.tables[table]:
            if _matches(row, filters):
                row.update(copy.deepcopy(values))
        return []

    async def delete(self, table: str, filters: Dict[str, Any]):
        if not filters:
            raise ValueError("delete() requires at least one filter")
        await self._enter("delete", table)
        self.tables[table] = [r for r in self.tables[table] if not _matches(r, filters)]
        return []

    def set_access_token(self, access_token: Optional[str]) -> None:
        self.access_token = access_token

    async def close(self) -> None:
        self.closed = True


# --- Database Fixtures ---

@pytest.fixture
def client_id():
    return "test_client_001"


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "journal_test.sqlite"


@pytest.fixture
def journal_db(db_path, client_id):
    db = TradeJournalDB(db_path, client_id)
    yield db
    db.close_all_connections()


@pytest.fixture
def local(journal_db):
    return LocalCommandSurface(journal_db)


@pytest.fixture
def collections(local):
    return JournalCollections(local)


@pytest.fixture
def service(local, collections):
    return TradeJournalService(local, collections)


@pytest.fixture
def make_ledger(journal_db):
    """Adds two accounts, three trades, a copy group, a pill color and a journal for one owner."""
    def _make(user_id: Optional[str] = USER_ID, prefix: str = "") -> Dict[str, Any]:
        leader = journal_db.add_account({"name": f"{prefix}Apex 50k", "type": "Evaluation", "user_id": user_id,
                                         "balance": 50000, "prop_firm": "Apex", "payout_goal": 2500})
        follower = journal_db.add_account({"name": f"{prefix}Live", "type": "Live", "user_id": user_id,
                                           "balance": 1000})
        trades = [
            journal_db.add_trade({"account_id": leader, "date": "2024-05-01", "symbol": "NQ", "side": "LONG",
                                  "pnl": 250.5, "comment_bias": "trend day"}),
            journal_db.add_trade({"account_id": leader, "date": "2024-05-02", "symbol": "ES", "side": "SHORT",
                                  "pnl": -100}),
            journal_db.add_trade({"account_id": follower, "date": "2024-05-03", "symbol": "NQ", "side": "LONG",
                                  "pnl": 40.25}),
        ]
        group = journal_db.add_copy_group(f"{prefix}Main copy", leader, user_id)
        member = journal_db.add_copy_member(group, follower, 0.5)
        journal_db.set_pill_color("model", "ORB", "success", user_id)
        journal_db.save_daily_journal({"date": "2024-05-01", "goals": ["no revenge"], "reflection": "ok",
                                       "user_id": user_id})
        return {"leader": leader, "follower": follower, "trades": trades, "group": group, "member": member}
    return _make


# --- Remote / Engine Fixtures ---

@pytest.fixture
def fake_remote():
    return FakeRemote()


@pytest.fixture
def clock():
    return VirtualClock()


@pytest.fixture
def sync_settings():
    return SyncSettings(enabled=True, debounce_seconds=1.0, probe_delay_seconds=5.0, pnl_epsilon=0.01,
                        remote_url=FakeRemote.base_url, remote_api_key="anon-key")


@pytest.fixture
def engine(local, fake_remote, collections, sync_settings, clock):
    return SyncEngine(local, fake_remote, collections, settings=sync_settings, clock=clock)

#
# End of conftest.py
#######################################################################################################################
