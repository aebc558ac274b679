# Pull_Protocol.py
# Description: Imports one user's remote snapshot into the local store.
#
"""
Pull_Protocol.py
----------------

Wipe-then-rehydrate replication, remote -> local.

1. Fetch the user's remote accounts, trades (with their account's display fields),
   pill colors, copy groups with members (when the remote has them), daily
   journals and profile.
2. Apply the profile; it is preference data and never blocks the rest.
3. Nothing remote -> no-op success.
4. Local and remote agree on trade count, account count and PnL sum -> no-op
   success. This is a cheap heuristic, not a proof of equality.
5. Otherwise wipe the user's local replicated data in one local transaction and
   recreate accounts, trades, pill colors and copy groups, translating remote ids
   to the freshly assigned local ids. Trades whose account cannot be resolved are
   dropped; groups whose leader cannot be resolved are skipped along with their
   members. Journals are merged by date rather than rebuilt.
6. Reload every in-memory collection.

A marker row is written before the wipe and cleared after a clean rehydration,
so an import that dies in between, or loses records on the way in, is visible
on the next start.
"""
# Imports
import json
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
#
# Third-Party Libraries
from loguru import logger
#
# Local Imports
from tradejournal.Constants import (
    MARKER_PULL_IN_PROGRESS, MSG_NO_REMOTE_DATA, MSG_UP_TO_DATE, TABLE_ACCOUNTS, TABLE_COPY_GROUPS,
    TABLE_DAILY_JOURNALS, TABLE_PILL_COLORS, TABLE_PROFILES, TABLE_TRADES,
)
from tradejournal.DB.Journal_DB import TRADE_COLUMNS, ACCOUNT_COLUMNS
from tradejournal.DB.Local_Commands import LocalCommandSurface
from tradejournal.Journal.Journal_Library import JournalCollections
from tradejournal.Metrics.metrics_logger import log_sync_cycle
from tradejournal.remote_api.client import RemoteRelationalClient
from tradejournal.remote_api.exceptions import RemoteAPIError
from tradejournal.remote_api.schemas import RemoteProfile
from tradejournal.Sync.Capability_Prober import CapabilityRecord
from tradejournal.Sync.Id_Remapper import IdMap
from tradejournal.Sync.Sync_Schemas import SyncResult
#
########################################################################################################################
#
# Functions:


@dataclass
class RemoteSnapshot:
    accounts: List[Dict[str, Any]] = field(default_factory=list)
    trades: List[Dict[str, Any]] = field(default_factory=list)
    pill_colors: List[Dict[str, Any]] = field(default_factory=list)
    copy_groups: List[Dict[str, Any]] = field(default_factory=list)
    daily_journals: List[Dict[str, Any]] = field(default_factory=list)
    profile: Optional[RemoteProfile] = None

    @property
    def is_empty(self) -> bool:
        return not self.accounts and not self.trades and not self.copy_groups

    @property
    def pnl_sum(self) -> float:
        return sum(float(t.get("pnl") or 0) for t in self.trades)


def _local_value(value: Any) -> Any:
    # The remote stores image lists and similar as JSON; the local store keeps text
    if isinstance(value, (list, dict)):
        return json.dumps(value)
    return value


def is_up_to_date(collections: JournalCollections, snapshot: RemoteSnapshot, epsilon: float) -> bool:
    """
    True when counts and PnL sums agree. Only meaningful if the local side has data;
    an empty local store is never considered current.
    """
    if collections.is_empty:
        return False
    return (len(collections.trades) == len(snapshot.trades)
            and len(collections.accounts) == len(snapshot.accounts)
            and abs(collections.pnl_sum - snapshot.pnl_sum) < epsilon)


class PullProtocol:
    """Runs one pull for one user. Holds no state between runs."""

    def __init__(self, local: LocalCommandSurface, remote: RemoteRelationalClient,
                 collections: JournalCollections, pnl_epsilon: float = 0.01):
        self.local = local
        self.remote = remote
        self.collections = collections
        self.pnl_epsilon = pnl_epsilon

    async def fetch_remote(self, user_id: str, capabilities: CapabilityRecord) -> RemoteSnapshot:
        """Fetches the user's remote rows. Raises RemoteAPIError if a replicated table cannot be read."""
        owner = {"user_id": user_id}
        snapshot = RemoteSnapshot(
            accounts=await self.remote.select(TABLE_ACCOUNTS, filters=owner, order="name"),
            trades=await self.remote.select(TABLE_TRADES, columns="*,accounts(name,type,prop_firm)",
                                            filters=owner, order="-date"),
            pill_colors=await self.remote.select(TABLE_PILL_COLORS, filters=owner),
        )
        if capabilities.copy_groups:
            snapshot.copy_groups = await self.remote.select(TABLE_COPY_GROUPS, columns="*,copy_members(*)",
                                                            filters=owner)
        try:
            snapshot.daily_journals = await self.remote.select(TABLE_DAILY_JOURNALS, filters=owner)
        except RemoteAPIError as e:
            logger.warning(f"Could not fetch remote daily journals; keeping local ones untouched: {e}")
        try:
            profiles = await self.remote.select(TABLE_PROFILES, filters={"id": user_id}, limit=1)
            if profiles:
                snapshot.profile = RemoteProfile.model_validate(profiles[0])
        except (RemoteAPIError, ValueError) as e:
            logger.warning(f"Could not fetch remote profile: {e}")
        return snapshot

    async def _apply_profile(self, user_id: str, profile: Optional[RemoteProfile]) -> None:
        if profile is None:
            return
        merged = {**self.collections.profile, **profile.to_local()}
        result = await self.local.save_profile(user_id, merged)
        if not result.success:
            logger.warning(f"Remote profile could not be stored locally: {result.error}")

    async def _rehydrate(self, user_id: str, snapshot: RemoteSnapshot) -> Dict[str, int]:
        counts = {"accounts": 0, "trades": 0, "trades_dropped": 0, "colors": 0,
                  "groups": 0, "groups_skipped": 0, "members": 0, "journals": 0, "failed": 0}

        account_map = IdMap()
        for account in snapshot.accounts:
            payload = {k: _local_value(account[k]) for k in ACCOUNT_COLUMNS if k in account}
            result = await self.local.add_account({**payload, "user_id": user_id})
            if result.success:
                account_map.add(account.get("id"), result.id)
                counts["accounts"] += 1
            else:
                counts["failed"] += 1

        for trade in snapshot.trades:
            local_account_id = account_map.resolve(trade.get("account_id"))
            if local_account_id is None:
                counts["trades_dropped"] += 1
                continue
            payload = {k: _local_value(trade[k]) for k in TRADE_COLUMNS if k in trade}
            payload["account_id"] = local_account_id
            if trade.get("created_at"):
                payload["created_at"] = trade["created_at"]
            result = await self.local.add_trade(payload)
            if result.success:
                counts["trades"] += 1
            else:
                counts["failed"] += 1

        for color in snapshot.pill_colors:
            result = await self.local.set_pill_color(color.get("category"), color.get("value"),
                                                     color.get("color"), user_id)
            if result.success:
                counts["colors"] += 1
            else:
                counts["failed"] += 1

        for group in snapshot.copy_groups:
            leader_id = account_map.resolve(group.get("leader_id"))
            if leader_id is None:
                counts["groups_skipped"] += 1
                continue
            result = await self.local.add_copy_group(group.get("name"), leader_id, user_id,
                                                     bool(group.get("is_active", True)))
            if not result.success:
                counts["failed"] += 1
                continue
            counts["groups"] += 1
            for member in group.get("copy_members") or []:
                follower_id = account_map.resolve(member.get("follower_account_id"))
                if follower_id is None:
                    continue
                member_result = await self.local.add_copy_member(result.id, follower_id,
                                                                 member.get("risk_multiplier"))
                if member_result.success:
                    counts["members"] += 1
                else:
                    counts["failed"] += 1

        for journal in snapshot.daily_journals:
            result = await self.local.save_daily_journal({**journal, "user_id": user_id})
            if result.success:
                counts["journals"] += 1
            else:
                counts["failed"] += 1

        if counts["trades_dropped"]:
            logger.warning(f"Dropped {counts['trades_dropped']} remote trade(s) whose account could not be resolved.")
        return counts

    async def run(self, user_id: str, capabilities: CapabilityRecord) -> SyncResult:
        """Runs the whole import. Never raises."""
        start = time.perf_counter()
        status = "failure"
        try:
            try:
                snapshot = await self.fetch_remote(user_id, capabilities)
            except RemoteAPIError as e:
                logger.error(f"Pull aborted: could not fetch remote data: {e}")
                return SyncResult.failed(str(e))

            await self._apply_profile(user_id, snapshot.profile)

            if snapshot.is_empty:
                status = "empty"
                await self.collections.reload_profile()
                return SyncResult.ok(MSG_NO_REMOTE_DATA)

            if is_up_to_date(self.collections, snapshot, self.pnl_epsilon):
                status = "current"
                await self.collections.reload_profile()
                return SyncResult.ok(MSG_UP_TO_DATE)

            await self.local.set_marker(MARKER_PULL_IN_PROGRESS, user_id)
            wipe = await self.local.delete_user_data(user_id)
            if not wipe.success:
                await self.local.clear_marker(MARKER_PULL_IN_PROGRESS)
                logger.error(f"Pull aborted: local wipe failed: {wipe.error}")
                return SyncResult.failed(f"Could not clear local data: {wipe.error}")

            counts = await self._rehydrate(user_id, snapshot)
            if counts["failed"]:
                # Marker stays so the next sign-in offers the import again
                await self.collections.reload()
                status = "partial"
                error = f"Import incomplete: {counts['failed']} record(s) could not be restored"
                logger.error(f"{error} ({counts})")
                return SyncResult.failed(error, **counts)

            await self.local.clear_marker(MARKER_PULL_IN_PROGRESS)
            await self.collections.reload()

            status = "success"
            message = f"Synced {counts['accounts']} accounts & {counts['trades']} trades from cloud"
            logger.info(f"{message} ({counts})")
            return SyncResult.ok(message, **counts)
        except Exception as e:
            logger.error(f"Pull failed unexpectedly: {e}", exc_info=True)
            return SyncResult.failed(str(e))
        finally:
            log_sync_cycle("pull", status, time.perf_counter() - start)

#
# End of Pull_Protocol.py
########################################################################################################################
