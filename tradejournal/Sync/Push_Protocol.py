# Push_Protocol.py
# Description: Replaces one user's remote rows with the local snapshot.
#
"""
Push_Protocol.py
----------------

Wipe-then-replace replication, local -> remote, as an ordered pipeline:

    snapshot -> remote wipe -> [accounts -> trades -> copy groups]
                            -> [pill colors] -> [daily journals] -> [profile]

The snapshot and the wipe gate everything: if either fails, no later step runs
(a failed snapshot leaves the remote untouched). After the wipe, steps are grouped
by table family; a failure aborts the rest of its own group only. Every delete is
scoped to the user, so re-running a push after any failure converges on the same
remote content.

Remote ids are reassigned on every push. Content, not identity, is what matches
between two pushes of an unchanged snapshot.
"""
# Imports
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple
#
# Third-Party Libraries
from loguru import logger
from pydantic import BaseModel, Field
#
# Local Imports
from tradejournal.Constants import (
    PROFILE_FIELDS, TABLE_ACCOUNTS, TABLE_COPY_GROUPS, TABLE_COPY_MEMBERS, TABLE_DAILY_JOURNALS,
    TABLE_PILL_COLORS, TABLE_PROFILES, TABLE_TRADES,
)
from tradejournal.DB.Local_Commands import LocalCommandSurface, rows
from tradejournal.Metrics.metrics_logger import log_sync_cycle
from tradejournal.remote_api.client import RemoteRelationalClient
from tradejournal.remote_api.schemas import (
    DAILY_JOURNAL_COLS, PILL_COLOR_COLS, PILL_COLOR_CONFLICT_KEY, PROFILE_CONFLICT_KEY,
    account_columns, clean_for_remote, trade_columns,
)
from tradejournal.Sync.Capability_Prober import CapabilityRecord
from tradejournal.Sync.Id_Remapper import IdMap, build_forward_map
#
########################################################################################################################
#
# Functions:

STEP_OK = "ok"
STEP_FAILED = "failed"
STEP_ABORTED = "aborted"
STEP_NOT_CAPABLE = "not_capable"


class PushReport(BaseModel):
    success: bool = False
    steps: Dict[str, str] = Field(default_factory=dict)
    errors: Dict[str, str] = Field(default_factory=dict)
    accounts: int = 0
    trades: int = 0
    trades_unlinked: int = 0
    groups: int = 0
    groups_skipped: int = 0
    members: int = 0
    colors: int = 0
    journals: int = 0
    profile: bool = False


@dataclass
class LocalSnapshot:
    accounts: List[Dict[str, Any]] = field(default_factory=list)
    trades: List[Dict[str, Any]] = field(default_factory=list)
    pill_colors: List[Dict[str, Any]] = field(default_factory=list)
    copy_groups: List[Dict[str, Any]] = field(default_factory=list)
    daily_journals: List[Dict[str, Any]] = field(default_factory=list)
    profile: Optional[Dict[str, Any]] = None


@dataclass
class _PushContext:
    user_id: str
    capabilities: CapabilityRecord
    snapshot: LocalSnapshot
    report: PushReport
    account_map: IdMap = field(default_factory=IdMap)


StepFunc = Callable[[_PushContext], Awaitable[None]]


class PushProtocol:
    """Runs one push for one user. Holds no state between runs."""

    def __init__(self, local: LocalCommandSurface, remote: RemoteRelationalClient):
        self.local = local
        self.remote = remote

    # --- Step 1: snapshot ---
    async def read_snapshot(self, user_id: str) -> LocalSnapshot:
        """Reads every owned table for `user_id`. Raises JournalDBError if a required read fails."""
        snapshot = LocalSnapshot(
            accounts=rows(await self.local.get_accounts(user_id)),
            trades=rows(await self.local.get_trades(user_id)),
            pill_colors=rows(await self.local.get_pill_colors(user_id)),
            copy_groups=rows(await self.local.get_copy_groups(user_id)),
            daily_journals=rows(await self.local.get_daily_journals(user_id)),
        )
        profile_result = await self.local.get_profile(user_id)
        if profile_result.success:
            snapshot.profile = profile_result.data
        return snapshot

    # --- Step 2: remote wipe ---
    async def wipe_remote(self, user_id: str, capabilities: CapabilityRecord) -> None:
        owner = {"user_id": user_id}
        await self.remote.delete(TABLE_TRADES, owner)
        await self.remote.delete(TABLE_ACCOUNTS, owner)
        if capabilities.copy_groups:
            groups = await self.remote.select(TABLE_COPY_GROUPS, columns="id", filters=owner)
            group_ids = [g["id"] for g in groups if g.get("id") is not None]
            if group_ids:
                await self.remote.delete(TABLE_COPY_MEMBERS, {"group_id": ("in", group_ids)})
            await self.remote.delete(TABLE_COPY_GROUPS, owner)
        await self.remote.delete(TABLE_PILL_COLORS, owner)
        await self.remote.delete(TABLE_DAILY_JOURNALS, owner)

    # --- Ledger group ---
    async def _push_accounts(self, ctx: _PushContext) -> None:
        accounts = ctx.snapshot.accounts
        if not accounts:
            return
        columns = account_columns(ctx.capabilities.advanced_accounts)
        payloads = [{**clean_for_remote(acc, columns), "user_id": ctx.user_id} for acc in accounts]
        returned = await self.remote.insert(TABLE_ACCOUNTS, payloads, returning=True)
        ctx.account_map = build_forward_map(accounts, payloads, returned)
        ctx.report.accounts = len(returned)

    async def _push_trades(self, ctx: _PushContext) -> None:
        trades = ctx.snapshot.trades
        if not trades:
            return
        columns = trade_columns(ctx.capabilities.advanced_trades)
        payloads = []
        for trade in trades:
            remote_account_id = ctx.account_map.resolve(trade.get("account_id"))
            if remote_account_id is None:
                ctx.report.trades_unlinked += 1
            payloads.append({
                **clean_for_remote(trade, columns),
                "account_id": remote_account_id,
                "user_id": ctx.user_id,
            })
        await self.remote.insert(TABLE_TRADES, payloads)
        ctx.report.trades = len(payloads)
        if ctx.report.trades_unlinked:
            logger.warning(f"{ctx.report.trades_unlinked} trade(s) pushed without an account reference.")

    async def _push_copy_groups(self, ctx: _PushContext) -> None:
        for group in ctx.snapshot.copy_groups:
            leader_id = ctx.account_map.resolve(group.get("leader_account_id"))
            if leader_id is None:
                ctx.report.groups_skipped += 1
                logger.info(f"Skipping copy group '{group.get('name')}': leader account was not pushed.")
                continue
            created = await self.remote.insert(TABLE_COPY_GROUPS, [{
                "name": group.get("name"),
                "leader_id": leader_id,
                "is_active": bool(group.get("is_active")),
                "user_id": ctx.user_id,
            }], returning=True)
            if not created or created[0].get("id") is None:
                ctx.report.groups_skipped += 1
                logger.warning(f"Remote did not return the created copy group '{group.get('name')}'.")
                continue
            ctx.report.groups += 1
            remote_group_id = created[0]["id"]

            members = []
            for member in group.get("members") or []:
                follower_id = ctx.account_map.resolve(member.get("follower_account_id"))
                if follower_id is None:
                    continue
                members.append({
                    "group_id": remote_group_id,
                    "follower_account_id": follower_id,
                    "risk_multiplier": member.get("risk_multiplier") or 1.0,
                })
            if members:
                await self.remote.insert(TABLE_COPY_MEMBERS, members)
                ctx.report.members += len(members)

    # --- Independent groups ---
    async def _push_pill_colors(self, ctx: _PushContext) -> None:
        payloads = [{**clean_for_remote(c, PILL_COLOR_COLS), "user_id": ctx.user_id}
                    for c in ctx.snapshot.pill_colors]
        if payloads:
            await self.remote.upsert(TABLE_PILL_COLORS, payloads, on_conflict=PILL_COLOR_CONFLICT_KEY)
        ctx.report.colors = len(payloads)

    async def _push_daily_journals(self, ctx: _PushContext) -> None:
        payloads = [{**clean_for_remote(j, DAILY_JOURNAL_COLS), "user_id": ctx.user_id}
                    for j in ctx.snapshot.daily_journals]
        if payloads:
            await self.remote.insert(TABLE_DAILY_JOURNALS, payloads)
        ctx.report.journals = len(payloads)

    async def _push_profile(self, ctx: _PushContext) -> None:
        profile = ctx.snapshot.profile
        if not profile:
            return
        payload = {"id": ctx.user_id, **{k: profile[k] for k in PROFILE_FIELDS if k in profile}}
        await self.remote.upsert(TABLE_PROFILES, [payload], on_conflict=PROFILE_CONFLICT_KEY)
        ctx.report.profile = True

    def _groups(self, capabilities: CapabilityRecord) -> List[List[Tuple[str, Optional[StepFunc]]]]:
        copy_step = self._push_copy_groups if capabilities.copy_groups else None
        return [
            [("accounts", self._push_accounts), ("trades", self._push_trades), ("copy_groups", copy_step)],
            [("pill_colors", self._push_pill_colors)],
            [("daily_journals", self._push_daily_journals)],
            [("profile", self._push_profile)],
        ]

    async def run(self, user_id: str, capabilities: CapabilityRecord) -> PushReport:
        """Runs the whole pipeline. Never raises; the outcome of every step is in the report."""
        report = PushReport()
        start = time.perf_counter()
        try:
            try:
                snapshot = await self.read_snapshot(user_id)
                report.steps["snapshot"] = STEP_OK
            except Exception as e:
                logger.error(f"Push aborted: could not read local snapshot: {e}", exc_info=True)
                report.steps["snapshot"] = STEP_FAILED
                report.errors["snapshot"] = str(e)
                return report

            try:
                await self.wipe_remote(user_id, capabilities)
                report.steps["wipe"] = STEP_OK
            except Exception as e:
                logger.error(f"Push aborted: remote wipe failed: {e}", exc_info=True)
                report.steps["wipe"] = STEP_FAILED
                report.errors["wipe"] = str(e)
                return report

            ctx = _PushContext(user_id=user_id, capabilities=capabilities, snapshot=snapshot, report=report)
            for group in self._groups(capabilities):
                failed = False
                for name, step in group:
                    if step is None:
                        report.steps[name] = STEP_NOT_CAPABLE
                        continue
                    if failed:
                        report.steps[name] = STEP_ABORTED
                        continue
                    try:
                        await step(ctx)
                        report.steps[name] = STEP_OK
                    except Exception as e:
                        logger.error(f"Push step '{name}' failed: {e}", exc_info=True)
                        report.steps[name] = STEP_FAILED
                        report.errors[name] = str(e)
                        failed = True

            report.success = not report.errors
            logger.info(
                f"Push {'complete' if report.success else 'finished with errors'}: {report.accounts} accounts, "
                f"{report.trades} trades, {report.groups} groups, {report.colors} colors, {report.journals} journals.")
            return report
        finally:
            log_sync_cycle("push", "success" if report.success else "failure", time.perf_counter() - start)

#
# End of Push_Protocol.py
########################################################################################################################
