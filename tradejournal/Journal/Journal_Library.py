# Journal_Library.py
# Description: Service layer for journal mutations and the in-memory collections the app reads from.
#
# Imports
import logging
from typing import Any, Callable, Dict, List, Optional
#
# Third-Party Imports
#
# Local Imports
from tradejournal.DB.Local_Commands import CommandResult, LocalCommandSurface
#
#######################################################################################################################
#
# Functions:

logger = logging.getLogger(__name__)


class JournalCollections:
    """
    In-memory view of the current owner's journal: trades, accounts, pill colors
    (keyed "category:value"), copy groups, daily journals and profile.

    A failed reload logs and keeps the previous contents of that collection.
    """

    def __init__(self, local: LocalCommandSurface):
        self.local = local
        self.user_id: Optional[str] = None
        self.trades: List[Dict[str, Any]] = []
        self.accounts: List[Dict[str, Any]] = []
        self.pill_colors: Dict[str, str] = {}
        self.copy_groups: List[Dict[str, Any]] = []
        self.daily_journals: List[Dict[str, Any]] = []
        self.profile: Dict[str, Any] = {}

    @property
    def pnl_sum(self) -> float:
        return sum(float(t.get("pnl") or 0) for t in self.trades)

    @property
    def is_empty(self) -> bool:
        return not self.trades and not self.accounts

    def _take(self, name: str, result: CommandResult) -> Optional[Any]:
        if not result.success:
            logger.error(f"Reloading {name} failed: {result.error}")
            return None
        return result.data

    async def reload_trades(self) -> None:
        data = self._take("trades", await self.local.get_trades(self.user_id))
        if data is not None:
            self.trades = data

    async def reload_accounts(self) -> None:
        data = self._take("accounts", await self.local.get_accounts(self.user_id))
        if data is not None:
            self.accounts = data

    async def reload_pill_colors(self) -> None:
        data = self._take("pill colors", await self.local.get_pill_colors(self.user_id))
        if data is not None:
            self.pill_colors = {f"{c['category']}:{c['value']}": c["color"] for c in data}

    async def reload_copy_groups(self) -> None:
        data = self._take("copy groups", await self.local.get_copy_groups(self.user_id))
        if data is not None:
            self.copy_groups = data

    async def reload_daily_journals(self) -> None:
        data = self._take("daily journals", await self.local.get_daily_journals(self.user_id))
        if data is not None:
            self.daily_journals = data

    async def reload_profile(self) -> None:
        if not self.user_id:
            self.profile = {}
            return
        data = self._take("profile", await self.local.get_profile(self.user_id))
        self.profile = data or {}

    def set_owner(self, user_id: Optional[str]) -> None:
        """Re-targets the view; call reload() afterwards."""
        self.user_id = user_id

    async def reload(self) -> None:
        await self.reload_accounts()
        await self.reload_trades()
        await self.reload_pill_colors()
        await self.reload_copy_groups()
        await self.reload_daily_journals()
        await self.reload_profile()
        logger.debug(f"Collections reloaded for owner {self.user_id or 'guest'}: "
                     f"{len(self.accounts)} accounts, {len(self.trades)} trades.")


class TradeJournalService:
    """
    Entry point for every local write the app makes.

    Each successful write refreshes the affected collections and then calls
    `on_mutation` (normally SyncEngine.notify_mutation). Failed writes change nothing
    and do not notify. New records are stamped with the current owner.
    """

    def __init__(self, local: LocalCommandSurface, collections: JournalCollections,
                 on_mutation: Optional[Callable[[], None]] = None):
        self.local = local
        self.collections = collections
        self.on_mutation = on_mutation

    @property
    def user_id(self) -> Optional[str]:
        return self.collections.user_id

    async def _after_write(self, result: CommandResult, *reloads: Callable) -> CommandResult:
        if not result.success:
            return result
        for reload in reloads:
            await reload()
        if self.on_mutation is not None:
            self.on_mutation()
        return result

    # --- Trades ---
    async def add_trade(self, trade: Dict[str, Any]) -> CommandResult:
        result = await self.local.add_trade({**trade, "user_id": self.user_id})
        return await self._after_write(result, self.collections.reload_trades)

    async def update_trade(self, trade_id: int, updates: Dict[str, Any]) -> CommandResult:
        result = await self.local.update_trade(trade_id, updates)
        return await self._after_write(result, self.collections.reload_trades)

    async def delete_trade(self, trade_id: int) -> CommandResult:
        result = await self.local.delete_trade(trade_id)
        return await self._after_write(result, self.collections.reload_trades)

    # --- Accounts ---
    async def add_account(self, account: Dict[str, Any]) -> CommandResult:
        result = await self.local.add_account({**account, "user_id": self.user_id})
        return await self._after_write(result, self.collections.reload_accounts)

    async def update_account(self, account_id: int, updates: Dict[str, Any]) -> CommandResult:
        result = await self.local.update_account(account_id, updates)
        return await self._after_write(result, self.collections.reload_accounts, self.collections.reload_trades)

    async def delete_account(self, account_id: int) -> CommandResult:
        result = await self.local.delete_account(account_id)
        return await self._after_write(result, self.collections.reload_accounts,
                                       self.collections.reload_trades, self.collections.reload_copy_groups)

    # --- Pill colors ---
    def get_pill_color(self, category: str, value: str) -> Optional[str]:
        return self.collections.pill_colors.get(f"{category}:{value}")

    async def set_pill_color(self, category: str, value: str, color: str) -> CommandResult:
        result = await self.local.set_pill_color(category, value, color, self.user_id)
        return await self._after_write(result, self.collections.reload_pill_colors)

    # --- Daily journals ---
    async def save_daily_journal(self, journal: Dict[str, Any]) -> CommandResult:
        result = await self.local.save_daily_journal({**journal, "user_id": self.user_id})
        return await self._after_write(result, self.collections.reload_daily_journals)

    # --- Copy groups ---
    async def add_copy_group(self, name: str, leader_account_id: int, is_active: bool = True) -> CommandResult:
        result = await self.local.add_copy_group(name, leader_account_id, self.user_id, is_active)
        return await self._after_write(result, self.collections.reload_copy_groups)

    async def update_copy_group(self, group_id: int, updates: Dict[str, Any]) -> CommandResult:
        result = await self.local.update_copy_group(group_id, updates)
        return await self._after_write(result, self.collections.reload_copy_groups)

    async def delete_copy_group(self, group_id: int) -> CommandResult:
        result = await self.local.delete_copy_group(group_id)
        return await self._after_write(result, self.collections.reload_copy_groups)

    async def add_copy_member(self, group_id: int, follower_account_id: int,
                              risk_multiplier: float = 1.0) -> CommandResult:
        result = await self.local.add_copy_member(group_id, follower_account_id, risk_multiplier)
        return await self._after_write(result, self.collections.reload_copy_groups)

    async def remove_copy_member(self, member_id: int) -> CommandResult:
        result = await self.local.remove_copy_member(member_id)
        return await self._after_write(result, self.collections.reload_copy_groups)

    # --- Profile ---
    async def update_profile(self, updates: Dict[str, Any]) -> CommandResult:
        if not self.user_id:
            return CommandResult(success=False, error="Profiles are only stored for signed-in users.")
        merged = {**self.collections.profile, **updates}
        result = await self.local.save_profile(self.user_id, merged)
        return await self._after_write(result, self.collections.reload_profile)

    # --- Derived ---
    def account_totals(self, account_id: int) -> Dict[str, Any]:
        """Trade count and PnL for an account, counting only trades on or after its reset date."""
        account = next((a for a in self.collections.accounts if a["id"] == account_id), None)
        reset_date = (account or {}).get("reset_date")
        trades = [t for t in self.collections.trades
                  if t.get("account_id") == account_id and (not reset_date or str(t.get("date")) >= str(reset_date))]
        return {"trades": len(trades), "pnl": round(sum(float(t.get("pnl") or 0) for t in trades), 2)}

#
# End of Journal_Library.py
#######################################################################################################################
