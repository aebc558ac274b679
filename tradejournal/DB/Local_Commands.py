# Local_Commands.py
# Description: Async request/response command surface over the local journal database.
#
# Imports
import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional
#
# Third-Party Libraries
from pydantic import BaseModel
#
# Local Imports
from tradejournal.DB.Journal_DB import TradeJournalDB, JournalDBError, InputError
#
########################################################################################################################
#
# Functions:

logger = logging.getLogger(__name__)


class CommandResult(BaseModel):
    """Uniform envelope returned by every local command. Check `success` before reading `data`."""
    success: bool
    data: Any = None
    id: Optional[int] = None
    error: Optional[str] = None


class LocalCommandSurface:
    """
    Runs TradeJournalDB operations off the event loop and wraps every outcome in a CommandResult.

    Store errors never escape this class. Each call is an awaited point, so a slow
    disk suspends only the awaiting task.
    """

    def __init__(self, db: TradeJournalDB):
        self.db = db

    async def _run(self, command: str, func: Callable, *args, **kwargs) -> CommandResult:
        try:
            result = await asyncio.to_thread(func, *args, **kwargs)
        except (JournalDBError, InputError) as e:
            logger.error(f"Local command '{command}' failed: {e}")
            return CommandResult(success=False, error=str(e))
        if isinstance(result, int) and not isinstance(result, bool):
            return CommandResult(success=True, id=result)
        return CommandResult(success=True, data=result)

    # --- Reads ---
    async def get_accounts(self, user_id: Optional[str]) -> CommandResult:
        return await self._run("get-accounts", self.db.get_accounts, user_id)

    async def get_trades(self, user_id: Optional[str]) -> CommandResult:
        return await self._run("get-trades", self.db.get_trades, user_id)

    async def get_pill_colors(self, user_id: Optional[str]) -> CommandResult:
        return await self._run("get-pill-colors", self.db.get_pill_colors, user_id)

    async def get_copy_groups(self, user_id: Optional[str]) -> CommandResult:
        return await self._run("get-copy-groups", self.db.get_copy_groups, user_id)

    async def get_daily_journals(self, user_id: Optional[str]) -> CommandResult:
        return await self._run("get-daily-journals", self.db.get_daily_journals, user_id)

    async def get_profile(self, user_id: str) -> CommandResult:
        return await self._run("get-profile", self.db.get_profile, user_id)

    async def count_records(self, user_id: Optional[str]) -> CommandResult:
        return await self._run("count-records", self.db.count_records, user_id)

    # --- Accounts ---
    async def add_account(self, account: Dict[str, Any]) -> CommandResult:
        return await self._run("add-account", self.db.add_account, account)

    async def update_account(self, account_id: int, updates: Dict[str, Any]) -> CommandResult:
        return await self._run("update-account", self.db.update_account, account_id, updates)

    async def delete_account(self, account_id: int) -> CommandResult:
        return await self._run("delete-account", self.db.delete_account, account_id)

    # --- Trades ---
    async def add_trade(self, trade: Dict[str, Any]) -> CommandResult:
        return await self._run("add-trade", self.db.add_trade, trade)

    async def update_trade(self, trade_id: int, updates: Dict[str, Any]) -> CommandResult:
        return await self._run("update-trade", self.db.update_trade, trade_id, updates)

    async def delete_trade(self, trade_id: int) -> CommandResult:
        return await self._run("delete-trade", self.db.delete_trade, trade_id)

    # --- Pill colors & journals ---
    async def set_pill_color(self, category: str, value: str, color: Optional[str],
                             user_id: Optional[str] = None) -> CommandResult:
        return await self._run("set-pill-color", self.db.set_pill_color, category, value, color, user_id)

    async def save_daily_journal(self, journal: Dict[str, Any]) -> CommandResult:
        return await self._run("save-daily-journal", self.db.save_daily_journal, journal)

    # --- Copy groups ---
    async def add_copy_group(self, name: str, leader_account_id: int, user_id: Optional[str] = None,
                             is_active: bool = True) -> CommandResult:
        return await self._run("add-copy-group", self.db.add_copy_group, name, leader_account_id, user_id, is_active)

    async def update_copy_group(self, group_id: int, updates: Dict[str, Any]) -> CommandResult:
        return await self._run("update-copy-group", self.db.update_copy_group, group_id, updates)

    async def delete_copy_group(self, group_id: int) -> CommandResult:
        return await self._run("delete-copy-group", self.db.delete_copy_group, group_id)

    async def add_copy_member(self, group_id: int, follower_account_id: int,
                              risk_multiplier: Optional[float] = None) -> CommandResult:
        return await self._run("add-copy-member", self.db.add_copy_member, group_id, follower_account_id, risk_multiplier)

    async def remove_copy_member(self, member_id: int) -> CommandResult:
        return await self._run("remove-copy-member", self.db.remove_copy_member, member_id)

    # --- Profile ---
    async def save_profile(self, user_id: str, profile: Dict[str, Any]) -> CommandResult:
        return await self._run("save-profile", self.db.save_profile, user_id, profile)

    # --- Ownership ---
    async def delete_user_data(self, user_id: str) -> CommandResult:
        return await self._run("delete-user-data", self.db.delete_user_data, user_id)

    async def delete_guest_data(self) -> CommandResult:
        return await self._run("delete-guest-data", self.db.delete_guest_data)

    async def claim_local_data(self, user_id: str) -> CommandResult:
        return await self._run("claim-local-data", self.db.claim_local_data, user_id)

    # --- Markers ---
    async def get_marker(self, name: str) -> CommandResult:
        return await self._run("get-marker", self.db.get_marker, name)

    async def set_marker(self, name: str, value: str) -> CommandResult:
        return await self._run("set-marker", self.db.set_marker, name, value)

    async def clear_marker(self, name: str) -> CommandResult:
        return await self._run("clear-marker", self.db.clear_marker, name)


def rows(result: CommandResult) -> List[Dict[str, Any]]:
    """Returns `data` as a list, or raises JournalDBError when the command failed."""
    if not result.success:
        raise JournalDBError(result.error or "local command failed")
    return list(result.data or [])

#
# End of Local_Commands.py
########################################################################################################################
