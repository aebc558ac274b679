# test_journal_library_unit.py
#
# TradeJournalService / JournalCollections against a mocked LocalCommandSurface.
#
# Imports
import unittest
from unittest.mock import AsyncMock, MagicMock
#
# Local Imports
from tradejournal.DB.Local_Commands import CommandResult, LocalCommandSurface
from tradejournal.Journal.Journal_Library import JournalCollections, TradeJournalService
#
#######################################################################################################################
#
# Functions:

USER = "user-123"


def _ok(data=None, id=None):
    return CommandResult(success=True, data=data, id=id)


def _fail(error="database is locked"):
    return CommandResult(success=False, error=error)


class TestJournalCollections(unittest.IsolatedAsyncioTestCase):

    def setUp(self):
        self.mock_local = MagicMock(spec=LocalCommandSurface)
        self.mock_local.get_accounts = AsyncMock(return_value=_ok([{"id": 1, "name": "Apex"}]))
        self.mock_local.get_trades = AsyncMock(return_value=_ok([{"id": 1, "pnl": 10.5}, {"id": 2, "pnl": None},
                                                                 {"id": 3, "pnl": "-2.5"}]))
        self.mock_local.get_pill_colors = AsyncMock(return_value=_ok([
            {"category": "model", "value": "ORB", "color": "success"},
        ]))
        self.mock_local.get_copy_groups = AsyncMock(return_value=_ok([]))
        self.mock_local.get_daily_journals = AsyncMock(return_value=_ok([]))
        self.mock_local.get_profile = AsyncMock(return_value=_ok({"name": "Jo"}))
        self.collections = JournalCollections(self.mock_local)

    async def test_reload_reads_current_owner(self):
        self.collections.set_owner(USER)
        await self.collections.reload()

        self.mock_local.get_trades.assert_awaited_once_with(USER)
        self.assertEqual(self.collections.pill_colors, {"model:ORB": "success"})
        self.assertEqual(self.collections.profile, {"name": "Jo"})
        self.assertAlmostEqual(self.collections.pnl_sum, 8.0)
        self.assertFalse(self.collections.is_empty)

    async def test_guest_view_has_no_profile(self):
        await self.collections.reload()
        self.mock_local.get_profile.assert_not_awaited()
        self.assertEqual(self.collections.profile, {})
        self.mock_local.get_accounts.assert_awaited_once_with(None)

    async def test_failed_reload_keeps_previous_contents(self):
        await self.collections.reload()
        self.mock_local.get_trades.return_value = _fail()

        await self.collections.reload_trades()

        self.assertEqual(len(self.collections.trades), 3)


class TestTradeJournalService(unittest.IsolatedAsyncioTestCase):

    def setUp(self):
        self.mock_local = MagicMock(spec=LocalCommandSurface)
        for name in ("get_accounts", "get_trades", "get_pill_colors", "get_copy_groups", "get_daily_journals"):
            setattr(self.mock_local, name, AsyncMock(return_value=_ok([])))
        self.mock_local.get_profile = AsyncMock(return_value=_ok({}))
        self.collections = JournalCollections(self.mock_local)
        self.collections.set_owner(USER)
        self.on_mutation = MagicMock()
        self.service = TradeJournalService(self.mock_local, self.collections, on_mutation=self.on_mutation)

    async def test_successful_write_reloads_then_notifies(self):
        self.mock_local.add_trade = AsyncMock(return_value=_ok(id=7))
        self.mock_local.get_trades.return_value = _ok([{"id": 7, "pnl": 5}])

        result = await self.service.add_trade({"account_id": 1, "date": "2024-05-01", "symbol": "NQ"})

        self.assertTrue(result.success)
        self.assertEqual(result.id, 7)
        self.assertEqual(self.collections.trades, [{"id": 7, "pnl": 5}])
        self.on_mutation.assert_called_once_with()

    async def test_failed_write_does_not_notify(self):
        self.mock_local.add_account = AsyncMock(return_value=_fail("Account name is required."))

        result = await self.service.add_account({"type": "Live"})

        self.assertFalse(result.success)
        self.on_mutation.assert_not_called()
        self.mock_local.get_accounts.assert_not_awaited()

    async def test_new_records_are_stamped_with_owner(self):
        self.mock_local.add_account = AsyncMock(return_value=_ok(id=1))
        self.mock_local.save_daily_journal = AsyncMock(return_value=_ok(id=1))
        self.mock_local.set_pill_color = AsyncMock(return_value=_ok(id=1))
        self.mock_local.add_copy_group = AsyncMock(return_value=_ok(id=1))
        self.mock_local.add_trade = AsyncMock(return_value=_ok(id=1))

        await self.service.add_account({"name": "Apex", "type": "Evaluation", "user_id": "spoofed"})
        await self.service.save_daily_journal({"date": "2024-05-01"})
        await self.service.set_pill_color("model", "ORB", "danger")
        await self.service.add_copy_group("Main", 1)
        await self.service.add_trade({"account_id": None, "date": "2024-05-01", "symbol": "CL"})

        self.mock_local.add_account.assert_awaited_once_with({"name": "Apex", "type": "Evaluation", "user_id": USER})
        self.mock_local.save_daily_journal.assert_awaited_once_with({"date": "2024-05-01", "user_id": USER})
        self.mock_local.set_pill_color.assert_awaited_once_with("model", "ORB", "danger", USER)
        self.mock_local.add_copy_group.assert_awaited_once_with("Main", 1, USER, True)
        self.mock_local.add_trade.assert_awaited_once_with(
            {"account_id": None, "date": "2024-05-01", "symbol": "CL", "user_id": USER})
        self.assertEqual(self.on_mutation.call_count, 5)

    async def test_delete_account_refreshes_dependents(self):
        self.mock_local.delete_account = AsyncMock(return_value=_ok(data=True))

        await self.service.delete_account(1)

        self.mock_local.get_accounts.assert_awaited()
        self.mock_local.get_trades.assert_awaited()
        self.mock_local.get_copy_groups.assert_awaited()

    async def test_update_profile_merges_and_requires_user(self):
        self.collections.profile = {"name": "Jo", "theme": "dark"}
        self.mock_local.save_profile = AsyncMock(return_value=_ok(data=True))

        await self.service.update_profile({"bio": "scalper"})
        self.mock_local.save_profile.assert_awaited_once_with(USER, {"name": "Jo", "theme": "dark", "bio": "scalper"})

        self.collections.set_owner(None)
        result = await self.service.update_profile({"bio": "x"})
        self.assertFalse(result.success)
        self.assertEqual(self.mock_local.save_profile.await_count, 1)

    async def test_works_without_mutation_callback(self):
        service = TradeJournalService(self.mock_local, self.collections)
        self.mock_local.delete_trade = AsyncMock(return_value=_ok(data=True))
        result = await service.delete_trade(3)
        self.assertTrue(result.success)

    def test_pill_color_lookup(self):
        self.collections.pill_colors = {"model:ORB": "success"}
        self.assertEqual(self.service.get_pill_color("model", "ORB"), "success")
        self.assertIsNone(self.service.get_pill_color("model", "VWAP"))

    def test_account_totals_respect_reset_date(self):
        self.collections.accounts = [{"id": 1, "reset_date": "2024-05-02"}, {"id": 2, "reset_date": None}]
        self.collections.trades = [
            {"account_id": 1, "date": "2024-05-01", "pnl": 100},
            {"account_id": 1, "date": "2024-05-02", "pnl": 50.25},
            {"account_id": 1, "date": "2024-05-03", "pnl": -20},
            {"account_id": 2, "date": "2024-01-01", "pnl": 10},
        ]

        self.assertEqual(self.service.account_totals(1), {"trades": 2, "pnl": 30.25})
        self.assertEqual(self.service.account_totals(2), {"trades": 1, "pnl": 10.0})
        self.assertEqual(self.service.account_totals(99), {"trades": 0, "pnl": 0})


if __name__ == "__main__":
    unittest.main()

#
# End of test_journal_library_unit.py
#######################################################################################################################
