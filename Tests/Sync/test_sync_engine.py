# test_sync_engine.py
#
# Engine-level behaviour: debouncing, the single-cycle guard, identity changes.
#
# Imports
import asyncio
#
# Third-Party Imports
import pytest
#
# Local Imports
from tradejournal.config import SyncSettings
from tradejournal.Constants import MSG_BUSY, MSG_NO_REMOTE_DATA, MSG_NO_USER, MSG_SYNC_DISABLED
from tradejournal.Journal.Journal_Library import TradeJournalService
from tradejournal.Sync.Capability_Prober import CapabilityRecord
from tradejournal.Sync.Sync_Engine import SyncEngine
from tradejournal.Sync.Sync_Scheduler import SyncPhase
#
#######################################################################################################################
#
# Functions:

USER = "user-123"


async def _wait_until_syncing(engine):
    for _ in range(100):
        if engine.is_syncing:
            return
        await asyncio.sleep(0)
    raise AssertionError("sync cycle never started")


def _push_count(fake_remote):
    # Every push starts by wiping the user's trades
    return fake_remote.calls_for("delete").count("trades")


class TestDebounce:
    async def test_burst_of_mutations_pushes_once(self, engine, fake_remote, clock, make_ledger):
        make_ledger(USER)
        await engine.set_user(USER, access_token="jwt")

        for _ in range(10):
            engine.notify_mutation()
            clock.advance(0.02)
        assert engine.phase == SyncPhase.SCHEDULED
        assert _push_count(fake_remote) == 0

        clock.advance(1.0)
        await engine.drain()

        assert _push_count(fake_remote) == 1
        assert len(fake_remote.tables["trades"]) == 3
        assert engine.phase == SyncPhase.IDLE

    async def test_separate_bursts_push_separately(self, engine, fake_remote, clock, make_ledger):
        make_ledger(USER)
        await engine.set_user(USER)

        engine.notify_mutation()
        clock.advance(1.5)
        await engine.drain()
        engine.notify_mutation()
        clock.advance(1.5)
        await engine.drain()

        assert _push_count(fake_remote) == 2

    async def test_service_writes_schedule_a_push(self, engine, local, collections, fake_remote, clock):
        await engine.set_user(USER)
        service = TradeJournalService(local, collections, on_mutation=engine.notify_mutation)

        account = await service.add_account({"name": "Topstep", "type": "Evaluation"})
        await service.add_trade({"account_id": account.id, "date": "2024-06-01", "symbol": "NQ", "pnl": 75})
        await service.set_pill_color("model", "ORB", "success")
        clock.advance(1.0)
        await engine.drain()

        assert _push_count(fake_remote) == 1
        assert [a["name"] for a in fake_remote.tables["accounts"]] == ["Topstep"]
        assert fake_remote.tables["trades"][0]["account_id"] == fake_remote.tables["accounts"][0]["id"]

    async def test_no_user_no_schedule(self, engine, clock, fake_remote):
        engine.notify_mutation()
        assert engine.phase == SyncPhase.IDLE
        clock.advance(5)
        await engine.drain()
        assert fake_remote.calls == []

    async def test_timer_firing_during_pull_is_dropped(self, engine, fake_remote, clock):
        await engine.set_user(USER)
        fake_remote.gate = asyncio.Event()
        pull_task = asyncio.create_task(engine.sync_now())
        await _wait_until_syncing(engine)

        engine.notify_mutation()
        clock.advance(1.0)
        fake_remote.gate.set()
        result = await pull_task
        await engine.drain()

        assert result.message == MSG_NO_REMOTE_DATA
        assert _push_count(fake_remote) == 0
        assert engine.phase == SyncPhase.IDLE


class TestGuard:
    async def test_manual_pull_during_push_is_busy(self, engine, fake_remote, make_ledger):
        make_ledger(USER)
        await engine.set_user(USER)
        fake_remote.gate = asyncio.Event()

        push_task = asyncio.create_task(engine.push_now())
        await _wait_until_syncing(engine)
        busy = await engine.sync_now()
        fake_remote.gate.set()
        pushed = await push_task

        assert busy.success is False and busy.busy is True
        assert busy.message == MSG_BUSY
        assert pushed.success, pushed.error
        assert not engine.is_syncing

    async def test_concurrent_calls_run_exactly_one_cycle(self, engine, fake_remote, make_ledger):
        make_ledger(USER)
        await engine.set_user(USER)
        fake_remote.gate = asyncio.Event()

        tasks = [asyncio.create_task(engine.push_now()), asyncio.create_task(engine.sync_now()),
                 asyncio.create_task(engine.push_now())]
        await _wait_until_syncing(engine)
        fake_remote.gate.set()
        results = await asyncio.gather(*tasks)

        assert [r.busy for r in results] == [False, True, True]
        assert _push_count(fake_remote) == 1

    async def test_guard_released_after_failure(self, engine, fake_remote, make_ledger):
        make_ledger(USER)
        await engine.set_user(USER)
        fake_remote.unreachable = True

        failed = await engine.push_now()
        assert failed.success is False
        assert "wipe" in failed.error
        assert not engine.is_syncing

        fake_remote.unreachable = False
        assert (await engine.push_now()).success

    async def test_push_result_carries_report(self, engine, make_ledger):
        make_ledger(USER)
        await engine.set_user(USER)
        result = await engine.push_now()
        assert result.message == "Pushed 2 accounts & 3 trades to cloud"
        assert result.details["groups"] == 1

    async def test_refusals(self, local, fake_remote, collections, clock):
        disabled = SyncEngine(local, fake_remote, collections, settings=SyncSettings(enabled=False), clock=clock)
        collections.set_owner(USER)
        assert (await disabled.push_now()).message == MSG_SYNC_DISABLED
        assert (await disabled.sync_now()).message == MSG_SYNC_DISABLED
        disabled.notify_mutation()
        assert disabled.phase == SyncPhase.IDLE

        collections.set_owner(None)
        enabled = SyncEngine(local, fake_remote, collections, clock=clock)
        result = await enabled.sync_now()
        assert result.success is False and result.message == MSG_NO_USER
        assert fake_remote.calls == []


class TestIdentity:
    async def test_sign_in_probes_capabilities(self, engine, fake_remote):
        fake_remote.set_capabilities(advanced_trades=True, advanced_accounts=False, copy_groups=False)
        summary = await engine.set_user(USER, access_token="jwt")

        assert summary["changed"] is True
        assert engine.capabilities.probed is True
        assert engine.capabilities.advanced_accounts is False
        assert fake_remote.access_token == "jwt"

    async def test_same_user_only_refreshes_token(self, engine, fake_remote):
        await engine.set_user(USER, access_token="old")
        calls = len(fake_remote.calls)
        summary = await engine.set_user(USER, access_token="new")
        assert summary == {"changed": False}
        assert fake_remote.access_token == "new"
        assert len(fake_remote.calls) == calls

    async def test_sign_out_cancels_pending_push(self, engine, fake_remote, clock, collections, make_ledger):
        make_ledger(USER)
        await engine.set_user(USER, access_token="jwt")
        engine.notify_mutation()

        await engine.set_user(None)
        clock.advance(5)
        await engine.drain()

        assert _push_count(fake_remote) == 0
        assert engine.capabilities == CapabilityRecord()
        assert collections.user_id is None
        assert fake_remote.access_token is None

    async def test_import_listener_receives_event(self, engine):
        events = []
        engine.add_import_listener(lambda name, payload: events.append(payload["user_id"]))
        await engine.set_user(USER)
        assert events == [USER]

    async def test_claim_guest_data_schedules_push(self, engine, make_ledger, collections, clock, fake_remote):
        await engine.set_user(USER)
        make_ledger(None)

        result = await engine.claim_guest_data()

        assert result.success
        assert len(collections.accounts) == 2
        assert engine.phase == SyncPhase.SCHEDULED
        clock.advance(1.0)
        await engine.drain()
        assert len(fake_remote.tables["accounts"]) == 2

    async def test_claim_without_user(self, engine):
        result = await engine.claim_guest_data()
        assert result.success is False
        assert result.error == MSG_NO_USER


class TestLifecycleOfEngine:
    async def test_start_defers_probe(self, engine, fake_remote, clock, collections):
        collections.set_owner(USER)
        engine.start()

        clock.advance(4.9)
        await engine.drain()
        assert fake_remote.calls == []

        clock.advance(0.2)
        await engine.drain()
        assert engine.capabilities.probed is True

    async def test_sign_in_replaces_deferred_capability_check(self, engine, fake_remote, clock):
        engine.start()
        await engine.set_user(USER, access_token="jwt")
        assert len(fake_remote.calls_for("select")) == 3
        assert clock.pending == 0

        clock.advance(6)
        await engine.drain()

        assert len(fake_remote.calls_for("select")) == 3

    async def test_start_without_user_skips_probe(self, engine, fake_remote, clock):
        engine.start()
        clock.advance(10)
        await engine.drain()
        assert fake_remote.calls == []
        assert engine.capabilities.probed is False

    async def test_shutdown_closes_owned_remote(self, local, fake_remote, collections, sync_settings, clock):
        engine = SyncEngine(local, fake_remote, collections, settings=sync_settings, clock=clock, owns_remote=True)
        collections.set_owner(USER)
        engine.notify_mutation()

        await engine.shutdown()

        assert fake_remote.closed is True
        assert clock.pending == 0
        assert engine.phase == SyncPhase.IDLE

    async def test_end_to_end_round_trip(self, local, collections, journal_db, fake_remote, make_ledger,
                                         sync_settings, clock, tmp_path):
        # Device A pushes, device B (fresh store) pulls the same user's data
        make_ledger(USER)
        device_a = SyncEngine(local, fake_remote, collections, settings=sync_settings, clock=clock)
        await device_a.set_user(USER)
        assert (await device_a.push_now()).success

        from tradejournal.DB.Journal_DB import TradeJournalDB
        from tradejournal.DB.Local_Commands import LocalCommandSurface
        from tradejournal.Journal.Journal_Library import JournalCollections

        db_b = TradeJournalDB(tmp_path / "device_b.sqlite", "device_b")
        local_b = LocalCommandSurface(db_b)
        collections_b = JournalCollections(local_b)
        device_b = SyncEngine(local_b, fake_remote, collections_b, settings=sync_settings, clock=clock)
        await device_b.set_user(USER)

        result = await device_b.sync_now()

        assert result.message == "Synced 2 accounts & 3 trades from cloud"
        assert collections_b.pnl_sum == pytest.approx(collections.pnl_sum)
        assert len(collections_b.copy_groups) == 1
        assert len(collections_b.copy_groups[0]["members"]) == 1
        db_b.close_all_connections()

#
# End of test_sync_engine.py
#######################################################################################################################
