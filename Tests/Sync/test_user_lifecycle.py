# test_user_lifecycle.py
#
#
# Imports
#
# Third-Party Imports
import pytest
#
# Local Imports
from tradejournal.Constants import EVENT_IMPORT_AVAILABLE, MARKER_PULL_IN_PROGRESS
from tradejournal.DB.Local_Commands import CommandResult
from tradejournal.Sync.User_Lifecycle import UserLifecycle
#
#######################################################################################################################
#
# Functions:

USER = "user-123"


@pytest.fixture
def lifecycle(local, collections):
    return UserLifecycle(local, collections)


@pytest.fixture
def events(lifecycle):
    received = []
    lifecycle.add_import_listener(lambda name, payload: received.append((name, payload)))
    return received


async def test_sign_in_deletes_guest_data_by_default(lifecycle, journal_db, make_ledger, collections):
    make_ledger(None)

    summary = await lifecycle.sign_in(USER)

    assert summary["guest_deleted"]["accounts"] == 2
    assert journal_db.count_records(None) == {"accounts": 0, "trades": 0}
    assert collections.user_id == USER


async def test_sign_in_with_no_local_data_offers_import(lifecycle, events):
    summary = await lifecycle.sign_in(USER)

    assert summary["import_available"] is True
    assert events == [(EVENT_IMPORT_AVAILABLE, {"user_id": USER, "interrupted": False})]


async def test_sign_in_with_existing_data_stays_quiet(lifecycle, events, make_ledger, collections):
    make_ledger(USER)

    summary = await lifecycle.sign_in(USER)

    assert summary["import_available"] is False
    assert events == []
    assert len(collections.trades) == 3


async def test_interrupted_import_is_announced(lifecycle, events, journal_db, make_ledger):
    make_ledger(USER)
    journal_db.set_marker(MARKER_PULL_IN_PROGRESS, USER)

    summary = await lifecycle.sign_in(USER)

    assert summary["import_available"] is True
    assert events[0][1]["interrupted"] is True
    # No automatic retry: the marker stays until a pull completes
    assert journal_db.get_marker(MARKER_PULL_IN_PROGRESS) == USER


async def test_sign_in_with_claim_keeps_guest_work(lifecycle, events, journal_db, make_ledger, collections):
    make_ledger(None)

    summary = await lifecycle.sign_in(USER, claim_guest_data=True)

    assert summary["claimed"]["claimed"]["accounts"] == 2
    assert journal_db.count_records(USER) == {"accounts": 2, "trades": 3}
    assert len(collections.accounts) == 2
    assert events == []


async def test_sign_in_with_claim_keeps_trades_without_account(lifecycle, journal_db, make_ledger, collections):
    make_ledger(None)
    journal_db.add_trade({"account_id": None, "date": "2024-05-04", "symbol": "CL", "pnl": 12})

    summary = await lifecycle.sign_in(USER, claim_guest_data=True)

    assert summary["claimed"]["claimed"]["trades"] == 1
    assert summary["guest_deleted"]["trades"] == 0
    assert journal_db.count_records(USER) == {"accounts": 2, "trades": 4}
    assert "CL" in [t["symbol"] for t in collections.trades]


async def test_marker_left_by_another_user_is_not_an_interruption(lifecycle, events, journal_db, make_ledger):
    make_ledger(USER)
    journal_db.set_marker(MARKER_PULL_IN_PROGRESS, "user-456")

    summary = await lifecycle.sign_in(USER)

    assert summary["import_available"] is False
    assert events == []


async def test_claim_purges_skipped_duplicates(lifecycle, journal_db):
    journal_db.set_pill_color("model", "ORB", "danger", USER)
    journal_db.set_pill_color("model", "ORB", "success", None)

    await lifecycle.sign_in(USER, claim_guest_data=True)

    assert journal_db.get_pill_colors(None) == []
    assert [c["color"] for c in journal_db.get_pill_colors(USER)] == ["danger"]


async def test_partial_claim_keeps_unclaimed_rows(lifecycle, local, journal_db, make_ledger, mocker):
    make_ledger(None)
    mocker.patch.object(local, "claim_local_data", return_value=CommandResult(
        success=True, data={"claimed": {"accounts": 0}, "errors": {"accounts": "disk I/O error"}}))

    await lifecycle.sign_in(USER, claim_guest_data=True)

    assert journal_db.count_records(None) == {"accounts": 2, "trades": 3}


async def test_sign_out_shows_guest_view(lifecycle, make_ledger, collections):
    make_ledger(USER)
    make_ledger(None, prefix="guest ")
    await lifecycle.sign_in(USER, claim_guest_data=False)
    make_ledger(None, prefix="new guest ")

    await lifecycle.sign_out()

    assert collections.user_id is None
    assert sorted(a["name"] for a in collections.accounts) == ["new guest Apex 50k", "new guest Live"]
    assert collections.profile == {}


async def test_listener_errors_do_not_break_sign_in(lifecycle):
    def broken(name, payload):
        raise RuntimeError("listener bug")

    received = []
    lifecycle.add_import_listener(broken)
    lifecycle.add_import_listener(lambda name, payload: received.append(name))

    summary = await lifecycle.sign_in(USER)

    assert summary["import_available"] is True
    assert received == [EVENT_IMPORT_AVAILABLE]

#
# End of test_user_lifecycle.py
#######################################################################################################################
