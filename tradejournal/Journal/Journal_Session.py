# Journal_Session.py
# Description: Builds the per-session object graph (store, collections, service, sync engine) from configuration.
#
# Imports
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Union
#
# Third-Party Imports
from loguru import logger
#
# Local Imports
from tradejournal.config import LOCAL_CLIENT_ID, get_journal_db_path, get_sync_settings, load_settings
from tradejournal.DB.Journal_DB import TradeJournalDB
from tradejournal.DB.Local_Commands import LocalCommandSurface
from tradejournal.Journal.Journal_Library import JournalCollections, TradeJournalService
from tradejournal.remote_api.client import RemoteRelationalClient
from tradejournal.Sync.Sync_Engine import SyncEngine
from tradejournal.Sync.Sync_Scheduler import Clock
#
#######################################################################################################################
#
# Functions:


@dataclass
class JournalSession:
    db: TradeJournalDB
    local: LocalCommandSurface
    collections: JournalCollections
    service: TradeJournalService
    engine: SyncEngine

    async def close(self) -> None:
        await self.engine.shutdown()
        self.db.close_all_connections()
        logger.info("Journal session closed.")


async def open_journal_session(config: Optional[Dict[str, Any]] = None,
                               db_path: Optional[Union[str, Path]] = None,
                               remote: Optional[RemoteRelationalClient] = None,
                               clock: Optional[Clock] = None) -> JournalSession:
    """
    Opens the local journal and wires the service layer to a sync engine.

    The session starts in the guest view; call `session.engine.set_user(...)` once
    an identity is known. Without a configured remote URL (and no injected client)
    sync stays disabled and the journal works purely locally.

    Args:
        config: Settings dict as returned by `load_settings()`. Loaded when omitted.
        db_path: Journal database file. Defaults to `[database].journal_db_path`.
        remote: Pre-built remote client. When given, the caller keeps ownership of it.
        clock: Clock for the debounce timer and probe delay.
    """
    config = config if config is not None else load_settings()
    settings = get_sync_settings(config)

    db_file = Path(db_path).expanduser() if db_path else get_journal_db_path()
    db_file.parent.mkdir(parents=True, exist_ok=True)
    db = TradeJournalDB(db_file, LOCAL_CLIENT_ID)
    local = LocalCommandSurface(db)
    collections = JournalCollections(local)

    owns_remote = remote is None
    if remote is None:
        if not settings.remote_url:
            logger.warning("No remote URL configured; running with sync disabled.")
            settings = settings.model_copy(update={"enabled": False})
        remote = RemoteRelationalClient(settings.remote_url, settings.remote_api_key,
                                        timeout=settings.request_timeout)

    engine = SyncEngine(local, remote, collections, settings=settings, clock=clock, owns_remote=owns_remote)
    service = TradeJournalService(local, collections, on_mutation=engine.notify_mutation)

    await collections.reload()
    engine.start()
    logger.info(f"Journal session opened on {db_file} (sync {'enabled' if settings.enabled else 'disabled'}).")
    return JournalSession(db=db, local=local, collections=collections, service=service, engine=engine)

#
# End of Journal_Session.py
#######################################################################################################################
