# Sync_Engine.py
# Description: Session-level facade that ties mutations, the debounce timer and the sync protocols together.
#
"""
Sync_Engine.py
--------------

One SyncEngine per session. It owns the sync state (guard + scheduled flag), the
debounce timer, the current capability record and the push/pull protocols.

- Local writes call `notify_mutation()`; a burst of writes closer together than
  the debounce interval results in a single push.
- `sync_now()` is the manual "import from cloud" action (a pull).
- At most one push or pull runs at a time. A timer that fires during a cycle is
  dropped; a manual call during a cycle is answered with a busy result.
- Nothing here raises to the caller: every outcome is a SyncResult.
"""
# Imports
import asyncio
from dataclasses import asdict
from typing import Any, Dict, Optional, Set
#
# Third-Party Libraries
from loguru import logger
#
# Local Imports
from tradejournal.config import SyncSettings
from tradejournal.Constants import MSG_BUSY, MSG_NO_USER, MSG_SYNC_DISABLED
from tradejournal.DB.Local_Commands import CommandResult, LocalCommandSurface
from tradejournal.Journal.Journal_Library import JournalCollections
from tradejournal.Metrics.metrics_logger import log_counter
from tradejournal.remote_api.client import RemoteRelationalClient
from tradejournal.Sync.Capability_Prober import CapabilityProber, CapabilityRecord
from tradejournal.Sync.Pull_Protocol import PullProtocol
from tradejournal.Sync.Push_Protocol import PushProtocol
from tradejournal.Sync.Sync_Scheduler import Clock, DebounceTimer, LoopClock, SyncPhase, SyncState
from tradejournal.Sync.Sync_Schemas import SyncResult
from tradejournal.Sync.User_Lifecycle import ImportListener, UserLifecycle
#
########################################################################################################################
#
# Functions:

KIND_PUSH = "push"
KIND_PULL = "pull"


class SyncEngine:
    def __init__(self, local: LocalCommandSurface, remote: RemoteRelationalClient, collections: JournalCollections,
                 settings: Optional[SyncSettings] = None, clock: Optional[Clock] = None, owns_remote: bool = False):
        self.local = local
        self.remote = remote
        self.collections = collections
        self.settings = settings or SyncSettings()
        self.clock = clock or LoopClock()
        self.owns_remote = owns_remote

        self.state = SyncState()
        self.timer = DebounceTimer(self.clock, self.settings.debounce_seconds, self._on_timer)
        self._capabilities = CapabilityRecord()
        self.prober = CapabilityProber(remote)
        self.push_protocol = PushProtocol(local, remote)
        self.pull_protocol = PullProtocol(local, remote, collections, pnl_epsilon=self.settings.pnl_epsilon)
        self.lifecycle = UserLifecycle(local, collections)

        self._probe_handle = None
        self._tasks: Set[asyncio.Task] = set()
        logger.info(f"SyncEngine initialized (enabled={self.settings.enabled}, "
                    f"debounce={self.settings.debounce_seconds}s, remote={self.remote.base_url or 'unset'}).")

    # --- Introspection ---
    @property
    def user_id(self) -> Optional[str]:
        return self.collections.user_id

    @property
    def is_syncing(self) -> bool:
        return self.state.syncing

    @property
    def phase(self) -> SyncPhase:
        return self.state.phase

    @property
    def capabilities(self) -> CapabilityRecord:
        return self._capabilities

    def add_import_listener(self, callback: ImportListener) -> None:
        self.lifecycle.add_import_listener(callback)

    # --- Background tasks ---
    def _spawn(self, coro, name: str) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def drain(self) -> None:
        """Waits for every background task the engine started, including ones started while waiting."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # --- Capabilities ---
    def start(self) -> None:
        """Schedules the deferred capability probe. The probe runs only if a user is signed in by then."""
        self._cancel_capability_timer()
        self._probe_handle = self.clock.call_later(self.settings.probe_delay_seconds, self._on_probe_due)

    def _on_probe_due(self) -> None:
        self._probe_handle = None
        if not self.settings.enabled or not self.user_id:
            logger.debug("Skipping deferred capability probe: sync disabled or no user.")
            return
        if self._capabilities.probed:
            logger.debug("Skipping deferred capability probe: capabilities already known.")
            return
        self._spawn(self.refresh_capabilities(), name="sync-capability-probe")

    def _cancel_capability_timer(self) -> None:
        if self._probe_handle is not None:
            self._probe_handle.cancel()
            self._probe_handle = None

    async def refresh_capabilities(self) -> CapabilityRecord:
        try:
            self._capabilities = await self.prober.probe(self._capabilities)
        except Exception as e:
            logger.error(f"Capability probe failed unexpectedly: {e}", exc_info=True)
        return self._capabilities

    # --- Mutation tracking ---
    def notify_mutation(self) -> None:
        if not self.settings.enabled or not self.user_id:
            return
        self.state.mark_scheduled()
        self.timer.arm()
        logger.debug(f"Push scheduled in {self.settings.debounce_seconds}s.")

    def _on_timer(self) -> None:
        self.state.clear_scheduled()
        if self.state.syncing:
            logger.debug(f"Debounced push dropped: '{self.state.active_kind}' already running.")
            log_counter("sync_push_dropped_total")
            return
        self._spawn(self.push_now(), name="sync-debounced-push")

    # --- Cycles ---
    def _refuse(self) -> Optional[SyncResult]:
        if not self.settings.enabled:
            return SyncResult(success=False, message=MSG_SYNC_DISABLED)
        if not self.user_id:
            return SyncResult(success=False, message=MSG_NO_USER)
        return None

    async def push_now(self) -> SyncResult:
        refusal = self._refuse()
        if refusal is not None:
            return refusal
        if not self.state.try_begin(KIND_PUSH):
            return SyncResult(success=False, busy=True, message=MSG_BUSY)
        try:
            report = await self.push_protocol.run(self.user_id, self._capabilities)
            details = report.model_dump()
            if report.success:
                return SyncResult.ok(f"Pushed {report.accounts} accounts & {report.trades} trades to cloud",
                                     **details)
            failed_steps = ", ".join(report.errors) or "unknown"
            return SyncResult.failed(f"Push failed at: {failed_steps}", **details)
        except Exception as e:
            logger.error(f"Push cycle failed unexpectedly: {e}", exc_info=True)
            return SyncResult.failed(str(e))
        finally:
            self.state.end()

    async def sync_now(self) -> SyncResult:
        refusal = self._refuse()
        if refusal is not None:
            return refusal
        if not self.state.try_begin(KIND_PULL):
            return SyncResult(success=False, busy=True, message=MSG_BUSY)
        try:
            return await self.pull_protocol.run(self.user_id, self._capabilities)
        except Exception as e:
            logger.error(f"Pull cycle failed unexpectedly: {e}", exc_info=True)
            return SyncResult.failed(str(e))
        finally:
            self.state.end()

    # --- Identity ---
    async def set_user(self, user_id: Optional[str], access_token: Optional[str] = None,
                       claim_guest_data: bool = False) -> Dict[str, Any]:
        """
        Applies an identity change. Signing in runs the guest-data transition and
        re-probes the remote; signing out cancels any pending push and forgets the
        capability tier.
        """
        if user_id == self.user_id:
            self.remote.set_access_token(access_token)
            return {"changed": False}

        self.timer.cancel()
        self.state.clear_scheduled()
        # Any identity change probes (or forgets) capabilities right here
        self._cancel_capability_timer()
        self.remote.set_access_token(access_token if user_id else None)

        if not user_id:
            self._capabilities = CapabilityRecord()
            await self.lifecycle.sign_out()
            return {"changed": True, "user_id": None}

        summary = await self.lifecycle.sign_in(user_id, claim_guest_data=claim_guest_data)
        if self.settings.enabled:
            await self.refresh_capabilities()
        return {"changed": True, "user_id": user_id, **summary, "capabilities": asdict(self._capabilities)}

    async def claim_guest_data(self) -> CommandResult:
        """Claims any ownerless records for the signed-in user and schedules a push."""
        if not self.user_id:
            return CommandResult(success=False, error=MSG_NO_USER)
        result = await self.lifecycle.claim(self.user_id)
        if result.success:
            await self.collections.reload()
            self.notify_mutation()
        return result

    async def shutdown(self) -> None:
        self.timer.cancel()
        self.state.clear_scheduled()
        self._cancel_capability_timer()
        await self.drain()
        if self.owns_remote:
            await self.remote.close()
        logger.info("SyncEngine shut down.")

#
# End of Sync_Engine.py
########################################################################################################################
