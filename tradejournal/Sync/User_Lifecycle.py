# User_Lifecycle.py
# Description: What happens to local data when the signed-in identity changes.
#
# Imports
from typing import Any, Callable, Dict, List, Optional
#
# Third-Party Libraries
from loguru import logger
#
# Local Imports
from tradejournal.Constants import EVENT_IMPORT_AVAILABLE, MARKER_PULL_IN_PROGRESS
from tradejournal.DB.Local_Commands import CommandResult, LocalCommandSurface
from tradejournal.Journal.Journal_Library import JournalCollections
from tradejournal.Metrics.metrics_logger import log_counter
#
########################################################################################################################
#
# Functions:

ImportListener = Callable[[str, Dict[str, Any]], None]


class UserLifecycle:
    """
    Guest/user data transitions.

    Without a user every record is ownerless ("guest") and the app works offline.
    On sign-in guest data is either deleted (the default) or claimed by the user.
    The lifecycle never pulls by itself: it only announces `import_available` and
    leaves the decision to the caller.
    """

    def __init__(self, local: LocalCommandSurface, collections: JournalCollections):
        self.local = local
        self.collections = collections
        self._listeners: List[ImportListener] = []

    def add_import_listener(self, callback: ImportListener) -> None:
        self._listeners.append(callback)

    def _emit(self, payload: Dict[str, Any]) -> None:
        logger.info(f"Emitting '{EVENT_IMPORT_AVAILABLE}': {payload}")
        for callback in list(self._listeners):
            try:
                callback(EVENT_IMPORT_AVAILABLE, payload)
            except Exception as e:
                logger.error(f"Import listener {callback!r} raised: {e}", exc_info=True)

    async def claim(self, user_id: str) -> CommandResult:
        """Moves every ownerless record to `user_id`. Legs fail independently; see `data["errors"]`."""
        result = await self.local.claim_local_data(user_id)
        if result.success:
            errors = (result.data or {}).get("errors") or {}
            log_counter("sync_guest_claim_total", labels={"status": "partial" if errors else "success"})
        else:
            log_counter("sync_guest_claim_total", labels={"status": "failure"})
        return result

    async def sign_in(self, user_id: str, claim_guest_data: bool = False) -> Dict[str, Any]:
        """
        Applies a sign-in: claims or deletes guest data, re-targets the collections
        and announces an import opportunity when the user has nothing locally or
        an earlier import was interrupted.

        Returns a summary with `claimed`, `guest_deleted` and `import_available`.
        """
        summary: Dict[str, Any] = {"claimed": None, "guest_deleted": None, "import_available": False}

        if claim_guest_data:
            claim_result = await self.claim(user_id)
            summary["claimed"] = claim_result.data if claim_result.success else None
            leg_errors = (claim_result.data or {}).get("errors") if claim_result.success else True
            if leg_errors:
                logger.warning(f"Guest claim incomplete for {user_id}; keeping unclaimed guest rows: {leg_errors}")
            else:
                # Rows skipped by the claim: pill colors and journals the user already had
                purged = await self.local.delete_guest_data()
                summary["guest_deleted"] = purged.data if purged.success else None
        else:
            deleted = await self.local.delete_guest_data()
            if deleted.success:
                summary["guest_deleted"] = deleted.data
            else:
                logger.error(f"Deleting guest data on sign-in failed: {deleted.error}")

        self.collections.set_owner(user_id)
        await self.collections.reload()

        marker = await self.local.get_marker(MARKER_PULL_IN_PROGRESS)
        interrupted = marker.success and marker.data == user_id
        if interrupted:
            logger.warning(f"A previous import for user {user_id} did not finish.")
        elif marker.success and marker.data is not None:
            logger.info(f"Ignoring an unfinished import left by another user ({marker.data}).")

        if self.collections.is_empty or interrupted:
            summary["import_available"] = True
            self._emit({"user_id": user_id, "interrupted": interrupted})
        return summary

    async def sign_out(self) -> None:
        self.collections.set_owner(None)
        await self.collections.reload()
        logger.info("Signed out; showing guest data.")

    @property
    def user_id(self) -> Optional[str]:
        return self.collections.user_id

#
# End of User_Lifecycle.py
########################################################################################################################
