# Sync_Schemas.py
#
# Result shapes handed back to callers of the sync engine.
#
# Imports
from typing import Any, Dict, Optional
#
# 3rd-party Libraries
from pydantic import BaseModel, Field
#
#######################################################################################################################
#
# Functions:

class SyncResult(BaseModel):
    """
    Outcome of a top-level sync call. Exactly one of `message` (success) or `error`
    (failure) is normally set; `busy` marks a call refused because a cycle was running.
    """
    success: bool
    message: Optional[str] = None
    error: Optional[str] = None
    busy: bool = False
    details: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def ok(cls, message: str, **details) -> "SyncResult":
        return cls(success=True, message=message, details=details)

    @classmethod
    def failed(cls, error: str, **details) -> "SyncResult":
        return cls(success=False, error=error, details=details)

#
# End of Sync_Schemas.py
#######################################################################################################################
