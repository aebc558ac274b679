# tradejournal/remote_api/schemas.py
#
# Column whitelists and row shapes for the remote relational service.
#
# Imports
from typing import Any, Dict, Iterable, List, Literal, Optional, Union
#
# 3rd-party Libraries
from pydantic import BaseModel, ConfigDict
#
#######################################################################################################################
#
# Functions:

AccountType = Literal["Live", "Evaluation", "Funded", "Demo", "Backtesting"]
TradeSide = Literal["LONG", "SHORT"]

# Filter values accepted by RemoteRelationalClient: a bare value means equality.
FilterOperator = Literal["eq", "neq", "in", "is", "gt", "gte", "lt", "lte"]
FilterValue = Union[Any, tuple]

# --- Trade columns ---
# Core columns exist on every deployment; advanced ones only where the probe confirms them.
CORE_TRADE_COLS: List[str] = [
    "date", "symbol", "model", "bias", "side", "pnl", "risk_percent",
    "trade_session", "account_type", "created_at",
]
ADVANCED_TRADE_COLS: List[str] = [
    "entry_signal", "order_type", "sl_pips", "confluences", "psychology", "mistakes",
    "comment_bias", "comment_execution", "comment_problems", "comment_fazit",
    "image_paths", "images_execution", "images_condition", "images_narrative",
]

# --- Account columns ---
CORE_ACCOUNT_COLS: List[str] = [
    "name", "type", "balance", "currency", "capital", "profit_target", "max_loss",
    "consistency_rule", "prop_firm", "reset_date", "breach_report",
]
ADVANCED_ACCOUNT_COLS: List[str] = ["is_ranked_up", "prev_reset_date", "payout_goal"]

PILL_COLOR_COLS: List[str] = ["category", "value", "color"]
DAILY_JOURNAL_COLS: List[str] = ["date", "goals", "reflection", "is_completed"]
COPY_GROUP_COLS: List[str] = ["name", "leader_id", "is_active"]
COPY_MEMBER_COLS: List[str] = ["group_id", "follower_account_id", "risk_multiplier"]

# Stored locally as 0/1 integers, booleans on the remote.
BOOLEAN_COLS = frozenset({"is_ranked_up", "is_active", "is_completed"})

# Columns the advanced-capability probes read.
PROBE_TRADE_COLUMN = "comment_bias"
PROBE_ACCOUNT_COLUMN = "payout_goal"
PROBE_COPY_GROUPS_COLUMN = "id"

PILL_COLOR_CONFLICT_KEY = ["user_id", "category", "value"]
PROFILE_CONFLICT_KEY = ["id"]


def trade_columns(advanced: bool) -> List[str]:
    return CORE_TRADE_COLS + ADVANCED_TRADE_COLS if advanced else list(CORE_TRADE_COLS)


def account_columns(advanced: bool) -> List[str]:
    return CORE_ACCOUNT_COLS + ADVANCED_ACCOUNT_COLS if advanced else list(CORE_ACCOUNT_COLS)


def clean_for_remote(row: Dict[str, Any], allowed: Iterable[str]) -> Dict[str, Any]:
    """
    Keeps only whitelisted columns, converting local 0/1 flags to booleans.

    Columns missing from `row` are left out rather than sent as null, so the remote
    applies its own defaults.
    """
    cleaned: Dict[str, Any] = {}
    for column in allowed:
        if column not in row:
            continue
        value = row[column]
        if column in BOOLEAN_COLS and value is not None:
            value = bool(value)
        cleaned[column] = value
    return cleaned


class RemoteProfile(BaseModel):
    """Public profile row; one per user, keyed by the user id."""
    model_config = ConfigDict(extra="ignore")

    id: str
    name: Optional[str] = None
    avatar: Optional[str] = None
    bio: Optional[str] = None
    layout: Optional[Dict[str, Any]] = None

    def to_local(self) -> Dict[str, Any]:
        return self.model_dump(exclude={"id"}, exclude_none=True)

#
# End of tradejournal/remote_api/schemas.py
#######################################################################################################################
