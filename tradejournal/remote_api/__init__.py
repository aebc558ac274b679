# tradejournal/remote_api/__init__.py
from .client import RemoteRelationalClient
from .exceptions import (
    RemoteAPIError, APIConnectionError, APIRequestError,
    APIResponseError, AuthenticationError
)
from .schemas import (
    CORE_TRADE_COLS, ADVANCED_TRADE_COLS, CORE_ACCOUNT_COLS, ADVANCED_ACCOUNT_COLS,
    RemoteProfile, clean_for_remote, trade_columns, account_columns,
    AccountType, TradeSide
)

__all__ = [
    "RemoteRelationalClient",
    "RemoteAPIError", "APIConnectionError", "APIRequestError",
    "APIResponseError", "AuthenticationError",
    "CORE_TRADE_COLS", "ADVANCED_TRADE_COLS", "CORE_ACCOUNT_COLS", "ADVANCED_ACCOUNT_COLS",
    "RemoteProfile", "clean_for_remote", "trade_columns", "account_columns",
    "AccountType", "TradeSide"
]
