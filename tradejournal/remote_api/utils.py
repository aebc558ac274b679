# tradejournal/remote_api/utils.py
#
#
# Imports
from typing import Any, Dict, List, Optional, Tuple
#
# 3rd-party Libraries
#
#######################################################################################################################
#
# Functions:

_OPERATORS = {"eq", "neq", "in", "is", "gt", "gte", "lt", "lte"}


def _format_scalar(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _quote_list_item(value: Any) -> str:
    text = _format_scalar(value)
    if any(ch in text for ch in ',()"'):
        escaped = text.replace('"', '\\"')
        return f'"{escaped}"'
    return text


def build_filter_params(filters: Optional[Dict[str, Any]]) -> List[Tuple[str, str]]:
    """
    Converts a filter mapping into PostgREST query parameters.

    {"user_id": "u1"}              -> [("user_id", "eq.u1")]
    {"id": ("in", ["a", "b"])}     -> [("id", "in.(a,b)")]
    {"leader_id": ("is", None)}    -> [("leader_id", "is.null")]

    Raises:
        ValueError: For an unknown operator.
    """
    params: List[Tuple[str, str]] = []
    for column, condition in (filters or {}).items():
        if isinstance(condition, tuple):
            operator, operand = condition
        else:
            operator, operand = "eq", condition
        if operator not in _OPERATORS:
            raise ValueError(f"Unsupported filter operator '{operator}' for column '{column}'")
        if operator == "in":
            items = ",".join(_quote_list_item(item) for item in operand)
            params.append((column, f"in.({items})"))
        else:
            params.append((column, f"{operator}.{_format_scalar(operand)}"))
    return params


def build_order_param(order: Optional[str]) -> Optional[str]:
    """'name' -> 'name.asc', '-date' -> 'date.desc'."""
    if not order:
        return None
    if order.startswith("-"):
        return f"{order[1:]}.desc"
    return f"{order}.asc"

#
# End of tradejournal/remote_api/utils.py
#######################################################################################################################
