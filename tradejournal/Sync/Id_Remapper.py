# Id_Remapper.py
# Description: Translates record identifiers between the local and remote identifier spaces.
#
"""
Id_Remapper.py
--------------

Local rows use small sequential integers; the remote assigns UUIDs. Children refer
to parents by id (trade -> account, copy group -> leader account, member -> group
and follower account), so every replication cycle rebuilds a map from the source
id space to the target one. Maps live for one cycle only and are never stored.

Correlating an inserted row with the row it came from uses a content fingerprint
computed from the submitted columns; the remote echoes those columns back in the
returned representation. Only when fingerprints cannot account for every row, and
the remote returned exactly as many rows as were sent, does the remapper fall back
to the submission order. Rows that cannot be correlated get no entry: a lookup for
them resolves to None, never to a guessed id.
"""
# Imports
import json
from collections import defaultdict, deque
from typing import Any, Dict, Hashable, Iterator, Optional, Sequence, Tuple
#
# Third-Party Libraries
from loguru import logger
#
# Local Imports
#
########################################################################################################################
#
# Functions:


class IdMap:
    """One-cycle mapping from source ids to target ids."""

    def __init__(self):
        self._map: Dict[Hashable, Any] = {}

    def add(self, source_id: Hashable, target_id: Any) -> None:
        if source_id is None or target_id is None:
            return
        self._map[source_id] = target_id

    def resolve(self, source_id: Optional[Hashable]) -> Optional[Any]:
        """Target id for `source_id`, or None when the source is null or was never mapped."""
        if source_id is None:
            return None
        return self._map.get(source_id)

    def __contains__(self, source_id: Hashable) -> bool:
        return source_id in self._map

    def __len__(self) -> int:
        return len(self._map)

    def __iter__(self) -> Iterator[Hashable]:
        return iter(self._map)

    def items(self):
        return self._map.items()

    def __repr__(self) -> str:
        return f"IdMap({self._map!r})"


def _normalise(value: Any) -> Any:
    if value is None or isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return round(float(value), 6)
    if isinstance(value, (dict, list)):
        return json.dumps(value, sort_keys=True, default=str)
    return str(value)


def fingerprint(row: Dict[str, Any], columns: Sequence[str]) -> Tuple:
    """Correlation key: the normalised values of `columns`, in order."""
    return tuple(_normalise(row.get(column)) for column in columns)


def build_forward_map(local_rows: Sequence[Dict[str, Any]], submitted: Sequence[Dict[str, Any]],
                      returned: Sequence[Dict[str, Any]], local_key: str = "id",
                      remote_key: str = "id") -> IdMap:
    """
    Builds local id -> remote id for one bulk insert.

    Args:
        local_rows: The local snapshot rows, aligned index-for-index with `submitted`.
        submitted: The payloads actually sent (local id stripped).
        returned: The rows the remote created, as returned by the insert.
    """
    id_map = IdMap()
    if len(local_rows) != len(submitted):
        raise ValueError("local_rows and submitted payloads must be aligned")
    if not submitted:
        return id_map

    # Payloads built from the same whitelist share a column set, but missing local
    # values are omitted, so group by column set.
    buckets: Dict[Tuple[str, ...], Dict[Tuple, deque]] = defaultdict(lambda: defaultdict(deque))
    for index, payload in enumerate(submitted):
        columns = tuple(sorted(payload.keys()))
        buckets[columns][fingerprint(payload, columns)].append(index)

    matched: Dict[int, Any] = {}
    for remote_row in returned:
        remote_id = remote_row.get(remote_key)
        if remote_id is None:
            continue
        for columns, by_print in buckets.items():
            queue = by_print.get(fingerprint(remote_row, columns))
            if queue:
                matched[queue.popleft()] = remote_id
                break

    if len(matched) == len(submitted):
        for index, remote_id in matched.items():
            id_map.add(local_rows[index].get(local_key), remote_id)
        return id_map

    if len(returned) == len(submitted):
        logger.warning(
            f"Only {len(matched)}/{len(submitted)} inserted rows matched by content; "
            f"falling back to submission order.")
        for local_row, remote_row in zip(local_rows, returned):
            id_map.add(local_row.get(local_key), remote_row.get(remote_key))
        return id_map

    logger.warning(
        f"Remote returned {len(returned)} rows for {len(submitted)} submitted; "
        f"mapping only the {len(matched)} matched by content.")
    for index, remote_id in matched.items():
        id_map.add(local_rows[index].get(local_key), remote_id)
    return id_map

#
# End of Id_Remapper.py
########################################################################################################################
