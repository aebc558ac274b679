# Capability_Prober.py
# Description: Detects which optional columns/tables the remote deployment has.
#
# Imports
import asyncio
from dataclasses import dataclass, replace
from typing import Optional
#
# Third-Party Libraries
from loguru import logger
#
# Local Imports
from tradejournal.Constants import TABLE_ACCOUNTS, TABLE_COPY_GROUPS, TABLE_TRADES
from tradejournal.Metrics.metrics_logger import log_counter, timeit
from tradejournal.remote_api.client import RemoteRelationalClient
from tradejournal.remote_api.exceptions import APIConnectionError, RemoteAPIError
from tradejournal.remote_api.schemas import PROBE_ACCOUNT_COLUMN, PROBE_COPY_GROUPS_COLUMN, PROBE_TRADE_COLUMN
#
########################################################################################################################
#
# Functions:


@dataclass
class CapabilityRecord:
    """Capability tier of the remote. Everything optional is assumed absent until a probe proves otherwise."""
    advanced_trades: bool = False
    advanced_accounts: bool = False
    copy_groups: bool = False
    probed: bool = False


class CapabilityProber:
    """
    Issues three narrow read probes (one advanced trade column, one advanced account
    column, the copy-groups table key). A probe that comes back without error marks
    its capability present; a rejected probe marks it absent; a probe that never
    reached the remote leaves the previous value alone. No retries.
    """

    def __init__(self, remote: RemoteRelationalClient):
        self.remote = remote

    async def _probe(self, name: str, table: str, column: str, previous: bool) -> bool:
        try:
            await self.remote.select(table, columns=column, limit=1)
        except APIConnectionError as e:
            logger.warning(f"Capability probe '{name}' could not reach the remote, keeping {previous}: {e}")
            log_counter("sync_capability_probe_total", labels={"probe": name, "outcome": "unreachable"})
            return previous
        except RemoteAPIError as e:
            logger.info(f"Capability probe '{name}' rejected; treating as absent: {e}")
            log_counter("sync_capability_probe_total", labels={"probe": name, "outcome": "absent"})
            return False
        log_counter("sync_capability_probe_total", labels={"probe": name, "outcome": "present"})
        return True

    @timeit("sync_capability_probe_duration_seconds")
    async def probe(self, previous: Optional[CapabilityRecord] = None) -> CapabilityRecord:
        previous = previous or CapabilityRecord()
        advanced_trades, advanced_accounts, copy_groups = await asyncio.gather(
            self._probe("advanced_trades", TABLE_TRADES, PROBE_TRADE_COLUMN, previous.advanced_trades),
            self._probe("advanced_accounts", TABLE_ACCOUNTS, PROBE_ACCOUNT_COLUMN, previous.advanced_accounts),
            self._probe("copy_groups", TABLE_COPY_GROUPS, PROBE_COPY_GROUPS_COLUMN, previous.copy_groups),
        )
        record = replace(previous, advanced_trades=advanced_trades, advanced_accounts=advanced_accounts,
                         copy_groups=copy_groups, probed=True)
        logger.info(f"Remote capabilities: {record}")
        return record

#
# End of Capability_Prober.py
########################################################################################################################
