"""Post-write maintenance shared by the load, prepare and clean stages."""

import logging

from auction_dataprep.config import HarnessSettings
from auction_dataprep.engines import engine_profile
from auction_dataprep.mongo import MongoShell
from auction_dataprep.replica import wait_for_replica_sync
from auction_dataprep.stage_log import StageLog
from auction_dataprep.topology import MONGOD, ServiceTopology
from auction_dataprep.types import ServiceRole, SyncOutcome

logger = logging.getLogger(__name__)


async def vacuum_relational(
    topology: ServiceTopology, settings: HarnessSettings, log: StageLog
) -> bool:
    """Compact every relational instance when the engine requires it.

    Returns True if a compaction pass ran.
    """
    profile = engine_profile(topology.db_engine(), settings)
    if not profile.needs_vacuum:
        return False
    for db in topology.instances(ServiceRole.DB):
        logger.debug(f"Vacuuming {profile.engine.value} on {db.host_name}")
        await db.run_compaction(log.handle)
    return True


async def sync_replicas(
    topology: ServiceTopology,
    mongo: MongoShell,
    settings: HarnessSettings,
    log: StageLog,
) -> SyncOutcome | None:
    """Wait on the replica sync barrier when replicated and unsharded.

    Returns None when no barrier applies.
    """
    if not topology.replicated_unsharded:
        return None
    primary = topology.require(ServiceRole.NOSQL)[0]
    return await wait_for_replica_sync(
        mongo,
        primary.host_name,
        primary.port_for(MONGOD),
        log,
        interval_s=settings.replica_sync_interval_s,
        timeout_s=settings.replica_sync_timeout_s,
    )
