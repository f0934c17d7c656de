"""NoSQL cluster configuration: sharding or replica set setup.

Three mutually exclusive topologies are selected by (shards, replicas):
- (0, 0): nothing to configure, the single instance is used directly
- (n, 0): shards are added through the router, every logical database is
  sharding-enabled, each collection gets a hashed shard key index and is
  sharded on it, and the balancer is switched off
- (0, n): the first instance initiates a replica set and every other
  instance joins it as a secondary

Sharded and replicated together is rejected before any command is issued.
Command output is not inspected, only logged.
"""

import asyncio
import json
import logging
from dataclasses import dataclass

from auction_dataprep.config import HarnessSettings
from auction_dataprep.exceptions import UnsupportedTopologyError
from auction_dataprep.mongo import MongoShell
from auction_dataprep.stage_log import StageLog
from auction_dataprep.topology import MONGOD, ServiceTopology
from auction_dataprep.types import ServiceRole

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ShardedCollection:
    """A collection sharded on a hashed key."""

    database: str
    collection: str
    key: str

    @property
    def namespace(self) -> str:
        return f"{self.database}.{self.collection}"


SHARDED_DATABASES = (
    "auction",
    "bid",
    "attendanceRecord",
    "imageInfo",
    "auctionFullImages",
    "auctionPreviewImages",
    "auctionThumbnailImages",
)

SHARDED_COLLECTIONS = (
    ShardedCollection("attendanceRecord", "attendanceRecord", "userId"),
    ShardedCollection("bid", "bid", "bidderId"),
    ShardedCollection("imageInfo", "imageInfo", "entityid"),
    ShardedCollection("auctionFullImages", "imageFull", "imageid"),
    ShardedCollection("auctionPreviewImages", "imagePreview", "imageid"),
    ShardedCollection("auctionThumbnailImages", "imageThumbnail", "imageid"),
)


def validate_topology(num_shards: int, num_replicas: int) -> None:
    """Raises UnsupportedTopologyError for sharded and replicated together."""
    if num_shards > 0 and num_replicas > 0:
        raise UnsupportedTopologyError(num_shards, num_replicas)


class ClusterConfigurator:
    """Establishes the NoSQL topology an app instance was provisioned for."""

    STATUS_OBSERVATIONS = 2

    def __init__(
        self,
        topology: ServiceTopology,
        mongo: MongoShell,
        settings: HarnessSettings,
    ):
        self.topology = topology
        self.mongo = mongo
        self.settings = settings

    async def configure(self, log: StageLog) -> None:
        """Apply the topology selected by the instance's shard/replica counts.

        Raises:
            UnsupportedTopologyError: If both shards and replicas are requested
        """
        num_shards = self.topology.num_shards
        num_replicas = self.topology.num_replicas
        validate_topology(num_shards, num_replicas)

        if num_shards > 0:
            await self._configure_sharding(log)
        elif num_replicas > 0:
            await self._configure_replica_set(log)
        else:
            logger.debug("Unsharded, unreplicated NoSQL: nothing to configure")

    async def _configure_sharding(self, log: StageLog) -> None:
        log.line("Sharding MongoDB")
        router_host = self.settings.data_manager_host
        router_port = self.settings.mongos_port

        async def sh(expression: str, database: str | None = None) -> None:
            await self.mongo.printjson(router_host, router_port, expression, database, log)

        for nosql in self.topology.require(ServiceRole.NOSQL):
            address = f"{nosql.host_name}:{nosql.port_for(MONGOD)}"
            log.line(f"Add {nosql.host_name} as shard.")
            await sh(f"sh.addShard({json.dumps(address)})")

        for database in SHARDED_DATABASES:
            log.line(f"Enabling sharding for {database} database.")
            await sh(f"sh.enableSharding({json.dumps(database)})")

        for spec in SHARDED_COLLECTIONS:
            log.line(f"Adding hashed index for {spec.key} in {spec.collection} Collection.")
            await sh(
                f"db.{spec.collection}.ensureIndex({{{spec.key} : \"hashed\"}})",
                database=spec.database,
            )

        for spec in SHARDED_COLLECTIONS:
            log.line(f"Sharding {spec.collection} collection on hashed {spec.key}.")
            await sh(
                f"sh.shardCollection({json.dumps(spec.namespace)}, "
                f"{{{json.dumps(spec.key)} : \"hashed\"}})"
            )

        log.line("Disabling the balancer.")
        await sh("sh.setBalancerState(false)")

    async def _configure_replica_set(self, log: StageLog) -> None:
        logger.debug("Creating the MongoDB Replica Set")
        log.line("Creating the MongoDB Replica Set")

        primary, *secondaries = self.topology.require(ServiceRole.NOSQL)
        primary_host = primary.host_name
        primary_port = primary.port_for(MONGOD)

        replica_name = f"auction{primary.shard_index}"
        config = (
            f'{{_id : "{replica_name}", members: '
            f'[ {{ _id : 0, host : "{primary_host}:{primary_port}" }} ]}}'
        )
        log.line(f"Add {primary_host} as replica primary.")
        await self.mongo.printjson(primary_host, primary_port, f"rs.initiate({config})", log=log)

        # Status is only observed here to surface election problems in the log
        log.line("rs.status() : ")
        await self.mongo.replica_status(primary_host, primary_port, log=log)
        for n in range(1, self.STATUS_OBSERVATIONS + 1):
            await asyncio.sleep(self.settings.replica_settle_interval_s)
            elapsed = n * self.settings.replica_settle_interval_s
            log.line(f"rs.status() after {elapsed:g}s: ")
            await self.mongo.replica_status(primary_host, primary_port, log=log)

        for secondary in secondaries:
            address = f"{secondary.host_name}:{secondary.port_for(MONGOD)}"
            log.line(f"Add {secondary.host_name} as replica secondary.")
            await self.mongo.printjson(
                primary_host, primary_port, f"rs.add({json.dumps(address)})", log=log
            )
            log.line("rs.status() : ")
            await self.mongo.replica_status(primary_host, primary_port, log=log)
