"""Parallel warm-up of NoSQL caches and indexes before a timed run.

Each query is a read-only count. Queries fan out over every NoSQL
instance on a bounded pool and are all awaited before returning.
Individual failures are logged and otherwise ignored.
"""

import asyncio
import logging
from dataclasses import dataclass

from rich.console import Console

from auction_dataprep.config import HarnessSettings
from auction_dataprep.exceptions import StageLogError
from auction_dataprep.mongo import MongoShell
from auction_dataprep.stage_log import StageLog
from auction_dataprep.topology import MONGOD, ServiceTopology
from auction_dataprep.types import DataServiceInstance, ServiceRole

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WarmupQuery:
    """One read-only count query against a NoSQL collection.

    Attributes:
        collection: Collection the query touches
        database: Database holding the collection
        script: mongo shell expression to evaluate
        gate: Name of the settings flag that must be set, or None
    """

    collection: str
    database: str
    script: str
    gate: str | None = None

    def enabled(self, settings: HarnessSettings) -> bool:
        return self.gate is None or bool(getattr(settings, self.gate))


def _image_queries(collection: str, database: str, gate: str | None) -> list[WarmupQuery]:
    return [
        WarmupQuery(
            collection, database,
            f"db.{collection}.find({{'imageid' : {{$gt : 0}}}}, {{'image' : 0}}).count()",
            gate,
        ),
        WarmupQuery(
            collection, database,
            f"db.{collection}.find({{'_id' : {{$ne : 0}}}}, {{'image' : 0}}).count()",
            gate,
        ),
    ]


WARMUP_QUERIES: tuple[WarmupQuery, ...] = (
    *_image_queries("imageFull", "auctionFullImages", "mongodb_touch_full"),
    *_image_queries("imagePreview", "auctionPreviewImages", "mongodb_touch_preview"),
    *_image_queries("imageThumbnail", "auctionThumbnailImages", None),
    WarmupQuery("imageInfo", "imageInfo", "db.imageInfo.find({'filepath' : {$ne : \"\"}}).count()"),
    WarmupQuery("imageInfo", "imageInfo", "db.imageInfo.find({'_id' : {$ne : 0}}).count()"),
    WarmupQuery(
        "attendanceRecord", "attendanceRecord",
        "db.attendanceRecord.find({'_id' : {$ne : 0}}).count()",
    ),
    WarmupQuery(
        "attendanceRecord", "attendanceRecord",
        "db.attendanceRecord.find({'userId' : {$gt : 0}, "
        "'timestamp' : {$gt:ISODate(\"2000-01-01\")}}).count()",
    ),
    WarmupQuery(
        "attendanceRecord", "attendanceRecord",
        "db.attendanceRecord.find({'userId' : {$gt : 0}, '_id' : {$ne: 0 }}).count()",
    ),
    WarmupQuery(
        "attendanceRecord", "attendanceRecord",
        "db.attendanceRecord.find({'userId' : {$gt : 0}, 'auctionId' : {$gt: 0 }, "
        "'state' :{$ne : \"\"} }).count()",
    ),
    WarmupQuery(
        "attendanceRecord", "attendanceRecord",
        "db.attendanceRecord.find({'auctionId' : {$gt : 0}}).count()",
    ),
    WarmupQuery("bid", "bid", "db.bid.find({'_id' : {$ne : 0}}).count()"),
    WarmupQuery(
        "bid", "bid",
        "db.bid.find({'bidderId' : {$gt : 0}, 'bidTime' : {$gt:ISODate(\"2000-01-01\")}}).count()",
    ),
    WarmupQuery("bid", "bid", "db.bid.find({'bidderId' : {$gt : 0}, '_id' : {$ne: 0 }}).count()"),
    WarmupQuery("bid", "bid", "db.bid.find({'itemid' : {$gt : 0}}).count()"),
)


def enabled_queries(settings: HarnessSettings) -> list[WarmupQuery]:
    if not settings.mongodb_touch:
        return []
    return [q for q in WARMUP_QUERIES if q.enabled(settings)]


async def pretouch_data(
    topology: ServiceTopology,
    mongo: MongoShell,
    settings: HarnessSettings,
    log_dir: str,
    console: Console | None = None,
) -> bool:
    """Run every enabled warm-up query on every NoSQL instance.

    Returns False only if the stage log cannot be opened.
    """
    console = console if console is not None else Console()
    try:
        log = StageLog.open(log_dir, f"PretouchData_{settings.run_label}.log")
    except StageLogError as e:
        console.print(f"[bold red]{e}[/bold red]")
        return False

    queries = enabled_queries(settings)
    semaphore = asyncio.Semaphore(settings.warmup_parallelism)

    async def touch(nosql: DataServiceInstance, query: WarmupQuery) -> None:
        async with semaphore:
            log.line(f"Touching {query.collection} collection to preload data and indexes")
            await mongo.eval(
                nosql.host_name, nosql.port_for(MONGOD), query.script, query.database, log
            )

    tasks = [
        touch(nosql, query)
        for nosql in topology.instances(ServiceRole.NOSQL)
        for query in queries
    ]

    with log:
        results = await asyncio.gather(*tasks, return_exceptions=True)
        failures = [r for r in results if isinstance(r, Exception)]
        for failure in failures:
            log.line(f"Warm-up query failed: {failure}")
            logger.warning(f"Warm-up query failed: {failure}")

    logger.debug(f"pretouch_data complete: {len(tasks)} queries, {len(failures)} failed")
    return True
