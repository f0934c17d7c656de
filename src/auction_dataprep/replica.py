"""Replica sync barrier for replicated NoSQL deployments."""

import asyncio
import logging
import re

from auction_dataprep.mongo import MongoShell
from auction_dataprep.stage_log import StageLog
from auction_dataprep.types import ReplicaMember, ReplicaSetView, SyncOutcome

logger = logging.getLogger(__name__)

_NAME_RE = re.compile(r'"name"\s*:\s*"([^"]+)"')
# The member's own "optime" key, not optimeDurable or the top level optimes
_OPTIME_KEY_RE = re.compile(r'"optime"\s*:(.*)$')
_TS_RE = re.compile(r'"ts"\s*:\s*(Timestamp\(.*)$')
# Timestamp(a, b) from the mongo shell, Timestamp({ t: a, i: b }) from mongosh
_TIMESTAMP_RE = re.compile(r'Timestamp\(\s*\{?\s*(?:t\s*:\s*)?(\d+),\s*(?:i\s*:\s*)?(\d+)')


def _timestamp(text: str) -> tuple[int, int] | None:
    match = _TIMESTAMP_RE.match(text.strip())
    return (int(match.group(1)), int(match.group(2))) if match else None


def parse_replica_status(output: str) -> ReplicaSetView:
    """Extract (member, optime) pairs from printjson(rs.status()) output.

    Servers before 3.2 print ``"optime" : Timestamp(a, b)``. Later servers
    print an optime document across several lines:

        "optime" : {
            "ts" : Timestamp(a, b),
            "t" : NumberLong(1)
        },

    in which case the first ``"ts"`` after the key is the member's optime.
    """
    members: list[ReplicaMember] = []
    current_name = ""
    awaiting_ts = False
    for line in output.splitlines():
        name_match = _NAME_RE.search(line)
        if name_match:
            current_name = name_match.group(1)
            awaiting_ts = False

        key_match = _OPTIME_KEY_RE.search(line)
        if key_match:
            rest = key_match.group(1).strip()
            if rest.startswith("{"):
                rest = rest[1:].strip()
                ts_match = _TS_RE.search(rest)
                optime = _timestamp(ts_match.group(1)) if ts_match else None
            else:
                optime = _timestamp(rest)
            if optime is None:
                awaiting_ts = True
                continue
            members.append(ReplicaMember(name=current_name, optime=optime))
            continue

        if awaiting_ts:
            ts_match = _TS_RE.search(line)
            if ts_match:
                optime = _timestamp(ts_match.group(1))
                if optime is not None:
                    members.append(ReplicaMember(name=current_name, optime=optime))
                awaiting_ts = False
    return ReplicaSetView(members=members)


async def wait_for_replica_sync(
    mongo: MongoShell,
    primary_host: str,
    primary_port: int,
    log: StageLog,
    interval_s: float = 30.0,
    timeout_s: float | None = None,
) -> SyncOutcome:
    """Block until every replica reports the same operation-log timestamp.

    Sleeps interval_s before each probe. Without timeout_s the wait is
    unbounded. With it, TIMED_OUT is returned once the deadline passes
    without a matching probe.
    """
    loop = asyncio.get_running_loop()
    deadline = None if timeout_s is None else loop.time() + timeout_s

    while True:
        await asyncio.sleep(interval_s)

        log.line("Checking MongoDB Replica Sync.  rs.status: ")
        result = await mongo.replica_status(primary_host, primary_port, log=log)
        view = parse_replica_status(result.output)
        if view.in_sync:
            logger.debug(f"Replicas in sync: {[m.name for m in view.members]}")
            return SyncOutcome.IN_SYNC

        log.line("Not yet in sync")
        if deadline is not None and loop.time() >= deadline:
            logger.warning(
                f"Replicas on {primary_host}:{primary_port} not in sync after {timeout_s}s"
            )
            return SyncOutcome.TIMED_OUT
