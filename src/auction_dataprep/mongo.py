"""Thin wrapper for issuing mongo shell snippets through a CommandRunner."""

import shlex

from auction_dataprep.remote import CommandResult, CommandRunner
from auction_dataprep.stage_log import StageLog


def mongo_eval_command(
    host: str, port: int, script: str, database: str | None = None
) -> str:
    """``mongo --host H --port P --eval '<script>' [db]``"""
    parts = ["mongo", "--host", host, "--port", str(port), "--eval", script]
    if database:
        parts.append(database)
    return " ".join(shlex.quote(p) for p in parts)


class MongoShell:
    """Runs mongo shell snippets from the data manager host.

    Every result is recorded verbatim in the stage log when one is given.
    """

    def __init__(self, runner: CommandRunner, client_host: str):
        self.runner = runner
        self.client_host = client_host

    async def eval(
        self,
        host: str,
        port: int,
        script: str,
        database: str | None = None,
        log: StageLog | None = None,
    ) -> CommandResult:
        result = await self.runner.run(
            self.client_host, mongo_eval_command(host, port, script, database)
        )
        if log is not None:
            log.record(result)
        return result

    async def printjson(
        self,
        host: str,
        port: int,
        expression: str,
        database: str | None = None,
        log: StageLog | None = None,
    ) -> CommandResult:
        return await self.eval(host, port, f"printjson({expression})", database, log)

    async def replica_status(
        self, host: str, port: int, log: StageLog | None = None
    ) -> CommandResult:
        return await self.printjson(host, port, "rs.status()", log=log)
