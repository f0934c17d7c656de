"""Bulk data loader supervision.

The loader runs detached on the data manager host. Its pid is discovered
with ps after a grace period, since a small load can finish before the
first probe. Progress is followed with ``tail -f --pid`` until the remote
process exits. Whatever happens, the final verdict comes from a readiness
check, never from the loader's exit status.
"""

import asyncio
import logging
import re
from pathlib import Path

from rich.console import Console

from auction_dataprep.cluster import ClusterConfigurator
from auction_dataprep.commands import java_tool_command, loader_options
from auction_dataprep.config import HarnessSettings
from auction_dataprep.exceptions import StageLogError
from auction_dataprep.maintenance import sync_replicas, vacuum_relational
from auction_dataprep.mongo import MongoShell
from auction_dataprep.readiness import ReadinessChecker
from auction_dataprep.remote import CommandRunner
from auction_dataprep.stage_log import StageLog
from auction_dataprep.topology import ServiceTopology
from auction_dataprep.types import LoaderJob, ScaleTarget, SyncOutcome

logger = logging.getLogger(__name__)

LOADER_PROCESS_NAME = "DBLoader"

# First line of `ps aux`: USER PID ...
_PS_PID_RE = re.compile(r"^\S+\s+(\d+)\s", re.MULTILINE)
# Periodic progress ticks start with HH:MM
_PROGRESS_TICK_RE = re.compile(r"^\d\d:\d\d")


def parse_loader_pid(ps_output: str) -> int | None:
    match = _PS_PID_RE.search(ps_output)
    return int(match.group(1)) if match else None


def is_progress_tick(line: str) -> bool:
    return bool(_PROGRESS_TICK_RE.match(line))


class BulkDataLoader:
    """Configures the NoSQL cluster and runs a full bulk load."""

    PROFILE = "dbloader"

    def __init__(
        self,
        topology: ServiceTopology,
        shell: CommandRunner,
        mongo: MongoShell,
        settings: HarnessSettings,
        log_dir: str,
        readiness: ReadinessChecker,
        configurator: ClusterConfigurator | None = None,
        console: Console | None = None,
    ):
        self.topology = topology
        self.shell = shell
        self.mongo = mongo
        self.settings = settings
        self.log_dir = log_dir
        self.readiness = readiness
        self.configurator = configurator or ClusterConfigurator(topology, mongo, settings)
        self.console = console if console is not None else Console()

    @property
    def host(self) -> str:
        return self.settings.data_manager_host

    def command(self, target: ScaleTarget) -> str:
        options = loader_options(
            self.settings, target, self.topology.num_shards, self.topology.num_replicas
        )
        return java_tool_command(
            self.settings,
            self.topology,
            self.settings.db_loader_main_class,
            self.PROFILE,
            options,
            loading=True,
        )

    def new_job(self) -> LoaderJob:
        return LoaderJob(
            host=self.host,
            progress_log=f"{self.settings.loader_progress_dir}/dbLoader_{self.settings.run_label}.log",
        )

    async def load(self, target: ScaleTarget) -> bool:
        """Configure the cluster, load data for target and verify it.

        Raises:
            UnsupportedTopologyError: If the NoSQL store is sharded and replicated
        """
        try:
            log = StageLog.open(self.log_dir, f"loadData-{self.host}.log")
        except StageLogError as e:
            self.console.print(f"[bold red]Cannot load data:[/bold red] {e}")
            return False

        with log:
            await self.configurator.configure(log)

            job = self.new_job()
            proc = await self._launch(job, target, log)
            finished = False
            try:
                finished = await self._supervise(job, target, log)
            finally:
                await self._reap(proc, terminate=not finished)
            if not finished:
                return False

            await vacuum_relational(self.topology, self.settings, log)
            if self.topology.replicated_unsharded:
                self.console.print("Waiting for MongoDB Replicas to finish synchronizing.")
                outcome = await sync_replicas(self.topology, self.mongo, self.settings, log)
                if outcome == SyncOutcome.TIMED_OUT:
                    logger.warning("Replica sync timed out after load, verifying anyway")

        if not await self.readiness.is_loaded(target):
            self.console.print(
                "[bold red]Data is still not loaded at proper scale.[/bold red] "
                "Check the logs of the data services for errors."
            )
            return False
        return True

    async def _launch(
        self, job: LoaderJob, target: ScaleTarget, log: StageLog
    ) -> asyncio.subprocess.Process:
        command = f"{self.command(target)} 2>&1 | tee {job.progress_log}"
        output_path = Path(self.log_dir) / f"dbLoader_{self.settings.run_label}.log"
        log.line("Starting dbLoader")
        log.line(command)
        logger.info(f"Launching bulk loader on {job.host} for {target.describe()}")
        return await self.shell.launch(job.host, command, output_path)

    async def _find_pid(self, job: LoaderJob, log: StageLog) -> int | None:
        result = await self.shell.run(
            job.host,
            f"ps aux | grep {LOADER_PROCESS_NAME} | grep -v grep | grep -v time",
        )
        log.record(result)
        job.remote_pid = parse_loader_pid(result.output)
        return job.remote_pid

    async def _supervise(self, job: LoaderJob, target: ScaleTarget, log: StageLog) -> bool:
        """Wait for the loader to finish. Returns False if it cannot be tracked."""
        await asyncio.sleep(self.settings.loader_discovery_grace_s)

        if await self._find_pid(job, log) is None:
            # The loader may have finished before the first probe
            if await self.readiness.is_loaded(target):
                log.line("Loader finished before its pid was found")
                return True
            if await self._find_pid(job, log) is None:
                self.console.print(
                    f"[bold red]Can't find dbloader pid for {self.settings.run_label}[/bold red]"
                )
                return False

        logger.debug(f"Following loader pid {job.remote_pid} on {job.host}")
        try:
            await asyncio.wait_for(self._follow(job), timeout=self.settings.loader_timeout_s)
        except asyncio.TimeoutError:
            self.console.print(
                f"[bold red]Bulk loader did not finish within "
                f"{self.settings.loader_timeout_s}s[/bold red]"
            )
            await self._kill(job, log)
            return False
        return True

    async def _kill(self, job: LoaderJob, log: StageLog) -> None:
        logger.warning(f"Killing bulk loader pid {job.remote_pid} on {job.host}")
        log.line(f"Killing dbLoader pid {job.remote_pid}")
        log.record(await self.shell.run(job.host, f"kill {job.remote_pid}"))

    async def _follow(self, job: LoaderJob) -> None:
        command = f"tail -f --pid={job.remote_pid} {job.progress_log}"
        async for line in self.shell.follow(job.host, command):
            if not is_progress_tick(line):
                self.console.print(line.rstrip("\n"), markup=False, highlight=False)

    async def _reap(self, proc: asyncio.subprocess.Process, terminate: bool) -> None:
        if proc.returncode is None and terminate:
            try:
                proc.terminate()
            except ProcessLookupError:
                pass
        await proc.wait()
