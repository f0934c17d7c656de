"""Per-run auction preparation and storage cleanup.

Both stages drive the prep tool against already loaded data. Preparation
makes a fixed number of auctions active for the run's schedule. Cleanup
runs it with zero auctions, which only drops data added by earlier runs.
"""

import logging

from rich.console import Console

from auction_dataprep.cluster import SHARDED_COLLECTIONS
from auction_dataprep.commands import java_tool_command, prep_options
from auction_dataprep.config import HarnessSettings
from auction_dataprep.exceptions import StageLogError
from auction_dataprep.maintenance import sync_replicas, vacuum_relational
from auction_dataprep.mongo import MongoShell
from auction_dataprep.remote import CommandRunner
from auction_dataprep.scale import auctions_for
from auction_dataprep.stage_log import StageLog
from auction_dataprep.topology import MONGOD, ServiceTopology
from auction_dataprep.types import ScaleTarget, ServiceRole

logger = logging.getLogger(__name__)


class AuctionPreparer:
    """Runs the prepare and clean stages for one app instance."""

    PROFILE = "dbprep"

    def __init__(
        self,
        topology: ServiceTopology,
        shell: CommandRunner,
        mongo: MongoShell,
        settings: HarnessSettings,
        log_dir: str,
        console: Console | None = None,
    ):
        self.topology = topology
        self.shell = shell
        self.mongo = mongo
        self.settings = settings
        self.log_dir = log_dir
        self.console = console if console is not None else Console()

    def command(self, auctions: int, target: ScaleTarget) -> str:
        options = prep_options(
            auctions,
            self.topology.num_shards,
            self.topology.num_replicas,
            self.settings.duration_floor,
            target,
        )
        return java_tool_command(
            self.settings,
            self.topology,
            self.settings.db_prep_main_class,
            self.PROFILE,
            options,
        )

    async def delete_added_images(self) -> None:
        """Remove images uploaded by earlier runs from filesystem image stores."""
        if not self.settings.filesystem_image_store:
            return
        for file_server in self.topology.instances(ServiceRole.FILE):
            logger.debug(f"Deleting added images on {file_server.host_name}")
            await self.shell.run(
                file_server.host_name,
                f"find {self.settings.image_store_dir} -name '*added*' -delete 2>&1",
            )

    async def prepare(self, target: ScaleTarget) -> bool:
        """Make auctions active for the coming run."""
        auctions = auctions_for(
            target.users,
            self.settings.auctions,
            self.settings.users_per_auction_scale_factor,
        )
        await self.delete_added_images()

        name = f"PrepareData_{self.settings.run_label}.log"
        try:
            log = StageLog.open(self.log_dir, name)
        except StageLogError as e:
            self.console.print(f"[bold red]{e}[/bold red]")
            return False

        with log:
            log.line("Preparing auctions to be active in current run")
            ok = await self._run_prep(auctions, target, log)
            if not ok:
                self.console.print(
                    f"[bold red]Data preparation process failed.[/bold red] "
                    f"Check {name} for more information."
                )
                return False
            await self._after_write(log)
        return True

    async def clean(self, target: ScaleTarget) -> bool:
        """Drop data added by prior runs and optionally compact NoSQL storage."""
        self.console.print(
            "Cleaning and compacting storage on all data services. "
            "This can take a long time after large runs."
        )
        await self.delete_added_images()

        name = f"CleanData_{self.settings.run_label}.log"
        try:
            log = StageLog.open(self.log_dir, name)
        except StageLogError as e:
            self.console.print(f"[bold red]{e}[/bold red]")
            return False

        with log:
            log.line(f"Cleaning up data services for {self.settings.run_label}.")
            # Zero auctions: nothing is prepared, only cleaned
            if not await self._run_prep(0, target, log):
                self.console.print(
                    f"[bold red]Data cleaning process failed.[/bold red] "
                    f"Check {name} for more information."
                )
                return False
            await self._after_write(log)
            if self.settings.mongodb_compact:
                await self.compact_nosql(log)
        return True

    async def compact_nosql(self, log: StageLog) -> None:
        for nosql in self.topology.instances(ServiceRole.NOSQL):
            host = nosql.host_name
            port = nosql.port_for(MONGOD)
            log.line(f"Compacting MongoDB collections on {host}")
            usage = f"du -hsc {self.settings.mongodb_data_dir}"
            log.record(await self.shell.run(host, usage))
            for spec in SHARDED_COLLECTIONS:
                logger.debug(f"Compacting {spec.collection} collection on {host}")
                await self.mongo.printjson(
                    host,
                    port,
                    f'db.runCommand({{ compact: "{spec.collection}" }})',
                    database=spec.database,
                    log=log,
                )
            log.record(await self.shell.run(host, usage))

    async def _run_prep(self, auctions: int, target: ScaleTarget, log: StageLog) -> bool:
        result = await self.shell.run(
            self.settings.data_manager_host, self.command(auctions, target)
        )
        log.record(result)
        return result.success

    async def _after_write(self, log: StageLog) -> None:
        await vacuum_relational(self.topology, self.settings, log)
        if self.topology.replicated_unsharded:
            self.console.print("Waiting for MongoDB Replicas to finish synchronizing.")
            await sync_replicas(self.topology, self.mongo, self.settings, log)
