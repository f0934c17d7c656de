"""Data lifecycle orchestrator.

Decides per run whether existing data can be reused, restored from a
backup or must be loaded, then prepares auctions for the run and leaves
the data services stopped for the caller to restart.

Flow of prepare_data:
    reload_db           -> teardown, clear, start, clear, load
    data already loaded -> clean
    backup available    -> restore
    load_db             -> teardown, clear, start, clear, load
    otherwise           -> fail
    then: backup if requested, prepare auctions, stop services
"""

import asyncio
import logging

from rich.console import Console

from auction_dataprep.backup import BackupManager
from auction_dataprep.cluster import ClusterConfigurator
from auction_dataprep.config import HarnessSettings
from auction_dataprep.loader import BulkDataLoader
from auction_dataprep.mongo import MongoShell
from auction_dataprep.prep import AuctionPreparer
from auction_dataprep.readiness import ReadinessChecker
from auction_dataprep.remote import CommandRunner, RemoteShell
from auction_dataprep.topology import ServiceTopology
from auction_dataprep.types import AppInstance, PrepareResult, RunRequest, ScaleTarget
from auction_dataprep.warmup import pretouch_data

logger = logging.getLogger(__name__)


class DataLifecycleOrchestrator:
    """Sequences readiness, restore, load, backup and preparation for one app instance.

    At most one orchestrator may drive a given app instance at a time.

    Example:
        orchestrator = DataLifecycleOrchestrator(app, settings, "/tmp/run1")
        result = await orchestrator.prepare_data(users=125, request=RunRequest(load_db=True))
    """

    def __init__(
        self,
        app: AppInstance,
        settings: HarnessSettings,
        log_dir: str,
        shell: CommandRunner | None = None,
        console: Console | None = None,
    ):
        self.app = app
        self.settings = settings
        self.log_dir = log_dir
        self.console = console if console is not None else Console()
        self.shell = shell if shell is not None else RemoteShell(user=settings.ssh_user)

        self.topology = ServiceTopology(app, settings)
        self.mongo = MongoShell(self.shell, settings.data_manager_host)
        self.readiness = ReadinessChecker(self.topology, self.shell, settings, log_dir)
        self.configurator = ClusterConfigurator(self.topology, self.mongo, settings)
        self.loader = BulkDataLoader(
            self.topology,
            self.shell,
            self.mongo,
            settings,
            log_dir,
            self.readiness,
            configurator=self.configurator,
            console=self.console,
        )
        self.backups = BackupManager(
            app, self.topology, self.shell, settings, log_dir, console=self.console
        )
        self.preparer = AuctionPreparer(
            self.topology, self.shell, self.mongo, settings, log_dir, console=self.console
        )

    @property
    def label(self) -> str:
        return (
            f"appInstance {self.settings.app_instance_num} "
            f"of workload {self.settings.workload_num}"
        )

    def target(self, users: int) -> ScaleTarget:
        return self.settings.scale_target(users)

    async def teardown(self) -> None:
        """Stop and fully remove data services, releasing their ports."""
        await self.app.stop_data_services(self.log_dir)
        await self.app.unregister_port_numbers()
        await self.app.cleanup_data_services()
        await self.app.remove_data_services(self.log_dir)

    async def start(self, users: int | None = None) -> bool:
        """Start data services and confirm they are all up."""
        await self.app.configure_and_start_data_services(self.log_dir, users=users)
        await self.app.set_external_port_numbers()
        return await self.settle_and_confirm_up()

    async def settle_and_confirm_up(self) -> bool:
        await asyncio.sleep(self.settings.services_settle_s)
        return await self.confirm_up()

    async def confirm_up(self) -> bool:
        if await self.app.is_up_data_services(self.log_dir):
            logger.debug(f"All data services are up for {self.label}")
            return True
        self.console.print(f"[bold red]Couldn't bring up all data services for {self.label}.[/bold red]")
        return False

    async def stop(self) -> None:
        """Leave data services stopped so the caller can restart them."""
        await self.app.stop_data_services(self.log_dir)
        await self.app.remove_data_services(self.log_dir)
        await self.app.unregister_port_numbers()

    async def reload(self, target: ScaleTarget) -> bool:
        """Wipe data services and load from scratch."""
        await self.teardown()
        await self.app.clear_data_services_before_start(self.log_dir)
        if not await self.start(target.users):
            return False
        await self.app.clear_data_services_after_start(self.log_dir)
        return await self.loader.load(target)

    async def create_backup(self, target: ScaleTarget) -> bool:
        """Back up current data with services stopped, then restart them."""
        await self.teardown()
        if not await self.backups.create(target):
            return False
        return await self.start(target.users)

    async def restore_backup(self, target: ScaleTarget) -> bool:
        """Restore the backup for target; services come back up restarted."""
        if not await self.backups.restore(target):
            return False
        return await self.settle_and_confirm_up()

    async def prepare_data(self, users: int, request: RunRequest) -> PrepareResult:
        """Ensure data is loaded and verified for users, then prepare the run.

        Raises:
            UnsupportedTopologyError: If a load is needed on sharded and replicated NoSQL
            UnsupportedEngineError: If the relational engine is unknown
        """
        target = self.target(users)
        next_request = request
        loaded_data = False
        restored = False

        def failed(message: str) -> PrepareResult:
            return PrepareResult(
                success=False,
                next_request=next_request,
                loaded_data=loaded_data,
                restored_backup=restored,
                message=message,
            )

        self.console.print(f"Configuring and starting data services for {self.label}.")

        if request.reload_db:
            if not await self.reload(target):
                return failed(f"Reloading data failed for {self.label}")
            loaded_data = True
            # Don't reload on each run of a series
            next_request = next_request.consumed_reload()
        else:
            if not await self.start(users):
                return failed(f"Couldn't bring up all data services for {self.label}")

            if await self.readiness.is_loaded(target):
                self.console.print(
                    f"Data is already loaded for {self.label}. Preparing data for current run."
                )
                if not await self.preparer.clean(target):
                    logger.warning(f"Cleaning data failed for {self.label}, continuing")
            elif await self.backups.is_available(target):
                self.console.print(
                    f"Backup is available at {target.describe()} for {self.label}. Restoring backup."
                )
                if not await self.restore_backup(target):
                    return failed(f"Restoring backup failed for {self.label}")
                restored = True
            elif request.load_db:
                self.console.print(
                    f"Backup is not available at {target.describe()} for {self.label}. Loading data."
                )
                if not await self.reload(target):
                    return failed(f"Loading data failed for {self.label}")
                loaded_data = True
            else:
                message = (
                    f"Data not loaded at {target.describe()} for {self.label} and no backup "
                    f"available. To load data, run again with loadDb=true."
                )
                self.console.print(f"[bold red]{message}[/bold red]")
                return failed(message)

        if next_request.rebackup or (loaded_data and next_request.backup):
            if not await self.create_backup(target):
                return failed(f"Creating backup failed for {self.label}")
            # Don't back up twice
            next_request = next_request.consumed_rebackup()

        if not await self.preparer.prepare(target):
            return failed(f"Preparing auctions failed for {self.label}")

        # Services must be restarted by the caller's own process
        await self.stop()

        return PrepareResult(
            success=True,
            next_request=next_request,
            loaded_data=loaded_data,
            restored_backup=restored,
            message=f"Data prepared for {self.label} at {target.describe()}",
        )

    async def pretouch(self) -> bool:
        return await pretouch_data(
            self.topology, self.mongo, self.settings, self.log_dir, console=self.console
        )
