"""Scale-keyed backups of relational, NoSQL and blob storage.

Backup layout, where <key> is the scale level or the effective max users:
    relational: <engineBackupDir>/<imageStoreType>ImageStore/<key>/{data,logs}
    NoSQL:      <mongodbBackupDir>/<key>/<S>shards/<R>replicas/{mongod,configsvrN}
    blob:       <imageStoreBackupDir>/<key>

Backups are only ever used at the exact key they were taken at.
Data services must be stopped before any backup directory is written or
restored from.
"""

import logging
import posixpath

from rich.console import Console

from auction_dataprep.config import HarnessSettings
from auction_dataprep.engines import EngineProfile, engine_profile
from auction_dataprep.exceptions import StageLogError, UnsupportedEngineError
from auction_dataprep.remote import CommandResult, CommandRunner
from auction_dataprep.stage_log import StageLog
from auction_dataprep.topology import ServiceTopology
from auction_dataprep.types import AppInstance, BackupKey, ScaleTarget, ServiceRole

logger = logging.getLogger(__name__)

MONGOD_OWNER = "mongod:mongod"


class BackupManager:
    """Creates, restores and probes backups for one app instance."""

    def __init__(
        self,
        app: AppInstance,
        topology: ServiceTopology,
        shell: CommandRunner,
        settings: HarnessSettings,
        log_dir: str,
        console: Console | None = None,
    ):
        self.app = app
        self.topology = topology
        self.shell = shell
        self.settings = settings
        self.log_dir = log_dir
        self.console = console if console is not None else Console()

    def backup_key(self, target: ScaleTarget) -> BackupKey:
        return BackupKey(
            scale_key=target.backup_key,
            num_shards=self.topology.num_shards,
            num_replicas=self.topology.num_replicas,
            image_store_type=self.settings.image_store_type,
            engine=self.topology.db_engine(),
        )

    def relational_dir(self, profile: EngineProfile, key: BackupKey) -> str:
        return profile.backup_dir(key.image_store_type, key.scale_key)

    def nosql_dir(self, key: BackupKey) -> str:
        return (
            f"{self.settings.mongodb_backup_dir}/{key.scale_key}/"
            f"{key.num_shards}shards/{key.num_replicas}replicas"
        )

    def file_dir(self, key: BackupKey) -> str:
        return f"{self.settings.image_store_backup_dir}/{key.scale_key}"

    async def _run(self, host: str, command: str, log: StageLog) -> CommandResult:
        return log.record(await self.shell.run(host, command))

    def _open_log(self, stage: str) -> StageLog | None:
        try:
            return StageLog.open(self.log_dir, f"{stage}-{self.settings.run_label}.log")
        except StageLogError as e:
            self.console.print(f"[bold red]{stage} aborted:[/bold red] {e}")
            return None

    async def create(self, target: ScaleTarget) -> bool:
        """Copy current storage into the backup for target.

        Data services must already be stopped.

        Raises:
            UnsupportedEngineError: If the relational engine is unknown
        """
        key = self.backup_key(target)
        profile = engine_profile(key.engine, self.settings)
        log = self._open_log("createBackup")
        if log is None:
            return False

        self.console.print(
            f"Creating backup of data at {target.describe()} for the {key.engine} "
            f"database and {key.image_store_type} imageStore"
        )
        with log:
            backup_dir = self.relational_dir(profile, key)
            for db in self.topology.instances(ServiceRole.DB):
                host = db.host_name
                self.console.print(f"Backing up the database on {host}")
                for sub in ("data", "logs"):
                    await self._run(host, f"mkdir -p {backup_dir}/{sub}", log)
                    await self._run(host, f"find {backup_dir}/{sub}/* -delete 2>&1", log)
                await self._run(host, f"cp -r {profile.data_dir}/* {backup_dir}/data/.", log)
                await self._run(host, f"cp -r {profile.log_dir}/* {backup_dir}/logs/.", log)

            backup_dir = self.nosql_dir(key)
            for nosql in self.topology.instances(ServiceRole.NOSQL):
                host = nosql.host_name
                self.console.print(f"Backing up the NoSQL data-store on {host}")
                await self._run(host, f"mkdir -p {backup_dir}/mongod", log)
                await self._run(host, f"find {backup_dir}/mongod/* -delete 2>&1", log)
                await self._run(
                    host, f"cp -r {self.settings.mongodb_data_dir}/* {backup_dir}/mongod/.", log
                )
                for config_dir in self.settings.mongodb_config_server_dirs:
                    name = posixpath.basename(config_dir.rstrip("/"))
                    await self._run(host, f"find {backup_dir}/{name} -delete 2>&1", log)
                    await self._run(host, f"cp -r {config_dir} {backup_dir}/.", log)

            if self.settings.filesystem_image_store:
                backup_dir = self.file_dir(key)
                for file_server in self.topology.instances(ServiceRole.FILE):
                    host = file_server.host_name
                    self.console.print(f"Backing up the filesystem on {host}")
                    await self._run(host, f"mkdir -p {backup_dir}", log)
                    await self._run(host, f"find {backup_dir}/* -delete 2>&1", log)
                    await self._run(
                        host, f"cp -r {self.settings.image_store_dir}/* {backup_dir}/.", log
                    )
        return True

    async def restore(self, target: ScaleTarget) -> bool:
        """Tear services down, restore storage from the backup and restart.

        Returns False without touching anything if the relational engine is
        unsupported.
        """
        key = self.backup_key(target)
        try:
            profile = engine_profile(key.engine, self.settings)
        except UnsupportedEngineError as e:
            self.console.print(f"[bold red]{e}[/bold red]")
            return False

        log = self._open_log("restoreBackup")
        if log is None:
            return False

        # Storage must not be overwritten under a live engine
        await self.app.stop_data_services(self.log_dir)
        await self.app.unregister_port_numbers()
        await self.app.cleanup_data_services()
        await self.app.remove_data_services(self.log_dir)

        self.console.print(
            f"Restoring backup of data at {target.describe()} for "
            f"{key.image_store_type} imageStore"
        )
        with log:
            backup_dir = self.relational_dir(profile, key)
            for db in self.topology.instances(ServiceRole.DB):
                host = db.host_name
                self.console.print(f"Restoring the database on {host}")
                await self._run(host, f"find {profile.data_dir}/* -delete 2>&1", log)
                await self._run(host, f"find {profile.log_dir}/* -delete 2>&1", log)
                await self._run(host, f"cp -r {backup_dir}/data/* {profile.data_dir}/. 2>&1", log)
                await self._run(host, f"cp -r {backup_dir}/logs/* {profile.log_dir}/. 2>&1", log)
                await self._run(host, f"chown -R {profile.owner} {profile.log_dir} 2>&1", log)
                await self._run(host, f"chown -R {profile.owner} {profile.data_dir} 2>&1", log)

            backup_dir = self.nosql_dir(key)
            data_dir = self.settings.mongodb_data_dir
            config_parents: list[str] = []
            for config_dir in self.settings.mongodb_config_server_dirs:
                parent = posixpath.dirname(config_dir.rstrip("/"))
                if parent not in config_parents:
                    config_parents.append(parent)
            for nosql in self.topology.instances(ServiceRole.NOSQL):
                host = nosql.host_name
                self.console.print(f"Restoring the NoSQL data-store on {host}")
                await self._run(host, f"find {data_dir}/* -delete 2>&1", log)
                await self._run(host, f"cp -r {backup_dir}/mongod/* {data_dir}/. 2>&1", log)
                await self._run(host, f"chown -R {MONGOD_OWNER} {data_dir} 2>&1", log)
                for config_dir in self.settings.mongodb_config_server_dirs:
                    config_dir = config_dir.rstrip("/")
                    name = posixpath.basename(config_dir)
                    parent = posixpath.dirname(config_dir)
                    await self._run(host, f"find {config_dir} -delete 2>&1", log)
                    await self._run(host, f"cp -r {backup_dir}/{name} {parent}/. 2>&1", log)
                for parent in config_parents:
                    await self._run(host, f"chown -R {MONGOD_OWNER} {parent} 2>&1", log)

            if self.settings.filesystem_image_store:
                backup_dir = self.file_dir(key)
                image_dir = self.settings.image_store_dir
                for file_server in self.topology.instances(ServiceRole.FILE):
                    host = file_server.host_name
                    self.console.print(f"Restoring the filesystem on {host}")
                    await self._run(host, f"find {image_dir}/* -delete 2>&1", log)
                    await self._run(host, f"cp -r {backup_dir}/* {image_dir}/. 2>&1", log)

        await self.app.configure_and_start_data_services(self.log_dir, users=target.users)
        await self.app.set_external_port_numbers()
        return True

    async def is_available(self, target: ScaleTarget) -> bool:
        """True iff every instance has a backup at the exact key.

        Raises:
            UnsupportedEngineError: If the relational engine is unknown
        """
        key = self.backup_key(target)
        profile = engine_profile(key.engine, self.settings)
        log = self._open_log("isBackupAvailable")
        if log is None:
            return False

        probes = [
            (ServiceRole.DB, self.relational_dir(profile, key)),
            (ServiceRole.NOSQL, self.nosql_dir(key)),
        ]
        if self.settings.filesystem_image_store:
            probes.append((ServiceRole.FILE, self.file_dir(key)))

        with log:
            for role, path in probes:
                for instance in self.topology.instances(role):
                    if not await instance.backup_available(path, log.handle):
                        logger.debug(f"No backup on {instance.host_name} at {path}")
                        return False
        return True
