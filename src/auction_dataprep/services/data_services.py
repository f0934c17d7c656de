"""Container-backed data services.

Each service runs as one container on a DockerHost, with its storage
directories bind-mounted from the host so backups and restores can work
on them with plain shell commands while the container is gone.
"""

import logging
from typing import TextIO

from pydantic import BaseModel, Field, field_validator

from auction_dataprep.cluster import SHARDED_DATABASES
from auction_dataprep.config import HarnessSettings
from auction_dataprep.remote import CommandRunner
from auction_dataprep.services.docker_host import DockerHost
from auction_dataprep.topology import MONGOD
from auction_dataprep.types import ReplicaRole, ServiceRole

logger = logging.getLogger(__name__)


class ServiceConfig(BaseModel):
    """One data service declared in a topology file."""
    role: ServiceRole
    kind: str  # "postgresql", "mysql", "mongodb", "nginx"
    host: str
    image: str
    ports: dict[str, int] = Field(default_factory=dict)  # protocol -> container port
    published: dict[str, int] = Field(default_factory=dict)  # protocol -> host port
    shard_index: int = Field(default=0, ge=0)
    replica_role: ReplicaRole = ReplicaRole.NONE
    envs: dict[str, str] = Field(default_factory=dict)
    args: list[str] = Field(default_factory=list)  # extra engine arguments, e.g. --shardsvr

    @field_validator("kind")
    @classmethod
    def validate_kind(cls, v: str) -> str:
        if v not in SERVICE_KINDS:
            raise ValueError(f"Invalid service kind: {v}. Must be one of {sorted(SERVICE_KINDS)}")
        return v


class ContainerDataService:
    """A data service running in a container.

    Subclasses set the container mount point, the backup layout probed by
    backup_available and the in-container health probe.
    """

    CONTAINER_DATA_DIR = "/data"
    BACKUP_SUBDIRS: tuple[str, ...] = ("",)

    def __init__(
        self,
        config: ServiceConfig,
        docker: DockerHost,
        shell: CommandRunner,
        settings: HarnessSettings,
        index: int = 0,
    ):
        self.config = config
        self.docker = docker
        self.shell = shell
        self.settings = settings
        self.container_name = f"{config.kind}-{settings.run_label}-{index}"
        self._external: dict[str, int] = {}

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.container_name}@{self.host_name})"

    @property
    def role(self) -> ServiceRole:
        return self.config.role

    @property
    def host_name(self) -> str:
        return self.config.host

    @property
    def engine_kind(self) -> str:
        return self.config.kind

    @property
    def shard_index(self) -> int:
        return self.config.shard_index

    @property
    def replica_role(self) -> ReplicaRole:
        return self.config.replica_role

    @property
    def data_dir(self) -> str:
        raise NotImplementedError

    def internal_port_for(self, protocol: str) -> int:
        return self.config.ports[protocol]

    def port_for(self, protocol: str) -> int:
        if protocol in self._external:
            return self._external[protocol]
        return self.config.published.get(protocol, self.internal_port_for(protocol))

    def volumes(self) -> list[tuple[str, str]]:
        return [(self.data_dir, self.CONTAINER_DATA_DIR)]

    def command(self) -> list[str] | None:
        return None

    def health_command(self) -> list[str] | None:
        return None

    async def start(self, users: int | None = None) -> None:
        publish = [
            (self.config.published.get(protocol, port), port)
            for protocol, port in self.config.ports.items()
        ]
        envs = dict(self.config.envs)
        if users is not None:
            envs["USERS"] = str(users)
        await self.docker.run_container(
            self.container_name,
            self.config.image,
            publish=publish,
            volumes=self.volumes(),
            envs=envs,
            command=self.command(),
        )

    async def stop(self) -> None:
        await self.docker.stop_container(self.container_name)

    async def remove(self) -> None:
        await self.docker.remove_container(self.container_name)

    async def is_up(self) -> bool:
        if not await self.docker.is_running(self.container_name):
            return False
        probe = self.health_command()
        if probe is None:
            return True
        ok, output = await self.docker.execute(self.container_name, probe)
        if not ok:
            logger.debug(f"{self} not up yet: {output.strip()}")
        return ok

    async def refresh_external_ports(self) -> None:
        published = await self.docker.published_ports(self.container_name)
        self._external = {
            protocol: published[port]
            for protocol, port in self.config.ports.items()
            if port in published
        }

    def forget_external_ports(self) -> None:
        self._external = {}

    async def clear_before_start(self) -> None:
        """Wipe live storage so the service starts empty."""
        await self.shell.run(self.host_name, f"find {self.data_dir}/* -delete 2>&1")

    async def clear_after_start(self) -> None:
        pass

    async def cleanup(self) -> None:
        pass

    async def run_compaction(self, log: TextIO) -> None:
        pass

    async def backup_available(self, path: str, log: TextIO) -> bool:
        """A backup exists iff every expected subdirectory is non-empty."""
        for sub in self.BACKUP_SUBDIRS:
            target = f"{path}/{sub}" if sub else path
            result = await self.shell.run(
                self.host_name, f"test -d {target} && ls -A {target} | head -n 1"
            )
            log.write(f"[{self.host_name}] {result.command}\n{result.output}")
            if not result.success or not result.output.strip():
                log.write(f"Backup not available at {target} on {self.host_name}\n")
                return False
        return True


class RelationalService(ContainerDataService):
    BACKUP_SUBDIRS = ("data", "logs")
    CONTAINER_LOG_DIR = "/logs"

    @property
    def data_dir(self) -> str:
        return getattr(self.settings, f"{self.engine_kind}_data_dir")

    @property
    def log_dir(self) -> str:
        return getattr(self.settings, f"{self.engine_kind}_log_dir")

    def volumes(self) -> list[tuple[str, str]]:
        return super().volumes() + [(self.log_dir, self.CONTAINER_LOG_DIR)]

    async def clear_before_start(self) -> None:
        await super().clear_before_start()
        await self.shell.run(self.host_name, f"find {self.log_dir}/* -delete 2>&1")


class PostgresqlService(RelationalService):
    CONTAINER_DATA_DIR = "/mnt/dbData/postgresql"
    CONTAINER_LOG_DIR = "/mnt/dbLogs/postgresql"

    def health_command(self) -> list[str] | None:
        return ["pg_isready", "-U", "auction"]

    async def run_compaction(self, log: TextIO) -> None:
        command = ["psql", "-U", "auction", "-c", "vacuum analyze;"]
        log.write(f"Vacuuming postgresql on {self.host_name}: {' '.join(command)}\n")
        ok, output = await self.docker.execute(self.container_name, command)
        log.write(output if output.endswith("\n") or not output else output + "\n")
        if not ok:
            logger.warning(f"Vacuum failed on {self.host_name}")


class MysqlService(RelationalService):
    CONTAINER_DATA_DIR = "/mnt/dbData/mysql"
    CONTAINER_LOG_DIR = "/mnt/dbLogs/mysql"

    def health_command(self) -> list[str] | None:
        return ["mysqladmin", "-u", "auction", "-pauction", "ping"]


class MongodbService(ContainerDataService):
    CONTAINER_DATA_DIR = "/mnt/mongoData"
    BACKUP_SUBDIRS = ("mongod",)

    @property
    def data_dir(self) -> str:
        return self.settings.mongodb_data_dir

    def command(self) -> list[str] | None:
        port = str(self.internal_port_for(MONGOD))
        argv = ["mongod", "--port", port, "--dbpath", self.CONTAINER_DATA_DIR, "--bind_ip_all"]
        if self.replica_role != ReplicaRole.NONE:
            argv += ["--replSet", f"auction{self.shard_index}"]
        return argv + self.config.args

    def health_command(self) -> list[str] | None:
        port = str(self.internal_port_for(MONGOD))
        return ["mongo", "--port", port, "--quiet", "--eval", "db.stats().ok"]

    async def clear_after_start(self) -> None:
        port = str(self.internal_port_for(MONGOD))
        for database in SHARDED_DATABASES:
            await self.docker.execute(
                self.container_name,
                ["mongo", "--port", port, "--quiet", "--eval", "db.dropDatabase()", database],
            )


class FileServerService(ContainerDataService):
    CONTAINER_DATA_DIR = "/mnt/imageStore"

    @property
    def data_dir(self) -> str:
        return self.settings.image_store_dir


SERVICE_CLASSES: dict[str, type[ContainerDataService]] = {
    "postgresql": PostgresqlService,
    "mysql": MysqlService,
    "mongodb": MongodbService,
    "nginx": FileServerService,
}

SERVICE_KINDS = frozenset(SERVICE_CLASSES)
