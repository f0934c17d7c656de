"""Type definitions for the data lifecycle orchestrator."""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Protocol, TextIO, runtime_checkable


class ServiceRole(str, Enum):
    """Roles a data service can play inside an application instance."""

    DB = "dbServer"
    NOSQL = "nosqlServer"
    FILE = "fileServer"


class ReplicaRole(str, Enum):
    """Replica role of a NoSQL instance."""

    PRIMARY = "primary"
    SECONDARY = "secondary"
    NONE = "none"


class SyncOutcome(str, Enum):
    """Result of waiting on the replica sync barrier."""

    IN_SYNC = "in_sync"
    TIMED_OUT = "timed_out"


@dataclass(frozen=True)
class ScaleTarget:
    """Dataset sizing target for one operation.

    A non-negative scale is authoritative. Otherwise the user count is used,
    and loading sizes for max(users, max_users).
    """

    scale: int = -1
    users: int = 0
    max_users: int = 0

    @property
    def uses_scale(self) -> bool:
        return self.scale >= 0

    @property
    def effective_max_users(self) -> int:
        return max(self.users, self.max_users)

    @property
    def backup_key(self) -> int:
        """Scale level or effective max users, whichever keys backups."""
        return self.scale if self.uses_scale else self.effective_max_users

    def describe(self) -> str:
        if self.uses_scale:
            return f"scale {self.scale}"
        return f"a maximum of {self.effective_max_users} users"


@dataclass(frozen=True)
class BackupKey:
    """Tuple identifying which data a backup directory holds.

    A backup is only usable when every field matches the current target.
    """

    scale_key: int
    num_shards: int
    num_replicas: int
    image_store_type: str
    engine: str


@dataclass
class ReplicaMember:
    """One member row of a replica set status probe."""

    name: str
    optime: tuple[int, int]


@dataclass
class ReplicaSetView:
    """Parsed replica status.

    In sync iff every member reports the optime of the first one observed.
    An empty view is vacuously in sync.
    """

    members: list[ReplicaMember] = field(default_factory=list)

    @property
    def in_sync(self) -> bool:
        if not self.members:
            return True
        first = self.members[0].optime
        return all(m.optime == first for m in self.members)


@dataclass
class LoaderJob:
    """A detached bulk-load invocation on a remote host."""

    host: str
    progress_log: str
    remote_pid: int | None = None


@dataclass(frozen=True)
class RunRequest:
    """Per-run data lifecycle flags.

    The orchestrator never mutates a request. It returns the request to
    persist for the next run of a series.
    """

    reload_db: bool = False
    load_db: bool = False
    backup: bool = False
    rebackup: bool = False

    def consumed_reload(self) -> "RunRequest":
        return replace(self, reload_db=False)

    def consumed_rebackup(self) -> "RunRequest":
        return replace(self, rebackup=False)


@dataclass
class PrepareResult:
    """Outcome of one orchestrator pass."""

    success: bool
    next_request: RunRequest
    loaded_data: bool = False
    restored_backup: bool = False
    message: str = ""


@runtime_checkable
class DataServiceInstance(Protocol):
    """One running instance of a data engine."""

    @property
    def host_name(self) -> str:
        """Host the instance runs on."""
        ...

    @property
    def engine_kind(self) -> str:
        """Engine implementation tag (e.g. 'postgresql', 'mongodb')."""
        ...

    @property
    def shard_index(self) -> int:
        """Shard index used to build replica-set names."""
        ...

    def port_for(self, protocol: str) -> int:
        """Externally reachable port bound for a protocol."""
        ...

    def internal_port_for(self, protocol: str) -> int:
        """Port the engine listens on inside its own network namespace."""
        ...

    async def run_compaction(self, log: TextIO) -> None:
        """Run a storage compaction pass, writing output to log."""
        ...

    async def backup_available(self, path: str, log: TextIO) -> bool:
        """Probe whether a usable backup exists at path."""
        ...


@runtime_checkable
class AppInstance(Protocol):
    """Set of provisioned data services backing one workload."""

    @property
    def num_nosql_shards(self) -> int:
        ...

    @property
    def num_nosql_replicas(self) -> int:
        ...

    def active_instances(self, role: ServiceRole) -> list[DataServiceInstance]:
        """Active instances of a role in provisioning order."""
        ...

    def active_profiles(self) -> str:
        """Comma separated Spring profile string for loader wiring."""
        ...

    async def stop_data_services(self, log_dir: str) -> None:
        ...

    async def clear_data_services_before_start(self, log_dir: str) -> None:
        ...

    async def clear_data_services_after_start(self, log_dir: str) -> None:
        ...

    async def cleanup_data_services(self) -> None:
        ...

    async def remove_data_services(self, log_dir: str) -> None:
        ...

    async def configure_and_start_data_services(
        self, log_dir: str, users: int | None = None
    ) -> None:
        ...

    async def is_up_data_services(self, log_dir: str) -> bool:
        ...

    async def set_external_port_numbers(self) -> None:
        ...

    async def unregister_port_numbers(self) -> None:
        ...
