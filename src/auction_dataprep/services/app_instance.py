"""Application instance assembled from a YAML topology file."""

import asyncio
import logging
from pathlib import Path

import yaml
from pydantic import BaseModel, Field, model_validator

from auction_dataprep.config import HarnessSettings
from auction_dataprep.remote import CommandRunner, RemoteShell
from auction_dataprep.services.data_services import (
    SERVICE_CLASSES,
    ContainerDataService,
    ServiceConfig,
)
from auction_dataprep.services.docker_host import DockerHost
from auction_dataprep.types import ServiceRole

logger = logging.getLogger(__name__)

_IMAGE_STORE_PROFILES = {
    "mongodb": "imagesInMongo",
    "filesystem": "imagesInFilesystem",
    "memory": "imagesInMemory",
}


class TopologyConfig(BaseModel):
    """Topology YAML schema with validation."""
    num_nosql_shards: int = Field(default=0, ge=0)
    num_nosql_replicas: int = Field(default=0, ge=0)
    spring_profiles: str | None = None  # derived from the services when unset
    services: list[ServiceConfig]

    @model_validator(mode="after")
    def validate_roles(self) -> "TopologyConfig":
        roles = {s.role for s in self.services}
        for required in (ServiceRole.DB, ServiceRole.NOSQL):
            if required not in roles:
                raise ValueError(f"Topology needs at least one {required.value} service")
        return self


class AuctionAppInstance:
    """The data services backing one auction workload instance.

    Lifecycle operations fan out over all services concurrently.
    """

    def __init__(
        self,
        services: list[ContainerDataService],
        num_nosql_shards: int = 0,
        num_nosql_replicas: int = 0,
        spring_profiles: str | None = None,
        image_store_type: str = "mongodb",
    ):
        self.services = services
        self._num_shards = num_nosql_shards
        self._num_replicas = num_nosql_replicas
        self._spring_profiles = spring_profiles
        self.image_store_type = image_store_type

    @property
    def num_nosql_shards(self) -> int:
        return self._num_shards

    @property
    def num_nosql_replicas(self) -> int:
        return self._num_replicas

    def active_instances(self, role: ServiceRole) -> list[ContainerDataService]:
        return [s for s in self.services if s.role == role]

    def active_profiles(self) -> str:
        if self._spring_profiles:
            return self._spring_profiles
        db = self.active_instances(ServiceRole.DB)
        profiles = [db[0].engine_kind if db else "postgresql"]
        profiles.append(_IMAGE_STORE_PROFILES.get(self.image_store_type, "imagesInMongo"))
        if self._num_shards > 0:
            profiles.append("shardedMongo")
        elif self._num_replicas > 0:
            profiles.append("replicatedMongo")
        else:
            profiles.append("singleMongo")
        return ",".join(profiles)

    async def _each(self, op: str, *args, **kwargs) -> list:
        return await asyncio.gather(
            *(getattr(s, op)(*args, **kwargs) for s in self.services)
        )

    async def stop_data_services(self, log_dir: str) -> None:
        logger.debug(f"Stopping {len(self.services)} data services")
        await self._each("stop")

    async def clear_data_services_before_start(self, log_dir: str) -> None:
        await self._each("clear_before_start")

    async def clear_data_services_after_start(self, log_dir: str) -> None:
        await self._each("clear_after_start")

    async def cleanup_data_services(self) -> None:
        await self._each("cleanup")

    async def remove_data_services(self, log_dir: str) -> None:
        await self._each("remove")

    async def configure_and_start_data_services(
        self, log_dir: str, users: int | None = None
    ) -> None:
        logger.debug(f"Starting {len(self.services)} data services (users={users})")
        await self._each("start", users=users)

    async def is_up_data_services(self, log_dir: str) -> bool:
        return all(await self._each("is_up"))

    async def set_external_port_numbers(self) -> None:
        await self._each("refresh_external_ports")

    async def unregister_port_numbers(self) -> None:
        for service in self.services:
            service.forget_external_ports()


def load_topology(
    path: Path,
    settings: HarnessSettings,
    shell: CommandRunner | None = None,
) -> AuctionAppInstance:
    """Load a topology YAML file and build its app instance.

    Raises:
        FileNotFoundError: If file doesn't exist
        pydantic.ValidationError: If YAML doesn't match schema
    """
    with open(path) as f:
        data = yaml.safe_load(f)
    config = TopologyConfig.model_validate(data)

    shell = shell if shell is not None else RemoteShell(user=settings.ssh_user)
    hosts: dict[str, DockerHost] = {}
    services: list[ContainerDataService] = []
    for index, service in enumerate(config.services):
        if service.host not in hosts:
            hosts[service.host] = DockerHost(service.host, ssh_user=settings.ssh_user)
        cls = SERVICE_CLASSES[service.kind]
        services.append(cls(service, hosts[service.host], shell, settings, index=index))

    return AuctionAppInstance(
        services,
        num_nosql_shards=config.num_nosql_shards,
        num_nosql_replicas=config.num_nosql_replicas,
        spring_profiles=config.spring_profiles,
        image_store_type=settings.image_store_type,
    )
