"""Async wrappers around python-on-whales for one docker host.

python-on-whales is synchronous, so every call runs in the default executor
to keep the event loop free.
"""

import asyncio
import logging

from python_on_whales import DockerClient
from python_on_whales.exceptions import DockerException, NoSuchContainer

from auction_dataprep.remote import LOCAL_HOSTS

logger = logging.getLogger(__name__)


class DockerHost:
    """Docker daemon on a named host, reached over ssh unless local."""

    def __init__(
        self,
        name: str,
        ssh_user: str = "root",
        client: DockerClient | None = None,
    ):
        self.name = name
        if client is None:
            if name in LOCAL_HOSTS:
                client = DockerClient()
            else:
                client = DockerClient(host=f"ssh://{ssh_user}@{name}")
        self._docker = client

    async def run_container(
        self,
        name: str,
        image: str,
        publish: list[tuple[int, int]],
        volumes: list[tuple[str, str]],
        envs: dict[str, str],
        command: list[str] | None = None,
    ) -> str:
        """Start a detached container. Returns its id."""
        loop = asyncio.get_running_loop()

        def _blocking_run():
            container = self._docker.run(
                image,
                command or [],
                name=name,
                detach=True,
                publish=publish,
                volumes=volumes,
                envs=envs,
            )
            return container.id

        container_id = await loop.run_in_executor(None, _blocking_run)
        logger.debug(f"Started {name} ({image}) on {self.name}")
        return container_id

    async def stop_container(self, name: str, timeout: int = 30) -> None:
        """Stop a container. Stopping a missing or stopped container succeeds."""
        loop = asyncio.get_running_loop()

        def _blocking_stop():
            if not self._docker.container.exists(name):
                return
            container = self._docker.container.inspect(name)
            if container.state.running:
                self._docker.container.stop(name, time=timeout)

        await loop.run_in_executor(None, _blocking_stop)

    async def remove_container(self, name: str) -> None:
        """Force-remove a container with its anonymous volumes."""
        loop = asyncio.get_running_loop()

        def _blocking_remove():
            try:
                self._docker.container.remove(name, force=True, volumes=True)
            except NoSuchContainer:
                pass

        await loop.run_in_executor(None, _blocking_remove)

    async def is_running(self, name: str) -> bool:
        loop = asyncio.get_running_loop()

        def _blocking_state():
            try:
                return bool(self._docker.container.inspect(name).state.running)
            except NoSuchContainer:
                return False

        return await loop.run_in_executor(None, _blocking_state)

    async def published_ports(self, name: str) -> dict[int, int]:
        """Map of container port to host port for a running container."""
        loop = asyncio.get_running_loop()

        def _blocking_ports():
            container = self._docker.container.inspect(name)
            published: dict[int, int] = {}
            for spec, bindings in (container.network_settings.ports or {}).items():
                if not bindings:
                    continue
                container_port = int(spec.split("/", 1)[0])
                published[container_port] = int(bindings[0].host_port)
            return published

        return await loop.run_in_executor(None, _blocking_ports)

    async def execute(self, name: str, command: list[str]) -> tuple[bool, str]:
        """Run a command in a container. Returns (success, output)."""
        loop = asyncio.get_running_loop()

        def _blocking_exec():
            try:
                return True, self._docker.execute(name, command)
            except DockerException as e:
                return False, str(e)

        ok, output = await loop.run_in_executor(None, _blocking_exec)
        return ok, output or ""
