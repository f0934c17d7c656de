"""Tests for the container-backed data services."""

import io
from unittest.mock import MagicMock, patch

import pytest
from pydantic import ValidationError
from python_on_whales.exceptions import DockerException, NoSuchContainer

from auction_dataprep.services import (
    AuctionAppInstance,
    DockerHost,
    FileServerService,
    MongodbService,
    MysqlService,
    PostgresqlService,
    ServiceConfig,
    TopologyConfig,
    load_topology,
)
from auction_dataprep.types import DataServiceInstance, ReplicaRole, ServiceRole

TOPOLOGY_YAML = """\
num_nosql_shards: 0
num_nosql_replicas: 2
services:
  - role: dbServer
    kind: postgresql
    host: db1
    image: auction/postgresql:2.0
    ports: {postgresql: 5432}
  - role: nosqlServer
    kind: mongodb
    host: mongo1
    image: auction/mongodb:2.0
    ports: {mongod: 27017}
    replica_role: primary
  - role: nosqlServer
    kind: mongodb
    host: mongo2
    image: auction/mongodb:2.0
    ports: {mongod: 27017}
    replica_role: secondary
  - role: fileServer
    kind: nginx
    host: mongo1
    image: auction/nginx:2.0
    ports: {http: 80}
"""


def postgres_config(**overrides) -> ServiceConfig:
    fields = dict(
        role=ServiceRole.DB,
        kind="postgresql",
        host="db1",
        image="auction/postgresql:2.0",
        ports={"postgresql": 5432},
    )
    fields.update(overrides)
    return ServiceConfig(**fields)


def mongo_config(**overrides) -> ServiceConfig:
    fields = dict(
        role=ServiceRole.NOSQL,
        kind="mongodb",
        host="mongo1",
        image="auction/mongodb:2.0",
        ports={"mongod": 27017},
    )
    fields.update(overrides)
    return ServiceConfig(**fields)


@pytest.fixture
def docker():
    return MagicMock(spec=DockerHost)


# DockerHost


@pytest.mark.asyncio
async def test_run_container_detached():
    client = MagicMock()
    client.run.return_value.id = "abc123"
    host = DockerHost("db1", client=client)

    container_id = await host.run_container(
        "postgresql-W1I1-0",
        "auction/postgresql:2.0",
        publish=[(5432, 5432)],
        volumes=[("/mnt/dbData/postgresql", "/data")],
        envs={"USERS": "125"},
    )

    assert container_id == "abc123"
    args, kwargs = client.run.call_args
    assert args == ("auction/postgresql:2.0", [])
    assert kwargs["detach"] is True
    assert kwargs["name"] == "postgresql-W1I1-0"
    assert kwargs["envs"] == {"USERS": "125"}


@pytest.mark.asyncio
async def test_stop_container_skips_missing():
    client = MagicMock()
    client.container.exists.return_value = False
    await DockerHost("db1", client=client).stop_container("gone")
    client.container.stop.assert_not_called()


@pytest.mark.asyncio
async def test_stop_container_running():
    client = MagicMock()
    client.container.exists.return_value = True
    client.container.inspect.return_value.state.running = True
    await DockerHost("db1", client=client).stop_container("pg", timeout=5)
    client.container.stop.assert_called_once_with("pg", time=5)


@pytest.mark.asyncio
async def test_remove_container_missing_is_ok():
    client = MagicMock()
    client.container.remove.side_effect = NoSuchContainer(["docker", "rm", "gone"], 1)
    await DockerHost("db1", client=client).remove_container("gone")


@pytest.mark.asyncio
async def test_is_running_missing_container():
    client = MagicMock()
    client.container.inspect.side_effect = NoSuchContainer(["docker", "inspect", "gone"], 1)
    assert await DockerHost("db1", client=client).is_running("gone") is False


@pytest.mark.asyncio
async def test_published_ports():
    client = MagicMock()
    binding = MagicMock()
    binding.host_port = "49153"
    client.container.inspect.return_value.network_settings.ports = {
        "27017/tcp": [binding],
        "28017/tcp": None,
    }
    ports = await DockerHost("mongo1", client=client).published_ports("mongodb-W1I1-1")
    assert ports == {27017: 49153}


@pytest.mark.asyncio
async def test_execute_failure_returns_output():
    client = MagicMock()
    client.execute.side_effect = DockerException(["docker", "exec", "pg"], 1)
    ok, output = await DockerHost("db1", client=client).execute("pg", ["pg_isready"])
    assert ok is False
    assert "docker exec pg" in output


def test_remote_host_uses_ssh():
    with patch("auction_dataprep.services.docker_host.DockerClient") as client_cls:
        DockerHost("db1", ssh_user="weathervane")
    client_cls.assert_called_once_with(host="ssh://weathervane@db1")


def test_local_host_uses_local_daemon():
    with patch("auction_dataprep.services.docker_host.DockerClient") as client_cls:
        DockerHost("localhost")
    client_cls.assert_called_once_with()


class TestServiceConfig:
    """Tests for ServiceConfig validation."""

    def test_unknown_kind_rejected(self):
        with pytest.raises(ValidationError):
            postgres_config(kind="oracle")

    def test_negative_shard_index_rejected(self):
        with pytest.raises(ValidationError):
            mongo_config(shard_index=-1)


class TestContainerDataService:
    """Tests for shared container service behavior."""

    def test_satisfies_instance_contract(self, docker, shell, settings):
        service = PostgresqlService(postgres_config(), docker, shell, settings)
        assert isinstance(service, DataServiceInstance)

    def test_container_name(self, docker, shell, settings):
        service = MongodbService(mongo_config(), docker, shell, settings, index=3)
        assert service.container_name == "mongodb-W1I2-3"

    @pytest.mark.asyncio
    async def test_port_resolution(self, docker, shell, settings):
        service = PostgresqlService(postgres_config(), docker, shell, settings)
        assert service.port_for("postgresql") == 5432

        docker.published_ports.return_value = {5432: 49153}
        await service.refresh_external_ports()
        assert service.port_for("postgresql") == 49153
        assert service.internal_port_for("postgresql") == 5432

        service.forget_external_ports()
        assert service.port_for("postgresql") == 5432

    def test_configured_published_port(self, docker, shell, settings):
        service = PostgresqlService(
            postgres_config(published={"postgresql": 15432}), docker, shell, settings
        )
        assert service.port_for("postgresql") == 15432

    @pytest.mark.asyncio
    async def test_start_passes_users(self, docker, shell, settings):
        service = PostgresqlService(
            postgres_config(envs={"MAX_CONNECTIONS": "200"}), docker, shell, settings
        )

        await service.start(users=125)

        kwargs = docker.run_container.call_args.kwargs
        assert kwargs["envs"] == {"MAX_CONNECTIONS": "200", "USERS": "125"}
        assert kwargs["publish"] == [(5432, 5432)]
        assert kwargs["volumes"] == [
            (settings.postgresql_data_dir, PostgresqlService.CONTAINER_DATA_DIR),
            (settings.postgresql_log_dir, PostgresqlService.CONTAINER_LOG_DIR),
        ]

    @pytest.mark.asyncio
    async def test_not_up_when_stopped(self, docker, shell, settings):
        docker.is_running.return_value = False
        service = MysqlService(
            postgres_config(kind="mysql", ports={"mysql": 3306}), docker, shell, settings
        )
        assert await service.is_up() is False
        docker.execute.assert_not_called()

    @pytest.mark.asyncio
    async def test_up_requires_health_probe(self, docker, shell, settings):
        docker.is_running.return_value = True
        docker.execute.return_value = (False, "no response")
        service = PostgresqlService(postgres_config(), docker, shell, settings)
        assert await service.is_up() is False
        assert docker.execute.call_args.args[1][0] == "pg_isready"

    @pytest.mark.asyncio
    async def test_file_server_up_when_running(self, docker, shell, settings):
        docker.is_running.return_value = True
        config = ServiceConfig(
            role=ServiceRole.FILE, kind="nginx", host="f1", image="nginx", ports={"http": 80}
        )
        assert await FileServerService(config, docker, shell, settings).is_up() is True

    @pytest.mark.asyncio
    async def test_clear_before_start(self, docker, shell, settings):
        service = PostgresqlService(postgres_config(), docker, shell, settings)
        await service.clear_before_start()
        assert shell.commands == [
            ("db1", f"find {settings.postgresql_data_dir}/* -delete 2>&1"),
            ("db1", f"find {settings.postgresql_log_dir}/* -delete 2>&1"),
        ]


class TestBackupProbe:
    """Tests for backup_available on the container services."""

    @pytest.mark.asyncio
    async def test_relational_needs_data_and_logs(self, docker, shell, settings):
        shell.on("ls -A", output="PG_VERSION\n")
        service = PostgresqlService(postgres_config(), docker, shell, settings)
        log = io.StringIO()

        assert await service.backup_available("/mnt/dbBackup/postgresql/x/2", log) is True
        probed = [c for _, c in shell.commands]
        assert "test -d /mnt/dbBackup/postgresql/x/2/data" in probed[0]
        assert "test -d /mnt/dbBackup/postgresql/x/2/logs" in probed[1]

    @pytest.mark.asyncio
    async def test_empty_directory_is_missing(self, docker, shell, settings):
        shell.on("ls -A", output="PG_VERSION\n")
        shell.on("/logs", output="")
        service = PostgresqlService(postgres_config(), docker, shell, settings)
        log = io.StringIO()

        assert await service.backup_available("/b", log) is False
        assert "Backup not available at /b/logs" in log.getvalue()

    @pytest.mark.asyncio
    async def test_mongodb_probes_mongod(self, docker, shell, settings):
        shell.on("test -d", returncode=1)
        service = MongodbService(mongo_config(), docker, shell, settings)
        assert await service.backup_available("/mnt/mongoBackup/2/0shards/0replicas", io.StringIO()) is False
        assert shell.commands[0][1].startswith("test -d /mnt/mongoBackup/2/0shards/0replicas/mongod ")


class TestEngineServices:
    """Tests for engine specific behavior."""

    def test_mongod_replica_set_name(self, docker, shell, settings):
        config = mongo_config(shard_index=3, replica_role=ReplicaRole.SECONDARY)
        argv = MongodbService(config, docker, shell, settings).command()
        i = argv.index("--replSet")
        assert argv[i + 1] == "auction3"

    def test_mongod_extra_args(self, docker, shell, settings):
        config = mongo_config(args=["--shardsvr"])
        argv = MongodbService(config, docker, shell, settings).command()
        assert "--replSet" not in argv
        assert argv[-1] == "--shardsvr"

    @pytest.mark.asyncio
    async def test_mongodb_drops_databases_after_start(self, docker, shell, settings):
        docker.execute.return_value = (True, "")
        service = MongodbService(mongo_config(), docker, shell, settings)
        await service.clear_after_start()
        dropped = [c.args[1][-1] for c in docker.execute.call_args_list]
        assert "bid" in dropped
        assert "auctionFullImages" in dropped

    @pytest.mark.asyncio
    async def test_postgresql_vacuum(self, docker, shell, settings):
        docker.execute.return_value = (True, "VACUUM")
        service = PostgresqlService(postgres_config(), docker, shell, settings)
        log = io.StringIO()
        await service.run_compaction(log)
        assert docker.execute.call_args.args[1][-1] == "vacuum analyze;"
        assert "VACUUM\n" in log.getvalue()

    @pytest.mark.asyncio
    async def test_mysql_has_no_vacuum(self, docker, shell, settings):
        service = MysqlService(
            postgres_config(kind="mysql", ports={"mysql": 3306}), docker, shell, settings
        )
        await service.run_compaction(io.StringIO())
        docker.execute.assert_not_called()


class TestAuctionAppInstance:
    """Tests for the app instance built from a topology."""

    def test_derived_profiles(self, docker, shell, settings):
        db = PostgresqlService(postgres_config(), docker, shell, settings)
        app = AuctionAppInstance([db], num_nosql_replicas=2, image_store_type="filesystem")
        assert app.active_profiles() == "postgresql,imagesInFilesystem,replicatedMongo"

    def test_sharded_profile(self, docker, shell, settings):
        db = MysqlService(postgres_config(kind="mysql"), docker, shell, settings)
        app = AuctionAppInstance([db], num_nosql_shards=2)
        assert app.active_profiles() == "mysql,imagesInMongo,shardedMongo"

    def test_explicit_profiles_win(self):
        app = AuctionAppInstance([], spring_profiles="postgresql,imagesInMemory,singleMongo")
        assert app.active_profiles() == "postgresql,imagesInMemory,singleMongo"

    @pytest.mark.asyncio
    async def test_up_only_if_all_up(self, docker, shell, settings):
        docker.is_running.side_effect = [True, False]
        docker.execute.return_value = (True, "")
        services = [
            PostgresqlService(postgres_config(), docker, shell, settings),
            MongodbService(mongo_config(), docker, shell, settings, index=1),
        ]
        app = AuctionAppInstance(services)
        assert await app.is_up_data_services("/tmp") is False

    @pytest.mark.asyncio
    async def test_start_fans_out(self, docker, shell, settings):
        services = [
            PostgresqlService(postgres_config(), docker, shell, settings),
            MongodbService(mongo_config(), docker, shell, settings, index=1),
        ]
        await AuctionAppInstance(services).configure_and_start_data_services("/tmp", users=50)
        assert docker.run_container.await_count == 2

    def test_topology_requires_db_and_nosql(self):
        with pytest.raises(ValidationError):
            TopologyConfig(services=[mongo_config()])


class TestLoadTopology:
    """Tests for load_topology."""

    def test_builds_services(self, tmp_path, shell, settings):
        path = tmp_path / "topology.yaml"
        path.write_text(TOPOLOGY_YAML)

        with patch("auction_dataprep.services.app_instance.DockerHost") as host_cls:
            app = load_topology(path, settings, shell=shell)

        assert app.num_nosql_replicas == 2
        assert app.num_nosql_shards == 0
        assert [type(s) for s in app.services] == [
            PostgresqlService, MongodbService, MongodbService, FileServerService
        ]
        assert [s.host_name for s in app.active_instances(ServiceRole.NOSQL)] == ["mongo1", "mongo2"]
        # One docker host per distinct host name
        assert host_cls.call_count == 3
        assert app.active_profiles() == "postgresql,imagesInMongo,replicatedMongo"

    def test_missing_file(self, tmp_path, settings):
        with pytest.raises(FileNotFoundError):
            load_topology(tmp_path / "missing.yaml", settings)

    def test_invalid_kind(self, tmp_path, shell, settings):
        path = tmp_path / "topology.yaml"
        path.write_text(TOPOLOGY_YAML.replace("kind: nginx", "kind: apache"))
        with pytest.raises(ValidationError):
            load_topology(path, settings, shell=shell)
