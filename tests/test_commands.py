"""Tests for the service topology view and tool command lines."""

import shlex

import pytest

from auction_dataprep.commands import java_tool_command, loader_options, prep_options
from auction_dataprep.exceptions import ConfigurationError
from auction_dataprep.topology import ServiceTopology
from auction_dataprep.types import ScaleTarget, ServiceRole

from fakes import FakeAppInstance, FakeDataService, make_app


class TestServiceTopology:
    """Tests for ServiceTopology endpoint lookup."""

    def test_unsharded_entry_point_is_first_instance(self, settings):
        topology = ServiceTopology(make_app(nosql_hosts=("m1", "m2")), settings)
        assert topology.nosql_endpoint() == ("m1", 27017)

    def test_sharded_entry_point_is_router(self, settings):
        app = make_app(nosql_hosts=("m1", "m2"), shards=2)
        topology = ServiceTopology(app, settings)
        assert topology.nosql_endpoint() == ("dm1", settings.mongos_port)

    def test_db_endpoint_uses_engine_port(self, settings):
        topology = ServiceTopology(make_app(engine="mysql"), settings)
        assert topology.db_endpoint() == ("db1", 3306)
        assert topology.db_engine() == "mysql"

    def test_require_empty_role_raises(self, settings):
        app = FakeAppInstance([FakeDataService("db1", "postgresql", ServiceRole.DB)])
        topology = ServiceTopology(app, settings)
        assert topology.instances(ServiceRole.NOSQL) == []
        with pytest.raises(ConfigurationError, match="nosqlServer"):
            topology.require(ServiceRole.NOSQL)

    def test_replica_set_unreplicated(self, settings):
        topology = ServiceTopology(make_app(), settings)
        assert topology.replica_set() == "mongo1:27017"
        assert topology.replica_set(loading=True) == ""

    def test_replica_set_replicated(self, settings):
        app = make_app(nosql_hosts=("m1", "m2", "m3"), replicas=3)
        app.services[1].internal_ports = {"mongod": 27000}
        topology = ServiceTopology(app, settings)
        assert topology.replica_set() == "m1:27017,m2:27017,m3:27017"
        assert topology.replica_set(loading=True) == "m1:27000,m2:27017,m3:27017"

    def test_replicated_unsharded(self, settings):
        assert ServiceTopology(make_app(replicas=2), settings).replicated_unsharded
        assert not ServiceTopology(make_app(shards=2), settings).replicated_unsharded


class TestToolOptions:
    """Tests for loader and prep tool flags."""

    def test_prep_options_users(self):
        options = prep_options(9, 0, 0, 480, ScaleTarget(users=125))
        assert options == ["-a", "9", "-m", "0", "-p", "0", "-f", "480", "-u", "125"]

    def test_prep_options_check_scale(self):
        options = prep_options(4, 2, 0, 480, ScaleTarget(scale=3, users=125), check=True)
        assert options == ["-a", "4", "-c", "-m", "2", "-p", "0", "-f", "480", "-s", "3"]

    def test_loader_options(self, settings):
        settings.db_loader_threads = 12
        options = loader_options(settings, ScaleTarget(users=125), 0, 3)
        assert options[:4] == ["-d", f"{settings.db_script_dir}/items.json", "-t", "12"]
        assert ["-u", "125"] == options[4:6]
        assert "-r" in options
        label_index = options.index("-a") + 1
        assert options[label_index] == "Workload 1, appInstance 2."

    def test_loader_options_without_image_dir(self, settings):
        settings.db_loader_image_dir = ""
        assert "-r" not in loader_options(settings, ScaleTarget(scale=1), 0, 0)


class TestJavaToolCommand:
    """Tests for the full java command line."""

    def test_wiring(self, settings):
        topology = ServiceTopology(make_app(), settings)
        command = java_tool_command(
            settings, topology, settings.db_prep_main_class, "dbprep", ["-a", "4"]
        )
        argv = shlex.split(command)
        assert argv[0] == "java"
        assert f"-Xmx{settings.db_loader_heap}" in argv
        assert "-Dspring.profiles.active=postgresql,imagesInMongo,singleMongo,dbprep" in argv
        assert "-DDBHOSTNAME=db1" in argv
        assert "-DDBPORT=5432" in argv
        assert "-DMONGODB_HOST=mongo1" in argv
        assert "-DMONGODB_REPLICA_SET=mongo1:27017" in argv
        assert argv[-3:] == [settings.db_prep_main_class, "-a", "4"]

    def test_without_heap(self, settings):
        topology = ServiceTopology(make_app(), settings)
        command = java_tool_command(settings, topology, "Main", "dbprep", [], heap=False)
        assert "-Xmx" not in command
        assert shlex.split(command)[:2] == ["java", "-client"]

    def test_java_options_split(self, settings):
        settings.db_loader_java_options = "-XX:+UseG1GC -Dfoo=bar"
        topology = ServiceTopology(make_app(), settings)
        argv = shlex.split(java_tool_command(settings, topology, "Main", "x", []))
        assert "-XX:+UseG1GC" in argv
        assert "-Dfoo=bar" in argv
