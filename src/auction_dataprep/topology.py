"""Read-only view of an app instance's data services and endpoints."""

from auction_dataprep.config import HarnessSettings
from auction_dataprep.exceptions import ConfigurationError
from auction_dataprep.types import AppInstance, DataServiceInstance, ServiceRole

MONGOD = "mongod"


class ServiceTopology:
    """Lookup of active data services grouped by role.

    Instances come back in provisioning order. The first relational
    instance addresses relational operations. For unsharded NoSQL the first
    instance is the entry point, for sharded NoSQL the router colocated on
    the data manager host is.
    """

    def __init__(self, app: AppInstance, settings: HarnessSettings):
        self.app = app
        self.settings = settings

    @property
    def num_shards(self) -> int:
        return self.app.num_nosql_shards

    @property
    def num_replicas(self) -> int:
        return self.app.num_nosql_replicas

    @property
    def replicated_unsharded(self) -> bool:
        return self.num_replicas > 0 and self.num_shards == 0

    def instances(self, role: ServiceRole) -> list[DataServiceInstance]:
        return list(self.app.active_instances(role))

    def require(self, role: ServiceRole) -> list[DataServiceInstance]:
        """Active instances of a role, which must not be empty.

        Raises:
            ConfigurationError: If no instance of the role is active
        """
        instances = self.instances(role)
        if not instances:
            raise ConfigurationError(f"No active {role.value} instances configured")
        return instances

    def first_db(self) -> DataServiceInstance:
        return self.require(ServiceRole.DB)[0]

    def db_engine(self) -> str:
        return self.first_db().engine_kind

    def db_endpoint(self) -> tuple[str, int]:
        db = self.first_db()
        return db.host_name, db.port_for(db.engine_kind)

    def nosql_endpoint(self) -> tuple[str, int]:
        if self.num_shards == 0:
            nosql = self.require(ServiceRole.NOSQL)[0]
            return nosql.host_name, nosql.port_for(MONGOD)
        return self.settings.data_manager_host, self.settings.mongos_port

    def replica_set(self, loading: bool = False) -> str:
        """Replica set seed list handed to the loader/verifier tool.

        The prep and check modes always pass the entry point first, followed
        by the other members when replicated. The loader gets an empty list
        unless replicated, in which case the primary is addressed on its
        internal port.
        """
        nosql = self.instances(ServiceRole.NOSQL)
        if loading:
            if self.num_replicas == 0 or not nosql:
                return ""
            primary, *secondaries = nosql
            members = [f"{primary.host_name}:{primary.internal_port_for(MONGOD)}"]
            members += [f"{s.host_name}:{s.port_for(MONGOD)}" for s in secondaries]
            return ",".join(members)

        host, port = self.nosql_endpoint()
        members = [f"{host}:{port}"]
        if self.num_replicas > 0:
            members += [f"{s.host_name}:{s.port_for(MONGOD)}" for s in nosql[1:]]
        return ",".join(members)
