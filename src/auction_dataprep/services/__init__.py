"""Container-backed implementations of the data service contracts."""

from auction_dataprep.services.app_instance import (
    AuctionAppInstance,
    TopologyConfig,
    load_topology,
)
from auction_dataprep.services.data_services import (
    ContainerDataService,
    FileServerService,
    MongodbService,
    MysqlService,
    PostgresqlService,
    ServiceConfig,
)
from auction_dataprep.services.docker_host import DockerHost

__all__ = [
    "AuctionAppInstance",
    "ContainerDataService",
    "DockerHost",
    "FileServerService",
    "MongodbService",
    "MysqlService",
    "PostgresqlService",
    "ServiceConfig",
    "TopologyConfig",
    "load_topology",
]
