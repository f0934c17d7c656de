"""Command lines for the external bulk loader and prep/verifier tool.

Both tools share one flag grammar:
    -a <auctions>  -m <shards>  -p <replicas>  -f <durationFloor>
    and exactly one of -s <scale> or -u <users>
The loader additionally takes -d <itemCatalog> -t <threads> -a <runLabel>
and optionally -r <imageSourcePath>. The prep tool takes -c for check-only.
"""

import shlex

from auction_dataprep.config import HarnessSettings
from auction_dataprep.scale import sizing_args
from auction_dataprep.topology import ServiceTopology
from auction_dataprep.types import ScaleTarget


def prep_options(
    auctions: int,
    num_shards: int,
    num_replicas: int,
    duration_floor: int,
    target: ScaleTarget,
    check: bool = False,
) -> list[str]:
    """Options for the prep tool in prepare, clean or check mode."""
    options = ["-a", str(auctions)]
    if check:
        options.append("-c")
    options += ["-m", str(num_shards), "-p", str(num_replicas)]
    options += ["-f", str(duration_floor)]
    options += sizing_args(target)
    return options


def loader_options(
    settings: HarnessSettings,
    target: ScaleTarget,
    num_shards: int,
    num_replicas: int,
) -> list[str]:
    """Options for a full bulk load."""
    options = [
        "-d", f"{settings.db_script_dir}/items.json",
        "-t", str(settings.db_loader_threads),
    ]
    options += sizing_args(target, loading=True)
    options += ["-m", str(num_shards), "-p", str(num_replicas)]
    options += ["-f", str(settings.duration_floor)]
    options += [
        "-a",
        f"Workload {settings.workload_num}, appInstance {settings.app_instance_num}.",
    ]
    if settings.db_loader_image_dir:
        options += ["-r", settings.db_loader_image_dir]
    return options


def java_tool_command(
    settings: HarnessSettings,
    topology: ServiceTopology,
    main_class: str,
    profile: str,
    options: list[str],
    loading: bool = False,
    heap: bool = True,
) -> str:
    """Full java command line wiring the tool to the app instance's stores.

    Args:
        settings: Harness settings supplying classpath, heap and JVM options
        topology: Service topology supplying database and NoSQL endpoints
        main_class: Tool entry point
        profile: Extra Spring profile appended to the instance's profiles
        options: Tool options (see prep_options / loader_options)
        loading: Address replicas the way the bulk loader expects
        heap: Pin the JVM heap to db_loader_heap
    """
    db_host, db_port = topology.db_endpoint()
    nosql_host, nosql_port = topology.nosql_endpoint()
    profiles = f"{topology.app.active_profiles()},{profile}"

    argv = ["java"]
    if heap:
        argv += [f"-Xms{settings.db_loader_heap}", f"-Xmx{settings.db_loader_heap}"]
    argv.append("-client")
    argv += shlex.split(settings.db_loader_java_options)
    argv += [
        "-cp", settings.db_loader_classpath,
        f"-Dspring.profiles.active={profiles}",
        f"-DDBHOSTNAME={db_host}",
        f"-DDBPORT={db_port}",
        f"-DMONGODB_HOST={nosql_host}",
        f"-DMONGODB_PORT={nosql_port}",
        f"-DMONGODB_REPLICA_SET={topology.replica_set(loading=loading)}",
        main_class,
        *options,
    ]
    return " ".join(shlex.quote(arg) for arg in argv)
