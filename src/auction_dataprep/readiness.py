"""Readiness check: is the loaded data usable at the target scale?"""

import logging

from auction_dataprep.commands import java_tool_command, prep_options
from auction_dataprep.config import HarnessSettings
from auction_dataprep.exceptions import StageLogError
from auction_dataprep.remote import CommandRunner
from auction_dataprep.scale import auctions_for
from auction_dataprep.stage_log import StageLog
from auction_dataprep.topology import ServiceTopology
from auction_dataprep.types import ScaleTarget

logger = logging.getLogger(__name__)


class ReadinessChecker:
    """Runs the prep tool in check-only mode.

    The check is idempotent and side-effect free. A zero exit status means
    the data matches the target. The auction count is not floored here.
    """

    PROFILE = "dbprep"

    def __init__(
        self,
        topology: ServiceTopology,
        shell: CommandRunner,
        settings: HarnessSettings,
        log_dir: str,
    ):
        self.topology = topology
        self.shell = shell
        self.settings = settings
        self.log_dir = log_dir

    def command(self, target: ScaleTarget) -> str:
        auctions = auctions_for(
            target.users,
            self.settings.auctions,
            self.settings.users_per_auction_scale_factor,
            apply_floor=False,
        )
        options = prep_options(
            auctions,
            self.topology.num_shards,
            self.topology.num_replicas,
            self.settings.duration_floor,
            target,
            check=True,
        )
        return java_tool_command(
            self.settings,
            self.topology,
            self.settings.db_prep_main_class,
            self.PROFILE,
            options,
            heap=False,
        )

    async def is_loaded(self, target: ScaleTarget) -> bool:
        host = self.settings.data_manager_host
        run_label = self.settings.run_label
        logger.debug(f"is_loaded for {run_label} at {target.describe()}")

        try:
            log = StageLog.open(self.log_dir, f"isDataLoaded-{host}.log")
        except StageLogError as e:
            logger.error(f"Readiness check for {run_label} aborted: {e}")
            return False

        with log:
            result = log.record(await self.shell.run(host, self.command(target)))
            log.line(f"{result.returncode}")

        if result.success:
            logger.debug(f"Data is loaded for {run_label}")
            return True
        logger.debug(f"Data is not loaded for {run_label}. exit={result.returncode}")
        return False
