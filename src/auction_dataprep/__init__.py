"""Data lifecycle orchestration for the auction benchmark."""

from auction_dataprep.config import HarnessSettings, load_settings
from auction_dataprep.orchestrator import DataLifecycleOrchestrator
from auction_dataprep.types import (
    AppInstance,
    DataServiceInstance,
    PrepareResult,
    RunRequest,
    ScaleTarget,
    ServiceRole,
)

__version__ = "0.1.0"

__all__ = [
    # Types
    "AppInstance",
    "DataServiceInstance",
    "PrepareResult",
    "RunRequest",
    "ScaleTarget",
    "ServiceRole",
    # Config
    "HarnessSettings",
    "load_settings",
    # Orchestration
    "DataLifecycleOrchestrator",
]
