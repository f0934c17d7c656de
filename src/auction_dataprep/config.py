"""Harness settings loaded from YAML and environment.

All settings can be overridden via environment variables with the
DATAPREP_ prefix. For example:
    DATAPREP_SCALE=2
    DATAPREP_DB_LOADER_HEAP=4G
"""

from pathlib import Path

import yaml
from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings

from auction_dataprep.types import ScaleTarget


class HarnessSettings(BaseSettings):
    """Run parameters consumed by the data lifecycle orchestrator."""

    # Identity of the workload and app instance being prepared
    workload_num: int = 1
    app_instance_num: int = 1

    # Sizing
    scale: int = -1  # negative means derive from users
    max_users: int = 0
    auctions: int = 0  # 0 means derive from users
    users_per_auction_scale_factor: float = Field(default=15.0, gt=0)

    # Run schedule in seconds
    max_duration: int = 0
    ramp_up: int = 120
    steady_state: int = 300
    ramp_down: int = 60

    image_store_type: str = "mongodb"

    # External loader/verifier tool
    weathervane_home: str = "/root/weathervane"
    db_loader_dir: str = "/root/weathervane/dist"
    db_loader_heap: str = "4G"
    db_loader_threads: int = 8
    db_script_dir: str = "/root/weathervane/dbLoaderScripts"
    db_loader_image_dir: str = "images"
    db_loader_java_options: str = ""
    db_loader_main_class: str = "com.vmware.weathervane.auction.dbloader.DBLoader"
    db_prep_main_class: str = "com.vmware.weathervane.auction.dbloader.DBPrep"
    loader_progress_dir: str = "/tmp"

    # Relational storage
    postgresql_data_dir: str = "/mnt/dbData/postgresql"
    postgresql_log_dir: str = "/mnt/dbLogs/postgresql"
    postgresql_backup_dir: str = "/mnt/dbBackup/postgresql"
    mysql_data_dir: str = "/mnt/dbData/mysql"
    mysql_log_dir: str = "/mnt/dbLogs/mysql"
    mysql_backup_dir: str = "/mnt/dbBackup/mysql"

    # NoSQL storage
    mongodb_data_dir: str = "/mnt/mongoData"
    mongodb_backup_dir: str = "/mnt/mongoBackup"
    mongodb_config_server_dirs: list[str] = Field(
        default_factory=lambda: [
            "/var/lib/mongo/configsvr1",
            "/var/lib/mongo/configsvr2",
            "/var/lib/mongo/configsvr3",
        ]
    )
    mongodb_touch: bool = True
    mongodb_touch_full: bool = False
    mongodb_touch_preview: bool = False
    mongodb_compact: bool = False

    # Blob storage
    image_store_dir: str = "/mnt/imageStore"
    image_store_backup_dir: str = "/mnt/imageStoreBackup"

    # Hosts
    data_manager_host: str = "localhost"
    mongos_port: int = 27017
    ssh_user: str = "root"

    # Timing
    services_settle_s: float = 10.0
    replica_settle_interval_s: float = 30.0
    replica_sync_interval_s: float = 30.0
    replica_sync_timeout_s: float | None = None  # None waits indefinitely
    loader_discovery_grace_s: float = 30.0
    loader_timeout_s: float | None = None
    warmup_parallelism: int = Field(default=8, ge=1)

    model_config = {"env_prefix": "DATAPREP_"}

    @field_validator("image_store_type")
    @classmethod
    def normalize_image_store(cls, v: str) -> str:
        # filesystemApp stores images the same way as filesystem for backups
        if v == "filesystemApp":
            return "filesystem"
        return v

    @model_validator(mode="after")
    def resolve_image_dir(self) -> "HarnessSettings":
        if self.db_loader_image_dir and not self.db_loader_image_dir.startswith("/"):
            self.db_loader_image_dir = f"{self.weathervane_home}/{self.db_loader_image_dir}"
        return self

    @property
    def filesystem_image_store(self) -> bool:
        return self.image_store_type == "filesystem"

    @property
    def db_loader_classpath(self) -> str:
        d = self.db_loader_dir
        return f"{d}/dbLoader.jar:{d}/dbLoaderLibs/*:{d}/dbLoaderLibs"

    @property
    def duration_floor(self) -> int:
        """Seconds auctions must stay active: max(maxDuration, full schedule)."""
        return max(self.max_duration, self.ramp_up + self.steady_state + self.ramp_down)

    @property
    def run_label(self) -> str:
        return f"W{self.workload_num}I{self.app_instance_num}"

    def scale_target(self, users: int) -> ScaleTarget:
        return ScaleTarget(scale=self.scale, users=users, max_users=self.max_users)


def load_settings(path: Path) -> HarnessSettings:
    """Load and validate harness settings from a YAML file.

    Raises:
        FileNotFoundError: If file doesn't exist
        pydantic.ValidationError: If YAML doesn't match schema
    """
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    return HarnessSettings(**data)
