"""Relational engine variants and their storage capabilities.

Each supported engine is one DbEngine member plus one builder in
_PROFILE_BUILDERS. Paths come from HarnessSettings so a deployment can
relocate storage without code changes.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Callable

from auction_dataprep.config import HarnessSettings
from auction_dataprep.exceptions import UnsupportedEngineError


class DbEngine(str, Enum):
    """Supported relational engines."""

    POSTGRESQL = "postgresql"
    MYSQL = "mysql"


@dataclass(frozen=True)
class EngineProfile:
    """Storage capability set for one relational engine.

    Attributes:
        engine: The engine this profile describes
        data_dir: Live data directory
        log_dir: Live transaction log directory
        backup_root: Root of scale-keyed backups
        owner: user:group that must own restored files
        needs_vacuum: Whether compaction must follow bulk changes
    """

    engine: DbEngine
    data_dir: str
    log_dir: str
    backup_root: str
    owner: str
    needs_vacuum: bool

    def backup_dir(self, image_store_type: str, scale_key: int) -> str:
        return f"{self.backup_root}/{image_store_type}ImageStore/{scale_key}"


def _postgresql(settings: HarnessSettings) -> EngineProfile:
    return EngineProfile(
        engine=DbEngine.POSTGRESQL,
        data_dir=settings.postgresql_data_dir,
        log_dir=settings.postgresql_log_dir,
        backup_root=settings.postgresql_backup_dir,
        owner="postgres:users",
        needs_vacuum=True,
    )


def _mysql(settings: HarnessSettings) -> EngineProfile:
    return EngineProfile(
        engine=DbEngine.MYSQL,
        data_dir=settings.mysql_data_dir,
        log_dir=settings.mysql_log_dir,
        backup_root=settings.mysql_backup_dir,
        owner="mysql:mysql",
        needs_vacuum=False,
    )


_PROFILE_BUILDERS: dict[DbEngine, Callable[[HarnessSettings], EngineProfile]] = {
    DbEngine.POSTGRESQL: _postgresql,
    DbEngine.MYSQL: _mysql,
}


def engine_profile(kind: str, settings: HarnessSettings) -> EngineProfile:
    """Resolve the profile for an engine kind.

    Raises:
        UnsupportedEngineError: If kind is not a supported engine
    """
    try:
        engine = DbEngine(kind)
    except ValueError:
        raise UnsupportedEngineError(kind) from None
    return _PROFILE_BUILDERS[engine](settings)
