"""Shared fixtures for data preparation tests."""

import pytest

from auction_dataprep.config import HarnessSettings
from auction_dataprep.mongo import MongoShell

from fakes import FakeShell, make_app


@pytest.fixture
def settings() -> HarnessSettings:
    """Settings with every wait interval collapsed to zero."""
    return HarnessSettings(
        workload_num=1,
        app_instance_num=2,
        data_manager_host="dm1",
        services_settle_s=0,
        replica_settle_interval_s=0,
        replica_sync_interval_s=0,
        loader_discovery_grace_s=0,
    )


@pytest.fixture
def shell() -> FakeShell:
    return FakeShell()


@pytest.fixture
def mongo(shell: FakeShell, settings: HarnessSettings) -> MongoShell:
    return MongoShell(shell, settings.data_manager_host)


@pytest.fixture
def app():
    return make_app()


@pytest.fixture
def log_dir(tmp_path) -> str:
    return str(tmp_path / "logs")
