"""Pytest bootstrap configuration.

Environment defaults are set before application settings are imported so
the module-level ``settings``/``app`` never touch a developer's ``.env``
storage paths.
"""
import os
import tempfile

os.environ.setdefault("STORAGE__LOCAL__BASE_PATH", os.path.join(tempfile.gettempdir(), "gallery-media-tests"))
os.environ.setdefault("LOG_LEVEL", "WARNING")

import pytest

from core.config import Settings
from infrastructure.external.storage import (
    CredentialStore,
    LocalOptions,
    StorageConfig,
    StorageManager,
    StorageType,
)


@pytest.fixture
def local_config(tmp_path):
    return StorageConfig(type=StorageType.LOCAL, local=LocalOptions(base_path=str(tmp_path / "media")))


@pytest.fixture
def credential_store(local_config):
    return CredentialStore({StorageType.LOCAL: local_config})


@pytest.fixture
def storage_manager(credential_store):
    return StorageManager(credential_store)


@pytest.fixture
def app_settings(tmp_path):
    return Settings(
        _env_file=None,
        storage={"local": {"enabled": True, "base_path": str(tmp_path / "media")}},
    )
