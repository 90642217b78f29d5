"""Fixtures for provisioning tests."""

import pytest

from fakes import RecordingSink
from src.provisioning.config import ProvisioningSettings


@pytest.fixture
def workspace_root(tmp_path):
    return tmp_path / "workspaces"


@pytest.fixture
def settings(workspace_root):
    return ProvisioningSettings(temp_root=str(workspace_root))


@pytest.fixture
def sink():
    return RecordingSink()
