"""Fixtures for helm-provider tool tests."""

from pathlib import Path

import pytest


@pytest.fixture(name="env")
def env_fixture(tmp_path: Path) -> dict[str, str]:
    """Environment for the tool with a private work directory."""
    return {
        "HELM_PROVIDER_WORK_DIR": str(tmp_path / "work"),
        "AWS_DEFAULT_REGION": "us-east-1",
    }
