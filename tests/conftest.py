"""Pytest hooks and fixtures."""

import os
import sys
from pathlib import Path

import pytest
from loguru import logger

from capslap.config.access import clear_config_cache
from capslap.config.schema import SidecarConfig

FAKE_WORKER = Path(__file__).parent / "fake_worker.py"


@pytest.fixture(autouse=True)
def _capslap_logging_enabled():
    """CLI runs disable the capslap logger; keep it on for every test."""
    logger.enable("capslap")
    yield
    logger.enable("capslap")


@pytest.fixture
def worker_config():
    """Build a SidecarConfig that launches tests/fake_worker.py."""

    def _make(**overrides) -> SidecarConfig:
        return SidecarConfig(binary_path=sys.executable, args=["-u", str(FAKE_WORKER)], **overrides)

    return _make


@pytest.fixture
def log_messages():
    """Collect loguru messages emitted during the test."""
    messages: list[str] = []
    sink_id = logger.add(lambda message: messages.append(message.record["message"]), level="DEBUG")
    yield messages
    logger.remove(sink_id)


@pytest.fixture
def isolated_home(tmp_path, monkeypatch):
    """Point ~ (and so ~/.capslap/config.json) at a temp dir."""
    monkeypatch.setenv("HOME", str(tmp_path))
    for key in [k for k in list(os.environ) if k.startswith("CAPSLAP_")]:
        monkeypatch.delenv(key, raising=False)
    clear_config_cache()
    yield tmp_path
    clear_config_cache()
