#!/usr/bin/env python3
"""Pytest fixtures for clipstash tests.

Provides settings and a repository rooted in tmp_path and a scriptable fake
clipboard backend (see conftest_pipeline).
"""

from collections.abc import Generator
from pathlib import Path

import pytest

from clipstash.config import ConfigStore, Settings
from clipstash.repository import ClipboardRepository
from conftest_pipeline import FakeBackend


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Settings with storage in tmp_path and a small history bound."""
    return Settings(
        data_dir=tmp_path / "data",
        max_history_records=5,
        poll_interval=0.01,
        self_write_window=2.0,
        backend="polling",
    )


@pytest.fixture
def config_store(settings: Settings, tmp_path: Path) -> ConfigStore:
    return ConfigStore(tmp_path / "config.toml", settings)


@pytest.fixture
def repository(config_store: ConfigStore) -> Generator[ClipboardRepository, None, None]:
    """Open a repository for the test and close it afterwards."""
    repo = ClipboardRepository.from_config(config_store)
    yield repo
    repo.close()


@pytest.fixture
def fake_backend() -> FakeBackend:
    return FakeBackend()
