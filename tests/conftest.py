"""Shared pytest fixtures for pvemod tests."""

from __future__ import annotations

from pathlib import Path

import pytest
from click.testing import CliRunner

from pvemod.core import ModConfig
from tests._hostfiles import FakeHost, FakeOperator, make_config, write_host_files


@pytest.fixture
def host_files(tmp_path: Path) -> tuple[Path, Path]:
    """Pristine (Nodes.pm, pvemanagerlib.js) in tmp_path/host."""
    return write_host_files(tmp_path / "host")


@pytest.fixture
def backup_dir(tmp_path: Path) -> Path:
    d = tmp_path / "backups"
    d.mkdir()
    return d


@pytest.fixture
def config(host_files: tuple[Path, Path], backup_dir: Path) -> ModConfig:
    return make_config(host_files[0].parent, backup_dir)


@pytest.fixture
def fake_host() -> FakeHost:
    return FakeHost()


@pytest.fixture
def operator() -> FakeOperator:
    return FakeOperator()


@pytest.fixture
def cli_runner() -> CliRunner:
    """Click CLI test runner."""
    return CliRunner()
