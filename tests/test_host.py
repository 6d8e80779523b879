"""Tests for host.py: nvidia-smi parsing and service restarts."""

from __future__ import annotations

import subprocess
from typing import Any

import pytest

from pvemod.errors import HardwareNotFoundError
from pvemod.host import GpuInfo, SystemHost, parse_gpu_list


def _completed(returncode: int = 0, stdout: str = "", stderr: str = "") -> subprocess.CompletedProcess[str]:
    return subprocess.CompletedProcess(args=[], returncode=returncode, stdout=stdout, stderr=stderr)


class TestParseGpuList:
    def test_multiple_gpus(self) -> None:
        output = "0, NVIDIA GeForce RTX 3060\n1, Tesla P4\n"
        assert parse_gpu_list(output) == [
            GpuInfo(index="0", name="NVIDIA GeForce RTX 3060"),
            GpuInfo(index="1", name="Tesla P4"),
        ]

    def test_blank_and_malformed_lines(self) -> None:
        assert parse_gpu_list("\n  \nNo devices were found\n, orphan\n") == []


class TestSystemHost:
    def test_missing_nvidia_smi(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr("pvemod.host.shutil.which", lambda name: None)
        with pytest.raises(HardwareNotFoundError, match="not installed"):
            SystemHost().query_gpus()

    def test_query_gpus(self, monkeypatch: pytest.MonkeyPatch) -> None:
        calls: list[list[str]] = []

        def _run(cmd: list[str], **kwargs: Any) -> subprocess.CompletedProcess[str]:
            calls.append(cmd)
            return _completed(stdout="0, NVIDIA A2000\n")

        monkeypatch.setattr("pvemod.host.shutil.which", lambda name: "/usr/bin/nvidia-smi")
        monkeypatch.setattr("pvemod.host.subprocess.run", _run)
        assert SystemHost().query_gpus() == [GpuInfo(index="0", name="NVIDIA A2000")]
        assert calls[0][0] == "/usr/bin/nvidia-smi"
        assert "--query-gpu=index,name" in calls[0]

    def test_query_gpus_failure_means_none(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr("pvemod.host.shutil.which", lambda name: "/usr/bin/nvidia-smi")
        monkeypatch.setattr("pvemod.host.subprocess.run", lambda cmd, **kw: _completed(9, stderr="driver mismatch"))
        assert SystemHost().query_gpus() == []

    def test_query_gpus_timeout(self, monkeypatch: pytest.MonkeyPatch) -> None:
        def _hang(cmd: list[str], **kwargs: Any) -> subprocess.CompletedProcess[str]:
            raise subprocess.TimeoutExpired(cmd, 30)

        monkeypatch.setattr("pvemod.host.shutil.which", lambda name: "/usr/bin/nvidia-smi")
        monkeypatch.setattr("pvemod.host.subprocess.run", _hang)
        with pytest.raises(HardwareNotFoundError):
            SystemHost().query_gpus()

    def test_reload_runs_systemctl(self, monkeypatch: pytest.MonkeyPatch) -> None:
        calls: list[list[str]] = []

        def _run(cmd: list[str], **kwargs: Any) -> subprocess.CompletedProcess[str]:
            calls.append(cmd)
            return _completed()

        monkeypatch.setattr("pvemod.host.subprocess.run", _run)
        assert SystemHost(service="pveproxy").reload() is True
        assert calls == [["systemctl", "restart", "pveproxy"]]

    def test_reload_failure(self, monkeypatch: pytest.MonkeyPatch, caplog: pytest.LogCaptureFixture) -> None:
        monkeypatch.setattr("pvemod.host.subprocess.run", lambda cmd, **kw: _completed(1, stderr="unit not found"))
        assert SystemHost().reload() is False
        assert "unit not found" in caplog.text

    def test_reload_without_systemctl(self, monkeypatch: pytest.MonkeyPatch) -> None:
        def _missing(cmd: list[str], **kwargs: Any) -> subprocess.CompletedProcess[str]:
            raise FileNotFoundError("systemctl")

        monkeypatch.setattr("pvemod.host.subprocess.run", _missing)
        assert SystemHost().reload() is False
