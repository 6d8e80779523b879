"""Tests for payload.py: rendering is pure and unit-aware."""

from __future__ import annotations

import pytest

from pvemod.patcher import contains_marker
from pvemod.payload import (
    BLOCK_BEGIN,
    BLOCK_END,
    NVIDIA_SMI_QUERY,
    RenderOptions,
    Thresholds,
    celsius_to_fahrenheit,
    parse_unit,
    render_nodes_pm,
    render_payloads,
    render_widget,
)

DEFAULT_THRESHOLDS = Thresholds(warning=70, critical=85)


class TestParseUnit:
    @pytest.mark.parametrize("answer", ["f", "F", " f "])
    def test_fahrenheit(self, answer: str) -> None:
        assert parse_unit(answer) == "F"

    @pytest.mark.parametrize("answer", ["", "c", "C", "fahrenheit", "x", None])
    def test_everything_else_is_celsius(self, answer: str | None) -> None:
        assert parse_unit(answer) == "C"


class TestRenderWidget:
    def test_default_is_celsius(self) -> None:
        text = render_widget(RenderOptions(), DEFAULT_THRESHOLDS)
        assert "var toFahrenheit = false;" in text
        assert "var tempUnit = '°C';" in text
        assert "var tempWarning = 70;" in text
        assert "var tempCritical = 85;" in text

    def test_fahrenheit_thresholds(self) -> None:
        text = render_widget(RenderOptions(unit="F"), DEFAULT_THRESHOLDS)
        assert "var toFahrenheit = true;" in text
        assert "var tempUnit = '°F';" in text
        assert "var tempWarning = 158;" in text
        assert "var tempCritical = 185;" in text

    def test_custom_thresholds(self) -> None:
        text = render_widget(RenderOptions(unit="C"), Thresholds(warning=60, critical=80))
        assert "var tempWarning = 60;" in text
        assert "var tempCritical = 80;" in text

    def test_carries_markers_and_bounds(self) -> None:
        text = render_widget(RenderOptions(), DEFAULT_THRESHOLDS)
        assert contains_marker(text, "nvidiaGpuOutput")
        assert "itemId: 'nvidiaGpu'" in text
        lines = text.splitlines()
        assert BLOCK_BEGIN in lines[0]
        assert BLOCK_END in lines[-1]
        assert "@@" not in text

    def test_tab_indentation(self) -> None:
        text = render_widget(RenderOptions(), DEFAULT_THRESHOLDS)
        assert all(line.startswith("\t") for line in text.splitlines() if line)


class TestRenderNodesPm:
    def test_exports_nvidia_smi_output(self) -> None:
        text = render_nodes_pm()
        assert "$res->{nvidiaGpuOutput} = `" + NVIDIA_SMI_QUERY + " 2>/dev/null`;" in text
        lines = text.splitlines()
        assert BLOCK_BEGIN in lines[0]
        assert BLOCK_END in lines[-1]


def test_render_payloads_keys() -> None:
    payloads = render_payloads(RenderOptions(unit="F"), DEFAULT_THRESHOLDS)
    assert set(payloads) == {"Nodes.pm", "pvemanagerlib.js"}
    assert "var tempCritical = 185;" in payloads["pvemanagerlib.js"]


def test_celsius_to_fahrenheit() -> None:
    assert celsius_to_fahrenheit(70) == 158
    assert celsius_to_fahrenheit(85) == 185
    assert celsius_to_fahrenheit(0) == 32
