"""Unit tests for the defensible-space compliance report."""

from __future__ import annotations

import pytest

from emberline.config import DEFAULT_BANDS, DefensibleBand
from emberline.grid.cell import Cell
from emberline.scoring.compliance import band_for, compliance_report, non_compliant

pytestmark = pytest.mark.unit


def _make_cell(cell_id, distance=None, height=None):
    return Cell(cell_id=cell_id, x=0.0, y=0.0, vegetation=0.2, grass=0.2, slope=0.2,
                distance_to_structure_m=distance, grass_height_cm=height)


class TestBands:
    def test_default_band_lookup(self):
        assert band_for(DEFAULT_BANDS, 0.5).max_grass_height_cm == 0.0
        assert band_for(DEFAULT_BANDS, 1.0).max_grass_height_cm == 10.0
        assert band_for(DEFAULT_BANDS, 29.9).max_grass_height_cm == 20.0

    def test_outside_every_band(self):
        assert band_for(DEFAULT_BANDS, 30.0) is None


class TestReport:
    def test_compliant_and_not(self):
        cells = [
            _make_cell("b", distance=5.0, height=12.0),
            _make_cell("a", distance=15.0, height=18.0),
        ]
        report = compliance_report(cells, DEFAULT_BANDS)
        assert [e.cell_id for e in report] == ["a", "b"]
        assert report[0].compliant is True
        assert report[1].compliant is False
        assert report[1].required_height_cm == 10.0

    def test_unmeasured_is_not_guessed(self):
        report = compliance_report([_make_cell("a", distance=5.0)], DEFAULT_BANDS)
        assert report[0].compliant is None
        assert non_compliant(report) == []

    def test_cells_without_structure_skipped(self):
        report = compliance_report([_make_cell("a"), _make_cell("b", distance=100.0)], DEFAULT_BANDS)
        assert report == ()

    def test_zero_fuel_band(self):
        report = compliance_report([_make_cell("a", distance=0.2, height=0.5)], DEFAULT_BANDS)
        assert non_compliant(report)[0].cell_id == "a"

    def test_custom_bands(self):
        bands = (DefensibleBand(min_m=0.0, max_m=50.0, max_grass_height_cm=5.0),)
        report = compliance_report([_make_cell("a", distance=40.0, height=5.0)], bands)
        assert report[0].compliant is True
