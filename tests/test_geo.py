"""
test_geo.py — Haversine distance.
"""

import math

import pytest

from issue_heatmap.services.geo import EARTH_RADIUS_M, haversine_meters


class TestHaversineMeters:

    def test_identical_points_are_zero(self):
        assert haversine_meters(51.5, -0.12, 51.5, -0.12) == 0.0

    def test_symmetric(self):
        a = (51.5246, -0.1340)
        b = (48.8566, 2.3522)
        assert haversine_meters(*a, *b) == haversine_meters(*b, *a)

    def test_one_degree_of_latitude(self):
        """One degree along a meridian ≈ 111.195 km on a 6,371 km sphere."""
        d = haversine_meters(0.0, 0.0, 1.0, 0.0)
        assert d == pytest.approx(2 * math.pi * EARTH_RADIUS_M / 360, rel=1e-9)

    def test_london_paris(self):
        d = haversine_meters(51.5074, -0.1278, 48.8566, 2.3522)
        assert 340_000 < d < 345_000

    def test_antipodal_points(self):
        d = haversine_meters(0.0, 0.0, 0.0, 180.0)
        assert d == pytest.approx(math.pi * EARTH_RADIUS_M)

    def test_nan_propagates(self):
        assert math.isnan(haversine_meters(float("nan"), 0.0, 0.0, 0.0))
