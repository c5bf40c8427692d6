"""
test_geo.py — Demonstrates and tests the distance / radius helpers.

Run:
    python -m backend.tests.test_geo
    pytest backend/tests/test_geo.py -v

Annotated examples showing:
    1. Haversine distances between Delhi landmarks
    2. Inclusive radius checks
    3. Nearest-first filtering of last-known locations
    4. Edge cases (poles, antimeridian, invalid input)
"""

from __future__ import annotations

import os
import sys

import pytest

# Ensure project root is importable
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "..")))

from backend.app.core.errors import ValidationError
from backend.app.spatial.geo import (
    Coordinate,
    bounding_box,
    filter_within_radius,
    format_distance,
    haversine_m,
    is_within_radius,
)

CONNAUGHT_PLACE = Coordinate(28.6315, 77.2167)
INDIA_GATE = Coordinate(28.6129, 77.2295)
RED_FORT = Coordinate(28.6562, 77.2410)
QUTUB_MINAR = Coordinate(28.5245, 77.1855)


def separator(title: str) -> None:
    print(f"\n{'=' * 70}")
    print(f"  {title}")
    print(f"{'=' * 70}\n")


# =========================================================================
# EXAMPLE 1 — Haversine Distance Calculations
# =========================================================================

def test_haversine():
    separator("EXAMPLE 1 — Haversine Distance Calculations")

    pairs = [
        ("Connaught Place → India Gate", CONNAUGHT_PLACE, INDIA_GATE, 2_400),
        ("Connaught Place → Red Fort", CONNAUGHT_PLACE, RED_FORT, 3_600),
        ("Connaught Place → Qutub Minar", CONNAUGHT_PLACE, QUTUB_MINAR, 12_500),
    ]
    for label, a, b, approx in pairs:
        d = haversine_m(a, b)
        print(f"  {label:<32} {format_distance(d):>10}")
        assert d == pytest.approx(approx, rel=0.05)
        assert haversine_m(b, a) == pytest.approx(d)

    # One degree of longitude on the equator
    assert round(haversine_m(Coordinate(0, 0), Coordinate(0, 1))) == 111195
    assert haversine_m(CONNAUGHT_PLACE, CONNAUGHT_PLACE) == 0.0


# =========================================================================
# EXAMPLE 2 — Radius Checks
# =========================================================================

def test_radius_check():
    separator("EXAMPLE 2 — Radius Checks (boundary inclusive)")

    exact = haversine_m(CONNAUGHT_PLACE, INDIA_GATE)
    assert is_within_radius(CONNAUGHT_PLACE, INDIA_GATE, exact)
    assert not is_within_radius(CONNAUGHT_PLACE, INDIA_GATE, exact - 1)
    assert is_within_radius(CONNAUGHT_PLACE, CONNAUGHT_PLACE, 0)
    print(f"  India Gate at {exact:.1f} m is inside a {exact:.1f} m radius")

    with pytest.raises(ValidationError):
        is_within_radius(CONNAUGHT_PLACE, INDIA_GATE, -1)


# =========================================================================
# EXAMPLE 3 — Filtering Last-Known Locations
# =========================================================================

def test_filter_nearest_first():
    separator("EXAMPLE 3 — Tourists Within 5 km of Connaught Place")

    candidates = [
        ("qutub", QUTUB_MINAR),
        ("fort", RED_FORT),
        ("gate", INDIA_GATE),
    ]
    matched = filter_within_radius(CONNAUGHT_PLACE, candidates, 5_000)
    for key, dist in matched:
        print(f"  {key:<8} {format_distance(dist)}")

    assert [key for key, _ in matched] == ["gate", "fort"]
    assert matched[0][1] < matched[1][1]
    assert filter_within_radius(CONNAUGHT_PLACE, [], 5_000) == []


# =========================================================================
# EXAMPLE 4 — Edge Cases
# =========================================================================

def test_edge_cases():
    separator("EXAMPLE 4 — Edge Cases")

    # Across the antimeridian: Fiji ↔ Samoa side
    west = Coordinate(-17.0, 179.9)
    east = Coordinate(-17.0, -179.9)
    d = haversine_m(west, east)
    print(f"  Antimeridian hop: {format_distance(d)}")
    assert d < 25_000
    assert filter_within_radius(west, [("east", east)], 25_000)[0][0] == "east"

    # Near the pole the longitude window opens up completely
    min_lat, max_lat, min_lon, max_lon = bounding_box(Coordinate(89.99, 0), 10_000)
    assert max_lat == 90.0
    assert (min_lon, max_lon) == (-180.0, 180.0)

    # Circle over the north pole: the point across it is ~16.7 km away
    center = Coordinate(89.9, 0.0)
    across = Coordinate(89.95, 180.0)
    assert haversine_m(center, across) < 20_000
    assert bounding_box(center, 20_000)[2:] == (-180.0, 180.0)
    assert filter_within_radius(center, [("across", across)], 20_000)[0][0] == "across"

    # Same over the south pole
    south = Coordinate(-89.9, 45.0)
    assert filter_within_radius(south, [("far", Coordinate(-89.95, -135.0))], 20_000)[0][0] == "far"

    for bad in [(91, 0), (0, 181), (float("nan"), 0), (None, 0)]:
        with pytest.raises(ValidationError):
            Coordinate(*bad)

    assert Coordinate.from_dict({"latitude": 1, "longitude": 2}).to_dict() == {"latitude": 1, "longitude": 2}
    with pytest.raises(ValidationError):
        Coordinate.from_dict({"latitude": 1})


def test_format_distance():
    assert format_distance(450.2) == "450 m"
    assert format_distance(3726.6) == "3.73 km"


if __name__ == "__main__":
    test_haversine()
    test_radius_check()
    test_filter_nearest_first()
    test_edge_cases()
    test_format_distance()
    print("\nAll geo examples passed.")
