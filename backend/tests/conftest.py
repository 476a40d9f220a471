"""
Pytest configuration and fixtures for RoofGrid backend tests.
"""

import sys
from pathlib import Path

import pytest
from starlette.testclient import TestClient

# Add backend to path for imports
backend_dir = Path(__file__).parent.parent
sys.path.insert(0, str(backend_dir))

from roofgrid.main import app
from roofgrid.services.geometry import GeoPoint, PlanarPoint
from roofgrid.services.segments import Segment


@pytest.fixture
def test_client() -> TestClient:
    """Synchronous test client for API tests."""
    return TestClient(app)


@pytest.fixture
def left_square() -> Segment:
    """100px square facet; 10 ft per side at 10 px/ft."""
    return Segment(
        segment_id="seg_left",
        name="Left",
        points=(
            PlanarPoint(0, 0),
            PlanarPoint(100, 0),
            PlanarPoint(100, 100),
            PlanarPoint(0, 100),
        ),
    )


@pytest.fixture
def right_square() -> Segment:
    """Square facet sharing the x=100 line with left_square."""
    return Segment(
        segment_id="seg_right",
        name="Right",
        points=(
            PlanarPoint(100, 0),
            PlanarPoint(200, 0),
            PlanarPoint(200, 100),
            PlanarPoint(100, 100),
        ),
    )


@pytest.fixture
def equator_square() -> tuple:
    """0.001° square at the equator, (lat, lon) vertices."""
    return (
        GeoPoint(0.0, 0.0),
        GeoPoint(0.0, 0.001),
        GeoPoint(0.001, 0.001),
        GeoPoint(0.001, 0.0),
    )
