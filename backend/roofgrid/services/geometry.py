"""
Roof Geometry Service

Point types, coordinate spaces, and area/length calculations for traced roof
facets. Two coordinate spaces are supported:

- Planar: pixel coordinates over a calibrated image (pixels per foot).
- Geodesic: latitude/longitude in degrees over a map.

A measurement is pinned to one space for its lifetime; every area and length
function dispatches on the space so the two kinds of math are never mixed.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union
import math

from .errors import CalibrationRequiredError, ValidationError


# Constants
EARTH_RADIUS_M = 6_371_000.0
SQFT_PER_SQM = 10.7639
FEET_PER_METER = 3.28084
MIN_POLYGON_POINTS = 3


class CoordinateKind(str, Enum):
    """Coordinate systems a measurement session can be pinned to."""

    PLANAR = "planar"  # Pixels over calibrated imagery
    GEODESIC = "geodesic"  # Degrees lat/lon over a map


# =============================================================================
# Points
# =============================================================================


@dataclass(frozen=True)
class PlanarPoint:
    """A point in image pixel coordinates."""

    x: float
    y: float

    def to_dict(self) -> Dict[str, float]:
        return {"x": self.x, "y": self.y}


@dataclass(frozen=True)
class GeoPoint:
    """A point in geographic coordinates (degrees)."""

    lat: float
    lon: float

    def to_dict(self) -> Dict[str, float]:
        return {"lat": self.lat, "lon": self.lon}


Point = Union[PlanarPoint, GeoPoint]


# =============================================================================
# Coordinate Spaces
# =============================================================================


@dataclass(frozen=True)
class Planar:
    """
    Planar pixel space.

    Fields:
        pixels_per_foot: Calibration scale, None until the user calibrates.
    """

    pixels_per_foot: Optional[float] = None

    @property
    def kind(self) -> CoordinateKind:
        return CoordinateKind.PLANAR

    @property
    def is_calibrated(self) -> bool:
        return self.pixels_per_foot is not None and self.pixels_per_foot > 0


@dataclass(frozen=True)
class Geodesic:
    """Geographic lat/lon space on a spherical earth."""

    @property
    def kind(self) -> CoordinateKind:
        return CoordinateKind.GEODESIC

    @property
    def is_calibrated(self) -> bool:
        return True


CoordinateSpace = Union[Planar, Geodesic]


def point_type_for(space: CoordinateSpace) -> type:
    """Return the point class that belongs to a coordinate space."""
    if isinstance(space, Planar):
        return PlanarPoint
    return GeoPoint


def make_point(pair: Sequence[float], kind: CoordinateKind) -> Point:
    """
    Build a point from a raw (x, y) or (lat, lon) pair.

    Args:
        pair: Two numbers from a UI click handler or API payload.
        kind: Coordinate kind of the session.

    Returns:
        PlanarPoint or GeoPoint.

    Raises:
        ValidationError: If the pair does not hold exactly two numbers.
    """
    if len(pair) != 2:
        raise ValidationError(f"Point must have exactly 2 coordinates, got {len(pair)}")

    first, second = float(pair[0]), float(pair[1])
    if kind == CoordinateKind.PLANAR:
        return PlanarPoint(x=first, y=second)
    return GeoPoint(lat=first, lon=second)


def point_from_dict(data: Dict[str, Any]) -> Point:
    """Create a point from its dict form ({x, y} or {lat, lon})."""
    if "lat" in data:
        return GeoPoint(lat=float(data["lat"]), lon=float(data["lon"]))
    return PlanarPoint(x=float(data["x"]), y=float(data["y"]))


def ensure_points_in_space(points: Sequence[Point], space: CoordinateSpace) -> None:
    """
    Check that every point belongs to the given coordinate space.

    Raises:
        ValidationError: If a point of the other kind is present.
    """
    expected = point_type_for(space)
    for point in points:
        if not isinstance(point, expected):
            raise ValidationError(
                f"{type(point).__name__} cannot be used in a {space.kind.value} measurement"
            )


# =============================================================================
# Planar Math
# =============================================================================


def shoelace_area_pixels(points: Sequence[PlanarPoint]) -> float:
    """
    Calculate the area of a polygon in pixel² using the Shoelace formula.

    A = 0.5 * |Σ(x_i * y_{i+1} - x_{i+1} * y_i)|

    Args:
        points: Polygon vertices. The closing edge is implicit.

    Returns:
        Non-negative area in pixel². Degenerate polygons return 0.0.

    Raises:
        ValidationError: If polygon has fewer than 3 points.
    """
    n = len(points)
    if n < MIN_POLYGON_POINTS:
        raise ValidationError(f"Polygon must have at least 3 points, got {n}")

    area = 0.0
    for i in range(n):
        j = (i + 1) % n  # Wrap around to close the polygon
        area += points[i].x * points[j].y
        area -= points[j].x * points[i].y

    return abs(area) / 2.0


def planar_distance_pixels(a: PlanarPoint, b: PlanarPoint) -> float:
    """Euclidean distance between two pixel points."""
    return math.hypot(b.x - a.x, b.y - a.y)


def _require_scale(pixels_per_foot: Optional[float]) -> float:
    if pixels_per_foot is None:
        raise CalibrationRequiredError()
    if pixels_per_foot <= 0:
        raise ValidationError(f"pixels_per_foot must be positive, got {pixels_per_foot}")
    return pixels_per_foot


def planar_area_sqft(
    points: Sequence[PlanarPoint],
    pixels_per_foot: Optional[float],
) -> float:
    """
    Compute polygon area in square feet from pixel vertices and scale.

    Conversion: area_ft² = area_px / (pixels_per_foot²)

    Raises:
        CalibrationRequiredError: If no scale has been set.
        ValidationError: If polygon has fewer than 3 points.
    """
    scale = _require_scale(pixels_per_foot)
    return shoelace_area_pixels(points) / (scale ** 2)


def planar_length_ft(
    a: PlanarPoint,
    b: PlanarPoint,
    pixels_per_foot: Optional[float],
) -> float:
    """Length of a pixel segment in feet."""
    scale = _require_scale(pixels_per_foot)
    return planar_distance_pixels(a, b) / scale


# =============================================================================
# Geodesic Math
# =============================================================================


def geodesic_area_sqft(points: Sequence[GeoPoint]) -> float:
    """
    Approximate area of a lat/lon polygon on a sphere, in square feet.

    Uses the small-polygon ring area formula:
        A = |Σ(λ_{i+1} - λ_i) * (2 + sin φ_i + sin φ_{i+1})| * R² / 2

    This is not an exact spherical-excess computation; error grows with
    polygon size. Roof facets are small enough for it to be adequate.

    Raises:
        ValidationError: If polygon has fewer than 3 points.
    """
    n = len(points)
    if n < MIN_POLYGON_POINTS:
        raise ValidationError(f"Polygon must have at least 3 points, got {n}")

    total = 0.0
    for i in range(n):
        p1 = points[i]
        p2 = points[(i + 1) % n]
        delta_lon = math.radians(p2.lon - p1.lon)
        total += delta_lon * (
            2 + math.sin(math.radians(p1.lat)) + math.sin(math.radians(p2.lat))
        )

    area_m2 = abs(total * EARTH_RADIUS_M * EARTH_RADIUS_M / 2.0)
    return area_m2 * SQFT_PER_SQM


def haversine_distance_m(a: GeoPoint, b: GeoPoint) -> float:
    """Great-circle distance in meters between two lat/lon points."""
    phi1 = math.radians(a.lat)
    phi2 = math.radians(b.lat)
    delta_phi = math.radians(b.lat - a.lat)
    delta_lambda = math.radians(b.lon - a.lon)

    h = (
        math.sin(delta_phi / 2) ** 2
        + math.cos(phi1) * math.cos(phi2) * math.sin(delta_lambda / 2) ** 2
    )
    c = 2 * math.atan2(math.sqrt(h), math.sqrt(1 - h))
    return EARTH_RADIUS_M * c


def geodesic_length_ft(a: GeoPoint, b: GeoPoint) -> float:
    """Great-circle distance in feet."""
    return haversine_distance_m(a, b) * FEET_PER_METER


# =============================================================================
# Space Dispatch
# =============================================================================


def polygon_area_sqft(points: Sequence[Point], space: CoordinateSpace) -> float:
    """
    Compute a facet's area in square feet for its coordinate space.

    Args:
        points: Facet vertices (closing edge implicit).
        space: Planar (with scale) or Geodesic.

    Returns:
        Non-negative area in ft².

    Raises:
        CalibrationRequiredError: Planar space without a scale.
        ValidationError: Fewer than 3 points or mixed point kinds.
    """
    ensure_points_in_space(points, space)
    if isinstance(space, Planar):
        return planar_area_sqft(points, space.pixels_per_foot)
    return geodesic_area_sqft(points)


def segment_length_ft(a: Point, b: Point, space: CoordinateSpace) -> float:
    """Length in feet of the straight edge from a to b."""
    ensure_points_in_space((a, b), space)
    if isinstance(space, Planar):
        return planar_length_ft(a, b, space.pixels_per_foot)
    return geodesic_length_ft(a, b)


def polygon_perimeter_ft(points: Sequence[Point], space: CoordinateSpace) -> float:
    """
    Perimeter in feet of a closed polygon.

    Raises:
        ValidationError: If polygon has fewer than 2 points.
    """
    n = len(points)
    if n < 2:
        raise ValidationError(f"Polygon must have at least 2 points, got {n}")

    return sum(segment_length_ft(points[i], points[(i + 1) % n], space) for i in range(n))


def polygon_edges(points: Sequence[Point]) -> List[Tuple[Point, Point]]:
    """Ordered (start, end) pairs of a closed polygon, wrapping last to first."""
    n = len(points)
    return [(points[i], points[(i + 1) % n]) for i in range(n)]
