"""
Edge Classifier Service

Derives the ordered edge list of every roof segment, computes real-world
edge lengths, and tracks the feature type (ridge, hip, valley, eave, rake,
penetration) the user assigns to each edge.

Edge ids are derived from (segment_id, vertex index). Regenerating edges
after the segment list changes keeps the feature type of every edge whose
id already existed; new edges start unlabeled.
"""

from collections import Counter
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple, Union
import logging
import math

from .errors import ValidationError
from .geometry import (
    CoordinateSpace,
    GeoPoint,
    Point,
    polygon_edges,
    segment_length_ft,
)
from .segments import Segment

logger = logging.getLogger(__name__)


class FeatureType(str, Enum):
    """Roof edge classifications used for linear-footage estimating."""

    RIDGE = "ridge"  # Horizontal peak where two planes meet at the top
    HIP = "hip"  # Sloped external line where two planes meet
    VALLEY = "valley"  # Sloped internal line where two planes meet
    EAVE = "eave"  # Bottom edge overhanging the wall
    RAKE = "rake"  # Sloped edge at a gable end
    PENETRATION = "penetration"  # Chimneys, vents, skylights
    UNLABELED = "unlabeled"

    @classmethod
    def parse(cls, value: Union[str, "FeatureType", None]) -> "FeatureType":
        """
        Coerce a user-supplied type to a FeatureType.

        Unknown or empty values map to UNLABELED instead of failing.
        """
        if isinstance(value, cls):
            return value
        if not value:
            return cls.UNLABELED
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            logger.debug(f"Unknown feature type {value!r}, using unlabeled")
            return cls.UNLABELED


def edge_id_for(segment_id: str, index: int) -> str:
    """Deterministic edge id for vertex index `index` of a segment."""
    return f"{segment_id}:{index}"


@dataclass(frozen=True)
class Edge:
    """
    One side of a roof segment, from vertex `index` to vertex `index + 1`.

    Fields:
        edge_id: "{segment_id}:{index}"
        segment_id: Owning segment
        index: Start vertex index within the segment
        start: Start vertex
        end: End vertex (wraps to the first vertex for the last edge)
        length_ft: Real-world length in feet
        feature_type: Assigned classification
        shared: True when another segment has an edge with the same endpoints
        user_modified: True once a user has labeled the edge
        confidence: Score (0-100) for suggested classifications
        detection_reason: Why a suggestion was made
    """

    edge_id: str
    segment_id: str
    index: int
    start: Point
    end: Point
    length_ft: float
    feature_type: FeatureType = FeatureType.UNLABELED
    shared: bool = False
    user_modified: bool = False
    confidence: Optional[float] = None
    detection_reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "edge_id": self.edge_id,
            "segment_id": self.segment_id,
            "index": self.index,
            "start": self.start.to_dict(),
            "end": self.end.to_dict(),
            "length_ft": self.length_ft,
            "feature_type": self.feature_type.value,
            "shared": self.shared,
            "user_modified": self.user_modified,
            "confidence": self.confidence,
            "detection_reason": self.detection_reason,
        }


@dataclass
class EdgeTotals:
    """Total linear feet per feature type across all segments."""

    ridge_length: float = 0.0
    hip_length: float = 0.0
    valley_length: float = 0.0
    eave_length: float = 0.0
    rake_length: float = 0.0
    penetration_length: float = 0.0
    unlabeled_length: float = 0.0
    by_type: Dict[str, float] = field(default_factory=dict)

    def length_of(self, feature_type: FeatureType) -> float:
        return self.by_type.get(feature_type.value, 0.0)

    @property
    def labeled_length(self) -> float:
        return sum(self.by_type.values()) - self.unlabeled_length

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ridge_length": round(self.ridge_length, 4),
            "hip_length": round(self.hip_length, 4),
            "valley_length": round(self.valley_length, 4),
            "eave_length": round(self.eave_length, 4),
            "rake_length": round(self.rake_length, 4),
            "penetration_length": round(self.penetration_length, 4),
            "unlabeled_length": round(self.unlabeled_length, 4),
        }


# =============================================================================
# Edge Derivation
# =============================================================================


def _point_key(point: Point) -> Tuple[float, float]:
    if isinstance(point, GeoPoint):
        return (round(point.lat, 8), round(point.lon, 8))
    return (round(point.x, 3), round(point.y, 3))


def edge_key(edge: Edge) -> Tuple[Tuple[float, float], Tuple[float, float]]:
    """Direction-independent key of an edge's endpoints."""
    a, b = _point_key(edge.start), _point_key(edge.end)
    return (a, b) if a <= b else (b, a)


def derive_edges(
    segments: Sequence[Segment],
    space: CoordinateSpace,
    previous_edges: Iterable[Edge] = (),
) -> List[Edge]:
    """
    Regenerate all edges for a segment list, keeping prior labels by id.

    Every segment with n vertices yields exactly n edges, in vertex order.
    An edge whose id existed in `previous_edges` keeps its feature type,
    user_modified flag and suggestion details; new edges are unlabeled.
    Lengths are always recomputed for the current space.

    Args:
        segments: Finished segments
        space: Coordinate space (planar with scale, or geodesic)
        previous_edges: Edges from the previous derivation

    Returns:
        New edge list. Calling again with its own output returns an equal list.

    Raises:
        CalibrationRequiredError: Planar space without a scale.
    """
    prior = {edge.edge_id: edge for edge in previous_edges}
    edges: List[Edge] = []

    for segment in segments:
        for index, (start, end) in enumerate(polygon_edges(segment.points)):
            edge_id = edge_id_for(segment.segment_id, index)
            edge = Edge(
                edge_id=edge_id,
                segment_id=segment.segment_id,
                index=index,
                start=start,
                end=end,
                length_ft=segment_length_ft(start, end, space),
            )

            previous = prior.get(edge_id)
            if previous is not None:
                edge = replace(
                    edge,
                    feature_type=previous.feature_type,
                    user_modified=previous.user_modified,
                    confidence=previous.confidence,
                    detection_reason=previous.detection_reason,
                )
            edges.append(edge)

    key_counts = Counter(edge_key(edge) for edge in edges)
    edges = [replace(edge, shared=key_counts[edge_key(edge)] > 1) for edge in edges]

    logger.debug(
        f"Derived {len(edges)} edges for {len(segments)} segments "
        f"({len(prior)} previous)"
    )
    return edges


def assign_feature_type(
    edges: Sequence[Edge],
    edge_id: str,
    feature_type: Union[str, FeatureType, None],
) -> List[Edge]:
    """
    Label one edge.

    Args:
        edges: Current edge list
        edge_id: Edge to label
        feature_type: New type; unrecognized values become UNLABELED

    Returns:
        New edge list with the edge relabeled and marked user_modified

    Raises:
        ValidationError: If edge_id is not in the list
    """
    parsed = FeatureType.parse(feature_type)
    found = False
    result: List[Edge] = []

    for edge in edges:
        if edge.edge_id == edge_id:
            edge = replace(
                edge,
                feature_type=parsed,
                user_modified=True,
                confidence=None,
                detection_reason=None,
            )
            found = True
        result.append(edge)

    if not found:
        raise ValidationError(f"Edge not found: {edge_id}")

    return result


def edges_for_segment(edges: Sequence[Edge], segment_id: str) -> List[Edge]:
    return [edge for edge in edges if edge.segment_id == segment_id]


def get_edge(edges: Sequence[Edge], edge_id: str) -> Optional[Edge]:
    for edge in edges:
        if edge.edge_id == edge_id:
            return edge
    return None


# =============================================================================
# Totals
# =============================================================================


def compute_edge_totals(edges: Sequence[Edge]) -> EdgeTotals:
    """
    Sum edge lengths per feature type across all segments.

    Every edge adds its length to its own type, including both copies of a
    line shared by two facets.
    """
    by_type: Dict[str, float] = {ft.value: 0.0 for ft in FeatureType}

    for edge in edges:
        by_type[edge.feature_type.value] += edge.length_ft

    return EdgeTotals(
        ridge_length=by_type[FeatureType.RIDGE.value],
        hip_length=by_type[FeatureType.HIP.value],
        valley_length=by_type[FeatureType.VALLEY.value],
        eave_length=by_type[FeatureType.EAVE.value],
        rake_length=by_type[FeatureType.RAKE.value],
        penetration_length=by_type[FeatureType.PENETRATION.value],
        unlabeled_length=by_type[FeatureType.UNLABELED.value],
        by_type=by_type,
    )


def perimeter_ft(edges: Sequence[Edge]) -> float:
    """Outer roof perimeter: total length of edges not shared between facets."""
    return sum(edge.length_ft for edge in edges if not edge.shared)


# =============================================================================
# Suggested Classification
# =============================================================================


def _direction(edge: Edge) -> Tuple[float, float]:
    """(east, north) direction components of an edge."""
    if isinstance(edge.start, GeoPoint):
        return (edge.end.lon - edge.start.lon, edge.end.lat - edge.start.lat)
    # Image y grows downward
    return (edge.end.x - edge.start.x, edge.start.y - edge.end.y)


def edge_angle_to_north(edge: Edge) -> float:
    """Bearing of the edge in degrees, 0-360, clockwise from north."""
    dx, dy = _direction(edge)
    angle = math.degrees(math.atan2(dx, dy))
    return angle + 360 if angle < 0 else angle


def angle_between_edges(first: Edge, second: Edge) -> float:
    """Angle in degrees (0-180) between the direction vectors of two edges."""
    x1, y1 = _direction(first)
    x2, y2 = _direction(second)
    mag1 = math.hypot(x1, y1)
    mag2 = math.hypot(x2, y2)
    if mag1 == 0 or mag2 == 0:
        return 0.0

    cos_angle = (x1 * x2 + y1 * y2) / (mag1 * mag2)
    return math.degrees(math.acos(max(-1.0, min(1.0, cos_angle))))


def is_nearly_horizontal(angle: float, tolerance: float = 15.0) -> bool:
    """True for edges running roughly east-west."""
    normalized = (angle - 90) % 180
    return normalized < tolerance or normalized > 180 - tolerance


def is_nearly_vertical(angle: float, tolerance: float = 15.0) -> bool:
    """True for edges running roughly north-south."""
    normalized = angle % 180
    return normalized < tolerance or normalized > 180 - tolerance


def find_connecting_edges(edge: Edge, edges: Sequence[Edge]) -> List[Edge]:
    """Edges from other segments that touch an endpoint of `edge`."""
    key = edge_key(edge)
    endpoints = {_point_key(edge.start), _point_key(edge.end)}
    connecting = []

    for other in edges:
        if other.segment_id == edge.segment_id or edge_key(other) == key:
            continue
        if _point_key(other.start) in endpoints or _point_key(other.end) in endpoints:
            connecting.append(other)

    return connecting


@dataclass(frozen=True)
class EdgeSuggestion:
    """A suggested feature type with its confidence and reasoning."""

    feature_type: FeatureType
    confidence: float
    reason: str


def suggest_feature_type(edge: Edge, edges: Sequence[Edge]) -> EdgeSuggestion:
    """
    Suggest a classification from orientation and facet connectivity.

    Shared lines are interior (ridge, hip or valley); unshared lines lie on
    the outer perimeter (eave or rake). Facets whose every edge is under
    10 ft are treated as penetrations.
    """
    angle = edge_angle_to_north(edge)
    siblings = edges_for_segment(edges, edge.segment_id)

    if siblings and all(sibling.length_ft < 10 for sibling in siblings):
        return EdgeSuggestion(
            FeatureType.PENETRATION,
            70,
            f"Small isolated feature ({round(edge.length_ft)}ft)",
        )

    if edge.shared:
        if is_nearly_horizontal(angle):
            return EdgeSuggestion(
                FeatureType.RIDGE,
                85,
                f"Horizontal ({round(angle)}°) line shared by two facets",
            )

        connecting = find_connecting_edges(edge, edges)
        if not connecting:
            return EdgeSuggestion(FeatureType.HIP, 60, "Sloped line shared by two facets")

        avg_angle = sum(angle_between_edges(edge, other) for other in connecting) / len(connecting)
        if avg_angle < 100:
            return EdgeSuggestion(
                FeatureType.VALLEY, 88, f"Internal angle {round(avg_angle)}°, forms V-shape"
            )
        if avg_angle > 130:
            return EdgeSuggestion(
                FeatureType.HIP, 85, f"External angle {round(avg_angle)}°, connects peak to eave"
            )
        return EdgeSuggestion(
            FeatureType.RIDGE, 65, f"Diagonal connection at {round(avg_angle)}°"
        )

    if is_nearly_horizontal(angle):
        return EdgeSuggestion(
            FeatureType.EAVE, 70, f"Horizontal ({round(angle)}°), perimeter edge"
        )
    if is_nearly_vertical(angle, tolerance=20):
        return EdgeSuggestion(
            FeatureType.RAKE, 80, f"Sloped edge ({round(angle)}°), gable end"
        )
    return EdgeSuggestion(FeatureType.EAVE, 60, "Perimeter edge")


def auto_classify_edges(edges: Sequence[Edge]) -> List[Edge]:
    """
    Apply suggested classifications to every edge the user has not labeled.

    User-labeled edges are returned unchanged.
    """
    result: List[Edge] = []
    for edge in edges:
        if edge.user_modified:
            result.append(edge)
            continue

        suggestion = suggest_feature_type(edge, edges)
        result.append(
            replace(
                edge,
                feature_type=suggestion.feature_type,
                confidence=suggestion.confidence,
                detection_reason=suggestion.reason,
            )
        )

    logger.debug(f"Auto-classified {sum(1 for e in edges if not e.user_modified)} edges")
    return result
