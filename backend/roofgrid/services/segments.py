"""
Roof Segment Model

A segment (facet) is one planar roof face captured as a closed polygon.
Vertex order is fixed once the segment is finished; name, pitch override and
tags can be changed by replacing the segment value.

Areas are never cached: they are recomputed from the stored vertices for the
current coordinate space, so re-calibration never leaves stale values.
"""

from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional, Sequence, Tuple
import re
import uuid

from .errors import ValidationError
from .geometry import (
    MIN_POLYGON_POINTS,
    CoordinateSpace,
    Point,
    point_from_dict,
    polygon_area_sqft,
    polygon_perimeter_ft,
)
from .polygon_capture import SegmentDraft

_DEFAULT_NAME_RE = re.compile(r"Facet (\d+)")


@dataclass(frozen=True)
class Segment:
    """
    A finished roof facet.

    Fields:
        segment_id: Unique identifier, also the prefix of its edge ids
        name: Human-readable name (e.g., "Facet 1", "Front Slope")
        points: Closed polygon vertices (closing edge implicit)
        pitch: Optional rise/12 override for this facet
        material: Optional material tag (e.g., "asphalt")
        condition: Optional condition tag (e.g., "hail damage")
        metadata: Additional attributes
    """

    segment_id: str
    name: str
    points: Tuple[Point, ...]
    pitch: Optional[int] = None
    material: Optional[str] = None
    condition: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict, compare=False)

    def __post_init__(self):
        if len(self.points) < MIN_POLYGON_POINTS:
            raise ValidationError("segment needs at least 3 points")
        if self.pitch is not None and not 0 <= self.pitch <= 18:
            raise ValidationError(f"Segment pitch must be between 0 and 18, got {self.pitch}")

    @property
    def vertex_count(self) -> int:
        return len(self.points)

    def area_sqft(self, space: CoordinateSpace) -> float:
        """Area in ft² for the given coordinate space."""
        return polygon_area_sqft(self.points, space)

    def perimeter_ft(self, space: CoordinateSpace) -> float:
        """Perimeter in ft for the given coordinate space."""
        return polygon_perimeter_ft(self.points, space)

    def renamed(self, name: str) -> "Segment":
        if not name.strip():
            raise ValidationError("Segment name cannot be empty")
        return replace(self, name=name.strip())

    def to_dict(self, space: Optional[CoordinateSpace] = None) -> Dict[str, Any]:
        """
        Convert to dictionary for JSON serialization.

        When a space is given the computed area is included.
        """
        result = {
            "segment_id": self.segment_id,
            "name": self.name,
            "points": [p.to_dict() for p in self.points],
            "pitch": self.pitch,
            "material": self.material,
            "condition": self.condition,
            "metadata": self.metadata,
        }
        if space is not None:
            result["area_sqft"] = self.area_sqft(space)
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Segment":
        """Create Segment from dictionary."""
        return cls(
            segment_id=data.get("segment_id") or data.get("id") or generate_segment_id(),
            name=data.get("name", ""),
            points=tuple(point_from_dict(p) for p in data.get("points", [])),
            pitch=data.get("pitch"),
            material=data.get("material"),
            condition=data.get("condition"),
            metadata=data.get("metadata") or {},
        )


def generate_segment_id() -> str:
    """Generate a unique segment ID."""
    return f"seg_{uuid.uuid4().hex[:12]}"


def default_segment_name(existing: Sequence[Segment]) -> str:
    """Next "Facet N" name: one past the highest "Facet N" already in use."""
    highest = 0
    for segment in existing:
        match = _DEFAULT_NAME_RE.fullmatch(segment.name)
        if match:
            highest = max(highest, int(match.group(1)))
    return f"Facet {highest + 1}"


def segment_from_draft(
    draft: SegmentDraft,
    existing: Sequence[Segment] = (),
    name: Optional[str] = None,
    segment_id: Optional[str] = None,
    pitch: Optional[int] = None,
) -> Segment:
    """Promote a finished capture draft to a Segment."""
    return Segment(
        segment_id=segment_id or generate_segment_id(),
        name=name or default_segment_name(existing),
        points=tuple(draft.points),
        pitch=pitch,
    )


def total_area_sqft(segments: Sequence[Segment], space: CoordinateSpace) -> float:
    """Sum of segment areas in ft²."""
    return sum(segment.area_sqft(space) for segment in segments)


def segment_areas(segments: Sequence[Segment], space: CoordinateSpace) -> List[float]:
    """Area of each segment, in list order."""
    return [segment.area_sqft(space) for segment in segments]
