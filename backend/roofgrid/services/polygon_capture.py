"""
Polygon Capture Service

Accumulates the vertices of the facet currently being traced and promotes
them to a finished segment draft.

State machine:
    IDLE -> DRAWING -> (FINISHED | CANCELLED) -> IDLE

PolygonCapture is an immutable value: every operation returns a new capture.
"""

from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Dict, Sequence, Tuple
import logging

from .errors import ValidationError
from .geometry import MIN_POLYGON_POINTS, Point

logger = logging.getLogger(__name__)


class CaptureState(str, Enum):
    """Lifecycle states of a polygon capture."""

    IDLE = "idle"
    DRAWING = "drawing"
    FINISHED = "finished"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class SegmentDraft:
    """
    Closed polygon ready for area computation.

    The closing edge (last point back to first) is implicit.
    """

    points: Tuple[Point, ...]

    @property
    def vertex_count(self) -> int:
        return len(self.points)

    def to_dict(self) -> Dict[str, Any]:
        return {"points": [p.to_dict() for p in self.points]}


@dataclass(frozen=True)
class PolygonCapture:
    """In-progress vertex list for one facet."""

    state: CaptureState = CaptureState.IDLE
    points: Tuple[Point, ...] = ()

    @property
    def point_count(self) -> int:
        return len(self.points)

    @property
    def can_finish(self) -> bool:
        return self.state == CaptureState.DRAWING and len(self.points) >= MIN_POLYGON_POINTS

    def _ready(self) -> "PolygonCapture":
        # Finished and cancelled captures return to idle on the next action
        if self.state in (CaptureState.FINISHED, CaptureState.CANCELLED):
            return PolygonCapture()
        return self

    def add_point(self, point: Point) -> "PolygonCapture":
        """Append a vertex, entering DRAWING if idle."""
        current = self._ready()
        if current.points and type(current.points[0]) is not type(point):
            raise ValidationError("All points of a segment must use the same coordinate space")

        return PolygonCapture(
            state=CaptureState.DRAWING,
            points=current.points + (point,),
        )

    def undo_last_point(self) -> "PolygonCapture":
        """Remove the most recent vertex. Undo with no points is a no-op."""
        current = self._ready()
        if not current.points:
            return current

        remaining = current.points[:-1]
        if not remaining:
            return PolygonCapture()
        return replace(current, points=remaining)

    def finish_segment(self) -> Tuple["PolygonCapture", SegmentDraft]:
        """
        Close the polygon and return it as a segment draft.

        A trailing point that repeats the first vertex is treated as an
        explicit closing click and dropped.

        Returns:
            (finished capture, SegmentDraft)

        Raises:
            ValidationError: If fewer than 3 distinct points are present.
        """
        points = self.points
        if self.state != CaptureState.DRAWING:
            points = ()
        if len(points) > 1 and points[-1] == points[0]:
            points = points[:-1]

        if len(points) < MIN_POLYGON_POINTS:
            logger.warning(f"Rejected segment with {len(points)} points")
            raise ValidationError("segment needs at least 3 points")

        finished = PolygonCapture(state=CaptureState.FINISHED, points=points)
        return finished, SegmentDraft(points=points)

    def cancel(self) -> "PolygonCapture":
        """Discard in-progress vertices."""
        return PolygonCapture(state=CaptureState.CANCELLED)

    def reset(self) -> "PolygonCapture":
        """Return to IDLE with no points."""
        return PolygonCapture()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            "points": [p.to_dict() for p in self.points],
        }


def capture_from_points(points: Sequence[Point]) -> PolygonCapture:
    """Build a DRAWING capture from an existing vertex sequence."""
    capture = PolygonCapture()
    for point in points:
        capture = capture.add_point(point)
    return capture
