"""
Measurement Session

A MeasurementSession is the complete state of one interactive roof
measurement: coordinate space, calibration, the facet being traced, the
finished segments, their edges, and the global pitch/waste inputs.

User interaction is modeled as commands applied to the session:

    session = apply_command(session, AddPoint(PlanarPoint(10, 10)))

Every command returns a new session. A command that fails raises a
RoofGridError and leaves the original session untouched, so the caller can
surface the message and keep going.

Interaction modes:
    IDLE -> CALIBRATING (2 points) -> AWAITING_REFERENCE_LENGTH -> IDLE
    IDLE -> DRAWING (N >= 3 points) -> IDLE
    IDLE -> LABELING (select edge) -> IDLE
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple, Union
import logging
import uuid

from .calibration import CalibrationScale, compute_scale_from_points
from .edge_classifier import (
    Edge,
    EdgeTotals,
    FeatureType,
    assign_feature_type,
    auto_classify_edges,
    compute_edge_totals,
    derive_edges,
    get_edge,
    perimeter_ft,
)
from .errors import CalibrationRequiredError, ValidationError
from .geometry import (
    CoordinateKind,
    CoordinateSpace,
    Geodesic,
    Planar,
    PlanarPoint,
    Point,
    ensure_points_in_space,
)
from .polygon_capture import CaptureState, PolygonCapture
from .pricing import Estimate, PricingInput, Tier, build_estimate
from .roof_metrics import (
    RoofMetrics,
    WASTE_STEP,
    compute_roof_metrics,
    validate_pitch,
    validate_waste_factor,
)
from .segments import Segment, segment_areas, segment_from_draft

logger = logging.getLogger(__name__)

DEFAULT_PITCH = 6
DEFAULT_WASTE_FACTOR = 10


class InteractionMode(str, Enum):
    """What the next user input event means."""

    IDLE = "idle"
    CALIBRATING = "calibrating"
    AWAITING_REFERENCE_LENGTH = "awaiting_reference_length"
    DRAWING = "drawing"
    LABELING = "labeling"


class MeasurementStatus(str, Enum):
    DRAFT = "Draft"
    COMPLETED = "Completed"


@dataclass(frozen=True)
class MeasurementSession:
    """
    Owned state of one measurement.

    The segment list is the only source of truth for geometry; edges are
    re-derived from it whenever it changes.
    """

    session_id: str
    coordinate_kind: CoordinateKind
    calibration: Optional[CalibrationScale] = None
    calibration_points: Tuple[PlanarPoint, ...] = ()
    capture: PolygonCapture = field(default_factory=PolygonCapture)
    segments: Tuple[Segment, ...] = ()
    edges: Tuple[Edge, ...] = ()
    mode: InteractionMode = InteractionMode.IDLE
    selected_edge_id: Optional[str] = None
    pitch: int = DEFAULT_PITCH
    waste_factor: int = DEFAULT_WASTE_FACTOR
    address: str = ""
    context: Dict[str, Any] = field(default_factory=dict, compare=False)
    status: MeasurementStatus = MeasurementStatus.DRAFT

    @property
    def space(self) -> CoordinateSpace:
        """Coordinate space with the current calibration applied."""
        if self.coordinate_kind == CoordinateKind.GEODESIC:
            return Geodesic()
        return Planar(self.calibration.pixels_per_foot if self.calibration else None)

    @property
    def is_calibrated(self) -> bool:
        return self.space.is_calibrated

    def get_segment(self, segment_id: str) -> Optional[Segment]:
        for segment in self.segments:
            if segment.segment_id == segment_id:
                return segment
        return None


def new_session(
    coordinate_kind: Union[CoordinateKind, str] = CoordinateKind.PLANAR,
    address: str = "",
    pitch: int = DEFAULT_PITCH,
    waste_factor: int = DEFAULT_WASTE_FACTOR,
    context: Optional[Dict[str, Any]] = None,
) -> MeasurementSession:
    """Start an empty session pinned to one coordinate space."""
    validate_pitch(pitch)
    validate_waste_factor(waste_factor)
    return MeasurementSession(
        session_id=f"ses_{uuid.uuid4().hex[:12]}",
        coordinate_kind=CoordinateKind(coordinate_kind),
        pitch=pitch,
        waste_factor=waste_factor,
        address=address,
        context=context or {},
    )


# =============================================================================
# Commands
# =============================================================================


@dataclass(frozen=True)
class AddPoint:
    point: Point


@dataclass(frozen=True)
class UndoPoint:
    pass


@dataclass(frozen=True)
class FinishSegment:
    name: Optional[str] = None
    pitch: Optional[int] = None


@dataclass(frozen=True)
class CancelDrawing:
    pass


@dataclass(frozen=True)
class StartCalibration:
    pass


@dataclass(frozen=True)
class AddCalibrationPoint:
    point: PlanarPoint


@dataclass(frozen=True)
class SetCalibration:
    reference_length_ft: float


@dataclass(frozen=True)
class CancelCalibration:
    pass


@dataclass(frozen=True)
class SelectEdge:
    edge_id: str


@dataclass(frozen=True)
class LabelEdge:
    feature_type: Union[FeatureType, str]
    edge_id: Optional[str] = None  # Defaults to the selected edge


@dataclass(frozen=True)
class CancelLabeling:
    pass


@dataclass(frozen=True)
class AutoClassifyEdges:
    pass


@dataclass(frozen=True)
class RenameSegment:
    segment_id: str
    name: str


@dataclass(frozen=True)
class DeleteSegment:
    segment_id: str


@dataclass(frozen=True)
class SetSegmentPitch:
    segment_id: str
    pitch: Optional[int]


@dataclass(frozen=True)
class SetPitch:
    pitch: int


@dataclass(frozen=True)
class SetWasteFactor:
    waste_factor: int


Command = Union[
    AddPoint,
    UndoPoint,
    FinishSegment,
    CancelDrawing,
    StartCalibration,
    AddCalibrationPoint,
    SetCalibration,
    CancelCalibration,
    SelectEdge,
    LabelEdge,
    CancelLabeling,
    AutoClassifyEdges,
    RenameSegment,
    DeleteSegment,
    SetSegmentPitch,
    SetPitch,
    SetWasteFactor,
]


# =============================================================================
# Command Handlers
# =============================================================================


def _require_mode(session: MeasurementSession, *modes: InteractionMode) -> None:
    if session.mode not in modes:
        raise ValidationError(
            f"Cannot do that while {session.mode.value}; expected "
            + " or ".join(m.value for m in modes)
        )


def _require_editable(session: MeasurementSession) -> None:
    if session.status == MeasurementStatus.COMPLETED:
        raise ValidationError("Measurement has already been saved")


def _with_segments(session: MeasurementSession, segments: Iterable[Segment]) -> MeasurementSession:
    """Replace the segment list and re-derive edges from it."""
    segments = tuple(segments)
    edges = tuple(derive_edges(segments, session.space, session.edges))
    return replace(session, segments=segments, edges=edges)


def _require_segment(session: MeasurementSession, segment_id: str) -> Segment:
    segment = session.get_segment(segment_id)
    if segment is None:
        raise ValidationError(f"Segment not found: {segment_id}")
    return segment


def _add_point(session: MeasurementSession, command: AddPoint) -> MeasurementSession:
    _require_editable(session)
    _require_mode(session, InteractionMode.IDLE, InteractionMode.DRAWING)
    ensure_points_in_space((command.point,), session.space)
    return replace(
        session,
        capture=session.capture.add_point(command.point),
        mode=InteractionMode.DRAWING,
    )


def _undo_point(session: MeasurementSession, command: UndoPoint) -> MeasurementSession:
    if session.mode in (InteractionMode.CALIBRATING, InteractionMode.AWAITING_REFERENCE_LENGTH):
        return replace(
            session,
            calibration_points=session.calibration_points[:-1],
            mode=InteractionMode.CALIBRATING,
        )
    if session.mode != InteractionMode.DRAWING:
        return session

    capture = session.capture.undo_last_point()
    mode = InteractionMode.DRAWING if capture.points else InteractionMode.IDLE
    return replace(session, capture=capture, mode=mode)


def _finish_segment(session: MeasurementSession, command: FinishSegment) -> MeasurementSession:
    _require_editable(session)
    _require_mode(session, InteractionMode.DRAWING)
    if not session.is_calibrated:
        raise CalibrationRequiredError("Please calibrate the map scale before finishing a segment")

    capture, draft = session.capture.finish_segment()
    segment = segment_from_draft(
        draft,
        existing=session.segments,
        name=command.name,
        pitch=command.pitch,
    )
    updated = _with_segments(session, session.segments + (segment,))

    logger.info(
        f"Finished {segment.name} ({segment.vertex_count} points, "
        f"{segment.area_sqft(session.space):.1f} sqft)"
    )
    return replace(updated, capture=capture.reset(), mode=InteractionMode.IDLE)


def _cancel_drawing(session: MeasurementSession, command: CancelDrawing) -> MeasurementSession:
    return replace(
        session,
        capture=session.capture.cancel(),
        mode=InteractionMode.IDLE if session.mode == InteractionMode.DRAWING else session.mode,
    )


def _resume_mode(session: MeasurementSession) -> InteractionMode:
    """Mode to return to after calibrating: back to an unfinished facet, else idle."""
    if session.capture.state == CaptureState.DRAWING and session.capture.points:
        return InteractionMode.DRAWING
    return InteractionMode.IDLE


def _start_calibration(session: MeasurementSession, command: StartCalibration) -> MeasurementSession:
    _require_mode(session, InteractionMode.IDLE, InteractionMode.DRAWING)
    if session.coordinate_kind != CoordinateKind.PLANAR:
        raise ValidationError("Calibration is only used for planar (image) measurements")
    return replace(session, calibration_points=(), mode=InteractionMode.CALIBRATING)


def _add_calibration_point(
    session: MeasurementSession, command: AddCalibrationPoint
) -> MeasurementSession:
    _require_mode(session, InteractionMode.CALIBRATING)
    ensure_points_in_space((command.point,), Planar())

    points = session.calibration_points + (command.point,)
    mode = InteractionMode.AWAITING_REFERENCE_LENGTH if len(points) == 2 else InteractionMode.CALIBRATING
    return replace(session, calibration_points=points, mode=mode)


def _set_calibration(session: MeasurementSession, command: SetCalibration) -> MeasurementSession:
    _require_editable(session)
    _require_mode(session, InteractionMode.AWAITING_REFERENCE_LENGTH)

    p1, p2 = session.calibration_points
    calibration = compute_scale_from_points(p1, p2, command.reference_length_ft)

    calibrated = replace(
        session,
        calibration=calibration,
        calibration_points=(),
        mode=_resume_mode(session),
    )
    # Edge lengths depend on the scale
    return _with_segments(calibrated, calibrated.segments)


def _cancel_calibration(session: MeasurementSession, command: CancelCalibration) -> MeasurementSession:
    if session.mode not in (InteractionMode.CALIBRATING, InteractionMode.AWAITING_REFERENCE_LENGTH):
        return session
    return replace(session, calibration_points=(), mode=_resume_mode(session))


def _select_edge(session: MeasurementSession, command: SelectEdge) -> MeasurementSession:
    _require_mode(session, InteractionMode.IDLE, InteractionMode.LABELING)
    if get_edge(session.edges, command.edge_id) is None:
        raise ValidationError(f"Edge not found: {command.edge_id}")
    return replace(session, selected_edge_id=command.edge_id, mode=InteractionMode.LABELING)


def _label_edge(session: MeasurementSession, command: LabelEdge) -> MeasurementSession:
    _require_editable(session)
    edge_id = command.edge_id or session.selected_edge_id
    if edge_id is None:
        raise ValidationError("Select an edge before assigning a type")

    edges = assign_feature_type(session.edges, edge_id, command.feature_type)
    return replace(
        session,
        edges=tuple(edges),
        selected_edge_id=None,
        mode=InteractionMode.IDLE if session.mode == InteractionMode.LABELING else session.mode,
    )


def _cancel_labeling(session: MeasurementSession, command: CancelLabeling) -> MeasurementSession:
    if session.mode != InteractionMode.LABELING:
        return session
    return replace(session, selected_edge_id=None, mode=InteractionMode.IDLE)


def _auto_classify(session: MeasurementSession, command: AutoClassifyEdges) -> MeasurementSession:
    _require_editable(session)
    return replace(session, edges=tuple(auto_classify_edges(session.edges)))


def _rename_segment(session: MeasurementSession, command: RenameSegment) -> MeasurementSession:
    _require_editable(session)
    _require_segment(session, command.segment_id)
    segments = tuple(
        s.renamed(command.name) if s.segment_id == command.segment_id else s
        for s in session.segments
    )
    return replace(session, segments=segments)


def _delete_segment(session: MeasurementSession, command: DeleteSegment) -> MeasurementSession:
    _require_editable(session)
    _require_segment(session, command.segment_id)
    remaining = [s for s in session.segments if s.segment_id != command.segment_id]
    updated = _with_segments(session, remaining)
    if updated.selected_edge_id and get_edge(updated.edges, updated.selected_edge_id) is None:
        updated = replace(updated, selected_edge_id=None, mode=InteractionMode.IDLE)
    return updated


def _set_segment_pitch(session: MeasurementSession, command: SetSegmentPitch) -> MeasurementSession:
    _require_editable(session)
    _require_segment(session, command.segment_id)
    if command.pitch is not None:
        validate_pitch(command.pitch)
    segments = tuple(
        replace(s, pitch=command.pitch) if s.segment_id == command.segment_id else s
        for s in session.segments
    )
    return replace(session, segments=segments)


def _set_pitch(session: MeasurementSession, command: SetPitch) -> MeasurementSession:
    _require_editable(session)
    validate_pitch(command.pitch)
    return replace(session, pitch=command.pitch)


def _set_waste_factor(session: MeasurementSession, command: SetWasteFactor) -> MeasurementSession:
    _require_editable(session)
    validate_waste_factor(command.waste_factor)
    if command.waste_factor % WASTE_STEP != 0:
        raise ValidationError(f"Waste factor must be a multiple of {WASTE_STEP}")
    return replace(session, waste_factor=command.waste_factor)


_HANDLERS: Dict[type, Callable[[MeasurementSession, Any], MeasurementSession]] = {
    AddPoint: _add_point,
    UndoPoint: _undo_point,
    FinishSegment: _finish_segment,
    CancelDrawing: _cancel_drawing,
    StartCalibration: _start_calibration,
    AddCalibrationPoint: _add_calibration_point,
    SetCalibration: _set_calibration,
    CancelCalibration: _cancel_calibration,
    SelectEdge: _select_edge,
    LabelEdge: _label_edge,
    CancelLabeling: _cancel_labeling,
    AutoClassifyEdges: _auto_classify,
    RenameSegment: _rename_segment,
    DeleteSegment: _delete_segment,
    SetSegmentPitch: _set_segment_pitch,
    SetPitch: _set_pitch,
    SetWasteFactor: _set_waste_factor,
}


def apply_command(session: MeasurementSession, command: Command) -> MeasurementSession:
    """
    Apply one user command to a session.

    Returns:
        The new session

    Raises:
        ValidationError, CalibrationRequiredError, InvalidReferenceLengthError:
            Recoverable input problems; the given session is unchanged.
        TypeError: For objects that are not commands.
    """
    handler = _HANDLERS.get(type(command))
    if handler is None:
        raise TypeError(f"Unknown command: {type(command).__name__}")
    return handler(session, command)


def apply_commands(session: MeasurementSession, commands: Iterable[Command]) -> MeasurementSession:
    """Apply commands in order."""
    for command in commands:
        session = apply_command(session, command)
    return session


# =============================================================================
# Measurement Output
# =============================================================================


@dataclass
class Measurement:
    """
    Measurement record handed to external persistence and rendering.

    Fields mirror the roof_measurements record of the surrounding app:
    address/context, segments with areas, per-type edge totals, perimeter,
    pitch and waste inputs, total and billable area, status.
    """

    measurement_id: str
    address: str
    coordinate_kind: CoordinateKind
    segments: List[Dict[str, Any]]
    edges: List[Edge]
    edge_totals: EdgeTotals
    perimeter_ft: float
    metrics: RoofMetrics
    status: MeasurementStatus = MeasurementStatus.DRAFT
    context: Dict[str, Any] = field(default_factory=dict)
    calibration: Optional[CalibrationScale] = None
    created_at: str = ""

    @property
    def total_area(self) -> float:
        return self.metrics.total_area

    @property
    def billable_area(self) -> float:
        return self.metrics.billable_area

    @property
    def squares(self) -> int:
        return self.metrics.squares

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "measurement_id": self.measurement_id,
            "address": self.address,
            "coordinate_kind": self.coordinate_kind.value,
            "segments": self.segments,
            "edges": [edge.to_dict() for edge in self.edges],
            **self.edge_totals.to_dict(),
            "perimeter_ft": round(self.perimeter_ft, 4),
            "pitch": self.metrics.pitch,
            "waste_factor": self.metrics.waste_factor,
            "total_area": round(self.metrics.total_area, 4),
            "billable_area": round(self.metrics.billable_area, 4),
            "squares": self.metrics.squares,
            "status": self.status.value,
            "context": self.context,
            "calibration": self.calibration.to_dict() if self.calibration else None,
            "created_at": self.created_at,
        }


def compute_session_metrics(session: MeasurementSession) -> RoofMetrics:
    """Roof metrics for the session's current segments and inputs."""
    return compute_roof_metrics(
        segment_areas(session.segments, session.space),
        session.pitch,
        session.waste_factor,
        segment_pitches=[segment.pitch for segment in session.segments],
    )


def build_measurement(session: MeasurementSession) -> Measurement:
    """
    Assemble the measurement record from the session.

    Raises:
        CalibrationRequiredError: Planar session with segments but no scale.
    """
    space = session.space
    edges = list(session.edges)

    return Measurement(
        measurement_id=f"meas_{uuid.uuid4().hex[:12]}",
        address=session.address,
        coordinate_kind=session.coordinate_kind,
        segments=[segment.to_dict(space) for segment in session.segments],
        edges=edges,
        edge_totals=compute_edge_totals(edges),
        perimeter_ft=perimeter_ft(edges),
        metrics=compute_session_metrics(session),
        status=session.status,
        context=dict(session.context),
        calibration=session.calibration,
        created_at=datetime.utcnow().isoformat() + "Z",
    )


def save_measurement(
    session: MeasurementSession,
    sink: Callable[[Measurement], Any],
) -> Tuple[MeasurementSession, Measurement]:
    """
    Validate the session and hand the completed measurement to a sink.

    Args:
        session: Session to save
        sink: External persistence collaborator; receives the Measurement

    Returns:
        (completed session, saved Measurement)

    Raises:
        ValidationError: No segments, or the total area is zero.
    """
    if not session.segments:
        raise ValidationError("Draw at least one roof facet before saving")

    measurement = build_measurement(session)
    if measurement.total_area <= 0:
        raise ValidationError("Cannot save a measurement with zero area")

    measurement.status = MeasurementStatus.COMPLETED
    sink(measurement)

    logger.info(
        f"Saved measurement {measurement.measurement_id}: "
        f"{len(session.segments)} segments, {measurement.squares} squares"
    )
    return replace(session, status=MeasurementStatus.COMPLETED), measurement


def estimate_for_session(
    session: MeasurementSession,
    tier: Union[Tier, str],
    tax_rate: float = 0.0,
) -> Estimate:
    """Price the session's current measurement for a tier."""
    measurement = build_measurement(session)
    pricing_input = PricingInput.from_metrics(
        measurement.metrics,
        Tier.parse(tier),
        totals=measurement.edge_totals,
        perimeter=measurement.perimeter_ft or None,
    )
    return build_estimate(pricing_input, tax_rate=tax_rate)
