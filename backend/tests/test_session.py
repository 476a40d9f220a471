"""
Tests for the measurement session and its commands.

Test philosophy:
- Walk through calibrate -> draw -> label -> save the way a user would
- A failing command leaves the session it was given untouched
- Cancellation at any point returns to a usable state
"""

import sys
from pathlib import Path

import pytest

# Add backend to path
backend_dir = Path(__file__).parent.parent
sys.path.insert(0, str(backend_dir))

from roofgrid.services.edge_classifier import FeatureType, get_edge
from roofgrid.services.errors import (
    CalibrationRequiredError,
    InvalidReferenceLengthError,
    ValidationError,
)
from roofgrid.services.geometry import CoordinateKind, GeoPoint, PlanarPoint
from roofgrid.services.polygon_capture import CaptureState
from roofgrid.services.pricing import Tier
from roofgrid.services.session import (
    AddCalibrationPoint,
    AddPoint,
    AutoClassifyEdges,
    CancelCalibration,
    CancelDrawing,
    CancelLabeling,
    DeleteSegment,
    FinishSegment,
    InteractionMode,
    LabelEdge,
    MeasurementStatus,
    RenameSegment,
    SelectEdge,
    SetCalibration,
    SetPitch,
    SetSegmentPitch,
    SetWasteFactor,
    StartCalibration,
    UndoPoint,
    apply_command,
    apply_commands,
    build_measurement,
    estimate_for_session,
    new_session,
    save_measurement,
)


def _calibrate(session, length_ft=10.0):
    """300px reference line."""
    return apply_commands(session, [
        StartCalibration(),
        AddCalibrationPoint(PlanarPoint(0, 0)),
        AddCalibrationPoint(PlanarPoint(300, 0)),
        SetCalibration(length_ft),
    ])


def _draw(session, *pairs, name=None):
    commands = [AddPoint(PlanarPoint(x, y)) for x, y in pairs]
    commands.append(FinishSegment(name=name))
    return apply_commands(session, commands)


SQUARE_30 = ((0, 0), (30, 0), (30, 30), (0, 30))  # 900 px²
SQUARE_300 = ((0, 0), (300, 0), (300, 300), (0, 300))  # 10ft x 10ft at 30 px/ft
NEXT_300 = ((300, 0), (600, 0), (600, 300), (300, 300))


@pytest.fixture
def calibrated():
    return _calibrate(new_session(CoordinateKind.PLANAR, address="12 Elm St"))


class TestNewSession:
    """Tests for session creation."""

    def test_defaults(self):
        session = new_session()

        assert session.mode == InteractionMode.IDLE
        assert session.status == MeasurementStatus.DRAFT
        assert session.pitch == 6
        assert session.waste_factor == 10
        assert session.is_calibrated is False
        assert session.session_id.startswith("ses_")

    def test_geodesic_needs_no_calibration(self):
        assert new_session(CoordinateKind.GEODESIC).is_calibrated is True

    def test_invalid_defaults_rejected(self):
        with pytest.raises(ValidationError):
            new_session(pitch=20)


class TestCalibrationFlow:
    """Tests for Calibrating -> AwaitingReferenceLength -> Idle."""

    def test_mode_progression(self):
        session = apply_command(new_session(), StartCalibration())
        assert session.mode == InteractionMode.CALIBRATING

        session = apply_command(session, AddCalibrationPoint(PlanarPoint(0, 0)))
        assert session.mode == InteractionMode.CALIBRATING

        session = apply_command(session, AddCalibrationPoint(PlanarPoint(300, 0)))
        assert session.mode == InteractionMode.AWAITING_REFERENCE_LENGTH

        session = apply_command(session, SetCalibration(10.0))
        assert session.mode == InteractionMode.IDLE
        assert session.calibration.pixels_per_foot == pytest.approx(30.0)
        assert session.calibration_points == ()

    def test_invalid_length_keeps_waiting(self):
        session = apply_commands(new_session(), [
            StartCalibration(),
            AddCalibrationPoint(PlanarPoint(0, 0)),
            AddCalibrationPoint(PlanarPoint(300, 0)),
        ])

        with pytest.raises(InvalidReferenceLengthError):
            apply_command(session, SetCalibration(0.0))

        assert session.mode == InteractionMode.AWAITING_REFERENCE_LENGTH
        assert session.calibration is None

    def test_cancel_leaves_scale_unset(self):
        session = apply_commands(new_session(), [
            StartCalibration(),
            AddCalibrationPoint(PlanarPoint(0, 0)),
            CancelCalibration(),
        ])

        assert session.mode == InteractionMode.IDLE
        assert session.calibration is None
        assert session.calibration_points == ()

    def test_undo_calibration_point(self):
        session = apply_commands(new_session(), [
            StartCalibration(),
            AddCalibrationPoint(PlanarPoint(0, 0)),
            AddCalibrationPoint(PlanarPoint(300, 0)),
            UndoPoint(),
        ])

        assert session.mode == InteractionMode.CALIBRATING
        assert session.calibration_points == (PlanarPoint(0, 0),)

    def test_geodesic_session_cannot_calibrate(self):
        with pytest.raises(ValidationError):
            apply_command(new_session(CoordinateKind.GEODESIC), StartCalibration())

    def test_set_calibration_requires_two_points(self):
        session = apply_command(new_session(), StartCalibration())
        with pytest.raises(ValidationError):
            apply_command(session, SetCalibration(10.0))

    def test_recalibration_rescales_edges_and_keeps_labels(self, calibrated):
        session = _draw(calibrated, *SQUARE_300)
        edge_id = session.edges[0].edge_id
        session = apply_command(session, LabelEdge(FeatureType.EAVE, edge_id=edge_id))

        session = _calibrate(session, length_ft=20.0)
        edge = get_edge(session.edges, edge_id)

        assert edge.length_ft == pytest.approx(20.0)
        assert edge.feature_type == FeatureType.EAVE


class TestDrawingFlow:
    """Tests for Idle -> Drawing -> Idle."""

    def test_first_point_enters_drawing(self, calibrated):
        session = apply_command(calibrated, AddPoint(PlanarPoint(1, 1)))
        assert session.mode == InteractionMode.DRAWING

    def test_900_px_square_is_one_sqft(self, calibrated):
        session = _draw(calibrated, *SQUARE_30)
        measurement = build_measurement(session)

        assert measurement.total_area == pytest.approx(1.0)

    def test_finish_adds_segment_and_edges(self, calibrated):
        session = _draw(calibrated, *SQUARE_300)

        assert session.mode == InteractionMode.IDLE
        assert session.capture.state == CaptureState.IDLE
        assert len(session.segments) == 1
        assert session.segments[0].name == "Facet 1"
        assert len(session.edges) == 4

    def test_finish_with_two_points_raises(self, calibrated):
        session = apply_commands(calibrated, [
            AddPoint(PlanarPoint(0, 0)),
            AddPoint(PlanarPoint(10, 0)),
        ])
        with pytest.raises(ValidationError, match="at least 3 points"):
            apply_command(session, FinishSegment())

    def test_finish_before_calibration_raises_and_keeps_points(self):
        session = apply_commands(new_session(), [AddPoint(PlanarPoint(x, y)) for x, y in SQUARE_300])

        with pytest.raises(CalibrationRequiredError):
            apply_command(session, FinishSegment())

        assert session.capture.point_count == 4
        assert session.mode == InteractionMode.DRAWING

    def test_calibrate_mid_drawing_then_finish(self):
        session = apply_commands(new_session(), [AddPoint(PlanarPoint(x, y)) for x, y in SQUARE_300])
        session = _calibrate(session)

        assert session.mode == InteractionMode.DRAWING

        session = apply_command(session, FinishSegment())
        assert build_measurement(session).total_area == pytest.approx(100.0)

    def test_cancel_discards_vertices_only(self, calibrated):
        session = _draw(calibrated, *SQUARE_300)
        session = apply_commands(session, [
            AddPoint(PlanarPoint(500, 500)),
            AddPoint(PlanarPoint(600, 500)),
            CancelDrawing(),
        ])

        assert session.mode == InteractionMode.IDLE
        assert session.capture.points == ()
        assert len(session.segments) == 1

    def test_undo_last_point_returns_idle(self, calibrated):
        session = apply_commands(calibrated, [AddPoint(PlanarPoint(0, 0)), UndoPoint()])

        assert session.mode == InteractionMode.IDLE
        assert session.capture.points == ()

    def test_cannot_draw_while_calibrating(self, calibrated):
        session = apply_command(calibrated, StartCalibration())
        with pytest.raises(ValidationError):
            apply_command(session, AddPoint(PlanarPoint(0, 0)))

    def test_geo_point_rejected_in_planar_session(self, calibrated):
        with pytest.raises(ValidationError):
            apply_command(calibrated, AddPoint(GeoPoint(40.0, -105.0)))

    def test_geodesic_session_draws_without_calibration(self):
        session = apply_commands(new_session(CoordinateKind.GEODESIC), [
            AddPoint(GeoPoint(0.0, 0.0)),
            AddPoint(GeoPoint(0.0, 0.001)),
            AddPoint(GeoPoint(0.001, 0.001)),
            AddPoint(GeoPoint(0.001, 0.0)),
            FinishSegment(name="Main"),
        ])

        assert session.segments[0].name == "Main"
        assert build_measurement(session).total_area > 0


class TestLabelingFlow:
    """Tests for Idle -> Labeling -> Idle."""

    def test_select_then_label(self, calibrated):
        session = _draw(calibrated, *SQUARE_300)
        edge_id = session.edges[0].edge_id

        session = apply_command(session, SelectEdge(edge_id))
        assert session.mode == InteractionMode.LABELING
        assert session.selected_edge_id == edge_id

        session = apply_command(session, LabelEdge("ridge"))
        assert session.mode == InteractionMode.IDLE
        assert session.selected_edge_id is None
        assert get_edge(session.edges, edge_id).feature_type == FeatureType.RIDGE

    def test_cancel_labeling(self, calibrated):
        session = _draw(calibrated, *SQUARE_300)
        session = apply_commands(session, [SelectEdge(session.edges[1].edge_id), CancelLabeling()])

        assert session.mode == InteractionMode.IDLE
        assert all(e.feature_type == FeatureType.UNLABELED for e in session.edges)

    def test_select_unknown_edge(self, calibrated):
        with pytest.raises(ValidationError, match="Edge not found"):
            apply_command(calibrated, SelectEdge("seg_missing:0"))

    def test_label_without_selection(self, calibrated):
        with pytest.raises(ValidationError, match="Select an edge"):
            apply_command(calibrated, LabelEdge("ridge"))

    def test_label_survives_new_segment(self, calibrated):
        session = _draw(calibrated, *SQUARE_300)
        edge_id = session.edges[2].edge_id
        session = apply_command(session, LabelEdge(FeatureType.VALLEY, edge_id=edge_id))

        session = _draw(session, (1000, 1000), (1300, 1000), (1300, 1300))

        assert get_edge(session.edges, edge_id).feature_type == FeatureType.VALLEY
        assert len(session.edges) == 7

    def test_auto_classify_keeps_user_labels(self, calibrated):
        session = _draw(_draw(calibrated, *SQUARE_300), *NEXT_300)
        edge_id = session.edges[0].edge_id
        session = apply_command(session, LabelEdge(FeatureType.RIDGE, edge_id=edge_id))

        session = apply_command(session, AutoClassifyEdges())

        assert get_edge(session.edges, edge_id).feature_type == FeatureType.RIDGE
        assert all(e.feature_type != FeatureType.UNLABELED for e in session.edges)


class TestSegmentEdits:
    """Tests for rename, delete and per-segment pitch."""

    def test_rename(self, calibrated):
        session = _draw(calibrated, *SQUARE_300)
        segment_id = session.segments[0].segment_id

        session = apply_command(session, RenameSegment(segment_id, "Front Slope"))
        assert session.segments[0].name == "Front Slope"

    def test_delete_removes_segment_and_its_edges(self, calibrated):
        session = _draw(_draw(calibrated, *SQUARE_300), *NEXT_300)
        first_id = session.segments[0].segment_id

        session = apply_command(session, DeleteSegment(first_id))

        assert len(session.segments) == 1
        assert len(session.edges) == 4
        assert all(e.segment_id != first_id for e in session.edges)
        assert not any(e.shared for e in session.edges)

    def test_delete_unknown_segment(self, calibrated):
        with pytest.raises(ValidationError, match="Segment not found"):
            apply_command(calibrated, DeleteSegment("seg_nope"))

    def test_segment_pitch_override(self, calibrated):
        session = _draw(calibrated, *SQUARE_300)
        segment_id = session.segments[0].segment_id

        session = apply_commands(session, [
            SetPitch(0),
            SetWasteFactor(0),
            SetSegmentPitch(segment_id, 12),
        ])

        assert build_measurement(session).billable_area == pytest.approx(100.0 * 2 ** 0.5)


class TestGlobalInputs:
    """Tests for pitch and waste commands."""

    def test_set_pitch(self, calibrated):
        assert apply_command(calibrated, SetPitch(12)).pitch == 12

    def test_pitch_out_of_range(self, calibrated):
        with pytest.raises(ValidationError):
            apply_command(calibrated, SetPitch(19))

    def test_waste_must_be_step_of_5(self, calibrated):
        with pytest.raises(ValidationError, match="multiple of 5"):
            apply_command(calibrated, SetWasteFactor(7))

    def test_set_waste(self, calibrated):
        assert apply_command(calibrated, SetWasteFactor(15)).waste_factor == 15

    def test_unknown_command(self, calibrated):
        with pytest.raises(TypeError):
            apply_command(calibrated, "AddPoint")


class TestMeasurement:
    """Tests for build_measurement and save_measurement."""

    def test_total_is_sum_of_segments(self, calibrated):
        session = _draw(_draw(calibrated, *SQUARE_300), *NEXT_300)
        measurement = build_measurement(session)

        assert measurement.total_area == pytest.approx(
            sum(segment["area_sqft"] for segment in measurement.segments)
        )
        assert measurement.total_area == pytest.approx(200.0)
        assert measurement.perimeter_ft == pytest.approx(60.0)

    def test_to_dict_fields(self, calibrated):
        session = _draw(calibrated, *SQUARE_300)
        data = build_measurement(session).to_dict()

        assert data["address"] == "12 Elm St"
        assert data["status"] == "Draft"
        assert data["pitch"] == 6
        assert data["waste_factor"] == 10
        assert data["squares"] == 2
        assert "ridge_length" in data
        assert data["calibration"]["pixels_per_foot"] == pytest.approx(30.0)

    def test_save_empty_raises(self, calibrated):
        saved = []
        with pytest.raises(ValidationError, match="at least one"):
            save_measurement(calibrated, saved.append)
        assert saved == []

    def test_save_zero_area_raises(self, calibrated):
        session = _draw(calibrated, (0, 0), (100, 0), (200, 0))

        with pytest.raises(ValidationError, match="zero area"):
            save_measurement(session, lambda measurement: None)

    def test_save_completes_and_calls_sink(self, calibrated):
        session = _draw(calibrated, *SQUARE_300)
        saved = []

        completed, measurement = save_measurement(session, saved.append)

        assert saved == [measurement]
        assert measurement.status == MeasurementStatus.COMPLETED
        assert completed.status == MeasurementStatus.COMPLETED
        assert session.status == MeasurementStatus.DRAFT

    def test_sink_failure_leaves_session_draft(self, calibrated):
        session = _draw(calibrated, *SQUARE_300)

        def failing_sink(measurement):
            raise ConnectionError("database unavailable")

        with pytest.raises(ConnectionError):
            save_measurement(session, failing_sink)
        assert session.status == MeasurementStatus.DRAFT

    def test_saved_session_is_read_only(self, calibrated):
        completed, _ = save_measurement(_draw(calibrated, *SQUARE_300), lambda m: None)

        with pytest.raises(ValidationError, match="already been saved"):
            apply_command(completed, DeleteSegment(completed.segments[0].segment_id))

    def test_estimate_for_session(self, calibrated):
        session = _draw(calibrated, *SQUARE_300)
        estimate = estimate_for_session(session, "Good", tax_rate=0.0)

        assert estimate.tier == Tier.GOOD
        assert estimate.squares == 2
        assert estimate.proposal_items[0].quantity == 2
