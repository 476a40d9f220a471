"""
Roofs API Router

Stateless endpoints over the measurement services: calibrate a scale,
measure traced facets, derive and label edges, aggregate metrics and price
an estimate. Clients hold the session; every request carries what it needs.
"""

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field
from typing import List, Optional, Dict, Any

from ..core.config import get_settings
from ..services.calibration import compute_scale_from_points
from ..services.edge_classifier import (
    FeatureType,
    assign_feature_type,
    auto_classify_edges,
    compute_edge_totals,
    derive_edges,
    perimeter_ft,
)
from ..services.errors import ValidationError as MeasurementValidationError
from ..services.geometry import (
    CoordinateKind,
    CoordinateSpace,
    Geodesic,
    Planar,
    PlanarPoint,
    make_point,
)
from ..services.pricing import PricingInput, Tier, build_estimate
from ..services.roof_metrics import compute_roof_metrics, generate_waste_table
from ..services.segments import Segment, default_segment_name, total_area_sqft

router = APIRouter(prefix="/roofs", tags=["Roof Measurement"])


# ============================================
# Request Models
# ============================================


class CalibrateRequest(BaseModel):
    """Two reference points on the image and the real distance between them."""

    point_a: List[float] = Field(min_length=2, max_length=2, description="[x, y] in pixels")
    point_b: List[float] = Field(min_length=2, max_length=2, description="[x, y] in pixels")
    reference_length_ft: float = Field(description="Known distance between the points in feet")


class SegmentInput(BaseModel):
    """One traced roof facet."""

    segment_id: Optional[str] = Field(
        default=None,
        description="Stable ID; edge IDs are derived from it",
    )
    name: Optional[str] = None
    points: List[List[float]] = Field(
        min_length=3,
        description="Polygon points as [[x1,y1], ...] or [[lat1,lon1], ...]",
    )
    pitch: Optional[int] = Field(default=None, ge=0, le=18)


class SegmentsRequest(BaseModel):
    """Segments in one coordinate space."""

    coordinate_kind: CoordinateKind = CoordinateKind.PLANAR
    pixels_per_foot: Optional[float] = Field(
        default=None,
        gt=0,
        description="Calibration scale; required for planar measurements",
    )
    segments: List[SegmentInput] = Field(min_length=1)


class EdgesRequest(SegmentsRequest):
    """Segments plus edge labels to apply."""

    labels: Dict[str, str] = Field(
        default_factory=dict,
        description="Edge ID -> feature type (ridge, hip, valley, eave, rake, penetration)",
    )
    auto_classify: bool = Field(
        default=False,
        description="Suggest types for edges without a label",
    )


class MetricsRequest(BaseModel):
    """Segment areas and the pitch/waste inputs."""

    segment_areas: List[float] = Field(description="Plan area of each facet in ft²")
    pitch: Optional[int] = Field(default=None, description="Rise per 12, 0-18")
    waste_factor: Optional[int] = Field(default=None, description="Waste percent, 0-25")
    segment_pitches: Optional[List[Optional[int]]] = None


class EstimateRequest(BaseModel):
    """Measured area and labeled lengths to price."""

    total_area: float = Field(ge=0, description="Measured plan area in ft²")
    pitch: Optional[int] = None
    waste_factor: Optional[int] = None
    tier: Optional[str] = Field(default=None, description="Good, Better or Best")
    ridge_length: Optional[float] = Field(default=None, ge=0)
    hip_length: Optional[float] = Field(default=None, ge=0)
    perimeter: Optional[float] = Field(default=None, ge=0)
    tax_rate: Optional[float] = Field(default=None, ge=0, le=1)


# ============================================
# Response Models
# ============================================


class CalibrationResponse(BaseModel):
    """Computed calibration scale."""

    id: Optional[str] = None
    pixels_per_foot: float
    reference_px: Optional[float] = None
    reference_ft: Optional[float] = None
    notes: List[str] = []


class SegmentMeasurement(BaseModel):
    segment_id: str
    name: str
    vertex_count: int
    area_sqft: float
    perimeter_ft: float


class SegmentsResponse(BaseModel):
    segments: List[SegmentMeasurement]
    total_area: float


class EdgeResponse(BaseModel):
    edge_id: str
    segment_id: str
    index: int
    length_ft: float
    feature_type: str
    shared: bool
    user_modified: bool
    confidence: Optional[float] = None
    detection_reason: Optional[str] = None


class EdgesResponse(BaseModel):
    edges: List[EdgeResponse]
    totals: Dict[str, Any]
    perimeter_ft: float


class MetricsResponse(BaseModel):
    total_area: float
    billable_area: float
    squares: int
    pitch: float
    waste_factor: float
    pitch_multiplier: float
    waste_multiplier: float
    waste_table: List[Dict[str, Any]]


# ============================================
# Helpers
# ============================================


def _space_for(request: SegmentsRequest) -> CoordinateSpace:
    if request.coordinate_kind == CoordinateKind.GEODESIC:
        return Geodesic()
    return Planar(request.pixels_per_foot)


def _segments_from_request(request: SegmentsRequest) -> List[Segment]:
    def build(index: int, item: SegmentInput, name: str) -> Segment:
        return Segment(
            segment_id=item.segment_id or f"seg_{index + 1}",
            name=name,
            points=tuple(make_point(p, request.coordinate_kind) for p in item.points),
            pitch=item.pitch,
        )

    # Named facets first so default names never collide with them
    built: Dict[int, Segment] = {
        index: build(index, item, item.name)
        for index, item in enumerate(request.segments)
        if item.name
    }
    for index, item in enumerate(request.segments):
        if not item.name:
            built[index] = build(index, item, default_segment_name(list(built.values())))
    segments = [built[index] for index in range(len(request.segments))]

    ids = [segment.segment_id for segment in segments]
    if len(set(ids)) != len(ids):
        raise HTTPException(status_code=400, detail="Segment IDs must be unique")
    return segments


def _edge_response(edge) -> EdgeResponse:
    return EdgeResponse(
        edge_id=edge.edge_id,
        segment_id=edge.segment_id,
        index=edge.index,
        length_ft=edge.length_ft,
        feature_type=edge.feature_type.value,
        shared=edge.shared,
        user_modified=edge.user_modified,
        confidence=edge.confidence,
        detection_reason=edge.detection_reason,
    )


# ============================================
# Endpoints
# ============================================


@router.post("/calibrate", response_model=CalibrationResponse)
async def calibrate(request: CalibrateRequest):
    """
    Compute pixels-per-foot from two marked points and a known length.

    Mark both ends of something with a known size (a garage door, a
    property line) and enter its length in feet.
    """
    scale = compute_scale_from_points(
        PlanarPoint(*request.point_a),
        PlanarPoint(*request.point_b),
        request.reference_length_ft,
    )
    return CalibrationResponse(
        id=scale.id,
        pixels_per_foot=scale.pixels_per_foot,
        reference_px=scale.reference_px,
        reference_ft=scale.reference_ft,
        notes=scale.notes,
    )


@router.post("/segments/measure", response_model=SegmentsResponse)
async def measure_segments(request: SegmentsRequest):
    """Area and perimeter of each traced facet."""
    space = _space_for(request)
    segments = _segments_from_request(request)

    return SegmentsResponse(
        segments=[
            SegmentMeasurement(
                segment_id=segment.segment_id,
                name=segment.name,
                vertex_count=segment.vertex_count,
                area_sqft=segment.area_sqft(space),
                perimeter_ft=segment.perimeter_ft(space),
            )
            for segment in segments
        ],
        total_area=total_area_sqft(segments, space),
    )


@router.post("/edges", response_model=EdgesResponse)
async def measure_edges(request: EdgesRequest):
    """
    Derive edges for the facets, apply labels, and total lengths per type.

    Labels win over suggestions when auto_classify is set.
    """
    space = _space_for(request)
    edges = derive_edges(_segments_from_request(request), space)

    for edge_id, feature_type in request.labels.items():
        edges = assign_feature_type(edges, edge_id, feature_type)

    if request.auto_classify:
        edges = auto_classify_edges(edges)

    return EdgesResponse(
        edges=[_edge_response(edge) for edge in edges],
        totals=compute_edge_totals(edges).to_dict(),
        perimeter_ft=perimeter_ft(edges),
    )


@router.post("/metrics", response_model=MetricsResponse)
async def roof_metrics(request: MetricsRequest):
    """Billable area and squares for the given areas, pitch and waste."""
    settings = get_settings()
    pitch = settings.default_pitch if request.pitch is None else request.pitch
    waste = settings.default_waste_factor if request.waste_factor is None else request.waste_factor

    if any(area < 0 for area in request.segment_areas):
        raise HTTPException(status_code=400, detail="Segment areas cannot be negative")

    metrics = compute_roof_metrics(
        request.segment_areas,
        pitch,
        waste,
        segment_pitches=request.segment_pitches,
    )
    return MetricsResponse(
        **metrics.to_dict(),
        waste_table=generate_waste_table(metrics.total_area, pitch),
    )


@router.post("/estimate")
async def estimate(request: EstimateRequest) -> Dict[str, Any]:
    """Priced proposal and material take-off for a measured roof."""
    settings = get_settings()
    pitch = settings.default_pitch if request.pitch is None else request.pitch
    waste = settings.default_waste_factor if request.waste_factor is None else request.waste_factor
    tax_rate = settings.tax_rate if request.tax_rate is None else request.tax_rate

    try:
        tier = Tier.parse(request.tier or settings.default_tier)
    except MeasurementValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))

    metrics = compute_roof_metrics([request.total_area], pitch, waste)
    pricing_input = PricingInput(
        total_area=metrics.total_area,
        billable_area=metrics.billable_area,
        squares=metrics.squares,
        pitch=metrics.pitch,
        tier=tier,
        ridge_length=request.ridge_length,
        hip_length=request.hip_length,
        perimeter=request.perimeter,
    )
    return build_estimate(pricing_input, tax_rate=tax_rate).to_dict()


@router.get("/health")
async def roofs_health():
    """Health check for the roof measurement service."""
    return {
        "status": "ok",
        "service": "roofs",
        "feature_types": [ft.value for ft in FeatureType],
        "tiers": [tier.value for tier in Tier],
        "available_endpoints": [
            "/api/v1/roofs/calibrate",
            "/api/v1/roofs/segments/measure",
            "/api/v1/roofs/edges",
            "/api/v1/roofs/metrics",
            "/api/v1/roofs/estimate",
        ],
    }
