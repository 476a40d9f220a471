"""
Calibration Service

User-assisted scale calibration for planar (pixel) measurements.

The user marks two points on the imagery along a feature of known length
(a garage door, a driveway edge) and enters that length in feet. The scale
is the pixel distance between the points divided by the reference length.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
import logging
import math
import uuid

from .errors import InvalidReferenceLengthError, ValidationError
from .geometry import PlanarPoint, planar_distance_pixels, point_from_dict

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CalibrationScale:
    """
    A pixels-per-foot scale derived from a reference segment.

    Fields:
        pixels_per_foot: Conversion factor used by all planar math
        reference_px: Measured pixel length of the reference segment
        reference_ft: User-entered real length of the reference segment
        reference_points: The two points the user marked
        id: Identifier for traceability
        notes: Human-readable calibration notes
    """

    pixels_per_foot: float
    reference_px: Optional[float] = None
    reference_ft: Optional[float] = None
    reference_points: tuple = ()
    id: Optional[str] = None
    notes: List[str] = field(default_factory=list, compare=False)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "pixels_per_foot": self.pixels_per_foot,
            "reference_px": self.reference_px,
            "reference_ft": self.reference_ft,
            "reference_points": [p.to_dict() for p in self.reference_points],
            "notes": list(self.notes),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CalibrationScale":
        """Create CalibrationScale from dictionary."""
        return cls(
            pixels_per_foot=float(data["pixels_per_foot"]),
            reference_px=data.get("reference_px"),
            reference_ft=data.get("reference_ft"),
            reference_points=tuple(
                point_from_dict(p) for p in data.get("reference_points", [])
            ),
            id=data.get("id"),
            notes=data.get("notes", []),
        )

    def px_to_feet(self, px: float) -> float:
        """Convert a pixel length to feet."""
        return px / self.pixels_per_foot

    def feet_to_px(self, feet: float) -> float:
        """Convert feet to a pixel length."""
        return feet * self.pixels_per_foot


def compute_scale(pixel_distance: float, reference_length_ft: float) -> float:
    """
    Pixels per foot from a pixel distance and its real length.

    Raises:
        InvalidReferenceLengthError: If reference_length_ft is not a positive finite number.
        ValidationError: If pixel_distance <= 0.
    """
    if not math.isfinite(reference_length_ft) or reference_length_ft <= 0:
        raise InvalidReferenceLengthError(
            f"Reference length must be positive, got {reference_length_ft}"
        )
    if pixel_distance <= 0:
        raise ValidationError("Calibration points must be distinct")

    return pixel_distance / reference_length_ft


def compute_scale_from_points(
    p1: PlanarPoint,
    p2: PlanarPoint,
    reference_length_ft: float,
) -> CalibrationScale:
    """
    Calibrate from two user-marked points and a known length.

    Args:
        p1: First reference point (pixels)
        p2: Second reference point (pixels)
        reference_length_ft: Real-world distance between them in feet

    Returns:
        CalibrationScale with traceability notes

    Raises:
        InvalidReferenceLengthError: If reference_length_ft <= 0
        ValidationError: If the points coincide or are not planar
    """
    if not isinstance(p1, PlanarPoint) or not isinstance(p2, PlanarPoint):
        raise ValidationError("Calibration requires planar (pixel) points")

    pixel_distance = planar_distance_pixels(p1, p2)
    pixels_per_foot = compute_scale(pixel_distance, reference_length_ft)

    logger.info(
        f"Calibrated {pixel_distance:.2f}px = {reference_length_ft:.2f}ft "
        f"({pixels_per_foot:.4f} px/ft)"
    )

    return CalibrationScale(
        pixels_per_foot=pixels_per_foot,
        reference_px=pixel_distance,
        reference_ft=reference_length_ft,
        reference_points=(p1, p2),
        id=f"cal_{uuid.uuid4().hex[:12]}",
        notes=[
            f"User calibration: {pixel_distance:.2f}px = {reference_length_ft:.2f}ft",
            f"Computed: {pixels_per_foot:.4f} pixels/foot",
        ],
    )


def validate_scale(
    scale: CalibrationScale,
    test_length_px: float,
    expected_length_ft: float,
    tolerance: float = 0.05,
) -> bool:
    """
    Check a calibration against a second known dimension.

    Args:
        scale: CalibrationScale to validate
        test_length_px: Pixel length of the check reference
        expected_length_ft: Known length of the check reference in feet
        tolerance: Acceptable relative error (default 5%)

    Returns:
        True if the scale reproduces the check length within tolerance
    """
    if expected_length_ft <= 0:
        return False

    computed_ft = scale.px_to_feet(test_length_px)
    relative_error = abs(computed_ft - expected_length_ft) / expected_length_ft
    return relative_error <= tolerance
