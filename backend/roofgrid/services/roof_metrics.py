"""
Roof Metrics Service

Folds segment areas together with pitch and waste inputs into a billable
area and a squares count. All functions are pure and cheap enough to call on
every pitch or waste change.

    pitch_multiplier = sqrt(1 + (pitch / 12)²)
    waste_multiplier = 1 + waste / 100
    billable_area    = Σ(area) × pitch_multiplier × waste_multiplier
    squares          = ceil(billable_area / 100)
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence
import math

from .errors import ValidationError

SQFT_PER_SQUARE = 100.0
MIN_PITCH = 0
MAX_PITCH = 18
MIN_WASTE = 0
MAX_WASTE = 25
WASTE_STEP = 5


@dataclass(frozen=True)
class RoofMetrics:
    """
    Aggregated roof area figures.

    Fields:
        total_area: Σ segment plan areas (ft²)
        billable_area: Area after pitch and waste adjustment (ft²)
        squares: ceil(billable_area / 100)
        pitch: Global pitch (rise per 12)
        waste_factor: Waste percentage
        pitch_multiplier: Multiplier for the global pitch
        waste_multiplier: 1 + waste/100
    """

    total_area: float
    billable_area: float
    squares: int
    pitch: float
    waste_factor: float
    pitch_multiplier: float
    waste_multiplier: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_area": round(self.total_area, 4),
            "billable_area": round(self.billable_area, 4),
            "squares": self.squares,
            "pitch": self.pitch,
            "waste_factor": self.waste_factor,
            "pitch_multiplier": round(self.pitch_multiplier, 6),
            "waste_multiplier": round(self.waste_multiplier, 6),
        }


def validate_pitch(pitch: float) -> None:
    if not MIN_PITCH <= pitch <= MAX_PITCH:
        raise ValidationError(f"Pitch must be between {MIN_PITCH} and {MAX_PITCH}, got {pitch}")


def validate_waste_factor(waste_factor: float) -> None:
    if not MIN_WASTE <= waste_factor <= MAX_WASTE:
        raise ValidationError(
            f"Waste factor must be between {MIN_WASTE} and {MAX_WASTE}, got {waste_factor}"
        )


def pitch_multiplier(pitch: float) -> float:
    """Slope factor converting plan area to surface area for rise/12."""
    return math.sqrt(1 + (pitch / 12) ** 2)


def waste_multiplier(waste_factor: float) -> float:
    """Over-purchase factor for a waste percentage."""
    return 1 + waste_factor / 100


def squares_for_area(billable_area: float) -> int:
    """Roofing squares for an area, always rounded up."""
    if billable_area <= 0:
        return 0
    return int(math.ceil(billable_area / SQFT_PER_SQUARE))


def compute_roof_metrics(
    segment_areas: Sequence[float],
    pitch: float,
    waste_factor: float,
    segment_pitches: Optional[Sequence[Optional[float]]] = None,
) -> RoofMetrics:
    """
    Aggregate segment areas into billable area and squares.

    Args:
        segment_areas: Plan area of each segment (ft²)
        pitch: Global pitch, rise per 12 (0-18)
        waste_factor: Waste percentage (0-25)
        segment_pitches: Optional per-segment pitch overrides aligned with
            segment_areas; None entries use the global pitch

    Returns:
        RoofMetrics

    Raises:
        ValidationError: If pitch or waste is out of range
    """
    validate_pitch(pitch)
    validate_waste_factor(waste_factor)

    if segment_pitches is not None and len(segment_pitches) != len(segment_areas):
        raise ValidationError("segment_pitches must align with segment_areas")

    global_multiplier = pitch_multiplier(pitch)
    w_multiplier = waste_multiplier(waste_factor)
    total_area = float(sum(segment_areas))

    if segment_pitches is None or all(p is None for p in segment_pitches):
        sloped_area = total_area * global_multiplier
    else:
        sloped_area = 0.0
        for area, override in zip(segment_areas, segment_pitches):
            if override is None:
                sloped_area += area * global_multiplier
            else:
                validate_pitch(override)
                sloped_area += area * pitch_multiplier(override)

    billable_area = sloped_area * w_multiplier

    return RoofMetrics(
        total_area=total_area,
        billable_area=billable_area,
        squares=squares_for_area(billable_area),
        pitch=pitch,
        waste_factor=waste_factor,
        pitch_multiplier=global_multiplier,
        waste_multiplier=w_multiplier,
    )


def generate_waste_table(total_area: float, pitch: float) -> List[Dict[str, Any]]:
    """
    Billable area and squares for each selectable waste factor.

    Returns:
        Rows for waste 0, 5, ... 25 percent
    """
    rows = []
    for waste in range(MIN_WASTE, MAX_WASTE + 1, WASTE_STEP):
        metrics = compute_roof_metrics([total_area], pitch, waste)
        rows.append({
            "waste_factor": waste,
            "billable_area": round(metrics.billable_area, 2),
            "squares": metrics.squares,
        })
    return rows
