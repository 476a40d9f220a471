"""
Pricing Engine

Turns billable squares, pitch and a quality tier into two parallel line-item
lists:

- Proposal: client-facing price lines (tear-off, install, fixed fees,
  ice & water shield, warranty).
- Material take-off: internal order quantities (bundles, rolls, hardware).

Every quantity is rounded UP. Over-ordering is preferred to under-ordering.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional
import logging
import math
import uuid

from .edge_classifier import EdgeTotals
from .errors import ValidationError
from .roof_metrics import RoofMetrics, validate_pitch

logger = logging.getLogger(__name__)


# =============================================================================
# Tiers
# =============================================================================


class Tier(str, Enum):
    """Quality tiers offered on a proposal."""

    GOOD = "Good"
    BETTER = "Better"
    BEST = "Best"

    @classmethod
    def parse(cls, value: Any) -> "Tier":
        if isinstance(value, cls):
            return value
        for tier in cls:
            if str(value).strip().lower() == tier.value.lower():
                return tier
        raise ValidationError(f"Unknown tier: {value}")


@dataclass(frozen=True)
class TierSpec:
    """Rate and product naming for one tier."""

    base_rate: float  # $ per square, installed
    system_name: str
    warranty: str
    shingle_name: str
    shingle_bundle_price: float


TIER_SPECS: Dict[Tier, TierSpec] = {
    Tier.GOOD: TierSpec(
        base_rate=380.0,
        system_name="GAF Timberline HDZ Roofing System",
        warranty="30-Year Material + 5-Year Workmanship",
        shingle_name="3-Tab Shingle (25yr)",
        shingle_bundle_price=35.00,
    ),
    Tier.BETTER: TierSpec(
        base_rate=495.0,
        system_name="GAF Timberline HD Impact Resistant Roofing System",
        warranty="Lifetime Material + 10-Year Workmanship",
        shingle_name="Architectural Shingle (Limited Lifetime)",
        shingle_bundle_price=45.00,
    ),
    Tier.BEST: TierSpec(
        base_rate=675.0,
        system_name="GAF Grand Sequoia Designer Roofing System",
        warranty="GAF Golden Pledge Ltd. Warranty (50 Years)",
        shingle_name="Class 4 Impact Resistant Shingle",
        shingle_bundle_price=65.00,
    ),
}


# Proposal constants
TEAR_OFF_RATE = 95.0
STEEP_PITCH_MIN = 7
STEEP_PITCH_MAX = 9
STEEP_SURCHARGE = 25.0
VERY_STEEP_SURCHARGE = 55.0
MOBILIZATION_FEE = 450.0
FLASHING_VENTILATION_FEE = 1200.0
FINAL_INSPECTION_FEE = 250.0
ICE_WATER_COVERAGE = 0.15  # Share of roof area under ice & water shield
ICE_WATER_PRICE_PER_SQFT = 2.50

# Take-off constants
BUNDLES_PER_SQUARE = 3
RIDGE_LF_PER_SQUARE = 1.5  # Ridge estimate when no ridge is labeled
RIDGE_CAP_LF_PER_BUNDLE = 33.0
STARTER_LF_PER_BUNDLE = 100.0
UNDERLAYMENT_SQFT_PER_ROLL = 1000.0
RIDGE_VENT_LF_PER_PIECE = 4.0
DRIP_EDGE_LF_PER_PIECE = 10.0
SQUARES_PER_NAIL_BOX = 10.0
SQUARES_PER_CAP_NAIL_BOX = 10.0
PIPE_JACK_COUNT = 4

MATERIAL_PRICES: Dict[str, float] = {
    "underlayment_roll": 65.00,
    "ridge_cap_bundle": 55.00,
    "starter_bundle": 45.00,
    "coil_nail_box": 65.00,
    "cap_nail_box": 32.00,
    "pipe_jack": 35.00,
    "ridge_vent_piece": 18.00,
    "drip_edge_piece": 12.50,
}


# =============================================================================
# Data Models
# =============================================================================


@dataclass
class EstimateItem:
    """A single priced line; total is always quantity × unit price."""

    description: str
    quantity: float
    unit: str
    unit_price: float

    @property
    def total(self) -> float:
        return self.quantity * self.unit_price

    def to_dict(self) -> Dict[str, Any]:
        return {
            "description": self.description,
            "quantity": self.quantity,
            "unit": self.unit,
            "unit_price": self.unit_price,
            "total": round(self.total, 2),
        }


@dataclass(frozen=True)
class PricingInput:
    """
    Inputs to the pricing engine.

    Fields:
        total_area: Measured plan area (ft²)
        billable_area: Pitch and waste adjusted area (ft²)
        squares: ceil(billable_area / 100)
        pitch: Global pitch (rise per 12)
        tier: Quality tier
        ridge_length: Labeled ridge total (ft), if any
        hip_length: Labeled hip total (ft), if any
        perimeter: Measured outer perimeter (ft), if any
    """

    total_area: float
    billable_area: float
    squares: int
    pitch: float
    tier: Tier
    ridge_length: Optional[float] = None
    hip_length: Optional[float] = None
    perimeter: Optional[float] = None

    @classmethod
    def from_metrics(
        cls,
        metrics: RoofMetrics,
        tier: Tier,
        totals: Optional[EdgeTotals] = None,
        perimeter: Optional[float] = None,
    ) -> "PricingInput":
        """Build pricing input from aggregated metrics and edge totals."""
        return cls(
            total_area=metrics.total_area,
            billable_area=metrics.billable_area,
            squares=metrics.squares,
            pitch=metrics.pitch,
            tier=Tier.parse(tier),
            ridge_length=totals.ridge_length if totals else None,
            hip_length=totals.hip_length if totals else None,
            perimeter=perimeter,
        )


@dataclass
class Estimate:
    """Complete priced estimate for one measurement."""

    estimate_id: str
    tier: Tier
    squares: int
    proposal_items: List[EstimateItem] = field(default_factory=list)
    material_items: List[EstimateItem] = field(default_factory=list)
    tax_rate: float = 0.0
    created_at: str = ""

    @property
    def subtotal(self) -> float:
        return sum(item.total for item in self.proposal_items)

    @property
    def tax(self) -> float:
        return self.subtotal * self.tax_rate

    @property
    def total(self) -> float:
        return self.subtotal + self.tax

    @property
    def material_cost(self) -> float:
        return sum(item.total for item in self.material_items)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "estimate_id": self.estimate_id,
            "tier": self.tier.value,
            "squares": self.squares,
            "proposal_items": [item.to_dict() for item in self.proposal_items],
            "material_items": [item.to_dict() for item in self.material_items],
            "subtotal": round(self.subtotal, 2),
            "tax_rate": self.tax_rate,
            "tax": round(self.tax, 2),
            "total": round(self.total, 2),
            "material_cost": round(self.material_cost, 2),
            "created_at": self.created_at,
        }


# =============================================================================
# Rates
# =============================================================================


def pitch_surcharge(pitch: float) -> float:
    """Per-square surcharge for steep roofs."""
    if pitch > STEEP_PITCH_MAX:
        return VERY_STEEP_SURCHARGE
    if pitch >= STEEP_PITCH_MIN:
        return STEEP_SURCHARGE
    return 0.0


def effective_rate(tier: Tier, pitch: float) -> float:
    """Installed $ per square for a tier at a pitch."""
    return TIER_SPECS[Tier.parse(tier)].base_rate + pitch_surcharge(pitch)


def ceil_quantity(value: float) -> int:
    """Round an order quantity up to a whole unit."""
    if value <= 0:
        return 0
    return int(math.ceil(value))


def ridge_linear_feet(data: PricingInput) -> float:
    """Ridge footage for cap and vent: the labeled ridge total, or 1.5 ft per square."""
    if data.ridge_length:
        return data.ridge_length
    return data.squares * RIDGE_LF_PER_SQUARE


def estimated_perimeter(total_area: float) -> float:
    """Perimeter of a square footprint with the given area."""
    return math.sqrt(max(total_area, 0.0)) * 4


def _validate(data: PricingInput) -> None:
    validate_pitch(data.pitch)
    if data.squares < 0 or data.total_area < 0 or data.billable_area < 0:
        raise ValidationError("Areas and squares must be non-negative")


# =============================================================================
# Line Items
# =============================================================================


def build_proposal_items(data: PricingInput) -> List[EstimateItem]:
    """
    Client-facing proposal lines.

    Tear-off is split out at a fixed rate; the remainder of the effective
    tier rate is the install line.
    """
    _validate(data)
    tier_spec = TIER_SPECS[data.tier]
    rate = effective_rate(data.tier, data.pitch)
    squares = data.squares

    items = [
        EstimateItem(
            description="Tear-off & Disposal of Existing Roofing",
            quantity=squares,
            unit="SQ",
            unit_price=TEAR_OFF_RATE,
        ),
        EstimateItem(
            description=f"Install {tier_spec.system_name} ({data.tier.value})",
            quantity=squares,
            unit="SQ",
            unit_price=rate - TEAR_OFF_RATE,
        ),
        EstimateItem(
            description="Mobilization & Site Protection",
            quantity=1,
            unit="EA",
            unit_price=MOBILIZATION_FEE,
        ),
        EstimateItem(
            description="Flashing & Ventilation Package",
            quantity=1,
            unit="EA",
            unit_price=FLASHING_VENTILATION_FEE,
        ),
        EstimateItem(
            description="Final Inspection",
            quantity=1,
            unit="EA",
            unit_price=FINAL_INSPECTION_FEE,
        ),
        EstimateItem(
            description="Ice & Water Shield (Valleys/Eaves)",
            quantity=ceil_quantity(data.total_area * ICE_WATER_COVERAGE),
            unit="SF",
            unit_price=ICE_WATER_PRICE_PER_SQFT,
        ),
        EstimateItem(
            description=f"Warranty: {tier_spec.warranty}",
            quantity=1,
            unit="EA",
            unit_price=0.0,
        ),
    ]
    return items


def build_material_items(data: PricingInput) -> List[EstimateItem]:
    """Internal material take-off; every quantity is a ceiling."""
    _validate(data)
    tier_spec = TIER_SPECS[data.tier]
    squares = data.squares

    ridge_lf = ridge_linear_feet(data)
    starter_lf = estimated_perimeter(data.total_area)
    if data.perimeter:
        drip_edge_lf = data.perimeter
    else:
        drip_edge_lf = starter_lf

    items = [
        EstimateItem(
            description=f"{tier_spec.shingle_name} - ({data.tier.value})",
            quantity=squares * BUNDLES_PER_SQUARE,
            unit="BDL",
            unit_price=tier_spec.shingle_bundle_price,
        ),
        EstimateItem(
            description="Hip & Ridge Cap",
            quantity=ceil_quantity(ridge_lf / RIDGE_CAP_LF_PER_BUNDLE),
            unit="BDL",
            unit_price=MATERIAL_PRICES["ridge_cap_bundle"],
        ),
        EstimateItem(
            description="Starter Strip",
            quantity=ceil_quantity(starter_lf / STARTER_LF_PER_BUNDLE),
            unit="BDL",
            unit_price=MATERIAL_PRICES["starter_bundle"],
        ),
        EstimateItem(
            description="Synthetic Underlayment",
            quantity=ceil_quantity(data.total_area / UNDERLAYMENT_SQFT_PER_ROLL),
            unit="ROLL",
            unit_price=MATERIAL_PRICES["underlayment_roll"],
        ),
        EstimateItem(
            description="Coil Roofing Nails",
            quantity=ceil_quantity(squares / SQUARES_PER_NAIL_BOX),
            unit="BOX",
            unit_price=MATERIAL_PRICES["coil_nail_box"],
        ),
        EstimateItem(
            description="Plastic Cap Nails",
            quantity=ceil_quantity(squares / SQUARES_PER_CAP_NAIL_BOX),
            unit="BOX",
            unit_price=MATERIAL_PRICES["cap_nail_box"],
        ),
        EstimateItem(
            description="Pipe Jack Flashings",
            quantity=PIPE_JACK_COUNT,
            unit="EA",
            unit_price=MATERIAL_PRICES["pipe_jack"],
        ),
        EstimateItem(
            description="Ridge Vent",
            quantity=ceil_quantity(ridge_lf / RIDGE_VENT_LF_PER_PIECE),
            unit="EA",
            unit_price=MATERIAL_PRICES["ridge_vent_piece"],
        ),
        EstimateItem(
            description="Drip Edge (Alum)",
            quantity=ceil_quantity(drip_edge_lf / DRIP_EDGE_LF_PER_PIECE),
            unit="EA",
            unit_price=MATERIAL_PRICES["drip_edge_piece"],
        ),
    ]
    return items


def build_estimate(data: PricingInput, tax_rate: float = 0.0) -> Estimate:
    """
    Build the proposal and material take-off for one measurement.

    Args:
        data: PricingInput from the metrics aggregator
        tax_rate: Sales tax applied to the proposal subtotal

    Returns:
        Estimate with both item lists and totals
    """
    if not 0 <= tax_rate <= 1:
        raise ValidationError(f"tax_rate must be between 0 and 1, got {tax_rate}")

    estimate = Estimate(
        estimate_id=f"est_{uuid.uuid4().hex[:12]}",
        tier=data.tier,
        squares=data.squares,
        proposal_items=build_proposal_items(data),
        material_items=build_material_items(data),
        tax_rate=tax_rate,
        created_at=datetime.utcnow().isoformat() + "Z",
    )

    logger.info(
        f"Estimate {estimate.estimate_id}: {data.squares} squares, "
        f"{data.tier.value} tier, subtotal ${estimate.subtotal:,.2f}"
    )
    return estimate
