"""
Tests for the pricing engine.

Test philosophy:
- Effective rates follow tier base rate plus pitch surcharge
- Tear-off and install lines always add up to the effective rate
- Every take-off quantity is rounded up
"""

import sys
from pathlib import Path

import pytest

# Add backend to path
backend_dir = Path(__file__).parent.parent
sys.path.insert(0, str(backend_dir))

from roofgrid.services.edge_classifier import EdgeTotals
from roofgrid.services.errors import ValidationError
from roofgrid.services.pricing import (
    TIER_SPECS,
    PricingInput,
    Tier,
    build_estimate,
    build_material_items,
    build_proposal_items,
    effective_rate,
    pitch_surcharge,
)
from roofgrid.services.roof_metrics import compute_roof_metrics


def _input(tier=Tier.BETTER, pitch=8, total_area=1000.0, squares=13, **kwargs):
    return PricingInput(
        total_area=total_area,
        billable_area=squares * 100.0,
        squares=squares,
        pitch=pitch,
        tier=tier,
        **kwargs,
    )


def _by_description(items, prefix):
    return next(item for item in items if item.description.startswith(prefix))


class TestRates:
    """Tests for tier rates and pitch surcharges."""

    def test_base_rates(self):
        assert TIER_SPECS[Tier.GOOD].base_rate == 380
        assert TIER_SPECS[Tier.BETTER].base_rate == 495
        assert TIER_SPECS[Tier.BEST].base_rate == 675

    @pytest.mark.parametrize(
        "pitch,expected",
        [(0, 0), (6, 0), (7, 25), (9, 25), (10, 55), (18, 55)],
    )
    def test_pitch_surcharge(self, pitch, expected):
        assert pitch_surcharge(pitch) == expected

    def test_better_at_pitch_8(self):
        assert effective_rate(Tier.BETTER, 8) == 520

    def test_tier_parse(self):
        assert Tier.parse("best") == Tier.BEST
        assert Tier.parse(Tier.GOOD) == Tier.GOOD

    def test_tier_parse_rejects_unknown(self):
        with pytest.raises(ValidationError, match="Unknown tier"):
            Tier.parse("Platinum")


class TestProposalItems:
    """Tests for the client-facing proposal."""

    def test_tear_off_and_install_split(self):
        data = _input()
        items = build_proposal_items(data)

        tear_off = _by_description(items, "Tear-off")
        install = _by_description(items, "Install")

        assert data.squares == 13
        assert tear_off.quantity == 13
        assert tear_off.unit_price == 95
        assert install.unit_price == 425
        assert tear_off.total + install.total == pytest.approx(13 * 520)

    def test_fixed_fees_always_present(self):
        items = build_proposal_items(_input(total_area=0.0))
        prices = {item.description: item.unit_price for item in items}

        assert prices["Mobilization & Site Protection"] == 450
        assert prices["Flashing & Ventilation Package"] == 1200
        assert prices["Final Inspection"] == 250

    def test_ice_and_water_rounds_up(self):
        items = build_proposal_items(_input(total_area=1001.0))
        ice = _by_description(items, "Ice & Water")

        assert ice.quantity == 151
        assert ice.unit == "SF"
        assert ice.unit_price == 2.50

    def test_warranty_line_is_free(self):
        items = build_proposal_items(_input(tier=Tier.BEST))
        warranty = items[-1]

        assert warranty.unit_price == 0
        assert TIER_SPECS[Tier.BEST].warranty in warranty.description

    def test_item_total_is_quantity_times_price(self):
        for item in build_proposal_items(_input()):
            assert item.total == pytest.approx(item.quantity * item.unit_price)


class TestMaterialItems:
    """Tests for the internal take-off."""

    def test_quantities_without_labels(self):
        items = build_material_items(_input())
        quantities = {item.description: item.quantity for item in items}

        assert quantities["Architectural Shingle (Limited Lifetime) - (Better)"] == 39
        assert quantities["Hip & Ridge Cap"] == 1  # 13 sq x 1.5 ft = 19.5 ft
        assert quantities["Starter Strip"] == 2  # sqrt(1000) x 4 = 126.5 ft
        assert quantities["Synthetic Underlayment"] == 1
        assert quantities["Coil Roofing Nails"] == 2
        assert quantities["Plastic Cap Nails"] == 2
        assert quantities["Pipe Jack Flashings"] == 4
        assert quantities["Ridge Vent"] == 5
        assert quantities["Drip Edge (Alum)"] == 13

    def test_labeled_ridge_drives_ridge_cap(self):
        items = build_material_items(_input(ridge_length=40.0, hip_length=26.0))

        assert _by_description(items, "Hip & Ridge Cap").quantity == 2
        assert _by_description(items, "Ridge Vent").quantity == 10

    def test_hips_alone_fall_back_to_squares(self):
        items = build_material_items(_input(ridge_length=None, hip_length=200.0))

        assert _by_description(items, "Hip & Ridge Cap").quantity == 1  # ceil(19.5 / 33)
        assert _by_description(items, "Ridge Vent").quantity == 5

    def test_zero_ridge_falls_back_to_squares(self):
        items = build_material_items(_input(ridge_length=0.0))
        assert _by_description(items, "Hip & Ridge Cap").quantity == 1

    def test_measured_perimeter_drives_drip_edge(self):
        items = build_material_items(_input(perimeter=101.0))
        assert _by_description(items, "Drip Edge").quantity == 11

    def test_all_quantities_are_whole_numbers(self):
        for item in build_material_items(_input(total_area=1234.5)):
            assert item.quantity == int(item.quantity)

    def test_from_metrics_uses_edge_totals(self):
        metrics = compute_roof_metrics([1000.0], pitch=6, waste_factor=10)
        totals = EdgeTotals(ridge_length=30.0, hip_length=5.0)

        data = PricingInput.from_metrics(metrics, Tier.GOOD, totals=totals, perimeter=120.0)

        assert data.squares == 13
        assert data.ridge_length == 30.0
        assert data.hip_length == 5.0
        assert data.perimeter == 120.0


class TestBuildEstimate:
    """Tests for build_estimate."""

    def test_totals(self):
        estimate = build_estimate(_input(), tax_rate=0.08)

        # 13 x 520 + 450 + 1200 + 250 + 150 SF x 2.50
        assert estimate.subtotal == pytest.approx(9035.0)
        assert estimate.tax == pytest.approx(722.8)
        assert estimate.total == pytest.approx(9757.8)
        assert estimate.estimate_id.startswith("est_")

    def test_material_cost(self):
        estimate = build_estimate(_input())
        assert estimate.material_cost == pytest.approx(
            sum(item.quantity * item.unit_price for item in estimate.material_items)
        )

    def test_invalid_tax_rate(self):
        with pytest.raises(ValidationError):
            build_estimate(_input(), tax_rate=1.5)

    def test_to_dict(self):
        data = build_estimate(_input(), tax_rate=0.0).to_dict()

        assert data["tier"] == "Better"
        assert data["squares"] == 13
        assert len(data["proposal_items"]) == 7
        assert len(data["material_items"]) == 9
