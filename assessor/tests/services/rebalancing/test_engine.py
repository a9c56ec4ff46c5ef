"""
Tests for the assessment engine end to end.

Tests: assessor/services/rebalancing/engine.py
"""

from decimal import Decimal

import pytest

from assessor.domain.layers import LayerAmounts
from assessor.services.rebalancing.engine import (
    NOTE_BUDGET_EMPTY,
    NOTE_LAYER_ONE_RAISED,
    NOTE_WITHIN_TOLERANCE,
    known_layers,
    normalize_minimum,
)


def _weights(*values: str) -> dict[int, Decimal]:
    return {layer: Decimal(value) for layer, value in enumerate(values, start=1)}


BALANCED = _weights("0.3", "0.2", "0.2", "0.2", "0.1")


@pytest.mark.services
@pytest.mark.unit
class TestNormalizeMinimum:
    """Tests for normalize_minimum."""

    @pytest.mark.parametrize("raw,expected", [(None, 10), (0, 10), (-3, 10), (1, 1), (40, 40)])
    def test_falls_back_below_one(self, raw, expected) -> None:
        """Absent or non-positive minimums use the fallback."""
        assert normalize_minimum(raw, 10) == Decimal(expected)


@pytest.mark.services
@pytest.mark.integration
class TestAssessorEngineSuggestions:
    """Tests for saving plan suggestions produced by AssessorEngine.assess."""

    def test_suppresses_layer_deltas_below_minimum(self, engine, engine_input, make_plan) -> None:
        """+4 / -4 layer deltas are both below 10 and yield no suggestions."""
        result = engine.assess(
            engine_input(
                target_weights=_weights("0.92", "0.08"),
                saving_plans=[make_plan("AAA111", 180, 1), make_plan("BBB222", 20, 2)],
            )
        )

        assert result.diagnostics.within_tolerance is False
        assert result.diagnostics.suppressed_deltas_count == 2
        assert result.diagnostics.suppressed_amount_total == Decimal("8")
        assert result.saving_plan_suggestions == ()

    def test_aggregates_small_plan_deltas(self, engine, engine_input, make_plan) -> None:
        """The +12 in layer 1 lands on the largest plan instead of three small shares."""
        result = engine.assess(
            engine_input(
                target_weights=_weights("0.8", "0.2"),
                saving_plans=[
                    make_plan("AAA111", 80, 1),
                    make_plan("BBB222", 10, 1),
                    make_plan("CCC333", 10, 1),
                    make_plan("DDD444", 40, 2),
                ],
            )
        )

        by_isin = {s.isin: s for s in result.saving_plan_suggestions}
        assert set(by_isin) == {"AAA111", "DDD444"}
        assert by_isin["AAA111"].delta == Decimal("12")
        assert by_isin["DDD444"].delta == Decimal("-12")

    def test_discards_when_below_minimum_saving_plan_size(self, engine, engine_input, make_plan) -> None:
        result = engine.assess(
            engine_input(
                target_weights=_weights("0", "1"),
                saving_plans=[make_plan("AAA111", 20, 1), make_plan("BBB222", 20, 2)],
            )
        )

        discard = next(s for s in result.saving_plan_suggestions if s.isin == "AAA111")
        assert discard.type == "discard"
        assert discard.new_amount == Decimal("0")

    def test_within_tolerance_returns_no_suggestions(self, engine, engine_input, make_plan) -> None:
        result = engine.assess(
            engine_input(
                target_weights=_weights("0.70", "0.30"),
                acceptable_variance_pct=Decimal("3.0"),
                saving_plans=[make_plan("AAA111", 70, 1), make_plan("BBB222", 30, 2)],
            )
        )

        assert result.diagnostics.within_tolerance is True
        assert result.saving_plan_suggestions == ()
        assert NOTE_WITHIN_TOLERANCE in result.diagnostics.redistribution_notes

    def test_saving_plan_amount_delta_raises_targets(self, engine, engine_input, make_plan) -> None:
        result = engine.assess(
            engine_input(
                target_weights=_weights("1"),
                saving_plans=[make_plan("AAA111", 100, 1)],
                saving_plan_amount_delta=Decimal("50"),
            )
        )

        assert result.monthly_total == Decimal("150")
        assert result.target_layer_amounts[1] == Decimal("150")
        assert [(s.isin, s.delta) for s in result.saving_plan_suggestions] == [("AAA111", Decimal("50"))]

    def test_saving_plan_amount_delta_spread_over_suggestions(self, engine, engine_input, make_plan) -> None:
        result = engine.assess(
            engine_input(
                target_weights=_weights("0.6", "0.4"),
                minimum_saving_plan_size=1,
                minimum_rebalancing_amount=1,
                saving_plans=[make_plan("AAA111", 60, 1), make_plan("BBB222", 40, 2)],
                saving_plan_amount_delta=Decimal("20"),
            )
        )

        by_isin = {s.isin: s.delta for s in result.saving_plan_suggestions}
        assert by_isin == {"AAA111": Decimal("12"), "BBB222": Decimal("8")}
        assert result.total_suggested_delta == Decimal("20")


@pytest.mark.services
@pytest.mark.integration
class TestAssessorEngineScenarios:
    """Whole-portfolio scenarios across all five layers."""

    def test_balanced_plans_are_left_alone(self, engine, engine_input, make_plan) -> None:
        """Plans already matching 30/20/20/20/10 are within a 3 point band."""
        plans = [
            make_plan(f"LAYER{layer}", amount, layer)
            for layer, amount in enumerate((300, 200, 200, 200, 100), start=1)
        ]

        result = engine.assess(
            engine_input(target_weights=BALANCED, acceptable_variance_pct=Decimal("3"), saving_plans=plans)
        )

        assert result.monthly_total == Decimal("1000")
        assert result.diagnostics.within_tolerance is True
        assert result.saving_plan_suggestions == ()
        assert result.target_layer_amounts == result.current_layer_amounts

    def test_concentrated_plan_is_spread_over_layers(self, engine, engine_input, make_plan) -> None:
        """Everything in layer 5: empty plans in layers 1-4 are created, layer 5 shrinks."""
        plans = [make_plan(f"LAYER{layer}", 0, layer) for layer in range(1, 5)]
        plans.append(make_plan("LAYER5", 1000, 5))

        result = engine.assess(engine_input(target_weights=BALANCED, saving_plans=plans))

        summary = [(s.type, s.isin, s.new_amount) for s in result.saving_plan_suggestions]
        assert summary == [
            ("create", "LAYER1", Decimal("300")),
            ("create", "LAYER2", Decimal("200")),
            ("create", "LAYER3", Decimal("200")),
            ("create", "LAYER4", Decimal("200")),
            ("decrease", "LAYER5", Decimal("100")),
        ]
        assert result.total_suggested_delta == Decimal("0")

    def test_one_time_amount_fills_underweight_layer(self, engine, engine_input, make_plan) -> None:
        """With holdings only in layers 2-5, the whole lump sum goes to layer 1."""
        result = engine.assess(
            engine_input(
                target_weights=BALANCED,
                saving_plans=[make_plan("AAA111", 100, 1)],
                one_time_amount=Decimal("1000"),
                holdings_by_layer={2: Decimal("300"), 3: Decimal("300"), 4: Decimal("300"), 5: Decimal("100")},
            )
        )

        buckets = result.one_time_allocation.layer_buckets
        assert buckets == {1: Decimal("1000"), 2: Decimal("0"), 3: Decimal("0"), 4: Decimal("0")}

    def test_small_layer_target_is_folded(self, engine, engine_input, make_plan) -> None:
        """A 12 target in layer 3 folds into layer 2 before deltas are computed."""
        plans = [make_plan("AAA111", 162, 1), make_plan("BBB222", 0, 2)]

        result = engine.assess(
            engine_input(target_weights=_weights("100", "50", "12"), saving_plans=plans)
        )

        assert result.target_layer_amounts == LayerAmounts.of(
            [Decimal("100"), Decimal("62"), Decimal("0"), Decimal("0"), Decimal("0")]
        )
        assert any("[3]" in note for note in result.diagnostics.redistribution_notes)

    def test_layer_one_raised_to_minimum_plan_size(self, engine, engine_input, make_plan) -> None:
        """A lone 10 plan is below the 15 minimum, so the layer 1 target becomes 15."""
        result = engine.assess(engine_input(target_weights=_weights("1"), saving_plans=[make_plan("AAA111", 10, 1)]))

        assert result.target_layer_amounts[1] == Decimal("15")
        assert NOTE_LAYER_ONE_RAISED in result.diagnostics.redistribution_notes


@pytest.mark.services
@pytest.mark.integration
class TestAssessorEngineOneTime:
    """Tests for the one-time allocation part of an assessment."""

    def test_respects_minimum_instrument_amount(self, engine, engine_input, make_plan) -> None:
        """Two 50 splits are under 60, so the smallest plan by ISIN takes all 100."""
        result = engine.assess(
            engine_input(
                target_weights=_weights("1"),
                minimum_instrument_amount=60,
                saving_plans=[make_plan("AAA111", 50, 1), make_plan("BBB222", 50, 1)],
                one_time_amount=Decimal("100"),
                instrument_allocation_enabled=True,
            )
        )

        assert result.one_time_allocation.instrument_buckets == {"AAA111": Decimal("100")}

    def test_applies_minimum_instrument_amount_to_layers(self, engine, engine_input, make_plan) -> None:
        """20 / 20 is below 25, so layer 2 folds into layer 1."""
        result = engine.assess(
            engine_input(
                target_weights=_weights("0.5", "0.5"),
                saving_plans=[make_plan("AAA111", 50, 1), make_plan("BBB222", 50, 2)],
                one_time_amount=Decimal("40"),
            )
        )

        allocation = result.one_time_allocation
        assert allocation.layer_buckets == {1: Decimal("40"), 2: Decimal("0"), 3: Decimal("0"), 4: Decimal("0")}
        assert allocation.instrument_buckets is None

    def test_no_one_time_amount(self, engine, engine_input, make_plan) -> None:
        result = engine.assess(engine_input(target_weights=_weights("1"), saving_plans=[make_plan("A", 10, 1)]))
        assert result.one_time_allocation is None


@pytest.mark.services
@pytest.mark.unit
class TestAssessorEngineEdgeCases:
    """Tests for empty and missing input."""

    def test_none_input(self, engine) -> None:
        assert engine.assess(None) is None

    def test_empty_budget(self, engine, engine_input) -> None:
        """No plans and no pending delta means nothing to rebalance."""
        result = engine.assess(engine_input(target_weights=BALANCED, saving_plans=[]))

        assert result.monthly_total == Decimal("0")
        assert result.diagnostics.within_tolerance is True
        assert result.diagnostics.redistribution_notes == (NOTE_BUDGET_EMPTY,)
        assert result.saving_plan_suggestions == ()
        assert result.target_layer_amounts == LayerAmounts.zeros()

    def test_none_plan_entries_are_ignored(self, engine, engine_input, make_plan) -> None:
        result = engine.assess(
            engine_input(target_weights=_weights("1"), saving_plans=[None, make_plan("AAA111", 50, 1)])
        )
        assert result.monthly_total == Decimal("50")

    def test_profile_is_passed_through(self, engine, engine_input) -> None:
        result = engine.assess(engine_input(selected_profile="GROWTH"))
        assert result.selected_profile == "GROWTH"

    def test_holdings_outside_known_layers_are_ignored(self, engine, engine_input, make_plan) -> None:
        """A holdings entry for layer 6 is dropped instead of failing the assessment."""
        result = engine.assess(
            engine_input(
                target_weights=_weights("1"),
                saving_plans=[make_plan("AAA111", 100, 1)],
                one_time_amount=Decimal("100"),
                holdings_by_layer={1: Decimal("50"), 6: Decimal("50")},
            )
        )

        buckets = result.one_time_allocation.layer_buckets
        assert buckets == {1: Decimal("100"), 2: Decimal("0"), 3: Decimal("0"), 4: Decimal("0")}


@pytest.mark.services
@pytest.mark.unit
class TestKnownLayers:
    """Tests for known_layers."""

    def test_drops_unknown_layers(self) -> None:
        assert known_layers({0: Decimal("1"), 1: Decimal("2"), 5: None, 6: Decimal("3")}) == {
            1: Decimal("2"),
            5: None,
        }
