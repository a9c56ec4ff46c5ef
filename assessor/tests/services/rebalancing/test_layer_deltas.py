"""
Tests for layer delta suppression and residual redistribution.

Tests: assessor/services/rebalancing/layer_deltas.py
"""

from decimal import Decimal
from unittest.mock import patch

import pytest

from assessor.domain.layers import LayerAmounts
from assessor.services.rebalancing.layer_deltas import adjust_layer_deltas, format_eur


def _layers(*values: str) -> LayerAmounts:
    return LayerAmounts.of([Decimal(v) for v in values])


@pytest.mark.services
@pytest.mark.unit
class TestAdjustLayerDeltas:
    """Tests for adjust_layer_deltas."""

    def test_redistributes_residual_deterministically(self) -> None:
        """Suppressed +8 in layer 3 is taken out of the layer 1 decrease."""
        result = adjust_layer_deltas(_layers("-20", "12", "8", "0", "0"), Decimal("10"))

        assert result.adjusted_deltas == _layers("-12", "12", "0", "0", "0")
        assert result.adjusted_deltas.total() == Decimal("0")
        assert result.suppressed_count == 1
        assert result.suppressed_amount == Decimal("8")
        assert result.converged is True
        assert result.redistribution_notes == (
            "Suppressed layer deltas below minimum: [3]",
            "Reduced decreases by 8.00 EUR in layers [1]",
        )

    def test_preserves_target_total(self) -> None:
        """Suppressed -6 in layer 1 is taken out of the largest increase."""
        result = adjust_layer_deltas(_layers("-6", "-105", "108", "23", "0"), Decimal("10"))

        assert result.adjusted_deltas == _layers("0", "-105", "102", "23", "0")
        assert result.adjusted_deltas.total() == Decimal("20")

    def test_grows_opposite_sign_when_nothing_to_trim(self) -> None:
        """With no increase to trim, the largest decrease grows instead."""
        result = adjust_layer_deltas(_layers("-5", "-20", "0", "0", "0"), Decimal("10"))

        assert result.adjusted_deltas == _layers("0", "-25", "0", "0", "0")
        assert "Increased decreases by 5.00 EUR in layers [2]" in result.redistribution_notes

    def test_deltas_above_minimum_untouched(self) -> None:
        deltas = _layers("30", "-30", "0", "0", "0")
        result = adjust_layer_deltas(deltas, Decimal("10"))

        assert result.adjusted_deltas == deltas
        assert result.suppressed_count == 0
        assert result.redistribution_notes == ()

    def test_none_deltas(self) -> None:
        assert adjust_layer_deltas(None, Decimal("10")).adjusted_deltas == LayerAmounts.zeros()

    def test_no_minimum_returns_input(self) -> None:
        deltas = _layers("1", "-1", "0", "0", "0")
        assert adjust_layer_deltas(deltas, None).adjusted_deltas == deltas

    def test_unresolvable_residual_is_reported(self) -> None:
        """A lone sub-minimum delta leaves nothing to trim or grow, so the total cannot be kept."""
        with patch("assessor.services.rebalancing.layer_deltas.logger") as mock_logger:
            result = adjust_layer_deltas(_layers("-5", "0", "0", "0", "0"), Decimal("10"))

        assert result.converged is False
        assert result.adjusted_deltas == LayerAmounts.zeros()
        assert result.suppressed_count == 1
        mock_logger.warning.assert_called_once()
        assert mock_logger.warning.call_args[0][0] == "layer_deltas_not_converged"

    def test_converged_result_does_not_warn(self) -> None:
        with patch("assessor.services.rebalancing.layer_deltas.logger") as mock_logger:
            result = adjust_layer_deltas(_layers("-20", "12", "8", "0", "0"), Decimal("10"))

        assert result.converged is True
        mock_logger.warning.assert_not_called()


@pytest.mark.services
@pytest.mark.unit
def test_format_eur_uses_two_decimals() -> None:
    """Note amounts are shown with cents."""
    assert format_eur(Decimal("8")) == "8.00 EUR"
    assert format_eur(Decimal("1.005")) == "1.01 EUR"
