from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from backoffice.price_lists.constants import RoundingStrategy, BulkOperation, PriceCalculationStrategy
from backoffice.price_lists.utils import (
    apply_rounding, apply_markup, apply_discount, compute_new_price, percentage_change,
    calculate_strategy_price, quantity_in_tier, tiers_overlap, windows_overlap,
    generate_code_from_name, unique_code,
)


@pytest.mark.parametrize("price, strategy, expected", [
    ("21.989", RoundingStrategy.TO_NEAREST_CENT, "21.99"),
    ("12.37", RoundingStrategy.TO_NEAREST_5_CENTS, "12.35"),
    ("12.375", RoundingStrategy.TO_NEAREST_5_CENTS, "12.40"),
    ("12.34", RoundingStrategy.TO_NEAREST_10_CENTS, "12.30"),
    ("12.26", RoundingStrategy.TO_NEAREST_50_CENTS, "12.50"),
    ("12.50", RoundingStrategy.TO_NEAREST_UNIT, "13.00"),
    ("12.01", RoundingStrategy.ROUND_UP_TO_UNIT, "13.00"),
    ("12.99", RoundingStrategy.ROUND_DOWN_TO_UNIT, "12.00"),
    ("12.10", RoundingStrategy.TO_99_CENTS, "12.99"),
])
def test_apply_rounding(price, strategy, expected):
    assert apply_rounding(Decimal(price), strategy) == Decimal(expected)


def test_apply_rounding_none_keeps_price():
    assert apply_rounding(Decimal("12.3456"), RoundingStrategy.NONE) == Decimal("12.3456")
    assert apply_rounding(Decimal("12.3456"), None) == Decimal("12.3456")


def test_percentage_increase_then_nearest_unit():
    """19.99 + 10% = 21.989, arrondi à l'unité la plus proche: 22.00."""
    new_price = compute_new_price(
        Decimal("19.99"), BulkOperation.PERCENTAGE_INCREASE, Decimal("10"), RoundingStrategy.TO_NEAREST_UNIT
    )
    assert new_price == Decimal("22.00")


def test_compute_new_price_never_negative():
    assert compute_new_price(Decimal("5"), BulkOperation.DECREASE, Decimal("8"), RoundingStrategy.NONE) == Decimal("0")
    assert compute_new_price(
        Decimal("5"), BulkOperation.PERCENTAGE_DECREASE, Decimal("150"), RoundingStrategy.TO_NEAREST_CENT
    ) == Decimal("0")


@pytest.mark.parametrize("operation, value, expected", [
    (BulkOperation.INCREASE, "2.50", "12.50"),
    (BulkOperation.DECREASE, "2.50", "7.50"),
    (BulkOperation.SET, "4.20", "4.20"),
    (BulkOperation.MULTIPLY, "1.5", "15.00"),
    (BulkOperation.PERCENTAGE_DECREASE, "25", "7.50"),
])
def test_bulk_operations(operation, value, expected):
    assert compute_new_price(Decimal("10.00"), operation, Decimal(value), RoundingStrategy.TO_NEAREST_CENT) == Decimal(expected)


def test_markup_and_discount():
    assert apply_markup(Decimal("10"), Decimal("20")) == Decimal("12")
    assert apply_markup(Decimal("10"), None) == Decimal("10")
    assert apply_discount(Decimal("10"), Decimal("10")) == Decimal("9")


def test_percentage_change():
    assert percentage_change(Decimal("10"), Decimal("11")) == Decimal("10.00")
    assert percentage_change(Decimal("0"), Decimal("5")) == Decimal("0")


class TestCalculationStrategies:
    base = datetime(2024, 3, 1)

    @property
    def observations(self):
        return [
            (Decimal("10"), Decimal("1"), self.base, 1),
            (Decimal("14"), Decimal("3"), self.base + timedelta(days=2), 2),
            (Decimal("10"), Decimal("1"), self.base + timedelta(days=1), 3),
            (Decimal("12"), Decimal("5"), self.base + timedelta(days=2), 4),
        ]

    def test_last_purchase_price_uses_latest_date_then_latest_line(self):
        assert calculate_strategy_price(self.observations, PriceCalculationStrategy.LAST_PURCHASE_PRICE) == Decimal("12")

    def test_average_and_weighted_average(self):
        assert calculate_strategy_price(self.observations, PriceCalculationStrategy.AVERAGE_PRICE) == Decimal("11.5")
        weighted = calculate_strategy_price(self.observations, PriceCalculationStrategy.WEIGHTED_AVERAGE_PRICE)
        assert weighted == Decimal("12.2")

    def test_extremes_median_and_most_frequent(self):
        assert calculate_strategy_price(self.observations, PriceCalculationStrategy.LOWEST_PRICE) == Decimal("10")
        assert calculate_strategy_price(self.observations, PriceCalculationStrategy.HIGHEST_PRICE) == Decimal("14")
        assert calculate_strategy_price(self.observations, PriceCalculationStrategy.MEDIAN_PRICE) == Decimal("11")
        assert calculate_strategy_price(self.observations, PriceCalculationStrategy.MOST_FREQUENT_PRICE) == Decimal("10")

    def test_no_observation_is_an_error(self):
        with pytest.raises(ValueError):
            calculate_strategy_price([], PriceCalculationStrategy.AVERAGE_PRICE)


def test_quantity_tiers():
    assert quantity_in_tier(Decimal("1"), 1, 0)
    assert quantity_in_tier(Decimal("1000"), 10, 0)
    assert not quantity_in_tier(Decimal("9"), 10, 0)
    assert not quantity_in_tier(Decimal("51"), 10, 50)
    assert tiers_overlap(1, 10, 5, 0)
    assert not tiers_overlap(1, 9, 10, 0)


def test_windows_overlap_with_open_bounds():
    jan, feb, mar = datetime(2024, 1, 1), datetime(2024, 2, 1), datetime(2024, 3, 1)
    assert windows_overlap(None, None, feb, mar)
    assert windows_overlap(jan, mar, feb, None)
    assert not windows_overlap(jan, feb - timedelta(days=1), feb, mar)


def test_generate_code_from_name():
    assert generate_code_from_name("Tarif Été 2024 / Pros") == "TARIF-ETE-2024-PROS"
    assert len(generate_code_from_name("x" * 50, max_length=20)) == 20
    assert unique_code("TARIF", ["TARIF", "TARIF-1"]) == "TARIF-2"
    assert unique_code("NEUF", ["TARIF"]) == "NEUF"
