# tests/test_x402_pricing.py
"""
Unit tests for x402 price table classification.
"""
import pytest

from app.core.config import DEFAULT_PRICE_TABLE, PriceRuleConfig
from app.x402.pricing import (
    LAMPORTS_PER_SOL,
    find_price_rule,
    lamports_to_sol,
    load_price_rules,
)


@pytest.fixture
def default_rules():
    return load_price_rules(DEFAULT_PRICE_TABLE)


class TestConversions:
    """Test lamport conversion helpers."""

    def test_lamports_per_sol(self):
        """1 SOL is 10^9 lamports."""
        assert LAMPORTS_PER_SOL == 1_000_000_000

    def test_lamports_to_sol(self):
        """Prices in lamports convert to SOL."""
        assert lamports_to_sol(2_000_000) == 0.002
        assert lamports_to_sol(500_000) == 0.0005


class TestDefaultPriceTable:
    """Test classification with the default report prices."""

    @pytest.mark.parametrize("path,price", [
        ("/api/reports/risk/pool-1", 1_000_000),
        ("/api/reports/rewards/pool-1", 500_000),
        ("/api/reports/il/pool-1", 2_000_000),
        ("/api/reports/yield/pool-1", 1_500_000),
    ])
    def test_report_prices(self, default_rules, path, price):
        """Each report type has its own price."""
        rule = find_price_rule(path, default_rules)

        assert rule is not None
        assert rule.price == price

    @pytest.mark.parametrize("path", [
        "/info",
        "/api/pools",
        "/api/reports/risk",  # no trailing slash
        "/api/reports/other/x",
    ])
    def test_unprotected_paths(self, default_rules, path):
        """Paths matching no rule are free."""
        assert find_price_rule(path, default_rules) is None

    def test_description_is_kept(self, default_rules):
        """The description is echoed from the table."""
        rule = find_price_rule("/api/reports/il/x", default_rules)

        assert rule.description == "IL Simulation (0.002 SOL)"

    def test_classification_is_stable(self, default_rules):
        """Classifying the same path twice gives the same rule."""
        path = "/api/reports/yield/abc?window=7d"

        assert find_price_rule(path, default_rules) is find_price_rule(path, default_rules)


class TestRuleOrdering:
    """Test that the first matching rule wins."""

    def test_first_match_wins(self):
        """Earlier rules take priority over later ones."""
        rules = load_price_rules([
            PriceRuleConfig(pattern=r"/premium/", price=9_000, description="Premium"),
            PriceRuleConfig(pattern=r"/premium/basic/", price=1_000, description="Basic"),
        ])

        rule = find_price_rule("/premium/basic/item", rules)

        assert rule.price == 9_000
        assert rule.description == "Premium"

    def test_empty_table(self):
        """With no rules everything is free."""
        assert find_price_rule("/api/reports/il/x", load_price_rules([])) is None


class TestLoadPriceRules:
    """Test validation of configured rules."""

    def test_invalid_pattern(self):
        """A pattern that does not compile is rejected at load time."""
        with pytest.raises(ValueError, match="Invalid price rule pattern"):
            load_price_rules([PriceRuleConfig(pattern=r"/api/(", price=1, description="bad")])

    @pytest.mark.parametrize("price", [0, -5])
    def test_non_positive_price(self, price):
        """Prices must be at least one lamport."""
        with pytest.raises(ValueError, match="must be positive"):
            load_price_rules([PriceRuleConfig(pattern=r"/x/", price=price, description="free?")])

    def test_to_dict(self):
        """Rules serialize with their source pattern."""
        rule = load_price_rules([PriceRuleConfig(pattern=r"/a/", price=7, description="A")])[0]

        assert rule.to_dict() == {"pattern": "/a/", "price": 7, "description": "A"}
