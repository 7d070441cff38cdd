# app/x402/pricing.py
"""
Price table for x402-protected resources.

Each protected resource is described by a PriceRule: a regular expression
searched against the resource path, a price in lamports, and a human readable
description that is echoed in the 402 challenge.

Rules are loaded once at startup from app/core/config.py:
- X402_PRICE_TABLE: ordered list of {pattern, price, description}

Classification is a linear scan over the ordered rules; the first rule whose
pattern matches wins.
"""
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Pattern

from app.core.config import PriceRuleConfig

logger = logging.getLogger(__name__)

# Conversion constants
LAMPORTS_PER_SOL = 10 ** 9  # 1 SOL = 10^9 lamports


def lamports_to_sol(lamports: int) -> float:
    """Convert lamports to SOL."""
    return lamports / LAMPORTS_PER_SOL


@dataclass(frozen=True)
class PriceRule:
    """A priced resource: path matcher, price in lamports, description."""
    matcher: Pattern[str]
    price: int
    description: str

    def matches(self, path: str) -> bool:
        return self.matcher.search(path) is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "pattern": self.matcher.pattern,
            "price": self.price,
            "description": self.description,
        }


def load_price_rules(table: Iterable[PriceRuleConfig]) -> List[PriceRule]:
    """
    Compile the configured price table into PriceRules.

    Args:
        table: Price table rows, in priority order

    Returns:
        List of PriceRules in the same order

    Raises:
        ValueError: If a pattern does not compile or a price is not positive
    """
    rules = []
    for row in table:
        try:
            matcher = re.compile(row.pattern)
        except re.error as e:
            raise ValueError(f"Invalid price rule pattern {row.pattern!r}: {e}") from e

        if row.price <= 0:
            raise ValueError(f"Price for {row.pattern!r} must be positive, got {row.price}")

        rules.append(PriceRule(matcher=matcher, price=row.price, description=row.description))

    logger.info(f"Loaded {len(rules)} x402 price rules")
    return rules


def find_price_rule(path: str, rules: List[PriceRule]) -> Optional[PriceRule]:
    """
    Classify a resource path against the price table.

    Args:
        path: Resource path (without the proxy prefix)
        rules: Ordered price rules

    Returns:
        The first matching PriceRule, or None if the path is unprotected
    """
    for rule in rules:
        if rule.matches(path):
            return rule
    return None
