"""
Static price list for subscription and corporate plans.
"""

from __future__ import annotations

import logging
import os
from decimal import Decimal, InvalidOperation
from typing import Dict, Optional

from pydantic import BaseModel, Field

from .defaults import ZERO

logger = logging.getLogger(__name__)

INDIVIDUAL_PLANS = ("gold", "platinum")


def _default_individual_prices() -> Dict[str, Decimal]:
    return {"gold": Decimal("9.99"), "platinum": Decimal("19.99")}


def _default_corporate_prices() -> Dict[str, Decimal]:
    return {
        "dynamic": Decimal("399"),
        "power": Decimal("499"),
        "elite": Decimal("599"),
        "enterprise": Decimal("699"),
    }


def _default_corporate_seats() -> Dict[str, int]:
    return {"dynamic": 10, "power": 20, "elite": 30, "enterprise": 100}


class PricingTable(BaseModel):
    individual_prices: Dict[str, Decimal] = Field(default_factory=_default_individual_prices)
    """Monthly price per individual plan"""

    corporate_prices: Dict[str, Decimal] = Field(default_factory=_default_corporate_prices)
    """Price per corporate plan and billing period"""

    corporate_seats: Dict[str, int] = Field(default_factory=_default_corporate_seats)
    """Seats included in a corporate plan when the row has no max_users"""

    def individual_price(self, plan_type: str) -> Optional[Decimal]:
        return self.individual_prices.get(plan_type)

    def corporate_price(self, plan_type: str) -> Optional[Decimal]:
        return self.corporate_prices.get(plan_type)

    def unit_price(self, plan_type: str) -> Decimal:
        """Unknown plans resolve to zero; callers log them as data-quality issues."""
        price = self.individual_prices.get(plan_type)
        if price is None:
            price = self.corporate_prices.get(plan_type)
        return ZERO if price is None else price


def _env_decimal(name: str, default: Decimal) -> Decimal:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return Decimal(raw)
    except InvalidOperation:
        logger.warning("Ignoring invalid price in %s: %r", name, raw)
        return default


def load_pricing_table() -> PricingTable:
    """
    Build the price list, letting ``ANALYTICS_PRICE_<PLAN>`` override any tier.
    """

    table = PricingTable()
    table.individual_prices = {
        plan: _env_decimal(f"ANALYTICS_PRICE_{plan.upper()}", price)
        for plan, price in table.individual_prices.items()
    }
    table.corporate_prices = {
        plan: _env_decimal(f"ANALYTICS_PRICE_{plan.upper()}", price)
        for plan, price in table.corporate_prices.items()
    }
    return table
