"""
Collateralized debt position (CDP) and keeper value objects.

Collateral is held in units of the volatile asset, debt in units of the
stable numeraire. Health and incentive calculations are pure functions of
the position and the current price:

    collateral ratio = collateral * price / debt        (inf if debt == 0)
    liquidation profit = max(0, collateral * price - debt) * penalty
    bad debt = max(0, debt - collateral * price)        (underwater, unliquidated)
"""

from dataclasses import dataclass

import numpy as np

from config.params import CASCADE, CascadeParams

UNDERWATER_RATIO = 1.0


@dataclass
class Position:
    """Single CDP; only the liquidation step mutates it."""
    position_id: int
    collateral: float
    debt: float
    liquidated: bool = False

    @classmethod
    def random(cls, position_id: int, rng: np.random.Generator,
               params: CascadeParams = CASCADE) -> "Position":
        """Randomized collateral (1-20 units) at a 150-250% opening ratio."""
        collateral = params.collateral_min + rng.random() * (params.collateral_max - params.collateral_min)
        ratio = params.initial_ratio_min + rng.random() * (params.initial_ratio_max - params.initial_ratio_min)
        debt = (collateral * params.initial_price) / ratio
        return cls(position_id=position_id, collateral=collateral, debt=debt)

    def collateral_ratio(self, price: float) -> float:
        return collateral_ratio(self.collateral, self.debt, price)

    def is_underwater(self, price: float) -> bool:
        return is_underwater(self.collateral, self.debt, price)

    def is_liquidatable(self, price: float,
                        min_collateral_ratio: float = CASCADE.min_collateral_ratio) -> bool:
        if self.liquidated:
            return False
        return self.collateral_ratio(price) < min_collateral_ratio

    def liquidation_profit(self, price: float,
                           penalty: float = CASCADE.liquidation_penalty) -> float:
        return liquidation_profit(self.collateral, self.debt, price, penalty)

    def bad_debt(self, price: float) -> float:
        if self.liquidated:
            return 0.0
        return bad_debt(self.collateral, self.debt, price)


@dataclass
class Keeper:
    """Liquidating agent. Capital is informational and never caps a liquidation."""
    keeper_id: int
    capital: float
    gas_priority: float
    # 0-1, higher = earlier transaction ordering
    total_profit: float = 0.0
    liquidations: int = 0

    @classmethod
    def random(cls, keeper_id: int, rng: np.random.Generator,
               params: CascadeParams = CASCADE) -> "Keeper":
        capital = params.keeper_capital_min + rng.random() * (params.keeper_capital_max - params.keeper_capital_min)
        return cls(keeper_id=keeper_id, capital=capital, gas_priority=float(rng.random()))


def collateral_ratio(collateral: float, debt: float, price: float) -> float:
    if debt == 0.0:
        return float("inf")
    return (collateral * price) / debt


def is_underwater(collateral: float, debt: float, price: float) -> bool:
    return collateral_ratio(collateral, debt, price) < UNDERWATER_RATIO


def liquidation_profit(collateral: float, debt: float, price: float,
                       penalty: float = CASCADE.liquidation_penalty) -> float:
    return max(0.0, collateral * price - debt) * penalty


def bad_debt(collateral: float, debt: float, price: float) -> float:
    if not is_underwater(collateral, debt, price):
        return 0.0
    return max(0.0, debt - collateral * price)
