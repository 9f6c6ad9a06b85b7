"""Liquidation mechanism policies: who gets paid what for one liquidation."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Sequence

import numpy as np

from config.params import CASCADE, CascadeParams
from models.position_model import Keeper, Position


class LiquidationMechanism(Enum):
    TRADITIONAL = "traditional"
    # Winner-takes-all, gas priority
    KEEPER_POOL = "keeper_pool"
    # 70/30 split across every willing keeper

    @property
    def label(self) -> str:
        if self is LiquidationMechanism.TRADITIONAL:
            return "Traditional (Winner-Takes-All)"
        return "Keeper Pool (70/30)"

    def policy(self, params: CascadeParams = CASCADE) -> "LiquidationPolicy":
        if self is LiquidationMechanism.TRADITIONAL:
            return TraditionalPolicy(profit_threshold=params.traditional_profit_threshold)
        return KeeperPoolPolicy(
            profit_threshold=params.keeper_pool_profit_threshold,
            keeper_share=params.keeper_pool_share,
        )


@dataclass(frozen=True)
class LiquidationOutcome:
    """Payouts keyed by keeper_id plus the keeper credited with execution."""

    payouts: dict[int, float]
    executor_id: int

    @property
    def total_paid(self) -> float:
        return float(sum(self.payouts.values()))


class LiquidationPolicy:
    """Contract consumed by the cascade engine."""

    mechanism: LiquidationMechanism
    profit_threshold: float

    def is_willing(self, profit: float) -> bool:
        return profit > self.profit_threshold

    def willing_keepers(self, keepers: Sequence[Keeper], profit: float) -> list[Keeper]:
        # Thresholds are uniform across keepers: all or nothing
        if not self.is_willing(profit):
            return []
        return list(keepers)

    def resolve(
        self,
        position: Position,
        profit: float,
        keepers: Sequence[Keeper],
        rng: np.random.Generator,
    ) -> LiquidationOutcome:
        raise NotImplementedError


@dataclass(frozen=True)
class TraditionalPolicy(LiquidationPolicy):
    """Highest gas priority wins the full profit; ties go to the lowest keeper_id."""

    profit_threshold: float = CASCADE.traditional_profit_threshold
    mechanism: LiquidationMechanism = LiquidationMechanism.TRADITIONAL

    def resolve(self, position, profit, keepers, rng):
        if not keepers:
            raise ValueError("resolve() requires at least one willing keeper")
        winner = min(keepers, key=lambda k: (-k.gas_priority, k.keeper_id))
        return LiquidationOutcome(payouts={winner.keeper_id: profit}, executor_id=winner.keeper_id)


@dataclass(frozen=True)
class KeeperPoolPolicy(LiquidationPolicy):
    """
    keeper_share of the profit is split evenly across every willing keeper.

    The executor is drawn uniformly from the willing set and only receives
    the execution credit; the unallocated remainder is not paid to anyone.
    """

    profit_threshold: float = CASCADE.keeper_pool_profit_threshold
    keeper_share: float = CASCADE.keeper_pool_share
    mechanism: LiquidationMechanism = LiquidationMechanism.KEEPER_POOL

    def resolve(self, position, profit, keepers, rng):
        if not keepers:
            raise ValueError("resolve() requires at least one willing keeper")
        per_keeper = profit * self.keeper_share / len(keepers)
        payouts = {k.keeper_id: per_keeper for k in keepers}
        executor = keepers[int(rng.integers(len(keepers)))]
        return LiquidationOutcome(payouts=payouts, executor_id=executor.keeper_id)


def willing_to_liquidate(profit: float, mechanism: LiquidationMechanism,
                         params: CascadeParams = CASCADE) -> bool:
    return LiquidationMechanism(mechanism).policy(params).is_willing(profit)
