"""Block-by-block deleveraging cascade engine."""

from __future__ import annotations

import logging

import numpy as np

from config.params import CASCADE, CascadeParams
from models.position_model import Keeper, Position
from models.stress_tests import PriceScenario, apply_price_shock

from .agents import LiquidationMechanism, LiquidationPolicy
from .types import CascadeBlockOutput, CascadeResult, CascadeRunState

LOGGER = logging.getLogger(__name__)


class CascadeEngine:
    """
    Agent-based cascade model for one liquidation mechanism.

    Per block: price shock → rank liquidatable positions by collateral ratio
    (lowest first) → liquidate up to `liquidations_per_block` through the
    mechanism policy → collateral sold depresses price → wave bookkeeping.

    A run terminates at `max_blocks`, or after `stability_window` consecutive
    empty blocks once the block index exceeds `stability_min_block`.
    """

    def __init__(
        self,
        mechanism: LiquidationMechanism,
        params: CascadeParams = CASCADE,
        *,
        policy: LiquidationPolicy | None = None,
    ):
        self.mechanism = LiquidationMechanism(mechanism)
        self.params = params
        self.policy = policy or self.mechanism.policy(params)

    def initialize(self, rng: np.random.Generator) -> CascadeRunState:
        """Draw the position pool, then the keeper pool, from `rng`."""
        params = self.params
        positions = [Position.random(i, rng, params) for i in range(params.num_positions)]
        keepers = [Keeper.random(i, rng, params) for i in range(params.num_keepers)]
        return CascadeRunState(
            positions=positions,
            keepers=keepers,
            price=params.initial_price,
            price_history=[params.initial_price],
        )

    @staticmethod
    def _validate_price_path(price_path) -> np.ndarray:
        path = np.asarray(price_path, dtype=float)
        if path.ndim != 1:
            raise ValueError("price_path must be a 1D array")
        if path.size < 2:
            raise ValueError("price_path must contain at least two prices")
        if not np.all(np.isfinite(path)):
            raise ValueError("price_path contains NaN/inf values")
        if np.any(path <= 0.0):
            raise ValueError("price_path must be strictly positive")
        return path

    def ranked_liquidatable(self, state: CascadeRunState) -> list[int]:
        """Indices of liquidatable positions, most undercollateralized first."""
        price = state.price
        min_ratio = self.params.min_collateral_ratio
        candidates = [
            idx for idx, pos in enumerate(state.positions)
            if pos.is_liquidatable(price, min_ratio)
        ]
        # Stable sort keeps position order among equal ratios
        candidates.sort(key=lambda idx: state.positions[idx].collateral_ratio(price))
        return candidates

    def _shock(
        self,
        state: CascadeRunState,
        scenario: PriceScenario | None,
        path: np.ndarray | None,
        rng: np.random.Generator,
    ) -> float:
        if path is None:
            return apply_price_shock(scenario, state.price, state.block, rng, self.params.price_floor)
        if state.block + 1 >= path.size:
            return state.price
        factor = path[state.block + 1] / path[state.block]
        return max(state.price * float(factor), self.params.price_floor)

    def liquidate(self, state: CascadeRunState, rng: np.random.Generator) -> tuple[int, float, int, float]:
        """
        Run one liquidation round at the current price.

        Returns (liquidations, collateral_sold, skipped_no_keeper, profit_paid).
        """
        params = self.params
        price = state.price
        keepers_by_id = {k.keeper_id: k for k in state.keepers}
        ranked = self.ranked_liquidatable(state)[:params.liquidations_per_block]

        liquidations = 0
        collateral_sold = 0.0
        skipped = 0
        profit_paid = 0.0

        for idx in ranked:
            position = state.positions[idx]
            profit = position.liquidation_profit(price, params.liquidation_penalty)
            willing = self.policy.willing_keepers(state.keepers, profit)
            if not willing:
                # Deferred; may be picked up in a later block
                skipped += 1
                continue

            outcome = self.policy.resolve(position, profit, willing, rng)
            for keeper_id, amount in outcome.payouts.items():
                keepers_by_id[keeper_id].total_profit += amount
            keepers_by_id[outcome.executor_id].liquidations += 1

            paid = outcome.total_paid
            profit_paid += paid
            state.unallocated_profit += max(profit - paid, 0.0)

            collateral_sold += position.collateral
            position.liquidated = True
            liquidations += 1

        return liquidations, collateral_sold, skipped, profit_paid

    def apply_price_impact(self, state: CascadeRunState, collateral_sold: float) -> float:
        impact = collateral_sold * self.params.price_impact_per_unit
        state.price = max(state.price * (1.0 - impact), self.params.price_floor)
        return state.price

    def step(
        self,
        state: CascadeRunState,
        rng: np.random.Generator,
        *,
        scenario: PriceScenario | None = None,
        price_path: np.ndarray | None = None,
    ) -> CascadeBlockOutput:
        """Advance `state` by one block (mutates it) and return the block outcome."""
        state.price = self._shock(state, scenario, price_path, rng)
        state.price_history.append(state.price)
        price_after_shock = state.price

        liquidations, collateral_sold, skipped, profit_paid = self.liquidate(state, rng)
        self.apply_price_impact(state, collateral_sold)

        state.liquidations_per_block.append(liquidations)
        state.total_liquidations += liquidations
        state.total_keeper_profit += profit_paid

        if liquidations > 0:
            state.current_wave_liquidations += liquidations
            state.consecutive_empty_blocks = 0
        else:
            state.close_wave()
            state.consecutive_empty_blocks += 1

        return CascadeBlockOutput(
            block=state.block,
            price_after_shock=price_after_shock,
            price_after_impact=state.price,
            liquidations=liquidations,
            collateral_sold=collateral_sold,
            skipped_no_keeper=skipped,
            keeper_profit_paid=profit_paid,
        )

    def _is_stable(self, state: CascadeRunState) -> bool:
        return (
            state.consecutive_empty_blocks >= self.params.stability_window
            and state.block > self.params.stability_min_block
        )

    def run(
        self,
        rng: np.random.Generator,
        *,
        scenario: PriceScenario | None = None,
        price_path=None,
    ) -> CascadeResult:
        """
        Execute one full run under `scenario` or an explicit `price_path`.

        With a price path, block t applies path[t+1] / path[t]; once the path
        is exhausted the price is only moved by liquidation impact.
        """
        if (scenario is None) == (price_path is None):
            raise ValueError("exactly one of scenario or price_path must be provided")
        if scenario is not None:
            scenario = PriceScenario(scenario)
        path = None if price_path is None else self._validate_price_path(price_path)

        state = self.initialize(rng)
        blocks_executed = 0
        while state.block < self.params.max_blocks:
            self.step(state, rng, scenario=scenario, price_path=path)
            blocks_executed = state.block + 1
            if self._is_stable(state):
                break
            state.block += 1

        state.close_wave()
        result = self.summarize(state, scenario, blocks_executed)
        LOGGER.debug(
            "cascade run %s/%s: depth=%d liquidations=%d bad_debt=%.2f blocks=%d",
            self.mechanism.value,
            scenario.value if scenario is not None else "price_path",
            result.cascade_depth,
            result.total_liquidations,
            result.bad_debt,
            result.blocks_to_stability,
        )
        return result

    def summarize(
        self,
        state: CascadeRunState,
        scenario: PriceScenario | None,
        blocks_executed: int,
    ) -> CascadeResult:
        """Terminal statistics of a finished run."""
        price = state.price
        bad_debt = float(sum(p.bad_debt(price) for p in state.positions))
        unliquidated_underwater = sum(
            1 for p in state.positions if p.is_underwater(price) and not p.liquidated
        )

        return CascadeResult(
            mechanism=self.mechanism,
            scenario=scenario,
            cascade_depth=state.cascade_depth,
            total_liquidations=state.total_liquidations,
            bad_debt=bad_debt,
            blocks_to_stability=blocks_executed,
            final_price=price,
            price_drop_pct=(1.0 - price / self.params.initial_price) * 100.0,
            profit_concentration=profit_concentration([k.total_profit for k in state.keepers]),
            participation_rate=participation_rate([k.liquidations for k in state.keepers]),
            unliquidated_underwater=unliquidated_underwater,
            max_liquidations_per_block=max(state.liquidations_per_block, default=0),
            total_keeper_profit=state.total_keeper_profit,
            unallocated_profit=state.unallocated_profit,
            price_history=tuple(state.price_history),
            liquidations_per_block=tuple(state.liquidations_per_block),
        )


def profit_concentration(profits) -> float:
    """Share of total profit earned by the top quintile of keepers (0 if no profit)."""
    arr = np.asarray(profits, dtype=float)
    total = float(np.sum(arr))
    if arr.size == 0 or total <= 0.0:
        return 0.0
    top_n = max(arr.size // 5, 1)
    top = np.sort(arr)[::-1][:top_n]
    return float(np.clip(np.sum(top) / total, 0.0, 1.0))


def participation_rate(liquidation_counts) -> float:
    """Fraction of keepers credited with at least one liquidation."""
    arr = np.asarray(liquidation_counts)
    if arr.size == 0:
        return 0.0
    return float(np.count_nonzero(arr > 0) / arr.size)
