"""Unit tests for cascade engine transitions, termination and determinism."""

import numpy as np
import pytest

from config.params import CascadeParams
from models.abm.agents import LiquidationMechanism
from models.abm.engine import CascadeEngine, participation_rate, profit_concentration
from models.abm.types import CascadeRunState
from models.liquidation_cascade import run_once
from models.position_model import Keeper, Position
from models.stress_tests import PriceScenario


def _keepers() -> list[Keeper]:
    return [
        Keeper(keeper_id=0, capital=50_000.0, gas_priority=0.2),
        Keeper(keeper_id=1, capital=50_000.0, gas_priority=0.9),
        Keeper(keeper_id=2, capital=50_000.0, gas_priority=0.5),
    ]


def _state(positions: list[Position], price: float = 2000.0) -> CascadeRunState:
    return CascadeRunState(positions=positions, keepers=_keepers(), price=price, price_history=[price])


def test_initialize_pool_sizes_and_ranges():
    engine = CascadeEngine(LiquidationMechanism.TRADITIONAL)
    state = engine.initialize(np.random.default_rng(0))

    assert len(state.positions) == 500
    assert len(state.keepers) == 50
    assert state.price == 2000.0
    assert state.block == 0
    ratios = np.array([p.collateral_ratio(2000.0) for p in state.positions])
    collateral = np.array([p.collateral for p in state.positions])
    assert np.all((ratios >= 1.5) & (ratios <= 2.5))
    assert np.all((collateral >= 1.0) & (collateral <= 20.0))
    assert all(0.0 <= k.gas_priority <= 1.0 for k in state.keepers)


def test_ranking_lowest_ratio_first_and_capped():
    engine = CascadeEngine(
        LiquidationMechanism.TRADITIONAL, CascadeParams(liquidations_per_block=2),
    )
    positions = [
        Position(0, collateral=10.0, debt=14_000.0),  # 1.43
        Position(1, collateral=10.0, debt=16_000.0),  # 1.25
        Position(2, collateral=10.0, debt=10_000.0),  # 2.00, healthy
        Position(3, collateral=10.0, debt=15_000.0),  # 1.33
    ]
    state = _state(positions)
    assert engine.ranked_liquidatable(state) == [1, 3, 0]

    liquidations, sold, skipped, _ = engine.liquidate(state, np.random.default_rng(0))
    assert liquidations == 2
    assert sold == pytest.approx(20.0)
    assert skipped == 0
    assert [p.liquidated for p in positions] == [False, True, False, True]
    assert engine.ranked_liquidatable(state) == [0]


def test_traditional_pays_single_keeper_full_profit():
    engine = CascadeEngine(LiquidationMechanism.TRADITIONAL)
    position = Position(0, collateral=10.0, debt=14_000.0)
    state = _state([position])
    profit = position.liquidation_profit(2000.0)

    engine.liquidate(state, np.random.default_rng(0))

    profits = [k.total_profit for k in state.keepers]
    assert profits == [0.0, pytest.approx(profit), 0.0]
    assert [k.liquidations for k in state.keepers] == [0, 1, 0]
    assert state.unallocated_profit == 0.0


def test_keeper_pool_splits_seventy_percent_evenly():
    engine = CascadeEngine(LiquidationMechanism.KEEPER_POOL)
    position = Position(0, collateral=10.0, debt=14_000.0)
    state = _state([position])
    profit = position.liquidation_profit(2000.0)

    _, _, _, paid = engine.liquidate(state, np.random.default_rng(0))

    profits = np.array([k.total_profit for k in state.keepers])
    assert paid == pytest.approx(0.7 * profit)
    assert np.sum(profits) == pytest.approx(0.7 * profit)
    assert np.allclose(profits, profits[0])
    assert sum(k.liquidations for k in state.keepers) == 1
    assert state.unallocated_profit == pytest.approx(0.3 * profit)


def test_unprofitable_position_deferred():
    engine = CascadeEngine(LiquidationMechanism.KEEPER_POOL)
    # ratio 1.005: profit = 10 * 0.13 = 1.3, below every threshold
    position = Position(0, collateral=1.0, debt=1_990.0)
    state = _state([position])

    liquidations, sold, skipped, _ = engine.liquidate(state, np.random.default_rng(0))

    assert liquidations == 0
    assert sold == 0.0
    assert skipped == 1
    assert not position.liquidated
    assert engine.ranked_liquidatable(state) == [0]


def test_price_impact_and_floor():
    engine = CascadeEngine(LiquidationMechanism.TRADITIONAL)
    state = _state([])
    assert engine.apply_price_impact(state, 100.0) == pytest.approx(2000.0 * 0.99)

    state.price = 101.0
    assert engine.apply_price_impact(state, 5_000.0) == 100.0


def test_step_flash_crash_block_zero():
    engine = CascadeEngine(LiquidationMechanism.TRADITIONAL)
    # ratio 1.6 at 2000 → 1.12 after -30%
    position = Position(0, collateral=10.0, debt=12_500.0)
    state = _state([position])

    out = engine.step(state, np.random.default_rng(0), scenario=PriceScenario.FLASH_CRASH)

    assert out.price_after_shock == pytest.approx(1400.0)
    assert out.liquidations == 1
    assert out.collateral_sold == pytest.approx(10.0)
    assert out.price_after_impact == pytest.approx(1400.0 * (1.0 - 10.0 * 0.0001))
    assert state.current_wave_liquidations == 1
    assert state.price_history == [2000.0, pytest.approx(1400.0)]


def test_wave_closes_on_first_empty_block():
    engine = CascadeEngine(LiquidationMechanism.TRADITIONAL)
    state = _state([Position(0, collateral=10.0, debt=14_000.0)])
    flat_path = np.full(6, 2000.0)
    rng = np.random.default_rng(0)

    engine.step(state, rng, price_path=flat_path)
    assert state.cascade_depth == 0
    assert state.current_wave_liquidations == 1

    state.block += 1
    engine.step(state, rng, price_path=flat_path)
    assert state.cascade_depth == 1
    assert state.current_wave_liquidations == 0
    assert state.consecutive_empty_blocks == 1

    state.block += 1
    engine.step(state, rng, price_path=flat_path)
    assert state.cascade_depth == 1
    assert state.consecutive_empty_blocks == 2


def test_stability_exit_with_no_positions():
    params = CascadeParams(num_positions=0)
    result = CascadeEngine(LiquidationMechanism.KEEPER_POOL, params).run(
        np.random.default_rng(0), scenario=PriceScenario.GRADUAL_DECLINE,
    )
    # First block index past stability_min_block ends the run
    assert result.blocks_to_stability == params.stability_min_block + 2
    assert result.cascade_depth == 0
    assert result.total_liquidations == 0
    assert result.bad_debt == 0.0
    assert result.profit_concentration == 0.0
    assert result.participation_rate == 0.0
    assert result.max_liquidations_per_block == 0


def test_hard_block_cap():
    params = CascadeParams(num_positions=0, max_blocks=3)
    result = CascadeEngine(LiquidationMechanism.TRADITIONAL, params).run(
        np.random.default_rng(0), scenario=PriceScenario.FLASH_CRASH,
    )
    assert result.blocks_to_stability == 3
    assert len(result.liquidations_per_block) == 3
    assert result.final_price == pytest.approx(1400.0)
    assert result.price_drop_pct == pytest.approx(30.0)


def test_flash_crash_keeper_pool_liquidates():
    result = run_once(
        LiquidationMechanism.KEEPER_POOL, PriceScenario.FLASH_CRASH, np.random.default_rng(2024),
    )
    assert result.total_liquidations > 0
    assert result.cascade_depth >= 1
    assert result.max_liquidations_per_block <= 10
    assert result.unallocated_profit == pytest.approx(result.total_keeper_profit * 3.0 / 7.0)


@pytest.mark.parametrize("mechanism", list(LiquidationMechanism))
@pytest.mark.parametrize("scenario", list(PriceScenario))
def test_run_invariants(mechanism, scenario):
    result = run_once(mechanism, scenario, np.random.default_rng(17))

    assert 0 <= result.cascade_depth <= result.blocks_to_stability
    assert 0.0 <= result.participation_rate <= 1.0
    assert 0.0 <= result.profit_concentration <= 1.0
    assert result.bad_debt >= 0.0
    assert result.final_price >= 100.0
    assert result.blocks_to_stability <= 100
    assert result.total_liquidations == sum(result.liquidations_per_block)
    assert len(result.liquidations_per_block) == result.blocks_to_stability
    if result.total_keeper_profit == 0.0:
        assert result.profit_concentration == 0.0


def test_run_is_deterministic_for_fixed_seed():
    out1 = run_once(LiquidationMechanism.KEEPER_POOL, PriceScenario.VOLATILE_CRASH, np.random.default_rng(99))
    out2 = run_once(LiquidationMechanism.KEEPER_POOL, PriceScenario.VOLATILE_CRASH, np.random.default_rng(99))
    assert out1 == out2


def test_price_path_run_follows_path():
    params = CascadeParams(num_positions=0, max_blocks=4)
    path = np.array([2000.0, 1800.0, 1900.0, 1500.0, 1500.0])
    result = CascadeEngine(LiquidationMechanism.TRADITIONAL, params).run(
        np.random.default_rng(0), price_path=path,
    )
    assert result.scenario is None
    np.testing.assert_allclose(result.price_history, path)


def test_run_requires_exactly_one_price_driver():
    engine = CascadeEngine(LiquidationMechanism.TRADITIONAL)
    with pytest.raises(ValueError, match="exactly one"):
        engine.run(np.random.default_rng(0))
    with pytest.raises(ValueError, match="exactly one"):
        engine.run(
            np.random.default_rng(0),
            scenario=PriceScenario.FLASH_CRASH,
            price_path=np.array([2000.0, 1000.0]),
        )


def test_price_path_guard_raises_on_invalid_input():
    engine = CascadeEngine(LiquidationMechanism.TRADITIONAL)
    with pytest.raises(ValueError, match="1D"):
        engine.run(np.random.default_rng(0), price_path=np.ones((2, 2)))
    with pytest.raises(ValueError, match="NaN"):
        engine.run(np.random.default_rng(0), price_path=np.array([2000.0, np.nan]))
    with pytest.raises(ValueError, match="positive"):
        engine.run(np.random.default_rng(0), price_path=np.array([2000.0, 0.0]))


def test_profit_concentration_top_quintile():
    profits = [100.0] + [0.0] * 9
    assert profit_concentration(profits) == pytest.approx(1.0)
    assert profit_concentration([10.0] * 10) == pytest.approx(0.2)
    assert profit_concentration([0.0] * 10) == 0.0
    assert profit_concentration([]) == 0.0


def test_participation_rate():
    assert participation_rate([0, 1, 3, 0]) == pytest.approx(0.5)
    assert participation_rate([]) == 0.0
