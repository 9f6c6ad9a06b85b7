"""
Monte Carlo stress testing of liquidation mechanisms.

Each price model is mapped to the cascade scenario with the closest shape
(GBM/GARCH → Volatile Crash, Jump-Diffusion → Flash Crash, historical
replays → Black Swan) and a batch of independent cascade runs is reduced to
tail-risk statistics over bad debt. With path_driven=True the generated price
path itself drives each run instead of the mapped scenario.
"""

import logging
from dataclasses import dataclass, field, replace

import numpy as np

from config.params import CASCADE, MONTE_CARLO, PRICE_PATH, CascadeParams, MonteCarloParams, PricePathConfig
from models.abm.agents import LiquidationMechanism
from models.abm.engine import CascadeEngine
from models.abm.types import CascadeResult
from models.liquidation_cascade import spawn_generators
from models.price_simulation import PriceModel, PricePathGenerator
from models.risk_metrics import RiskMetrics
from models.stress_tests import PriceScenario

LOGGER = logging.getLogger(__name__)

MODEL_SCENARIOS = {
    PriceModel.GBM: PriceScenario.VOLATILE_CRASH,
    PriceModel.GARCH: PriceScenario.VOLATILE_CRASH,
    PriceModel.JUMP_DIFFUSION: PriceScenario.FLASH_CRASH,
    PriceModel.HISTORICAL_MAR_2020: PriceScenario.BLACK_SWAN,
    PriceModel.HISTORICAL_MAY_2021: PriceScenario.BLACK_SWAN,
    PriceModel.HISTORICAL_NOV_2022: PriceScenario.BLACK_SWAN,
}


@dataclass
class MonteCarloResult:
    """Outcome distribution and bad-debt tail statistics for one batch."""
    model: PriceModel
    mechanism: LiquidationMechanism
    scenario: PriceScenario | None
    runs: int
    bad_debts: np.ndarray
    price_drops: np.ndarray
    liquidation_counts: np.ndarray
    participation_rates: np.ndarray
    var_95: float
    var_99: float
    var_999: float
    cvar_95: float
    cvar_99: float
    bad_debt_probability: float
    insolvency_probability: float
    mean_bad_debt: float
    max_bad_debt: float
    tail: dict = field(default_factory=dict)

    def bad_debt_improvement(self, baseline: "MonteCarloResult") -> float:
        """
        Percentage reduction of mean bad debt relative to `baseline`.

        -100 when only this batch has bad debt, 0 when neither has any.
        """
        if baseline.mean_bad_debt > 0.0:
            return (1.0 - self.mean_bad_debt / baseline.mean_bad_debt) * 100.0
        if self.mean_bad_debt > 0.0:
            return -100.0
        return 0.0


def scenario_for_model(model: PriceModel) -> PriceScenario:
    return MODEL_SCENARIOS[PriceModel(model)]


def summarize_runs(model: PriceModel, mechanism: LiquidationMechanism,
                   scenario: PriceScenario | None, results: list[CascadeResult],
                   mc_params: MonteCarloParams = MONTE_CARLO) -> MonteCarloResult:
    """Reduce a list of cascade results to a MonteCarloResult."""
    bad_debts = np.array([r.bad_debt for r in results], dtype=float)
    metrics = RiskMetrics(insolvency_threshold=mc_params.insolvency_threshold)
    risk = metrics.compute_all(bad_debts)

    return MonteCarloResult(
        model=PriceModel(model),
        mechanism=LiquidationMechanism(mechanism),
        scenario=scenario,
        runs=len(results),
        bad_debts=bad_debts,
        price_drops=np.array([r.price_drop_pct for r in results], dtype=float),
        liquidation_counts=np.array([r.total_liquidations for r in results], dtype=int),
        participation_rates=np.array([r.participation_rate for r in results], dtype=float),
        var_95=risk.var_95,
        var_99=risk.var_99,
        var_999=risk.var_999,
        cvar_95=risk.cvar_95,
        cvar_99=risk.cvar_99,
        bad_debt_probability=risk.bad_debt_probability,
        insolvency_probability=risk.insolvency_probability,
        mean_bad_debt=risk.mean_loss,
        max_bad_debt=risk.max_loss,
        tail=metrics.tail_profile(bad_debts, mc_params.confidence_levels),
    )


def run_monte_carlo(
    model: PriceModel,
    mechanism: LiquidationMechanism,
    runs: int = MONTE_CARLO.runs,
    seed: int | None = None,
    *,
    path_driven: bool = False,
    params: CascadeParams = CASCADE,
    price_config: PricePathConfig = PRICE_PATH,
    mc_params: MonteCarloParams = MONTE_CARLO,
) -> MonteCarloResult:
    """
    Run `runs` independent cascades for one price model and mechanism.

    seed=None draws fresh entropy; pass a seed to reproduce a batch.
    """
    model = PriceModel(model)
    engine = CascadeEngine(mechanism, params)
    generators = spawn_generators(runs, seed)

    if path_driven:
        scenario = None
        path_config = replace(price_config, steps=params.max_blocks, initial_price=params.initial_price)
        path_generator = PricePathGenerator(model, path_config)
        results = [
            engine.run(rng, price_path=path_generator.generate(rng))
            for rng in generators
        ]
    else:
        scenario = scenario_for_model(model)
        results = [engine.run(rng, scenario=scenario) for rng in generators]

    out = summarize_runs(model, engine.mechanism, scenario, results, mc_params)
    LOGGER.info(
        "monte carlo %s/%s: runs=%d mean_bad_debt=%.2f var_99=%.2f p_insolvency=%.4f",
        model.value, engine.mechanism.value, out.runs,
        out.mean_bad_debt, out.var_99, out.insolvency_probability,
    )
    return out


def compare_mechanisms(
    model: PriceModel,
    runs: int = MONTE_CARLO.runs,
    seed: int | None = None,
    **kwargs,
) -> tuple[MonteCarloResult, MonteCarloResult]:
    """
    (traditional, keeper_pool) batches for one price model.

    With a fixed seed both mechanisms see the same position and keeper pools.
    """
    traditional = run_monte_carlo(model, LiquidationMechanism.TRADITIONAL, runs, seed, **kwargs)
    keeper_pool = run_monte_carlo(model, LiquidationMechanism.KEEPER_POOL, runs, seed, **kwargs)
    return traditional, keeper_pool
