"""
Collateral price-path generation for Monte Carlo stress testing.

Models:
- GBM: S(t+dt) = S(t) * exp((μ - σ²/2)*dt + σ*√dt*Z)
- Jump-diffusion (Merton): GBM increment + Σ_{i=1}^{N} J_i, N ~ Poisson(λ*dt)
- GARCH(1,1): σ²_t = ω + α*(σ_{t-1}*Z)² + β*σ²_{t-1}, ω = σ̄²(1 - α - β)
- Historical bootstrap: replay of daily returns from three crash episodes
"""

import warnings
from enum import Enum

import numpy as np

from config.params import PRICE_PATH, PricePathConfig


class PriceModel(Enum):
    GBM = "gbm"
    JUMP_DIFFUSION = "jump_diffusion"
    GARCH = "garch"
    HISTORICAL_MAR_2020 = "historical_mar_2020"
    HISTORICAL_MAY_2021 = "historical_may_2021"
    HISTORICAL_NOV_2022 = "historical_nov_2022"

    @property
    def label(self) -> str:
        return _MODEL_LABELS[self]

    @property
    def is_historical(self) -> bool:
        return self in HISTORICAL_DAY_RETURNS


_MODEL_LABELS = {
    PriceModel.GBM: "GBM (baseline)",
    PriceModel.JUMP_DIFFUSION: "Jump-Diffusion",
    PriceModel.GARCH: "GARCH",
    PriceModel.HISTORICAL_MAR_2020: "Historical: Mar 2020",
    PriceModel.HISTORICAL_MAY_2021: "Historical: May 2021",
    PriceModel.HISTORICAL_NOV_2022: "Historical: Nov 2022",
}

# Daily returns of the replayed crash windows (14 days each)
HISTORICAL_DAY_RETURNS = {
    # March 2020 COVID crash
    PriceModel.HISTORICAL_MAR_2020: np.array([
        -0.08, -0.12, -0.25, -0.15, 0.05, -0.10, -0.08,
        0.15, 0.08, -0.05, 0.03, -0.02, 0.10, 0.05,
    ]),
    # May 2021 crypto crash
    PriceModel.HISTORICAL_MAY_2021: np.array([
        -0.05, -0.08, -0.12, -0.30, -0.10, 0.08, -0.15,
        -0.05, 0.10, 0.05, -0.03, 0.02, -0.05, 0.08,
    ]),
    # November 2022 FTX collapse
    PriceModel.HISTORICAL_NOV_2022: np.array([
        -0.03, -0.05, -0.15, -0.20, -0.10, -0.08, 0.05,
        -0.05, -0.03, 0.02, -0.02, 0.01, -0.01, 0.03,
    ]),
}


class PricePathGenerator:
    """
    Single-path price generator for one model.

    Stateless across calls: every call to generate() starts from
    config.initial_price with a fresh volatility state and consumes only the
    generator passed in. Prices are floored at config.price_floor after each
    step.
    """

    def __init__(self, model: PriceModel, config: PricePathConfig = PRICE_PATH):
        self.model = PriceModel(model)
        self.config = config

    def _gbm_return(self, sigma: float, z: float) -> float:
        dt = self.config.dt
        return (self.config.drift - 0.5 * sigma ** 2) * dt + sigma * np.sqrt(dt) * z

    def _jump_component(self, rng: np.random.Generator) -> float:
        cfg = self.config
        n_jumps = int(rng.poisson(cfg.jump_intensity * cfg.dt))
        if n_jumps == 0:
            return 0.0
        return float(np.sum(rng.normal(cfg.jump_mean, cfg.jump_std, n_jumps)))

    def _garch_vol(self, prev_vol: float, z: float) -> float:
        cfg = self.config
        omega = cfg.volatility ** 2 * (1.0 - cfg.garch_alpha - cfg.garch_beta)
        shock = prev_vol * z
        vol = np.sqrt(omega + cfg.garch_alpha * shock ** 2 + cfg.garch_beta * prev_vol ** 2)
        return float(np.clip(vol, cfg.garch_vol_min, cfg.garch_vol_max))

    def _historical_return(self, step: int, rng: np.random.Generator) -> float:
        cfg = self.config
        day_returns = HISTORICAL_DAY_RETURNS[self.model]
        # Cycle the table when the run outlasts the episode
        step_idx = step % (len(day_returns) * cfg.steps_per_day)
        day_idx = step_idx // cfg.steps_per_day
        noise = rng.standard_normal() * cfg.intraday_noise
        return float(day_returns[day_idx] / cfg.steps_per_day + noise)

    def generate(self, rng: np.random.Generator) -> np.ndarray:
        """
        Generate one price path.

        Returns array of shape (steps + 1,); element 0 is config.initial_price.
        """
        cfg = self.config
        prices = np.empty(cfg.steps + 1, dtype=float)
        prices[0] = cfg.initial_price
        price = cfg.initial_price
        current_vol = cfg.volatility
        floor_hits = 0

        for t in range(cfg.steps):
            if self.model is PriceModel.GBM:
                z = rng.standard_normal()
                price *= np.exp(self._gbm_return(cfg.volatility, z))
            elif self.model is PriceModel.JUMP_DIFFUSION:
                z = rng.standard_normal()
                diffusion = self._gbm_return(cfg.volatility, z)
                price *= np.exp(diffusion + self._jump_component(rng))
            elif self.model is PriceModel.GARCH:
                z = rng.standard_normal()
                current_vol = self._garch_vol(current_vol, z)
                price *= np.exp(self._gbm_return(current_vol, z))
            else:
                price *= 1.0 + self._historical_return(t, rng)

            if price < cfg.price_floor:
                floor_hits += 1
                price = cfg.price_floor
            prices[t + 1] = price

        if floor_hits:
            warnings.warn(
                f"{self.model.label} path hit price floor {cfg.price_floor} "
                f"on {floor_hits} steps. This represents an extreme tail event.",
                stacklevel=2,
            )
        return prices


def generate_price_path(model: PriceModel, config: PricePathConfig = PRICE_PATH,
                        rng: np.random.Generator | None = None) -> np.ndarray:
    """Generate one price path of length config.steps + 1 under `model`."""
    if rng is None:
        rng = np.random.default_rng()
    return PricePathGenerator(model, config).generate(rng)
