"""
Simulation parameters for CDP liquidation cascade stress testing.
All defaults reproduce the reference cascade and Monte Carlo setups.
Environment overrides are read by load_params() (optionally from a .env file).
"""

import os
from dataclasses import dataclass, fields
from pathlib import Path

import numpy as np
from dotenv import load_dotenv

STEPS_PER_YEAR = 365.0 * 24.0 * 60.0 * 5.0
# ~5 blocks per minute of real time


@dataclass(frozen=True)
class CascadeParams:
    """Position pool, keeper pool and market-impact parameters for one run."""
    num_positions: int = 500
    num_keepers: int = 50
    initial_price: float = 2000.0
    # Reference collateral price at block 0
    liquidation_penalty: float = 0.13
    min_collateral_ratio: float = 1.5
    # 150% minimum
    liquidations_per_block: int = 10
    max_blocks: int = 100
    price_impact_per_unit: float = 0.0001
    # 0.01% per unit of collateral sold
    price_floor: float = 100.0
    stability_window: int = 5
    # Consecutive empty blocks that end a run...
    stability_min_block: int = 10
    # ...once the block index is past this value
    keeper_pool_share: float = 0.70
    # Remaining 30% is never paid out
    traditional_profit_threshold: float = 50.0
    # Only if profit > gas cost
    keeper_pool_profit_threshold: float = 10.0
    # Lower threshold because of shared profit
    collateral_min: float = 1.0
    collateral_max: float = 20.0
    initial_ratio_min: float = 1.5
    initial_ratio_max: float = 2.5
    keeper_capital_min: float = 10_000.0
    keeper_capital_max: float = 100_000.0

    def __post_init__(self):
        if self.num_positions < 0 or self.num_keepers < 0:
            raise ValueError("num_positions and num_keepers must be >= 0")
        if self.initial_price <= 0.0 or self.price_floor <= 0.0:
            raise ValueError("initial_price and price_floor must be > 0")
        if self.min_collateral_ratio <= 0.0:
            raise ValueError("min_collateral_ratio must be > 0")
        if self.liquidations_per_block < 0 or self.max_blocks < 0:
            raise ValueError("liquidations_per_block and max_blocks must be >= 0")
        if self.stability_window < 1:
            raise ValueError("stability_window must be >= 1")
        if not 0.0 <= self.keeper_pool_share <= 1.0:
            raise ValueError("keeper_pool_share must be in [0, 1]")
        if not 0.0 < self.collateral_min <= self.collateral_max:
            raise ValueError("collateral range must satisfy 0 < min <= max")
        if not 0.0 < self.initial_ratio_min <= self.initial_ratio_max:
            raise ValueError("initial ratio range must satisfy 0 < min <= max")
        if not 0.0 <= self.keeper_capital_min <= self.keeper_capital_max:
            raise ValueError("keeper capital range must satisfy 0 <= min <= max")


@dataclass(frozen=True)
class PricePathConfig:
    """Stochastic price-path parameters (annualized drift/vol, per-year jumps)."""
    steps: int = 100
    initial_price: float = 2000.0
    drift: float = -0.5
    # Bearish scenario
    volatility: float = 1.5
    # 150% annual vol (crypto-like)
    jump_intensity: float = 5.0
    # Expected jumps per year
    jump_mean: float = -0.15
    jump_std: float = 0.10
    price_floor: float = 50.0
    garch_alpha: float = 0.10
    garch_beta: float = 0.85
    garch_vol_min: float = 0.5
    garch_vol_max: float = 3.0
    steps_per_year: float = STEPS_PER_YEAR
    steps_per_day: int = 10
    # Historical replays spread each day across this many steps
    intraday_noise: float = 0.02

    def __post_init__(self):
        if self.steps < 0:
            raise ValueError("steps must be >= 0")
        if not np.isfinite(self.volatility) or self.volatility <= 0.0:
            raise ValueError("volatility must be a finite value > 0")
        if not np.isfinite(self.drift):
            raise ValueError("drift must be finite")
        if self.initial_price <= 0.0 or self.price_floor <= 0.0:
            raise ValueError("initial_price and price_floor must be > 0")
        if self.jump_intensity < 0.0 or self.jump_std < 0.0:
            raise ValueError("jump_intensity and jump_std must be >= 0")
        if self.garch_alpha < 0.0 or self.garch_beta < 0.0 or self.garch_alpha + self.garch_beta >= 1.0:
            raise ValueError("GARCH requires alpha, beta >= 0 and alpha + beta < 1")
        if not 0.0 < self.garch_vol_min <= self.garch_vol_max:
            raise ValueError("GARCH vol band must satisfy 0 < min <= max")
        if self.steps_per_year <= 0.0 or self.steps_per_day < 1:
            raise ValueError("steps_per_year must be > 0 and steps_per_day >= 1")
        if self.intraday_noise < 0.0:
            raise ValueError("intraday_noise must be >= 0")

    @property
    def dt(self) -> float:
        return 1.0 / self.steps_per_year


@dataclass(frozen=True)
class MonteCarloParams:
    """Monte Carlo batch and tail-risk settings."""
    runs: int = 10_000
    seed: int = 42
    confidence_levels: tuple = (0.95, 0.99, 0.999)
    insolvency_threshold: float = 100_000.0
    # Bad debt above this counts as system insolvency

    def __post_init__(self):
        if self.runs < 0:
            raise ValueError("runs must be >= 0")
        if any(not 0.0 <= c <= 1.0 for c in self.confidence_levels):
            raise ValueError("confidence levels must lie in [0, 1]")
        if self.insolvency_threshold < 0.0:
            raise ValueError("insolvency_threshold must be >= 0")


def _env_int(name, default):
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _env_float(name, default):
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        return default


def _env_overrides(cls, prefix: str, base) -> dict:
    """Collect PREFIX_FIELD environment overrides for a params dataclass."""
    overrides = {}
    for f in fields(cls):
        default = getattr(base, f.name)
        env_name = f"{prefix}_{f.name.upper()}"
        if isinstance(default, bool) or isinstance(default, tuple):
            continue
        if isinstance(default, int):
            value = _env_int(env_name, default)
        elif isinstance(default, float):
            value = _env_float(env_name, default)
        else:
            continue
        if value != default:
            overrides[f.name] = value
    return overrides


def load_params(env_file: str | Path | None = None) -> dict:
    """
    Load parameter blocks with environment overrides.

    Variables are named after the dataclass fields, e.g. CASCADE_NUM_KEEPERS,
    PRICE_PATH_VOLATILITY, MONTE_CARLO_RUNS. Malformed values are ignored.
    Invalid (but well-formed) values raise ValueError from validation.
    """
    if env_file is not None:
        load_dotenv(env_file)
    else:
        load_dotenv()

    cascade = CascadeParams(**_env_overrides(CascadeParams, "CASCADE", CascadeParams()))
    price_path = PricePathConfig(**_env_overrides(PricePathConfig, "PRICE_PATH", PricePathConfig()))
    monte_carlo = MonteCarloParams(**_env_overrides(MonteCarloParams, "MONTE_CARLO", MonteCarloParams()))

    return {
        "cascade": cascade,
        "price_path": price_path,
        "monte_carlo": monte_carlo,
    }


# Convenient default instances (used throughout codebase)
CASCADE = CascadeParams()
PRICE_PATH = PricePathConfig()
MONTE_CARLO = MonteCarloParams()
