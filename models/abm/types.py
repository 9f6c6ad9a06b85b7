"""Typed dataclasses for cascade run state and outputs."""

from __future__ import annotations

from dataclasses import dataclass, field

from models.position_model import Keeper, Position
from models.stress_tests import PriceScenario

from .agents import LiquidationMechanism


@dataclass
class CascadeRunState:
    """Mutable state of one in-progress cascade run."""

    positions: list[Position]
    keepers: list[Keeper]
    price: float
    block: int = 0
    cascade_depth: int = 0
    current_wave_liquidations: int = 0
    consecutive_empty_blocks: int = 0
    total_liquidations: int = 0
    total_keeper_profit: float = 0.0
    unallocated_profit: float = 0.0
    price_history: list[float] = field(default_factory=list)
    liquidations_per_block: list[int] = field(default_factory=list)

    def close_wave(self) -> None:
        """End the current wave; a wave with liquidations adds one level of depth."""
        if self.current_wave_liquidations > 0:
            self.cascade_depth += 1
        self.current_wave_liquidations = 0


@dataclass(frozen=True)
class CascadeBlockOutput:
    """Outcome of a single block."""

    block: int
    price_after_shock: float
    price_after_impact: float
    liquidations: int
    collateral_sold: float
    skipped_no_keeper: int
    keeper_profit_paid: float


@dataclass(frozen=True)
class CascadeResult:
    """Immutable snapshot of a terminated run."""

    mechanism: LiquidationMechanism
    scenario: PriceScenario | None
    cascade_depth: int
    total_liquidations: int
    bad_debt: float
    blocks_to_stability: int
    final_price: float
    price_drop_pct: float
    profit_concentration: float
    participation_rate: float
    unliquidated_underwater: int
    max_liquidations_per_block: int
    total_keeper_profit: float = 0.0
    unallocated_profit: float = 0.0
    price_history: tuple[float, ...] = ()
    liquidations_per_block: tuple[int, ...] = ()
