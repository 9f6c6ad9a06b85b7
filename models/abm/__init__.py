"""Agent-based liquidation cascade package."""

from .agents import (
    KeeperPoolPolicy,
    LiquidationMechanism,
    LiquidationOutcome,
    LiquidationPolicy,
    TraditionalPolicy,
    willing_to_liquidate,
)
from .engine import CascadeEngine, participation_rate, profit_concentration
from .types import CascadeBlockOutput, CascadeResult, CascadeRunState

__all__ = [
    "CascadeEngine",
    "CascadeRunState",
    "CascadeBlockOutput",
    "CascadeResult",
    "LiquidationMechanism",
    "LiquidationOutcome",
    "LiquidationPolicy",
    "TraditionalPolicy",
    "KeeperPoolPolicy",
    "willing_to_liquidate",
    "profit_concentration",
    "participation_rate",
]
