"""
Risk metrics over loss distributions: nearest-rank VaR, tail CVaR, and
bad-debt / insolvency probabilities.

Losses are non-negative (bad debt), so the right tail is the risky one:
    VaR_p  = sorted[round((n - 1) * p)]
    CVaR_p = mean(sorted[ceil(n * p):])   (worst value if that tail is empty)
"""

import math
from dataclasses import dataclass

import numpy as np

from config.params import MONTE_CARLO


@dataclass
class RiskOutput:
    """Tail-risk results for one batch of losses."""
    var_95: float
    var_99: float
    var_999: float
    cvar_95: float
    cvar_99: float
    bad_debt_probability: float
    insolvency_probability: float
    mean_loss: float
    max_loss: float


def _validate_confidence(confidence: float) -> float:
    confidence = float(confidence)
    if not 0.0 <= confidence <= 1.0:
        raise ValueError(f"confidence must be in [0, 1], got {confidence}")
    return confidence


def _sorted(losses) -> np.ndarray:
    return np.sort(np.asarray(losses, dtype=float).ravel())


class RiskMetrics:
    """
    Compute VaR, CVaR and loss-frequency statistics from a batch of losses.

    Accepts any 1D sequence of per-run losses so the same statistics serve
    cascade runs and other liquidation-game outcomes alike.
    """

    def __init__(self, insolvency_threshold: float = MONTE_CARLO.insolvency_threshold):
        self.insolvency_threshold = insolvency_threshold

    @staticmethod
    def var(losses, confidence: float = 0.95) -> float:
        """Value at Risk: nearest-rank percentile of the loss distribution."""
        confidence = _validate_confidence(confidence)
        ordered = _sorted(losses)
        n = ordered.size
        if n == 0:
            return 0.0
        # Round half up, as a percentile rank
        idx = int(math.floor((n - 1) * confidence + 0.5))
        return float(ordered[min(idx, n - 1)])

    @staticmethod
    def cvar(losses, confidence: float = 0.95) -> float:
        """Conditional VaR (Expected Shortfall): mean loss at or beyond rank ceil(n*p)."""
        confidence = _validate_confidence(confidence)
        ordered = _sorted(losses)
        n = ordered.size
        if n == 0:
            return 0.0
        cutoff = int(math.ceil(n * confidence))
        tail = ordered[cutoff:]
        if tail.size == 0:
            return float(ordered[-1])
        return float(np.mean(tail))

    @staticmethod
    def exceedance_probability(losses, threshold: float = 0.0) -> float:
        """Fraction of outcomes strictly above `threshold`."""
        arr = np.asarray(losses, dtype=float)
        if arr.size == 0:
            return 0.0
        return float(np.mean(arr > threshold))

    def bad_debt_probability(self, losses) -> float:
        return self.exceedance_probability(losses, 0.0)

    def insolvency_probability(self, losses) -> float:
        return self.exceedance_probability(losses, self.insolvency_threshold)

    def tail_profile(self, losses, confidences=MONTE_CARLO.confidence_levels) -> dict:
        """VaR and CVaR at each requested confidence level, keyed by level."""
        return {
            float(c): {"var": self.var(losses, c), "cvar": self.cvar(losses, c)}
            for c in confidences
        }

    def compute_all(self, losses) -> RiskOutput:
        """Compute all risk metrics."""
        arr = np.asarray(losses, dtype=float)
        return RiskOutput(
            var_95=self.var(arr, 0.95),
            var_99=self.var(arr, 0.99),
            var_999=self.var(arr, 0.999),
            cvar_95=self.cvar(arr, 0.95),
            cvar_99=self.cvar(arr, 0.99),
            bad_debt_probability=self.bad_debt_probability(arr),
            insolvency_probability=self.insolvency_probability(arr),
            mean_loss=float(np.mean(arr)) if arr.size else 0.0,
            max_loss=float(np.max(arr)) if arr.size else 0.0,
        )
