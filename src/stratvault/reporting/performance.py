"""Performance summary of a vault's share-price history.

Key Concepts:
- Total return = last price / first price - 1
- Annualized return compounds the total return over the elapsed years
- Max drawdown = largest fall from a running peak, as a fraction
"""

from dataclasses import dataclass
from typing import Dict, List, Sequence, Tuple

import numpy as np

from ..engine.fees import SECONDS_PER_YEAR


@dataclass
class PerformanceSummary:
    """Return and risk figures over a price history."""
    start: float
    end: float
    total_return: float
    annualized_return: float
    max_drawdown: float
    observations: int

    def to_dict(self) -> Dict[str, float]:
        return {
            'start': self.start,
            'end': self.end,
            'total_return': self.total_return,
            'annualized_return': self.annualized_return,
            'max_drawdown': self.max_drawdown,
            'observations': self.observations,
        }


def compute_max_drawdown(prices: np.ndarray) -> float:
    """Largest peak-to-trough fall, as a fraction of the peak."""
    if prices.size == 0:
        return 0.0
    running_peak = np.maximum.accumulate(prices)
    drawdowns = 1.0 - prices / running_peak
    return float(np.max(drawdowns))


def summarize_history(history: Sequence[Tuple[float, int]]) -> PerformanceSummary:
    """
    Summarize a share-price history.

    Args:
        history: (time in seconds, share price) pairs in time order

    Returns:
        PerformanceSummary (all zero for fewer than two points)
    """
    if len(history) < 2:
        t = history[0][0] if history else 0.0
        return PerformanceSummary(t, t, 0.0, 0.0, 0.0, len(history))

    times = np.array([t for t, _ in history], dtype=float)
    prices = np.array([p for _, p in history], dtype=float)

    total_return = prices[-1] / prices[0] - 1.0
    years = (times[-1] - times[0]) / SECONDS_PER_YEAR
    if years > 0 and total_return > -1.0:
        annualized = (1.0 + total_return) ** (1.0 / years) - 1.0
    else:
        annualized = 0.0

    return PerformanceSummary(
        start=float(times[0]),
        end=float(times[-1]),
        total_return=float(total_return),
        annualized_return=float(annualized),
        max_drawdown=compute_max_drawdown(prices),
        observations=len(history),
    )


def period_returns(history: Sequence[Tuple[float, int]]) -> List[float]:
    """Return between consecutive observations."""
    prices = np.array([p for _, p in history], dtype=float)
    if prices.size < 2:
        return []
    return list(np.diff(prices) / prices[:-1])
