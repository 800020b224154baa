"""Reporting: exports and performance summaries."""

from .export import events_frame, export_csv, export_json, price_history_frame, vault_snapshot
from .performance import PerformanceSummary, compute_max_drawdown, period_returns, summarize_history

__all__ = [
    "events_frame",
    "export_csv",
    "export_json",
    "price_history_frame",
    "vault_snapshot",
    "PerformanceSummary",
    "compute_max_drawdown",
    "period_returns",
    "summarize_history",
]
