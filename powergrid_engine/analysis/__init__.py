"""Run recording and summary metrics."""

from .metrics import (
    blackout_share,
    mean_stability,
    min_stability,
    peak_cascades,
    risk_fraction,
    summary_statistics,
    worst_risk,
)
from .recorder import GridRecorder

__all__ = [
    "GridRecorder",
    "blackout_share",
    "mean_stability",
    "min_stability",
    "peak_cascades",
    "risk_fraction",
    "summary_statistics",
    "worst_risk",
]
