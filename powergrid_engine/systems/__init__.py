"""Grid systems: cascade tracking, stability scoring and consumption throttling."""

from .brownout import (
    BrownoutModel,
    BrownoutState,
    DistrictPriority,
    EmergencyReserve,
    PowerTier,
    RedundancyReport,
    assess_redundancy,
    balance_load,
    classify_tier,
    tier_multiplier,
)
from .cascade import CascadeRecord, CascadeSeverity, CascadeTracker, classify_ratio, severity_penalty
from .consumption import Consumer, ConsumerKind, ConsumerManager
from .stability import (
    RiskLevel,
    StabilityAnalyzer,
    StabilitySnapshot,
    Vulnerability,
    assess,
    classify_risk,
    compute_score,
)

__all__ = [
    "BrownoutModel",
    "BrownoutState",
    "DistrictPriority",
    "EmergencyReserve",
    "PowerTier",
    "RedundancyReport",
    "assess_redundancy",
    "balance_load",
    "classify_tier",
    "tier_multiplier",
    "CascadeRecord",
    "CascadeSeverity",
    "CascadeTracker",
    "classify_ratio",
    "severity_penalty",
    "Consumer",
    "ConsumerKind",
    "ConsumerManager",
    "RiskLevel",
    "StabilityAnalyzer",
    "StabilitySnapshot",
    "Vulnerability",
    "assess",
    "classify_risk",
    "compute_score",
]
