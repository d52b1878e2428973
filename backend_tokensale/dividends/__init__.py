"""
Dividend engine: eligibility snapshots, pro-rata calculation, distribution
records and claims, projections.
"""

from backend_tokensale.dividends.calculator import calculate_dividends
from backend_tokensale.dividends.models import (
    ClaimResult,
    Distribution,
    DistributionStatus,
    DividendEntry,
    DividendInfo,
    DividendShare,
    EligibilitySnapshot,
    HoldingRecord,
    Provenance,
)
from backend_tokensale.dividends.projection import DividendProjection, project_dividends
from backend_tokensale.dividends.service import DividendService
from backend_tokensale.dividends.snapshot import SnapshotBuilder, fold_purchases
from backend_tokensale.dividends.tracker import DistributionTracker

__all__ = [
    "ClaimResult",
    "DistributionTracker",
    "Distribution",
    "DistributionStatus",
    "DividendEntry",
    "DividendInfo",
    "DividendProjection",
    "DividendService",
    "DividendShare",
    "EligibilitySnapshot",
    "HoldingRecord",
    "Provenance",
    "SnapshotBuilder",
    "calculate_dividends",
    "fold_purchases",
    "project_dividends",
]
