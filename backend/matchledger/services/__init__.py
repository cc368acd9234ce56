"""Application services: validation, stat aggregation and the match ledger."""

from .validation import (
    MatchValidationError,
    RejectionReason,
    ValidationError,
    validate_match_input,
)
from .periods import PeriodIds, current_periods, resolve_periods
from .increments import Increment, MatchFacts, compute_increments
from .aggregation import AggregationEngine, run_in_transaction
from .streaks import StreakMaintainer
from .ledger import LedgerService, MatchPage
from .backfill import BackfillError, BackfillJob, BackfillResult, run_backfill

__all__ = [
    "MatchValidationError",
    "RejectionReason",
    "ValidationError",
    "validate_match_input",
    "PeriodIds",
    "current_periods",
    "resolve_periods",
    "Increment",
    "MatchFacts",
    "compute_increments",
    "AggregationEngine",
    "run_in_transaction",
    "StreakMaintainer",
    "LedgerService",
    "MatchPage",
    "BackfillError",
    "BackfillJob",
    "BackfillResult",
    "run_backfill",
]
