"""Purger data models."""

from purger.models.project import ProjectRecord, SizeCell, SizeState, SizeValue
from purger.models.config import CleanConfig, MissingAgePolicy, ScanConfig
from purger.models.clean_result import BatchReport, CleanOutcome, OutcomeKind
from purger.models.strategy import CleanStrategy, StrategyContext

__all__ = [
    "BatchReport",
    "CleanConfig",
    "CleanOutcome",
    "CleanStrategy",
    "MissingAgePolicy",
    "OutcomeKind",
    "ProjectRecord",
    "ScanConfig",
    "SizeCell",
    "SizeState",
    "SizeValue",
    "StrategyContext",
]
