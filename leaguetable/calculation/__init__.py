"""Deterministic table calculation."""

from leaguetable.calculation.engine import (
    POINTS_PER_DRAW,
    POINTS_PER_WIN,
    CalculationResult,
    SideTotals,
    TableCalculationEngine,
    check_table_integrity,
    counts_for_table,
    fold_matches,
    rank_table,
    ranking_key,
)

__all__ = [
    "POINTS_PER_DRAW",
    "POINTS_PER_WIN",
    "CalculationResult",
    "SideTotals",
    "TableCalculationEngine",
    "check_table_integrity",
    "counts_for_table",
    "fold_matches",
    "rank_table",
    "ranking_key",
]
