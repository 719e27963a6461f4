"""Compare two reconciliation runs along a grouping dimension."""

from typing import Dict, List, Sequence

from aggregation import KEY_SELECTORS, aggregate_by, summarize
from models import DiffEntry, DiffStatus, GroupTotals, ReconciliationRow


EPSILON = 0.0001

DIMENSIONS = ("client", "employee", "date")


def build_diff(base: Dict[str, GroupTotals], target: Dict[str, GroupTotals]) -> List[DiffEntry]:
    """
    Diff two keyed aggregates (base = run A, target = run B).

    Returns:
        DiffEntry list, largest absolute variance swing first
    """
    entries: List[DiffEntry] = []
    for key in set(base) | set(target):
        a = base.get(key)
        b = target.get(key)
        delta = GroupTotals(
            key=key,
            care=(b.care if b else 0.0) - (a.care if a else 0.0),
            hha=(b.hha if b else 0.0) - (a.hha if a else 0.0),
        )

        if a and not b:
            status = DiffStatus.REMOVED
        elif b and not a:
            status = DiffStatus.ADDED
        elif (
            abs(delta.care) > EPSILON
            or abs(delta.hha) > EPSILON
            or abs(delta.variance) > EPSILON
        ):
            status = DiffStatus.CHANGED
        else:
            status = DiffStatus.UNCHANGED

        entries.append(DiffEntry(key=key, status=status, delta=delta, a=a, b=b))

    # Key as tie-breaker keeps the order stable across calls
    entries.sort(key=lambda entry: entry.key)
    entries.sort(key=lambda entry: abs(entry.delta.variance), reverse=True)
    return entries


def compare_runs(
    rows_a: Sequence[ReconciliationRow],
    rows_b: Sequence[ReconciliationRow],
    dimension: str = "client",
) -> List[DiffEntry]:
    """
    Compare two runs grouped by client, employee or service date.

    Raises:
        ValueError: For an unknown dimension
    """
    if dimension not in KEY_SELECTORS:
        raise ValueError(f"Unknown comparison dimension: {dimension}")
    selector = KEY_SELECTORS[dimension]
    return build_diff(aggregate_by(rows_a, selector), aggregate_by(rows_b, selector))


def compare_all(rows_a: Sequence[ReconciliationRow], rows_b: Sequence[ReconciliationRow]) -> dict:
    """Per-run summaries plus diffs along every dimension, JSON-ready."""
    return {
        "summaryA": summarize(rows_a).to_dict(),
        "summaryB": summarize(rows_b).to_dict(),
        "diffs": {
            dimension: [entry.to_dict() for entry in compare_runs(rows_a, rows_b, dimension)]
            for dimension in DIMENSIONS
        },
    }
