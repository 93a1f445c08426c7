"""
Per-column board statistics, recomputed on every read.

Time in column runs from the card's latest move into its current column,
or from its creation when it never moved.
"""
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Mapping, Optional

from .schema import Card, Column, ColumnStats, utc_now


def compute_stats(
    columns: Iterable[Column],
    cards: Iterable[Card],
    now: Optional[datetime] = None,
    entered_at: Optional[Mapping[str, datetime]] = None,
) -> List[ColumnStats]:
    """One ColumnStats per column, in board order.

    entered_at maps card_id to the moment the card entered its current column.
    """
    now = now or utc_now()
    entered_at = entered_at or {}
    ordered = sorted(columns, key=lambda c: (c.position, c.column_id))
    counts: Dict[str, List[int]] = {c.column_id: [0, 0, 0] for c in ordered}
    dwell: Dict[str, timedelta] = {c.column_id: timedelta(0) for c in ordered}
    for card in cards:
        bucket = counts.get(card.column_id)
        if bucket is None:
            continue
        bucket[0] += 1
        if card.is_high_priority():
            bucket[1] += 1
        if card.is_overdue(now):
            bucket[2] += 1
        since = entered_at.get(card.card_id) or card.created_at
        dwell[card.column_id] += max(now - since, timedelta(0))
    return [
        ColumnStats(
            column_id=c.column_id,
            column_name=c.name,
            card_count=counts[c.column_id][0],
            high_priority_count=counts[c.column_id][1],
            overdue_count=counts[c.column_id][2],
            avg_time_in_column=(
                dwell[c.column_id] / counts[c.column_id][0] if counts[c.column_id][0] else timedelta(0)
            ),
        )
        for c in ordered
    ]


def summarize(stats: Iterable[ColumnStats]) -> Dict[str, int]:
    """Board-wide totals for dashboard tiles."""
    totals = {"total": 0, "high_priority": 0, "overdue": 0}
    for s in stats:
        totals["total"] += s.card_count
        totals["high_priority"] += s.high_priority_count
        totals["overdue"] += s.overdue_count
    return totals
