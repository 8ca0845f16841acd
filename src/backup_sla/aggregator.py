"""SLA summary aggregation over the finalized record set."""

import logging
from typing import Optional, Sequence

from src.backup_sla.models import BackupWindow, RestorePointRecord, SLASummary

logger = logging.getLogger(__name__)


def compliance_percent(in_window: int, total: int) -> float:
    if total <= 0:
        return 0.0
    return round(in_window / total * 100, 2)


def summarize(records: Sequence[RestorePointRecord],
              window: BackupWindow,
              total_records: Optional[int] = None,
              in_window_records: Optional[int] = None) -> SLASummary:
    """
    Build the summary from the deduplicator's running counters.
    Without counters the records are counted directly; with counters the
    count is only a consistency check.
    """
    counted_total = len(records)
    counted_in_window = sum(1 for r in records if r.in_backup_window)

    total = counted_total if total_records is None else total_records
    in_window = counted_in_window if in_window_records is None else in_window_records

    if total != counted_total:
        logger.error(f"Running total {total} disagrees with {counted_total} finalized records")
    if in_window != counted_in_window:
        logger.error(f"Running in-window count {in_window} disagrees with {counted_in_window} finalized records")

    return SLASummary(
        window_start=window.start,
        window_end=window.end,
        total_restore_points=total,
        in_window_count=in_window,
        compliance_percent=compliance_percent(in_window, total),
    )
