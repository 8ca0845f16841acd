"""
Restore point classification
Turns one catalog candidate into an enriched record, or rejects it.
"""

import logging
from typing import Optional

from src.backup_sla.models import (
    BackupWindow,
    RestorePointCandidate,
    RestorePointRecord,
    RestorePointType,
)

logger = logging.getLogger(__name__)


def normalize_ratio(value: Optional[float]) -> float:
    """
    Convert a reported 'times smaller' ratio into percent retained.
    Values <= 1 and missing values are treated as the neutral ratio 1.
    """
    if value is None:
        return 1.0
    try:
        value = float(value)
    except (TypeError, ValueError):
        return 1.0
    if value > 1:
        return 100.0 / value
    return 1.0


class RestorePointClassifier:
    """Classifies candidates against one backup window"""

    def __init__(self, window: BackupWindow):
        self.window = window

    def classify(self, candidate: RestorePointCandidate) -> Optional[RestorePointRecord]:
        completion = candidate.completion_time
        if completion is None:
            return None

        # Completed after the window closed: caller moves on to older points
        if completion > self.window.end:
            return None

        duration = None
        if candidate.creation_time is not None:
            duration = completion - candidate.creation_time
            if duration.total_seconds() < 0:
                logger.debug(f"Negative duration for {candidate.vm_name} in {candidate.job_name}, reporting unknown")
                duration = None

        if candidate.point_type is RestorePointType.INCREMENT:
            data_read = candidate.data_size or 0
        else:
            data_read = candidate.approx_size or 0

        dedup = normalize_ratio(candidate.dedup_ratio)
        compr = normalize_ratio(candidate.compr_ratio)

        return RestorePointRecord(
            candidate=candidate,
            completion_time=completion,
            duration=duration,
            data_read=data_read,
            dedup_ratio=dedup,
            compr_ratio=compr,
            reduction=dedup * compr,
            in_backup_window=self.window.contains(completion),
        )


def classify_restore_point(candidate: RestorePointCandidate, window: BackupWindow) -> Optional[RestorePointRecord]:
    return RestorePointClassifier(window).classify(candidate)
