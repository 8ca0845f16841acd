"""
Most-recent-per-machine deduplication.

Folds classified restore points from every job of a run into one record per
machine (the one with the latest completion time) while keeping the total and
in-window counters current, so no second pass over the records is needed.
Single writer: one instance belongs to one run.
"""

import dataclasses
import logging
from typing import Dict, List, Optional

from src.backup_sla.exclusions import ExclusionIndex
from src.backup_sla.models import RestorePointRecord

logger = logging.getLogger(__name__)


class MostRecentDeduplicator:
    """Keeps the newest restore point per machine name"""

    def __init__(self, exclusions: Optional[ExclusionIndex] = None):
        self.exclusions = exclusions
        self._records: Dict[str, RestorePointRecord] = {}
        self.total_records = 0
        self.in_window_records = 0
        self.replaced = 0
        self.discarded = 0
        self._finalized = False

    def __len__(self) -> int:
        return len(self._records)

    def offer(self, record: RestorePointRecord) -> bool:
        """Fold one record in. Returns True when it is now the retained record."""
        if self._finalized:
            raise RuntimeError("Deduplicator already finalized")

        # Exclusions were applied while iterating; this re-check keeps the map consistent
        if self.exclusions is not None and self.exclusions.is_candidate_excluded(record.candidate):
            logger.debug(f"Excluded restore point for {record.vm_name} reached dedup, dropping")
            return False

        key = record.vm_name
        existing = self._records.get(key)

        if existing is None:
            self._records[key] = record
            self._count(record, +1)
            return True

        if existing.completion_time >= record.completion_time:
            self.discarded += 1
            return False

        self._count(existing, -1)
        self._records[key] = record
        self._count(record, +1)
        self.replaced += 1
        logger.debug(
            f"{key}: {record.completion_time} from '{record.job_name}' replaces "
            f"{existing.completion_time} from '{existing.job_name}'"
        )
        return True

    def _count(self, record: RestorePointRecord, delta: int):
        self.total_records += delta
        if record.in_backup_window:
            self.in_window_records += delta

    def finalize(self) -> List[RestorePointRecord]:
        """Sort by machine name and assign sequence ids 1..N"""
        self._finalized = True
        ordered = sorted(self._records.values(), key=lambda r: (r.vm_name.lower(), r.vm_name))
        finalized = [dataclasses.replace(r, sequence_id=i) for i, r in enumerate(ordered, start=1)]
        logger.info(
            f"Retained {len(finalized)} restore points "
            f"({self.in_window_records} in window, {self.replaced} replaced, {self.discarded} discarded)"
        )
        return finalized
