"""
Backup SLA - Data Model
Typed records shared by the window, exclusion, classification and
aggregation stages of the SLA compliance report.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import List, Optional, Tuple


class RestorePointType(Enum):
    FULL = "Full"
    INCREMENT = "Increment"
    SYNTHETIC = "Synthetic"

    @classmethod
    def from_api(cls, value: Optional[str]) -> "RestorePointType":
        """Map the platform's point type label, defaulting to FULL"""
        if not value:
            return cls.FULL
        label = str(value).lower()
        if label.startswith("incr"):
            return cls.INCREMENT
        if "synthetic" in label:
            return cls.SYNTHETIC
        return cls.FULL


@dataclass(frozen=True)
class BackupWindow:
    """Absolute backup window for one run (start may fall after end)"""
    start: datetime
    end: datetime

    def contains(self, moment: datetime) -> bool:
        return self.start <= moment <= self.end


@dataclass(frozen=True)
class VmExclusionRule:
    name: str
    id: Optional[str] = None


@dataclass(frozen=True)
class JobDescriptor:
    """Backup job as listed by the catalog"""
    id: str
    name: str
    job_type: str
    description: Optional[str] = None


# --- Repository variants ---

@dataclass(frozen=True)
class Extent:
    name: str
    path: Optional[str] = None


@dataclass(frozen=True)
class StandardRepository:
    name: str
    type: str
    path: Optional[str] = None

    @property
    def type_label(self) -> str:
        return self.type

    @property
    def storage_path(self) -> Optional[str]:
        return self.path


@dataclass(frozen=True)
class ScaleOutRepository:
    name: str
    extents: Tuple[Extent, ...] = ()

    @property
    def type_label(self) -> str:
        return "ScaleOut"

    @property
    def storage_path(self) -> Optional[str]:
        paths = [e.path for e in self.extents if e.path]
        return "; ".join(paths) if paths else None


@dataclass(frozen=True)
class RestorePointCandidate:
    """Raw restore point descriptor produced by the backup catalog"""
    vm_name: str
    vm_id: Optional[str]
    job_name: str
    job_description: Optional[str]
    job_type: str
    repository: Optional[object]  # StandardRepository | ScaleOutRepository
    point_type: RestorePointType
    creation_time: Optional[datetime]
    completion_time: Optional[datetime]
    approx_size: int = 0
    data_size: int = 0
    backup_size: int = 0
    dedup_ratio: Optional[float] = None
    compr_ratio: Optional[float] = None
    path_fragments: Tuple[str, ...] = ()


DETAIL_COLUMNS = [
    "id", "vm_name", "vm_id", "job_name", "job_description", "job_type",
    "repository_name", "repository_type", "point_type", "creation_time",
    "completion_time", "duration", "in_backup_window", "approx_size_gb",
    "data_read_gb", "data_size_gb", "backup_size_gb", "dedup_ratio",
    "compr_ratio", "reduction", "storage_path",
]


@dataclass
class RestorePointRecord:
    """Enriched restore point retained for the report"""
    candidate: RestorePointCandidate
    completion_time: datetime
    duration: Optional[timedelta]
    data_read: int
    dedup_ratio: float
    compr_ratio: float
    reduction: float
    in_backup_window: bool
    sequence_id: Optional[int] = None

    @property
    def vm_name(self) -> str:
        return self.candidate.vm_name

    @property
    def vm_id(self) -> Optional[str]:
        return self.candidate.vm_id

    @property
    def job_name(self) -> str:
        return self.candidate.job_name

    def to_row(self) -> dict:
        """Flatten into a detail-table row"""
        c = self.candidate
        repo = c.repository
        return {
            "id": self.sequence_id,
            "vm_name": c.vm_name,
            "vm_id": c.vm_id,
            "job_name": c.job_name,
            "job_description": c.job_description,
            "job_type": c.job_type,
            "repository_name": repo.name if repo else None,
            "repository_type": repo.type_label if repo else None,
            "point_type": c.point_type.value,
            "creation_time": c.creation_time,
            "completion_time": self.completion_time,
            "duration": format_duration(self.duration),
            "in_backup_window": self.in_backup_window,
            "approx_size_gb": _to_gb(c.approx_size),
            "data_read_gb": _to_gb(self.data_read),
            "data_size_gb": _to_gb(c.data_size),
            "backup_size_gb": _to_gb(c.backup_size),
            "dedup_ratio": round(self.dedup_ratio, 2),
            "compr_ratio": round(self.compr_ratio, 2),
            "reduction": round(self.reduction, 2),
            "storage_path": join_path(c.path_fragments) or (repo.storage_path if repo else None),
        }


@dataclass(frozen=True)
class SLASummary:
    window_start: datetime
    window_end: datetime
    total_restore_points: int
    in_window_count: int
    compliance_percent: float

    def to_row(self) -> dict:
        return {
            "window_start": self.window_start,
            "window_end": self.window_end,
            "total_restore_points": self.total_restore_points,
            "in_window_count": self.in_window_count,
            "compliance_percent": self.compliance_percent,
        }


@dataclass
class ServerReport:
    """Outcome of one server's run"""
    server: str
    summary: Optional[SLASummary] = None
    records: List[RestorePointRecord] = field(default_factory=list)
    skipped_jobs: List[str] = field(default_factory=list)
    error: Optional[str] = None


def format_duration(duration: Optional[timedelta]) -> str:
    if duration is None:
        return "unknown"
    total = int(duration.total_seconds())
    hours, rest = divmod(total, 3600)
    minutes, seconds = divmod(rest, 60)
    return f"{hours}:{minutes:02d}:{seconds:02d}"


def join_path(fragments: Tuple[str, ...]) -> Optional[str]:
    """Join storage path fragments with the separator they already use"""
    if not fragments:
        return None
    sep = "\\" if any("\\" in f for f in fragments) else "/"
    return sep.join(f.rstrip("\\/") for f in fragments[:-1]) + (sep if len(fragments) > 1 else "") + fragments[-1]


def _to_gb(size_bytes: int) -> float:
    return round((size_bytes or 0) / (1024 ** 3), 2)
