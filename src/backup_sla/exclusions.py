"""
Exclusion index for VMs and jobs.

Two independent mechanisms, either of which excludes a restore point:
- exact lists (VM name with optional VM id, job names) read from a file or URL
- substring wildcards (`*pattern*`) matched against VM names and job name/description
"""

import fnmatch
import logging
import os
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Set

import requests

from src.backup_sla.models import JobDescriptor, RestorePointCandidate, VmExclusionRule

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WildcardPattern:
    """Case-insensitive `*core*` glob"""
    pattern: str

    @classmethod
    def parse(cls, text: Optional[str]) -> Optional["WildcardPattern"]:
        if text is None:
            return None
        core = text.strip().strip("*")
        if not core:
            return None
        return cls(f"*{core.lower()}*")

    def matches(self, value: Optional[str]) -> bool:
        if not value:
            return False
        return fnmatch.fnmatchcase(value.lower(), self.pattern)


def load_list_source(source: Optional[str], timeout: int = 30) -> List[str]:
    """
    Read exclusion lines from a local file or an http(s) URL.
    An unavailable source is logged and treated as empty.
    """
    if not source:
        return []

    if source.lower().startswith(("http://", "https://")):
        try:
            response = requests.get(source, timeout=timeout)
            response.raise_for_status()
            lines = response.text.splitlines()
        except requests.exceptions.RequestException as e:
            logger.warning(f"Exclusion list {source} unavailable, treating as empty: {e}")
            return []
    else:
        if not os.path.exists(source):
            logger.warning(f"Exclusion list {source} not found, treating as empty")
            return []
        try:
            with open(source, "r", encoding="utf-8-sig") as f:
                lines = f.read().splitlines()
        except (OSError, UnicodeDecodeError) as e:
            logger.warning(f"Exclusion list {source} unreadable, treating as empty: {e}")
            return []

    logger.info(f"Loaded {len(lines)} lines from exclusion list {source}")
    return lines


def parse_vm_rules(lines: Iterable[str], separator: str = ",") -> Dict[str, VmExclusionRule]:
    """Parse `name` / `name<sep>id` lines, first rule per name wins"""
    rules: Dict[str, VmExclusionRule] = {}
    for line in lines:
        if not line or not line.strip():
            continue
        name, _, vm_id = line.partition(separator)
        name = name.strip()
        vm_id = vm_id.strip() or None
        if not name:
            continue
        key = name.lower()
        if key in rules:
            logger.debug(f"Duplicate VM exclusion for '{name}' ignored")
            continue
        rules[key] = VmExclusionRule(name=name, id=vm_id)
    return rules


def parse_job_names(lines: Iterable[str]) -> Set[str]:
    return {line.strip().lower() for line in lines if line and line.strip()}


class ExclusionIndex:
    """O(1) exclusion lookups built once per run"""

    def __init__(self,
                 vm_rules: Optional[Dict[str, VmExclusionRule]] = None,
                 job_names: Optional[Set[str]] = None,
                 vm_pattern: Optional[WildcardPattern] = None,
                 job_pattern: Optional[WildcardPattern] = None):
        self._vm_rules = dict(vm_rules or {})
        self._job_names = frozenset(job_names or ())
        self.vm_pattern = vm_pattern
        self.job_pattern = job_pattern

    @classmethod
    def build(cls,
              vm_pattern: Optional[str] = None,
              vm_lines: Iterable[str] = (),
              job_pattern: Optional[str] = None,
              job_lines: Iterable[str] = (),
              separator: str = ",") -> "ExclusionIndex":
        index = cls(
            vm_rules=parse_vm_rules(vm_lines, separator),
            job_names=parse_job_names(job_lines),
            vm_pattern=WildcardPattern.parse(vm_pattern),
            job_pattern=WildcardPattern.parse(job_pattern),
        )
        logger.info(
            f"Exclusions: {len(index._vm_rules)} VM rules, {len(index._job_names)} job names, "
            f"VM pattern={index.vm_pattern.pattern if index.vm_pattern else None}, "
            f"job pattern={index.job_pattern.pattern if index.job_pattern else None}"
        )
        return index

    @classmethod
    def from_settings(cls, settings) -> "ExclusionIndex":
        """Build from an SLAReportSettings, reading both list sources"""
        return cls.build(
            vm_pattern=settings.exclude_vms,
            vm_lines=load_list_source(settings.exclude_vms_source),
            job_pattern=settings.exclude_jobs,
            job_lines=load_list_source(settings.exclude_jobs_source),
            separator=settings.separator_char,
        )

    def is_job_excluded_by_name(self, name: Optional[str]) -> bool:
        return bool(name) and name.lower() in self._job_names

    def is_vm_excluded(self, name: Optional[str], vm_id: Optional[str] = None) -> bool:
        if not name:
            return False
        rule = self._vm_rules.get(name.lower())
        if rule is None:
            return False
        if rule.id is None:
            return True
        return vm_id is not None and vm_id.lower() == rule.id.lower()

    def matches_vm_pattern(self, name: Optional[str]) -> bool:
        return self.vm_pattern is not None and self.vm_pattern.matches(name)

    def matches_job_pattern(self, name: Optional[str], description: Optional[str] = None) -> bool:
        if self.job_pattern is None:
            return False
        return self.job_pattern.matches(name) or self.job_pattern.matches(description)

    def is_job_excluded(self, job: JobDescriptor, description: Optional[str] = None) -> bool:
        """`description` is the resolved job detail description; None when detail is unavailable"""
        return self.is_job_excluded_by_name(job.name) or self.matches_job_pattern(job.name, description)

    def is_candidate_excluded(self, candidate: RestorePointCandidate) -> bool:
        if self.is_job_excluded_by_name(candidate.job_name):
            return True
        if self.matches_job_pattern(candidate.job_name, candidate.job_description):
            return True
        return self.is_vm_excluded(candidate.vm_name, candidate.vm_id) or self.matches_vm_pattern(candidate.vm_name)
