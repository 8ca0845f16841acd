from datetime import datetime, timedelta

import pytest

from src.backup_sla.models import (
    BackupWindow,
    JobDescriptor,
    RestorePointCandidate,
    RestorePointType,
    StandardRepository,
)

NOW = datetime(2025, 1, 10, 9, 0)
WINDOW = BackupWindow(start=datetime(2025, 1, 9, 20, 0), end=datetime(2025, 1, 10, 7, 0))


@pytest.fixture
def window():
    return WINDOW


@pytest.fixture
def make_candidate():
    def _make(vm_name="vm1", completion=datetime(2025, 1, 10, 2, 0), job_name="Job A",
              vm_id=None, creation=None, point_type=RestorePointType.FULL, **kwargs):
        if creation is None and completion is not None:
            creation = completion - timedelta(minutes=30)
        fields = dict(
            vm_name=vm_name,
            vm_id=vm_id,
            job_name=job_name,
            job_description=None,
            job_type="Backup",
            repository=StandardRepository(name="Repo1", type="WinLocal", path="D:\\Backups"),
            point_type=point_type,
            creation_time=creation,
            completion_time=completion,
        )
        fields.update(kwargs)
        return RestorePointCandidate(**fields)
    return _make


@pytest.fixture
def make_job():
    def _make(name="Job A", job_id=None, job_type="Backup", description=None):
        return JobDescriptor(id=job_id or name.lower().replace(" ", "-"), name=name,
                             job_type=job_type, description=description)
    return _make
