"""
Veeam Backup & Replication REST client (shared library)
Lists backup jobs and their restore points for the SLA report.

Restore points come back sorted newest-completion-first, then by machine name.
"""

import logging
import re
import time
from datetime import datetime, timedelta
from typing import Dict, List, Optional

import requests
import urllib3

from src.backup_sla.models import (
    Extent,
    JobDescriptor,
    RestorePointCandidate,
    RestorePointType,
    ScaleOutRepository,
    StandardRepository,
)

# Suppress InsecureRequestWarning for self-signed certificates (common in Veeam labs)
urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)

logger = logging.getLogger(__name__)

_FRACTION = re.compile(r"(\.\d{6})\d+")


class VeeamConnectionError(RuntimeError):
    """The backup server could not be reached or refused our credentials"""


class VeeamAPIError(RuntimeError):
    """A catalog query failed after all retries"""


def parse_veeam_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp into naive local time"""
    if not value:
        return None
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    text = _FRACTION.sub(r"\1", text)
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        logger.debug(f"Unparseable timestamp '{value}'")
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone().replace(tzinfo=None)
    # Veeam reports never-completed runs as 0001-01-01
    if parsed.year <= 1900:
        return None
    return parsed


def sort_newest_first(candidates: List[RestorePointCandidate]) -> List[RestorePointCandidate]:
    """Newest completion first, ties by machine name, undated points last"""
    by_name = sorted(candidates, key=lambda c: (c.vm_name or "").lower())
    dated = [c for c in by_name if c.completion_time is not None]
    undated = [c for c in by_name if c.completion_time is None]
    dated.sort(key=lambda c: c.completion_time, reverse=True)
    return dated + undated


class VeeamAPIClient:
    """Handles all Veeam REST API communications"""

    def __init__(self, api_url: str, username: str, password: str,
                 api_version: str = "1.1-rev1", timeout: int = 60,
                 retries: int = 3, verify_ssl: bool = False):
        self.api_url = api_url.rstrip('/')
        self.username = username
        self.password = password
        self.api_version = api_version
        self.timeout = timeout
        self.retries = retries
        self.verify_ssl = verify_ssl
        self.token = None
        self.token_expiry = None
        self._repositories = None

    @classmethod
    def from_config(cls, server: str, veeam_config: Dict) -> "VeeamAPIClient":
        if server.startswith(("http://", "https://")):
            api_url = server
        else:
            api_url = f"https://{server}:{veeam_config.get('port', 9419)}"
        return cls(
            api_url=api_url,
            username=veeam_config.get('username'),
            password=veeam_config.get('password'),
            api_version=veeam_config.get('api_version', "1.1-rev1"),
            timeout=veeam_config.get('timeout', 60),
            retries=veeam_config.get('retries', 3),
            verify_ssl=veeam_config.get('verify_ssl', False),
        )

    def authenticate(self) -> bool:
        """Obtain OAuth 2.0 bearer token"""
        try:
            payload = {
                "grant_type": "password",
                "username": self.username,
                "password": self.password
            }
            response = requests.post(
                f"{self.api_url}/api/oauth2/token",
                data=payload,
                headers={
                    "Content-Type": "application/x-www-form-urlencoded",
                    "x-api-version": self.api_version
                },
                timeout=30,
                verify=self.verify_ssl
            )
            response.raise_for_status()

            data = response.json()
            self.token = data['access_token']
            expires_in = data.get('expires_in', 3600)
            self.token_expiry = datetime.now() + timedelta(seconds=expires_in)

            logger.info(f"Successfully authenticated with Veeam API at {self.api_url}")
            return True

        except (requests.exceptions.RequestException, KeyError, ValueError) as e:
            logger.error(f"Authentication failed: {e}")
            return False

    def connect(self):
        """Authenticate or raise VeeamConnectionError"""
        if not self.authenticate():
            raise VeeamConnectionError(f"Could not authenticate with {self.api_url}")

    def _ensure_authenticated(self):
        """Check token validity and refresh if needed"""
        if not self.token or not self.token_expiry:
            self.authenticate()
        elif datetime.now() > self.token_expiry - timedelta(minutes=5):
            logger.info("Token expiring soon, refreshing...")
            self.authenticate()

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.token}",
            "Accept": "application/json",
            "x-api-version": self.api_version
        }

    def _make_request(self, endpoint: str, params: Dict = None) -> Dict:
        """
        GET an endpoint. Re-authenticates on 401, backs off on 429, 5xx and
        transport errors. Raises VeeamAPIError on a client error or once
        retries are exhausted.
        """
        self._ensure_authenticated()
        url = f"{self.api_url}{endpoint}"
        last_error = None

        for attempt in range(1, self.retries + 1):
            try:
                response = requests.get(url, headers=self._headers(), params=params,
                                        timeout=self.timeout, verify=self.verify_ssl)
            except requests.exceptions.RequestException as e:
                last_error = e
                wait = 10 * attempt
                logger.warning(f"{endpoint}: {e} (attempt {attempt}/{self.retries})")
            else:
                status = response.status_code
                if status == 401:
                    logger.warning("Token rejected (401), re-authenticating")
                    self.authenticate()
                    last_error = "HTTP 401"
                    continue
                if status != 429 and status < 500:
                    try:
                        response.raise_for_status()
                        return response.json()
                    except (requests.exceptions.HTTPError, ValueError) as e:
                        raise VeeamAPIError(f"{endpoint}: {e}") from e
                last_error = f"HTTP {status}"
                wait = 60 if status == 429 else 30 * attempt
                logger.warning(f"{endpoint}: HTTP {status} (attempt {attempt}/{self.retries})")

            if attempt < self.retries:
                time.sleep(wait)

        raise VeeamAPIError(f"All {self.retries} attempts failed for {endpoint}: {last_error}")

    def _get_paged(self, endpoint: str, params: Dict = None, limit: int = 200) -> List[Dict]:
        """Collect every page of a list endpoint"""
        items = []
        offset = 0
        params = dict(params or {})

        while True:
            params.update({"skip": offset, "limit": limit})
            data = self._make_request(endpoint, params)
            page = data.get("data", [])
            items.extend(page)

            total = data.get("pagination", {}).get("total", len(items))
            if offset + len(page) >= total or len(page) == 0:
                break
            offset += limit

        return items

    def _get_paged_or_empty(self, endpoint: str, params: Dict = None) -> List[Dict]:
        """Optional enrichment data: log and carry on without it"""
        try:
            return self._get_paged(endpoint, params)
        except VeeamAPIError as e:
            logger.warning(f"Continuing without {endpoint}: {e}")
            return []

    # ------------------------------------------------------------------
    # Catalog
    # ------------------------------------------------------------------

    def list_jobs(self, job_types: Optional[List[str]] = None) -> List[JobDescriptor]:
        """Retrieve backup jobs whose type is in the allow-list"""
        data = self._get_paged("/api/v1/jobs")

        allowed = {t.lower() for t in job_types} if job_types else None
        jobs = []
        for j in data:
            job_type = j.get('type', 'Unknown')
            if allowed is not None and job_type.lower() not in allowed:
                continue
            jobs.append(JobDescriptor(
                id=j.get('id'),
                name=j.get('name', ''),
                job_type=job_type,
                description=j.get('description')
            ))

        logger.info(f"Retrieved {len(jobs)} jobs ({len(data) - len(jobs)} filtered by type)")
        return jobs

    def resolve_job_detail(self, job: JobDescriptor) -> Optional[JobDescriptor]:
        try:
            data = self._make_request(f"/api/v1/jobs/{job.id}")
        except VeeamAPIError as e:
            logger.warning(f"No detail available for job {job.name}: {e}")
            return None
        if not data:
            return None
        return JobDescriptor(
            id=data.get('id', job.id),
            name=data.get('name', job.name),
            job_type=data.get('type', job.job_type),
            description=data.get('description')
        )

    def get_repositories(self) -> Dict[str, object]:
        """Repository inventory keyed by id, fetched once per client"""
        if self._repositories is not None:
            return self._repositories

        repos = {}
        standard = self._get_paged_or_empty("/api/v1/backupInfrastructure/repositories")
        for r in standard:
            path = r.get('path') or (r.get('repository') or {}).get('path')
            repos[r.get('id')] = StandardRepository(name=r.get('name', ''), type=r.get('type', 'Unknown'), path=path)

        scale_out = self._get_paged_or_empty("/api/v1/backupInfrastructure/scaleOutRepositories")
        for r in scale_out:
            tier = r.get('performanceTier') or {}
            extents = []
            for e in tier.get('performanceExtents', []):
                backing = repos.get(e.get('id'))
                extents.append(Extent(
                    name=e.get('name') or (backing.name if backing else ''),
                    path=backing.storage_path if backing else None
                ))
            repos[r.get('id')] = ScaleOutRepository(name=r.get('name', ''), extents=tuple(extents))

        logger.info(f"Retrieved {len(repos)} repositories")
        self._repositories = repos
        return repos

    def _session_end_times(self, job: JobDescriptor) -> Dict[str, datetime]:
        sessions = self._get_paged_or_empty("/api/v1/sessions", {"jobIdFilter": job.id})
        end_times = {}
        for s in sessions:
            end = parse_veeam_timestamp(s.get('endTime'))
            if end is not None:
                end_times[s.get('id')] = end
        return end_times

    def list_restore_points(self, job: JobDescriptor, description: Optional[str] = None) -> List[RestorePointCandidate]:
        """All restore points of a job, newest completion first"""
        backups = self._get_paged("/api/v1/backups", {"jobIdFilter": job.id})

        end_times = self._session_end_times(job)
        repositories = self.get_repositories()
        candidates = []

        for backup in backups:
            points = self._get_paged("/api/v1/restorePoints", {"backupIdFilter": backup.get('id')})
            files = self._get_paged_or_empty(f"/api/v1/backups/{backup.get('id')}/backupFiles")
            file_by_point = {}
            for f in files:
                for point_id in f.get('restorePointIds', []):
                    file_by_point.setdefault(point_id, f)

            repository = repositories.get(backup.get('repositoryId'))
            for p in points:
                candidates.append(self._to_candidate(
                    job, description, p, file_by_point.get(p.get('id')), end_times, repository
                ))

        logger.info(f"Job {job.name}: {len(candidates)} restore points")
        return sort_newest_first(candidates)

    @staticmethod
    def _to_candidate(job: JobDescriptor, description: Optional[str], point: Dict,
                      backup_file: Optional[Dict], end_times: Dict[str, datetime],
                      repository) -> RestorePointCandidate:
        backup_file = backup_file or {}
        completion = parse_veeam_timestamp(point.get('completionTime')) or end_times.get(point.get('sessionId'))
        fragments = tuple(x for x in (
            repository.storage_path if repository else None,
            backup_file.get('name')
        ) if x)

        return RestorePointCandidate(
            vm_name=point.get('name', ''),
            vm_id=point.get('objectId') or point.get('platformId'),
            job_name=job.name,
            job_description=description,
            job_type=job.job_type,
            repository=repository,
            point_type=RestorePointType.from_api(point.get('type')),
            creation_time=parse_veeam_timestamp(point.get('creationTime')),
            completion_time=completion,
            approx_size=int(point.get('approxSize') or backup_file.get('dataSize') or 0),
            data_size=int(backup_file.get('dataSize') or 0),
            backup_size=int(backup_file.get('backupSize') or 0),
            dedup_ratio=backup_file.get('dedupRatio'),
            compr_ratio=backup_file.get('compressRatio'),
            path_fragments=fragments,
        )
