#!/usr/bin/env python3
"""
Backup SLA Compliance Report

For every protected machine, find its most recent completed restore point,
decide whether it completed inside the nightly backup window, and report the
share of machines that did.

Pipeline per server:
- backup window computed once (fatal on bad HH:MM settings, before any API call)
- exclusion lists loaded once
- jobs iterated in name order, restore points newest-first, folded into
  one record per machine
- detail table exported to CSV, summary appended to the history CSV and
  optionally to PostgreSQL
"""

import logging
import os
import sys
from datetime import datetime
from typing import Callable, Dict, List, Optional

import pandas as pd
import requests
from pydantic import ValidationError

# Add project root so the script also runs as `python src/backup_sla/sla_report.py`
sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), '../../')))

from src.backup_sla.aggregator import summarize
from src.backup_sla.classifier import RestorePointClassifier
from src.backup_sla.dedup import MostRecentDeduplicator
from src.backup_sla.exclusions import ExclusionIndex
from src.backup_sla.models import DETAIL_COLUMNS, BackupWindow, JobDescriptor, ServerReport
from src.backup_sla.window import InvalidTimeFormat, compute_backup_window
from src.common.config import SLAReportSettings, load_config, load_sla_settings
from src.common.veeam_client import VeeamAPIClient, VeeamAPIError, VeeamConnectionError

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger("backup_sla")


def process_job(job: JobDescriptor,
                catalog,
                classifier: RestorePointClassifier,
                exclusions: ExclusionIndex,
                dedup: MostRecentDeduplicator) -> Optional[int]:
    """
    Fold one job's restore points into the deduplicator.
    Returns the number of points accepted, or None when the job is excluded.
    Catalog errors propagate to the caller.
    """
    if exclusions.is_job_excluded_by_name(job.name):
        logger.info(f"Job '{job.name}' excluded by name")
        return None

    detail = catalog.resolve_job_detail(job)
    description = detail.description if detail else None
    if exclusions.is_job_excluded(job, description):
        logger.info(f"Job '{job.name}' excluded by pattern")
        return None

    accepted = 0
    for candidate in catalog.list_restore_points(job, description):
        if exclusions.is_vm_excluded(candidate.vm_name, candidate.vm_id) or \
                exclusions.matches_vm_pattern(candidate.vm_name):
            continue
        record = classifier.classify(candidate)
        if record is None:
            continue
        if dedup.offer(record):
            accepted += 1
    return accepted


def run_server_report(server: str,
                      catalog,
                      window: BackupWindow,
                      exclusions: ExclusionIndex,
                      settings: SLAReportSettings) -> ServerReport:
    """
    Evaluate one backup server. `catalog` must offer connect(), list_jobs(types),
    resolve_job_detail(job) and list_restore_points(job, description).
    Raises VeeamConnectionError when the server cannot be reached.
    """
    logger.info("=" * 80)
    logger.info(f"Backup SLA report for {server}")
    logger.info("=" * 80)

    catalog.connect()
    jobs = sorted(catalog.list_jobs(settings.job_types), key=lambda j: (j.name.lower(), j.name, j.id or ""))

    classifier = RestorePointClassifier(window)
    dedup = MostRecentDeduplicator(exclusions)
    report = ServerReport(server=server)

    for job in jobs:
        try:
            accepted = process_job(job, catalog, classifier, exclusions, dedup)
        except (VeeamAPIError, requests.exceptions.RequestException) as e:
            logger.warning(f"Skipping job '{job.name}': {e}")
            report.skipped_jobs.append(job.name)
            continue
        if accepted is not None:
            logger.info(f"Job '{job.name}': {accepted} restore points retained so far")

    report.records = dedup.finalize()
    report.summary = summarize(report.records, window, dedup.total_records, dedup.in_window_records)

    s = report.summary
    logger.info(f"  Restore points: {s.total_restore_points}, in window: {s.in_window_count}")
    logger.info(f"  SLA compliance: {s.compliance_percent}%")
    if report.skipped_jobs:
        logger.warning(f"  Skipped jobs: {', '.join(report.skipped_jobs)}")
    return report


def export_detail(report: ServerReport, path: str) -> str:
    """Write one row per retained restore point"""
    rows = [r.to_row() for r in report.records]
    df = pd.DataFrame(rows, columns=DETAIL_COLUMNS)
    os.makedirs(os.path.dirname(os.path.abspath(path)), exist_ok=True)
    df.to_csv(path, index=False)
    logger.info(f"Wrote {len(rows)} detail rows to {path}")
    return path


def append_history(report: ServerReport, path: str, run_time: datetime) -> str:
    """Append the summary row, writing the header only for a new file"""
    row = {"run_time": run_time, "server": report.server}
    row.update(report.summary.to_row())
    os.makedirs(os.path.dirname(os.path.abspath(path)), exist_ok=True)
    pd.DataFrame([row]).to_csv(path, mode="a", header=not os.path.exists(path), index=False)
    logger.info(f"Appended summary to {path}")
    return path


def write_outputs(report: ServerReport, settings: SLAReportSettings, run_time: datetime, config: Dict):
    safe_server = "".join(ch if ch.isalnum() or ch in "-_." else "_" for ch in report.server)
    detail_name = settings.detail_file_pattern.format(server=safe_server, timestamp=run_time.strftime("%Y%m%d_%H%M%S"))
    export_detail(report, os.path.join(settings.output_dir, detail_name))
    append_history(report, os.path.join(settings.output_dir, settings.history_file), run_time)

    if config.get('database', {}).get('enabled'):
        from src.database.db import store_sla_summary
        try:
            store_sla_summary(report.server, report.summary, run_time)
        except Exception as e:
            logger.error(f"Could not store summary for {report.server} in database: {e}")


def run(config: Dict = None,
        now: datetime = None,
        catalog_factory: Callable[[str], object] = None,
        write: bool = True) -> List[ServerReport]:
    """Run the report for every configured server, one after another"""
    config = config or load_config()
    settings = load_sla_settings(config)
    now = now or datetime.now()

    window = compute_backup_window(
        now,
        look_back_days=settings.look_back_days,
        window_start=settings.backup_window_start,
        window_end=settings.backup_window_end,
    )
    exclusions = ExclusionIndex.from_settings(settings)

    servers = config.get('veeam', {}).get('servers') or []
    if not servers:
        logger.error("No Veeam servers configured (set VEEAM_SERVER or veeam.servers)")
        return []

    if catalog_factory is None:
        catalog_factory = lambda server: VeeamAPIClient.from_config(server, config['veeam'])

    reports = []
    for server in servers:
        try:
            report = run_server_report(server, catalog_factory(server), window, exclusions, settings)
        except (VeeamConnectionError, VeeamAPIError) as e:
            logger.error(f"Report for {server} aborted: {e}")
            reports.append(ServerReport(server=server, error=str(e)))
            continue

        if write:
            write_outputs(report, settings, now, config)
        reports.append(report)

    return reports


def main():
    """Main execution function"""
    logger.info("=" * 80)
    logger.info("Starting Backup SLA Compliance Report")
    logger.info("=" * 80)

    try:
        reports = run()
    except InvalidTimeFormat as e:
        logger.error(f"Invalid backup window configuration: {e}")
        sys.exit(1)
    except ValidationError as e:
        logger.error(f"Invalid sla settings: {e}")
        sys.exit(1)

    failed = [r.server for r in reports if r.error]
    logger.info("=" * 80)
    for r in reports:
        if r.summary:
            logger.info(f"{r.server}: {r.summary.compliance_percent}% "
                        f"({r.summary.in_window_count}/{r.summary.total_restore_points})")
        else:
            logger.info(f"{r.server}: FAILED ({r.error})")
    logger.info("=" * 80)

    if failed or not reports:
        sys.exit(1)


if __name__ == "__main__":
    main()
