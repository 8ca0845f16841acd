"""
Backup SLA MCP Server
=====================

Exposes the backup SLA compliance report through MCP tools for AI assistants.

- run_backup_sla_report: runs the report against the configured Veeam servers
- get_backup_window: shows the window the next run would be evaluated against
- get_backup_sla_history: reads stored summaries from PostgreSQL
"""

import json
import logging
import os
import sys
from datetime import datetime
from typing import Optional

from dotenv import load_dotenv
from mcp.server.fastmcp import FastMCP
from pydantic import ValidationError

load_dotenv()

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))
from src.backup_sla.sla_report import run
from src.backup_sla.window import InvalidTimeFormat, compute_backup_window
from src.common.config import load_config, load_sla_settings
from src.database.db import fetch_sla_history

# =============================================================================
# CONFIGURATION
# =============================================================================

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger("backup_sla_mcp")

# Initialize MCP Server
mcp = FastMCP("backup-sla")


def _report_to_dict(report) -> dict:
    result = {
        "server": report.server,
        "status": "ERROR" if report.error else "OK",
    }
    if report.error:
        result["error"] = report.error
        return result
    result["summary"] = report.summary.to_row()
    result["skipped_jobs"] = report.skipped_jobs
    result["outside_window"] = [
        {"vm_name": r.vm_name, "job_name": r.job_name, "completion_time": r.completion_time}
        for r in report.records if not r.in_backup_window
    ]
    return result


@mcp.tool()
async def run_backup_sla_report(look_back_days: Optional[int] = None) -> str:
    """
    Runs the backup SLA compliance report for every configured Veeam server.

    PRESENTATION STYLE GUIDE:
    ------------------------
    # Backup SLA Compliance
    ## [Server]: [Compliance]% ([In Window]/[Total] restore points)
    - Window: [Start] -> [End]
    - List machines outside the window, then any skipped jobs.

    Args:
        look_back_days: Override the configured look-back (days before today the window starts).

    Returns:
        JSON string with one summary per server.
    """
    try:
        config = load_config()
        if look_back_days is not None:
            config['sla']['look_back_days'] = look_back_days
        reports = run(config=config)
        return json.dumps({
            "generated_at": datetime.now().isoformat(),
            "servers": [_report_to_dict(r) for r in reports]
        }, indent=2, default=str)
    except (InvalidTimeFormat, ValidationError) as e:
        return json.dumps({"status": "ERROR", "message": f"Invalid sla settings: {e}"})
    except Exception as e:
        logger.error(f"Error in run_backup_sla_report: {e}", exc_info=True)
        return json.dumps({"status": "ERROR", "error": str(e), "message": "Backup SLA report failed"})


@mcp.tool()
async def get_backup_window() -> str:
    """
    Shows the backup window a report started now would use.

    Returns:
        JSON string with window start and end.
    """
    try:
        settings = load_sla_settings(load_config())
        window = compute_backup_window(
            datetime.now(),
            look_back_days=settings.look_back_days,
            window_start=settings.backup_window_start,
            window_end=settings.backup_window_end,
        )
        return json.dumps({"window_start": window.start, "window_end": window.end}, default=str)
    except (InvalidTimeFormat, ValidationError) as e:
        return json.dumps({"status": "ERROR", "message": str(e)})


@mcp.tool()
async def get_backup_sla_history(limit: int = 30, server: str = None) -> str:
    """
    Retrieves stored SLA summaries, newest first.

    Args:
        limit: Maximum number of rows. Default: 30
        server: Only rows for this backup server.

    Returns:
        JSON string containing history rows.
    """
    try:
        rows = fetch_sla_history(limit=limit, server=server)
        if not rows:
            return json.dumps({
                "status": "NO_DATA",
                "message": "No SLA history found. Run: python src/backup_sla/sla_report.py with database.enabled"
            })
        for row in rows:
            if row.get('compliance_percent') is not None:
                row['compliance_percent'] = float(row['compliance_percent'])
        return json.dumps({"count": len(rows), "history": rows}, indent=2, default=str)
    except Exception as e:
        logger.error(f"Error in get_backup_sla_history: {e}", exc_info=True)
        return json.dumps({
            "status": "ERROR",
            "error": str(e),
            "message": "Failed to retrieve SLA history from database"
        })


if __name__ == "__main__":
    logger.info("=" * 70)
    logger.info("Backup SLA MCP Server")
    logger.info("=" * 70)
    mcp.run()
