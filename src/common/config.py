"""
Configuration loading for the backup SLA report.
YAML file with built-in defaults; secrets and server names come from .env.
"""

import copy
import logging
import os
from typing import Any, Dict, List, Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = os.path.normpath(
    os.path.join(os.path.dirname(os.path.abspath(__file__)), "..", "backup_sla", "config.yaml")
)

DEFAULTS: Dict[str, Any] = {
    "veeam": {
        "servers": [],
        "port": 9419,
        "username": None,
        "password": None,
        "api_version": "1.1-rev1",
        "timeout": 60,
        "retries": 3,
        "verify_ssl": False,
    },
    "database": {
        "enabled": False,
        "host": "localhost",
        "port": 5432,
        "database": "dr365v_metrics",
        "user": "postgres",
        "password": None,
    },
    "sla": {
        "look_back_days": 1,
        "backup_window_start": "20:00",
        "backup_window_end": "07:00",
        "exclude_vms": None,
        "exclude_vms_source": None,
        "exclude_jobs": None,
        "exclude_jobs_source": None,
        "separator_char": ",",
        "job_types": ["Backup", "HyperVBackup", "WindowsAgentBackup", "LinuxAgentBackup"],
        "output_dir": "reports",
        "detail_file_pattern": "sla_detail_{server}_{timestamp}.csv",
        "history_file": "sla_history.csv",
    },
}


class SLAReportSettings(BaseModel):
    look_back_days: int = Field(default=1, ge=0)
    backup_window_start: str = "20:00"
    backup_window_end: str = "07:00"
    exclude_vms: Optional[str] = None
    exclude_vms_source: Optional[str] = None
    exclude_jobs: Optional[str] = None
    exclude_jobs_source: Optional[str] = None
    separator_char: str = Field(default=",", min_length=1, max_length=1)
    job_types: List[str] = Field(default_factory=lambda: list(DEFAULTS["sla"]["job_types"]))
    output_dir: str = "reports"
    detail_file_pattern: str = "sla_detail_{server}_{timestamp}.csv"
    history_file: str = "sla_history.csv"

    @field_validator("backup_window_start", "backup_window_end", mode="before")
    @classmethod
    def coerce_time(cls, v):
        # YAML reads an unquoted 20:00 as a sexagesimal int
        if isinstance(v, int):
            return f"{v // 60:02d}:{v % 60:02d}"
        return v


def _merge(base: Dict, override: Dict) -> Dict:
    merged = copy.deepcopy(base)
    for key, value in (override or {}).items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_config(config_path: str = None) -> Dict[str, Any]:
    """Load configuration from YAML, falling back to defaults, then apply .env overrides"""
    config_path = config_path or DEFAULT_CONFIG_PATH

    file_config = {}
    try:
        with open(config_path, "r") as f:
            file_config = yaml.safe_load(f) or {}
    except FileNotFoundError:
        logger.warning(f"Config file {config_path} not found, using defaults")

    config = _merge(DEFAULTS, file_config)

    load_dotenv()

    # Veeam
    if os.getenv("VEEAM_SERVER"):
        config["veeam"]["servers"] = [s.strip() for s in os.getenv("VEEAM_SERVER").split(",") if s.strip()]
    if os.getenv("VEEAM_USERNAME"): config["veeam"]["username"] = os.getenv("VEEAM_USERNAME")
    if os.getenv("VEEAM_PASSWORD"): config["veeam"]["password"] = os.getenv("VEEAM_PASSWORD")

    # Database
    if os.getenv("DB_HOST"): config["database"]["host"] = os.getenv("DB_HOST")
    if os.getenv("DB_PORT"): config["database"]["port"] = int(os.getenv("DB_PORT"))
    if os.getenv("DB_NAME"): config["database"]["database"] = os.getenv("DB_NAME")
    if os.getenv("DB_USER"): config["database"]["user"] = os.getenv("DB_USER")
    if os.getenv("DB_PASSWORD"): config["database"]["password"] = os.getenv("DB_PASSWORD")

    return config


def load_sla_settings(config: Dict[str, Any]) -> SLAReportSettings:
    return SLAReportSettings(**(config.get("sla") or {}))
