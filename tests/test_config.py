import pytest
from pydantic import ValidationError

from src.common.config import SLAReportSettings, load_config, load_sla_settings


def test_defaults_when_file_missing(tmp_path, monkeypatch):
    monkeypatch.delenv("VEEAM_SERVER", raising=False)
    config = load_config(str(tmp_path / "missing.yaml"))
    settings = load_sla_settings(config)
    assert settings.look_back_days == 1
    assert settings.backup_window_start == "20:00"
    assert settings.separator_char == ","
    assert config["database"]["enabled"] is False


def test_yaml_values_and_env_overrides(tmp_path, monkeypatch):
    path = tmp_path / "config.yaml"
    path.write_text(
        "sla:\n"
        "  look_back_days: 2\n"
        "  backup_window_start: 21:30\n"
        "  exclude_vms: test\n"
        "veeam:\n"
        "  servers: [from-file]\n",
        encoding="utf-8",
    )
    monkeypatch.setenv("VEEAM_SERVER", "vbr01, vbr02")
    monkeypatch.setenv("DB_PORT", "5433")

    config = load_config(str(path))
    settings = load_sla_settings(config)

    assert config["veeam"]["servers"] == ["vbr01", "vbr02"]
    assert config["veeam"]["port"] == 9419
    assert config["database"]["port"] == 5433
    assert settings.look_back_days == 2
    # unquoted 21:30 is read by YAML as an integer number of minutes
    assert settings.backup_window_start == "21:30"
    assert settings.backup_window_end == "07:00"
    assert settings.exclude_vms == "test"


def test_settings_validation():
    with pytest.raises(ValidationError):
        SLAReportSettings(look_back_days=-1)
    with pytest.raises(ValidationError):
        SLAReportSettings(separator_char=";;")
