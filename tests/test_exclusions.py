from unittest.mock import MagicMock, patch

import pytest
import requests

from src.backup_sla.exclusions import (
    ExclusionIndex,
    WildcardPattern,
    load_list_source,
    parse_vm_rules,
)


@pytest.mark.parametrize("text,expected", [
    ("test", "*test*"),
    ("*test", "*test*"),
    ("test*", "*test*"),
    ("**Test**", "*test*"),
    ("  dev ", "*dev*"),
])
def test_wildcard_normalization(text, expected):
    assert WildcardPattern.parse(text).pattern == expected


@pytest.mark.parametrize("text", [None, "", "  ", "*", "***"])
def test_blank_wildcard_is_no_pattern(text):
    assert WildcardPattern.parse(text) is None


def test_wildcard_is_case_insensitive_substring():
    pattern = WildcardPattern.parse("test")
    assert pattern.matches("SQL-TEST-01")
    assert pattern.matches("test")
    assert not pattern.matches("prod-01")
    assert not pattern.matches(None)


def test_vm_rules_first_wins_and_blank_lines_skipped():
    rules = parse_vm_rules(["", "   ", "vm1,id-1", "vm1,id-2", " ,id-3", "vm2"])
    assert set(rules) == {"vm1", "vm2"}
    assert rules["vm1"].id == "id-1"
    assert rules["vm2"].id is None


def test_custom_separator():
    rules = parse_vm_rules(["vm1;vm-101"], separator=";")
    assert rules["vm1"].id == "vm-101"


def test_vm_exclusion_with_and_without_id():
    index = ExclusionIndex.build(vm_lines=["anyid", "pinned,vm-7"])
    assert index.is_vm_excluded("anyid", None)
    assert index.is_vm_excluded("anyid", "whatever")
    assert index.is_vm_excluded("pinned", "vm-7")
    assert not index.is_vm_excluded("pinned", "vm-8")
    assert not index.is_vm_excluded("pinned", None)
    assert not index.is_vm_excluded("other", "vm-7")


@pytest.mark.parametrize("duplicate", ["dup,id-1", "dup,id-2", "dup"])
def test_duplicate_rule_does_not_change_outcome(duplicate):
    single = ExclusionIndex.build(vm_lines=["dup,id-1"])
    doubled = ExclusionIndex.build(vm_lines=["dup,id-1", duplicate])
    for vm_id in ["id-1", "id-2", None]:
        assert single.is_vm_excluded("dup", vm_id) == doubled.is_vm_excluded("dup", vm_id)


def test_job_exclusion_by_name_and_pattern(make_job):
    index = ExclusionIndex.build(job_pattern="*archive*", job_lines=["Nightly SQL", ""])
    assert index.is_job_excluded_by_name("Nightly SQL")
    assert not index.is_job_excluded_by_name("Nightly SQL 2")
    assert index.is_job_excluded(make_job("Nightly SQL"))
    assert index.is_job_excluded(make_job("Archive Copy"))
    assert index.is_job_excluded(make_job("Weekly"), description="Long term archive")
    assert not index.is_job_excluded(make_job("Weekly"), description=None)
    # the listing's own description is not consulted
    assert not index.is_job_excluded(make_job("Weekly", description="Long term archive"))


def test_candidate_exclusion_is_additive(make_candidate):
    index = ExclusionIndex.build(vm_pattern="tmp", vm_lines=["legacy"], job_lines=["Old Job"])
    assert index.is_candidate_excluded(make_candidate(vm_name="legacy"))
    assert index.is_candidate_excluded(make_candidate(vm_name="tmp-build-3"))
    assert index.is_candidate_excluded(make_candidate(vm_name="web01", job_name="Old Job"))
    assert not index.is_candidate_excluded(make_candidate(vm_name="web01"))


def test_load_list_source_from_file(tmp_path):
    source = tmp_path / "exclude.txt"
    source.write_text("vm1\nvm2,id-2\n", encoding="utf-8")
    assert load_list_source(str(source)) == ["vm1", "vm2,id-2"]


def test_missing_list_source_is_empty(tmp_path, caplog):
    assert load_list_source(str(tmp_path / "missing.txt")) == []
    assert "not found" in caplog.text


def test_no_list_source_is_empty():
    assert load_list_source(None) == []


def test_load_list_source_from_url():
    response = MagicMock(text="vm1\nvm2\n")
    with patch("src.backup_sla.exclusions.requests.get", return_value=response) as get:
        assert load_list_source("https://config.example/exclude.txt") == ["vm1", "vm2"]
    get.assert_called_once()


def test_unreachable_url_source_is_empty():
    with patch("src.backup_sla.exclusions.requests.get",
               side_effect=requests.exceptions.ConnectionError("down")):
        assert load_list_source("https://config.example/exclude.txt") == []
