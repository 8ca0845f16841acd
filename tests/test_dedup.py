import itertools
from datetime import datetime, timedelta

import pytest

from src.backup_sla.classifier import RestorePointClassifier
from src.backup_sla.dedup import MostRecentDeduplicator
from src.backup_sla.exclusions import ExclusionIndex

T = datetime(2025, 1, 10, 6, 0)


def _records(window, make_candidate, specs):
    classifier = RestorePointClassifier(window)
    return [classifier.classify(make_candidate(vm_name=vm, completion=completion, job_name=job))
            for vm, completion, job in specs]


def test_out_of_order_keeps_newest(window, make_candidate):
    dedup = MostRecentDeduplicator()
    specs = [("vm1", T - timedelta(hours=h), "Job A") for h in (3, 1, 2)]
    for record in _records(window, make_candidate, specs):
        dedup.offer(record)

    final = dedup.finalize()
    assert dedup.total_records == 1
    assert len(final) == 1
    assert final[0].completion_time == T - timedelta(hours=1)


@pytest.mark.parametrize("order", list(itertools.permutations(range(4))))
def test_outcome_independent_of_order(window, make_candidate, order):
    specs = [
        ("vm1", T - timedelta(hours=2), "Job A"),
        ("vm1", T - timedelta(hours=1), "Job B"),
        ("vm2", T - timedelta(days=2), "Job A"),
        ("vm2", T - timedelta(hours=5), "Job B"),
    ]
    records = _records(window, make_candidate, specs)
    dedup = MostRecentDeduplicator()
    for i in order:
        dedup.offer(records[i])
    final = {r.vm_name: r for r in dedup.finalize()}
    assert final["vm1"].job_name == "Job B"
    assert final["vm2"].completion_time == T - timedelta(hours=5)
    assert dedup.total_records == 2
    assert dedup.in_window_records == 2


def test_tie_keeps_first_seen(window, make_candidate):
    first, second = _records(window, make_candidate, [("vm1", T, "Job A"), ("vm1", T, "Job B")])
    dedup = MostRecentDeduplicator()
    assert dedup.offer(first)
    assert not dedup.offer(second)
    assert dedup.finalize()[0].job_name == "Job A"


def test_replacement_rolls_back_in_window_counter(window, make_candidate):
    # older point inside the window replaced by a newer one that is still before window.end
    old_in, = _records(window, make_candidate, [("vm1", window.start + timedelta(hours=1), "Job A")])
    dedup = MostRecentDeduplicator()
    dedup.offer(old_in)
    assert (dedup.total_records, dedup.in_window_records) == (1, 1)

    out_of_window, = _records(window, make_candidate, [("vm2", window.start - timedelta(days=1), "Job A")])
    newer_out, = _records(window, make_candidate, [("vm2", window.start - timedelta(hours=1), "Job B")])
    dedup.offer(out_of_window)
    dedup.offer(newer_out)
    assert (dedup.total_records, dedup.in_window_records) == (2, 1)

    newest_in, = _records(window, make_candidate, [("vm2", window.start + timedelta(hours=2), "Job C")])
    dedup.offer(newest_in)
    assert (dedup.total_records, dedup.in_window_records) == (2, 2)


def test_counters_match_enumeration_at_every_step(window, make_candidate):
    specs = []
    for i, hours in enumerate([30, 2, 50, 1, 26, 3, 40, 0]):
        specs.append((f"vm{i % 3}", T - timedelta(hours=hours), f"Job {i % 2}"))
    dedup = MostRecentDeduplicator()
    for record in _records(window, make_candidate, specs):
        dedup.offer(record)
        assert 0 <= dedup.in_window_records <= dedup.total_records
        assert dedup.total_records == len(dedup)

    final = dedup.finalize()
    assert dedup.in_window_records == sum(1 for r in final if r.in_backup_window)
    assert dedup.total_records == len(final)


def test_finalize_sorts_by_name_and_assigns_ids(window, make_candidate):
    dedup = MostRecentDeduplicator()
    for record in _records(window, make_candidate, [("web02", T, "J"), ("App01", T, "J"), ("db01", T, "J")]):
        dedup.offer(record)
    final = dedup.finalize()
    assert [r.vm_name for r in final] == ["App01", "db01", "web02"]
    assert [r.sequence_id for r in final] == [1, 2, 3]


def test_offer_after_finalize_fails(window, make_candidate):
    dedup = MostRecentDeduplicator()
    dedup.finalize()
    record, = _records(window, make_candidate, [("vm1", T, "J")])
    with pytest.raises(RuntimeError):
        dedup.offer(record)


def test_exclusions_rechecked_on_offer(window, make_candidate):
    exclusions = ExclusionIndex.build(vm_lines=["secret"], job_lines=["Old Job"])
    dedup = MostRecentDeduplicator(exclusions)
    records = _records(window, make_candidate, [("secret", T, "J"), ("vm1", T, "Old Job"), ("vm2", T, "J")])
    assert [dedup.offer(r) for r in records] == [False, False, True]
    assert dedup.total_records == 1


def test_empty_finalize(window):
    dedup = MostRecentDeduplicator()
    assert dedup.finalize() == []
    assert dedup.total_records == 0
