"""
Tests del driver del backfill con RowSource y Elasticsearch en memoria.
"""
from __future__ import annotations

import json

import pytest

from score_backfill.application.services.score_detail_transformer import ScoreDetailTransformer
from score_backfill.application.use_cases.backfill_use_case import ScoreDetailsBackfill
from score_backfill.infrastructure.external.elastic_sync.bulk_submitter import BulkSubmitter
from score_backfill.infrastructure.persistence.checkpoint_store import CheckpointStore
from score_backfill.infrastructure.persistence.failure_log import FailureLog
from score_backfill.shared.exceptions.domain import RowSourceError
from tests.fakes import (
    FakeElasticsearch,
    FakeRowSource,
    make_detail,
    make_empty_detail,
    make_evaluation,
)


@pytest.fixture
def paths(tmp_path):
    return {
        "checkpoint": tmp_path / "checkpoint.json",
        "failures": tmp_path / "failures.ndjson",
    }


def _build(source, es, paths, **kwargs) -> ScoreDetailsBackfill:
    return ScoreDetailsBackfill(
        row_source=source,
        transformer=ScoreDetailTransformer(excluded_tenant=kwargs.pop("excluded_tenant", None)),
        submitter=BulkSubmitter(es),
        checkpoint=CheckpointStore(paths["checkpoint"]),
        failure_log=FailureLog(paths["failures"]),
        **kwargs,
    )


def _checkpoint(paths):
    return set(json.loads(paths["checkpoint"].read_text(encoding="utf-8")))


def _failures(paths):
    if not paths["failures"].exists():
        return []
    return [json.loads(line) for line in paths["failures"].read_text(encoding="utf-8").splitlines()]


def _seven_units():
    return [
        make_evaluation("A"),
        make_evaluation("B"),
        make_evaluation("C"),
        make_evaluation("D"),
        make_evaluation("E"),
        make_evaluation("F"),
        make_evaluation("G", details=[make_empty_detail("g1"), make_empty_detail("g2")]),
    ]


def test_end_to_end_scenario(paths) -> None:
    paths["checkpoint"].write_text(json.dumps(["A"]), encoding="utf-8")
    source = FakeRowSource(_seven_units())
    es = FakeElasticsearch()

    summary = _build(source, es, paths, batch_size=3).run()

    assert summary.total_discovered == 7
    assert summary.iterated == 7
    assert summary.skipped == 2
    assert summary.skipped_by_reason == {"checkpointed": 1, "all_details_empty": 1}
    assert summary.processed == 5
    assert summary.success == 5
    assert summary.failed == 0
    assert es.batch_sizes == [3, 2]
    assert summary.flushes == 2
    assert _checkpoint(paths) == {"A", "B", "C", "D", "E", "F"}
    assert summary.checkpoint_size == 6
    assert summary.failure_log == str(paths["failures"])
    # La evaluacion checkpointeada no se consulta
    assert "A" not in source.loaded
    assert source.opened and source.closed


def test_second_run_is_idempotent(paths) -> None:
    units = _seven_units()
    first_es = FakeElasticsearch()
    _build(FakeRowSource(units), first_es, paths, batch_size=3).run()

    second_es = FakeElasticsearch()
    summary = _build(FakeRowSource(units), second_es, paths, batch_size=3).run()

    assert summary.success == 0
    assert summary.processed == 0
    assert second_es.calls == []
    assert summary.skipped == 7
    assert summary.skipped_by_reason == {"checkpointed": 6, "all_details_empty": 1}


def test_partial_batch_failure_bookkeeping(paths) -> None:
    units = [make_evaluation(f"ev-{i}") for i in range(1, 6)]
    es = FakeElasticsearch(
        item_errors={
            "ev-2": {"type": "version_conflict_engine_exception", "reason": "conflict"},
            "ev-4": {"type": "mapper_parsing_exception", "reason": "bad"},
        }
    )

    summary = _build(FakeRowSource(units), es, paths, batch_size=5).run()

    assert _checkpoint(paths) == {"ev-1", "ev-3", "ev-5"}
    failures = _failures(paths)
    assert [f["id"] for f in failures] == ["ev-2", "ev-4"]
    assert {f["reason"] for f in failures} == {"periodic"}
    assert summary.success == 3
    assert summary.failed == 2


def test_failed_units_are_retried_next_run(paths) -> None:
    units = [make_evaluation(f"ev-{i}") for i in range(1, 4)]
    failing = FakeElasticsearch(item_errors={"ev-2": {"type": "es_rejected_execution_exception"}})
    _build(FakeRowSource(units), failing, paths, batch_size=10).run()

    healthy = FakeElasticsearch()
    summary = _build(FakeRowSource(units), healthy, paths, batch_size=10).run()

    assert healthy.batch_sizes == [1]
    assert summary.success == 1
    assert _checkpoint(paths) == {"ev-1", "ev-2", "ev-3"}
    assert [f["id"] for f in _failures(paths)] == ["ev-2"]
    assert _failures(paths)[0]["reason"] == "final"


def test_transport_failure_does_not_abort_run(paths) -> None:
    units = [make_evaluation(f"ev-{i}") for i in range(1, 6)]
    es = FakeElasticsearch(fail_calls={1})

    summary = _build(FakeRowSource(units), es, paths, batch_size=2).run()

    assert es.batch_sizes == [2, 2, 1]
    assert [f["id"] for f in _failures(paths)] == ["ev-1", "ev-2"]
    assert all("cluster unreachable" in f["detail"] for f in _failures(paths))
    assert _checkpoint(paths) == {"ev-3", "ev-4", "ev-5"}
    assert summary.failed == 2
    assert summary.success == 3


def test_transport_failure_leaves_checkpoint_untouched(paths) -> None:
    paths["checkpoint"].write_text(json.dumps(["old"]), encoding="utf-8")
    es = FakeElasticsearch(fail_calls={1})

    _build(FakeRowSource([make_evaluation("ev-1")]), es, paths, batch_size=5).run()

    assert _checkpoint(paths) == {"old"}
    assert [f["id"] for f in _failures(paths)] == ["ev-1"]


def test_checkpoint_persisted_after_each_flush(paths) -> None:
    units = [make_evaluation(f"ev-{i}") for i in range(1, 5)]
    snapshots = []

    class _SnapshotES(FakeElasticsearch):
        def bulk(self, *, operations, refresh=None):
            if paths["checkpoint"].exists():
                snapshots.append(_checkpoint(paths))
            else:
                snapshots.append(set())
            return super().bulk(operations=operations, refresh=refresh)

    _build(FakeRowSource(units), _SnapshotES(), paths, batch_size=2).run()

    # Antes del segundo bulk el checkpoint ya refleja el primero
    assert snapshots == [set(), {"ev-1", "ev-2"}]
    assert _checkpoint(paths) == {"ev-1", "ev-2", "ev-3", "ev-4"}


def test_excluded_and_tenantless_units_are_skipped(paths) -> None:
    units = [
        make_evaluation("ev-1", tenant="Demo"),
        make_evaluation("ev-2", tenant=None, contact_tenant=None),
        make_evaluation("ev-3", details=[]),
        make_evaluation("ev-4", tenant="acme"),
    ]
    es = FakeElasticsearch()

    summary = _build(FakeRowSource(units), es, paths, batch_size=10, excluded_tenant="demo").run()

    assert summary.skipped == 3
    assert summary.skipped_by_reason == {
        "excluded_tenant": 1,
        "missing_tenant": 1,
        "no_details": 1,
    }
    assert es.batch_sizes == [1]
    assert _checkpoint(paths) == {"ev-4"}


def test_transform_error_goes_to_failure_log(paths) -> None:
    bad = make_evaluation("ev-bad", details=[make_detail(score="n/a")])
    units = [bad, make_evaluation("ev-ok")]

    summary = _build(FakeRowSource(units), FakeElasticsearch(), paths, batch_size=10).run()

    assert summary.failed == 1
    assert summary.success == 1
    failures = _failures(paths)
    assert failures[0]["id"] == "ev-bad"
    assert failures[0]["reason"] == "transform"


def test_max_units_caps_processing(paths) -> None:
    units = [make_evaluation(f"ev-{i}") for i in range(1, 8)]
    source = FakeRowSource(units)
    es = FakeElasticsearch()

    summary = _build(source, es, paths, batch_size=2, max_units=3).run()

    assert summary.processed == 3
    assert es.batch_sizes == [2, 1]
    assert summary.total_discovered == 3
    assert summary.iterated == 3
    assert source.loaded == ["ev-1", "ev-2", "ev-3"]


def test_max_units_reports_full_universe_when_known(paths) -> None:
    units = [make_evaluation(f"ev-{i}") for i in range(1, 8)]
    source = FakeRowSource(units, knows_total=True)

    summary = _build(source, FakeElasticsearch(), paths, batch_size=2, max_units=3).run()

    assert summary.total_discovered == 7
    assert summary.iterated == 3
    assert summary.processed == 3


def test_dry_run_sends_nothing(paths) -> None:
    units = [make_evaluation(f"ev-{i}") for i in range(1, 4)]
    es = FakeElasticsearch()

    summary = _build(FakeRowSource(units), es, paths, batch_size=2, dry_run=True).run()

    assert es.calls == []
    assert summary.dry_run is True
    assert summary.processed == 3
    assert summary.success == 0
    assert summary.flushes == 2
    assert not paths["checkpoint"].exists()
    assert not paths["failures"].exists()


def test_fatal_row_source_error_flushes_then_aborts(paths) -> None:
    units = [make_evaluation(f"ev-{i}") for i in range(1, 6)]
    source = FakeRowSource(units, fail_after=3)
    es = FakeElasticsearch()

    with pytest.raises(RowSourceError):
        _build(source, es, paths, batch_size=10).run()

    assert es.batch_sizes == [3]
    assert _checkpoint(paths) == {"ev-1", "ev-2", "ev-3"}
    assert source.closed


def test_lock_not_acquired_ends_run_without_work(paths) -> None:
    source = FakeRowSource([make_evaluation("ev-1")], lock_acquired=False)
    es = FakeElasticsearch()

    summary = _build(source, es, paths, batch_size=1).run()

    assert summary.lock_acquired is False
    assert summary.total_discovered == 0
    assert es.calls == []
    assert source.loaded == []
