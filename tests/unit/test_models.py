"""
Unit tests for targets, run outcomes and run results.
"""
import threading

import pytest

from trawler.models import (
    DispatchError,
    RunOutcome,
    RunResult,
    SourceError,
    Target,
    TransformError,
    RUN_CANCELLED,
    RUN_FAILED,
    RUN_SUCCEEDED,
    STAGE_DISPATCH,
    STAGE_ENUMERATION,
)


class TestTarget:
    """Test target construction."""

    def test_empty_identifier_rejected(self):
        with pytest.raises(TransformError):
            Target(identifier="")

    def test_defaults(self):
        target = Target("https://github.com/acme/a.git")

        assert target.version == ""
        assert target.default_downloader == ""


class TestRunOutcome:
    """Test failure aggregation."""

    def test_record_and_count(self):
        outcome = RunOutcome()
        outcome.record(STAGE_ENUMERATION, "acme", SourceError("500"))
        outcome.record(STAGE_DISPATCH, "u1", DispatchError("403"))

        assert outcome.has_failures
        assert len(outcome) == 2
        assert outcome.count(STAGE_DISPATCH) == 1
        assert [e.subject for e in outcome] == ["acme", "u1"]
        assert "[enumeration] acme: 500" in outcome.summary()

    def test_merge_keeps_order(self):
        first = RunOutcome()
        first.record(STAGE_ENUMERATION, "a", SourceError("x"))
        second = RunOutcome()
        second.record(STAGE_DISPATCH, "b", DispatchError("y"))

        merged = first.merge(second)

        assert [e.subject for e in merged] == ["a", "b"]
        assert len(first) == 1

    def test_empty_summary(self):
        assert RunOutcome().summary() == "no failures"

    def test_concurrent_records(self):
        outcome = RunOutcome()

        def record_many():
            for i in range(200):
                outcome.record(STAGE_DISPATCH, str(i), DispatchError("x"))

        threads = [threading.Thread(target=record_many) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(outcome) == 800


class TestRunResult:
    """Test exit status mapping."""

    def test_exit_codes(self):
        assert RunResult(status=RUN_SUCCEEDED).exit_code == 0
        assert RunResult(status=RUN_FAILED).exit_code == 1
        assert RunResult(status=RUN_CANCELLED).exit_code == 130

    def test_failures_do_not_fail_run(self):
        outcome = RunOutcome()
        outcome.record(STAGE_DISPATCH, "u1", DispatchError("403"))

        result = RunResult(status=RUN_SUCCEEDED, outcome=outcome, dispatched=4)

        assert result.ok
        assert result.exit_code == 0
