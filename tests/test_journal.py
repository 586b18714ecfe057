"""Tests for cofounder.workflow.journal module."""

import json

import pytest

from cofounder.workflow.journal import JOURNAL_FILENAME, JournalEntry, TransitionJournal


def _entry(run_id, state, stage="analysis", commit="abc", **kwargs):
    return JournalEntry(
        timestamp="2026-01-05T10:00:00+00:00",
        run_id=run_id,
        idea_id="acme",
        from_state="reviewing",
        state=state,
        trigger=state,
        stage=stage,
        source_commit=commit,
        **kwargs,
    )


@pytest.fixture(params=["memory", "disk"])
def journal(request, tmp_path):
    if request.param == "memory":
        return TransitionJournal()
    return TransitionJournal(tmp_path / "acme")


class TestJournal:

    def test_empty(self, journal):
        assert journal.entries() == []
        assert journal.runs() == []

    def test_record_and_read_back(self, journal):
        entry = _entry("r1", "merged", pr_number=4)
        journal.record(entry)
        assert journal.entries() == [entry]

    def test_runs_group_in_order(self, journal):
        for run_id, state in [("r1", "evaluating"), ("r1", "incomplete"), ("r2", "evaluating"), ("r2", "failed")]:
            journal.record(_entry(run_id, state))

        runs = journal.runs()
        assert [[e.state for e in run] for run in runs] == [["evaluating", "incomplete"], ["evaluating", "failed"]]
        assert [run[0].run_id for run in journal.runs(limit=1)] == ["r2"]

    def test_merged_from_matches_stage_and_commit(self, journal):
        journal.record(_entry("r1", "failed"))
        assert journal.merged_from("analysis", "abc") is None

        journal.record(_entry("r2", "merged", pr_number=3))

        assert journal.merged_from("analysis", "abc").pr_number == 3
        assert journal.merged_from("analysis", "def") is None
        assert journal.merged_from("design", "abc") is None


class TestJournalFile:

    def test_writes_json_lines(self, tmp_path):
        journal = TransitionJournal(tmp_path / "acme")
        journal.record(_entry("r1", "merged"))

        lines = (tmp_path / "acme" / JOURNAL_FILENAME).read_text().splitlines()
        assert json.loads(lines[0])["state"] == "merged"

    def test_survives_new_instance(self, tmp_path):
        TransitionJournal(tmp_path).record(_entry("r1", "merged"))
        assert TransitionJournal(tmp_path).merged_from("analysis", "abc") is not None

    def test_skips_corrupted_lines(self, tmp_path):
        journal = TransitionJournal(tmp_path)
        journal.record(_entry("r1", "merged"))
        with open(tmp_path / JOURNAL_FILENAME, "a") as f:
            f.write("{not json\n")
            f.write(json.dumps({"unexpected": 1}) + "\n")
        journal.record(_entry("r2", "failed"))

        assert [e.run_id for e in journal.entries()] == ["r1", "r2"]
