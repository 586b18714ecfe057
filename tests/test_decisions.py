"""Tests for cofounder.ledger.decisions module."""

import math

import pytest

from cofounder.lib.errors import InvalidDecision, MalformedArtifact
from cofounder.ledger.decisions import (
    Decision,
    DecisionType,
    ProposedDecision,
    append_to_log,
    format_decision_record,
    normalize_name,
    parse_decision_log,
    parse_decision_record,
    parse_record_id,
    split_log_entries,
)


USE_DATABASE = """\
decision: use-database

Decision Type: technology-choice
Alternatives Considered: PostgreSQL, MongoDB
Chosen: PostgreSQL
Reason: Relational data with strong consistency needs
Confidence: 0.85
Revisit Probability: 0.05
Timestamp: 2026-01-05T10:00:00+00:00"""


def _decision(**overrides):
    values = dict(
        name="use-database",
        type=DecisionType.TECHNOLOGY_CHOICE,
        alternatives=("PostgreSQL", "MongoDB"),
        chosen="PostgreSQL",
        reason="Relational data with strong consistency needs",
        confidence=0.85,
        revisit_probability=0.05,
        stage_branch="analysis",
        seq=1,
        timestamp="2026-01-05T10:00:00+00:00",
    )
    values.update(overrides)
    return Decision(**values)


class TestWireFormat:

    def test_format_matches_labels_and_order(self):
        assert format_decision_record(_decision()) == USE_DATABASE

    def test_optional_fields_appear_in_order(self):
        text = format_decision_record(_decision(context="Blocked: scale", reverses="requirements#2"))
        lines = text.splitlines()
        assert lines[-3:] == [
            "Context: Blocked: scale",
            "Reverses: requirements#2",
            "Timestamp: 2026-01-05T10:00:00+00:00",
        ]

    def test_integer_probabilities_render_as_floats(self):
        text = format_decision_record(_decision(confidence=1, revisit_probability=0))
        assert "Confidence: 1.0" in text
        assert "Revisit Probability: 0.0" in text

    def test_parse_reads_every_field(self):
        d = parse_decision_record(USE_DATABASE, "analysis", 3)
        assert d.name == "use-database"
        assert d.type is DecisionType.TECHNOLOGY_CHOICE
        assert d.alternatives == ("PostgreSQL", "MongoDB")
        assert d.chosen == "PostgreSQL"
        assert d.confidence == 0.85
        assert d.revisit_probability == 0.05
        assert d.record_id == "analysis#3"
        assert d.reverses is None

    def test_context_may_contain_colons(self):
        text = format_decision_record(_decision(context="Blocked: goal: 10 users"))
        assert parse_decision_record(text, "analysis", 1).context == "Blocked: goal: 10 users"


class TestParseErrors:

    def test_bad_header(self):
        with pytest.raises(MalformedArtifact, match="expected 'decision: <name>'"):
            parse_decision_record(USE_DATABASE.replace("decision: ", "Decision "), "analysis", 1)

    def test_missing_required_label(self):
        text = USE_DATABASE.replace("Chosen: PostgreSQL\n", "")
        with pytest.raises(MalformedArtifact, match="missing 'Chosen'"):
            parse_decision_record(text, "analysis", 1)

    def test_out_of_order_label(self):
        lines = USE_DATABASE.splitlines()
        lines[3], lines[4] = lines[4], lines[3]
        with pytest.raises(MalformedArtifact, match="out of order"):
            parse_decision_record("\n".join(lines), "analysis", 1)

    def test_unknown_label(self):
        with pytest.raises(MalformedArtifact, match="unexpected line"):
            parse_decision_record(USE_DATABASE + "\nOwner: alice", "analysis", 1)

    def test_unknown_type(self):
        with pytest.raises(MalformedArtifact, match="unknown decision type"):
            parse_decision_record(USE_DATABASE.replace("technology-choice", "vibes"), "analysis", 1)

    def test_non_numeric_confidence(self):
        with pytest.raises(MalformedArtifact, match="must be numbers"):
            parse_decision_record(USE_DATABASE.replace("0.85", "high"), "analysis", 1)

    def test_bad_reverses_reference(self):
        text = format_decision_record(_decision(reverses="analysis-2"))
        with pytest.raises(MalformedArtifact, match="bad Reverses"):
            parse_decision_record(text, "analysis", 1)


class TestLog:

    def test_append_to_empty_log_adds_header(self):
        log = append_to_log(None, USE_DATABASE)
        assert log.startswith("# Decision History\n")
        assert log.endswith("---\n")

    def test_split_and_parse_preserve_order(self):
        second = format_decision_record(_decision(name="use-cache", chosen="Redis", alternatives=("Redis",)))
        log = append_to_log(append_to_log(None, USE_DATABASE), second)

        assert len(split_log_entries(log)) == 2
        decisions = parse_decision_log(log, "design")
        assert [(d.name, d.seq, d.stage_branch) for d in decisions] == [
            ("use-database", 1, "design"),
            ("use-cache", 2, "design"),
        ]

    def test_header_only_log_is_empty(self):
        assert parse_decision_log("# Decision History\n\n", "analysis") == []

    def test_record_id_parsing(self):
        assert parse_record_id("implementation/develop#4") == ("implementation/develop", 4)
        with pytest.raises(ValueError):
            parse_record_id("analysis")


class TestProposedDecision:

    def _proposal(self, **overrides):
        values = dict(
            name="Use Database!",
            type=DecisionType.TECHNOLOGY_CHOICE,
            alternatives=("PostgreSQL", "MongoDB"),
            chosen="PostgreSQL",
            reason="Relational\n  data",
            confidence=0.85,
            revisit_probability=0.05,
        )
        values.update(overrides)
        return ProposedDecision(**values)

    def test_validated_normalizes(self):
        p = self._proposal().validated()
        assert p.name == "use-database"
        assert p.reason == "Relational data"

    def test_normalize_name(self):
        assert normalize_name("  Use  DB / Cache ") == "use-db-cache"

    @pytest.mark.parametrize("value", [-0.1, 1.01, math.nan, True, "0.5"])
    def test_probability_bounds(self, value):
        with pytest.raises(InvalidDecision):
            self._proposal(confidence=value).validated()

    def test_alternative_with_separator_rejected(self):
        with pytest.raises(InvalidDecision, match="contains ', '"):
            self._proposal(alternatives=("Postgres, managed",)).validated()

    def test_empty_name_rejected(self):
        with pytest.raises(InvalidDecision, match="empty"):
            self._proposal(name="!!!").validated()

    def test_from_dict(self):
        p = ProposedDecision.from_dict({
            "name": "use-database",
            "type": "architecture",
            "alternatives": ["Monolith", "Services"],
            "chosen": "Monolith",
            "reason": "Small team",
            "confidence": 0.7,
            "revisit_probability": 0.4,
            "blocked_by": "deploy pain",
        })
        assert p.type is DecisionType.ARCHITECTURE
        assert p.alternatives == ("Monolith", "Services")
        assert p.blocked_by == "deploy pain"

    def test_from_dict_unknown_type(self):
        with pytest.raises(InvalidDecision, match="Unknown decision type"):
            ProposedDecision.from_dict({"name": "x", "type": "vibes"})

    def test_from_dict_missing_field(self):
        with pytest.raises(InvalidDecision, match="missing"):
            ProposedDecision.from_dict({"name": "x", "type": "architecture", "chosen": "a"})
