"""
Decision records and their wire format.

A decision is committed as a labeled text block. The same block is the
commit message of the decision commit and an entry in the branch's
DECISIONS.log, where entries are separated by a line containing only `---`:

    decision: use-database

    Decision Type: technology-choice
    Alternatives Considered: PostgreSQL, MongoDB
    Chosen: PostgreSQL
    Reason: Relational data with strong consistency needs
    Confidence: 0.85
    Revisit Probability: 0.05
    Context: optional single line
    Reverses: analysis#2
    Timestamp: 2026-01-05T10:00:00+00:00

Labels and their order are part of the contract: downstream tooling parses
these blocks out of commit history.
"""

import math
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from cofounder.lib.constants import DECISION_LOG_HEADER
from cofounder.lib.errors import InvalidDecision, MalformedArtifact


class DecisionType(Enum):
    TECHNOLOGY_CHOICE = "technology-choice"
    ARCHITECTURE = "architecture"
    FEATURE_SCOPE = "feature-scope"
    BUSINESS_MODEL = "business-model"
    RESOURCE_ALLOCATION = "resource-allocation"
    ASSUMPTION_VALIDATION = "assumption-validation"
    GOAL_PRIORITIZATION = "goal-prioritization"


# (label, attribute, required) in wire order
FIELDS = (
    ("Decision Type", "type", True),
    ("Alternatives Considered", "alternatives", True),
    ("Chosen", "chosen", True),
    ("Reason", "reason", True),
    ("Confidence", "confidence", True),
    ("Revisit Probability", "revisit_probability", True),
    ("Context", "context", False),
    ("Reverses", "reverses", False),
    ("Timestamp", "timestamp", False),
)
_LABELS = {label: attr for label, attr, _ in FIELDS}
_HEADER_LINE = re.compile(r'^decision: (\S.*)$')
_RECORD_ID = re.compile(r'^(\S+)#(\d+)$')
_ENTRY_SEPARATOR = re.compile(r'^---$', re.MULTILINE)


def normalize_name(name: str) -> str:
    """Lower-case, with every run of non-alphanumerics collapsed to one dash."""
    return re.sub(r'[^a-z0-9]+', '-', name.lower()).strip('-')


def _single_line(text: str) -> str:
    return re.sub(r'\s+', ' ', text).strip()


def _check_probability(label: str, value) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise InvalidDecision(f"{label} must be a number, got {value!r}")
    value = float(value)
    if math.isnan(value) or not 0.0 <= value <= 1.0:
        raise InvalidDecision(f"{label} must be in [0, 1], got {value}")
    return value


@dataclass(frozen=True)
class ProposedDecision:
    """A decision someone wants to make. Not yet in the ledger."""
    name: str
    type: DecisionType
    alternatives: tuple[str, ...]
    chosen: str
    reason: str
    confidence: float
    revisit_probability: float
    context: str = ""
    # Blocking signal carried by the proposal itself (e.g. a blocked goal)
    blocked_by: str = ""

    @classmethod
    def from_dict(cls, data: dict) -> "ProposedDecision":
        """Build from generator output (keys as in generated_content.schema.json)."""
        try:
            decision_type = DecisionType(data["type"])
        except ValueError:
            raise InvalidDecision(f"Unknown decision type {data['type']!r}") from None
        except KeyError as e:
            raise InvalidDecision(f"Decision is missing {e}") from None
        try:
            return cls(
                name=data["name"],
                type=decision_type,
                alternatives=tuple(data.get("alternatives", ())),
                chosen=data["chosen"],
                reason=data.get("reason", ""),
                confidence=data["confidence"],
                revisit_probability=data["revisit_probability"],
                context=data.get("context", "") or "",
                blocked_by=data.get("blocked_by", "") or "",
            )
        except KeyError as e:
            raise InvalidDecision(f"Decision '{data.get('name', '?')}' is missing {e}") from None

    def validated(self) -> "ProposedDecision":
        """Return a normalized copy, or raise InvalidDecision."""
        name = normalize_name(self.name or "")
        if not name:
            raise InvalidDecision(f"Decision name {self.name!r} is empty after normalization")
        if not isinstance(self.type, DecisionType):
            raise InvalidDecision(f"Decision type must be a DecisionType, got {self.type!r}")

        alternatives = tuple(_single_line(a) for a in self.alternatives)
        for alt in alternatives:
            if not alt or ", " in alt:
                raise InvalidDecision(f"Alternative {alt!r} for '{name}' is empty or contains ', '")

        chosen = _single_line(self.chosen or "")
        if not chosen:
            raise InvalidDecision(f"Decision '{name}' has no chosen alternative")

        return ProposedDecision(
            name=name,
            type=self.type,
            alternatives=alternatives,
            chosen=chosen,
            reason=_single_line(self.reason or ""),
            confidence=_check_probability("confidence", self.confidence),
            revisit_probability=_check_probability("revisit_probability", self.revisit_probability),
            context=_single_line(self.context or ""),
            blocked_by=_single_line(self.blocked_by or ""),
        )


@dataclass(frozen=True)
class Decision:
    """A decision as committed to a stage branch's log."""
    name: str
    type: DecisionType
    alternatives: tuple[str, ...]
    chosen: str
    reason: str
    confidence: float
    revisit_probability: float
    stage_branch: str
    seq: int  # 1-based position in the branch's DECISIONS.log
    timestamp: str = ""
    context: str = ""
    reverses: Optional[str] = None
    commit_sha: str = field(default="", compare=False)

    @property
    def record_id(self) -> str:
        return f"{self.stage_branch}#{self.seq}"

    @property
    def is_reversal(self) -> bool:
        return self.reverses is not None

    @classmethod
    def from_proposed(
        cls,
        proposed: ProposedDecision,
        stage_branch: str,
        seq: int,
        timestamp: str,
        reverses: Optional[str] = None,
    ) -> "Decision":
        return cls(
            name=proposed.name,
            type=proposed.type,
            alternatives=proposed.alternatives,
            chosen=proposed.chosen,
            reason=proposed.reason,
            confidence=proposed.confidence,
            revisit_probability=proposed.revisit_probability,
            stage_branch=stage_branch,
            seq=seq,
            timestamp=timestamp,
            context=proposed.context,
            reverses=reverses,
        )


def parse_record_id(record_id: str) -> tuple[str, int]:
    match = _RECORD_ID.match(record_id.strip())
    if not match:
        raise ValueError(f"Invalid record reference {record_id!r} (expected <branch>#<seq>)")
    return match.group(1), int(match.group(2))


def format_decision_record(decision: Decision) -> str:
    """Render the wire block (no trailing newline)."""
    values = {
        "type": decision.type.value,
        "alternatives": ", ".join(decision.alternatives),
        "chosen": decision.chosen,
        "reason": decision.reason,
        "confidence": str(float(decision.confidence)),
        "revisit_probability": str(float(decision.revisit_probability)),
        "context": decision.context,
        "reverses": decision.reverses or "",
        "timestamp": decision.timestamp,
    }
    lines = [f"decision: {decision.name}", ""]
    for label, attr, required in FIELDS:
        if required or values[attr]:
            lines.append(f"{label}: {values[attr]}")
    return "\n".join(lines)


def parse_decision_record(block: str, stage_branch: str, seq: int, source: str = "DECISIONS.log") -> Decision:
    """Parse one wire block.

    Raises:
        MalformedArtifact: header, label, order or value is wrong
    """
    lines = [line for line in block.strip().splitlines() if line.strip()]
    where = f"{source} entry {seq} on {stage_branch}"
    if not lines:
        raise MalformedArtifact(source, f"entry {seq} on {stage_branch} is empty")

    header = _HEADER_LINE.match(lines[0].strip())
    if not header:
        raise MalformedArtifact(source, f"{where}: expected 'decision: <name>', got {lines[0]!r}")

    values: dict[str, str] = {}
    last_position = -1
    positions = {label: i for i, (label, _, _) in enumerate(FIELDS)}
    for line in lines[1:]:
        label, sep, value = line.partition(":")
        label = label.strip()
        if not sep or label not in _LABELS:
            raise MalformedArtifact(source, f"{where}: unexpected line {line!r}")
        if positions[label] <= last_position:
            raise MalformedArtifact(source, f"{where}: '{label}' out of order or repeated")
        last_position = positions[label]
        values[_LABELS[label]] = value.strip()

    for label, attr, required in FIELDS:
        if required and attr not in values:
            raise MalformedArtifact(source, f"{where}: missing '{label}'")

    try:
        decision_type = DecisionType(values["type"])
    except ValueError:
        raise MalformedArtifact(source, f"{where}: unknown decision type {values['type']!r}") from None

    try:
        confidence = float(values["confidence"])
        revisit = float(values["revisit_probability"])
    except ValueError:
        raise MalformedArtifact(source, f"{where}: confidence values must be numbers") from None

    reverses = values.get("reverses") or None
    if reverses is not None and not _RECORD_ID.match(reverses):
        raise MalformedArtifact(source, f"{where}: bad Reverses reference {reverses!r}")

    alternatives = values["alternatives"]
    return Decision(
        name=normalize_name(header.group(1)),
        type=decision_type,
        alternatives=tuple(a.strip() for a in alternatives.split(", ")) if alternatives else (),
        chosen=values["chosen"],
        reason=values["reason"],
        confidence=confidence,
        revisit_probability=revisit,
        stage_branch=stage_branch,
        seq=seq,
        timestamp=values.get("timestamp", ""),
        context=values.get("context", ""),
        reverses=reverses,
    )


def split_log_entries(text: str) -> list[str]:
    """Raw entry blocks of a DECISIONS.log, header removed."""
    header = DECISION_LOG_HEADER.strip()
    entries = []
    for chunk in _ENTRY_SEPARATOR.split(text):
        chunk = chunk.strip()
        if chunk.startswith(header):
            chunk = chunk[len(header):].strip()
        if chunk:
            entries.append(chunk)
    return entries


def parse_decision_log(text: str, stage_branch: str) -> list[Decision]:
    """Parse every entry of a branch's log, in order. Malformed entries raise."""
    return [
        parse_decision_record(block, stage_branch, seq)
        for seq, block in enumerate(split_log_entries(text), 1)
    ]


def append_to_log(log_text: Optional[str], record: str) -> str:
    """New log content with record appended."""
    base = log_text if log_text else DECISION_LOG_HEADER
    return f"{base}\n{record}\n---\n"
