"""
Decision ledger.

Answers "has decision X been made, and should it be revisited?" across every
stage branch of an idea, and appends new decisions to a stage branch's
DECISIONS.log, one commit per decision.

Read-then-append is serialized twice: a per-idea advisory lock around each
ledger operation, and a compare-and-swap on the log's blob sha so a writer
that bypasses the lock (another host, a human) still cannot be overwritten.
"""

import logging
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Optional

from cofounder.lib.constants import DECISION_LOG_PATH, DEFAULT_REVISIT_THRESHOLD
from cofounder.lib.errors import ConflictingWrite, InvalidDecision, InvariantViolation, NotFound
from cofounder.lib.locking import idea_lock
from cofounder.store.base import FileContent, VersionedStore
from .decisions import (
    Decision,
    ProposedDecision,
    append_to_log,
    format_decision_record,
    normalize_name,
    parse_decision_log,
    parse_decision_record,
    split_log_entries,
)
from .stages import STAGE_BRANCHES, Stage, accepts_decisions, branch_name

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RecordOutcome:
    decision: Decision
    was_new: bool
    reused: bool


@dataclass
class _LedgerView:
    """Every record across branches, deduplicated, plus the raw logs read."""
    records: list[Decision]
    aliases: dict[str, str]  # any branch#seq a record appears at -> its origin id
    logs: dict[str, Optional[FileContent]]


def _identity(d: Decision) -> tuple:
    # Merges copy log entries downstream; a copy is the same record
    return (d.name, d.type, d.alternatives, d.chosen, d.reason, d.confidence,
            d.revisit_probability, d.timestamp, d.context, d.reverses)


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


class DecisionLedger:

    def __init__(
        self,
        store: VersionedStore,
        idea_id: str,
        lock_home: Optional[Path] = None,
        revisit_threshold: float = DEFAULT_REVISIT_THRESHOLD,
        cas_attempts: int = 3,
        lock_timeout: float = 60,
        clock: Callable[[], str] = _utc_now,
    ):
        self.store = store
        self.idea_id = idea_id
        self.lock_home = lock_home
        self.revisit_threshold = revisit_threshold
        self.cas_attempts = max(1, cas_attempts)
        self.lock_timeout = lock_timeout
        self.clock = clock

    def _scan(self) -> _LedgerView:
        records: list[Decision] = []
        aliases: dict[str, str] = {}
        logs: dict[str, Optional[FileContent]] = {}
        origin_by_identity: dict[tuple, str] = {}

        for branch in STAGE_BRANCHES:
            try:
                log = self.store.read_file(branch, DECISION_LOG_PATH)
            except NotFound:
                log = None
            logs[branch] = log
            if log is None:
                continue
            for decision in parse_decision_log(log.content, branch):
                key = _identity(decision)
                if key in origin_by_identity:
                    aliases[decision.record_id] = origin_by_identity[key]
                    continue
                origin_by_identity[key] = decision.record_id
                aliases[decision.record_id] = decision.record_id
                records.append(decision)

        return _LedgerView(records=records, aliases=aliases, logs=logs)

    def _resolve(self, view: _LedgerView, name: str) -> Optional[Decision]:
        same_name = [r for r in view.records if r.name == name]
        by_id = {r.record_id: r for r in view.records}

        superseded = set()
        for record in same_name:
            if record.reverses is None:
                continue
            target = view.aliases.get(record.reverses)
            if target is None or by_id[target].name != name:
                raise InvariantViolation(
                    f"Decision '{name}' at {record.record_id} reverses {record.reverses}, "
                    f"which is not a record of the same name"
                )
            superseded.add(target)

        active = [r for r in same_name if r.record_id not in superseded]
        if len(active) > 1:
            ids = ", ".join(r.record_id for r in active)
            raise InvariantViolation(f"Decision '{name}' has {len(active)} active records: {ids}")
        return active[0] if active else None

    def find_decision(self, name: str) -> Optional[Decision]:
        """The active record for name across all stage branches, or None."""
        return self._resolve(self._scan(), normalize_name(name))

    def history(self, name: str) -> list[Decision]:
        """Every record for name, oldest first, superseded ones included."""
        name = normalize_name(name)
        records = [r for r in self._scan().records if r.name == name]
        return sorted(records, key=lambda r: r.timestamp)

    def active_decisions(self) -> list[Decision]:
        view = self._scan()
        names = dict.fromkeys(r.name for r in view.records)
        return [d for d in (self._resolve(view, n) for n in names) if d is not None]

    def decision_commits(self, stage: Stage) -> list[Decision]:
        """Decisions parsed from the commit messages on a stage branch, oldest first.

        seq here is the position among decision commits; merge commits that
        carried log entries over from upstream are not decision commits.
        """
        branch = branch_name(stage)
        commits = self.store.list_commits(branch, path=DECISION_LOG_PATH)
        decision_msgs = [c for c in reversed(commits) if c.message.startswith("decision: ")]
        result = []
        for seq, commit in enumerate(decision_msgs, 1):
            decision = parse_decision_record(commit.message, branch, seq, source=f"commit {commit.sha[:8]}")
            result.append(replace(decision, commit_sha=commit.sha))
        return result

    def record_decision(
        self,
        stage: Stage,
        proposed: ProposedDecision,
        blocked_by: Optional[str] = None,
    ) -> RecordOutcome:
        """Record proposed on stage's branch unless an active decision already covers it.

        Raises:
            InvalidDecision: bad proposal, or stage takes no decisions
            ConflictingWrite: lost the compare-and-swap race cas_attempts times
            InvariantViolation: the existing records for the name are inconsistent
        """
        proposed = proposed.validated()
        if not accepts_decisions(stage):
            raise InvalidDecision(f"Stage {stage} does not accept new decisions")
        branch = branch_name(stage)
        blocking = (blocked_by or "").strip() or proposed.blocked_by

        with idea_lock(self.lock_home, self.idea_id, "ledger", self.lock_timeout):
            for attempt in range(1, self.cas_attempts + 1):
                view = self._scan()
                existing = self._resolve(view, proposed.name)

                if existing is not None:
                    if existing.revisit_probability < self.revisit_threshold or not blocking:
                        logger.info(
                            f"[LEDGER] Reusing '{existing.name}' ({existing.record_id}): "
                            f"chosen={existing.chosen}"
                        )
                        return RecordOutcome(decision=existing, was_new=False, reused=True)

                try:
                    decision = self._append(view, branch, proposed, existing, blocking)
                except ConflictingWrite:
                    logger.warning(
                        f"[LEDGER] {branch}:{DECISION_LOG_PATH} moved while recording "
                        f"'{proposed.name}' (attempt {attempt}/{self.cas_attempts})"
                    )
                    continue
                return RecordOutcome(decision=decision, was_new=True, reused=False)

        raise ConflictingWrite(
            f"Could not record '{proposed.name}' on {branch} after {self.cas_attempts} attempts",
            repo=self.store.repo,
        )

    def _append(
        self,
        view: _LedgerView,
        branch: str,
        proposed: ProposedDecision,
        existing: Optional[Decision],
        blocking: str,
    ) -> Decision:
        current = view.logs.get(branch)
        seq = len(split_log_entries(current.content)) + 1 if current else 1

        reverses = None
        if existing is not None:
            reverses = existing.record_id
            if not proposed.context:
                proposed = replace(proposed, context=f"Blocked: {blocking}")

        decision = Decision.from_proposed(proposed, branch, seq, self.clock(), reverses=reverses)
        record = format_decision_record(decision)
        commit = self.store.write_file(
            branch,
            DECISION_LOG_PATH,
            append_to_log(current.content if current else None, record),
            message=record,
            expected_sha=current.sha if current else None,
        )

        if reverses:
            logger.info(f"[LEDGER] Reversed '{decision.name}' {reverses} -> {decision.record_id}: {decision.chosen}")
        else:
            logger.info(f"[LEDGER] Recorded '{decision.name}' at {decision.record_id}: {decision.chosen}")
        return replace(decision, commit_sha=commit.sha)
