"""
Stage progression engine.

Handles one branch-update trigger end to end:

    evaluate stage S -> check upstream and gates -> generate S' content
    -> reconcile decisions -> commit to S' -> open PR S' -> S'' -> review
    -> merge or leave open

Each invocation is tracked by a TransitionFSM whose every state change is
journaled. Attempts for one idea are serialized by a per-idea transition
lock; with the open-PR check and the journal's merged-at-commit check this
makes duplicate trigger deliveries open at most one PR per transition.

The engine never retries. Store and ledger errors are logged, journaled,
reported and re-raised unmodified.
"""

import logging
import uuid
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path, PurePosixPath
from typing import Callable, Optional, TypeVar

from cofounder import notifications
from cofounder.lib.config import EngineProfile
from cofounder.lib.constants import DECISION_LOG_PATH, PROMOTION_DECISION
from cofounder.lib.errors import (
    CofounderError,
    CollaboratorFailure,
    ConflictingWrite,
    GeneratorFailure,
    GeneratorTimeout,
    InvalidDecision,
    NotFound,
    ReviewerFailure,
    ReviewerTimeout,
)
from cofounder.lib.locking import idea_lock
from cofounder.ledger.artifacts import ArtifactSet
from cofounder.ledger.completeness import CompletenessVerdict, evaluate
from cofounder.ledger.ledger import DecisionLedger, RecordOutcome
from cofounder.ledger.stages import (
    DEPLOYMENT,
    IMPLEMENTATION_STABLE,
    STAGE_ORDER,
    Stage,
    branch_name,
    decision_stage,
    is_terminal,
    parse_branch,
    predecessors,
    successor,
)
from cofounder.store.base import PullRequest, VersionedStore
from .collaborators import GeneratedContent, PullRequestReviewer, ReviewVerdict, StageContentGenerator
from .fsm import TransitionFSM
from .journal import JournalEntry, TransitionJournal, utc_now

logger = logging.getLogger(__name__)

T = TypeVar("T")


class TransitionStatus(Enum):
    IGNORED = "ignored"                      # branch is not a stage branch
    INCOMPLETE = "incomplete"
    TERMINAL = "terminal"
    BLOCKED_UPSTREAM = "blocked_upstream"
    PROMOTION_PENDING = "promotion_pending"
    DUPLICATE = "duplicate"
    MERGED = "merged"
    AWAITING_MANUAL = "awaiting_manual"


@dataclass
class TransitionOutcome:
    status: TransitionStatus
    stage: Optional[Stage] = None
    next_stage: Optional[Stage] = None
    verdict: Optional[CompletenessVerdict] = None
    pr: Optional[PullRequest] = None
    review: Optional[ReviewVerdict] = None
    decisions: list[RecordOutcome] = field(default_factory=list)
    committed: list[str] = field(default_factory=list)
    detail: str = ""

    @property
    def merged(self) -> bool:
        return self.status is TransitionStatus.MERGED


@dataclass
class _Run:
    run_id: str
    stage: Stage
    next_stage: Optional[Stage] = None
    source_commit: Optional[str] = None
    pr_number: Optional[int] = None


def _call_with_timeout(
    func: Callable[[], T],
    timeout: float,
    what: str,
    failure: type[CollaboratorFailure],
    timed_out: type[CollaboratorFailure],
) -> T:
    """Run a blocking collaborator call, giving up after timeout seconds.

    A call that times out keeps running in its worker thread, but its result
    is discarded; collaborators only ever read the store, so nothing it does
    can reach the repository. Engine errors raised inside pass through as is.
    """
    executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"cofounder-{what}")
    future = executor.submit(func)
    try:
        return future.result(timeout=timeout)
    except FutureTimeout:
        raise timed_out(f"{what} did not finish within {timeout}s") from None
    except CofounderError:
        raise
    except Exception as e:
        raise failure(f"{what} failed: {e}") from e
    finally:
        executor.shutdown(wait=False, cancel_futures=True)


def _check_generated(content: GeneratedContent, next_stage: Stage) -> None:
    if not isinstance(content, GeneratedContent):
        raise GeneratorFailure(f"generator returned {type(content).__name__}, expected GeneratedContent")
    if not content.files:
        raise GeneratorFailure(f"generator returned no files for {next_stage}")
    for path in content.files:
        parts = PurePosixPath(path).parts
        if not parts or path.startswith("/") or ".." in parts:
            raise GeneratorFailure(f"generator returned unsafe path {path!r}")
        if path == DECISION_LOG_PATH:
            raise GeneratorFailure(f"generator may not write {DECISION_LOG_PATH}; propose decisions instead")
    for proposed in content.decisions:
        try:
            proposed.validated()
        except InvalidDecision as e:
            raise GeneratorFailure(f"generator proposed an invalid decision: {e}") from e


def build_pr_body(
    stage: Stage,
    next_stage: Stage,
    content: GeneratedContent,
    decisions: list[RecordOutcome],
    verdict: CompletenessVerdict,
) -> str:
    lines = [
        f"## Stage Transition: {stage} → {next_stage}",
        "",
        "### What Changed",
        "",
        content.summary or "No summary provided.",
        "",
        "### Decisions Made",
        "",
    ]
    if decisions:
        for outcome in decisions:
            d = outcome.decision
            if outcome.reused:
                note = f"reused from {d.record_id}"
            elif d.reverses:
                note = f"reverses {d.reverses}"
            else:
                note = f"new, {d.record_id}"
            lines.append(f"- {d.name}: {d.chosen} ({note})")
    else:
        lines.append("- None")
    lines += [
        "",
        "### Validation",
        "",
        f"- {verdict.reason}",
    ]
    lines += [f"- {key}: {value}" for key, value in sorted(verdict.metrics.items())]
    lines += [
        "",
        "### Next Steps",
        "",
        f"This PR progresses the idea to the {next_stage} stage.",
        "",
        "---",
        "",
        "*Automated by the cofounder stage progression engine*",
    ]
    return "\n".join(lines) + "\n"


class StageProgression:

    def __init__(
        self,
        store: VersionedStore,
        ledger: DecisionLedger,
        generator: StageContentGenerator,
        reviewer: PullRequestReviewer,
        journal: Optional[TransitionJournal] = None,
        profile: Optional[EngineProfile] = None,
        lock_home: Optional[Path] = None,
    ):
        self.store = store
        self.ledger = ledger
        self.generator = generator
        self.reviewer = reviewer
        self.journal = journal or TransitionJournal()
        self.profile = profile or EngineProfile(notify=False)
        self.lock_home = lock_home
        self.idea_id = ledger.idea_id

    # Read-only queries

    def load_artifacts(self, stage: Stage) -> ArtifactSet:
        return ArtifactSet.load(self.store, branch_name(stage))

    def evaluate(self, stage: Stage) -> CompletenessVerdict:
        """Evaluate a stage at its branch head. A missing branch is incomplete."""
        try:
            artifacts = self.load_artifacts(stage)
        except NotFound:
            return CompletenessVerdict(False, f"branch {branch_name(stage)} does not exist")
        return evaluate(stage, artifacts)

    def status(self) -> list[tuple[Stage, CompletenessVerdict]]:
        return [(stage, self.evaluate(stage)) for stage in STAGE_ORDER]

    def current_stage(self) -> Stage:
        """First stage that is not complete, or deployment when all are."""
        for stage in STAGE_ORDER:
            if not self.evaluate(stage).complete:
                return stage
        return DEPLOYMENT

    def pr_base(self, head_stage: Stage) -> str:
        """Base branch of the PR whose head is head_stage."""
        after = successor(head_stage)
        return branch_name(after) if after else self.profile.release_branch

    # Trigger handling

    def handle_branch_update(self, ref: str) -> TransitionOutcome:
        """Run one transition attempt for a pushed branch.

        Raises:
            StoreError, CollaboratorFailure, InvariantViolation, LockTimeout
        """
        stage = parse_branch(ref)
        if stage is None:
            logger.debug(f"[TRANSITION] {self.idea_id}: ignoring non-stage ref {ref}")
            return TransitionOutcome(TransitionStatus.IGNORED, detail=f"{ref} is not a stage branch")

        run = _Run(run_id=uuid.uuid4().hex[:12], stage=stage, next_stage=successor(stage))
        fsm = TransitionFSM(self.idea_id, on_transition=lambda *args: self._journal(run, *args))

        with idea_lock(self.lock_home, self.idea_id, "transition", self.profile.lock_timeout):
            fsm.start(detail=f"trigger {ref}")
            try:
                return self._attempt(fsm, run)
            except Exception as e:
                logger.error(f"[TRANSITION] {self.idea_id}: {stage} failed in {fsm.state}: {e}")
                failed_in = fsm.state
                if fsm.can("fail"):
                    fsm.fail(detail=f"{type(e).__name__}: {e}")
                if self.profile.notify:
                    notifications.notify_failed(self.idea_id, failed_in, str(e))
                raise

    def _journal(self, run: _Run, from_state: str, to_state: str, trigger: str, kwargs: dict) -> None:
        if kwargs.get("pr_number"):
            run.pr_number = kwargs["pr_number"]
        self.journal.record(JournalEntry(
            timestamp=utc_now(),
            run_id=run.run_id,
            idea_id=self.idea_id,
            from_state=from_state,
            state=to_state,
            trigger=trigger,
            stage=branch_name(run.stage),
            next_stage=branch_name(run.next_stage) if run.next_stage else None,
            source_commit=run.source_commit,
            pr_number=run.pr_number,
            detail=kwargs.get("detail", ""),
        ))

    def _halt(self, fsm: TransitionFSM, outcome: TransitionOutcome, notify: bool = False) -> TransitionOutcome:
        fsm.skip(detail=outcome.detail)
        logger.info(f"[TRANSITION] {self.idea_id}: {outcome.stage} {outcome.status.value}: {outcome.detail}")
        if notify and self.profile.notify:
            notifications.notify_blocked(self.idea_id, str(outcome.stage), outcome.detail)
        return outcome

    def _attempt(self, fsm: TransitionFSM, run: _Run) -> TransitionOutcome:
        stage, next_stage = run.stage, run.next_stage

        artifacts = self.load_artifacts(stage)
        run.source_commit = artifacts.commit
        verdict = evaluate(stage, artifacts)
        if not verdict.complete:
            fsm.not_ready(detail=verdict.reason)
            logger.info(f"[TRANSITION] {self.idea_id}: {stage} not ready: {verdict.reason}")
            return TransitionOutcome(TransitionStatus.INCOMPLETE, stage, next_stage, verdict, detail=verdict.reason)

        if is_terminal(stage):
            return self._halt(fsm, TransitionOutcome(
                TransitionStatus.TERMINAL, stage, None, verdict, detail=f"{stage} is the final stage",
            ))

        for upstream in predecessors(stage):
            upstream_verdict = self.evaluate(upstream)
            if not upstream_verdict.complete:
                return self._halt(fsm, TransitionOutcome(
                    TransitionStatus.BLOCKED_UPSTREAM, stage, next_stage, upstream_verdict,
                    detail=f"{upstream} is incomplete: {upstream_verdict.reason}",
                ), notify=True)

        if next_stage == IMPLEMENTATION_STABLE and self.ledger.find_decision(PROMOTION_DECISION) is None:
            return self._halt(fsm, TransitionOutcome(
                TransitionStatus.PROMOTION_PENDING, stage, next_stage, verdict,
                detail=f"decision '{PROMOTION_DECISION}' has not been made",
            ), notify=True)

        head, base = branch_name(next_stage), self.pr_base(next_stage)
        existing = self.store.find_pull_request(head, base)
        if existing is not None:
            run.pr_number = existing.number
            return self._halt(fsm, TransitionOutcome(
                TransitionStatus.DUPLICATE, stage, next_stage, verdict, pr=existing,
                detail=f"PR #{existing.number} {head} -> {base} is already open",
            ))
        merged = self.journal.merged_from(branch_name(stage), artifacts.commit)
        if merged is not None:
            return self._halt(fsm, TransitionOutcome(
                TransitionStatus.DUPLICATE, stage, next_stage, verdict,
                detail=f"already merged from {artifacts.commit[:8]} (PR #{merged.pr_number})",
            ))

        fsm.generate(detail=f"{stage} -> {next_stage}")
        active = self.ledger.active_decisions()
        content = _call_with_timeout(
            lambda: self.generator.generate(stage, next_stage, artifacts, active),
            self.profile.generate_timeout, "generator", GeneratorFailure, GeneratorTimeout,
        )
        _check_generated(content, next_stage)

        fsm.reconcile(detail=f"{len(content.decisions)} proposed decisions")
        target = decision_stage(next_stage)
        decisions = [self.ledger.record_decision(target, proposed) for proposed in content.decisions]

        fsm.commit(detail=f"{len(content.files)} files")
        committed = []
        for path, text in sorted(content.files.items()):
            message = f"{next_stage}: update {path}\n\n{content.summary}".strip()
            if self.store.put_file(head, path, text, message) is not None:
                committed.append(path)
        logger.info(f"[TRANSITION] {self.idea_id}: committed {len(committed)} files to {head}")

        title = f"{stage} → {next_stage}: Stage transition"
        body = build_pr_body(stage, next_stage, content, decisions, verdict)
        try:
            pr = self.store.open_pull_request(head, base, title, body)
        except ConflictingWrite:
            pr = self.store.find_pull_request(head, base)
            if pr is None:
                raise
            logger.info(f"[TRANSITION] {self.idea_id}: reusing open PR #{pr.number}")
        fsm.open_pr(pr_number=pr.number, detail=pr.url)

        fsm.review()
        review = _call_with_timeout(
            lambda: self.reviewer.review(pr),
            self.profile.review_timeout, "reviewer", ReviewerFailure, ReviewerTimeout,
        )
        outcome = TransitionOutcome(
            TransitionStatus.AWAITING_MANUAL, stage, next_stage, verdict,
            pr=pr, review=review, decisions=decisions, committed=committed,
        )

        if review.approved and review.confidence > self.profile.auto_merge_confidence:
            self.store.merge_pull_request(pr, self.profile.merge_method)
            outcome.status = TransitionStatus.MERGED
            outcome.detail = f"approved at {review.confidence:.2f}"
            fsm.merge(detail=outcome.detail)
            if self.profile.notify:
                notifications.notify_merged(self.idea_id, title)
            return outcome

        outcome.detail = (
            f"{'approved' if review.approved else 'not approved'} at {review.confidence:.2f}"
            + (f": {review.notes}" if review.notes else "")
        )
        fsm.await_manual(detail=outcome.detail)
        if self.profile.notify:
            notifications.notify_awaiting_review(self.idea_id, pr.number, title)
        return outcome
