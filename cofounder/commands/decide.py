"""
cf decide   - Record a decision (reused when an active one already covers it).
cf decision - Show the active record or full history of a decision.
cf log      - Decision commits on a stage branch, or recent transition runs.
"""

from cofounder.lib.config import IdeaConfig
from cofounder.lib.errors import InvalidDecision
from cofounder.ledger.decisions import Decision, DecisionType, ProposedDecision
from cofounder.ledger.ledger import DecisionLedger
from cofounder.ledger.stages import branch_name, decision_stage, parse_stage
from cofounder.workflow.progression import StageProgression


def _print_decision(d: Decision, indent: str = "") -> None:
    print(f"{indent}{d.name}  ({d.record_id})")
    print(f"{indent}  Type:         {d.type.value}")
    print(f"{indent}  Alternatives: {', '.join(d.alternatives)}")
    print(f"{indent}  Chosen:       {d.chosen}")
    print(f"{indent}  Reason:       {d.reason}")
    print(f"{indent}  Confidence:   {d.confidence}")
    print(f"{indent}  Revisit:      {d.revisit_probability}")
    if d.context:
        print(f"{indent}  Context:      {d.context}")
    if d.reverses:
        print(f"{indent}  Reverses:     {d.reverses}")
    if d.timestamp:
        print(f"{indent}  Timestamp:    {d.timestamp}")


def cmd_decide(args, idea: IdeaConfig, engine: StageProgression) -> int:
    """Record a decision on a stage branch."""
    try:
        decision_type = DecisionType(args.type)
    except ValueError:
        valid = ", ".join(t.value for t in DecisionType)
        print(f"ERROR: Unknown decision type '{args.type}'. Valid: {valid}")
        return 2

    try:
        stage = parse_stage(args.stage) if args.stage else decision_stage(engine.current_stage())
    except ValueError as e:
        print(f"ERROR: {e}")
        return 2

    alternatives = args.alternative or [args.chosen]
    if args.chosen not in alternatives:
        alternatives.append(args.chosen)

    proposed = ProposedDecision(
        name=args.name,
        type=decision_type,
        alternatives=tuple(alternatives),
        chosen=args.chosen,
        reason=args.reason or "",
        confidence=args.confidence,
        revisit_probability=args.revisit,
        context=args.context or "",
    )

    try:
        outcome = engine.ledger.record_decision(stage, proposed, blocked_by=args.blocked_by)
    except InvalidDecision as e:
        print(f"ERROR: {e}")
        return 2

    d = outcome.decision
    if outcome.reused:
        print(f"Reused existing decision at {d.record_id}: {d.chosen}")
        if d.chosen != proposed.chosen:
            print(f"  (proposed '{proposed.chosen}' was not recorded; pass --blocked-by to revisit)")
    elif d.reverses:
        print(f"Reversed {d.reverses}: recorded {d.chosen} at {d.record_id}")
    else:
        print(f"Recorded {d.name} at {d.record_id}: {d.chosen}")
    return 0


def cmd_decision_show(args, idea: IdeaConfig, ledger: DecisionLedger) -> int:
    decision = ledger.find_decision(args.name)
    if decision is None:
        print(f"No decision named '{args.name}' has been made.")
        return 1
    _print_decision(decision)
    return 0


def cmd_decision_history(args, idea: IdeaConfig, ledger: DecisionLedger) -> int:
    records = ledger.history(args.name)
    if not records:
        print(f"No decision named '{args.name}' has been made.")
        return 1

    active = ledger.find_decision(args.name)
    for d in records:
        marker = "*" if active is not None and d.record_id == active.record_id else " "
        print(f"{marker} {d.timestamp[:19] or '-':<19}  {d.record_id:<28} {d.chosen}")
        if d.reverses:
            print(f"    reverses {d.reverses}: {d.context}")
    return 0


def cmd_log(args, idea: IdeaConfig, engine: StageProgression) -> int:
    """Decision commits on one stage branch, or the transition journal."""
    if args.stage:
        try:
            stage = parse_stage(args.stage)
        except ValueError as e:
            print(f"ERROR: {e}")
            return 2

        decisions = engine.ledger.decision_commits(stage)
        if not decisions:
            print(f"No decision commits on {branch_name(stage)}.")
            return 0
        if not args.reverse:
            decisions = list(reversed(decisions))
        for d in decisions:
            print(f"{d.commit_sha[:8]}  decision: {d.name}  -> {d.chosen}")
            if args.detail:
                _print_decision(d, indent="    ")
        return 0

    runs = engine.journal.runs(limit=args.limit)
    if not runs:
        print("No transitions recorded.")
        return 0
    if not args.reverse:
        runs = list(reversed(runs))
    for run in runs:
        first, last = run[0], run[-1]
        target = f" -> {last.next_stage}" if last.next_stage else ""
        print(f"{first.timestamp[:19]}  {first.run_id}  {last.stage}{target}: {last.state}")
        if args.detail:
            for entry in run:
                detail = f"  {entry.detail}" if entry.detail else ""
                print(f"    {entry.from_state} -> {entry.state} ({entry.trigger}){detail}")
    return 0
