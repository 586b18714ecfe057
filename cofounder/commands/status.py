"""
cf status - Show completeness of every stage of an idea.
cf check  - Evaluate one stage and explain the verdict.
"""

from cofounder.lib.config import IdeaConfig
from cofounder.ledger.stages import branch_name, parse_stage
from cofounder.workflow.progression import StageProgression


def cmd_status(args, idea: IdeaConfig, engine: StageProgression) -> int:
    """Show per-stage completeness, open transition PRs and recent runs."""
    print(f"Idea: {idea.id}")
    print("=" * 60)
    print()
    print(f"Name:        {idea.name}")
    print(f"Repository:  {idea.repo}")
    print()

    results = engine.status()
    current = next((stage for stage, verdict in results if not verdict.complete), None)

    print("Stages:")
    for stage, verdict in results:
        marker = "[x]" if verdict.complete else "[ ]"
        arrow = "  <-- CURRENT" if stage == current else ""
        print(f"  {marker} {branch_name(stage):<28}{arrow}")
        if not verdict.complete:
            print(f"        {verdict.reason}")

    open_prs = []
    for stage, _ in results:
        head, base = branch_name(stage), engine.pr_base(stage)
        pr = engine.store.find_pull_request(head, base)
        if pr is not None:
            open_prs.append(pr)
    print()
    if open_prs:
        print("Open transition PRs:")
        for pr in open_prs:
            print(f"  #{pr.number} {pr.head} -> {pr.base}  {pr.url}")
    else:
        print("Open transition PRs: none")

    runs = engine.journal.runs(limit=args.runs)
    if runs:
        print()
        print("Recent transitions:")
        for run in runs:
            last = run[-1]
            target = f" -> {last.next_stage}" if last.next_stage else ""
            pr = f" (PR #{last.pr_number})" if last.pr_number else ""
            print(f"  {last.timestamp[:19]}  {last.stage}{target}: {last.state}{pr}")

    return 0 if current is None else 1


def cmd_check(args, idea: IdeaConfig, engine: StageProgression) -> int:
    """Evaluate one stage. Exit 0 when complete, 1 when not."""
    try:
        stage = parse_stage(args.stage)
    except ValueError as e:
        print(f"ERROR: {e}")
        return 2

    verdict = engine.evaluate(stage)
    status = "COMPLETE" if verdict.complete else "INCOMPLETE"
    print(f"{branch_name(stage)}: {status}")
    print(f"  {verdict.reason}")
    for key, value in sorted(verdict.metrics.items()):
        print(f"  {key}: {value}")
    return 0 if verdict.complete else 1
