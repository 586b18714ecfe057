"""
cf trigger - Run one transition attempt as if <branch> had just been pushed.

With --event, the branch comes from a saved trigger payload ({repo, ref} or a
GitHub push webhook body). With --flow, the attempt runs inside the Prefect
stage-transition flow instead of in-process.
"""

import json
from pathlib import Path

from pydantic import ValidationError

from cofounder.agents.command import CommandGenerator, CommandReviewer
from cofounder.lib.agents_config import check_agent_binaries
from cofounder.lib.config import IdeaConfig
from cofounder.workflow.engine import exit_code_for_outcome, outcome_summary
from cofounder.workflow.flows import parse_event, stage_transition_flow
from cofounder.workflow.progression import StageProgression


def _print_summary(summary: dict) -> None:
    print(f"Status: {summary['status']}")
    if summary.get("stage"):
        target = f" -> {summary['next_stage']}" if summary.get("next_stage") else ""
        print(f"  Transition: {summary['stage']}{target}")
    if summary.get("pr_number"):
        print(f"  PR:         #{summary['pr_number']} {summary.get('pr_url') or ''}")
    for path in summary.get("committed", []):
        print(f"  Committed:  {path}")
    for d in summary.get("decisions", []):
        note = "new" if d["was_new"] else "reused"
        print(f"  Decision:   {d['name']} = {d['chosen']} ({note})")
    if summary.get("detail"):
        print(f"  {summary['detail']}")
    if summary.get("error"):
        print(f"  ERROR: {summary['error']}")


def _missing_agent(engine: StageProgression) -> str:
    for collaborator, role in ((engine.generator, "generate"), (engine.reviewer, "review")):
        if isinstance(collaborator, (CommandGenerator, CommandReviewer)):
            ok, message = check_agent_binaries(collaborator.agents_config, [role])
            if not ok:
                return message
    return ""


def cmd_trigger(args, home: Path, idea: IdeaConfig, engine: StageProgression) -> int:
    ref = args.branch
    if args.event:
        try:
            event = parse_event(json.loads(Path(args.event).read_text()))
        except (OSError, json.JSONDecodeError, KeyError, TypeError, ValidationError) as e:
            print(f"ERROR: Cannot read trigger event {args.event}: {e}")
            return 2
        if event.repo.lower() != idea.repo.lower():
            print(f"ERROR: Event is for {event.repo}, not {idea.repo}")
            return 2
        ref = event.branch

    if not ref:
        print("ERROR: Specify a branch or --event FILE")
        return 2

    missing = _missing_agent(engine)
    if missing:
        print(f"ERROR: {missing}")
        return 2

    if args.flow:
        summary = stage_transition_flow({"repo": idea.repo, "ref": ref}, home=str(home))
        _print_summary(summary)
        return summary["exit_code"]

    outcome = engine.handle_branch_update(ref)
    _print_summary(outcome_summary(outcome))
    return exit_code_for_outcome(outcome)
