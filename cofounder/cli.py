#!/usr/bin/env python3
"""cofounder CLI entrypoint."""

import sys
import argparse
import logging
from pathlib import Path

from cofounder.lib.config import (
    IdeaConfig,
    get_current_idea,
    get_home,
    idea_dir,
    list_ideas,
    load_idea_config,
)
from cofounder.lib.constants import EXIT_CONFIG
from cofounder.lib.errors import CofounderError
from cofounder.lib.locking import LockTimeout
from cofounder.lib.validate import ValidationError
from cofounder.ledger.decisions import DecisionType
from cofounder.ledger.stages import STAGE_BRANCHES
from cofounder.commands import decide as cmd_decide_module
from cofounder.commands import idea as cmd_idea_module
from cofounder.commands import status as cmd_status_module
from cofounder.commands import trigger as cmd_trigger_module
from cofounder.workflow.engine import build_engine, build_ledger, exit_code_for_error
from cofounder.store.github import GitHubStore


class CLIError(Exception):
    """Bad invocation or local configuration. Exits with EXIT_CONFIG."""


def resolve_idea(args, home: Path) -> IdeaConfig:
    """Resolve the idea from --idea, the current context, or the only idea."""
    idea_id = getattr(args, 'idea', None) or get_current_idea(home)
    if idea_id:
        directory = idea_dir(home, idea_id)
        if not (directory / "idea.env").exists():
            raise CLIError(f"Idea '{idea_id}' not found under {home}")
        return load_idea_config(directory)

    ideas = list_ideas(home)
    if len(ideas) == 1:
        return ideas[0]
    if not ideas:
        raise CLIError("No ideas configured. Create one with 'cf idea new <name> --owner <owner>'.")
    names = ", ".join(i.id for i in ideas)
    raise CLIError(f"Multiple ideas found ({names}). Use --idea or 'cf use <id>'.")


def cmd_idea_new(args):
    return cmd_idea_module.cmd_idea_new(args, get_home())


def cmd_idea_list(args):
    return cmd_idea_module.cmd_idea_list(args, get_home())


def cmd_use(args):
    return cmd_idea_module.cmd_use(args, get_home())


def cmd_status(args):
    home = get_home()
    idea = resolve_idea(args, home)
    return cmd_status_module.cmd_status(args, idea, build_engine(home, idea))


def cmd_check(args):
    home = get_home()
    idea = resolve_idea(args, home)
    return cmd_status_module.cmd_check(args, idea, build_engine(home, idea))


def cmd_decide(args):
    home = get_home()
    idea = resolve_idea(args, home)
    return cmd_decide_module.cmd_decide(args, idea, build_engine(home, idea))


def cmd_decision_show(args):
    home = get_home()
    idea = resolve_idea(args, home)
    ledger = build_ledger(home, idea, GitHubStore(idea.repo, idea.default_branch))
    return cmd_decide_module.cmd_decision_show(args, idea, ledger)


def cmd_decision_history(args):
    home = get_home()
    idea = resolve_idea(args, home)
    ledger = build_ledger(home, idea, GitHubStore(idea.repo, idea.default_branch))
    return cmd_decide_module.cmd_decision_history(args, idea, ledger)


def cmd_log(args):
    home = get_home()
    idea = resolve_idea(args, home)
    return cmd_decide_module.cmd_log(args, idea, build_engine(home, idea))


def cmd_trigger(args):
    home = get_home()
    idea = resolve_idea(args, home)
    return cmd_trigger_module.cmd_trigger(args, home, idea, build_engine(home, idea))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog='cf', description='cofounder stage progression CLI')
    parser.add_argument('--idea', '-i', help='Idea ID (uses current if not specified)')
    parser.add_argument('--verbose', '-v', action='store_true', help='Debug logging')
    subparsers = parser.add_subparsers(dest='command', required=True)

    # cf idea
    p_idea = subparsers.add_parser('idea', help='Create and list ideas')
    p_idea.set_defaults(func=cmd_idea_list)
    idea_sub = p_idea.add_subparsers(dest='idea_cmd')

    # cf idea new
    p_idea_new = idea_sub.add_parser('new', help='Create an idea repository')
    p_idea_new.add_argument('name', help='Idea name')
    p_idea_new.add_argument('--description', '-d', help='One-line description')
    p_idea_new.add_argument('--owner', '-o', required=True, help='GitHub user or organization')
    p_idea_new.add_argument('--no-use', action='store_true', help='Do not make it the current idea')
    p_idea_new.set_defaults(func=cmd_idea_new)

    # cf idea list
    p_idea_list = idea_sub.add_parser('list', help='List ideas')
    p_idea_list.set_defaults(func=cmd_idea_list)

    # cf use
    p_use = subparsers.add_parser('use', help='Set/show current idea')
    p_use.add_argument('id', nargs='?', help='Idea ID to use')
    p_use.set_defaults(func=cmd_use)

    # cf status
    p_status = subparsers.add_parser('status', help='Show stage completeness')
    p_status.add_argument('--runs', type=int, default=5, help='Recent transitions to show')
    p_status.set_defaults(func=cmd_status)

    # cf check
    p_check = subparsers.add_parser('check', help='Evaluate one stage')
    p_check.add_argument('stage', help=f"One of: {', '.join(STAGE_BRANCHES)}")
    p_check.set_defaults(func=cmd_check)

    # cf decide
    p_decide = subparsers.add_parser('decide', help='Record a decision')
    p_decide.add_argument('name', help='Decision name (e.g., use-database)')
    p_decide.add_argument('--type', '-t', required=True,
                          help=f"One of: {', '.join(t.value for t in DecisionType)}")
    p_decide.add_argument('--chosen', '-c', required=True, help='Chosen alternative')
    p_decide.add_argument('--alternative', '-a', action='append', help='Alternative considered (repeatable)')
    p_decide.add_argument('--reason', '-r', help='Why')
    p_decide.add_argument('--confidence', type=float, default=0.8, help='Confidence in [0, 1]')
    p_decide.add_argument('--revisit', type=float, default=0.1, help='Revisit probability in [0, 1]')
    p_decide.add_argument('--context', help='Context line')
    p_decide.add_argument('--blocked-by', help='Blocking signal that justifies revisiting')
    p_decide.add_argument('--stage', '-s', help='Stage branch (defaults to the current stage)')
    p_decide.set_defaults(func=cmd_decide)

    # cf decision
    p_decision = subparsers.add_parser('decision', help='Inspect decisions')
    decision_sub = p_decision.add_subparsers(dest='decision_cmd', required=True)

    p_decision_show = decision_sub.add_parser('show', help='Show the active record')
    p_decision_show.add_argument('name', help='Decision name')
    p_decision_show.set_defaults(func=cmd_decision_show)

    p_decision_history = decision_sub.add_parser('history', help='Show every record, oldest first')
    p_decision_history.add_argument('name', help='Decision name')
    p_decision_history.set_defaults(func=cmd_decision_history)

    # cf log
    p_log = subparsers.add_parser('log', help='Decision commits on a stage, or transition runs')
    p_log.add_argument('stage', nargs='?', help='Stage branch (omit for transition runs)')
    p_log.add_argument('--limit', '-n', type=int, default=20, help='Transition runs to show')
    p_log.add_argument('--reverse', action='store_true', help='Oldest first')
    p_log.add_argument('--detail', '-d', action='store_true', help='Show full records / state changes')
    p_log.set_defaults(func=cmd_log)

    # cf trigger
    p_trigger = subparsers.add_parser('trigger', help='Run one transition attempt for a branch')
    p_trigger.add_argument('branch', nargs='?', help='Pushed branch')
    p_trigger.add_argument('--event', '-e', help='Trigger payload JSON file')
    p_trigger.add_argument('--flow', action='store_true', help='Run inside the Prefect flow')
    p_trigger.set_defaults(func=cmd_trigger)

    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        return args.func(args)
    except CLIError as e:
        print(f"ERROR: {e}")
        return EXIT_CONFIG
    except (CofounderError, LockTimeout) as e:
        print(f"ERROR: {e}")
        return exit_code_for_error(e)
    except (FileNotFoundError, ValueError, ValidationError) as e:
        print(f"ERROR: Configuration problem: {e}")
        return EXIT_CONFIG


if __name__ == '__main__':
    sys.exit(main())
