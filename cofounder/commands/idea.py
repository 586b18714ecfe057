"""
cf idea - Create and list ideas; cf use - set the current idea.

`cf idea new` creates:
- GitHub repository <owner>/idea-<slug>
- One branch per stage, requirements seeded with templates
- ideas/<slug>/idea.env under the cofounder home
"""

from pathlib import Path

from cofounder.lib.config import get_current_idea, idea_dir, list_ideas, set_current_idea
from cofounder.lib.errors import StoreError
from cofounder.store.github import check_gh_cli
from cofounder.workflow.ideas import create_idea


def cmd_idea_new(args, home: Path) -> int:
    """Create a new idea."""
    if len(args.name.strip()) < 3:
        print("ERROR: Idea name must be at least 3 characters")
        return 2

    if not check_gh_cli():
        print("ERROR: gh CLI is not installed or not authenticated (run 'gh auth login')")
        return 2

    try:
        idea, store = create_idea(home, args.name, args.description or "", args.owner)
    except ValueError as e:
        print(f"ERROR: {e}")
        return 2
    except StoreError as e:
        print(f"ERROR: Could not create repository: {e}")
        return 3 if e.retryable else 2

    print(f"Created idea: {idea.id}")
    print(f"  Repository: {idea.repo}")
    print(f"  Directory:  {idea.dir}")

    if not args.no_use:
        set_current_idea(home, idea.id)
        print(f"Now using idea: {idea.id}")

    print()
    print("Next: fill in REQUIREMENTS.md, ASSUMPTIONS.md and GOALS.md on the")
    print("requirements branch, then run 'cf trigger requirements'.")
    return 0


def cmd_idea_list(args, home: Path) -> int:
    """List ideas."""
    ideas = list_ideas(home)
    if not ideas:
        print("No ideas yet. Create one with 'cf idea new <name> --owner <owner>'.")
        return 0

    current = get_current_idea(home)
    for idea in ideas:
        marker = "*" if idea.id == current else " "
        print(f"{marker} {idea.id:<30} {idea.repo}")
    return 0


def cmd_use(args, home: Path) -> int:
    """Set or show the current idea context."""
    if not args.id:
        current = get_current_idea(home)
        if current:
            print(f"Current idea: {current}")
        else:
            print("No current idea set. Use 'cf use <id>' to set one.")
        return 0

    if not (idea_dir(home, args.id) / "idea.env").exists():
        print(f"ERROR: Idea '{args.id}' not found.")
        return 2

    set_current_idea(home, args.id)
    print(f"Now using idea: {args.id}")
    return 0
