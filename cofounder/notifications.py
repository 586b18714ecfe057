"""
Desktop notifications for transition outcomes an operator should see.

Sent through notify-send, so any freedesktop notification daemon shows them.
Notifications are best effort: a missing notify-send or a failed call is
logged and never interrupts a transition.
"""

import logging
import shutil
import subprocess

logger = logging.getLogger(__name__)

VALID_URGENCIES = ("low", "normal", "critical")

MAX_NOTIFICATION_LENGTH = 200

APP_NAME = "Cofounder"


def _shorten(text: str) -> str:
    return text if len(text) <= MAX_NOTIFICATION_LENGTH else text[:MAX_NOTIFICATION_LENGTH] + "..."


def notify(title: str, message: str, urgency: str = "normal"):
    """Show a desktop notification. urgency is one of VALID_URGENCIES."""
    if urgency not in VALID_URGENCIES:
        logger.warning(f"Invalid urgency '{urgency}', using 'normal'")
        urgency = "normal"

    if shutil.which("notify-send") is None:
        logger.debug(f"[NOTIFY] notify-send unavailable, dropped: {title}")
        return

    cmd = ["notify-send", "--urgency", urgency, "--app-name", APP_NAME, title, message]
    try:
        result = subprocess.run(cmd, capture_output=True, text=True, timeout=5)
    except subprocess.TimeoutExpired:
        logger.warning("[NOTIFY] notify-send timed out")
        return
    except OSError as e:
        logger.warning(f"[NOTIFY] could not run notify-send: {e}")
        return
    if result.returncode != 0:
        logger.warning(f"[NOTIFY] notify-send exited {result.returncode}: {result.stderr.strip()}")


def _notify_idea(idea_id: str, message: str, urgency: str):
    notify(f"{APP_NAME}: {idea_id}", message, urgency)


def notify_awaiting_review(idea_id: str, pr_number: int, title: str):
    """A transition PR was left open for a human decision."""
    _notify_idea(idea_id, f"PR #{pr_number} awaiting review: {title}", "normal")


def notify_blocked(idea_id: str, stage: str, reason: str):
    _notify_idea(idea_id, f"{stage} blocked: {_shorten(reason)}", "critical")


def notify_merged(idea_id: str, title: str):
    _notify_idea(idea_id, f"Merged: {title}", "low")


def notify_failed(idea_id: str, state: str, error: str):
    """A transition attempt raised while in lifecycle state `state`."""
    _notify_idea(idea_id, f"Failed while {state}: {_shorten(error)}", "critical")
