"""
Transition journal.

Every state change of every transition attempt is appended as one JSON line
to ideas/<id>/transitions.jsonl (kept in memory when no directory is
configured). Operators read it with `cf log`; the engine reads it to skip
transitions it already merged for the same source commit.
"""

import json
import logging
import threading
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

JOURNAL_FILENAME = "transitions.jsonl"


@dataclass
class JournalEntry:
    """One state change of one transition attempt."""
    timestamp: str
    run_id: str
    idea_id: str
    from_state: str
    state: str
    trigger: str
    stage: Optional[str] = None
    next_stage: Optional[str] = None
    source_commit: Optional[str] = None
    pr_number: Optional[int] = None
    detail: str = ""


class TransitionJournal:

    def __init__(self, directory: Optional[Path] = None):
        self.path = directory / JOURNAL_FILENAME if directory else None
        self._entries: list[JournalEntry] = []
        self._lock = threading.Lock()

    def record(self, entry: JournalEntry) -> None:
        with self._lock:
            if self.path is None:
                self._entries.append(entry)
                return
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, "a") as f:
                f.write(json.dumps(asdict(entry)) + "\n")
                f.flush()

    def entries(self) -> list[JournalEntry]:
        """All entries, oldest first. Skips corrupted lines."""
        with self._lock:
            if self.path is None:
                return list(self._entries)
            if not self.path.exists():
                return []
            text = self.path.read_text()

        entries = []
        for line_num, line in enumerate(text.splitlines(), 1):
            if not line.strip():
                continue
            try:
                entries.append(JournalEntry(**json.loads(line)))
            except (json.JSONDecodeError, TypeError) as e:
                logger.warning(f"Skipping corrupted journal line {line_num} in {self.path}: {e}")
        return entries

    def merged_from(self, stage: str, source_commit: str) -> Optional[JournalEntry]:
        """The merged entry for a transition out of stage at source_commit, if any."""
        for entry in reversed(self.entries()):
            if entry.state == "merged" and entry.stage == stage and entry.source_commit == source_commit:
                return entry
        return None

    def runs(self, limit: Optional[int] = None) -> list[list[JournalEntry]]:
        """Entries grouped by run, oldest run first."""
        grouped: dict[str, list[JournalEntry]] = {}
        for entry in self.entries():
            grouped.setdefault(entry.run_id, []).append(entry)
        runs = list(grouped.values())
        return runs[-limit:] if limit else runs


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()
