"""
Stage artifacts and the markdown structure the evaluators count.

An ArtifactSet is a snapshot of one stage branch pinned to a commit: every
file path, plus the text of the top-level documents. Evaluators only ever
see the snapshot, which keeps them pure.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Optional

from cofounder.lib.errors import MalformedArtifact
from cofounder.store.base import VersionedStore

logger = logging.getLogger(__name__)

DOCUMENT_SUFFIXES = (".md", ".log", ".txt")

_HEADING = re.compile(r'^(#{1,6})\s+(.+?)\s*#*\s*$')
_FENCE = re.compile(r'^\s*(```|~~~)')
_CRITICALITY = re.compile(r'criticality\s*:\s*([^\s),\]]*)', re.IGNORECASE)
_ASSUMPTION_LINE = re.compile(r'^\s*(#{1,6}\s|[-*+]\s|\d+[.)]\s)')
_SUBHEADING = re.compile(r'^##+\s')
_VALIDATED = re.compile(r'\[(validated|x)\]', re.IGNORECASE)
_CHECKLIST_ITEM = re.compile(r'^\s*[-*+]\s*\[([ xX])\]\s*\S', re.MULTILINE)
_ENDPOINT = re.compile(
    r'^[\s>*+#-]*`?(GET|POST|PUT|PATCH|DELETE|HEAD|OPTIONS)\s+(/[^\s`|]*)',
    re.MULTILINE,
)


@dataclass(frozen=True)
class ArtifactSet:
    stage_branch: str
    commit: str
    paths: tuple[str, ...]
    documents: dict = field(default_factory=dict)

    @classmethod
    def load(cls, store: VersionedStore, branch: str) -> "ArtifactSet":
        """Snapshot branch at its current head."""
        head = store.get_branch_head(branch)
        paths = tuple(store.list_files(head.sha))
        documents = {}
        for path in paths:
            if "/" not in path and path.endswith(DOCUMENT_SUFFIXES):
                documents[path] = store.read_file(head.sha, path).content
        logger.debug(f"[ARTIFACTS] {branch}@{head.sha[:8]}: {len(paths)} files, {len(documents)} documents")
        return cls(stage_branch=branch, commit=head.sha, paths=paths, documents=documents)

    def get(self, path: str) -> Optional[str]:
        return self.documents.get(path)

    def has(self, path: str) -> bool:
        return path in self.paths

    def files_under(self, directory: str) -> list[str]:
        prefix = directory.rstrip("/") + "/"
        return [p for p in self.paths if p.startswith(prefix)]


DEFAULT_CRITICALITY = 0.5


@dataclass(frozen=True)
class Assumption:
    text: str
    criticality: float
    validated: bool


def parse_assumptions(text: str, source: str = "ASSUMPTIONS.md") -> list[Assumption]:
    """Assumptions are heading or bullet lines carrying `criticality: <number>`.

    A level-2-or-deeper heading without a criticality tag is still an
    assumption, at DEFAULT_CRITICALITY.

    Raises:
        MalformedArtifact: a criticality value is not a number in [0, 1]
    """
    result = []
    for lineno, line in enumerate(text.splitlines(), 1):
        if not _ASSUMPTION_LINE.match(line):
            continue
        match = _CRITICALITY.search(line)
        if match:
            raw = match.group(1)
            try:
                criticality = float(raw)
            except ValueError:
                raise MalformedArtifact(source, f"line {lineno}: criticality {raw!r} is not a number") from None
        elif _SUBHEADING.match(line):
            criticality = DEFAULT_CRITICALITY
        else:
            continue
        if not 0.0 <= criticality <= 1.0:
            raise MalformedArtifact(source, f"line {lineno}: criticality {criticality} outside [0, 1]")
        result.append(Assumption(
            text=line.strip(),
            criticality=criticality,
            validated=bool(_VALIDATED.search(line)),
        ))
    return result


def _headings(text: str) -> list[tuple[int, str, int]]:
    """(level, title, line number) for every heading outside fenced code."""
    result = []
    in_fence = False
    for lineno, line in enumerate(text.splitlines()):
        if _FENCE.match(line):
            in_fence = not in_fence
            continue
        if in_fence:
            continue
        match = _HEADING.match(line)
        if match:
            result.append((len(match.group(1)), match.group(2), lineno))
    return result


def _distinct(titles) -> list[str]:
    seen = {}
    for title in titles:
        key = re.sub(r'\s+', ' ', title).strip().lower()
        if key and key not in seen:
            seen[key] = title.strip()
    return list(seen.values())


def headings(text: str, level: int) -> list[str]:
    """Distinct headings of exactly this level."""
    return _distinct(title for lvl, title, _ in _headings(text) if lvl == level)


def section_entries(text: str, section: Optional[str], level: int = 3) -> list[str]:
    """Distinct level-`level` headings inside the named section.

    The section is the first shallower heading whose title contains `section`
    (case-insensitive). Without a match the whole document counts.
    """
    all_headings = _headings(text)
    start, end = -1, None
    if section:
        for i, (lvl, title, lineno) in enumerate(all_headings):
            if lvl < level and section.lower() in title.lower():
                start = lineno
                for lvl2, _, lineno2 in all_headings[i + 1:]:
                    if lvl2 <= lvl:
                        end = lineno2
                        break
                break
    return _distinct(
        title for lvl, title, lineno in all_headings
        if lvl == level and lineno > start and (end is None or lineno < end)
    )


def checklist(text: str) -> list[bool]:
    """Checked state of every `- [ ]` / `- [x]` item."""
    return [mark.lower() == "x" for mark in _CHECKLIST_ITEM.findall(text)]


def endpoints(text: str) -> list[str]:
    """Distinct `METHOD /path` endpoint lines."""
    return _distinct(f"{method} {path}" for method, path in _ENDPOINT.findall(text))
