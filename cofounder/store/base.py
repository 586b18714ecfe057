"""
Versioned store interface.

The engine never talks to git or GitHub directly. Everything it needs from
the idea repository goes through a VersionedStore: branch heads, file reads
and writes, commit history and pull requests.

Reads take a `ref` which may be a branch name or a commit sha, so callers can
pin a snapshot. Writes always target a branch and are single-file commits,
atomic at the store level.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from cofounder.lib.errors import NotFound

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CommitRef:
    sha: str
    branch: str = ""


@dataclass(frozen=True)
class FileContent:
    path: str
    content: str
    sha: str  # blob sha, the compare-and-swap token for write_file


@dataclass(frozen=True)
class CommitInfo:
    sha: str
    message: str
    timestamp: str = ""


@dataclass(frozen=True)
class PullRequest:
    number: int
    head: str
    base: str
    title: str
    url: str = ""
    state: str = "open"  # open, closed, merged
    body: str = ""


class VersionedStore(ABC):
    """One idea repository."""

    repo: str
    default_branch: str = "main"

    @abstractmethod
    def get_branch_head(self, branch: str) -> CommitRef:
        """Raises NotFound if the branch does not exist."""

    @abstractmethod
    def list_branches(self) -> list[str]:
        ...

    @abstractmethod
    def create_branch(self, name: str, from_sha: str) -> CommitRef:
        """Raises ConflictingWrite if the branch already exists."""

    @abstractmethod
    def read_file(self, ref: str, path: str) -> FileContent:
        """Raises NotFound if the file (or ref) does not exist."""

    @abstractmethod
    def list_files(self, ref: str) -> list[str]:
        """All file paths in the tree at ref, recursively."""

    @abstractmethod
    def write_file(
        self,
        branch: str,
        path: str,
        content: str,
        message: str,
        expected_sha: Optional[str] = None,
    ) -> CommitRef:
        """Commit one file to branch.

        expected_sha is the blob sha the caller last read; None asserts the
        file does not exist yet. A mismatch raises ConflictingWrite and
        nothing is written.
        """

    @abstractmethod
    def list_commits(self, branch: str, path: Optional[str] = None, limit: int = 100) -> list[CommitInfo]:
        """Commits reachable from branch, newest first, optionally touching path."""

    @abstractmethod
    def open_pull_request(self, head: str, base: str, title: str, body: str) -> PullRequest:
        """Raises ConflictingWrite if an open PR for head -> base already exists."""

    @abstractmethod
    def find_pull_request(self, head: str, base: str, state: str = "open") -> Optional[PullRequest]:
        ...

    @abstractmethod
    def merge_pull_request(self, pr: PullRequest, method: str = "squash") -> CommitRef:
        """Raises ConflictingWrite if the PR cannot be merged cleanly."""

    def read_file_optional(self, ref: str, path: str) -> Optional[FileContent]:
        try:
            return self.read_file(ref, path)
        except NotFound:
            return None

    def put_file(self, branch: str, path: str, content: str, message: str) -> Optional[CommitRef]:
        """Create or overwrite a file. Returns None when the content is unchanged."""
        current = self.read_file_optional(branch, path)
        if current is not None and current.content == content:
            logger.debug(f"[STORE] {branch}:{path} unchanged, skipping commit")
            return None
        return self.write_file(
            branch, path, content, message,
            expected_sha=current.sha if current else None,
        )

    def ensure_branch(self, name: str, from_sha: str) -> bool:
        """Create branch unless it already exists. Returns True if created."""
        try:
            self.get_branch_head(name)
            return False
        except NotFound:
            self.create_branch(name, from_sha)
            return True
