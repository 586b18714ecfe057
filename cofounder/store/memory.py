"""
In-memory versioned store.

Models just enough of git for the engine: content-addressed blobs, commits
with full tree snapshots, branches as movable pointers, and pull requests
merged with a per-file three-way merge. Thread-safe; used for tests and
dry runs.
"""

import hashlib
import itertools
import logging
import threading
from collections import deque
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Optional

from cofounder.lib.errors import ConflictingWrite, NotFound
from .base import CommitInfo, CommitRef, FileContent, PullRequest, VersionedStore

logger = logging.getLogger(__name__)


def blob_sha(content: str) -> str:
    """Same hashing as `git hash-object`."""
    data = content.encode()
    return hashlib.sha1(b"blob %d\0" % len(data) + data).hexdigest()


@dataclass(frozen=True)
class _Commit:
    sha: str
    parents: tuple[str, ...]
    tree: dict
    message: str
    timestamp: str


class InMemoryStore(VersionedStore):

    def __init__(self, repo: str = "local/idea", default_branch: str = "main"):
        self.repo = repo
        self.default_branch = default_branch
        self._lock = threading.RLock()
        self._counter = itertools.count(1)
        self._commits: dict[str, _Commit] = {}
        self._branches: dict[str, str] = {}
        self._pulls: dict[int, PullRequest] = {}
        self._pr_numbers = itertools.count(1)

        root = self._new_commit((), {}, "Initial commit")
        self._branches[default_branch] = root.sha

    def _new_commit(self, parents: tuple[str, ...], tree: dict, message: str) -> _Commit:
        seed = f"{next(self._counter)}\0{parents}\0{sorted(tree.items())}\0{message}"
        commit = _Commit(
            sha=hashlib.sha1(seed.encode()).hexdigest(),
            parents=parents,
            tree=dict(tree),
            message=message,
            timestamp=datetime.now(timezone.utc).isoformat(),
        )
        self._commits[commit.sha] = commit
        return commit

    def _resolve(self, ref: str) -> _Commit:
        sha = self._branches.get(ref, ref)
        commit = self._commits.get(sha)
        if commit is None:
            raise NotFound(f"Unknown ref '{ref}'", repo=self.repo, status=404)
        return commit

    def _head(self, branch: str) -> _Commit:
        if branch not in self._branches:
            raise NotFound(f"Branch '{branch}' not found", repo=self.repo, status=404)
        return self._commits[self._branches[branch]]

    def get_branch_head(self, branch: str) -> CommitRef:
        with self._lock:
            return CommitRef(sha=self._head(branch).sha, branch=branch)

    def list_branches(self) -> list[str]:
        with self._lock:
            return sorted(self._branches)

    def create_branch(self, name: str, from_sha: str) -> CommitRef:
        with self._lock:
            if name in self._branches:
                raise ConflictingWrite(f"Branch '{name}' already exists", repo=self.repo, status=422)
            # Git refs are paths: "a" and "a/b" cannot both be branches
            for other in self._branches:
                if other.startswith(name + "/") or name.startswith(other + "/"):
                    raise ConflictingWrite(f"Branch '{name}' conflicts with '{other}'", repo=self.repo, status=422)
            commit = self._resolve(from_sha)
            self._branches[name] = commit.sha
            logger.debug(f"[STORE] Created branch {name} at {commit.sha[:8]}")
            return CommitRef(sha=commit.sha, branch=name)

    def read_file(self, ref: str, path: str) -> FileContent:
        with self._lock:
            tree = self._resolve(ref).tree
            if path not in tree:
                raise NotFound(f"{path} not found at {ref}", repo=self.repo, status=404)
            return FileContent(path=path, content=tree[path], sha=blob_sha(tree[path]))

    def list_files(self, ref: str) -> list[str]:
        with self._lock:
            return sorted(self._resolve(ref).tree)

    def write_file(
        self,
        branch: str,
        path: str,
        content: str,
        message: str,
        expected_sha: Optional[str] = None,
    ) -> CommitRef:
        with self._lock:
            head = self._head(branch)
            current = head.tree.get(path)
            current_sha = blob_sha(current) if current is not None else None
            if current_sha != expected_sha:
                raise ConflictingWrite(
                    f"{branch}:{path} is at {current_sha}, expected {expected_sha}",
                    repo=self.repo, status=409,
                )
            tree = dict(head.tree)
            tree[path] = content
            commit = self._new_commit((head.sha,), tree, message)
            self._branches[branch] = commit.sha
            return CommitRef(sha=commit.sha, branch=branch)

    def list_commits(self, branch: str, path: Optional[str] = None, limit: int = 100) -> list[CommitInfo]:
        with self._lock:
            result = []
            commit: Optional[_Commit] = self._resolve(branch)
            # First-parent walk, newest first
            while commit is not None and len(result) < limit:
                parent = self._commits[commit.parents[0]] if commit.parents else None
                if path is None or commit.tree.get(path) != (parent.tree.get(path) if parent else None):
                    result.append(CommitInfo(sha=commit.sha, message=commit.message, timestamp=commit.timestamp))
                commit = parent
            return result

    def open_pull_request(self, head: str, base: str, title: str, body: str) -> PullRequest:
        with self._lock:
            self._head(head)
            self._head(base)
            if self.find_pull_request(head, base) is not None:
                raise ConflictingWrite(
                    f"A pull request already exists for {head} -> {base}",
                    repo=self.repo, status=422,
                )
            number = next(self._pr_numbers)
            pr = PullRequest(
                number=number, head=head, base=base, title=title, body=body,
                url=f"memory://{self.repo}/pull/{number}",
            )
            self._pulls[number] = pr
            return pr

    def find_pull_request(self, head: str, base: str, state: str = "open") -> Optional[PullRequest]:
        with self._lock:
            for pr in sorted(self._pulls.values(), key=lambda p: -p.number):
                if pr.head == head and pr.base == base and (state == "all" or pr.state == state):
                    return pr
            return None

    def get_pull_request(self, number: int) -> PullRequest:
        with self._lock:
            if number not in self._pulls:
                raise NotFound(f"Pull request #{number} not found", repo=self.repo, status=404)
            return self._pulls[number]

    def _ancestors(self, sha: str) -> set[str]:
        result = set()
        queue = deque([sha])
        while queue:
            current = queue.popleft()
            if current not in result:
                result.add(current)
                queue.extend(self._commits[current].parents)
        return result

    def _merge_base(self, a: str, b: str) -> Optional[_Commit]:
        """Best common ancestor: one that no other common ancestor descends from."""
        common = self._ancestors(a) & self._ancestors(b)
        for sha in common:
            if not any(sha != other and sha in self._ancestors(other) for other in common):
                return self._commits[sha]
        return None

    def merge_pull_request(self, pr: PullRequest, method: str = "squash") -> CommitRef:
        with self._lock:
            current = self.get_pull_request(pr.number)
            if current.state != "open":
                raise ConflictingWrite(f"Pull request #{pr.number} is {current.state}", repo=self.repo, status=405)

            head = self._head(current.head)
            base = self._head(current.base)
            ancestor = self._merge_base(head.sha, base.sha)
            original = ancestor.tree if ancestor else {}

            tree = dict(base.tree)
            for path in set(head.tree) | set(base.tree):
                theirs, ours, was = head.tree.get(path), base.tree.get(path), original.get(path)
                if theirs == ours or theirs == was:
                    continue
                if ours == was:
                    if theirs is None:
                        tree.pop(path, None)
                    else:
                        tree[path] = theirs
                    continue
                raise ConflictingWrite(
                    f"Merge conflict in {path} ({current.head} -> {current.base})",
                    repo=self.repo, status=405,
                )

            parents = (base.sha, head.sha) if method == "merge" else (base.sha,)
            message = f"{current.title} (#{current.number})"
            commit = self._new_commit(parents, tree, message)
            self._branches[current.base] = commit.sha
            self._pulls[current.number] = replace(current, state="merged")
            logger.info(f"[STORE] Merged #{current.number} into {current.base} ({method})")
            return CommitRef(sha=commit.sha, branch=current.base)
