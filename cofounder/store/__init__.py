"""Versioned store adapters for idea repositories.

GitHubStore is the production adapter; InMemoryStore backs tests and dry runs.
Both raise the errors in cofounder.lib.errors: NotFound for missing
branches/files, ConflictingWrite for lost compare-and-swap races and merge
conflicts, StoreUnavailable for transport failures.
"""

from cofounder.store.base import (
    CommitInfo,
    CommitRef,
    FileContent,
    PullRequest,
    VersionedStore,
)
from cofounder.store.github import GitHubStore
from cofounder.store.memory import InMemoryStore

__all__ = [
    "CommitInfo",
    "CommitRef",
    "FileContent",
    "PullRequest",
    "VersionedStore",
    "GitHubStore",
    "InMemoryStore",
]
