"""
GitHub-backed versioned store.

Talks to the GitHub REST API through the gh CLI (`gh api`), so
authentication is whatever `gh auth login` set up. HTTP failures are mapped
onto the store error taxonomy from the status code gh prints on stderr.
"""

import base64
import json
import logging
import re
import subprocess
from typing import Optional
from urllib.parse import quote, urlencode

from cofounder.lib.errors import (
    ConflictingWrite,
    NotFound,
    PermissionDenied,
    StoreError,
    StoreUnavailable,
)
from .base import CommitInfo, CommitRef, FileContent, PullRequest, VersionedStore

logger = logging.getLogger(__name__)

# Timeout for GitHub CLI operations (seconds)
GH_TIMEOUT_SECONDS = 30

_HTTP_STATUS = re.compile(r'HTTP (\d{3})')
_FULL_SHA = re.compile(r'^[0-9a-f]{40}$')


def check_gh_cli() -> bool:
    """Check if gh CLI is available and authenticated."""
    try:
        result = subprocess.run(
            ["gh", "auth", "status"],
            capture_output=True,
            text=True,
            timeout=GH_TIMEOUT_SECONDS,
        )
        return result.returncode == 0
    except (subprocess.TimeoutExpired, subprocess.SubprocessError, FileNotFoundError):
        return False


def _raise_for_status(stderr: str, repo: str, action: str):
    match = _HTTP_STATUS.search(stderr)
    status = int(match.group(1)) if match else None
    detail = stderr.strip() or "gh exited with an error"
    message = f"{action} failed: {detail}"

    if status == 404:
        raise NotFound(message, repo=repo, status=status)
    if status in (401, 403):
        raise PermissionDenied(message, repo=repo, status=status)
    if status in (405, 409, 422):
        raise ConflictingWrite(message, repo=repo, status=status)
    if status is None or status >= 500:
        raise StoreUnavailable(message, repo=repo, status=status)
    raise StoreError(message, repo=repo, status=status)


class GitHubStore(VersionedStore):

    def __init__(self, repo: str, default_branch: str = "main"):
        self.repo = repo
        self.default_branch = default_branch

    def _api(
        self,
        method: str,
        endpoint: str,
        payload: Optional[dict] = None,
        jq: Optional[str] = None,
        paginate: bool = False,
    ):
        """Run `gh api` and return parsed JSON (or raw text when jq is given)."""
        cmd = ["gh", "api", "-X", method, "-H", "Accept: application/vnd.github+json", endpoint]
        if paginate:
            cmd.append("--paginate")
        if jq:
            cmd.extend(["--jq", jq])
        if payload is not None:
            cmd.extend(["--input", "-"])

        action = f"{method} {endpoint}"
        logger.debug(f"[STORE] gh api {action}")
        try:
            result = subprocess.run(
                cmd,
                input=json.dumps(payload) if payload is not None else None,
                capture_output=True,
                text=True,
                timeout=GH_TIMEOUT_SECONDS,
            )
        except subprocess.TimeoutExpired:
            raise StoreUnavailable(f"{action} timed out after {GH_TIMEOUT_SECONDS}s", repo=self.repo)
        except FileNotFoundError:
            raise StoreUnavailable("gh CLI not installed", repo=self.repo)

        if result.returncode != 0:
            _raise_for_status(result.stderr, self.repo, action)

        if jq:
            return result.stdout
        if not result.stdout.strip():
            return {}
        try:
            return json.loads(result.stdout)
        except json.JSONDecodeError:
            raise StoreUnavailable(f"{action} returned invalid JSON", repo=self.repo)

    @classmethod
    def create_repository(cls, repo: str, description: str = "", private: bool = True) -> "GitHubStore":
        """Create the remote repository with an initial commit on main."""
        cmd = ["gh", "repo", "create", repo, "--add-readme"]
        cmd.append("--private" if private else "--public")
        if description:
            cmd.extend(["--description", description])

        try:
            result = subprocess.run(cmd, capture_output=True, text=True, timeout=GH_TIMEOUT_SECONDS)
        except subprocess.TimeoutExpired:
            raise StoreUnavailable(f"gh repo create {repo} timed out", repo=repo)
        except FileNotFoundError:
            raise StoreUnavailable("gh CLI not installed", repo=repo)

        if result.returncode != 0:
            if "already exists" in result.stderr:
                raise ConflictingWrite(f"Repository {repo} already exists", repo=repo, status=422)
            _raise_for_status(result.stderr, repo, f"gh repo create {repo}")

        logger.info(f"[STORE] Created repository {repo}")
        return cls(repo)

    def _commit_sha(self, ref: str) -> str:
        if _FULL_SHA.match(ref):
            return ref
        return self.get_branch_head(ref).sha

    def get_branch_head(self, branch: str) -> CommitRef:
        data = self._api("GET", f"repos/{self.repo}/git/ref/heads/{branch}")
        return CommitRef(sha=data["object"]["sha"], branch=branch)

    def list_branches(self) -> list[str]:
        out = self._api("GET", f"repos/{self.repo}/branches", jq=".[].name", paginate=True)
        return sorted(line for line in out.splitlines() if line)

    def create_branch(self, name: str, from_sha: str) -> CommitRef:
        data = self._api("POST", f"repos/{self.repo}/git/refs", {
            "ref": f"refs/heads/{name}",
            "sha": from_sha,
        })
        logger.info(f"[STORE] Created branch {name} in {self.repo}")
        return CommitRef(sha=data["object"]["sha"], branch=name)

    def read_file(self, ref: str, path: str) -> FileContent:
        endpoint = f"repos/{self.repo}/contents/{quote(path)}?{urlencode({'ref': ref})}"
        data = self._api("GET", endpoint)
        if isinstance(data, list) or data.get("type") != "file":
            raise NotFound(f"{path} is not a file at {ref}", repo=self.repo, status=404)
        content = base64.b64decode(data.get("content", "")).decode("utf-8")
        return FileContent(path=path, content=content, sha=data["sha"])

    def list_files(self, ref: str) -> list[str]:
        sha = self._commit_sha(ref)
        data = self._api("GET", f"repos/{self.repo}/git/trees/{sha}?recursive=1")
        if data.get("truncated"):
            logger.warning(f"[STORE] Tree listing for {self.repo}@{ref} was truncated")
        return sorted(entry["path"] for entry in data.get("tree", []) if entry.get("type") == "blob")

    def write_file(
        self,
        branch: str,
        path: str,
        content: str,
        message: str,
        expected_sha: Optional[str] = None,
    ) -> CommitRef:
        payload = {
            "message": message,
            "content": base64.b64encode(content.encode("utf-8")).decode("ascii"),
            "branch": branch,
        }
        if expected_sha:
            payload["sha"] = expected_sha
        data = self._api("PUT", f"repos/{self.repo}/contents/{quote(path)}", payload)
        return CommitRef(sha=data["commit"]["sha"], branch=branch)

    def list_commits(self, branch: str, path: Optional[str] = None, limit: int = 100) -> list[CommitInfo]:
        params = {"sha": branch, "per_page": min(limit, 100)}
        if path:
            params["path"] = path
        data = self._api("GET", f"repos/{self.repo}/commits?{urlencode(params)}")
        return [
            CommitInfo(
                sha=item["sha"],
                message=item["commit"]["message"],
                timestamp=item["commit"].get("author", {}).get("date", ""),
            )
            for item in data[:limit]
        ]

    def _to_pull_request(self, data: dict) -> PullRequest:
        state = data.get("state", "open")
        if data.get("merged_at"):
            state = "merged"
        return PullRequest(
            number=data["number"],
            head=data["head"]["ref"],
            base=data["base"]["ref"],
            title=data.get("title", ""),
            url=data.get("html_url", ""),
            state=state,
            body=data.get("body") or "",
        )

    def open_pull_request(self, head: str, base: str, title: str, body: str) -> PullRequest:
        data = self._api("POST", f"repos/{self.repo}/pulls", {
            "title": title,
            "head": head,
            "base": base,
            "body": body,
        })
        pr = self._to_pull_request(data)
        logger.info(f"[STORE] Opened PR #{pr.number} {head} -> {base}")
        return pr

    def find_pull_request(self, head: str, base: str, state: str = "open") -> Optional[PullRequest]:
        owner = self.repo.split("/")[0]
        params = {"head": f"{owner}:{head}", "base": base, "state": state}
        data = self._api("GET", f"repos/{self.repo}/pulls?{urlencode(params)}")
        return self._to_pull_request(data[0]) if data else None

    def merge_pull_request(self, pr: PullRequest, method: str = "squash") -> CommitRef:
        data = self._api("PUT", f"repos/{self.repo}/pulls/{pr.number}/merge", {
            "merge_method": method,
            "commit_title": f"{pr.title} (#{pr.number})",
        })
        if not data.get("merged", False):
            raise ConflictingWrite(
                f"PR #{pr.number} was not merged: {data.get('message', 'unknown reason')}",
                repo=self.repo,
            )
        logger.info(f"[STORE] Merged PR #{pr.number} into {pr.base} ({method})")
        return CommitRef(sha=data["sha"], branch=pr.base)
