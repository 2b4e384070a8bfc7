"""Git plumbing over the ``git`` CLI.

Every call shells out with ``subprocess.run`` and a timeout; a non-zero
exit raises ``GitCommandError`` with git's stderr. Credentials are only
ever placed in the remote URL handed to git, never in log lines.
"""

import logging
import os
import subprocess
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional, Sequence, Tuple
from urllib.parse import quote, urlparse, urlunparse

from ..exceptions import GitCommandError
from .models import CommitInfo, FileChange, GitRepositoryInfo, PullResult

logger = logging.getLogger(__name__)

GIT_TIMEOUT_SECONDS = 300
DEFAULT_MAX_COMMITS = 200

_FIELD_SEP = "\x1f"
_RECORD_SEP = "\x1e"
_LOG_FORMAT = f"%H{_FIELD_SEP}%P{_FIELD_SEP}%an{_FIELD_SEP}%cI{_FIELD_SEP}%B{_RECORD_SEP}"

_CHANGE_KINDS = {
    "A": "added",
    "M": "modified",
    "D": "deleted",
    "R": "renamed",
    "C": "copied",
    "T": "type_changed",
}


def parse_repository_address(address: str) -> Tuple[str, str]:
    """Return (organization, repository_name) from a git remote address."""
    cleaned = address.strip().rstrip("/")
    if cleaned.endswith(".git"):
        cleaned = cleaned[:-4]
    if "://" not in cleaned and ":" in cleaned:
        # scp-like: git@host:org/repo
        cleaned = cleaned.split(":", 1)[1]
    else:
        cleaned = urlparse(cleaned).path or cleaned

    parts = [p for p in cleaned.split("/") if p]
    if not parts:
        raise ValueError(f"Cannot derive repository name from address: {address}")
    name = parts[-1]
    organization = parts[-2] if len(parts) > 1 else ""
    return organization, name


def _authenticated_url(address: str, username: Optional[str], password: Optional[str]) -> str:
    if not username or not password or not address.startswith(("http://", "https://")):
        return address
    parsed = urlparse(address)
    netloc = f"{quote(username, safe='')}:{quote(password, safe='')}@{parsed.hostname}"
    if parsed.port:
        netloc += f":{parsed.port}"
    return urlunparse(parsed._replace(netloc=netloc))


def _to_naive_utc(value: str) -> datetime:
    parsed = datetime.fromisoformat(value.strip())
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


class GitService:
    """Clone, pull, diff and log operations for local working copies."""

    def __init__(self, repositories_path: str = "repositories", timeout: int = GIT_TIMEOUT_SECONDS):
        self.repositories_path = repositories_path
        self.timeout = timeout

    # ── Process helpers ──────────────────────────────────────────────────

    def _run(self, args: Sequence[str], cwd: Optional[str] = None) -> str:
        command = ["git", *args]
        try:
            proc = subprocess.run(
                command,
                cwd=cwd,
                capture_output=True,
                text=True,
                timeout=self.timeout,
                env={**os.environ, "GIT_TERMINAL_PROMPT": "0"},
            )
        except subprocess.TimeoutExpired:
            raise GitCommandError(command, -1, f"timed out after {self.timeout}s") from None
        except FileNotFoundError:
            raise GitCommandError(command, -1, "git is not installed or not in PATH") from None

        if proc.returncode != 0:
            raise GitCommandError(command, proc.returncode, proc.stderr)
        return proc.stdout

    def _head(self, repo_path: str) -> str:
        return self._run(["rev-parse", "HEAD"], cwd=repo_path).strip()

    def _current_branch(self, repo_path: str) -> str:
        return self._run(["rev-parse", "--abbrev-ref", "HEAD"], cwd=repo_path).strip()

    def _has_commit(self, repo_path: str, rev: str) -> bool:
        try:
            self._run(["cat-file", "-e", f"{rev}^{{commit}}"], cwd=repo_path)
            return True
        except GitCommandError:
            return False

    # ── Public API ───────────────────────────────────────────────────────

    def local_path_for(self, address: str) -> str:
        organization, name = parse_repository_address(address)
        return str(Path(self.repositories_path) / (organization or "_") / name)

    def clone(
        self,
        address: str,
        username: Optional[str] = None,
        password: Optional[str] = None,
        branch: Optional[str] = None,
    ) -> GitRepositoryInfo:
        """Clone into the repositories directory, or re-sync an existing copy."""
        organization, name = parse_repository_address(address)
        local_path = self.local_path_for(address)
        remote = _authenticated_url(address, username, password)

        if (Path(local_path) / ".git").exists():
            logger.info(f"Repository {organization}/{name} already cloned, syncing {local_path}")
            self._sync(local_path, remote, branch)
        else:
            Path(local_path).parent.mkdir(parents=True, exist_ok=True)
            args = ["clone"]
            if branch:
                args += ["--branch", branch]
            args += [remote, local_path]
            logger.info(f"Cloning {organization}/{name} (branch: {branch or 'default'}) to {local_path}")
            self._run(args)

        return GitRepositoryInfo(
            local_path=local_path,
            repository_name=name,
            branch_name=self._current_branch(local_path),
            organization=organization,
            version=self._head(local_path),
        )

    def _sync(self, repo_path: str, remote: str, branch: Optional[str]):
        ref = branch or self._current_branch(repo_path)
        self._run(["fetch", remote, ref], cwd=repo_path)
        self._run(["reset", "--hard", "FETCH_HEAD"], cwd=repo_path)

    def pull(
        self,
        local_path: str,
        known_version: Optional[str],
        branch: Optional[str] = None,
        username: Optional[str] = None,
        password: Optional[str] = None,
        address: Optional[str] = None,
    ) -> PullResult:
        """Bring the working copy up to date and list commits after known_version.

        Commits come back oldest first, each with its changed files relative
        to its first parent. An unknown or missing known_version yields the
        most recent history up to ``DEFAULT_MAX_COMMITS``.
        """
        remote = _authenticated_url(address, username, password) if address else "origin"
        self._sync(local_path, remote, branch)
        head = self._head(local_path)

        if known_version and known_version == head:
            return PullResult(commits=[], head=head)

        if known_version and self._has_commit(local_path, known_version):
            rev_range = f"{known_version}..{head}"
        else:
            if known_version:
                logger.warning(f"Known version {known_version} not found in {local_path}, using recent history")
            rev_range = head

        commits = self._log_range(local_path, rev_range, max_count=DEFAULT_MAX_COMMITS)
        for commit in commits:
            commit.files = self.diff_files(local_path, commit.first_parent, commit.sha)
        return PullResult(commits=commits, head=head)

    def diff_files(self, repo_path: str, from_rev: Optional[str], to_rev: str) -> List[FileChange]:
        """Changed files between two revisions; from_rev=None diffs against the empty tree."""
        if from_rev:
            args = ["diff-tree", "-r", "-M", "--no-commit-id", "--name-status", from_rev, to_rev]
        else:
            args = ["diff-tree", "-r", "-M", "--root", "--no-commit-id", "--name-status", to_rev]
        return self._parse_name_status(self._run(args, cwd=repo_path))

    def log(
        self,
        repo_path: str,
        since: Optional[datetime] = None,
        max_count: int = DEFAULT_MAX_COMMITS,
    ) -> List[CommitInfo]:
        """Commits on HEAD strictly newer than ``since`` (naive UTC), oldest first."""
        commits = self._log_range(repo_path, "HEAD", max_count=max_count)
        if since is None:
            return commits
        return [c for c in commits if c.committed_at > since]

    # ── Parsing ──────────────────────────────────────────────────────────

    def _log_range(self, repo_path: str, rev_range: str, max_count: int) -> List[CommitInfo]:
        output = self._run(
            ["log", f"--max-count={max_count}", f"--format={_LOG_FORMAT}", rev_range],
            cwd=repo_path,
        )
        commits = []
        for record in output.split(_RECORD_SEP):
            record = record.strip("\n")
            if not record.strip():
                continue
            fields = record.split(_FIELD_SEP)
            if len(fields) < 5:
                continue
            sha, parents, author, committed, message = fields[:5]
            commits.append(CommitInfo(
                sha=sha.strip(),
                author=author,
                message=message.strip(),
                committed_at=_to_naive_utc(committed),
                parents=parents.split(),
            ))
        commits.reverse()
        return commits

    @staticmethod
    def _parse_name_status(output: str) -> List[FileChange]:
        changes = []
        for line in output.splitlines():
            if not line.strip():
                continue
            parts = line.split("\t")
            status = parts[0][:1]
            kind = _CHANGE_KINDS.get(status, "modified")
            if status in ("R", "C") and len(parts) >= 3:
                changes.append(FileChange(path=parts[2], change_kind=kind, old_path=parts[1]))
            elif len(parts) >= 2:
                changes.append(FileChange(path=parts[1], change_kind=kind))
        return changes
