"""Data models returned by the git collaborator."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional


@dataclass
class GitRepositoryInfo:
    """Result of cloning (or re-syncing) a repository."""
    local_path: str
    repository_name: str
    branch_name: str
    organization: str
    version: str        # HEAD commit SHA


@dataclass
class FileChange:
    path: str
    change_kind: str    # added | modified | deleted | renamed | copied | type_changed
    old_path: Optional[str] = None


@dataclass
class CommitInfo:
    sha: str
    author: str
    message: str
    committed_at: datetime      # naive UTC
    parents: List[str] = field(default_factory=list)
    files: List[FileChange] = field(default_factory=list)

    @property
    def first_parent(self) -> Optional[str]:
        return self.parents[0] if self.parents else None

    @property
    def summary(self) -> str:
        return self.message.strip().splitlines()[0] if self.message.strip() else ""


@dataclass
class PullResult:
    commits: List[CommitInfo]
    head: str
