"""Git collaborator: clone/pull/diff/log plus directory tree rendering."""

from .git_service import GitService, parse_repository_address
from .models import CommitInfo, FileChange, GitRepositoryInfo, PullResult
from .tree import build_directory_tree

__all__ = [
    "GitService",
    "parse_repository_address",
    "CommitInfo",
    "FileChange",
    "GitRepositoryInfo",
    "PullResult",
    "build_directory_tree",
]
