"""Prompt template for changelog generation."""

from typing import List

from ..git.models import CommitInfo

TIME_FORMAT = "%Y-%m-%d %H:%M:%S"

CHANGELOG_PROMPT = """You write release notes for the repository {repository_url} (branch: {branch}).

Summarize the commits below into user-facing changelog entries. Group related
commits, skip pure housekeeping, and keep each description to a few sentences.

<commits>
{commit_log}
</commits>

Return a JSON array wrapped in <changelog> tags. Each entry has "date"
({time_format_hint}), "title" and "description":
<changelog>
[
  {{"date": "2024-01-31 12:00:00", "title": "...", "description": "..."}}
]
</changelog>
"""


def render_commit_log(commits: List[CommitInfo]) -> str:
    blocks = []
    for commit in commits:
        blocks.append(
            f"<commit>\n{commit.author}\n<message>\n{commit.message.strip()}\n</message>\n"
            f"<time>\n{commit.committed_at.strftime(TIME_FORMAT)}\n</time>\n</commit>"
        )
    return "\n".join(blocks)


def build_changelog_prompt(repository_url: str, branch: str, commits: List[CommitInfo]) -> str:
    return CHANGELOG_PROMPT.format(
        repository_url=repository_url,
        branch=branch or "default",
        commit_log=render_commit_log(commits),
        time_format_hint="yyyy-MM-dd HH:mm:ss",
    )
