"""Prompt template for the repository knowledge map."""

MINIMAP_PROMPT = """You are analysing the repository {repository_url} (branch: {branch}).
Build a knowledge map of its architecture from the file tree below.

<code_files>
{code_files}
</code_files>

Write the map as Markdown headings only, one node per line:
- "# " for the repository itself, "## " for major areas, "### " and deeper for their parts
- Each heading is "Title:relative/path" when the node maps to a file or directory,
  or just "Title" otherwise
- No prose, lists or code blocks; at most four heading levels

Example:
# Project
## Core Engine:src/core
### Scheduler:src/core/scheduler.py
## Documentation:docs"""


def build_minimap_prompt(code_files: str, repository_url: str, branch: str) -> str:
    return MINIMAP_PROMPT.format(
        code_files=code_files,
        repository_url=repository_url,
        branch=branch or "default",
    )
