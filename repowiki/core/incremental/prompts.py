"""Prompt templates for incremental catalogue analysis."""

import json
from typing import Any, Dict, List

from ..git.models import CommitInfo

CATALOGUE_DIFF_PROMPT = """You maintain the documentation catalogue of the repository {repository_url} (branch: {branch}).

New commits have landed since the documentation was last generated. Decide which
catalogue nodes must be removed, which must be rewritten and which are new.

<document_catalogue>
{catalogue_json}
</document_catalogue>

<git_commit>
{commit_summary}
</git_commit>

<catalogue>
{directory_tree}
</catalogue>

Rules:
- Only touch nodes affected by the commits above.
- "delete_id" lists ids of existing nodes that no longer apply.
- Each entry of "items" is a node to write: use "type": "update" with the existing
  "id" to rewrite a node, or "type": "add" (no id needed) for a new node.
- Nested nodes go in "children". A new top-level node may set "parent_id" to an
  existing node id to be placed under it.
- "prompt" describes what the documentation page for the node must cover.

Answer with the JSON object only, wrapped in <document_structure> tags:
<document_structure>
{{
  "delete_id": ["<existing id>"],
  "items": [
    {{"id": "<existing id or omit>", "title": "...", "name": "...", "type": "add", "prompt": "...", "children": []}}
  ]
}}
</document_structure>
"""


def render_commit_summary(commits: List[CommitInfo]) -> str:
    """One <commit> block per commit: message, then `` - kind: path`` lines."""
    blocks = []
    for commit in commits:
        lines = ["<commit>", commit.message.strip()]
        for change in commit.files:
            lines.append(f" - {change.change_kind}: {change.path}")
        lines.append("</commit>")
        blocks.append("\n".join(lines))
    return "\n".join(blocks)


def build_catalogue_diff_prompt(
    repository_url: str,
    branch: str,
    catalogue: List[Dict[str, Any]],
    commit_summary: str,
    directory_tree: str,
) -> str:
    return CATALOGUE_DIFF_PROMPT.format(
        repository_url=repository_url,
        branch=branch or "default",
        catalogue_json=json.dumps(catalogue, ensure_ascii=False, indent=2),
        commit_summary=commit_summary,
        directory_tree=directory_tree or "(not available)",
    )
