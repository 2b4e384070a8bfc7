"""Prompt templates for initial catalogue planning and page generation."""

CATALOGUE_PLAN_PROMPT = """You are planning the documentation of the repository {repository_url} (branch: {branch}).

Repository layout:
<catalogue>
{directory_tree}
</catalogue>

Design a documentation catalogue that lets a new developer understand the
project: overview, architecture, main components, configuration and
development workflow. Use nested "children" for sub-topics.

Answer with the JSON object only, wrapped in <document_structure> tags:
<document_structure>
{{
  "items": [
    {{"title": "...", "name": "...", "prompt": "what this page must cover", "children": []}}
  ]
}}
</document_structure>
"""

PAGE_PROMPT = """You are writing one page of the documentation for the repository {repository_url}.

Page title: {title}
Page brief: {brief}

Repository layout:
<catalogue>
{directory_tree}
</catalogue>

Write the page in Markdown. Be concrete, reference real files from the layout,
and do not invent APIs. Return the page wrapped in <blog> tags.
"""


def build_catalogue_plan_prompt(repository_url: str, branch: str, directory_tree: str) -> str:
    return CATALOGUE_PLAN_PROMPT.format(
        repository_url=repository_url,
        branch=branch or "default",
        directory_tree=directory_tree or "(empty)",
    )


def build_page_prompt(repository_url: str, title: str, brief: str, directory_tree: str) -> str:
    return PAGE_PROMPT.format(
        repository_url=repository_url,
        title=title,
        brief=brief or title,
        directory_tree=directory_tree or "(empty)",
    )
