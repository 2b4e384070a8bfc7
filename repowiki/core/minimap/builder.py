"""Knowledge-map generation.

The model answers with a heading outline (``## Title:path``). The outline
is parsed into a ``{"title", "url", "nodes"}`` tree; the first top-level
heading becomes the root and any further top-level headings join its
children.
"""

import logging
import re
from typing import List, Optional, Protocol

from ..constants import DEFAULT_LLM_TIMEOUT_SECONDS
from ..db.models import Warehouse
from ..utils import stream_text
from .prompts import build_minimap_prompt

logger = logging.getLogger(__name__)

_THINKING_RE = re.compile(r"<thinking>.*?</thinking>", re.DOTALL)


class MiniMapBuilder(Protocol):
    def build(self, directory_tree: str, warehouse: Warehouse, repo_path: str) -> Optional[dict]:
        """Return the knowledge map, or None when nothing usable came back."""


def _heading_level(line: str) -> int:
    return len(line) - len(line.lstrip("#"))


def _title_and_url(line: str):
    content = line.lstrip("#").strip()
    if ":" in content:
        title, url = content.split(":", 1)
        return title.strip(), url.strip()
    return content, ""


def parse_minimap(text: str) -> Optional[dict]:
    """Parse a Markdown heading outline into a node tree."""
    text = _THINKING_RE.sub("", text or "")
    roots: List[dict] = []
    stack: List[tuple] = []     # (level, node)

    for raw_line in text.splitlines():
        line = raw_line.strip()
        level = _heading_level(line)
        if level == 0:
            continue
        title, url = _title_and_url(line)
        if not title:
            continue
        node = {"title": title, "url": url, "nodes": []}

        while stack and stack[-1][0] >= level:
            stack.pop()
        if stack:
            stack[-1][1]["nodes"].append(node)
        else:
            roots.append(node)
        stack.append((level, node))

    if not roots:
        return None
    root = roots[0]
    root["nodes"].extend(roots[1:])
    return root


class LLMMiniMapBuilder:
    """Asks the LLM for a heading outline of the repository."""

    def __init__(self, llm=None, llm_timeout: float = DEFAULT_LLM_TIMEOUT_SECONDS):
        self._llm = llm
        self.llm_timeout = llm_timeout

    def build(self, directory_tree: str, warehouse: Warehouse, repo_path: str) -> Optional[dict]:
        address = warehouse.address or ""
        repository_url = address[:-4] if address.endswith(".git") else address
        prompt = build_minimap_prompt(directory_tree, repository_url, warehouse.branch or "")
        raw = stream_text(self._llm, prompt, timeout=self.llm_timeout, purpose="minimap")
        minimap = parse_minimap(raw)
        if minimap is None:
            logger.warning(f"Knowledge map for {warehouse.name or warehouse.id} had no headings")
        return minimap
