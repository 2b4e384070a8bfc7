"""Compact directory tree rendering used as LLM context."""

import os
from pathlib import Path
from typing import List

SKIP_DIRECTORIES = {
    ".git", ".hg", ".svn", ".idea", ".vscode", "node_modules", "__pycache__",
    ".venv", "venv", "dist", "build", "target", "bin", "obj", ".next", ".cache",
}
SKIP_SUFFIXES = {".pyc", ".class", ".o", ".so", ".dll", ".exe", ".png", ".jpg", ".jpeg", ".gif", ".ico", ".lock"}

DEFAULT_MAX_DEPTH = 6
DEFAULT_MAX_ENTRIES = 2000


def build_directory_tree(
    root: str,
    max_depth: int = DEFAULT_MAX_DEPTH,
    max_entries: int = DEFAULT_MAX_ENTRIES,
) -> str:
    """Render ``root`` as an indented tree, directories suffixed with ``/``.

    Hidden and build-output directories are skipped; output stops after
    ``max_entries`` lines with a trailing ``...`` marker.
    """
    root_path = Path(root)
    if not root_path.is_dir():
        raise FileNotFoundError(f"Repository path does not exist: {root}")

    lines: List[str] = []

    def walk(path: Path, depth: int) -> bool:
        try:
            entries = sorted(os.scandir(path), key=lambda e: (not e.is_dir(), e.name.lower()))
        except PermissionError:
            return True
        for entry in entries:
            if len(lines) >= max_entries:
                lines.append("...")
                return False
            indent = "  " * depth
            if entry.is_dir(follow_symlinks=False):
                if entry.name in SKIP_DIRECTORIES or entry.name.startswith("."):
                    continue
                lines.append(f"{indent}{entry.name}/")
                if depth + 1 < max_depth and not walk(Path(entry.path), depth + 1):
                    return False
            else:
                if Path(entry.name).suffix.lower() in SKIP_SUFFIXES:
                    continue
                lines.append(f"{indent}{entry.name}")
        return True

    walk(root_path, 0)
    return "\n".join(lines)
