"""Data passed between the pipeline and its content-generation collaborators."""

import threading
from dataclasses import dataclass
from enum import Enum
from typing import Optional


class ChangeType(str, Enum):
    ADD = "add"
    REPLACE = "replace"


@dataclass
class BuildContext:
    """Repository context for one build or incremental pass."""
    warehouse_id: str
    document_id: str
    repo_path: str
    address: str = ""
    branch: str = ""
    directory_tree: str = ""
    cancel_event: Optional[threading.Event] = None

    @property
    def repository_url(self) -> str:
        return self.address[:-4] if self.address.endswith(".git") else self.address


@dataclass
class CatalogueDraft:
    """A catalogue node to insert: ``Add``, or ``Replace(replaces)``.

    A replace never mutates the old row; the old row is soft-deleted and
    this draft is inserted under a new id.
    """
    id: str
    parent_id: Optional[str]
    name: str
    url: str
    description: str
    prompt: str
    order: int
    change_type: ChangeType = ChangeType.ADD
    replaces: Optional[str] = None

    @property
    def is_replace(self) -> bool:
        return self.change_type == ChangeType.REPLACE
