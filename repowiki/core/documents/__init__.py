"""Catalogue and page generation collaborators.

Only the shared data models are exported here; the LLM-backed defaults
live in ``repowiki.core.documents.builder`` (they depend on the
incremental reconciler, which itself depends on these models).
"""

from .models import BuildContext, CatalogueDraft, ChangeType

__all__ = ["BuildContext", "CatalogueDraft", "ChangeType"]
