"""Incremental update pipeline: new commits -> catalogue diff -> reconciliation.

Public API:
    IncrementalAnalysisEngine: one pass per warehouse, returns an Outcome
    IncrementalUpdateWorker: background poller for stale warehouses
    parse_catalogue_diff / plan_catalogue / apply_plan: reconciliation steps
"""

from .engine import IncrementalAnalysisEngine
from .reconciler import apply_plan, parse_catalogue_diff, plan_catalogue
from .worker import IncrementalUpdateWorker

__all__ = [
    "IncrementalAnalysisEngine",
    "IncrementalUpdateWorker",
    "apply_plan",
    "parse_catalogue_diff",
    "plan_catalogue",
]
