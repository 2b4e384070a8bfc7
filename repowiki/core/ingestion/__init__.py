"""Warehouse ingestion: queue claim + background coordinator."""

from .coordinator import IngestionCoordinator
from .queue import WarehouseJob, WarehouseQueue

__all__ = ["IngestionCoordinator", "WarehouseJob", "WarehouseQueue"]
