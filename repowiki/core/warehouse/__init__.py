"""
Warehouse Management Module

Exports:
- WarehouseManager: submissions and documentation lookups for the API
"""

from .warehouse_manager import WarehouseManager

__all__ = [
    "WarehouseManager",
]
