"""Repository knowledge map (MiniMap) generation."""

from .builder import LLMMiniMapBuilder, MiniMapBuilder, parse_minimap
from .worker import MiniMapWorker

__all__ = ["LLMMiniMapBuilder", "MiniMapBuilder", "MiniMapWorker", "parse_minimap"]
