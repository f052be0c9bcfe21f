from . import memory
from .memory import MemoryLayoutProbe, MemorySurface, MemorySurfaceFactory

__all__ = ["memory", "MemoryLayoutProbe", "MemorySurface", "MemorySurfaceFactory"]
