from .store import MemoryStore, PostgresMemoryStore
from .types import Memory, MemoryFilter, MemoryType, ScoredMemory

__all__ = [
    "Memory",
    "MemoryFilter",
    "MemoryStore",
    "MemoryType",
    "PostgresMemoryStore",
    "ScoredMemory",
]
