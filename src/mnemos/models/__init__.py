from mnemos.models.memory import Memory, MemoryCategory, MemoryStatus

__all__ = [
    "Memory", "MemoryCategory", "MemoryStatus",
]
