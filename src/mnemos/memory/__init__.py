from mnemos.memory.store import MemoryStore
from mnemos.memory.formation import (
    FormationEvent,
    FormationEventType,
    FormationPipeline,
    FormationTask,
)
from mnemos.memory.queue import AsyncStatus, FormationQueue, StatusUpdate
from mnemos.memory.context import build_memory_context, inject_memory_context

__all__ = [
    "MemoryStore",
    "FormationEvent",
    "FormationEventType",
    "FormationPipeline",
    "FormationTask",
    "AsyncStatus",
    "FormationQueue",
    "StatusUpdate",
    "build_memory_context",
    "inject_memory_context",
]
