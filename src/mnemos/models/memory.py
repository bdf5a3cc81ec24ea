import uuid
from datetime import datetime
from enum import Enum
from typing import Optional
from sqlmodel import Field
from mnemos.models.base import TimestampMixin, ProvenanceMixin
import numpy as np

# Vector BLOB format v1: raw little-endian float32, dimension kept in embedding_dims.
VECTOR_DTYPE = np.dtype("<f4")


def serialize_vector(vector) -> bytes:
    """Convert a sequence of floats to bytes for storage."""
    return np.asarray(vector, dtype=VECTOR_DTYPE).tobytes()


def deserialize_vector(blob: bytes) -> np.ndarray:
    """Convert bytes back to a float32 array; a truncated BLOB yields an empty array."""
    if len(blob) % VECTOR_DTYPE.itemsize:
        return np.empty(0, dtype=VECTOR_DTYPE)
    return np.frombuffer(blob, dtype=VECTOR_DTYPE)


class MemoryCategory(str, Enum):
    PREFERENCE = "preference"  # likes, dislikes, style choices
    FACT = "fact"  # facts about the user, project or environment
    CORRECTION = "correction"  # corrections to agent behavior
    PATTERN = "pattern"  # observed behavioral patterns


class MemoryStatus(str, Enum):
    ACTIVE = "active"
    SUPERSEDED = "superseded"
    ARCHIVED = "archived"
    FORGOTTEN = "forgotten"


class Memory(TimestampMixin, ProvenanceMixin, table=True):
    __tablename__ = "memories"

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)

    # Scope: NULL means global / unscoped
    agent_handle: Optional[str] = Field(default=None, index=True)
    path_scope: Optional[str] = Field(default=None, index=True)

    content: str
    category: MemoryCategory = Field(default=MemoryCategory.FACT, index=True)

    embedding: Optional[bytes] = Field(default=None)  # little-endian float32 BLOB
    embedding_dims: Optional[int] = Field(default=None)
    embedding_model: Optional[str] = Field(default=None)

    confidence: float = Field(default=1.0)
    access_count: int = Field(default=0)
    last_accessed_at: Optional[datetime] = Field(default=None)

    # Supersession chain
    supersedes_id: Optional[str] = Field(default=None, foreign_key="memories.id", index=True)
    superseded_by_id: Optional[str] = Field(default=None, foreign_key="memories.id", index=True)
    supersession_reason: Optional[str] = Field(default=None)

    status: MemoryStatus = Field(default=MemoryStatus.ACTIVE, index=True)

    def set_embedding(self, vector: list[float], model: Optional[str] = None):
        """Encode a vector into the BLOB column."""
        self.embedding = serialize_vector(vector)
        self.embedding_dims = len(vector)
        self.embedding_model = model

    def get_embedding(self) -> Optional[np.ndarray]:
        """Decode the BLOB column, or None when the memory was stored without a vector."""
        if self.embedding is None:
            return None
        return deserialize_vector(self.embedding)

    @property
    def short_id(self) -> str:
        return self.id[:8]
