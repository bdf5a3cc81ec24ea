"""Error taxonomy for the memory engine.

Explicit operations (create, get, forget, clear, search) raise these to the
caller. The formation pipeline and queue convert them into failed events.
"""


class MnemosError(Exception):
    """Base class for all memory engine errors."""


class NotFoundError(MnemosError):
    def __init__(self, memory_id: str):
        super().__init__(f"memory not found: {memory_id}")
        self.memory_id = memory_id


class AmbiguousIDError(MnemosError):
    def __init__(self, prefix: str, matches: int):
        super().__init__(f"ambiguous prefix '{prefix}': {matches} memories match")
        self.prefix = prefix
        self.matches = matches


class ProviderUnavailableError(MnemosError):
    """The embedding (or classification) provider is missing or failed."""


class ValidationError(MnemosError):
    """Rejected input: empty content, unknown category, out-of-range confidence."""


class StorageError(MnemosError):
    """Database I/O or transaction failure."""
