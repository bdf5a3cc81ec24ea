"""
Memory store: durable CRUD and lifecycle transitions over the memories table.

Every explicit operation raises a mnemos.errors exception on failure so the
CLI can show it. Rows are never physically deleted; forgetting, archiving and
supersession are status changes.
"""
from contextlib import contextmanager
from datetime import datetime
from typing import Iterable, List, Optional, Sequence
from sqlalchemy import update, or_
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select, func
from mnemos.config import settings
from mnemos.errors import (
    AmbiguousIDError,
    NotFoundError,
    ProviderUnavailableError,
    StorageError,
    ValidationError,
)
from mnemos.models.base import utcnow
from mnemos.models.memory import Memory, MemoryCategory, MemoryStatus
from mnemos.search.embeddings import Embedder
from mnemos.search.vector_search import SearchResult, rank_memories
from mnemos.logging import logger

MAX_HISTORY_DEPTH = 100


def _coerce_category(value) -> MemoryCategory:
    if value is None:
        return MemoryCategory.FACT
    try:
        return MemoryCategory(value)
    except ValueError:
        valid = ", ".join(c.value for c in MemoryCategory)
        raise ValidationError(f"invalid category '{value}' (expected one of: {valid})") from None


def _scope_clause(column, value: Optional[str], exact: bool):
    """Filter for an optional scope column.

    Exact scope matches the value itself (NULL matches NULL). Otherwise a
    given value also admits global (NULL) rows, and no value admits all rows.
    """
    if exact:
        return column.is_(None) if value is None else column == value
    if value is None:
        return None
    return or_(column == value, column.is_(None))


class MemoryStore:
    def __init__(self, engine: Engine, embedder: Optional[Embedder] = None):
        self.engine = engine
        self.embedder = embedder

    @contextmanager
    def _session(self, operation: str):
        try:
            with Session(self.engine, expire_on_commit=False) as session:
                yield session
        except SQLAlchemyError as e:
            logger.error(f"{operation} failed: {e}")
            raise StorageError(f"{operation} failed: {e}") from e

    # ------------------------------------------------------------------
    # create
    # ------------------------------------------------------------------
    def _prepare(self, memory: Memory) -> Memory:
        content = (memory.content or "").strip()
        if not content:
            raise ValidationError("memory content must not be empty")
        memory.content = content
        memory.category = _coerce_category(memory.category)
        memory.status = MemoryStatus.ACTIVE

        if memory.confidence is None:
            memory.confidence = 1.0
        if not 0.0 <= memory.confidence <= 1.0:
            raise ValidationError(f"confidence must be within [0, 1], got {memory.confidence}")
        memory.access_count = 0

        now = utcnow()
        memory.created_at = now
        memory.updated_at = now

        if self.embedder is not None and memory.embedding is None:
            try:
                memory.set_embedding(self.embedder.embed(content), model=getattr(self.embedder, "model", None))
            except Exception as e:
                # Stored without a vector: listable, not searchable
                logger.warning(f"Embedding failed, storing memory without vector: {e}")
        return memory

    def create(self, memory: Memory) -> Memory:
        """Validate, embed (best effort) and persist a new memory."""
        memory = self._prepare(memory)
        with self._session("create memory") as session:
            session.add(memory)
            session.commit()
        logger.info(f"Created memory {memory.short_id} ({memory.category.value}, embedded={memory.embedding is not None})")
        return memory

    # ------------------------------------------------------------------
    # lookup
    # ------------------------------------------------------------------
    def _touch(self, session: Session, memories: Sequence[Memory]):
        """Access bookkeeping. Leaves updated_at alone."""
        if not memories:
            return
        now = utcnow()
        session.connection().execute(
            update(Memory)
            .where(Memory.id.in_([m.id for m in memories]))
            .values(
                access_count=Memory.access_count + 1,
                last_accessed_at=now,
                updated_at=Memory.updated_at,
            )
        )
        session.commit()
        for m in memories:
            m.access_count = (m.access_count or 0) + 1
            m.last_accessed_at = now

    def get(self, memory_id: str) -> Memory:
        with self._session("get memory") as session:
            memory = session.get(Memory, memory_id)
            if memory is None:
                raise NotFoundError(memory_id)
            self._touch(session, [memory])
        return memory

    def get_by_prefix(self, prefix: str) -> Memory:
        """Exact id first, else a unique id prefix across every status."""
        prefix = (prefix or "").strip()
        if not prefix:
            raise ValidationError("memory id must not be empty")

        with self._session("get memory") as session:
            memory = session.get(Memory, prefix)
            if memory is None:
                matches = session.exec(
                    select(Memory).where(Memory.id.startswith(prefix, autoescape=True))
                ).all()
                if not matches:
                    raise NotFoundError(prefix)
                if len(matches) > 1:
                    raise AmbiguousIDError(prefix, len(matches))
                memory = matches[0]
            self._touch(session, [memory])
        return memory

    def list(
        self,
        agent_handle: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
        category: Optional[MemoryCategory] = None,
        path_scope: Optional[str] = None,
    ) -> List[Memory]:
        """Active memories, most recent first."""
        stmt = select(Memory).where(Memory.status == MemoryStatus.ACTIVE)
        if agent_handle is not None:
            stmt = stmt.where(Memory.agent_handle == agent_handle)
        if category is not None:
            stmt = stmt.where(Memory.category == _coerce_category(category))
        path_clause = _scope_clause(Memory.path_scope, path_scope, exact=False)
        if path_clause is not None:
            stmt = stmt.where(path_clause)
        stmt = stmt.order_by(Memory.created_at.desc()).offset(offset).limit(limit)

        with self._session("list memories") as session:
            return list(session.exec(stmt).all())

    def count(self, agent_handle: Optional[str] = None) -> int:
        stmt = select(func.count(Memory.id)).where(Memory.status == MemoryStatus.ACTIVE)
        if agent_handle is not None:
            stmt = stmt.where(Memory.agent_handle == agent_handle)
        with self._session("count memories") as session:
            return session.exec(stmt).one()

    def history(self, memory_id: str) -> List[Memory]:
        """The version chain ending at memory_id: the memory itself, then what it superseded."""
        chain: List[Memory] = []
        with self._session("memory history") as session:
            current = session.get(Memory, memory_id)
            if current is None:
                raise NotFoundError(memory_id)
            while current is not None and len(chain) < MAX_HISTORY_DEPTH:
                chain.append(current)
                current = session.get(Memory, current.supersedes_id) if current.supersedes_id else None
        return chain

    # ------------------------------------------------------------------
    # lifecycle
    # ------------------------------------------------------------------
    def forget(self, memory_id: str) -> Memory:
        """Soft delete. Forgetting a forgotten memory is a no-op."""
        with self._session("forget memory") as session:
            memory = session.get(Memory, memory_id)
            if memory is None:
                raise NotFoundError(memory_id)
            if memory.status != MemoryStatus.FORGOTTEN:
                memory.status = MemoryStatus.FORGOTTEN
                memory.updated_at = utcnow()
                session.add(memory)
                session.commit()
                logger.info(f"Forgot memory {memory.short_id}")
        return memory

    def clear(self, agent_handle: Optional[str] = None) -> int:
        """Forget every active memory, optionally only those of one agent. Returns the count."""
        stmt = (
            update(Memory)
            .where(Memory.status == MemoryStatus.ACTIVE)
            .values(status=MemoryStatus.FORGOTTEN, updated_at=utcnow())
        )
        if agent_handle is not None:
            stmt = stmt.where(Memory.agent_handle == agent_handle)
        with self._session("clear memories") as session:
            result = session.connection().execute(stmt)
            session.commit()
        logger.info(f"Cleared {result.rowcount} memories (agent={agent_handle or 'all'})")
        return result.rowcount

    def archive(self, memory_id: str) -> Memory:
        """Move an active memory to the archived status. No policy triggers this yet."""
        with self._session("archive memory") as session:
            memory = session.get(Memory, memory_id)
            if memory is None:
                raise NotFoundError(memory_id)
            if memory.status == MemoryStatus.ARCHIVED:
                return memory
            if memory.status != MemoryStatus.ACTIVE:
                raise ValidationError(f"cannot archive a {memory.status.value} memory")
            memory.status = MemoryStatus.ARCHIVED
            memory.updated_at = utcnow()
            session.add(memory)
            session.commit()
        return memory

    @staticmethod
    def _link(old: Memory, new: Memory, reason: str, now: datetime):
        if old.status != MemoryStatus.ACTIVE:
            raise ValidationError(f"memory {old.short_id} is {old.status.value}, only active memories can be superseded")
        old.status = MemoryStatus.SUPERSEDED
        old.superseded_by_id = new.id
        old.supersession_reason = reason
        old.updated_at = now
        new.supersedes_id = old.id
        new.updated_at = now

    def supersede(self, old_id: str, new_id: str, reason: str) -> Memory:
        """Point old -> new and retire old, in a single transaction. Returns the old memory."""
        if old_id == new_id:
            raise ValidationError("a memory cannot supersede itself")
        with self._session("supersede memory") as session:
            old = session.get(Memory, old_id)
            if old is None:
                raise NotFoundError(old_id)
            new = session.get(Memory, new_id)
            if new is None:
                raise NotFoundError(new_id)
            self._link(old, new, reason, utcnow())
            session.add(old)
            session.add(new)
            session.commit()
        logger.info(f"Memory {old.short_id} superseded by {new.short_id}: {reason}")
        return old

    def replace(self, old_id: str, memory: Memory, reason: str) -> Memory:
        """Insert memory as the new version of old_id; insert and pointers commit together."""
        memory = self._prepare(memory)
        with self._session("replace memory") as session:
            old = session.get(Memory, old_id)
            if old is None:
                raise NotFoundError(old_id)
            session.add(memory)
            # The new row must exist before old.superseded_by_id references it
            session.flush()
            self._link(old, memory, reason, memory.created_at)
            session.add(old)
            session.commit()
        logger.info(f"Memory {old.short_id} superseded by {memory.short_id}: {reason}")
        return memory

    # ------------------------------------------------------------------
    # search
    # ------------------------------------------------------------------
    def embed(self, text: str) -> List[float]:
        """Embed text with the configured provider; unlike create, failures raise."""
        if self.embedder is None:
            raise ProviderUnavailableError("semantic search requires an embedding provider")
        try:
            return self.embedder.embed(text)
        except ProviderUnavailableError:
            raise
        except Exception as e:
            raise ProviderUnavailableError(f"embedding failed: {e}") from e

    def search(
        self,
        query: str,
        agent_handle: Optional[str] = None,
        path_scope: Optional[str] = None,
        threshold: Optional[float] = None,
        limit: Optional[int] = None,
        categories: Optional[Iterable[MemoryCategory]] = None,
        exact_scope: bool = False,
        query_embedding: Optional[Sequence[float]] = None,
    ) -> List[SearchResult]:
        """
        Semantic search over active memories with a linear cosine scan.

        Raises ProviderUnavailableError when no embedder is configured: there
        is no unranked fallback. A caller that already embedded the query
        passes query_embedding to skip the provider call.
        """
        if self.embedder is None:
            raise ProviderUnavailableError("semantic search requires an embedding provider")
        query = (query or "").strip()
        if not query:
            raise ValidationError("search query must not be empty")
        threshold = settings.SEARCH_THRESHOLD if threshold is None else threshold
        limit = settings.SEARCH_LIMIT if limit is None else limit
        if not 0.0 <= threshold <= 1.0:
            raise ValidationError(f"threshold must be within [0, 1], got {threshold}")
        if limit < 1:
            raise ValidationError(f"limit must be positive, got {limit}")

        if query_embedding is None:
            query_embedding = self.embed(query)

        stmt = select(Memory).where(
            Memory.status == MemoryStatus.ACTIVE,
            Memory.embedding.is_not(None),
        )
        for clause in (
            _scope_clause(Memory.agent_handle, agent_handle, exact_scope),
            _scope_clause(Memory.path_scope, path_scope, exact_scope),
        ):
            if clause is not None:
                stmt = stmt.where(clause)
        if categories:
            stmt = stmt.where(Memory.category.in_([_coerce_category(c) for c in categories]))

        with self._session("search memories") as session:
            candidates = session.exec(stmt).all()
            results = rank_memories(query_embedding, candidates, threshold=threshold, limit=limit)
            self._touch(session, [r.memory for r in results])

        logger.debug(f"Search scanned {len(candidates)} memories, returned {len(results)}")
        return results

    def close(self):
        if self.embedder is not None:
            self.embedder.close()
