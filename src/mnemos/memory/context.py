"""
Prompt injection of retrieved memories.

The chat runner calls build_memory_context() before each turn and appends
the formatted section to its system prompt.
"""
from dataclasses import dataclass, field
from typing import List, Literal, Optional
from mnemos.config import settings
from mnemos.errors import ProviderUnavailableError
from mnemos.memory.store import MemoryStore
from mnemos.search.vector_search import SearchResult
from mnemos.logging import logger

MemoryScope = Literal["agent", "global", "hybrid"]


@dataclass
class MemoryContext:
    memories: List[SearchResult] = field(default_factory=list)
    section: str = ""


def format_memory_section(results: List[SearchResult], agent_handle: Optional[str] = None) -> str:
    if not results:
        return ""

    lines = [
        "<user_context>",
        "The following memories were retrieved from previous interactions with this user.",
        "Use this context to provide more personalized and contextual responses.",
        "",
    ]
    for i, r in enumerate(results, 1):
        lines.append(f"{i}. [{r.memory.category.value}] {r.memory.content}")
        meta = []
        if r.memory.agent_handle and r.memory.agent_handle != agent_handle:
            meta.append(f"from: {r.memory.agent_handle}")
        if r.memory.path_scope:
            meta.append(f"path: {r.memory.path_scope}")
        if meta:
            lines.append(f"   ({', '.join(meta)})")
    lines.append("</user_context>")
    return "\n".join(lines) + "\n"


def build_memory_context(
    store: Optional[MemoryStore],
    query: str,
    agent_handle: Optional[str] = None,
    path_scope: Optional[str] = None,
    scope: MemoryScope = "hybrid",
    threshold: Optional[float] = None,
    limit: Optional[int] = None,
) -> Optional[MemoryContext]:
    """Retrieve memories relevant to query; None when there is nothing to inject.

    The chat path must keep working without an embedder, so provider
    absence yields no context instead of an error.
    """
    if store is None or not query.strip():
        return None

    # "agent" restricts to the agent's own (plus global) memories; other scopes search everything
    agent_filter = agent_handle if scope == "agent" else None
    try:
        results = store.search(
            query,
            agent_handle=agent_filter,
            path_scope=path_scope,
            threshold=settings.SEARCH_THRESHOLD if threshold is None else threshold,
            limit=settings.SEARCH_LIMIT if limit is None else limit,
        )
    except ProviderUnavailableError as e:
        logger.debug(f"Skipping memory context: {e}")
        return None

    if not results:
        return None
    return MemoryContext(memories=results, section=format_memory_section(results, agent_handle))


def inject_memory_context(system_prompt: str, context: Optional[MemoryContext]) -> str:
    if context is None or not context.section:
        return system_prompt
    return system_prompt + "\n\n" + context.section
