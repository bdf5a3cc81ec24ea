import json
import sys
import typer
from pathlib import Path
from typing import Optional
from mnemos.config import settings
from mnemos.errors import MnemosError, NotFoundError, ProviderUnavailableError
from mnemos.logging import logger, get_correlation_id
from mnemos.models.memory import Memory, MemoryCategory

app = typer.Typer(no_args_is_help=True)

@app.callback()
def main():
    """
    Semantic memory CLI.
    """
    pass


def get_store(with_embedder: bool = True):
    """Open the configured database, optionally with the configured embedder."""
    from mnemos.db import engine, init_db
    from mnemos.memory.store import MemoryStore
    from mnemos.search.embeddings import create_embedder

    init_db(engine)
    return MemoryStore(engine, create_embedder() if with_embedder else None)


def memory_to_dict(m: Memory) -> dict:
    result = {
        "id": m.id,
        "content": m.content,
        "category": m.category.value,
        "status": m.status.value,
        "confidence": m.confidence,
        "access_count": m.access_count,
        "created_at": m.created_at.isoformat(),
        "updated_at": m.updated_at.isoformat(),
    }
    for key in ("agent_handle", "path_scope", "supersedes_id", "superseded_by_id", "supersession_reason"):
        value = getattr(m, key)
        if value:
            result[key] = value
    return result


def write_json(value):
    print(json.dumps(value, indent=2))


def fail(message: str, as_json: bool = False):
    if as_json:
        write_json({"success": False, "error": message})
    else:
        print(f"❌ {message}")
    raise typer.Exit(code=1)


def truncate(text: str, width: int) -> str:
    return text if len(text) <= width else text[: width - 3] + "..."


@app.command(name="doctor")
def doctor():
    """
    Check configuration and embedding provider health.
    """
    logger.info("Running doctor check...")

    print("\n🩺 Mnemos Doctor\n")

    print(f"Python: {sys.version.split()[0]}")
    print(f"Correlation ID: {get_correlation_id()}")

    print("\n[Configuration]")
    print(f"DATABASE_PATH:                 {settings.DATABASE_PATH}")
    print(f"EMBEDDING_PROVIDER:            {settings.EMBEDDING_PROVIDER}")
    print(f"SEARCH_THRESHOLD:              {settings.SEARCH_THRESHOLD}")
    print(f"FORMATION_DUPLICATE_THRESHOLD: {settings.FORMATION_DUPLICATE_THRESHOLD}")
    print(f"FORMATION_EXACT_THRESHOLD:     {settings.FORMATION_EXACT_THRESHOLD}")
    print(f"QUEUE_BUFFER_SIZE:             {settings.QUEUE_BUFFER_SIZE}")

    api_key_status = "✅ Set" if settings.OPENAI_API_KEY and settings.OPENAI_API_KEY.get_secret_value() else "❌ Missing"
    print(f"OPENAI_API_KEY:                {api_key_status}")

    from mnemos.search.embeddings import create_embedder
    embedder = create_embedder()
    if embedder is None:
        print("\n[Embeddings]                   ❌ Unavailable (semantic search disabled)")
    else:
        print(f"\n[Embeddings]                   ✅ {embedder.model}")
        embedder.close()

    db_path = Path(settings.DATABASE_PATH)
    if db_path.exists():
        print(f"[Database]                     ✅ Found: {db_path.absolute()}")
    else:
        print(f"[Database]                     ❌ Missing: {db_path.absolute()} (run 'mnemos db init')")

    print("\nDoctor check complete.")


db_app = typer.Typer(help="Database management commands.")
app.add_typer(db_app, name="db")

@db_app.command("init")
def init():
    """Create the memories table."""
    from mnemos.db import init_db
    try:
        init_db()
        logger.info("Database initialized successfully.")
        print("✅ Database initialized.")
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        fail(f"Failed: {e}")


memory_app = typer.Typer(help="Manage persistent facts, preferences, corrections and patterns.")
app.add_typer(memory_app, name="memory")


@memory_app.command("list")
def list_memories(
    agent: Optional[str] = typer.Option(None, "--agent", "-a", help="Filter by agent handle"),
    category: Optional[MemoryCategory] = typer.Option(None, "--category", "-c", help="Filter by category"),
    limit: int = typer.Option(50, "--limit", "-n", help="Maximum number of memories to show"),
    as_json: bool = typer.Option(False, "--json", help="Output in JSON format"),
):
    """List active memories, newest first."""
    store = get_store(with_embedder=False)
    try:
        memories = store.list(agent_handle=agent, limit=limit, category=category)
    except MnemosError as e:
        fail(f"Failed to list memories: {e}", as_json)

    if as_json:
        write_json([memory_to_dict(m) for m in memories])
        return
    if not memories:
        print("No memories found")
        return

    print(f"\nMemories ({len(memories)})\n")
    for m in memories:
        print(f"  {m.short_id}  {m.category.value:<11} {truncate(m.content, 50)}")
        print(f"     {m.agent_handle or 'global'}  {m.created_at:%Y-%m-%d %H:%M}")


@memory_app.command("search")
def search(
    query: str,
    agent: Optional[str] = typer.Option(None, "--agent", "-a", help="Filter by agent handle"),
    threshold: Optional[float] = typer.Option(
        None, "--threshold", "-t", min=0.0, max=1.0, help="Minimum similarity (0-1); defaults to SEARCH_THRESHOLD"
    ),
    limit: Optional[int] = typer.Option(None, "--limit", "-n", min=1, help="Maximum number of results; defaults to SEARCH_LIMIT"),
    as_json: bool = typer.Option(False, "--json", help="Output in JSON format"),
):
    """Search memories semantically."""
    store = get_store()
    try:
        results = store.search(query, agent_handle=agent, threshold=threshold, limit=limit)
    except ProviderUnavailableError as e:
        fail(f"Search unavailable: {e} (configure EMBEDDING_PROVIDER)", as_json)
    except MnemosError as e:
        fail(f"Search failed: {e}", as_json)
    finally:
        store.close()

    if as_json:
        write_json([{**memory_to_dict(r.memory), "similarity": round(r.similarity, 4)} for r in results])
        return
    if not results:
        print("No memories found matching the query")
        return

    print(f"\nSearch results for: {query}\n")
    for r in results:
        print(f"  {r.memory.short_id}  {r.similarity:.2f}  {truncate(r.memory.content, 60)}")
        print(f"     {r.memory.category.value}")


@memory_app.command("show")
def show(memory_id: str, as_json: bool = typer.Option(False, "--json", help="Output in JSON format")):
    """Show memory details (id or unique id prefix)."""
    store = get_store(with_embedder=False)
    try:
        m = store.get_by_prefix(memory_id)
    except MnemosError as e:
        fail(str(e), as_json)

    if as_json:
        write_json(memory_to_dict(m))
        return

    print(f"\nID:           {m.id}")
    print(f"Category:     {m.category.value}")
    print(f"Status:       {m.status.value}")
    print(f"\nContent:\n  {m.content}\n")
    if m.agent_handle:
        print(f"Agent:        {m.agent_handle}")
    if m.path_scope:
        print(f"Path:         {m.path_scope}")
    print(f"Confidence:   {m.confidence:.2f}")
    print(f"Access Count: {m.access_count}")
    print(f"Created:      {m.created_at:%Y-%m-%d %H:%M:%S}")
    print(f"Updated:      {m.updated_at:%Y-%m-%d %H:%M:%S}")
    if m.supersedes_id:
        print(f"Supersedes:   {m.supersedes_id}")
    if m.superseded_by_id:
        print(f"Superseded By: {m.superseded_by_id} ({m.supersession_reason})")


@memory_app.command("store")
def store_memory(
    content: str,
    agent: Optional[str] = typer.Option(None, "--agent", "-a", help="Agent handle for scoping"),
    category: Optional[MemoryCategory] = typer.Option(
        None, "--category", "-c", help="Memory category; auto-detected when omitted"
    ),
    path: Optional[str] = typer.Option(None, "--path", "-p", help="Path scope for this memory"),
    as_json: bool = typer.Option(False, "--json", help="Output in JSON format"),
):
    """Store a new memory."""
    from mnemos.llm.openai_client import has_api_key
    from mnemos.memory.classifier import OpenAIClassifier

    if category is None:
        category = MemoryCategory.FACT
        if has_api_key():
            try:
                category = OpenAIClassifier().classify(content)
            except Exception as e:
                logger.warning(f"Auto-categorization failed, defaulting to fact: {e}")

    store = get_store()
    try:
        m = store.create(Memory(content=content, category=category, agent_handle=agent, path_scope=path))
    except MnemosError as e:
        fail(f"Failed to store memory: {e}", as_json)
    finally:
        store.close()

    if as_json:
        write_json({"success": True, "memory": memory_to_dict(m)})
        return
    print(f"Stored as {m.category.value}: {m.short_id}")
    if m.embedding is None:
        print("⚠️  Stored without embedding; it will not appear in search results")


@memory_app.command("forget")
def forget(
    memory_id: str,
    force: bool = typer.Option(False, "--force", "-f", help="Skip confirmation"),
    as_json: bool = typer.Option(False, "--json", help="Output in JSON format"),
):
    """Forget a memory (soft delete)."""
    store = get_store(with_embedder=False)
    try:
        m = store.get_by_prefix(memory_id)
    except NotFoundError:
        fail(f"memory not found: {memory_id}", as_json)
    except MnemosError as e:
        fail(str(e), as_json)

    if not force and not as_json:
        print(f"Memory to forget: {m.content}")
        if not typer.confirm("Are you sure?"):
            print("Cancelled")
            return

    try:
        store.forget(m.id)
    except MnemosError as e:
        fail(f"Failed to forget memory: {e}", as_json)

    if as_json:
        write_json({"success": True, "forgotten": True, "memory_id": m.id})
        return
    print("Memory forgotten")


@memory_app.command("clear")
def clear(
    agent: Optional[str] = typer.Option(None, "--agent", "-a", help="Only clear memories for this agent"),
    force: bool = typer.Option(False, "--force", "-f", help="Skip confirmation"),
):
    """Forget all active memories."""
    store = get_store(with_embedder=False)
    count = store.count(agent_handle=agent)
    if count == 0:
        print("No memories to clear")
        return

    target = f"memories for {agent}" if agent else "all memories"
    if not force:
        print(f"This will forget {count} {target}.")
        if not typer.confirm("Continue?"):
            print("Cancelled")
            return

    try:
        cleared = store.clear(agent_handle=agent)
    except MnemosError as e:
        fail(f"Failed to clear memories: {e}")
    print(f"Cleared {cleared} {target}")


@memory_app.command("stats")
def stats(
    agent: Optional[str] = typer.Option(None, "--agent", "-a", help="Count only this agent's memories"),
    as_json: bool = typer.Option(False, "--json", help="Output in JSON format"),
):
    """Show memory statistics."""
    store = get_store(with_embedder=False)
    total = store.count(agent_handle=agent)
    if as_json:
        write_json({"total_active": total})
        return
    print("\nMemory Statistics\n")
    print(f"  Total Active Memories: {total}\n")


@memory_app.command("history")
def history(memory_id: str):
    """Show the version chain of a memory, newest first."""
    store = get_store(with_embedder=False)
    try:
        chain = store.history(store.get_by_prefix(memory_id).id)
    except MnemosError as e:
        fail(str(e))

    for depth, m in enumerate(chain):
        marker = "→" if depth == 0 else " "
        print(f"{marker} {m.short_id}  {m.status.value:<10} {m.created_at:%Y-%m-%d %H:%M}  {m.content}")
        if m.supersession_reason:
            print(f"     reason: {m.supersession_reason}")


if __name__ == "__main__":
    app()
