"""
Memory formation: reconcile one candidate memory against what is already stored.

Outcomes:
- created:    nothing similar in scope, a new memory is written
- skipped:    an equivalent memory exists, nothing is written
- superseded: a similar memory changed meaning, the new one replaces it
- failed:     anything went wrong; reported as an event, never raised
"""
import re
import threading
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional
from mnemos.config import settings
from mnemos.errors import ValidationError
from mnemos.memory.classifier import Classifier, DedupAction, DedupDecision, DuplicateJudge
from mnemos.memory.store import MemoryStore
from mnemos.models.memory import Memory, MemoryCategory
from mnemos.search.vector_search import SearchResult
from mnemos.logging import logger


class FormationEventType(str, Enum):
    CREATED = "created"
    SKIPPED = "skipped"
    SUPERSEDED = "superseded"
    FAILED = "failed"


@dataclass
class FormationTask:
    content: str
    category: Optional[MemoryCategory] = None
    agent_handle: Optional[str] = None
    path_scope: Optional[str] = None
    source_session_id: Optional[str] = None
    source_message_id: Optional[str] = None
    id: str = field(default_factory=lambda: uuid.uuid4().hex[:8])


@dataclass
class FormationEvent:
    kind: FormationEventType
    reason: str
    memory_id: Optional[str] = None
    task_id: Optional[str] = None
    content: str = ""
    superseded_id: Optional[str] = None
    elapsed: float = 0.0


FormationListener = Callable[[FormationEvent], None]

_WS = re.compile(r"\s+")


def normalize_content(text: str) -> str:
    return _WS.sub(" ", text).strip().rstrip(".!").casefold()


class FormationPipeline:
    def __init__(
        self,
        store: MemoryStore,
        classifier: Optional[Classifier] = None,
        judge: Optional[DuplicateJudge] = None,
        duplicate_threshold: Optional[float] = None,
        exact_threshold: Optional[float] = None,
    ):
        self.store = store
        self.classifier = classifier
        self.judge = judge
        self.duplicate_threshold = (
            settings.FORMATION_DUPLICATE_THRESHOLD if duplicate_threshold is None else duplicate_threshold
        )
        self.exact_threshold = settings.FORMATION_EXACT_THRESHOLD if exact_threshold is None else exact_threshold
        self._listeners: List[FormationListener] = []
        self._lock = threading.Lock()

    def on_formation(self, listener: FormationListener):
        """Register an observer called with every FormationEvent."""
        with self._lock:
            self._listeners.append(listener)

    def notify(self, event: FormationEvent):
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(event)
            except Exception:
                logger.exception(f"Formation listener {listener!r} failed on {event.kind.value} event")

    def form(self, task: FormationTask) -> FormationEvent:
        """Run one candidate through classification, duplicate detection and the write."""
        start = time.monotonic()
        try:
            event = self._reconcile(task)
        except Exception as e:
            logger.warning(f"Memory formation failed for task {task.id}: {e}")
            event = FormationEvent(
                kind=FormationEventType.FAILED,
                reason=str(e) or e.__class__.__name__,
                task_id=task.id,
                content=task.content,
            )
        event.elapsed = time.monotonic() - start
        logger.info(f"Formation {task.id}: {event.kind.value} ({event.reason})")
        self.notify(event)
        return event

    def _reconcile(self, task: FormationTask) -> FormationEvent:
        content = (task.content or "").strip()
        if not content:
            raise ValidationError("memory content must not be empty")

        category = task.category
        if category is None:
            category = self.classifier.classify(content) if self.classifier else MemoryCategory.FACT

        # One provider call per candidate: the same vector drives the duplicate
        # search and is stored with the new memory
        vector = self.store.embed(content)
        matches = self.store.search(
            content,
            agent_handle=task.agent_handle,
            path_scope=task.path_scope,
            threshold=self.duplicate_threshold,
            limit=1,
            exact_scope=True,
            query_embedding=vector,
        )

        candidate = Memory(
            content=content,
            category=category,
            agent_handle=task.agent_handle,
            path_scope=task.path_scope,
            source_session_id=task.source_session_id,
            source_message_id=task.source_message_id,
        )
        candidate.set_embedding(vector, model=getattr(self.store.embedder, "model", None))
        base = {"task_id": task.id, "content": content}

        if not matches:
            created = self.store.create(candidate)
            return FormationEvent(FormationEventType.CREATED, "new memory", memory_id=created.id, **base)

        match = matches[0]
        decision = self._decide(content, match)

        if decision.action == DedupAction.DUPLICATE:
            return FormationEvent(
                FormationEventType.SKIPPED, decision.reason, memory_id=match.memory.id, **base
            )
        if decision.action == DedupAction.NEW:
            created = self.store.create(candidate)
            return FormationEvent(FormationEventType.CREATED, decision.reason, memory_id=created.id, **base)

        replaced = self.store.replace(match.memory.id, candidate, decision.reason)
        return FormationEvent(
            FormationEventType.SUPERSEDED,
            decision.reason,
            memory_id=replaced.id,
            superseded_id=match.memory.id,
            **base,
        )

    def _decide(self, content: str, match: SearchResult) -> DedupDecision:
        if normalize_content(content) == normalize_content(match.memory.content):
            return DedupDecision(DedupAction.DUPLICATE, "already remembered", match.memory.id)
        if self.judge is not None:
            decision = self.judge.judge(content, [match.memory])
            decision.reason = decision.reason or f"{decision.action.value} (judged)"
            return decision
        if match.similarity >= self.exact_threshold:
            return DedupDecision(
                DedupAction.DUPLICATE, f"already remembered (similarity {match.similarity:.2f})", match.memory.id
            )
        return DedupDecision(
            DedupAction.SUPERSEDE,
            f"updated via memory formation (similarity {match.similarity:.2f})",
            match.memory.id,
        )
