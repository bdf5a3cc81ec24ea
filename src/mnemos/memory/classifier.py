"""
Classification capabilities used by the formation pipeline.

- Classifier.classify(text) -> MemoryCategory
- DuplicateJudge.judge(new_content, existing) -> DedupDecision

Both are optional collaborators; OpenAIClassifier implements them with a
small chat model in JSON mode.
"""
import json
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Protocol, Sequence
from mnemos.config import settings
from mnemos.errors import ProviderUnavailableError
from mnemos.llm.openai_client import get_chat_completion
from mnemos.models.memory import Memory, MemoryCategory
from mnemos.logging import logger


class DedupAction(str, Enum):
    NEW = "new"
    DUPLICATE = "duplicate"
    SUPERSEDE = "supersede"


@dataclass
class DedupDecision:
    action: DedupAction
    reason: str = ""
    target_id: Optional[str] = None


class Classifier(Protocol):
    def classify(self, text: str) -> MemoryCategory:
        ...


class DuplicateJudge(Protocol):
    def judge(self, new_content: str, existing: Sequence[Memory]) -> DedupDecision:
        ...


CATEGORIZE_PROMPT = """\
Categorize this piece of information into exactly one category.

Categories:
- "preference": User preferences, likes, dislikes, style choices (e.g., "User prefers TypeScript", "User always uses tabs")
- "fact": Facts about the user, project, or environment (e.g., "User works at Acme", "Project uses PostgreSQL")
- "correction": Corrections to previous agent behavior (e.g., "that's wrong", "don't do that again")
- "pattern": Observed patterns in user behavior (e.g., "User usually asks for tests", "User likes verbose output")

Content: {content}

Respond with valid JSON only:
{{"category": "preference|fact|correction|pattern", "confidence": 0.0-1.0}}"""

DEDUP_PROMPT = """\
Compare a new memory against existing memories and decide what to do.

New memory: {content}

Existing memories:
{existing}

Decide:
- "new": The new memory is genuinely new information
- "duplicate": The new memory is essentially the same as an existing one (skip it)
- "supersede": The new memory updates/replaces an existing one (mark old as superseded)

Respond with valid JSON only:
{{"action": "new|duplicate|supersede", "reason": "explanation", "target_id": "id of memory to supersede if action=supersede"}}"""


def _parse_json(raw: Optional[str]) -> dict:
    try:
        data = json.loads(raw or "")
    except json.JSONDecodeError as e:
        raise ProviderUnavailableError(f"classifier returned invalid JSON: {e}") from e
    if not isinstance(data, dict):
        raise ProviderUnavailableError("classifier returned a non-object JSON value")
    return data


class OpenAIClassifier:
    def __init__(self, model: Optional[str] = None, client=None):
        self.model = model or settings.OPENAI_MODEL_CLASSIFIER
        self.client = client

    def _complete(self, prompt: str) -> dict:
        raw = get_chat_completion(
            prompt,
            system_prompt="You classify short memories about a user. Answer with JSON only.",
            json_mode=True,
            model=self.model,
            client=self.client,
        )
        return _parse_json(raw)

    def classify(self, text: str) -> MemoryCategory:
        data = self._complete(CATEGORIZE_PROMPT.format(content=text))
        try:
            return MemoryCategory(str(data.get("category", "")).lower())
        except ValueError:
            logger.debug(f"Unknown category {data.get('category')!r}, falling back to fact")
            return MemoryCategory.FACT

    def judge(self, new_content: str, existing: Sequence[Memory]) -> DedupDecision:
        if not existing:
            return DedupDecision(DedupAction.NEW, "no existing memories")

        listing = "\n".join(f"- [{m.id}] {m.content}" for m in existing)
        data = self._complete(DEDUP_PROMPT.format(content=new_content, existing=listing))
        try:
            action = DedupAction(str(data.get("action", "")).lower())
        except ValueError:
            raise ProviderUnavailableError(f"classifier returned unknown action {data.get('action')!r}") from None
        return DedupDecision(
            action=action,
            reason=str(data.get("reason") or ""),
            target_id=data.get("target_id") or None,
        )
