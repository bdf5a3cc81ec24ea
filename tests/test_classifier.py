import json
import pytest
from unittest.mock import MagicMock, patch
from mnemos.errors import ProviderUnavailableError
from mnemos.llm.openai_client import get_chat_completion
from mnemos.memory.classifier import DedupAction, OpenAIClassifier
from mnemos.models.memory import Memory, MemoryCategory


@pytest.fixture
def mock_chat():
    with patch("mnemos.memory.classifier.get_chat_completion") as mock:
        yield mock


@pytest.mark.parametrize("reply,expected", [
    ('{"category": "preference", "confidence": 0.9}', MemoryCategory.PREFERENCE),
    ('{"category": "Correction"}', MemoryCategory.CORRECTION),
    ('{"category": "opinion"}', MemoryCategory.FACT),
    ('{}', MemoryCategory.FACT),
])
def test_classify(mock_chat, reply, expected):
    mock_chat.return_value = reply
    assert OpenAIClassifier(model="gpt-4o-mini").classify("User prefers tabs") == expected

    prompt = mock_chat.call_args.args[0]
    assert "Content: User prefers tabs" in prompt
    assert mock_chat.call_args.kwargs["json_mode"] is True
    assert mock_chat.call_args.kwargs["model"] == "gpt-4o-mini"


def test_classify_invalid_json(mock_chat):
    mock_chat.return_value = "preference"
    with pytest.raises(ProviderUnavailableError, match="invalid JSON"):
        OpenAIClassifier().classify("User prefers tabs")


def test_judge_supersede(mock_chat):
    existing = Memory(id="mem-1", content="User prefers dark mode")
    mock_chat.return_value = json.dumps({
        "action": "supersede",
        "reason": "preference changed",
        "target_id": "mem-1",
    })

    decision = OpenAIClassifier().judge("User prefers light mode", [existing])
    assert decision.action == DedupAction.SUPERSEDE
    assert decision.reason == "preference changed"
    assert decision.target_id == "mem-1"
    assert "- [mem-1] User prefers dark mode" in mock_chat.call_args.args[0]


def test_judge_without_existing_skips_call(mock_chat):
    decision = OpenAIClassifier().judge("User prefers light mode", [])
    assert decision.action == DedupAction.NEW
    mock_chat.assert_not_called()


def test_judge_unknown_action(mock_chat):
    mock_chat.return_value = '{"action": "merge"}'
    with pytest.raises(ProviderUnavailableError):
        OpenAIClassifier().judge("x", [Memory(content="y")])


def test_chat_completion_json_mode():
    client = MagicMock()
    client.chat.completions.create.return_value.choices = [MagicMock(message=MagicMock(content='{"ok": true}'))]

    result = get_chat_completion("hi", system_prompt="sys", json_mode=True, model="gpt-4o-mini", client=client)

    assert result == '{"ok": true}'
    kwargs = client.chat.completions.create.call_args.kwargs
    assert kwargs["model"] == "gpt-4o-mini"
    assert kwargs["response_format"] == {"type": "json_object"}
    assert kwargs["messages"][0] == {"role": "system", "content": "sys"}


def test_chat_completion_reraises():
    client = MagicMock()
    client.chat.completions.create.side_effect = RuntimeError("boom")
    with pytest.raises(RuntimeError):
        get_chat_completion("hi", client=client)
