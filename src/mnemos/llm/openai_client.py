from functools import lru_cache
from typing import Optional
from openai import OpenAI
from mnemos.config import settings
from mnemos.logging import logger


@lru_cache(maxsize=1)
def get_client() -> OpenAI:
    """Shared OpenAI client, built on first use.

    settings.OPENAI_API_KEY is a SecretStr loaded from .env by pydantic-settings;
    when unset the SDK falls back to the OPENAI_API_KEY environment variable.
    """
    api_key = settings.OPENAI_API_KEY.get_secret_value() if settings.OPENAI_API_KEY else None
    return OpenAI(api_key=api_key, timeout=settings.PROVIDER_TIMEOUT)


def has_api_key() -> bool:
    return bool(settings.OPENAI_API_KEY and settings.OPENAI_API_KEY.get_secret_value())


def get_chat_completion(
    prompt: str,
    system_prompt: str = "You are a helpful assistant.",
    json_mode: bool = False,
    model: Optional[str] = None,
    client: Optional[OpenAI] = None,
) -> str:
    """
    Call an OpenAI chat model and return the message content.
    """
    client = client or get_client()
    try:
        kwargs = {
            "model": model or settings.OPENAI_MODEL_CLASSIFIER,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": prompt}
            ],
            "temperature": 0.1,
        }
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}

        response = client.chat.completions.create(**kwargs)
        return response.choices[0].message.content
    except Exception as e:
        logger.error(f"OpenAI Chat API call failed: {e}")
        raise
