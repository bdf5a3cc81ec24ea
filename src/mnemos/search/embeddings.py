"""
Embedding providers.

The memory store treats the embedder as optional: a store built without one
still creates and lists memories, it only loses semantic search.
"""
from typing import List, Optional, Protocol
import httpx
from openai import OpenAI
from mnemos.config import Settings, settings as default_settings
from mnemos.errors import ProviderUnavailableError
from mnemos.llm.openai_client import get_client
from mnemos.logging import logger


class Embedder(Protocol):
    model: str

    def embed(self, text: str) -> List[float]:
        ...

    def close(self) -> None:
        ...


class OpenAIEmbedder:
    """Embeddings through the OpenAI API."""

    def __init__(self, model: str, client: Optional[OpenAI] = None):
        self.model = model
        self.client = client or get_client()

    def embed(self, text: str) -> List[float]:
        return self.embed_batch([text])[0]

    def embed_batch(self, texts: List[str]) -> List[List[float]]:
        """Batch call to OpenAI Embeddings API."""
        try:
            response = self.client.embeddings.create(
                input=texts,
                model=self.model
            )
        except Exception as e:
            logger.error(f"OpenAI Embedding API failed: {e}")
            raise ProviderUnavailableError(f"openai embeddings failed: {e}") from e
        # Ensure order is preserved
        return [data.embedding for data in sorted(response.data, key=lambda d: d.index)]

    def close(self) -> None:
        self.client.close()


class OllamaEmbedder:
    """Embeddings from a local Ollama server (POST /api/embed)."""

    def __init__(self, host: str, model: str, timeout: float = 30.0, client: Optional[httpx.Client] = None):
        self.host = host.rstrip("/")
        self.model = model
        self.client = client or httpx.Client(base_url=self.host, timeout=timeout)

    def embed(self, text: str) -> List[float]:
        return self.embed_batch([text])[0]

    def embed_batch(self, texts: List[str]) -> List[List[float]]:
        try:
            response = self.client.post("/api/embed", json={"model": self.model, "input": texts})
            response.raise_for_status()
            vectors = response.json()["embeddings"]
        except (httpx.HTTPError, KeyError, ValueError) as e:
            logger.error(f"Ollama embedding request failed: {e}")
            raise ProviderUnavailableError(f"ollama embeddings failed at {self.host}: {e}") from e
        if len(vectors) != len(texts):
            raise ProviderUnavailableError(
                f"ollama returned {len(vectors)} embeddings for {len(texts)} inputs"
            )
        return vectors

    def is_available(self) -> bool:
        """Check whether the server answers and has the embedding model pulled."""
        try:
            response = self.client.get("/api/tags")
            response.raise_for_status()
        except httpx.HTTPError:
            return False
        names = {m.get("name", "") for m in response.json().get("models", [])}
        return any(name == self.model or name.startswith(f"{self.model}:") for name in names)

    def close(self) -> None:
        self.client.close()


def create_embedder(config: Settings = default_settings) -> Optional[Embedder]:
    """Build the configured embedder, or None when semantic search is disabled."""
    provider = config.EMBEDDING_PROVIDER
    if provider == "none":
        return None

    if provider == "openai":
        if not (config.OPENAI_API_KEY and config.OPENAI_API_KEY.get_secret_value()):
            logger.warning("EMBEDDING_PROVIDER=openai but OPENAI_API_KEY is not set; embeddings disabled")
            return None
        client = OpenAI(
            api_key=config.OPENAI_API_KEY.get_secret_value(),
            timeout=config.PROVIDER_TIMEOUT,
        )
        return OpenAIEmbedder(config.OPENAI_EMBEDDING_MODEL, client=client)

    embedder = OllamaEmbedder(
        config.OLLAMA_HOST,
        config.OLLAMA_EMBEDDING_MODEL,
        timeout=config.PROVIDER_TIMEOUT,
    )
    if not embedder.is_available():
        logger.warning(f"Ollama model {config.OLLAMA_EMBEDDING_MODEL} not available at {config.OLLAMA_HOST}")
        embedder.close()
        return None
    return embedder
