from mnemos.search.embeddings import Embedder, OpenAIEmbedder, OllamaEmbedder, create_embedder
from mnemos.search.vector_search import SearchResult, cosine_similarity, rank_memories

__all__ = [
    "Embedder",
    "OpenAIEmbedder",
    "OllamaEmbedder",
    "create_embedder",
    "SearchResult",
    "cosine_similarity",
    "rank_memories",
]
