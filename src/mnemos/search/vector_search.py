import numpy as np
from dataclasses import dataclass
from typing import List, Sequence
from mnemos.models.memory import Memory


@dataclass
class SearchResult:
    memory: Memory
    similarity: float

    @property
    def distance(self) -> float:
        return 1.0 - self.similarity


def cosine_similarity(v1: np.ndarray, v2: np.ndarray) -> float:
    norm_product = np.linalg.norm(v1) * np.linalg.norm(v2)
    if norm_product == 0:
        return 0.0
    return float(np.dot(v1, v2) / norm_product)

def batch_cosine_similarity(query_vec: np.ndarray, matrix: np.ndarray) -> np.ndarray:
    """
    Compute cosine similarity between query_vec and all rows in matrix.
    query_vec: (d,)
    matrix: (n, d)
    Returns: (n,) scores; rows with zero norm score 0.
    """
    norm_q = np.linalg.norm(query_vec)
    norm_m = np.linalg.norm(matrix, axis=1)

    norm_product = norm_q * norm_m
    dot_products = np.dot(matrix, query_vec)
    scores = np.zeros_like(dot_products)
    np.divide(dot_products, norm_product, out=scores, where=norm_product != 0)
    return scores

def rank_memories(
    query_embedding: Sequence[float],
    candidates: Sequence[Memory],
    threshold: float = 0.0,
    limit: int = 10,
) -> List[SearchResult]:
    """
    Score candidates against a query vector with a linear scan.

    Candidates without a vector, or whose vector has a different dimension
    than the query, are skipped. Results below threshold are dropped; the
    rest are ordered by similarity, newest first on ties, and truncated.
    """
    query_vec = np.asarray(query_embedding, dtype=np.float32)

    matrix_list = []
    valid: List[Memory] = []
    for memory in candidates:
        vec = memory.get_embedding()
        if vec is not None and vec.shape[0] == query_vec.shape[0]:
            matrix_list.append(vec)
            valid.append(memory)

    if not matrix_list:
        return []

    scores = batch_cosine_similarity(query_vec, np.array(matrix_list))

    results = [
        SearchResult(memory=memory, similarity=float(score))
        for memory, score in zip(valid, scores)
        if score >= threshold
    ]
    # Stable two-pass sort: recency first, then similarity
    results.sort(key=lambda r: r.memory.created_at, reverse=True)
    results.sort(key=lambda r: r.similarity, reverse=True)
    return results[:limit]
