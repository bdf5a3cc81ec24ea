import re
import pytest
from mnemos.db import make_engine, init_db
from mnemos.errors import ProviderUnavailableError
from mnemos.memory.store import MemoryStore

# Each keyword owns one axis. "mode" and "indent" dominate so that
# "dark mode" and "light mode" land at cosine 0.9: similar, not identical.
AXES = {
    "mode": 3.0,
    "dark": 1.0,
    "light": 1.0,
    "indent": 3.0,
    "tabs": 1.0,
    "spaces": 1.0,
    "postgresql": 1.0,
    "python": 1.0,
    "typescript": 1.0,
    "coffee": 1.0,
}
AXIS_NAMES = sorted(AXES)


class KeywordEmbedder:
    model = "keyword-test"

    def __init__(self):
        self.calls = 0
        self.fail = False
        self.closed = False

    def embed(self, text):
        self.calls += 1
        if self.fail:
            raise ProviderUnavailableError("embedder offline")
        words = re.findall(r"[a-z]+", text.lower())
        return [AXES[name] * words.count(name) for name in AXIS_NAMES]

    def close(self):
        self.closed = True


@pytest.fixture(name="engine")
def engine_fixture(tmp_path):
    engine = make_engine(f"sqlite:///{tmp_path / 'memories.db'}")
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture(name="embedder")
def embedder_fixture():
    return KeywordEmbedder()


@pytest.fixture(name="store")
def store_fixture(engine, embedder):
    return MemoryStore(engine, embedder)


@pytest.fixture(name="bare_store")
def bare_store_fixture(engine):
    """Store without an embedding provider."""
    return MemoryStore(engine, None)
