"""mnemo test configuration."""
import os
import sys
import pytest
from pathlib import Path

# Ensure mnemo package is importable from a source checkout
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))


@pytest.fixture
def tmp_mnemo_dir(tmp_path):
    """Create a temporary MNEMO_HOME for testing."""
    mnemo_dir = tmp_path / ".mnemo"
    mnemo_dir.mkdir()
    old_home = os.environ.get("MNEMO_HOME")
    old_db = os.environ.pop("MNEMO_DB_PATH", None)
    os.environ["MNEMO_HOME"] = str(mnemo_dir)
    yield mnemo_dir
    if old_home is not None:
        os.environ["MNEMO_HOME"] = old_home
    else:
        os.environ.pop("MNEMO_HOME", None)
    if old_db is not None:
        os.environ["MNEMO_DB_PATH"] = old_db


@pytest.fixture(autouse=True)
def _reset_embeddings_after_test():
    """Reset embedding circuit-breaker after every test to prevent state leaks."""
    yield
    from mnemo.embeddings import reset_embedding_state
    reset_embedding_state()


@pytest.fixture
def _reset_bridge(tmp_mnemo_dir, monkeypatch):
    """Reset the bridge singleton so each test gets a fresh store.

    Hosted providers are disabled so the runtime uses the regex extractor
    and truncation summarizer regardless of the developer's environment.
    """
    from mnemo.bridge import reset_runtime

    monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
    monkeypatch.delenv("VOYAGE_API_KEY", raising=False)
    reset_runtime()
    yield
    reset_runtime()


@pytest.fixture
def store(tmp_mnemo_dir):
    """Create a fresh KnowledgeStore for testing."""
    from mnemo.sqlite_store import KnowledgeStore
    db_path = tmp_mnemo_dir / "test.db"
    s = KnowledgeStore(db_path=db_path)
    yield s
    s.close()


@pytest.fixture
def graph(store):
    from mnemo.graph import EntityGraph
    return EntityGraph(store)


@pytest.fixture
def rt(tmp_mnemo_dir):
    """A fully wired runtime (mediator, behaviors, handlers) on a temp database."""
    from mnemo.bridge import create_runtime
    runtime = create_runtime(db_path=tmp_mnemo_dir / "runtime.db")
    yield runtime
    runtime.close()
