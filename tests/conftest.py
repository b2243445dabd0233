import pytest
import sqlite3
from pathlib import Path
from model_catalog.database.schema import init_schema
from model_catalog.database.ops import CatalogOps
from model_catalog.database.settings import SettingsStore

@pytest.fixture
def conn():
    """Returns an in-memory SQLite connection with the schema initialized."""
    c = sqlite3.connect(":memory:")
    c.execute("PRAGMA foreign_keys=ON;")
    init_schema(c)
    try:
        yield c
    finally:
        c.close()

@pytest.fixture
def ops(conn):
    """Returns a CatalogOps instance attached to the in-memory DB."""
    return CatalogOps(conn)

@pytest.fixture
def settings(conn):
    return SettingsStore(conn)

@pytest.fixture
def library(tmp_path):
    """Empty library root."""
    root = tmp_path / "library"
    root.mkdir()
    return root

@pytest.fixture
def write_file():
    """Writes `size` bytes to a path, creating parent folders."""
    def _write(path: Path, size: int = 16) -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(b"x" * size)
        return path
    return _write
