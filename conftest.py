import shutil
from pathlib import Path

import pytest

from dungeon_master.storage import Storage
from dungeon_master.store import FileStore, MemoryStore

TEST_DATA_DIR = Path("data-tests")


@pytest.fixture
def data_dir() -> Path:
    """Wipe data-tests/ before the test; left in place afterwards for inspection."""
    if TEST_DATA_DIR.exists():
        shutil.rmtree(TEST_DATA_DIR)
    TEST_DATA_DIR.mkdir()
    return TEST_DATA_DIR


@pytest.fixture
def file_store(data_dir: Path) -> FileStore:
    return FileStore(data_dir)


@pytest.fixture
def memory_store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def storage(memory_store: MemoryStore) -> Storage:
    return Storage(memory_store)
