from pathlib import Path
from typing import Optional
import os

from depfeed.domain.entities import FeedRepository
from depfeed.storage.db_manager import DatabaseManager
from depfeed.storage.json_db_manager import JsonDatabaseManager

DATA_ROOT_ENV_VAR = "DEPFEED_DATA_DIR"
_REPO_ROOT = Path(__file__).resolve().parents[2]
_DEFAULT_DATA_DIR = _REPO_ROOT / "data"

_db_manager: Optional[DatabaseManager] = None
_repository: Optional[FeedRepository] = None


def get_data_dir() -> Path:
    """
    Determine the data directory path.

    Priority:
    1. Environment variable DEPFEED_DATA_DIR
    2. '<project root>/data'
    """
    env_path = os.environ.get(DATA_ROOT_ENV_VAR)
    if env_path:
        d = Path(env_path).expanduser()
    else:
        d = _DEFAULT_DATA_DIR
    d.mkdir(parents=True, exist_ok=True)
    return d


def get_db_manager() -> DatabaseManager:
    global _db_manager
    if _db_manager is None:
        _db_manager = JsonDatabaseManager(get_data_dir())
        _db_manager.initialize()
    return _db_manager


def get_repository() -> FeedRepository:
    global _repository
    if _repository is None:
        _repository = FeedRepository(get_db_manager())
    return _repository


def reset() -> None:
    """Forget the cached storage objects (the data directory is re-read on next use)."""
    global _db_manager, _repository
    _db_manager = None
    _repository = None
