import json
import logging
import re
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional

from depfeed.domain.entities import FeedDocument
from depfeed.domain.errors import FeedError
from depfeed.domain.models import RepositoryConfig
from depfeed.storage.db_manager import DatabaseManager

logger = logging.getLogger(__name__)

FEED_ID_RE = re.compile(r"^[A-Za-z0-9._-]+$")


def check_feed_id(feed_id: str) -> str:
    if not feed_id or not FEED_ID_RE.match(feed_id) or feed_id in (".", ".."):
        raise ValueError(f"Invalid feed id {feed_id!r}: use letters, digits, '.', '_' and '-'")
    return feed_id


class JsonDatabaseManager(DatabaseManager):
    """
    Stores every feed as <data_dir>/feeds/<feed_id>.json, byte for byte, and
    the repository settings as <data_dir>/repository.json.
    """

    def __init__(self, data_dir: Path):
        self._data_dir = data_dir
        self._feeds: Dict[str, FeedDocument] = {}
        self._repository_config: Optional[RepositoryConfig] = None
        self.last_built_at: Optional[datetime] = None

        # Ensure data directory exists
        self._feeds_dir.mkdir(parents=True, exist_ok=True)

    @property
    def _feeds_dir(self) -> Path:
        return self._data_dir / "feeds"

    def _feed_path(self, feed_id: str) -> Path:
        return self._feeds_dir / f"{check_feed_id(feed_id)}.json"

    def initialize(self) -> None:
        self._load_repository_config()
        self.rebuild_index()

    def get_repository_config(self) -> RepositoryConfig:
        if self._repository_config is None:
            return self._load_repository_config()
        return self._repository_config

    def save_repository_config(self, config: RepositoryConfig) -> None:
        self._repository_config = config
        config_path = self._data_dir / "repository.json"
        config_path.write_text(config.model_dump_json(indent=2), encoding="utf-8")

    def get_feed(self, feed_id: str) -> Optional[FeedDocument]:
        return self._feeds.get(feed_id)

    def get_all_feeds(self) -> List[FeedDocument]:
        return [self._feeds[k] for k in sorted(self._feeds)]

    def save_feed(self, feed_id: str, raw: bytes) -> FeedDocument:
        path = self._feed_path(feed_id)
        # Parse first so a broken document never replaces a good one on disk.
        doc = FeedDocument(feed_id, raw, self.get_repository_config())

        tmp_path = path.with_name(path.name + ".tmp")
        tmp_path.write_bytes(raw)
        tmp_path.replace(path)

        self._feeds[feed_id] = doc
        logger.info(f"Stored feed {feed_id} ({len(raw)} bytes)")
        return doc

    def delete_feed(self, feed_id: str) -> None:
        if feed_id not in self._feeds:
            raise ValueError(f"Feed {feed_id} not found")

        path = self._feed_path(feed_id)
        if path.exists():
            path.unlink()
        del self._feeds[feed_id]
        logger.info(f"Deleted feed {feed_id}")

    def rebuild_index(self) -> None:
        config = self.get_repository_config()
        feeds: Dict[str, FeedDocument] = {}

        for path in sorted(self._feeds_dir.glob("*.json")):
            feed_id = path.stem
            if not FEED_ID_RE.match(feed_id):
                continue
            try:
                feeds[feed_id] = FeedDocument(feed_id, path.read_bytes(), config)
            except (OSError, FeedError) as e:
                logger.warning(f"Skipping unreadable feed {path.name}: {e}")
                continue

        self._feeds = feeds
        self.last_built_at = datetime.utcnow()
        logger.debug(f"Indexed {len(feeds)} feeds from {self._feeds_dir}")

    def _load_repository_config(self) -> RepositoryConfig:
        """
        Load repository.json, merging with defaults for any missing fields,
        and write it back so any new fields are persisted.
        """
        path = self._data_dir / "repository.json"
        if path.exists():
            try:
                raw = json.loads(path.read_text(encoding="utf-8"))
                config = RepositoryConfig(**raw)
            except Exception as e:
                logger.warning(f"Ignoring unreadable {path.name}, using defaults: {e}")
                config = RepositoryConfig()
        else:
            config = RepositoryConfig()

        path.write_text(config.model_dump_json(indent=2), encoding="utf-8")
        self._repository_config = config
        return config
