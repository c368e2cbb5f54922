from abc import ABC, abstractmethod
from typing import List, Optional

from depfeed.domain.entities import FeedDocument
from depfeed.domain.models import RepositoryConfig


class DatabaseManager(ABC):
    """
    Abstract base class for feed storage.
    """

    @abstractmethod
    def initialize(self) -> None:
        """Initialize the storage subsystem (e.g. load from disk)."""
        pass

    @abstractmethod
    def get_repository_config(self) -> RepositoryConfig:
        """Retrieve repository configuration."""
        pass

    @abstractmethod
    def save_repository_config(self, config: RepositoryConfig) -> None:
        """Save repository configuration."""
        pass

    @abstractmethod
    def get_feed(self, feed_id: str) -> Optional[FeedDocument]:
        """Get a stored feed by ID."""
        pass

    @abstractmethod
    def get_all_feeds(self) -> List[FeedDocument]:
        """All stored feeds, ordered by ID."""
        pass

    @abstractmethod
    def save_feed(self, feed_id: str, raw: bytes) -> FeedDocument:
        """
        Store a feed exactly as given (create or replace).
        Raises FeedParseError if `raw` is not a parseable feed.
        """
        pass

    @abstractmethod
    def delete_feed(self, feed_id: str) -> None:
        """Delete a stored feed."""
        pass

    @abstractmethod
    def rebuild_index(self) -> None:
        """Re-read all feeds from the backing store."""
        pass
