"""Data models for RSSHub Telegram Bot."""

from dataclasses import dataclass, field
from datetime import datetime

# Telegram rejects messages above this many characters
TELEGRAM_MAX_MESSAGE_LENGTH = 4096
DEFAULT_CHUNK_SIZE = 4000


@dataclass(frozen=True)
class FeedItem:
    """Represents a single normalized RSS/Atom feed item."""

    title: str
    link: str
    published: datetime | None = None
    updated: datetime | None = None
    excerpt: str = ""

    @property
    def published_at(self) -> datetime | None:
        """First available timestamp: published date, then updated date."""
        return self.published or self.updated


@dataclass(frozen=True)
class Feed:
    """Snapshot of a feed produced by a single fetch."""

    title: str | None = None
    link: str | None = None
    description: str | None = None
    items: tuple[FeedItem, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class MessageChunk:
    """One transport-safe piece of a composed message."""

    text: str
    size_bound: int = DEFAULT_CHUNK_SIZE
