"""
Leaf content collection under bounded concurrency.
"""

import logging
from typing import Callable, Optional

from .errors import ContentUnavailable
from .limiter import ConcurrencyLimiter
from .providers.base import ContentSource
from .types import EmbeddingKind, Item, PendingText

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], None]


class ContentCollector:
    """
    Acquires page text for bookmarks through a shared limiter.

    A failure for one bookmark becomes empty content for that bookmark
    only; it never aborts the other acquisitions in the batch.
    """

    def __init__(self, source: ContentSource, limiter: ConcurrencyLimiter):
        self._source = source
        self._limiter = limiter

    async def acquire(self, item: Item) -> Optional[str]:
        """Text for one bookmark, or None if none could be acquired."""
        try:
            return await self._source.acquire(item)
        except ContentUnavailable as e:
            logger.warning("No content for %s: %s", item.id, e)
        except Exception as e:
            logger.error("Error getting page content for %s (%s): %s", item.id, item.url, e)
        return None

    async def collect(
        self,
        leaves: list[Item],
        on_progress: Optional[ProgressCallback] = None,
    ) -> list[PendingText]:
        """
        Acquire content for every leaf, at most ``limiter.max_concurrency`` at a time.

        Args:
            leaves: Bookmarks to load
            on_progress: Called with (completed, total) after each bookmark

        Returns:
            One LeafContent PendingText per leaf, in input order
        """
        completed = 0
        total = len(leaves)

        async def load(item: Item) -> PendingText:
            nonlocal completed
            text = await self.acquire(item)
            completed += 1
            if on_progress is not None:
                try:
                    on_progress(completed, total)
                except Exception as e:
                    logger.warning("Progress callback failed: %s", e)
            return PendingText(item.id, text, EmbeddingKind.LEAF_CONTENT)

        return await self._limiter.map(
            [lambda item=item: load(item) for item in leaves]
        )
