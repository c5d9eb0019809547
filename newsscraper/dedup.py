"""
Deduplication gate: keeps only candidates whose URL is not stored yet.
"""

import logging
from typing import List, Sequence, Tuple

from .models import CandidateItem
from .store import ArticleStore


logger = logging.getLogger(__name__)


class DedupGate:
    """Filters candidate items against persisted article URLs.

    The gate is advisory. Two jobs can still race on the same URL; the
    UNIQUE constraint on ``source_url`` settles that at insert time.
    """

    def __init__(self, store: ArticleStore):
        self.store = store

    async def filter(self, items: Sequence[CandidateItem], limit: int) -> Tuple[List[CandidateItem], int]:
        """Return up to ``limit`` new candidates in feed order and the number of duplicates seen."""
        known = await self.store.existing_urls(item.url for item in items)

        kept: List[CandidateItem] = []
        seen = set()
        duplicates = 0
        for item in items:
            if item.url in known or item.url in seen:
                duplicates += 1
                continue
            seen.add(item.url)
            if len(kept) < limit:
                kept.append(item)

        logger.debug(f"Dedup kept {len(kept)} of {len(items)} items ({duplicates} duplicates)")
        return kept, duplicates
