"""
Source registry backed by the store, seeded from configuration.
"""

import logging
from typing import Dict, Iterable, List, Optional

from .models import Source
from .store import ArticleStore


logger = logging.getLogger(__name__)


class SourceRegistry:
    """Looks up sources by name.

    Sources declared in configuration are upserted into the store the first
    time they are requested, so a fresh database works without a seeding step.
    """

    def __init__(self, store: ArticleStore, configured: Iterable[Source] = ()):
        self.store = store
        self._configured: Dict[str, Source] = {s.name: s for s in configured}
        self._seeded: set = set()

    async def get_source(self, name: str) -> Optional[Source]:
        if name in self._configured and name not in self._seeded:
            source = self._configured[name]
            source_id = await self.store.upsert_source(source)
            self._seeded.add(name)
            logger.debug(f"Registered configured source {name} ({source_id})")

        source = await self.store.get_source(name)
        if source is None:
            return None
        if not source.enabled:
            logger.info(f"Source {name} is disabled")
            return None
        return source

    async def list_sources(self) -> List[Source]:
        for name in self._configured:
            await self.get_source(name)
        return await self.store.list_sources()
