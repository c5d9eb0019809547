"""
Core interfaces for the scraping pipeline.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import List, Optional, Tuple
from urllib.parse import urlparse

from bs4 import BeautifulSoup, Tag


class ContentStrategy(ABC):
    """Site-specific content selection, tried before the generic layers.

    Strategies live in ``newsscraper/plugins/`` and are discovered by the
    plugin loader. A strategy only points at the elements that hold the
    article body; cleaning and paragraph rendering stay with the extractor.
    """

    #: Host suffixes this strategy applies to, e.g. ``("bbc.co.uk", "bbc.com")``.
    domains: Tuple[str, ...] = ()

    @property
    @abstractmethod
    def name(self) -> str:
        """Human-readable name for this strategy."""
        pass

    def matches(self, url: str) -> bool:
        host = (urlparse(url).hostname or "").lower()
        return any(host == d or host.endswith("." + d) for d in self.domains)

    def clean(self, soup: BeautifulSoup) -> None:
        """Remove site-specific noise before selection. Optional."""
        pass

    @abstractmethod
    def select(self, soup: BeautifulSoup, url: str) -> Optional[List[Tag]]:
        """Return the body elements in document order, or None."""
        pass
