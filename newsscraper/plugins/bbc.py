"""
BBC News: article text is split across many ``text-block`` components.
"""

from typing import List, Optional

from bs4 import BeautifulSoup, Tag

from newsscraper.interfaces import ContentStrategy


class BbcStrategy(ContentStrategy):
    """Aggregates BBC text blocks in document order."""

    name = "bbc"
    domains = ("bbc.co.uk", "bbc.com")

    _BLOCK_SELECTORS = (
        '[data-component="text-block"]',
        '[data-testid*="paragraph"]',
        'div[class*="Text-sc"]',
    )

    def clean(self, soup: BeautifulSoup) -> None:
        for el in soup.select('[data-component="links-block"], [data-component="image-block"]'):
            el.decompose()

    def select(self, soup: BeautifulSoup, url: str) -> Optional[List[Tag]]:
        for selector in self._BLOCK_SELECTORS:
            blocks = soup.select(selector)
            if blocks:
                return blocks
        return None
