"""
Fox News: the body container leads with video captions that read like prose.
"""

from typing import List, Optional

from bs4 import BeautifulSoup, Tag

from newsscraper.interfaces import ContentStrategy


class FoxNewsStrategy(ContentStrategy):
    name = "foxnews"
    domains = ("foxnews.com", "foxbusiness.com")

    def clean(self, soup: BeautifulSoup) -> None:
        for el in soup.select(
            ".featured-video, .video-container, .caption, .video-caption, "
            ".image-ct, .ad-container, .article-meta"
        ):
            el.decompose()

    def select(self, soup: BeautifulSoup, url: str) -> Optional[List[Tag]]:
        body = soup.select_one(".article-body")
        if body is None:
            return None
        paragraphs = [p for p in body.find_all("p", recursive=False)]
        return paragraphs or [body]
