"""Tests for feed parsing and the feed reader."""

import asyncio

import aiohttp
import pytest

from newsscraper.errors import FeedFetchError
from newsscraper.feeds import FeedReader, parse_feed
from newsscraper.models import Source

from fakes import FakeTransport, feed_xml


ATOM = """<?xml version="1.0" encoding="utf-8"?>
<feed xmlns="http://www.w3.org/2005/Atom">
  <title>Atom source</title>
  <entry>
    <title>First entry</title>
    <link href="https://atom.example.com/a"/>
    <id>a</id>
    <updated>2025-01-06T10:00:00Z</updated>
    <author><name>Jane Reporter</name></author>
    <summary>Short summary</summary>
    <content type="html">&lt;p&gt;Full content body&lt;/p&gt;</content>
  </entry>
  <entry>
    <title>No link here</title>
    <id>b</id>
  </entry>
  <entry>
    <title>Second entry</title>
    <link href="https://atom.example.com/c"/>
    <id>c</id>
  </entry>
</feed>
"""


class TestParseFeed:
    def test_rss_items_keep_feed_order(self):
        items = parse_feed(feed_xml("alpha", 4), "alpha")

        assert [i.url for i in items] == [f"https://alpha.example.com/news/story-{n}" for n in range(4)]
        assert [i.position for i in items] == [0, 1, 2, 3]
        assert items[0].title == "Story 0 from alpha"
        assert "Summary of story 0" in items[0].summary
        assert items[0].published_at.year == 2025
        assert items[0].published_at.tzinfo is not None

    def test_atom_prefers_content_and_skips_linkless_entries(self):
        items = parse_feed(ATOM, "atom")

        assert [i.url for i in items] == ["https://atom.example.com/a", "https://atom.example.com/c"]
        assert [i.position for i in items] == [0, 1]
        assert "Full content body" in items[0].summary
        assert items[0].author == "Jane Reporter"
        assert items[1].summary is None

    def test_links_are_resolved_and_normalized(self):
        urls = [
            "/news/relative-story",
            "https://alpha.example.com/news/tracked?id=7&utm_source=rss&fbclid=abc",
            "https://alpha.example.com/news/anchored#comments",
            "mailto:desk@alpha.example.com",
        ]

        items = parse_feed(feed_xml("alpha", urls=urls), "alpha")

        assert [i.url for i in items] == [
            "https://alpha.example.com/news/relative-story",
            "https://alpha.example.com/news/tracked?id=7",
            "https://alpha.example.com/news/anchored",
        ]
        assert [i.position for i in items] == [0, 1, 2]

    def test_unparseable_feed_raises(self):
        with pytest.raises(FeedFetchError) as excinfo:
            parse_feed("this is not a feed at all", "broken")
        assert excinfo.value.source == "broken"

    def test_empty_channel_is_not_an_error(self):
        assert parse_feed(feed_xml("alpha", 0), "alpha") == []


class TestFeedReader:
    def test_network_errors_become_feed_fetch_errors(self):
        source = Source(name="alpha", rss_url="https://alpha.example.com/rss")
        transport = FakeTransport(feeds={"alpha": aiohttp.ClientConnectionError("connection refused")})

        with pytest.raises(FeedFetchError) as excinfo:
            asyncio.run(FeedReader(transport).read(source))

        assert "connection refused" in excinfo.value.reason

    def test_timeouts_become_feed_fetch_errors(self):
        source = Source(name="alpha", rss_url="https://alpha.example.com/rss")
        transport = FakeTransport(feeds={"alpha": asyncio.TimeoutError()})

        with pytest.raises(FeedFetchError) as excinfo:
            asyncio.run(FeedReader(transport).read(source))

        assert excinfo.value.reason == "TimeoutError"

    def test_reads_items(self):
        source = Source(name="alpha", rss_url="https://alpha.example.com/rss")
        transport = FakeTransport(feeds={"alpha": feed_xml("alpha", 3)})

        items = asyncio.run(FeedReader(transport).read(source))

        assert len(items) == 3
