"""Tests for shared helpers."""

from datetime import timezone

from newsscraper.utils import content_hash, detect_language, format_duration, normalize_url, parse_datetime


def test_content_hash_ignores_case_and_whitespace():
    assert content_hash("A  Title", "Body\n\ntext") == content_hash("a title", "body text")
    assert content_hash("A title", "Body") != content_hash("A title", "Other body")


def test_content_hash_only_uses_leading_content():
    prefix = "x" * 2000
    assert content_hash("t", prefix + "tail one") == content_hash("t", prefix + "tail two")


def test_detect_language_defaults_for_short_text():
    assert detect_language("ok") == "en"
    assert detect_language("", default="sv") == "sv"


def test_detect_language():
    text = "Der Bundestag hat am Donnerstag über den neuen Haushalt für das kommende Jahr abgestimmt."
    assert detect_language(text) == "de"


def test_parse_datetime():
    assert parse_datetime("2025-01-06T09:30:00Z").tzinfo == timezone.utc
    assert parse_datetime("2025-01-06T09:30:00").tzinfo == timezone.utc
    assert parse_datetime("yesterday") is None
    assert parse_datetime(None) is None


def test_format_duration():
    assert format_duration(4.2) == "4s"
    assert format_duration(125) == "2m 5s"
    assert format_duration(3900) == "1h 5m"


def test_normalize_url_drops_fragment_and_tracking_params():
    assert normalize_url("https://News.Example.com/a?utm_source=rss#top") == "https://news.example.com/a"
    assert normalize_url("https://example.com/a?page=2&gclid=x") == "https://example.com/a?page=2"
    assert normalize_url("https://example.com/a") == "https://example.com/a"
