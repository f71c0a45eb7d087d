from __future__ import annotations

import base64
import json
from datetime import datetime, timedelta, timezone

from conftest import FakeGenerator
from newscast.config import LinkRules, SourceConfig
from newscast.sources import (
    Story,
    build_time_window,
    clean_newsletter_html,
    date_key_in_zone,
    extract_newsletter_links,
    get_story_content,
    normalize_url,
    parse_datetime,
    parse_feed,
    parse_newsletter_links,
    to_iso,
    unwrap_tracking_url,
)
from newscast.sources import rss
from newscast.sources import content as content_module
from newscast.sources.gmail import build_gmail_query, extract_html, find_archive_link


NOW = datetime(2026, 10, 19, 15, 0, tzinfo=timezone.utc)

RSS_FEED = b"""<?xml version="1.0"?>
<rss version="2.0"><channel>
  <item><title>Yesterday news</title><link>https://news.example.com/a</link>
    <guid>guid-a</guid><pubDate>Sun, 18 Oct 2026 14:00:00 GMT</pubDate></item>
  <item><title>Too old</title><link>https://news.example.com/b</link>
    <pubDate>Thu, 15 Oct 2026 14:00:00 GMT</pubDate></item>
  <item><title>No date</title><link>https://news.example.com/c</link></item>
  <item><title>Newsletter issue</title><link>https://kill-the-newsletter.com/feeds/x/entries/1</link>
    <guid>issue-1</guid><pubDate>Sun, 18 Oct 2026 16:00:00 GMT</pubDate></item>
</channel></rss>"""

ATOM_FEED = b"""<?xml version="1.0" encoding="utf-8"?>
<feed xmlns="http://www.w3.org/2005/Atom">
  <entry><title>Atom entry</title><id>tag:example,2026:1</id>
    <link rel="alternate" href="https://blog.example.org/post"/>
    <updated>2026-10-18T10:00:00Z</updated></entry>
</feed>"""


class _FakeResponse:
    def __init__(self, content: bytes):
        self.content = content

    def raise_for_status(self):
        return None


def test_calendar_window_covers_yesterday_in_zone():
    window = build_time_window(NOW, "calendar", 24, 1, "America/Chicago")

    assert window.date_key == "2026-10-18"
    assert to_iso(window.start) == "2026-10-18T05:00:00.000Z"
    assert to_iso(window.end) == "2026-10-19T04:59:59.000Z"


def test_calendar_window_with_longer_lookback():
    window = build_time_window(NOW, "calendar", 24, 3, "UTC")

    assert to_iso(window.start) == "2026-10-16T00:00:00.000Z"
    assert window.date_key == "2026-10-18"


def test_rolling_window_ends_now():
    window = build_time_window(NOW, "rolling", 12, 1, "Asia/Shanghai")

    assert window.start == NOW - timedelta(hours=12)
    assert window.end == NOW
    assert window.date_key == "2026-10-19"
    assert window.contains(NOW)
    assert not window.contains(NOW + timedelta(seconds=1))


def test_date_key_in_zone_crosses_midnight():
    assert date_key_in_zone(datetime(2026, 10, 19, 2, 0, tzinfo=timezone.utc), "America/Chicago") == "2026-10-18"


def test_parse_datetime_handles_rfc822_iso_and_garbage():
    assert parse_datetime("Sun, 18 Oct 2026 14:00:00 GMT") == datetime(2026, 10, 18, 14, tzinfo=timezone.utc)
    assert parse_datetime("2026-10-18T14:00:00Z") == datetime(2026, 10, 18, 14, tzinfo=timezone.utc)
    assert parse_datetime("2026-10-18T14:00:00") == datetime(2026, 10, 18, 14, tzinfo=timezone.utc)
    assert parse_datetime("yesterday") is None
    assert parse_datetime("") is None


def test_parse_feed_reads_rss_and_atom():
    rss_items = parse_feed(RSS_FEED)
    atom_items = parse_feed(ATOM_FEED)

    assert [item.title for item in rss_items] == ["Yesterday news", "Too old", "No date", "Newsletter issue"]
    assert atom_items[0].link == "https://blog.example.org/post"
    assert atom_items[0].pub_date == "2026-10-18T10:00:00Z"


def test_fetch_rss_items_filters_window_and_expands_newsletters(monkeypatch):
    monkeypatch.setattr(rss.requests, "get", lambda url, timeout: _FakeResponse(RSS_FEED))
    monkeypatch.setattr(rss, "get_content_from_jina_with_retry", lambda url, fmt, key: "# Issue\n[one](https://a.example/1)")
    generator = FakeGenerator(
        lambda instructions, input, model: json.dumps(
            [{"link": "https://a.example/1", "title": "One"}, {"link": "https://a.example/2"}]
        )
    )
    source = SourceConfig(id="feed", name="Example", type="rss", url="https://news.example.com/feed.xml")
    window = build_time_window(NOW, "calendar", 24, 1, "UTC")

    stories = rss.fetch_rss_items(source, window, ["kill-the-newsletter.com"], generator=generator)

    assert [story.url for story in stories] == [
        "https://news.example.com/a",
        "https://a.example/1",
        "https://a.example/2",
    ]
    assert stories[0].id == "guid-a"
    assert stories[1].source_item_id == "issue-1"
    assert stories[1].title == "One"
    assert stories[2].title == "Newsletter issue"


def test_fetch_rss_items_returns_empty_on_fetch_failure(monkeypatch):
    def boom(url, timeout):
        raise rss.requests.ConnectionError("down")

    monkeypatch.setattr(rss.requests, "get", boom)
    source = SourceConfig(id="feed", name="Example", type="rss", url="https://news.example.com/feed.xml")

    assert rss.fetch_rss_items(source, build_time_window(NOW, "calendar", 24, 1, "UTC"), []) == []


def test_normalize_url():
    assert normalize_url("HTTPS://example.com).") == "https://example.com/"
    assert normalize_url("mailto:someone@example.com") == ""
    assert normalize_url("/relative/path") == ""


def test_unwrap_tracking_url():
    wrapped = "https://example.list-manage.com/track/click?u=abc&url=https%3A%2F%2Fnews.example.com%2Fstory"

    assert unwrap_tracking_url(wrapped) == ("https://news.example.com/story", True)
    assert unwrap_tracking_url("https://news.example.com/story") == ("https://news.example.com/story", False)


def test_parse_newsletter_links_tolerates_prose_and_url_key():
    text = 'Here you go:\n```json\n[{"url": "https://a.example/1", "title": " One "}, {"title": "no link"}, 3]\n```'

    links = parse_newsletter_links(text)

    assert [(link.link, link.title) for link in links] == [("https://a.example/1", "One")]


def test_extract_newsletter_links_dedups_and_caps():
    payload = [{"link": f"https://a.example/{index % 12}#frag{index}", "title": "t"} for index in range(30)]
    generator = FakeGenerator(lambda instructions, input, model: json.dumps(payload))

    links = extract_newsletter_links(
        generator, "EXTRACT", "Subject", "content", "msg-1", LinkRules(resolve_tracking_links=False)
    )

    assert len(links) == 10
    assert links[0].link == "https://a.example/0#frag0"
    assert len({link.link.split("#")[0] for link in links}) == 10


def test_extract_newsletter_links_retries_once_with_repair_prompt():
    outputs = iter(["I could not find JSON", '[{"link": "https://a.example/1"}]'])
    generator = FakeGenerator(lambda instructions, input, model: next(outputs))

    links = extract_newsletter_links(generator, "EXTRACT", "Subject", "content", "msg-1")

    assert [link.link for link in links] == ["https://a.example/1"]
    assert len(generator.calls) == 2
    assert generator.calls[1]["instructions"].startswith("EXTRACT")
    assert generator.calls[1]["instructions"] != "EXTRACT"


def test_clean_newsletter_html_keeps_links_as_markdown():
    html = (
        "<html><head><style>p { color: red; }</style></head><body>"
        '<p>Hello <a href="https://a.example/1">One</a></p><div>Bye<img src="x.png"></div>'
        "</body></html>"
    )

    assert clean_newsletter_html(html) == "Hello [One](https://a.example/1)\nBye"


def test_find_archive_link_unwraps_tracking():
    html = (
        '<a href="https://example.org/unsubscribe">Unsubscribe</a>'
        '<a href="https://x.list-manage.com/track/click?url=https%3A%2F%2Fnews.example.com%2Fissue">'
        "View this email in your browser</a>"
    )

    assert find_archive_link(html, ["in your browser"]) == "https://news.example.com/issue"
    assert find_archive_link(html, ["web version"]) == ""


def test_extract_html_prefers_html_part():
    def encoded(text):
        return base64.urlsafe_b64encode(text.encode("utf-8")).decode("ascii").rstrip("=")

    message = {
        "payload": {
            "mimeType": "multipart/alternative",
            "parts": [
                {"mimeType": "text/plain", "body": {"data": encoded("plain body")}},
                {"mimeType": "text/html", "body": {"data": encoded("<p>新闻</p>")}},
            ],
        }
    }

    assert extract_html(message) == "<p>新闻</p>"
    assert extract_html({"payload": {"mimeType": "text/plain", "body": {}}}) == ""


def test_build_gmail_query_pads_window_by_a_day():
    window = build_time_window(NOW, "calendar", 24, 1, "UTC")

    query = build_gmail_query("newsletters", window.start, window.end)

    start = int(window.start.timestamp()) - 86400
    end = int(window.end.timestamp()) + 86400
    assert query == f'label:"newsletters" after:{start} before:{end}'


def test_get_story_content_falls_back_to_firecrawl_and_truncates(monkeypatch):
    def jina_down(url, fmt, key):
        raise content_module.requests.ConnectionError("reader down")

    monkeypatch.setattr(content_module, "get_content_from_jina_with_retry", jina_down)
    monkeypatch.setattr(content_module, "get_content_from_firecrawl", lambda url, fmt, key: "x" * 100)
    story = Story(
        id="s1",
        title="Open models",
        url="https://news.example.com/a",
        source_name="Example News",
        source_url="https://news.example.com/feed.xml",
    )

    content = get_story_content(story, max_tokens=4, firecrawl_key="fc-key")

    title, article = content.split("\n\n---\n\n")
    assert title == "\n<title>\nOpen models\n</title>\n"
    assert article == "\n<article>\n" + "x" * 20 + "\n</article>\n"


def test_window_bounds_are_inclusive():
    window = build_time_window(datetime(2024, 1, 2, 6, 0, tzinfo=timezone.utc), "calendar", 24, 1, "UTC")

    assert to_iso(window.start) == "2024-01-01T00:00:00.000Z"
    assert to_iso(window.end) == "2024-01-01T23:59:59.000Z"
    assert not window.contains(parse_datetime("2023-12-31T23:00:00Z"))
    assert window.contains(parse_datetime("2024-01-01T12:00:00Z"))
    assert window.contains(window.end)
