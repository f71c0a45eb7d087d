"""Candidate story sources: feeds, mailbox labels and static URLs."""

from .collector import SourceCollector, SourceResult
from .content import (
    get_content_from_firecrawl,
    get_content_from_jina,
    get_content_from_jina_with_retry,
    get_story_content,
)
from .gmail import GmailClient, clean_newsletter_html, list_gmail_message_refs, process_gmail_message
from .models import GmailMessageRef, Story
from .newsletter_links import (
    NewsletterLink,
    extract_newsletter_links,
    normalize_url,
    parse_newsletter_links,
    unwrap_tracking_url,
)
from .rss import fetch_rss_items, parse_feed
from .window import TimeWindow, build_time_window, date_key_in_zone, parse_datetime, to_iso


__all__ = [
    "GmailClient",
    "GmailMessageRef",
    "NewsletterLink",
    "SourceCollector",
    "SourceResult",
    "Story",
    "TimeWindow",
    "build_time_window",
    "clean_newsletter_html",
    "date_key_in_zone",
    "extract_newsletter_links",
    "fetch_rss_items",
    "get_content_from_firecrawl",
    "get_content_from_jina",
    "get_content_from_jina_with_retry",
    "get_story_content",
    "list_gmail_message_refs",
    "normalize_url",
    "parse_datetime",
    "parse_feed",
    "parse_newsletter_links",
    "process_gmail_message",
    "to_iso",
    "unwrap_tracking_url",
]
