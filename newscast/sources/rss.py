"""RSS/Atom feed collection with inline newsletter expansion."""

import logging
from dataclasses import dataclass
from typing import Iterable, List, Optional
from urllib.parse import urlsplit

import requests
from bs4 import BeautifulSoup

from newscast.config import SourceConfig
from newscast.errors import is_subrequest_limit_error
from newscast.llm import TextGenerator
from newscast.logger import log_function

from .content import get_content_from_jina_with_retry
from .models import Story
from .newsletter_links import extract_newsletter_links
from .window import TimeWindow, parse_datetime


logger = logging.getLogger("sources")

FEED_TIMEOUT_SECONDS = 30


@dataclass(frozen=True)
class FeedItem:
    title: str
    link: str
    guid: str = ""
    pub_date: str = ""


def _text(node) -> str:
    return node.get_text(strip=True) if node is not None else ""


def extract_rss_items(soup: BeautifulSoup) -> List[FeedItem]:
    items = []
    for item in soup.find_all("item"):
        items.append(
            FeedItem(
                title=_text(item.find("title")),
                link=_text(item.find("link")),
                guid=_text(item.find("guid")),
                pub_date=_text(item.find("pubDate")),
            )
        )
    return items


def extract_atom_items(soup: BeautifulSoup) -> List[FeedItem]:
    items = []
    for entry in soup.find_all("entry"):
        alternate = entry.find("link", attrs={"rel": "alternate"})
        first_link = entry.find("link")
        link = ""
        if alternate is not None and alternate.get("href"):
            link = alternate["href"]
        elif first_link is not None:
            link = first_link.get("href") or _text(first_link)
        items.append(
            FeedItem(
                title=_text(entry.find("title")),
                link=link.strip(),
                guid=_text(entry.find("id")),
                pub_date=_text(entry.find("published")) or _text(entry.find("updated")),
            )
        )
    return items


def parse_feed(xml: bytes) -> List[FeedItem]:
    """Parse RSS items, falling back to Atom entries; items without a link or guid are dropped."""
    soup = BeautifulSoup(xml, "xml")
    items = extract_rss_items(soup) or extract_atom_items(soup)
    normalized = []
    for item in items:
        url = item.link or item.guid
        if not url:
            continue
        normalized.append(FeedItem(title=item.title, link=url, guid=item.guid, pub_date=item.pub_date))
    return normalized


def is_newsletter_link(url: str, hosts: Iterable[str]) -> bool:
    try:
        hostname = (urlsplit(url).hostname or "").lower()
    except ValueError:
        return False
    return any(hostname == host or hostname.endswith(f".{host}") for host in hosts)


@log_function(logger_name="sources", log_execution_time=True)
def fetch_rss_items(
    source: SourceConfig,
    window: TimeWindow,
    newsletter_hosts: Iterable[str],
    generator: Optional[TextGenerator] = None,
    newsletter_prompt: str = "",
    jina_key: Optional[str] = None,
) -> List[Story]:
    """
    Fetch a feed and turn in-window items into candidate stories.

    Items hosted on a newsletter-to-feed service are expanded into one story
    per extracted article link.

    Args:
        source: Feed source configuration
        window: Inclusive collection window
        newsletter_hosts: Hostnames whose items are newsletters
        generator: Text generator for link extraction, newsletters are skipped without one
        newsletter_prompt: Rendered link extraction prompt
        jina_key: Jina reader key

    Returns:
        Candidate stories in feed order, [] when the feed cannot be fetched or parsed
    """
    hosts = list(newsletter_hosts)
    try:
        response = requests.get(source.url, timeout=FEED_TIMEOUT_SECONDS)
        response.raise_for_status()
        items = parse_feed(response.content)
    except Exception as e:
        if is_subrequest_limit_error(e):
            raise
        logger.error(f"Fetch rss items failed for {source.name}: {e}")
        return []

    in_window = []
    for item in items:
        published_at = parse_datetime(item.pub_date)
        if published_at is None:
            logger.warning(f"rss item missing pubDate (source={source.name}, title={item.title})")
            continue
        if window.contains(published_at):
            in_window.append(item)

    stories: List[Story] = []
    for item in in_window:
        if not is_newsletter_link(item.link, hosts):
            stories.append(
                Story(
                    id=item.guid or item.link,
                    title=item.title,
                    url=item.link,
                    source_name=source.name,
                    source_url=source.url,
                    published_at=item.pub_date or None,
                )
            )
            continue

        if generator is None:
            logger.warning(f"rss newsletter skipped, no text generator (source={source.name}, title={item.title})")
            continue
        stories.extend(_expand_newsletter_item(source, item, generator, newsletter_prompt, jina_key))

    logger.info(f"rss {source.name}: {len(items)} items, {len(in_window)} in window, {len(stories)} stories")
    return stories


def _expand_newsletter_item(
    source: SourceConfig,
    item: FeedItem,
    generator: TextGenerator,
    newsletter_prompt: str,
    jina_key: Optional[str],
) -> List[Story]:
    item_id = item.guid or item.link
    try:
        content = get_content_from_jina_with_retry(item.link, "markdown", jina_key)
        if not content:
            logger.warning(f"rss newsletter content empty (source={source.name}, title={item.title})")
            return []
        links = extract_newsletter_links(
            generator,
            newsletter_prompt,
            subject=item.title,
            content=content,
            message_id=item_id,
            rules=source.link_rules,
        )
    except Exception as e:
        if is_subrequest_limit_error(e):
            raise
        logger.error(f"rss newsletter processing failed (source={source.name}, title={item.title}): {e}")
        return []

    if not links:
        logger.warning(f"rss newsletter no links extracted (source={source.name}, title={item.title})")
        return []

    logger.info(f"rss newsletter links extracted (source={source.name}, title={item.title}, count={len(links)})")
    return [
        Story(
            id=f"{item_id}:{index}",
            title=link.title or item.title,
            url=link.link,
            source_name=source.name,
            source_url=source.url,
            published_at=item.pub_date or None,
            source_item_id=item_id,
            source_item_title=item.title,
        )
        for index, link in enumerate(links)
    ]
