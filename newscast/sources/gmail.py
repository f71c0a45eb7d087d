"""
Gmail label listing and newsletter expansion.

Listing is cheap (metadata only) and happens during collection; the full
message fetch, archive lookup and link extraction happen one message at a
time during expansion.
"""

import base64
import logging
import re
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional

import requests
from bs4 import BeautifulSoup

from newscast.config import SourceConfig, parse_link_rules
from newscast.errors import ConfigurationError, is_subrequest_limit_error
from newscast.llm import TextGenerator
from newscast.logger import log_function

from .content import get_content_from_jina_with_retry
from .models import GmailMessageRef, Story
from .newsletter_links import extract_newsletter_links, normalize_text, unwrap_tracking_url
from .window import TimeWindow, to_iso


logger = logging.getLogger("sources")

GMAIL_TOKEN_URL = "https://oauth2.googleapis.com/token"
GMAIL_API_URL = "https://gmail.googleapis.com/gmail/v1/users"
GMAIL_TIMEOUT_SECONDS = 30
DEFAULT_MAX_MESSAGES = 50
NON_PRODUCTION_MAX_MESSAGES = 3
REMOVED_TAGS = ("style", "script", "svg", "img", "meta", "link", "head", "noscript")
BLOCK_TAGS = ("h1", "h2", "h3", "h4", "h5", "h6", "p", "div", "tr", "li", "br", "hr")


def decode_base64url(data: str) -> str:
    padded = data + "=" * (-len(data) % 4)
    return base64.urlsafe_b64decode(padded).decode("utf-8", errors="replace")


def get_header(headers: Optional[List[Dict[str, str]]], name: str) -> str:
    for header in headers or []:
        if header.get("name", "").lower() == name.lower():
            return header.get("value") or ""
    return ""


def find_part_by_mime_type(part: Optional[Dict[str, Any]], mime_type: str) -> Optional[Dict[str, Any]]:
    """Depth-first search of a message payload for the first part of a MIME type."""
    if not part:
        return None
    if part.get("mimeType") == mime_type:
        return part
    for child in part.get("parts") or []:
        found = find_part_by_mime_type(child, mime_type)
        if found:
            return found
    return None


def extract_html(message: Dict[str, Any]) -> str:
    """Decoded ``text/html`` body of a message, else its ``text/plain`` body, else ""."""
    payload = message.get("payload")
    for mime_type in ("text/html", "text/plain"):
        part = find_part_by_mime_type(payload, mime_type)
        data = ((part or {}).get("body") or {}).get("data")
        if data:
            return decode_base64url(data)
    return ""


def find_archive_link(html: str, keywords: Iterable[str]) -> str:
    """Find the "view in browser" link of a newsletter, unwrapped from click tracking."""
    lowered = [keyword.lower() for keyword in keywords]
    soup = BeautifulSoup(html, "html.parser")
    for anchor in soup.find_all("a", href=True):
        text = normalize_text(anchor.get_text()).lower()
        if text and any(keyword in text for keyword in lowered):
            raw_href = anchor["href"].strip()
            if not raw_href:
                return ""
            href, _ = unwrap_tracking_url(raw_href)
            return href
    return ""


def clean_newsletter_html(html: str) -> str:
    """
    Reduce newsletter HTML to plain text with markdown links.

    Anchors keep their href as ``[text](href)`` so the link extractor sees
    each link next to its context, and block elements start on a new line.
    """
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup.find_all(REMOVED_TAGS):
        tag.decompose()

    for anchor in soup.find_all("a", href=True):
        href = anchor["href"]
        text = anchor.get_text().strip()
        if href.startswith("http") and text:
            anchor.replace_with(f"[{text}]({href})")

    for element in soup.find_all(BLOCK_TAGS):
        element.insert(0, "\n")

    root = soup.body or soup
    text = root.get_text()
    text = re.sub(r"[ \t]+", " ", text)
    text = re.sub(r"\n\s*\n", "\n", text)
    return text.strip()


def build_gmail_query(label: str, start: datetime, end: datetime) -> str:
    # after:/before: are imprecise, widen by a day each side and filter afterwards
    padded_start = int((start - timedelta(days=1)).timestamp())
    padded_end = int((end + timedelta(days=1)).timestamp())
    return f'label:"{label}" after:{padded_start} before:{padded_end}'


def _received_at(message: Dict[str, Any]) -> Optional[datetime]:
    internal_date = message.get("internalDate")
    if not internal_date:
        return None
    return datetime.fromtimestamp(int(internal_date) / 1000, tz=timezone.utc)


class GmailClient:
    """Minimal Gmail REST client authenticated with an OAuth refresh token."""

    def __init__(
        self,
        client_id: Optional[str],
        client_secret: Optional[str],
        refresh_token: Optional[str],
        user_email: Optional[str] = None,
    ):
        self.client_id = client_id
        self.client_secret = client_secret
        self.refresh_token = refresh_token
        self.user_id = user_email or "me"
        self._access_token: Optional[str] = None

    def get_access_token(self) -> str:
        if self._access_token:
            return self._access_token
        if not (self.client_id and self.client_secret and self.refresh_token):
            raise ConfigurationError("Gmail env vars are not configured")

        response = requests.post(
            GMAIL_TOKEN_URL,
            data={
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "refresh_token": self.refresh_token,
                "grant_type": "refresh_token",
            },
            timeout=GMAIL_TIMEOUT_SECONDS,
        )
        response.raise_for_status()
        self._access_token = response.json()["access_token"]
        return self._access_token

    def _get(self, path: str, params: Dict[str, Any]) -> Dict[str, Any]:
        response = requests.get(
            f"{GMAIL_API_URL}/{self.user_id}/{path}",
            headers={"Authorization": f"Bearer {self.get_access_token()}"},
            params=params,
            timeout=GMAIL_TIMEOUT_SECONDS,
        )
        response.raise_for_status()
        return response.json()

    def list_message_ids(self, query: str, max_results: int) -> List[str]:
        result = self._get("messages", {"q": query, "maxResults": max_results})
        return [message["id"] for message in result.get("messages") or []]

    def get_message(self, message_id: str, fmt: str = "full") -> Dict[str, Any]:
        params: Dict[str, Any] = {"format": fmt}
        if fmt == "metadata":
            params["metadataHeaders"] = "Subject"
        return self._get(f"messages/{message_id}", params)


@log_function(logger_name="sources", log_execution_time=True)
def list_gmail_message_refs(
    client: GmailClient,
    source: SourceConfig,
    window: TimeWindow,
    is_production: bool = True,
) -> List[GmailMessageRef]:
    """
    List message references under a label within the window.

    Args:
        client: Authenticated Gmail client
        source: Gmail source configuration, must carry a label
        window: Inclusive collection window
        is_production: Outside production at most 3 messages are listed

    Returns:
        References (id, subject, receivedAt) of in-window messages
    """
    if not source.label:
        logger.warning(f"gmail source missing label: {source.id}")
        return []

    max_messages = source.max_messages or DEFAULT_MAX_MESSAGES
    if not is_production:
        max_messages = min(max_messages, NON_PRODUCTION_MAX_MESSAGES)

    query = build_gmail_query(source.label, window.start, window.end)
    logger.info(
        f"gmail list messages (label={source.label}, window_start={to_iso(window.start)}, "
        f"window_end={to_iso(window.end)}, max_messages={max_messages})"
    )

    refs = []
    for message_id in client.list_message_ids(query, max_messages):
        meta = client.get_message(message_id, fmt="metadata")
        subject = get_header((meta.get("payload") or {}).get("headers"), "Subject")
        received_at = _received_at(meta)
        if received_at is None:
            continue
        if not window.contains(received_at):
            logger.info(
                f"gmail message filtered out by time window (id={message_id}, subject={subject}, "
                f"received_at={to_iso(received_at)})"
            )
            continue
        refs.append(
            GmailMessageRef(
                id=message_id,
                subject=subject,
                source_name=source.name,
                source_url=source.url,
                received_at=to_iso(received_at),
                link_rules=source.link_rules.to_dict(),
            )
        )
    return refs


@log_function(logger_name="sources", log_execution_time=True)
def process_gmail_message(
    client: GmailClient,
    ref: GmailMessageRef,
    window: TimeWindow,
    generator: TextGenerator,
    newsletter_prompt: str,
    archive_link_keywords: Iterable[str],
    jina_key: Optional[str] = None,
    now: Optional[datetime] = None,
    is_production: bool = True,
) -> List[Story]:
    """
    Expand one newsletter message into candidate stories.

    The message's archive ("view in browser") page is preferred; without one
    the raw HTML body is cleaned instead. Failures of the link extraction
    model skip the message.

    Returns:
        One story per extracted link, [] when the message yields nothing
    """
    message = client.get_message(ref.id, fmt="full")
    html = extract_html(message)
    if not html:
        logger.warning(f"gmail message missing html body: {ref.id}")
        return []

    subject = get_header((message.get("payload") or {}).get("headers"), "Subject")
    received_at = _received_at(message) or now or datetime.now(timezone.utc)
    received_iso = to_iso(received_at)
    logger.info(f"gmail message loaded (id={ref.id}, subject={subject}, html_length={len(html)})")
    if not window.contains(received_at):
        return []

    archive_link = find_archive_link(html, archive_link_keywords)
    if archive_link:
        logger.info(f"newsletter archive link found (id={ref.id}, archive_link={archive_link})")
        content = ""
        try:
            content = get_content_from_jina_with_retry(archive_link, "markdown", jina_key)
        except Exception as e:
            if is_subrequest_limit_error(e):
                raise
            logger.warning(f"newsletter archive jina failed (id={ref.id}, archive_link={archive_link}): {e}")
        if not content:
            logger.warning(f"newsletter archive content is empty, skip message (id={ref.id})")
            return []
    else:
        content = clean_newsletter_html(html)
        reduction = round((1 - len(content) / len(html)) * 100)
        logger.info(f"newsletter html cleaned (id={ref.id}, cleaned_length={len(content)}, reduction={reduction}%)")
        if not is_production:
            logger.debug(f"newsletter cleaned content preview (id={ref.id}): {content[:2000]}")

    if not content:
        logger.warning(f"newsletter content is empty, skip message (id={ref.id}, subject={subject})")
        return []

    try:
        links = extract_newsletter_links(
            generator,
            newsletter_prompt,
            subject=subject,
            content=content,
            message_id=ref.id,
            rules=parse_link_rules(ref.link_rules),
        )
    except Exception as e:
        if is_subrequest_limit_error(e):
            raise
        logger.warning(f"newsletter ai extraction failed, skip message (id={ref.id}, subject={subject}): {e}")
        return []

    if not links:
        logger.warning(f"newsletter has no matching links (id={ref.id}, subject={subject})")
        return []

    logger.info(f"newsletter links extracted (id={ref.id}, subject={subject}, count={len(links)})")
    return [
        Story(
            id=f"{ref.id}:{index}",
            title=link.title or subject,
            url=link.link,
            source_name=ref.source_name,
            source_url=ref.source_url,
            published_at=received_iso,
            source_item_id=ref.id,
            source_item_title=subject,
        )
        for index, link in enumerate(links)
    ]
