"""
Readable content extraction for story and archive URLs.

Jina's reader is the primary extractor; Firecrawl is the fallback when a key
is configured. Call-quota errors always propagate untouched.
"""

import logging
from typing import Dict, Optional

import requests
from tenacity import (
    Retrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from newscast.errors import is_subrequest_limit_error

from .models import Story


logger = logging.getLogger("sources")

JINA_READER_URL = "https://r.jina.ai/"
FIRECRAWL_SCRAPE_URL = "https://api.firecrawl.dev/v2/scrape"
FETCH_TIMEOUT_SECONDS = 30
JINA_RETRY_LIMIT = 3
JINA_RETRY_DELAY_SECONDS = 3.0
CHARS_PER_TOKEN = 5
CONTENT_SEPARATOR = "\n\n---\n\n"


def _is_retryable_jina_error(error: BaseException) -> bool:
    if is_subrequest_limit_error(error):
        return False
    if isinstance(error, requests.Timeout):
        return True
    if isinstance(error, requests.HTTPError) and error.response is not None:
        return error.response.status_code == 429
    return False


def get_content_from_jina(url: str, fmt: str = "markdown", jina_key: Optional[str] = None) -> str:
    """
    Fetch a page through the Jina reader.

    Args:
        url: Page to read
        fmt: "markdown" or "html"
        jina_key: Optional API key, raises the rate limit when present

    Returns:
        Page content as text

    Raises:
        requests.RequestException: On HTTP or network failure
    """
    headers: Dict[str, str] = {
        "X-Retain-Images": "none",
        "X-Return-Format": fmt,
    }
    if jina_key:
        headers["Authorization"] = f"Bearer {jina_key}"

    logger.info(f"Get content from jina: {url}")
    response = requests.get(f"{JINA_READER_URL}{url}", headers=headers, timeout=FETCH_TIMEOUT_SECONDS)
    response.raise_for_status()
    return response.text


def get_content_from_jina_with_retry(
    url: str,
    fmt: str = "markdown",
    jina_key: Optional[str] = None,
    retry_limit: int = JINA_RETRY_LIMIT,
    retry_delay: float = JINA_RETRY_DELAY_SECONDS,
) -> str:
    """Jina fetch retried on HTTP 429 or timeout with a doubling delay."""

    def _log_retry(retry_state) -> None:
        error = retry_state.outcome.exception()
        reason = "timeout" if isinstance(error, requests.Timeout) else "rate limited (429)"
        logger.warning(f"Jina {reason}, retrying (url={url}, attempt={retry_state.attempt_number})")

    retrying = Retrying(
        stop=stop_after_attempt(retry_limit + 1),
        wait=wait_exponential(multiplier=retry_delay, min=0, max=retry_delay * 2 ** retry_limit),
        retry=retry_if_exception(_is_retryable_jina_error),
        before_sleep=_log_retry,
        reraise=True,
    )
    return retrying(get_content_from_jina, url, fmt, jina_key)


def get_content_from_firecrawl(url: str, fmt: str = "markdown", firecrawl_key: Optional[str] = None) -> str:
    """
    Fetch main page content through Firecrawl.

    Returns:
        Content in the requested format, or "" when unavailable or on failure
    """
    if not firecrawl_key:
        logger.warning(f"FIRECRAWL_KEY is not configured, skip firecrawl: {url}")
        return ""

    try:
        logger.info(f"Get content from firecrawl: {url}")
        response = requests.post(
            FIRECRAWL_SCRAPE_URL,
            headers={"Authorization": f"Bearer {firecrawl_key}"},
            json={"url": url, "formats": [fmt], "onlyMainContent": True},
            timeout=FETCH_TIMEOUT_SECONDS,
        )
        response.raise_for_status()
        result = response.json()
    except (requests.RequestException, ValueError) as e:
        if is_subrequest_limit_error(e):
            raise
        logger.error(f"Get content from firecrawl failed: {url} {e}")
        return ""

    if result.get("success"):
        return (result.get("data") or {}).get(fmt) or ""
    logger.error(f"Get content from firecrawl failed: {url} {result}")
    return ""


def get_story_content(
    story: Story,
    max_tokens: int,
    jina_key: Optional[str] = None,
    firecrawl_key: Optional[str] = None,
) -> str:
    """
    Fetch a story's article and wrap it for the summarization prompt.

    Args:
        story: Candidate story, must carry a URL
        max_tokens: Article is cut to ``max_tokens * 5`` characters
        jina_key: Jina reader key
        firecrawl_key: Firecrawl key, enables the fallback extractor

    Returns:
        ``<title>`` and ``<article>`` blocks joined by a ``---`` separator,
        "" when neither is available

    Raises:
        ValueError: If the story has no URL
    """
    if not story.url:
        raise ValueError("story url is empty")

    try:
        article = get_content_from_jina_with_retry(story.url, "markdown", jina_key)
    except Exception as e:
        if is_subrequest_limit_error(e):
            raise
        logger.error(f"getStoryContent from Jina failed for {story.id}: {e}")
        article = get_content_from_firecrawl(story.url, "markdown", firecrawl_key) if firecrawl_key else ""

    parts = []
    if story.title:
        parts.append(f"\n<title>\n{story.title}\n</title>\n")
    if article:
        parts.append(f"\n<article>\n{article[: max_tokens * CHARS_PER_TOKEN]}\n</article>\n")
    return CONTENT_SEPARATOR.join(parts)
