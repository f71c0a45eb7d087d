"""
Newsletter article link extraction.

An AI model reads the newsletter text and proposes article links; the links
are then normalized, unwrapped from click-tracking redirects, deduplicated
and capped.
"""

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import parse_qs, unquote, urljoin, urlsplit, urlunsplit

import requests

from newscast.config import LinkRules
from newscast.errors import is_subrequest_limit_error
from newscast.llm import TextGenerator


logger = logging.getLogger("sources")

MAX_NEWSLETTER_LINKS = 10
TRACKING_HOSTNAMES = ("list-manage.com", "campaign-archive.com", "mailchi.mp", "clicks", "links")
TRACKING_QUERY_KEYS = ("url", "u", "redirect", "link", "r", "destination")
TRACKING_RESOLVE_TIMEOUT_SECONDS = 8
JSON_ARRAY_REPAIR_SUFFIX = "\n\n【重要】上一次输出不是有效 JSON，请仅输出完整 JSON 数组，不要代码块或多余文字。"

NEWSLETTER_LINK_SCHEMA = {
    "type": "ARRAY",
    "items": {
        "type": "OBJECT",
        "properties": {
            "link": {"type": "STRING"},
            "title": {"type": "STRING", "nullable": True},
        },
        "required": ["link"],
    },
}


@dataclass(frozen=True)
class NewsletterLink:
    link: str
    title: Optional[str] = None


def normalize_text(text: str) -> str:
    return re.sub(r"\s+", " ", text).strip()


def _hostname(url: str) -> str:
    try:
        return (urlsplit(url).hostname or "").lower()
    except ValueError:
        return ""


def is_tracking_host(url: str) -> bool:
    hostname = _hostname(url)
    return any(keyword in hostname for keyword in TRACKING_HOSTNAMES)


def unwrap_tracking_url(href: str) -> Tuple[str, bool]:
    """
    Pull the destination out of a click-tracking URL's query string.

    Returns:
        Tuple[str, bool]: (destination or original href, whether it was unwrapped)
    """
    try:
        parts = urlsplit(href)
    except ValueError:
        return href, False

    tracking_path = "/track/" in parts.path.lower()
    if not is_tracking_host(href) and not tracking_path:
        return href, False

    query = parse_qs(parts.query)
    for key in TRACKING_QUERY_KEYS:
        values = query.get(key)
        if not values or not values[0]:
            continue
        decoded = unquote(values[0])
        if decoded.startswith("http://") or decoded.startswith("https://"):
            return decoded, True
    return href, False


def resolve_tracking_redirect(href: str, cache: Dict[str, str]) -> str:
    """Follow a single redirect hop to find a tracking link's destination."""
    if href in cache:
        return cache[href]

    try:
        parts = urlsplit(href)
        response = requests.get(href, allow_redirects=False, timeout=TRACKING_RESOLVE_TIMEOUT_SECONDS)
        location = response.headers.get("location")
        if location:
            origin = f"{parts.scheme}://{parts.netloc}"
            resolved = location if location.startswith("http") else urljoin(origin, location)
            cache[href] = resolved
            return resolved
    except (requests.RequestException, ValueError) as e:
        if is_subrequest_limit_error(e):
            raise
        logger.debug(f"Tracking redirect not resolved for {href}: {e}")

    cache[href] = href
    return href


def normalize_url(value: str) -> str:
    """Trim trailing punctuation and keep only absolute http(s) URLs, else return ""."""
    trimmed = re.sub(r"[),.\]]+$", "", value.strip())
    if not re.match(r"^https?://", trimmed, re.IGNORECASE):
        return ""
    try:
        parts = urlsplit(trimmed)
    except ValueError:
        return ""
    if not parts.netloc:
        return ""
    return urlunsplit((parts.scheme.lower(), parts.netloc, parts.path or "/", parts.query, parts.fragment))


def get_url_key(value: str) -> str:
    """URL without its fragment, used for deduplication."""
    try:
        parts = urlsplit(value)
    except ValueError:
        return value
    return urlunsplit((parts.scheme, parts.netloc, parts.path, parts.query, ""))


def _strip_code_fences(text: str) -> str:
    return re.sub(r"```(?:json)?", "", text, flags=re.IGNORECASE).strip()


def _extract_json_array(text: str) -> str:
    trimmed = text.strip()
    if trimmed.startswith("[") and trimmed.endswith("]"):
        return trimmed
    match = re.search(r"\[[\s\S]*\]", trimmed)
    return match.group(0) if match else ""


def parse_newsletter_links(text: str) -> List[NewsletterLink]:
    """
    Parse the model's JSON array of ``{link|url, title}`` objects.

    Returns:
        List[NewsletterLink]: Candidates in model order, [] when the text is not a JSON array.
    """
    payload = _extract_json_array(_strip_code_fences(text))
    if not payload:
        return []
    try:
        parsed = json.loads(payload)
    except json.JSONDecodeError:
        return []
    if not isinstance(parsed, list):
        return []

    results = []
    for item in parsed:
        if not isinstance(item, dict):
            continue
        link = item.get("link") if isinstance(item.get("link"), str) else item.get("url")
        if not isinstance(link, str) or not link:
            continue
        title = item.get("title") if isinstance(item.get("title"), str) else None
        results.append(NewsletterLink(link=link.strip(), title=title.strip() if title else None))
    return results


def build_newsletter_input(subject: str, content: str, rules: Optional[LinkRules] = None) -> str:
    lines = [f"【邮件主题】{subject or '（无主题）'}"]
    if rules is not None:
        if rules.include_domains:
            lines.append(f"【仅允许域名】{', '.join(rules.include_domains)}")
        if rules.exclude_domains:
            lines.append(f"【排除域名】{', '.join(rules.exclude_domains)}")
        if rules.exclude_path_keywords:
            lines.append(f"【排除路径关键词】{', '.join(rules.exclude_path_keywords)}")
        if rules.exclude_text:
            lines.append(f"【额外排除文本】{', '.join(rules.exclude_text)}")
    lines.append("【内容】")
    lines.append(content)
    return "\n".join(lines)


def _log_debug_response(label: str, subject: str, message_id: str, text: str, finish_reason: Any) -> None:
    logger.info(
        f"{label} | subject={subject} message_id={message_id} "
        f"output_length={len(text)} finish_reason={finish_reason} output={text}"
    )


def extract_newsletter_links(
    generator: TextGenerator,
    instructions: str,
    subject: str,
    content: str,
    message_id: str,
    rules: Optional[LinkRules] = None,
) -> List[NewsletterLink]:
    """
    Ask the model for article links in a newsletter and clean them up.

    Args:
        generator: Configured text generator, primary model is used
        instructions: Rendered link extraction prompt
        subject: Newsletter subject, passed as context
        content: Newsletter body (markdown or cleaned text)
        message_id: Identifier used in debug logs
        rules: Source link rules, ``debug`` logs raw model output

    Returns:
        At most 10 unique links in model order
    """
    rules = rules or LinkRules()
    newsletter_input = build_newsletter_input(subject, content, rules)

    response = generator.generate(instructions, newsletter_input, response_schema=NEWSLETTER_LINK_SCHEMA)
    if rules.debug:
        _log_debug_response("newsletter ai raw response", subject, message_id, response.text, response.finish_reason)

    candidates = parse_newsletter_links(response.text)
    if not candidates and response.text.strip():
        retry = generator.generate(
            instructions + JSON_ARRAY_REPAIR_SUFFIX,
            newsletter_input,
            response_schema=NEWSLETTER_LINK_SCHEMA,
        )
        if rules.debug:
            _log_debug_response("newsletter ai retry response", subject, message_id, retry.text, retry.finish_reason)
        candidates = parse_newsletter_links(retry.text)

    tracking_cache: Dict[str, str] = {}
    resolved_count = 0
    failed_resolve_count = 0
    cleaned: List[NewsletterLink] = []
    for candidate in candidates:
        link = normalize_url(candidate.link)
        if not link:
            continue
        href, unwrapped = unwrap_tracking_url(link)
        if rules.resolve_tracking_links and not unwrapped and is_tracking_host(href):
            resolved = resolve_tracking_redirect(href, tracking_cache)
            if resolved != href:
                resolved_count += 1
            else:
                failed_resolve_count += 1
            href = resolved
        if not urlsplit(href).netloc:
            continue
        title = normalize_text(candidate.title) if candidate.title else None
        cleaned.append(NewsletterLink(link=href, title=title))

    deduped: Dict[str, NewsletterLink] = {}
    for candidate in cleaned:
        deduped.setdefault(get_url_key(candidate.link), candidate)
    results = list(deduped.values())[:MAX_NEWSLETTER_LINKS]

    if rules.debug:
        logger.info(
            f"newsletter ai link debug | subject={subject} message_id={message_id} "
            f"input_length={len(content)} raw_count={len(candidates)} "
            f"tracking_resolved={resolved_count} tracking_resolve_failed={failed_resolve_count} "
            f"after_filter={len(cleaned)} after_dedup={len(deduped)} final_count={len(results)}"
        )
    return results
