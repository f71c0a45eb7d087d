import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from newscast.config import RunConfig, Settings, SourceConfig
from newscast.llm import TextGenerator

from .content import get_story_content
from .gmail import GmailClient, list_gmail_message_refs, process_gmail_message
from .models import GmailMessageRef, Story
from .rss import fetch_rss_items
from .window import TimeWindow


logger = logging.getLogger("sources")


@dataclass
class SourceResult:
    stories: List[Story] = field(default_factory=list)
    gmail_messages: List[GmailMessageRef] = field(default_factory=list)


class SourceCollector:
    """Single entry point the workflow uses for every source-side network call.

    Args:
        settings: Environment settings (Jina/Firecrawl/Gmail credentials, run env)
        config: Run configuration with rendered prompts
        generator: Text generator used for newsletter link extraction
        gmail_client: Optional pre-built Gmail client
    """

    def __init__(
        self,
        settings: Settings,
        config: RunConfig,
        generator: Optional[TextGenerator],
        gmail_client: Optional[GmailClient] = None,
    ):
        self.settings = settings
        self.config = config
        self.generator = generator
        self._gmail_client = gmail_client

    @property
    def gmail_client(self) -> GmailClient:
        if self._gmail_client is None:
            self._gmail_client = GmailClient(
                self.settings.gmail_client_id,
                self.settings.gmail_client_secret,
                self.settings.gmail_refresh_token,
                self.settings.gmail_user_email,
            )
        return self._gmail_client

    def fetch_source(self, source: SourceConfig, window: TimeWindow) -> SourceResult:
        """Collect one source: feed stories, mailbox references or the static URL story."""
        if source.type == "rss":
            return SourceResult(
                stories=fetch_rss_items(
                    source,
                    window,
                    self.config.sources.newsletter_hosts,
                    generator=self.generator,
                    newsletter_prompt=self.config.prompts.extract_newsletter_links,
                    jina_key=self.settings.jina_key,
                )
            )
        if source.type == "gmail":
            return SourceResult(
                gmail_messages=list_gmail_message_refs(
                    self.gmail_client,
                    source,
                    window,
                    is_production=self.settings.is_production,
                )
            )
        if source.type == "url":
            return SourceResult(
                stories=[
                    Story(
                        id=source.id,
                        title=source.name,
                        url=source.url,
                        source_name=source.name,
                        source_url=source.url,
                    )
                ]
            )
        logger.warning(f"unknown source type {source.type} for {source.id}")
        return SourceResult()

    def expand_gmail_message(
        self,
        ref: GmailMessageRef,
        window: TimeWindow,
        now: Optional[datetime] = None,
    ) -> List[Story]:
        if self.generator is None:
            raise ValueError("A text generator is required to expand newsletters")
        return process_gmail_message(
            self.gmail_client,
            ref,
            window,
            self.generator,
            self.config.prompts.extract_newsletter_links,
            self.config.sources.archive_link_keywords,
            jina_key=self.settings.jina_key,
            now=now,
            is_production=self.settings.is_production,
        )

    def fetch_story_content(self, story: Story, max_tokens: int) -> str:
        return get_story_content(
            story,
            max_tokens,
            jina_key=self.settings.jina_key,
            firecrawl_key=self.settings.firecrawl_key,
        )
