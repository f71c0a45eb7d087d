"""
Job-keyed intermediate artifacts kept in the blob store.

Snapshots hold what is too large for the state record: candidate lists,
kept summaries and the composed episode text with its render parameters.
Writes overwrite by key, so a retried save never duplicates data.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Type, TypeVar

from newscast.sources import GmailMessageRef, Story
from newscast.storage import BlobStore
from newscast.tts import TtsSettings

from .text import ConversationLine


logger = logging.getLogger("pipeline")

S = TypeVar("S")


@dataclass
class CandidateSnapshot:
    stories: List[Story] = field(default_factory=list)
    gmail_messages: List[GmailMessageRef] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "stories": [story.to_dict() for story in self.stories],
            "gmailMessages": [ref.to_dict() for ref in self.gmail_messages],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CandidateSnapshot":
        return cls(
            stories=[Story.from_dict(item) for item in data.get("stories") or []],
            gmail_messages=[GmailMessageRef.from_dict(item) for item in data.get("gmailMessages") or []],
        )


@dataclass
class SummarySnapshot:
    """Kept stories and their wrapped summaries, index aligned."""

    kept_stories: List[Story] = field(default_factory=list)
    all_stories: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "keptStories": [story.to_dict() for story in self.kept_stories],
            "allStories": list(self.all_stories),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SummarySnapshot":
        return cls(
            kept_stories=[Story.from_dict(item) for item in data.get("keptStories") or []],
            all_stories=[str(item) for item in data.get("allStories") or []],
        )


@dataclass
class ComposeSnapshot:
    """Composed episode text plus everything the render stage needs.

    Written once when composition completes and read-only afterwards.
    """

    stories: List[Story]
    podcast_content: str
    blog_content: str
    intro_content: str
    episode_title: str
    parsed_conversations: List[ConversationLine]
    content_key: str
    podcast_key: str
    tts_settings: TtsSettings
    audio_quality: int = 5
    intro_theme_url: Optional[str] = None
    intro_music: Dict[str, float] = field(default_factory=dict)
    is_dev: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "stories": [story.to_dict() for story in self.stories],
            "podcastContent": self.podcast_content,
            "blogContent": self.blog_content,
            "introContent": self.intro_content,
            "episodeTitle": self.episode_title,
            "parsedConversations": [line.to_dict() for line in self.parsed_conversations],
            "contentKey": self.content_key,
            "podcastKey": self.podcast_key,
            "ttsSettings": self.tts_settings.to_dict(),
            "audioQuality": self.audio_quality,
            "introThemeUrl": self.intro_theme_url,
            "introMusicConfig": dict(self.intro_music),
            "isDev": self.is_dev,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ComposeSnapshot":
        return cls(
            stories=[Story.from_dict(item) for item in data.get("stories") or []],
            podcast_content=data.get("podcastContent") or "",
            blog_content=data.get("blogContent") or "",
            intro_content=data.get("introContent") or "",
            episode_title=data.get("episodeTitle") or "",
            parsed_conversations=[
                ConversationLine.from_dict(item) for item in data.get("parsedConversations") or []
            ],
            content_key=data.get("contentKey") or "",
            podcast_key=data.get("podcastKey") or "",
            tts_settings=TtsSettings.from_dict(data.get("ttsSettings") or {}),
            audio_quality=int(data.get("audioQuality") or 5),
            intro_theme_url=data.get("introThemeUrl") or None,
            intro_music=dict(data.get("introMusicConfig") or {}),
            is_dev=bool(data.get("isDev")),
        )


class SnapshotStore:
    """JSON snapshots in a blob store."""

    def __init__(self, blob_store: BlobStore):
        self.blob_store = blob_store

    def load(self, key: str, snapshot_type: Type[S]) -> Optional[S]:
        """
        Read a snapshot.

        Args:
            key: Snapshot blob key
            snapshot_type: Snapshot class to decode into

        Returns:
            The decoded snapshot, or None when the blob is missing or blank.
        """
        raw = self.blob_store.get(key)
        if raw is None:
            return None
        text = raw.decode("utf-8")
        if not text.strip():
            return None
        return snapshot_type.from_dict(json.loads(text))

    def save(self, key: str, snapshot: Any) -> str:
        payload = json.dumps(snapshot.to_dict(), ensure_ascii=False)
        self.blob_store.put(key, payload, content_type="application/json")
        logger.debug(f"Saved snapshot {key} ({len(payload)} chars)")
        return key
