"""Candidate story and mailbox reference records.

Both serialize to camelCase dictionaries so snapshots stay readable by any
consumer of the published JSON.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class Story:
    id: str
    title: str
    url: str
    source_name: str
    source_url: str
    published_at: Optional[str] = None
    source_item_id: Optional[str] = None
    source_item_title: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "id": self.id,
            "title": self.title,
            "url": self.url,
            "sourceName": self.source_name,
            "sourceUrl": self.source_url,
        }
        if self.published_at:
            data["publishedAt"] = self.published_at
        if self.source_item_id:
            data["sourceItemId"] = self.source_item_id
        if self.source_item_title:
            data["sourceItemTitle"] = self.source_item_title
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Story":
        return cls(
            id=str(data.get("id") or ""),
            title=str(data.get("title") or ""),
            url=str(data.get("url") or ""),
            source_name=str(data.get("sourceName") or ""),
            source_url=str(data.get("sourceUrl") or ""),
            published_at=data.get("publishedAt") or None,
            source_item_id=data.get("sourceItemId") or None,
            source_item_title=data.get("sourceItemTitle") or None,
        )


@dataclass(frozen=True)
class GmailMessageRef:
    """A mailbox message found by the listing call, expanded later."""

    id: str
    subject: str
    source_name: str
    source_url: str
    received_at: Optional[str] = None
    link_rules: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "id": self.id,
            "subject": self.subject,
            "sourceName": self.source_name,
            "sourceUrl": self.source_url,
        }
        if self.received_at:
            data["receivedAt"] = self.received_at
        if self.link_rules:
            data["linkRules"] = self.link_rules
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GmailMessageRef":
        return cls(
            id=str(data.get("id") or ""),
            subject=str(data.get("subject") or ""),
            source_name=str(data.get("sourceName") or ""),
            source_url=str(data.get("sourceUrl") or ""),
            received_at=data.get("receivedAt") or None,
            link_rules=data.get("linkRules") or None,
        )
