"""
Data Models (DTOs - Data Transfer Objects)

This module contains all dataclass definitions used throughout the application.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from guildsite.utils.helpers import iso_from_ms


class StatusLevel(str, Enum):
    OK = "OK"
    WARNING = "WARNING"
    CRITICAL = "CRITICAL"


class BackupState(str, Enum):
    IDLE = "IDLE"
    COOLING_DOWN = "COOLING_DOWN"
    TRIGGERING = "TRIGGERING"


class MessageType(str, Enum):
    TEXT = "text"
    IMAGE = "image"
    VIDEO = "video"
    STICKER = "sticker"


@dataclass(frozen=True)
class RequestEvent:
    """One inbound request inside the metrics window"""
    timestamp: int
    source: str


@dataclass(frozen=True)
class ResponseEvent:
    """One completed response inside the metrics window"""
    timestamp: int
    status_code: int


@dataclass(frozen=True)
class SourceCount:
    source: str
    count: int


@dataclass(frozen=True)
class SecuritySnapshot:
    """Point-in-time assessment of the metrics window"""
    since: int
    rpm: int
    requests_in_window: int
    unique_sources: int
    total_responses: int
    error_ratio: float
    status_level: StatusLevel
    top_sources: List[SourceCount]
    disaster_mode: bool
    notes: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "since": iso_from_ms(self.since),
            "rpm": self.rpm,
            "totalInWindow": self.requests_in_window,
            "uniqueSources": self.unique_sources,
            "totalResponses": self.total_responses,
            "errorRate": self.error_ratio,
            "statusLevel": self.status_level.value,
            "topSources": [{"source": s.source, "count": s.count} for s in self.top_sources],
            "disasterMode": self.disaster_mode,
            "notes": list(self.notes),
        }


@dataclass
class TriggerResult:
    """Outcome of a backup trigger attempt, shaped for the HTTP response"""
    triggered: bool
    status: Optional[int] = None
    reason: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v is not None}


@dataclass(frozen=True)
class ChatMessage:
    id: str
    ts: int
    author: str
    type: MessageType
    content: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "ts": self.ts,
            "author": self.author,
            "type": self.type.value,
            "content": self.content,
        }

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "ChatMessage":
        return cls(
            id=str(raw["id"]),
            ts=int(raw["ts"]),
            author=str(raw["author"]),
            type=MessageType(raw["type"]),
            content=str(raw["content"]),
        )


@dataclass
class Report:
    id: str
    reporter: Optional[str]
    reported: Optional[str]
    reason: Optional[str]
    evidence_file: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "reporter": self.reporter,
            "reported": self.reported,
            "reason": self.reason,
            "evidenceFile": self.evidence_file,
        }


@dataclass
class MetaItem:
    """Entry in one of the updates/events/items lists"""
    id: int
    title: str
    description: str
    date: str


@dataclass
class UploadResult:
    url: str
    type: str
