"""Data models for the offline sync engine."""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


class ConnectionKind(str, Enum):
    """Kind of link reported by the platform."""
    WIFI = 'wifi'
    CELLULAR = 'cellular'
    OTHER = 'other'
    UNKNOWN = 'unknown'

    @classmethod
    def parse(cls, value: Optional[str]) -> 'ConnectionKind':
        value = (value or '').lower()
        if value in ('', 'none'):
            return cls.UNKNOWN
        try:
            return cls(value)
        except ValueError:
            return cls.OTHER


@dataclass(frozen=True)
class ConnectivityState:
    """Snapshot of device connectivity."""
    is_connected: bool
    connection_kind: ConnectionKind
    observed_at: datetime
    error: Optional[str] = None
    detail: Optional[Dict[str, Any]] = field(default=None, compare=False, hash=False)

    def same_link(self, other: Optional['ConnectivityState']) -> bool:
        """True if connectedness and link kind match."""
        return (
            other is not None and
            self.is_connected == other.is_connected and
            self.connection_kind == other.connection_kind
        )

    def to_dict(self) -> Dict[str, Any]:
        data = {
            'is_connected': self.is_connected,
            'connection_kind': self.connection_kind.value,
            'observed_at': self.observed_at.isoformat()
        }
        if self.error:
            data['error'] = self.error
        if self.detail:
            data['detail'] = self.detail
        return data


class SyncState(str, Enum):
    """Orchestrator state."""
    IDLE = 'idle'
    SYNCING = 'syncing'
    ERROR = 'error'


class SyncStatus(str, Enum):
    """Outcome of a single sync cycle."""
    SUCCESS = 'success'
    NO_CONNECTION = 'no_connection'
    ALREADY_RUNNING = 'already_running'
    FAILED = 'failed'


@dataclass
class Event:
    """Simplified event as stored on the device."""
    id: Any
    title: str
    start: Optional[str]
    end: Optional[str] = None
    description: Optional[str] = None
    location: Optional[str] = None
    category: Optional[str] = None
    image_url: Optional[str] = None
    image_data: Optional[str] = None

    def to_record(self) -> Dict[str, Any]:
        """Convert to the JSON record persisted in storage."""
        return {
            'id': self.id,
            'title': self.title,
            'description': self.description,
            'start': self.start,
            'end': self.end,
            'loc': self.location,
            'category': self.category,
            'img': self.image_url,
            'img_base64': self.image_data
        }


@dataclass
class WishlistItem:
    """Wishlist entry wrapping an event."""
    wishlist_id: Any
    event: Event

    def to_record(self) -> Dict[str, Any]:
        return {
            'wishlist_id': self.wishlist_id,
            'event': self.event.to_record()
        }


@dataclass
class CacheEntry:
    """Cached payload of an idempotent read."""
    endpoint_key: str
    payload: Any
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return now > self.expires_at


@dataclass
class SyncResult:
    """Result of a sync cycle."""
    status: SyncStatus
    timestamp: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )
    events_count: int = 0
    wishlist_count: int = 0
    images_downloaded: int = 0
    duration_seconds: float = 0.0
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == SyncStatus.SUCCESS

    def to_dict(self) -> Dict[str, Any]:
        data = {
            'status': self.status.value,
            'timestamp': self.timestamp,
            'events_count': self.events_count,
            'wishlist_count': self.wishlist_count,
            'images_downloaded': self.images_downloaded,
            'duration_seconds': round(self.duration_seconds, 2)
        }
        if self.error:
            data['error'] = self.error
        return data


@dataclass
class LocalData:
    """Collections read back from storage while offline."""
    events: List[Dict[str, Any]]
    wishlist: List[Dict[str, Any]]
    last_sync: Optional[str] = None

    @property
    def has_data(self) -> bool:
        return bool(self.events or self.wishlist)
