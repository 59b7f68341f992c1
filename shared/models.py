"""
Data models for users, profiles, tracks and download history.

This module defines the flat records stored by the hub and the shapes
returned to clients.
"""

from dataclasses import dataclass, asdict, field, fields
from typing import Dict, Optional, Any
from enum import Enum
from pathlib import PurePosixPath
from datetime import datetime, timezone
import uuid


def utc_now_iso() -> str:
    """Current UTC time as an ISO-8601 string."""
    return datetime.now(timezone.utc).isoformat()


def generate_id() -> str:
    """Generate a unique record ID."""
    return str(uuid.uuid4())


def _filter_fields(cls, data: Dict[str, Any]) -> Dict[str, Any]:
    field_names = {f.name for f in fields(cls)}
    return {k: v for k, v in data.items() if k in field_names}


class StorageProvider(Enum):
    """Supported storage backends."""
    LOCAL = "local"
    CLOUDFLARE_R2 = "r2"


@dataclass
class AuthUser:
    """
    Authentication account.

    Attributes:
        id: Unique identifier (UUID), shared with the profile row
        email: Normalized (lowercase) email address
        password_hash: Werkzeug password hash
        created_at: ISO timestamp
    """
    id: str
    email: str
    password_hash: str
    created_at: str = field(default_factory=utc_now_iso)

    def to_public_dict(self) -> Dict[str, Any]:
        """Client-safe representation (no password hash)."""
        return {"id": self.id, "email": self.email, "created_at": self.created_at}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AuthUser':
        return cls(**_filter_fields(cls, data))


@dataclass
class AuthSession:
    """
    Login session with an access/refresh token pair.

    Timestamps are epoch seconds.
    """
    access_token: str
    refresh_token: str
    user_id: str
    expires_at: int
    refresh_expires_at: int
    created_at: str = field(default_factory=utc_now_iso)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def to_client_dict(self, now: int) -> Dict[str, Any]:
        """Session payload returned to clients."""
        return {
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
            "token_type": "bearer",
            "expires_at": self.expires_at,
            "expires_in": max(0, self.expires_at - now),
            "user_id": self.user_id,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AuthSession':
        return cls(**_filter_fields(cls, data))


@dataclass
class Profile:
    """
    Public DJ profile.

    Attributes:
        id: Same ID as the auth user
        display_name: Artist name ("apodo") shown across the platform
        nombre: Real name
        telefono: Phone number
        bio: Optional biography
        avatar_url: Public URL of the avatar image, empty when removed
    """
    id: str
    display_name: Optional[str] = None
    nombre: Optional[str] = None
    telefono: Optional[str] = None
    bio: Optional[str] = None
    avatar_url: Optional[str] = None
    created_at: str = field(default_factory=utc_now_iso)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def to_summary_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "display_name": self.display_name, "avatar_url": self.avatar_url}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Profile':
        return cls(**_filter_fields(cls, data))


@dataclass
class Track:
    """
    An uploaded track or set.

    Attributes:
        id: Unique identifier (UUID)
        user_id: Owner profile ID
        title: Track title
        content_type: Free-form kind (Set, Remix, Edit, Mashup...)
        genre: Optional genre
        audio_url: Public URL of the audio object
        cover_url: Public URL of the cover image (optional)
        duration: Duration in whole seconds (optional)
        is_downloadable: Whether other users may download it
        profile: Joined uploader summary (display_name, avatar_url)
    """
    id: str
    user_id: str
    title: str
    content_type: str
    audio_url: str
    genre: Optional[str] = None
    cover_url: Optional[str] = None
    duration: Optional[int] = None
    is_downloadable: bool = True
    created_at: str = field(default_factory=utc_now_iso)
    profile: Optional[Dict[str, Any]] = None

    @staticmethod
    def generate_id() -> str:
        """Generate a unique track ID."""
        return generate_id()

    def to_dict(self) -> Dict[str, Any]:
        """Convert track to dictionary; the join is exposed as 'profiles'."""
        data = asdict(self)
        data["profiles"] = data.pop("profile")
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Track':
        """Create Track from dictionary, filtering unknown keys."""
        data = dict(data)
        if "profiles" in data and "profile" not in data:
            data["profile"] = data.pop("profiles")
        filtered = _filter_fields(cls, data)
        if "is_downloadable" in filtered:
            filtered["is_downloadable"] = bool(filtered["is_downloadable"])
        return cls(**filtered)


@dataclass
class TrackLike:
    user_id: str
    track_id: str
    created_at: str = field(default_factory=utc_now_iso)


@dataclass
class DownloadRecord:
    """A track download in a user's history."""
    id: str
    user_id: str
    track_id: str
    track_title: str
    downloaded_at: str
    created_at: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'DownloadRecord':
        return cls(**_filter_fields(cls, data))


class NotificationStatus(Enum):
    DOWNLOADING = "downloading"
    COMPLETED = "completed"
    ERROR = "error"


@dataclass
class DownloadNotification:
    """Progress notification for an in-flight download."""
    id: str
    title: str
    progress: float = 0.0
    status: NotificationStatus = NotificationStatus.DOWNLOADING
    completed_at: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "progress": self.progress,
            "status": self.status.value,
        }


@dataclass
class UploadedFile:
    """File received from a multipart form."""
    filename: str
    content_type: str
    data: bytes

    @property
    def size(self) -> int:
        return len(self.data)

    @property
    def extension(self) -> str:
        """Text after the last dot, or the whole name when there is no dot."""
        return PurePosixPath(self.filename).name.split(".")[-1]


@dataclass
class TrackInput:
    """Editable track fields, as submitted by the upload and edit forms."""
    title: Optional[str] = None
    content_type: Optional[str] = None
    genre: Optional[str] = None
    is_downloadable: Optional[bool] = None
