import unicodedata
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum


class PlayerState(str, Enum):
    PLAYING = "playing"
    PAUSED = "paused"
    STOPPED = "stopped"


class ScrobbleStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"
    QUEUED = "queued"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def normalize(s: str | None) -> str:
    """Lower-case, trim, fold diacritics and curly apostrophes."""
    if not s:
        return ""
    s = unicodedata.normalize("NFKD", s.strip().lower())
    s = "".join(ch for ch in s if not unicodedata.combining(ch))
    return s.replace("’", "'")


@dataclass(frozen=True)
class SimilarTrack:
    name: str
    artist: str
    match: float
    url: str | None = None


@dataclass(frozen=True)
class SimilarArtist:
    name: str
    match: float
    url: str | None = None


# -------------------------
# Snapshot of a playable item
# -------------------------
@dataclass(frozen=True)
class Track:
    title: str
    artist: str
    album_artist: str | None = None
    album: str | None = None
    duration: float = 0.0  # seconds, 0 if unknown
    player_state: PlayerState = PlayerState.PLAYING
    artwork_url: str | None = None
    similar_tracks: tuple[SimilarTrack, ...] | None = None
    similar_artists: tuple[SimilarArtist, ...] | None = None
    last_observed_at: datetime = field(default_factory=_utcnow, compare=False)
    id: str = field(default_factory=lambda: str(uuid.uuid4()), compare=False)

    @property
    def signature(self) -> str:
        return f"{normalize(self.artist)}|{normalize(self.title)}|{normalize(self.album)}"

    def display_name(self) -> str:
        return f"{self.artist} - {self.title}"

    def is_same_track(self, other: "Track | None") -> bool:
        """Approximate equality: title + artist, and duration within 2s when both are known."""
        if other is None:
            return False
        title_match = normalize(self.title) == normalize(other.title)
        artist_match = normalize(self.artist) == normalize(other.artist)
        if self.duration == 0 or other.duration == 0:
            return title_match and artist_match
        return title_match and artist_match and abs(self.duration - other.duration) < 2

    def fresh_snapshot(self) -> "Track":
        """Same metadata, new identity and observation time, state reset to playing."""
        return replace(
            self,
            player_state=PlayerState.PLAYING,
            last_observed_at=_utcnow(),
            id=str(uuid.uuid4()),
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "artist": self.artist,
            "album_artist": self.album_artist,
            "album": self.album,
            "duration": self.duration,
            "artwork_url": self.artwork_url,
        }

    @classmethod
    def from_dict(cls, d: dict) -> "Track":
        return cls(
            title=d.get("title") or "",
            artist=d.get("artist") or "",
            album_artist=d.get("album_artist"),
            album=d.get("album"),
            duration=float(d.get("duration") or 0),
            player_state=PlayerState.STOPPED,
            artwork_url=d.get("artwork_url"),
            id=d.get("id") or str(uuid.uuid4()),
        )


@dataclass(frozen=True)
class PlayerSample:
    position: float  # seconds
    is_playing: bool
    duration: float = 0.0


@dataclass(frozen=True)
class ScrobbleRecord:
    track: Track
    timestamp: datetime = field(default_factory=_utcnow)
    status: ScrobbleStatus = ScrobbleStatus.SUCCESS
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "track": self.track.to_dict(),
            "timestamp": self.timestamp.timestamp(),
            "status": self.status.value,
        }

    @classmethod
    def from_dict(cls, d: dict) -> "ScrobbleRecord":
        try:
            status = ScrobbleStatus(d.get("status"))
        except ValueError:
            status = ScrobbleStatus.SUCCESS
        return cls(
            track=Track.from_dict(d.get("track") or {}),
            timestamp=datetime.fromtimestamp(float(d["timestamp"]), tz=timezone.utc),
            status=status,
            id=d.get("id") or str(uuid.uuid4()),
        )


# -------------------------
# Scheduler session state (owned by the scheduler's thread)
# -------------------------
@dataclass
class SessionState:
    current_track: Track | None = None
    previous_track: Track | None = None
    last_sampled_position: float = 0.0
    consecutive_stale_polls: int = 0
    replay_handled: bool = False
    scrobble_deadline: datetime | None = None
    replay_count: int = 0

    def accept(self, track: Track) -> None:
        """Rotate in a newly accepted track and reset per-track counters."""
        self.previous_track = self.current_track
        self.current_track = track
        self.last_sampled_position = 0.0
        self.consecutive_stale_polls = 0
        # A fresh track starts inside the near-start window.
        self.replay_handled = True
