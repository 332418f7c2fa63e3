import logging
from dataclasses import dataclass

from bluos import BluOSStatus
from state import PlayerState, Track

log = logging.getLogger("bluos")


@dataclass(frozen=True)
class PlayerEvent:
    """A "state changed" notification as a player would push it."""
    title: str | None
    artist: str | None
    album: str | None
    album_artist: str | None
    duration_ms: int | None
    state: PlayerState

    @classmethod
    def from_status(cls, status: BluOSStatus) -> "PlayerEvent":
        if status.is_playing:
            state = PlayerState.PLAYING
        elif status.state == "stop":
            state = PlayerState.STOPPED
        else:
            state = PlayerState.PAUSED
        return cls(
            title=status.title,
            artist=status.artist,
            album=status.album,
            album_artist=status.album_artist,
            duration_ms=status.duration * 1000 if status.duration else None,
            state=state,
        )


class PlayerWatcher:
    """Turns player events into scheduler calls.

    A playing event starts tracking when nothing is tracked yet, when
    playback resumes, or when the track differs from the last one.
    Leaving the playing state stops tracking.
    """

    def __init__(self, scheduler):
        self.scheduler = scheduler
        self.current: Track | None = None
        self.is_playing = False

    def observe(self, status: BluOSStatus | None) -> None:
        if status is None:
            return
        self.handle(PlayerEvent.from_status(status))

    def handle(self, event: PlayerEvent) -> None:
        if event.state == PlayerState.PLAYING:
            if not event.title or not event.artist:
                return
            track = Track(
                title=event.title,
                artist=event.artist,
                album_artist=event.album_artist,
                album=event.album,
                duration=(event.duration_ms or 0) / 1000.0,
                player_state=PlayerState.PLAYING,
            )
            if self.current is None or not self.is_playing or not self.current.is_same_track(track):
                self.is_playing = True
                self.current = track
                self.scheduler.track_changed(track)
            return

        if self.is_playing:
            log.info("Player is %s", event.state.value)
            self.scheduler.playback_stopped()
        self.is_playing = False
