"""
Artwork resolution for the current track.

1. Immediate: track.getInfo once, so something shows up quickly.
2. Authoritative: poll Last.fm's own "now playing" for the user with
   growing delays until it reports a track that is not the previously
   confirmed one. Last.fm lags behind our now-playing update, so early
   polls usually still describe the previous track.
3. Fallback (only when 1 and 2 found nothing): track.getInfo, then Deezer
   track search, then Deezer artist search.
"""

from __future__ import annotations
import logging
import threading
from typing import Callable

from deezer_client import DeezerClient, DeezerError
from lastfm_client import LastFMClient, LastFMError, best_image, is_image_empty
from state import Track

log = logging.getLogger("artwork")

# 8 attempts: short, short, medium, medium, then long
ATTEMPT_DELAYS = (0.5, 0.5, 1.0, 1.0, 2.0, 2.0, 2.0, 2.0)


class ArtworkResolver:
    def __init__(self, lastfm: LastFMClient, deezer: DeezerClient | None = None,
                 username: str | None = None, delays: tuple[float, ...] = ATTEMPT_DELAYS):
        self.lastfm = lastfm
        self.deezer = deezer
        self.username = username
        self.delays = delays
        self._lock = threading.Lock()
        self._last_confirmed_signature: str | None = None

    @property
    def last_confirmed_signature(self) -> str | None:
        return self._last_confirmed_signature

    def resolve(self, track: Track, on_update: Callable[[str], None] | None = None,
                cancelled: threading.Event | None = None) -> str | None:
        """Best-effort artwork URL for `track`, or None.

        `on_update` is called with each improvement (immediate, then
        authoritative) as soon as it is known. Setting `cancelled` stops
        the polling phase and suppresses further updates.
        """
        cancelled = cancelled or threading.Event()

        def publish(url: str) -> None:
            if on_update is not None and not cancelled.is_set():
                on_update(url)

        immediate = self.from_track_info(track)
        if immediate:
            log.info("Immediate artwork for %s: %s", track.display_name(), immediate)
            publish(immediate)

        authoritative = self.poll_recent_activity(track, cancelled)
        if authoritative:
            publish(authoritative)
            return authoritative
        if cancelled.is_set():
            return None
        if immediate:
            return immediate

        fallback = self.fallback(track)
        if fallback:
            publish(fallback)
        return fallback

    def from_track_info(self, track: Track) -> str | None:
        try:
            return best_image(self.lastfm.get_track_info(track))
        except LastFMError as e:
            log.debug("Track info lookup failed for %s: %s", track.display_name(), e)
            return None

    def from_recent_activity(self, require_new_track: bool = False) -> str | None:
        """One look at what Last.fm believes the user is playing right now."""
        if not self.username:
            return None
        try:
            recent = self.lastfm.get_recent_tracks(self.username, limit=1)
        except LastFMError as e:
            log.debug("Recent tracks lookup failed: %s", e)
            return None

        first = recent[0] if recent else None
        if first is None or not first.is_now_playing or is_image_empty(first.images):
            return None

        signature = first.signature
        with self._lock:
            if require_new_track and signature == self._last_confirmed_signature:
                log.debug("Stale data, Last.fm still reports %r", signature)
                return None
            self._last_confirmed_signature = signature
        log.debug("Confirmed new track signature %r", signature)
        return best_image(first.images)

    def poll_recent_activity(self, track: Track, cancelled: threading.Event) -> str | None:
        for attempt, delay in enumerate(self.delays, start=1):
            if cancelled.wait(delay):
                log.debug("Artwork polling superseded for %s", track.display_name())
                return None
            url = self.from_recent_activity(require_new_track=True)
            if url:
                log.info("Authoritative artwork on attempt %s: %s", attempt, url)
                return url
            log.debug("Polling attempt %s/%s - stale data or no artwork", attempt, len(self.delays))
        return None

    def fallback(self, track: Track) -> str | None:
        url = self.from_track_info(track)
        if url:
            return url
        if self.deezer is None:
            return None

        try:
            results = self.deezer.search_track(track.title, artist=track.artist, album=track.album)
            if results:
                top = results[0]
                if top.album and top.album.cover_big:
                    return top.album.cover_big
                if top.artist and top.artist.picture_big:
                    return top.artist.picture_big
        except DeezerError as e:
            log.debug("Deezer track search failed: %s", e)

        try:
            artists = self.deezer.search_artist(track.artist)
            if artists and artists[0].picture_big:
                return artists[0].picture_big
        except DeezerError as e:
            log.debug("Deezer artist search failed: %s", e)

        log.info("No artwork found for %s", track.display_name())
        return None
