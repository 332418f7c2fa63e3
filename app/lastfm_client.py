import pylast
import logging
from dataclasses import dataclass

from state import Track, SimilarTrack, SimilarArtist

log = logging.getLogger("lastfm")

# Last.fm's "no artwork" star image
PLACEHOLDER_IMAGE_ID = "2a96cbd8b46e442fc41c2b86b821562f"
IMAGE_SIZES = ("small", "medium", "large", "extralarge", "mega")


# Custom error classes so callers can branch
class LastFMError(Exception): ...
class LastFMAuthError(LastFMError): ...
class LastFMRateLimitError(LastFMError): ...
class LastFMNetworkError(LastFMError): ...
class LastFMUnknownError(LastFMError): ...


@dataclass(frozen=True)
class Image:
    size: str
    url: str


@dataclass(frozen=True)
class RecentTrack:
    artist: str
    title: str
    album: str | None
    images: tuple[Image, ...]
    is_now_playing: bool

    @property
    def signature(self) -> str:
        return f"{self.artist}|{self.title}|{self.album}"


def images_from_urls(urls) -> tuple[Image, ...]:
    """pylast returns image URLs ordered small → mega; pair them with their size names."""
    return tuple(Image(size, url or "") for size, url in zip(IMAGE_SIZES, urls or []))


def is_image_empty(images) -> bool:
    return (
        not images
        or all(not img.url for img in images)
        or all(PLACEHOLDER_IMAGE_ID in img.url for img in images)
    )


def best_image(images, sizes=("large", "medium", "small")) -> str | None:
    """Highest available resolution among `sizes`, skipping blanks and placeholders."""
    by_size = {img.size: img.url for img in images if img.url and PLACEHOLDER_IMAGE_ID not in img.url}
    for size in sizes:
        if by_size.get(size):
            return by_size[size]
    return None


def _translate(e: Exception) -> LastFMError:
    if isinstance(e, pylast.WSError):
        code = getattr(e, "status", None) or getattr(e, "code", None)
        try:
            code = int(code)
        except (TypeError, ValueError):
            pass
        msg = str(e)
        # Map common Last.fm error codes
        if code in (9, 4, 14):  # 9=Invalid session, 4=Auth failed, 14=Token expired
            return LastFMAuthError(msg)
        if code in (29,):  # 29=Rate limit exceeded
            return LastFMRateLimitError(msg)
        return LastFMUnknownError(f"Last.fm API error {code}: {msg}")
    return LastFMNetworkError(str(e))


class LastFMClient:
    """Thin wrapper over pylast: now playing, scrobbling, and the read calls used for artwork."""

    def __init__(self, api_key: str, api_secret: str, session_key: str | None = None,
                 username: str | None = None, password_md5: str | None = None,
                 network: pylast.LastFMNetwork | None = None):
        self.username = username
        self.can_submit = bool(session_key or (username and password_md5))
        if network is not None:
            self.network = network
        elif session_key:
            log.info("Using Last.fm session key auth")
            self.network = pylast.LastFMNetwork(
                api_key=api_key,
                api_secret=api_secret,
                session_key=session_key,
            )
        elif username and password_md5:
            log.info("Using Last.fm username + MD5 password auth")
            self.network = pylast.LastFMNetwork(
                api_key=api_key,
                api_secret=api_secret,
                username=username,
                password_hash=password_md5,
            )
        else:
            log.warning("No Last.fm session credentials; now playing and scrobbles will be skipped")
            self.network = pylast.LastFMNetwork(api_key=api_key, api_secret=api_secret)

    @staticmethod
    def _duration(track: Track) -> int | None:
        return int(track.duration) if track.duration > 0 else None

    def update_now_playing(self, track: Track) -> None:
        """Push a Now Playing update. Non-fatal on failure."""
        if not self.can_submit:
            return
        try:
            self.network.update_now_playing(
                artist=track.artist, title=track.title, album=track.album,
                duration=self._duration(track),
            )
        except pylast.WSError as e:
            # NOW PLAYING failures aren't critical; log at DEBUG
            log.debug("update_now_playing failed: code=%s msg=%s", getattr(e, "status", "?"), e)
        except Exception as e:
            log.debug("update_now_playing network error: %s", e)

    def scrobble(self, track: Track, timestamp: int) -> None:
        """Submit a scrobble with a start timestamp (unix seconds)."""
        if not self.can_submit:
            log.debug("Skipping scrobble without session credentials: %s", track.display_name())
            return
        try:
            self.network.scrobble(
                artist=track.artist, title=track.title, timestamp=timestamp,
                album=track.album, duration=self._duration(track),
            )
        except Exception as e:
            raise _translate(e) from e

    def get_track_info(self, track: Track) -> tuple[Image, ...]:
        """Album images from track.getInfo."""
        try:
            item = self.network.get_track(track.artist, track.title)
            try:
                # populates item.info["image"] as a side effect
                item.get_cover_image(pylast.SIZE_SMALL)
            except IndexError:
                return ()
            return images_from_urls(item.info.get("image"))
        except Exception as e:
            raise _translate(e) from e

    def get_recent_tracks(self, username: str, limit: int = 1) -> list[RecentTrack]:
        """What Last.fm itself reports for `username`, now-playing entry first."""
        try:
            user = self.network.get_user(username)
            results: list[RecentTrack] = []
            playing = user.get_now_playing()
            if playing is not None:
                info = getattr(playing, "info", None) or {}
                results.append(RecentTrack(
                    artist=str(playing.artist),
                    title=playing.title,
                    album=info.get("album"),
                    images=images_from_urls(info.get("image")),
                    is_now_playing=True,
                ))
            if len(results) < limit:
                for played in user.get_recent_tracks(limit=limit - len(results)):
                    results.append(RecentTrack(
                        artist=str(played.track.artist),
                        title=played.track.title,
                        album=played.album,
                        images=(),
                        is_now_playing=False,
                    ))
            return results[:limit]
        except Exception as e:
            raise _translate(e) from e

    def get_similar_tracks(self, track: Track, limit: int = 5) -> list[SimilarTrack]:
        try:
            items = self.network.get_track(track.artist, track.title).get_similar(limit=limit)
            return [
                SimilarTrack(
                    name=item.item.title,
                    artist=str(item.item.artist),
                    match=float(item.match),
                    url=item.item.get_url(),
                )
                for item in items
            ]
        except Exception as e:
            raise _translate(e) from e

    def get_similar_artists(self, track: Track, limit: int = 5) -> list[SimilarArtist]:
        try:
            items = self.network.get_artist(track.artist).get_similar(limit=limit)
            return [
                SimilarArtist(
                    name=item.item.name,
                    match=float(item.match),
                    url=item.item.get_url(),
                )
                for item in items
            ]
        except Exception as e:
            raise _translate(e) from e
