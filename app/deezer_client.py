import logging
import requests
from dataclasses import dataclass

log = logging.getLogger("deezer")


class DeezerError(Exception): ...


@dataclass(frozen=True)
class DeezerArtist:
    name: str
    picture_big: str = ""
    picture_xl: str = ""


@dataclass(frozen=True)
class DeezerAlbum:
    title: str
    cover_big: str = ""
    cover_xl: str = ""


@dataclass(frozen=True)
class DeezerTrack:
    title: str
    album: DeezerAlbum | None
    artist: DeezerArtist | None


def _artist(d: dict | None) -> DeezerArtist | None:
    if not d:
        return None
    return DeezerArtist(
        name=d.get("name") or "",
        picture_big=d.get("picture_big") or "",
        picture_xl=d.get("picture_xl") or "",
    )


def _album(d: dict | None) -> DeezerAlbum | None:
    if not d:
        return None
    return DeezerAlbum(
        title=d.get("title") or "",
        cover_big=d.get("cover_big") or "",
        cover_xl=d.get("cover_xl") or "",
    )


class DeezerClient:
    """Public (no auth) Deezer search API, used as a secondary artwork catalog."""

    def __init__(self, base: str = "https://api.deezer.com", timeout: int = 5):
        self.base = base.rstrip("/")
        self.timeout = timeout

    def _get(self, path: str, params: dict) -> list[dict]:
        try:
            resp = requests.get(f"{self.base}{path}", params=params, timeout=self.timeout)
            resp.raise_for_status()
            data = resp.json()
        except (requests.RequestException, ValueError) as e:
            log.debug("Request failed for %s: %s", path, e)
            raise DeezerError(str(e)) from e
        if not isinstance(data, dict) or "error" in data:
            raise DeezerError(f"Unexpected response for {path}: {data!r:.200}")
        return data.get("data") or []

    def search_track(self, title: str, artist: str | None = None, album: str | None = None) -> list[DeezerTrack]:
        terms = []
        if title:
            terms.append(f'track:"{title}"')
        if artist:
            terms.append(f'artist:"{artist}"')
        if album:
            terms.append(f'album:"{album}"')
        items = self._get("/search/track", {"strict": "on", "q": " ".join(terms)})
        return [
            DeezerTrack(title=it.get("title") or "", album=_album(it.get("album")), artist=_artist(it.get("artist")))
            for it in items
        ]

    def search_artist(self, name: str) -> list[DeezerArtist]:
        items = self._get("/search/artist", {"q": name})
        return [a for a in (_artist(it) for it in items) if a is not None]
