"""
Scrobble scheduler: owns the "what is playing" session state.

All state changes run on a single owner thread that consumes an inbox of
messages. Player events, sampler ticks, timer expiry and background
completions (artwork, similar items, committed scrobbles) are all just
messages, so nothing else ever touches SessionState.

Last.fm guideline: scrobble at halfway or 240s (4min), whichever comes
first, and never for tracks shorter than 30s.
"""

from __future__ import annotations
import logging
import queue
import threading
from collections import OrderedDict
from concurrent.futures import Executor, ThreadPoolExecutor
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

from artwork import ArtworkResolver
from history import HistoryStore
from lastfm_client import LastFMClient, LastFMAuthError, LastFMError
from metadata_rules import MetadataProcessor
from state import PlayerSample, ScrobbleRecord, ScrobbleStatus, SessionState, Track
from timers import OneShotTimer, RepeatingTimer

log = logging.getLogger("scheduler")

MIN_SCROBBLE_DURATION = 30.0
MAX_SCROBBLE_DELAY = 240.0
NEAR_START = 2.0  # seconds; positions below this count as "at the start"
STALE_POLL_WARNING = 10
RECENT_LIMIT = 10
SIMILAR_LIMIT = 5
SIMILAR_CACHE_LIMIT = 200


def scrobble_delay(duration: float) -> float | None:
    """Seconds until a track counts as played, or None if it never does."""
    if duration < MIN_SCROBBLE_DURATION:
        return None
    return min(MAX_SCROBBLE_DELAY, duration / 2)


@dataclass(frozen=True)
class Message:
    kind: str
    payload: Any = None


_STOP = Message("stop")


class ScrobbleScheduler:
    def __init__(self, processor: MetadataProcessor, lastfm: LastFMClient,
                 history: HistoryStore, sample_source: Callable[[], PlayerSample | None],
                 resolver: ArtworkResolver | None = None, *,
                 executor: Executor | None = None,
                 timer_factory=OneShotTimer, ticker_factory=RepeatingTimer,
                 sample_interval: float = 0.5,
                 scrobbling_enabled: bool = True):
        self.processor = processor
        self.lastfm = lastfm
        self.history = history
        self.resolver = resolver
        self.sample_source = sample_source
        self.sample_interval = sample_interval
        self.scrobbling_enabled = scrobbling_enabled

        self.state = SessionState()
        self.is_playing = False
        self.recent_scrobbles: list[ScrobbleRecord] = []
        self.scrobble_count = 0
        self.last_artwork_url: str | None = None

        self._inbox: "queue.Queue[Message]" = queue.Queue()
        self._executor = executor or ThreadPoolExecutor(max_workers=4, thread_name_prefix="scrobbler-bg")
        self._timer_factory = timer_factory
        self._ticker_factory = ticker_factory
        self._sampler = None
        self._scrobble_timer = None
        self._armed_token = 0
        self._artwork_cancel: threading.Event | None = None
        self._similar_cache: "OrderedDict[str, tuple]" = OrderedDict()
        self._similar_pending: set[str] = set()
        self._owner: threading.Thread | None = None

        self._handlers = {
            "track": self._on_track,
            "stopped": self._on_stopped,
            "sample": self._on_sample,
            "fire": self._on_fire,
            "scrobbled": self._on_scrobbled,
            "artwork": self._on_artwork,
            "similar": self._on_similar,
            "clear_recent": self._on_clear_recent,
        }

    # -------------------------
    # Public API (any thread)
    # -------------------------
    @property
    def current_track(self) -> Track | None:
        return self.state.current_track

    def track_changed(self, track: Track) -> None:
        self._post("track", track)

    def playback_stopped(self) -> None:
        self._post("stopped")

    def set_scrobbling_enabled(self, enabled: bool) -> None:
        # Read at the next track acceptance; armed timers are left alone.
        self.scrobbling_enabled = enabled

    def clear_recent_scrobbles(self) -> None:
        self._post("clear_recent")

    def load_recent_scrobbles(self) -> None:
        self.recent_scrobbles = self.history.recent(RECENT_LIMIT)
        self.scrobble_count = self.history.count()

    def start(self) -> None:
        self.load_recent_scrobbles()
        self._owner = threading.Thread(target=self.run, name="scheduler", daemon=True)
        self._owner.start()
        log.info("Scheduler started (history: %s scrobbles)", self.scrobble_count)

    def shutdown(self, timeout: float = 5.0) -> None:
        self._inbox.put(_STOP)
        if self._owner is not None:
            self._owner.join(timeout)
        self._stop_sampler()
        self._cancel_scrobble_timer()
        if self._artwork_cancel is not None:
            self._artwork_cancel.set()
        self._executor.shutdown(wait=False)

    def run(self) -> None:
        while True:
            msg = self._inbox.get()
            if msg is _STOP:
                return
            self._dispatch(msg)

    def drain(self) -> None:
        """Process every queued message on the calling thread (owner not running)."""
        while True:
            try:
                msg = self._inbox.get_nowait()
            except queue.Empty:
                return
            if msg is _STOP:
                return
            self._dispatch(msg)

    # -------------------------
    # Owner internals
    # -------------------------
    def _post(self, kind: str, payload: Any = None) -> None:
        self._inbox.put(Message(kind, payload))

    def _dispatch(self, msg: Message) -> None:
        handler = self._handlers.get(msg.kind)
        if handler is None:
            log.warning("Unknown message %r", msg.kind)
            return
        try:
            handler(msg.payload)
        except Exception:
            log.exception("Handler for %r failed", msg.kind)

    def _background(self, fn, *args) -> None:
        try:
            self._executor.submit(fn, *args)
        except RuntimeError as e:
            # executor already shut down
            log.debug("Background task dropped: %s", e)

    # -------- track acceptance --------
    def _on_track(self, track: Track) -> None:
        if not self.scrobbling_enabled:
            log.debug("Scrobbling disabled; ignoring %s", track.display_name())
            return

        processed = self.processor.process(track)
        self.state.accept(processed)
        self.is_playing = True
        log.info("New track: %s [%s] duration=%ss",
                 processed.display_name(), processed.album or "-", processed.duration)

        cached = self._cached_similar(processed)
        if cached is not None:
            log.debug("Using cached similar items for %s", processed.title)
            self.state.current_track = replace(
                self.state.current_track, similar_tracks=cached[0], similar_artists=cached[1]
            )
        else:
            self._fetch_similar(processed)

        self._background(self.lastfm.update_now_playing, processed)
        self._start_artwork(processed)
        self._start_sampler()
        self._arm(processed)

    def _cached_similar(self, track: Track) -> tuple | None:
        if track.signature in self._similar_cache:
            self._similar_cache.move_to_end(track.signature)
            return self._similar_cache[track.signature]
        for record in self.recent_scrobbles:
            cached = record.track
            if cached.is_same_track(track) and cached.similar_tracks and cached.similar_artists:
                return cached.similar_tracks, cached.similar_artists
        return None

    # -------- playback stop --------
    def _on_stopped(self, _payload=None) -> None:
        self.is_playing = False
        self._stop_sampler()
        self._cancel_scrobble_timer()
        log.info("Playback stopped; timers cancelled")

    # -------- sampling loop --------
    def _start_sampler(self) -> None:
        self._stop_sampler()
        self._sampler = self._ticker_factory(self.sample_interval, self._tick)
        self._sampler.start()

    def _stop_sampler(self) -> None:
        if self._sampler is not None:
            self._sampler.cancel()
            self._sampler = None

    def _tick(self) -> None:
        # sampler thread: do the I/O here, decide on the owner
        self._post("sample", self.sample_source())

    def _on_sample(self, sample: PlayerSample | None) -> None:
        st = self.state
        current = st.current_track
        if current is None:
            return
        if not self.is_playing:
            # a tick that was mid-request when playback stopped
            log.debug("Dropping sample received while idle")
            return

        if sample is None or not (sample.position > 0 or sample.is_playing):
            st.consecutive_stale_polls += 1
            return

        at_start = sample.position < NEAR_START
        if at_start and not st.replay_handled:
            self._handle_replay(current)
        elif not at_start and st.replay_handled:
            st.replay_handled = False

        delta = max(sample.position - st.last_sampled_position, 0)
        if delta == 0:
            st.consecutive_stale_polls += 1
            if st.consecutive_stale_polls == STALE_POLL_WARNING:
                log.warning("Poll position unchanged for %s polls", STALE_POLL_WARNING)
        else:
            st.consecutive_stale_polls = 0
        st.last_sampled_position = sample.position

    def _handle_replay(self, current: Track) -> None:
        log.info("Replay detected for %s; scheduling new scrobble", current.display_name())
        st = self.state
        snapshot = current.fresh_snapshot()
        st.replay_handled = True
        st.replay_count += 1
        st.previous_track = current
        st.current_track = snapshot
        st.last_sampled_position = 0.0
        self._arm(snapshot)
        self._background(self.lastfm.update_now_playing, snapshot)

    # -------- scrobble timer --------
    def _cancel_scrobble_timer(self) -> None:
        # bump the token so a fire message already in the inbox is ignored
        self._armed_token += 1
        if self._scrobble_timer is not None:
            self._scrobble_timer.cancel()
            self._scrobble_timer = None
        self.state.scrobble_deadline = None

    def _arm(self, track: Track) -> None:
        self._cancel_scrobble_timer()
        delay = scrobble_delay(track.duration)
        if delay is None:
            log.info("Track shorter than %ss (%ss); not scheduling a scrobble",
                     MIN_SCROBBLE_DURATION, track.duration)
            return

        token = self._armed_token
        self.state.scrobble_deadline = datetime.now(timezone.utc) + timedelta(seconds=delay)
        self._scrobble_timer = self._timer_factory(delay, lambda t: self._post("fire", t), token)
        self._scrobble_timer.start()
        log.info("Scheduling scrobble in %ss (min 240s or half duration)", delay)

    def _on_fire(self, token: int) -> None:
        if token != self._armed_token:
            log.debug("Ignoring superseded scrobble timer")
            return
        self._scrobble_timer = None
        self.state.scrobble_deadline = None
        # last known state wins: whatever is current now gets scrobbled
        current = self.state.current_track
        if current is None:
            return
        self._background(self._commit_scrobble, current)

    def _commit_scrobble(self, track: Track) -> None:
        """Background: submit, persist, then hand the record back to the owner."""
        started_at = int(track.last_observed_at.timestamp())
        try:
            self.lastfm.scrobble(track, timestamp=started_at)
            log.info("Scrobbled: %s%s", track.display_name(), f" [{track.album}]" if track.album else "")
        except LastFMAuthError as e:
            log.error("Scrobble failed (auth): %s", e)
        except LastFMError as e:
            log.warning("Scrobble failed: %s", e)

        record = ScrobbleRecord(track=track, timestamp=datetime.now(timezone.utc), status=ScrobbleStatus.SUCCESS)
        self.history.append(record)
        self._post("scrobbled", record)

    def _on_scrobbled(self, record: ScrobbleRecord) -> None:
        self.scrobble_count += 1
        self.recent_scrobbles.insert(0, record)
        del self.recent_scrobbles[RECENT_LIMIT:]
        log.debug("Scrobble saved, history updated (count: %s)", len(self.recent_scrobbles))

    def _on_clear_recent(self, _payload=None) -> None:
        self.recent_scrobbles = []
        self.scrobble_count = 0

    # -------- artwork --------
    def _start_artwork(self, track: Track) -> None:
        if self._artwork_cancel is not None:
            self._artwork_cancel.set()
        if self.resolver is None:
            self._artwork_cancel = None
            return
        cancelled = threading.Event()
        self._artwork_cancel = cancelled
        self._background(self._resolve_artwork, track, cancelled)

    def _resolve_artwork(self, track: Track, cancelled: threading.Event) -> None:
        self.resolver.resolve(
            track,
            on_update=lambda url: self._post("artwork", (track.signature, url)),
            cancelled=cancelled,
        )

    def _on_artwork(self, payload: tuple[str, str]) -> None:
        signature, url = payload
        current = self.state.current_track
        if current is None or current.signature != signature:
            log.debug("Dropping artwork for a track that is no longer current")
            return
        self.state.current_track = replace(current, artwork_url=url)
        self.last_artwork_url = url

    # -------- similar items --------
    def _fetch_similar(self, track: Track) -> None:
        if track.signature in self._similar_pending:
            return
        self._similar_pending.add(track.signature)
        self._background(self._load_similar, track)

    def _load_similar(self, track: Track) -> None:
        try:
            tracks = tuple(self.lastfm.get_similar_tracks(track, limit=SIMILAR_LIMIT))
            artists = tuple(self.lastfm.get_similar_artists(track, limit=SIMILAR_LIMIT))
        except LastFMError as e:
            log.debug("Similar items lookup failed for %s: %s", track.display_name(), e)
            tracks, artists = None, None
        self._post("similar", (track.signature, tracks, artists))

    def _on_similar(self, payload: tuple) -> None:
        signature, tracks, artists = payload
        self._similar_pending.discard(signature)
        if tracks is None:
            return
        self._similar_cache[signature] = (tracks, artists)
        self._similar_cache.move_to_end(signature)
        while len(self._similar_cache) > SIMILAR_CACHE_LIMIT:
            self._similar_cache.popitem(last=False)
        current = self.state.current_track
        if current is None or current.signature != signature:
            return
        self.state.current_track = replace(current, similar_tracks=tracks, similar_artists=artists)
