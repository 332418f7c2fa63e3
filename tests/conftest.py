"""Pytest configuration: put app/ on sys.path and provide scheduler doubles."""

import sys
from concurrent.futures import Executor, Future
from pathlib import Path
from unittest import mock

import pytest

app_dir = Path(__file__).parent.parent / "app"
if str(app_dir) not in sys.path:
    sys.path.insert(0, str(app_dir))

from history import HistoryStore  # noqa: E402
from lastfm_client import LastFMClient  # noqa: E402
from metadata_rules import MetadataProcessor  # noqa: E402
from scheduler import ScrobbleScheduler  # noqa: E402
from state import PlayerSample  # noqa: E402


class InlineExecutor(Executor):
    """Runs submitted work immediately on the calling thread."""

    def submit(self, fn, *args, **kwargs):
        future = Future()
        try:
            future.set_result(fn(*args, **kwargs))
        except Exception as e:
            future.set_exception(e)
        return future

    def shutdown(self, wait=True, **kwargs):
        pass


class FakeTimer:
    def __init__(self, delay, callback, payload=None):
        self.delay = delay
        self.callback = callback
        self.payload = payload
        self.started = False
        self.cancelled = False

    def start(self):
        self.started = True

    def cancel(self):
        self.cancelled = True

    def fire(self):
        self.callback(self.payload)


class FakeTicker:
    def __init__(self, interval, callback):
        self.interval = interval
        self.callback = callback
        self.started = False
        self.cancelled = False

    def start(self):
        self.started = True

    def cancel(self):
        self.cancelled = True

    def tick(self):
        self.callback()


class SampleFeed:
    """Sample source returning queued samples one per call."""

    def __init__(self):
        self.samples = []

    def push_positions(self, positions, duration=120.0):
        self.samples.extend(PlayerSample(position=p, is_playing=True, duration=duration) for p in positions)

    def __call__(self):
        return self.samples.pop(0) if self.samples else None


class Harness:
    def __init__(self, scheduler, timers, tickers, feed, lastfm):
        self.scheduler = scheduler
        self.timers = timers
        self.tickers = tickers
        self.feed = feed
        self.lastfm = lastfm

    @property
    def timer(self):
        return self.timers[-1] if self.timers else None

    @property
    def ticker(self):
        return self.tickers[-1] if self.tickers else None

    def accept(self, track):
        self.scheduler.track_changed(track)
        self.scheduler.drain()

    def play_positions(self, positions, duration=120.0):
        self.feed.push_positions(positions, duration)
        for _ in positions:
            self.ticker.tick()
            self.scheduler.drain()

    def fire(self):
        self.timer.fire()
        self.scheduler.drain()


@pytest.fixture
def lastfm():
    client = mock.MagicMock(spec=LastFMClient)
    client.get_similar_tracks.return_value = []
    client.get_similar_artists.return_value = []
    return client


@pytest.fixture
def make_harness(lastfm):
    def factory(resolver=None, processor=None, history=None, **kwargs):
        timers, tickers = [], []
        feed = SampleFeed()

        def timer_factory(delay, callback, payload=None):
            timer = FakeTimer(delay, callback, payload)
            timers.append(timer)
            return timer

        def ticker_factory(interval, callback):
            ticker = FakeTicker(interval, callback)
            tickers.append(ticker)
            return ticker

        scheduler = ScrobbleScheduler(
            processor or MetadataProcessor(),
            lastfm,
            history or HistoryStore(None),
            feed,
            resolver,
            executor=InlineExecutor(),
            timer_factory=timer_factory,
            ticker_factory=ticker_factory,
            **kwargs,
        )
        return Harness(scheduler, timers, tickers, feed, lastfm)

    return factory
