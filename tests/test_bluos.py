"""Tests for the BluOS status client and the player watcher."""

from unittest import mock

import requests

from bluos import BluOSClient, BluOSStatus
from state import PlayerState
from watcher import PlayerEvent, PlayerWatcher

STATUS_XML = """<?xml version="1.0" encoding="UTF-8"?>
<status etag="4e266c9fbfba6d13d1a4d6ff4bd2e1e6">
  <album>Kind of Blue</album>
  <artist>Miles Davis</artist>
  <name>So What</name>
  <title1>So What</title1>
  <title2>Miles Davis</title2>
  <title3>Kind of Blue</title3>
  <secs>42</secs>
  <totlen>562</totlen>
  <state>play</state>
</status>
"""


def status(title="So What", artist="Miles Davis", state="play", duration=562, secs=10):
    return BluOSStatus(title=title, artist=artist, album="Kind of Blue", album_artist=None,
                       duration=duration, secs=secs, state=state)


# -------------------------
# BluOS client
# -------------------------
def test_parse_status():
    parsed = BluOSClient("host").parse_status(STATUS_XML)
    assert parsed.title == "So What"
    assert parsed.artist == "Miles Davis"
    assert parsed.album == "Kind of Blue"
    assert parsed.secs == 42
    assert parsed.duration == 562
    assert parsed.is_playing


def test_parse_status_fallback_tags():
    xml = "<status><title1>T</title1><title2>A</title2><elapsed>3.7</elapsed><state>PAUSE</state></status>"
    parsed = BluOSClient("host").parse_status(xml)
    assert (parsed.title, parsed.artist, parsed.secs, parsed.duration) == ("T", "A", 3, None)
    assert parsed.state == "pause"
    assert not parsed.is_playing


def test_parse_status_garbage():
    assert BluOSClient("host").parse_status("not xml") is None


@mock.patch("bluos.requests.get")
def test_sample(get):
    get.return_value = mock.MagicMock(text=STATUS_XML)
    sample = BluOSClient("host", 11000).sample()

    get.assert_called_once_with("http://host:11000/Status", timeout=5)
    assert sample.position == 42.0
    assert sample.is_playing
    assert sample.duration == 562.0


@mock.patch("bluos.requests.get")
def test_unreachable_player(get):
    get.side_effect = requests.ConnectionError("down")
    client = BluOSClient("host")
    assert client.get_status() is None
    assert client.sample() is None


# -------------------------
# Watcher
# -------------------------
def test_event_from_status():
    event = PlayerEvent.from_status(status())
    assert event.state == PlayerState.PLAYING
    assert event.duration_ms == 562000
    assert PlayerEvent.from_status(status(state="stop")).state == PlayerState.STOPPED
    assert PlayerEvent.from_status(status(state="pause")).state == PlayerState.PAUSED


def test_watcher_reports_new_tracks_once():
    scheduler = mock.MagicMock()
    watcher = PlayerWatcher(scheduler)

    watcher.observe(status(secs=10))
    watcher.observe(status(secs=13))

    scheduler.track_changed.assert_called_once()
    track = scheduler.track_changed.call_args.args[0]
    assert track.title == "So What"
    assert track.duration == 562.0

    watcher.observe(status(title="Freddie Freeloader", duration=589))
    assert scheduler.track_changed.call_count == 2


def test_watcher_stop_and_resume():
    scheduler = mock.MagicMock()
    watcher = PlayerWatcher(scheduler)

    watcher.observe(status())
    watcher.observe(status(state="pause"))
    watcher.observe(status(state="pause"))
    scheduler.playback_stopped.assert_called_once()

    watcher.observe(status())
    assert scheduler.track_changed.call_count == 2


def test_watcher_ignores_incomplete_metadata():
    scheduler = mock.MagicMock()
    watcher = PlayerWatcher(scheduler)

    watcher.observe(None)
    watcher.observe(status(artist=None))
    scheduler.track_changed.assert_not_called()
    scheduler.playback_stopped.assert_not_called()
