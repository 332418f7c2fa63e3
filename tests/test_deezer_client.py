"""Tests for the Deezer search client with requests mocked out."""

from unittest import mock

import pytest
import requests

from deezer_client import DeezerClient, DeezerError


def response(payload, status=200):
    resp = mock.MagicMock()
    resp.json.return_value = payload
    if status >= 400:
        resp.raise_for_status.side_effect = requests.HTTPError(f"{status}")
    return resp


@mock.patch("deezer_client.requests.get")
def test_search_track_builds_strict_query(get):
    get.return_value = response({"data": [{
        "title": "Song",
        "album": {"title": "Album", "cover_big": "http://dz/cover.jpg"},
        "artist": {"name": "Artist", "picture_big": "http://dz/artist.jpg"},
    }], "total": 1})

    results = DeezerClient().search_track("Song", artist="Artist", album="Album")

    url = get.call_args.args[0]
    params = get.call_args.kwargs["params"]
    assert url == "https://api.deezer.com/search/track"
    assert params == {"strict": "on", "q": 'track:"Song" artist:"Artist" album:"Album"'}
    assert results[0].album.cover_big == "http://dz/cover.jpg"
    assert results[0].artist.picture_big == "http://dz/artist.jpg"


@mock.patch("deezer_client.requests.get")
def test_search_track_omits_missing_terms(get):
    get.return_value = response({"data": []})
    assert DeezerClient().search_track("Song") == []
    assert get.call_args.kwargs["params"]["q"] == 'track:"Song"'


@mock.patch("deezer_client.requests.get")
def test_search_artist(get):
    get.return_value = response({"data": [{"name": "Artist", "picture_big": "http://dz/a.jpg"}]})
    artists = DeezerClient().search_artist("Artist")
    assert artists[0].name == "Artist"
    assert get.call_args.kwargs["params"] == {"q": "Artist"}


@mock.patch("deezer_client.requests.get")
def test_http_error_raises(get):
    get.return_value = response({}, status=500)
    with pytest.raises(DeezerError):
        DeezerClient().search_artist("Artist")


@mock.patch("deezer_client.requests.get")
def test_api_error_payload_raises(get):
    get.return_value = response({"error": {"type": "Exception", "message": "Quota limit exceeded"}})
    with pytest.raises(DeezerError):
        DeezerClient().search_track("Song")


@mock.patch("deezer_client.requests.get")
def test_connection_error_raises(get):
    get.side_effect = requests.ConnectionError("no route")
    with pytest.raises(DeezerError):
        DeezerClient().search_track("Song")
