import pytest

from transcoder.playlist import Playlist

from tests.engines import SCENARIO_PLAYLIST


@pytest.fixture
def playlist() -> Playlist:
    return Playlist.parse(SCENARIO_PLAYLIST)
