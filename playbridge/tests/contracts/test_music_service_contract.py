import inspect
from unittest.mock import Mock

import pytest

from playbridge.domain.entities import PlaybackSnapshot, TrackRef, UserProfile
from playbridge.domain.ports import MusicService, SessionHost
from playbridge.infrastructure.providers.spotify import SpotifyService
from playbridge.interfaces.cli import ConsoleHost
from playbridge.tests.fakes import FakeMusicService, RecordingHost


def _port_methods(port):
    return {
        name: inspect.signature(member)
        for name, member in vars(port).items()
        if inspect.isfunction(member) and not name.startswith('_')
    }


@pytest.mark.parametrize('implementation', [SpotifyService, FakeMusicService])
def test_music_service_implementations_match_port(implementation):
    for name, signature in _port_methods(MusicService).items():
        method = getattr(implementation, name, None)
        assert callable(method), f"{implementation.__name__} lacks {name}"
        expected = list(signature.parameters)
        actual = list(inspect.signature(method).parameters)
        assert actual == expected, f"{implementation.__name__}.{name} signature differs"


@pytest.mark.parametrize('implementation', [ConsoleHost, RecordingHost])
def test_session_hosts_match_port(implementation):
    for name in _port_methods(SessionHost):
        assert callable(getattr(implementation, name, None))


def test_contract_return_types():
    client = Mock()
    client.current_user.return_value = {'id': 'u1', 'country': 'SE'}
    client.current_playback.return_value = None
    client.current_user_top_tracks.return_value = {'items': [{'uri': 'spotify:track:1', 'name': 'One'}]}
    client.current_user_playlists.return_value = {'items': [], 'next': None}
    client.devices.return_value = {'devices': []}
    tokens = Mock()
    tokens.get_valid_access_token.return_value = 'token'

    for service in (SpotifyService(tokens, client_factory=Mock(return_value=client)), FakeMusicService()):
        assert isinstance(service.current_user(), UserProfile)
        assert isinstance(service.current_playback(), PlaybackSnapshot)
        assert isinstance(service.list_playlists(), dict)
        assert isinstance(service.list_devices(), dict)
        assert all(isinstance(t, TrackRef) for t in service.top_tracks())
