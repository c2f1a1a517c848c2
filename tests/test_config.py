"""
Tests for environment-driven configuration and transport selection.
"""

import pytest

from coordinator.config import ChannelConfig, CoordinatorConfig
from coordinator.transport import HttpCommandTransport, build_transport, format_waypoints

from fakes import MISSION


class TestCoordinatorConfig:

    def test_defaults(self):
        config = CoordinatorConfig.from_env({})
        assert config == CoordinatorConfig()
        assert config.channel == ChannelConfig()
        assert config.channel.max_reconnect_attempts == 10
        assert config.channel.path_capacity == 500

    def test_environment_overrides(self):
        config = CoordinatorConfig.from_env({
            'DRONE_API_BASE_URL': 'http://gcs:8000',
            'DRONE_TELEMETRY_URL': 'ws://gcs:8000/ws/telemetry',
            'DRONE_CONNECTION_STRING': 'udp:0.0.0.0:14550',
            'DRONE_TRANSPORT': 'MAVLink',
            'DRONE_REQUEST_TIMEOUT': '2.5',
            'DRONE_CORRIDOR_HALF_WIDTH_M': '30',
            'DRONE_MISSION_ID': 'M-007',
        })
        assert config.api_base_url == 'http://gcs:8000'
        assert config.telemetry_url == 'ws://gcs:8000/ws/telemetry'
        assert config.connection_string == 'udp:0.0.0.0:14550'
        assert config.transport == 'mavlink'
        assert config.request_timeout == 2.5
        assert config.corridor_half_width_m == 30.0
        assert config.mission_id == 'M-007'


class TestTransportSelection:

    def test_http_transport(self):
        transport = build_transport(CoordinatorConfig(api_base_url='http://gcs:8000/', request_timeout=3.0))
        assert isinstance(transport, HttpCommandTransport)
        assert transport.base_url == 'http://gcs:8000'
        assert transport.timeout == 3.0

    def test_unknown_transport(self):
        with pytest.raises(ValueError):
            build_transport(CoordinatorConfig(transport='carrier-pigeon'))

    def test_waypoint_wire_format(self):
        formatted = format_waypoints(MISSION)
        assert formatted[0] == {'sequence': 0, 'lat': 47.397742, 'lon': 8.545594, 'alt': 50.0, 'label': 'WP1'}
        assert [wp['sequence'] for wp in formatted] == [0, 1, 2]
