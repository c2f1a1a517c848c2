"""
Drone command & telemetry coordinator.

Reconnecting telemetry channel, precondition-gated command session,
derived status and corridor geometry for a single vehicle link.
"""

from coordinator.config import ChannelConfig, CoordinatorConfig
from coordinator.errors import CoordinatorError, ErrorKind
from coordinator.geometry import build_corridor, corridor_for_waypoints
from coordinator.models import (
    CommandKind,
    ConnectionState,
    MissionPhase,
    SessionState,
    TelemetryFrame,
    Waypoint,
)
from coordinator.session import CommandSession, transition
from coordinator.telemetry import TelemetryChannel
from coordinator.transport import CommandTransport, HttpCommandTransport, build_transport

__all__ = [
    'ChannelConfig', 'CoordinatorConfig', 'CoordinatorError', 'ErrorKind',
    'build_corridor', 'corridor_for_waypoints', 'CommandKind', 'ConnectionState',
    'MissionPhase', 'SessionState', 'TelemetryFrame', 'Waypoint', 'CommandSession',
    'transition', 'TelemetryChannel', 'CommandTransport', 'HttpCommandTransport',
    'build_transport',
]
