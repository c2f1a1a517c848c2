# Coordinator Configuration
# File: coordinator/config.py

import os
from dataclasses import dataclass, field
from typing import Mapping, Optional


@dataclass
class ChannelConfig:
    """Timing and buffer settings for the telemetry channel"""
    reconnect_base_ms: int = 1000
    reconnect_max_ms: int = 10000
    max_reconnect_attempts: int = 10
    heartbeat_interval_s: float = 30.0
    path_capacity: int = 500
    frequency_window_ms: int = 1000


@dataclass
class CoordinatorConfig:
    """Configuration for one vehicle link"""
    api_base_url: str = "http://localhost:8000"
    telemetry_url: str = "ws://localhost:8000/ws/telemetry"
    connection_string: str = "udp:127.0.0.1:14540"  # Default PX4 SITL
    transport: str = "http"  # http | mavlink
    request_timeout: float = 10.0
    corridor_half_width_m: float = 50.0
    mission_id: Optional[str] = None
    channel: ChannelConfig = field(default_factory=ChannelConfig)

    @classmethod
    def from_env(cls, environ: Mapping[str, str] = None) -> "CoordinatorConfig":
        """Build a config from DRONE_* environment variables"""
        env = os.environ if environ is None else environ
        defaults = cls()
        return cls(
            api_base_url=env.get("DRONE_API_BASE_URL", defaults.api_base_url),
            telemetry_url=env.get("DRONE_TELEMETRY_URL", defaults.telemetry_url),
            connection_string=env.get("DRONE_CONNECTION_STRING", defaults.connection_string),
            transport=env.get("DRONE_TRANSPORT", defaults.transport).lower(),
            request_timeout=float(env.get("DRONE_REQUEST_TIMEOUT", defaults.request_timeout)),
            corridor_half_width_m=float(
                env.get("DRONE_CORRIDOR_HALF_WIDTH_M", defaults.corridor_half_width_m)
            ),
            mission_id=env.get("DRONE_MISSION_ID") or None,
        )
