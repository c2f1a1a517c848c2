"""
Tests for derived status: GPS quality tiers, battery and readiness flags.
"""

import pytest

from coordinator import status
from coordinator.models import (
    Battery,
    CommandKind,
    ConnectionState,
    GpsInfo,
    MissionPhase,
    SessionState,
    TelemetryFrame,
)

CONNECTED = SessionState(connection_state=ConnectionState.CONNECTED)


class TestGpsQuality:

    @pytest.mark.parametrize("fix_type,satellites,expected", [
        (0, 12, status.GpsQuality.NONE),
        (1, 12, status.GpsQuality.NONE),
        (2, 12, status.GpsQuality.POOR),
        (3, 7, status.GpsQuality.FAIR),
        (3, 8, status.GpsQuality.GOOD),
        (4, 3, status.GpsQuality.EXCELLENT),
        (6, 20, status.GpsQuality.EXCELLENT),
    ])
    def test_tiers(self, fix_type, satellites, expected):
        assert status.gps_quality(fix_type, satellites) == expected

    def test_no_telemetry_is_none(self):
        assert status.frame_gps_quality(None) == status.GpsQuality.NONE

    def test_fix_labels(self):
        assert status.gps_fix_label(3) == "3D Fix"
        assert status.gps_fix_label(6) == "RTK Fixed"
        assert status.gps_fix_label(42) == "Unknown"


class TestBattery:

    def test_remaining_pct(self):
        frame = TelemetryFrame(timestamp=1, battery=Battery(12.4, 3.1, 76.0))
        assert status.battery_percentage(frame) == 76.0

    def test_absent_telemetry_is_zero(self):
        assert status.battery_percentage(None) == 0.0


class TestReadiness:
    """Readiness flags are pure functions of the session state."""

    def test_disconnected_can_do_nothing(self):
        state = SessionState()
        assert not status.can_arm(state)
        assert not status.can_takeoff(state)
        assert not status.can_upload_mission(state)
        assert not status.can_start_mission(state)

    def test_can_arm(self):
        assert status.can_arm(CONNECTED)
        assert not status.can_arm(SessionState(connection_state=ConnectionState.CONNECTED, armed=True))
        assert not status.can_arm(SessionState(connection_state=ConnectionState.CONNECTED,
                                               in_flight=frozenset({CommandKind.ARM})))

    def test_can_takeoff_requires_armed(self):
        assert not status.can_takeoff(CONNECTED)
        assert status.can_takeoff(SessionState(connection_state=ConnectionState.CONNECTED, armed=True))

    def test_can_start_mission(self):
        uploaded = SessionState(connection_state=ConnectionState.CONNECTED,
                                mission_phase=MissionPhase.UPLOADED)
        running = SessionState(connection_state=ConnectionState.CONNECTED,
                               mission_phase=MissionPhase.RUNNING)
        stopped = SessionState(connection_state=ConnectionState.CONNECTED,
                               mission_phase=MissionPhase.STOPPED)
        assert status.can_start_mission(uploaded)
        assert status.can_start_mission(stopped)
        assert not status.can_start_mission(running)
        assert not status.can_start_mission(CONNECTED)

    def test_is_ready_needs_telemetry(self):
        frame = TelemetryFrame(timestamp=1)
        assert status.is_ready(CONNECTED, frame)
        assert not status.is_ready(CONNECTED, None)
        assert not status.is_ready(SessionState(), frame)


class TestDeriveStatus:

    def test_snapshot(self):
        frame = TelemetryFrame(timestamp=1, battery=Battery(remaining_pct=15.0),
                               gps=GpsInfo(satellites=9, fix_type=3))
        derived = status.derive_status(CONNECTED, frame)

        assert derived.is_ready
        assert derived.can_arm
        assert derived.low_battery
        assert derived.gps_quality == status.GpsQuality.GOOD
        assert derived.to_dict()['gps_quality'] == "good"
        assert derived.gps_fix_label == "3D Fix"

    def test_without_telemetry(self):
        derived = status.derive_status(SessionState(), None)
        assert derived.battery_percentage == 0.0
        assert not derived.low_battery
        assert derived.gps_quality == status.GpsQuality.NONE
        assert derived.gps_fix_label == "No GPS"
