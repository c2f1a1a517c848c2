"""
Tests for the command-line interface.
"""

import json

import pytest

import main
from coordinator.config import CoordinatorConfig

from fakes import FakeTransport

WAYPOINTS = [
    {"lat": 47.397742, "lon": 8.545594, "alt": 50},
    {"lat": 47.398042, "lon": 8.545794, "alt": 50},
]


@pytest.fixture
def mission_file(tmp_path):
    path = tmp_path / "mission.json"
    path.write_text(json.dumps({"waypoints": WAYPOINTS}))
    return str(path)


class TestLoadWaypoints:

    def test_object_and_list_forms(self, tmp_path, mission_file):
        listed = tmp_path / "list.json"
        listed.write_text(json.dumps([{"lat": 1, "lon": 2, "altitude": 30, "label": "A"}]))

        assert len(main.load_waypoints(mission_file)) == 2
        waypoint = main.load_waypoints(str(listed))[0]
        assert (waypoint.lat, waypoint.lon, waypoint.altitude, waypoint.label) == (1.0, 2.0, 30.0, "A")


class TestCLI:

    def test_corridor_command(self, mission_file, capsys):
        cli = main.CLI(CoordinatorConfig())
        assert cli.run(["corridor", mission_file, "20"])

        output = capsys.readouterr().out
        assert "Vertices: 4" in output
        assert "half width 20.0m" in output

    def test_fly_command(self, mission_file, monkeypatch, capsys):
        transport = FakeTransport()
        monkeypatch.setattr(main, "build_transport", lambda config: transport)
        config = CoordinatorConfig(telemetry_url="ws://127.0.0.1:9/ws/telemetry")

        assert main.CLI(config).run(["fly", mission_file, "M-CLI", "15"])
        names = [call[0] for call in transport.calls]
        assert names == ["connect", "arm", "takeoff", "upload_mission", "start_mission"]
        assert transport.calls[2] == ("takeoff", 15.0)
        assert transport.closed
        assert "Mission M-CLI running" in capsys.readouterr().out

    def test_fly_stops_on_failure(self, mission_file, monkeypatch, capsys):
        transport = FakeTransport()
        transport.fail("arm", "Arming denied")
        monkeypatch.setattr(main, "build_transport", lambda config: transport)
        config = CoordinatorConfig(telemetry_url="ws://127.0.0.1:9/ws/telemetry")

        assert not main.CLI(config).run(["fly", mission_file])
        assert [call[0] for call in transport.calls] == ["connect", "arm"]
        assert "Arming denied" in capsys.readouterr().out

    def test_unknown_command(self, capsys):
        assert not main.CLI(CoordinatorConfig()).run(["launch-rockets"])
        assert "Unknown command" in capsys.readouterr().out

    def test_usage_without_arguments(self, capsys):
        cli = main.CLI(CoordinatorConfig())
        assert not cli.run(["corridor"])
        assert "Usage" in capsys.readouterr().out
