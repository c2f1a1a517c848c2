# Drone Command & Telemetry Coordinator - Command Line Interface
# File: main.py

"""
Installation Requirements:
pip install fastapi uvicorn pydantic websockets requests pymavlink

Usage:
    python main.py serve [port]
    python main.py fly <mission.json> [mission_id] [altitude]
    python main.py corridor <mission.json> [half_width_m]
    python main.py status [api_url]
"""

import asyncio
import json
import logging
import sys
from typing import List

import requests

from coordinator.config import CoordinatorConfig
from coordinator.geometry import corridor_for_waypoints, path_length_m
from coordinator.models import Waypoint
from coordinator.session import CommandSession
from coordinator.transport import build_transport

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "http://localhost:8001"


def load_waypoints(path: str) -> List[Waypoint]:
    """
    Read a mission file: a JSON list of waypoints, or an object with a
    "waypoints" list. Each waypoint needs lat/lon; alt and label are optional.
    """
    with open(path) as f:
        data = json.load(f)

    if isinstance(data, dict):
        data = data.get('waypoints', [])
    return [
        Waypoint(
            lat=float(wp['lat']),
            lon=float(wp['lon']),
            altitude=float(wp.get('alt', wp.get('altitude', 0.0))),
            label=wp.get('label'),
        )
        for wp in data
    ]


class CLI:
    """Command Line Interface"""

    def __init__(self, config: CoordinatorConfig):
        self.config = config
        self.commands = {
            'serve': self._serve_cmd,
            'fly': self._fly_cmd,
            'corridor': self._corridor_cmd,
            'status': self._status_cmd,
            'config': self._config_cmd,
            'help': self._help_cmd
        }

    def run(self, args: List[str]) -> bool:
        """Run CLI command"""
        if not args:
            self._help_cmd([])
            return True

        command = args[0]
        if command in self.commands:
            return self.commands[command](args[1:]) is not False
        print(f"❌ Unknown command: {command}")
        self._help_cmd([])
        return False

    def _serve_cmd(self, args: List[str]):
        """Run the API facade"""
        import uvicorn

        port = int(args[0]) if args else 8001
        uvicorn.run("api_server:app", host="0.0.0.0", port=port)

    def _fly_cmd(self, args: List[str]):
        """Connect, arm, take off, upload and start a mission"""
        if not args:
            print("Usage: fly <mission.json> [mission_id] [altitude]")
            return False

        waypoints = load_waypoints(args[0])
        mission_id = args[1] if len(args) > 1 else (self.config.mission_id or "CLI-MISSION")
        altitude = float(args[2]) if len(args) > 2 else 10.0

        session = CommandSession(build_transport(self.config), config=self.config)
        return asyncio.run(self._fly(session, mission_id, waypoints, altitude))

    async def _fly(self, session: CommandSession, mission_id: str,
                   waypoints: List[Waypoint], altitude: float) -> bool:
        steps = [
            ("Connecting", session.connect),
            ("Arming", session.arm),
            (f"Taking off to {altitude}m", lambda: session.takeoff(altitude)),
            (f"Uploading {len(waypoints)} waypoints", lambda: session.upload_mission(mission_id, waypoints)),
            ("Starting mission", session.start_mission),
        ]

        try:
            for label, step in steps:
                print(f"{label}...")
                if not await step():
                    print(f"❌ {label} failed: {session.state.error_message}")
                    return False
                print(f"✅ {label} done")

            print(f"\n✅ Mission {mission_id} running (mode: {session.state.mode})")
            return True
        finally:
            await session.disconnect()

    def _corridor_cmd(self, args: List[str]):
        """Print the corridor polygon for a mission file"""
        if not args:
            print("Usage: corridor <mission.json> [half_width_m]")
            return False

        waypoints = load_waypoints(args[0])
        half_width = float(args[1]) if len(args) > 1 else self.config.corridor_half_width_m
        polygon = corridor_for_waypoints(waypoints, half_width)

        print(f"\n{'='*60}")
        print(f"CORRIDOR ({len(waypoints)} waypoints, half width {half_width}m)")
        print(f"{'='*60}")
        print(f"Path length: {path_length_m(waypoints):.1f}m")
        print(f"Vertices: {len(polygon)}")
        for i, (lat, lon) in enumerate(polygon):
            print(f"  {i:>3}: ({lat:.6f}, {lon:.6f})")
        print(f"{'='*60}\n")

    def _status_cmd(self, args: List[str]):
        """Vehicle status from a running API facade"""
        url = args[0] if args else DEFAULT_API_URL
        try:
            response = requests.get(f"{url.rstrip('/')}/api/v1/vehicle/status", timeout=self.config.request_timeout)
            response.raise_for_status()
        except requests.RequestException as e:
            print(f"❌ Could not reach API at {url}: {e}")
            return False

        snapshot = response.json()
        state = snapshot['state']
        status = snapshot['status']

        print(f"\n{'='*60}")
        print("DRONE STATUS")
        print(f"{'='*60}")
        print(f"Connection: {state['connection_state'].upper()}")
        print(f"Armed: {'Yes' if state['armed'] else 'No'}")
        print(f"Mode: {state['mode']}")
        print(f"Mission: {state['mission_id'] or 'None'} ({state['mission_phase']})")
        print(f"  Waypoint: {state['mission_current']}/{state['mission_count']}")
        print(f"\nBattery: {status['battery_percentage']:.1f}%")
        print(f"GPS: {status['gps_fix_label']} ({status['gps_quality']})")
        print(f"Telemetry: {snapshot['update_frequency']} Hz")
        if state['error_message']:
            print(f"\nLast error: {state['error_message']}")
        print(f"{'='*60}\n")

    def _config_cmd(self, args: List[str]):
        """Show the effective configuration"""
        print(f"\n{'='*60}")
        print("CONFIGURATION")
        print(f"{'='*60}")
        print(f"Transport: {self.config.transport}")
        print(f"API base URL: {self.config.api_base_url}")
        print(f"Telemetry URL: {self.config.telemetry_url}")
        print(f"Connection string: {self.config.connection_string}")
        print(f"Corridor half width: {self.config.corridor_half_width_m}m")
        print(f"{'='*60}\n")

    def _help_cmd(self, args: List[str]):
        """Show help"""
        print("\n" + "="*70)
        print("Drone Command & Telemetry Coordinator CLI")
        print("="*70)
        print("\nCommands:")
        print("  serve     - Run the API server ([port])")
        print("  fly       - Connect, arm, take off and run a mission file")
        print("  corridor  - Print the corridor polygon for a mission file")
        print("  status    - Show vehicle status from a running API server")
        print("  config    - Show the effective configuration")
        print("  help      - Show this help")
        print("="*70 + "\n")

# ============================================================================
# MAIN ENTRY POINT
# ============================================================================

def main(argv: List[str] = None) -> int:
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    cli = CLI(CoordinatorConfig.from_env())
    return 0 if cli.run(sys.argv[1:] if argv is None else argv) else 1


if __name__ == "__main__":
    sys.exit(main())
