"""Eddystone UID beacon scanner.

Scans for nearby BLE beacons with bleak and keeps a live list of the
detected beacons with their identifier and signal strength.

Example:
    import asyncio
    from beacon_scanner import BeaconScannerApp, ScannerConfig

    app = BeaconScannerApp(ScannerConfig(adapter="hci0"))
    await app.run(asyncio.Event())
"""

__version__ = "0.1.0"

from .layout import (
    Beacon,
    BeaconLayoutError,
    BeaconParser,
    Identifier,
    parse_layout,
    EDDYSTONE_UID_LAYOUT,
)
from .region import Region, ALL_BEACONS_REGION
from .config import ScannerConfig, ScannerConfigError
from .session import BeaconSession, BeaconSubscription, RangingError
from .beacon_list import ObservableBeaconList
from .permissions import PermissionGate
from .view import TerminalView, render_beacons, render_screen
from .app import BeaconScannerApp

__all__ = [
    # Version
    "__version__",
    # Classes
    "Beacon",
    "BeaconParser",
    "Identifier",
    "Region",
    "ScannerConfig",
    "BeaconSession",
    "BeaconSubscription",
    "ObservableBeaconList",
    "PermissionGate",
    "TerminalView",
    "BeaconScannerApp",
    # Errors
    "BeaconLayoutError",
    "ScannerConfigError",
    "RangingError",
    # Functions
    "parse_layout",
    "render_beacons",
    "render_screen",
    # Constants
    "EDDYSTONE_UID_LAYOUT",
    "ALL_BEACONS_REGION",
]
