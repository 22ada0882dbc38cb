"""Bluetooth access check for the scanning host.

On Linux, scanning needs a powered BlueZ adapter. The gate reads the
adapter's Powered property over the system D-Bus and, if the adapter is
off, asks BlueZ once to power it on. The outcome is not awaited beyond the
call itself: scanning is attempted either way.

Other platforms authorize Bluetooth at the OS level, so the gate does
nothing there.
"""

import contextlib
import logging
import sys
from typing import Any, AsyncIterator

from dbus_next import BusType
from dbus_next.aio import MessageBus

from .config import DEFAULT_ADAPTER

logger = logging.getLogger(__name__)

# BlueZ D-Bus constants
BLUEZ_SERVICE = "org.bluez"
BLUEZ_ADAPTER_INTERFACE = "org.bluez.Adapter1"


class PermissionGate:
    """One-shot check and request for Bluetooth access."""

    def __init__(self, adapter: str = DEFAULT_ADAPTER, platform: str = sys.platform):
        """Initialize the gate.

        Args:
            adapter: Bluetooth adapter name (default: "hci0")
            platform: Platform name, as in sys.platform
        """
        self._adapter_name = adapter
        self._adapter_path = f"/org/bluez/{adapter}"
        self._platform = platform

    @property
    def applies(self) -> bool:
        """Whether this platform needs the check."""
        return self._platform.startswith("linux")

    @contextlib.asynccontextmanager
    async def _adapter_interface(self) -> AsyncIterator[Any]:
        bus = await MessageBus(bus_type=BusType.SYSTEM).connect()
        try:
            introspection = await bus.introspect(BLUEZ_SERVICE, self._adapter_path)
            adapter_proxy = bus.get_proxy_object(
                BLUEZ_SERVICE, self._adapter_path, introspection
            )
            yield adapter_proxy.get_interface(BLUEZ_ADAPTER_INTERFACE)
        finally:
            bus.disconnect()

    async def is_granted(self) -> bool:
        """Return whether scanning is currently possible."""
        if not self.applies:
            return True
        async with self._adapter_interface() as adapter:
            return bool(await adapter.get_powered())

    async def request(self) -> None:
        """Ask BlueZ to power on the adapter. The result is not checked."""
        if not self.applies:
            return
        async with self._adapter_interface() as adapter:
            await adapter.set_powered(True)

    async def check_and_request(self) -> None:
        """Request access if not already granted.

        Errors are logged and never raised; the caller proceeds regardless.
        """
        if not self.applies:
            logger.debug(f"[PERMISSION] Bluetooth access is managed by the OS on {self._platform}")
            return

        try:
            if await self.is_granted():
                logger.info(f"[PERMISSION] Adapter {self._adapter_name} is powered")
                return

            logger.info(f"[PERMISSION] Adapter {self._adapter_name} is off, requesting power on")
            await self.request()
        except Exception as e:
            logger.warning(
                f"[PERMISSION] Could not check Bluetooth access on {self._adapter_name}: {e}"
            )
