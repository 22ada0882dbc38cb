"""Application root wiring the permission gate, session, list and view."""

import asyncio
import logging

from .beacon_list import ObservableBeaconList
from .config import ScannerConfig
from .layout import BeaconParser
from .permissions import PermissionGate
from .region import ALL_BEACONS_REGION
from .session import BeaconSession, BeaconSubscription, RangingError
from .view import TerminalView

logger = logging.getLogger(__name__)


class BeaconScannerApp:
    """Owns every component of the scanner for the lifetime of one run.

    Flow:
        1. Check Bluetooth access (result not awaited beyond the call)
        2. Register the beacon layout parser
        3. Bind the session; on connect, subscribe and start ranging
        4. Apply each non-empty batch to the beacon list until shutdown
        5. Unbind the session
    """

    def __init__(
        self,
        config: ScannerConfig,
        session: BeaconSession | None = None,
        permission_gate: PermissionGate | None = None,
        beacon_list: ObservableBeaconList | None = None,
        view: TerminalView | None = None,
    ):
        self.config = config
        self.session = session or BeaconSession(
            adapter=config.adapter, scan_period=config.scan_period
        )
        self.permission_gate = permission_gate or PermissionGate(adapter=config.adapter)
        self.beacon_list = beacon_list or ObservableBeaconList()
        self.view = view or TerminalView()

        self._subscription: BeaconSubscription | None = None
        self._consumer_task: asyncio.Task | None = None

    async def on_service_connect(self) -> None:
        """Subscribe to batches and start ranging over all beacons."""
        self._subscription = self.session.subscribe(ALL_BEACONS_REGION)
        self._consumer_task = asyncio.create_task(self._consume(self._subscription))

        try:
            await self.session.start_ranging(ALL_BEACONS_REGION)
        except RangingError:
            # Best-effort start: the app keeps running with the current list
            logger.exception("[MAIN] Failed to start ranging")

    async def _consume(self, subscription: BeaconSubscription) -> None:
        async for beacons in subscription:
            try:
                self.beacon_list.apply_batch(beacons)
            except Exception:
                logger.exception("[MAIN] Failed to update beacon list")

    async def run(self, shutdown_event: asyncio.Event) -> None:
        """Run until the shutdown event is set."""
        if self.config.check_permission:
            await self.permission_gate.check_and_request()

        self.session.add_parser(BeaconParser(self.config.layout))
        self.view.attach(self.beacon_list)

        try:
            async with self.session.bound(self):
                logger.info("[MAIN] Scanning for beacons. Press Ctrl+C to stop.")
                await shutdown_event.wait()
        finally:
            try:
                await self._stop_consumer()
            finally:
                self.view.detach()

    async def _stop_consumer(self) -> None:
        if self._subscription is not None:
            self._subscription.cancel()
            self._subscription = None

        if self._consumer_task is not None:
            await self._consumer_task
            self._consumer_task = None
