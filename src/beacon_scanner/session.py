"""Beacon ranging session on top of bleak.

This module provides the BeaconSession class that turns bleak's raw
advertisement callbacks into periodic ranging batches:

- Decoding advertisements with the registered BeaconParsers
- Collecting the beacons seen during each scan period
- Emitting one batch per ranged region at the end of every period
- Delivering batches to cancellable subscriptions

Example:
    session = BeaconSession(adapter="hci0")
    session.add_parser(BeaconParser(EDDYSTONE_UID_LAYOUT))

    async with session.bound(consumer):
        ...  # consumer.on_service_connect() subscribes and starts ranging
"""

import asyncio
import contextlib
import logging
from typing import Any, AsyncIterator, Callable, Protocol

from bleak import BleakScanner
from bleak.exc import BleakError

from .config import DEFAULT_ADAPTER, DEFAULT_SCAN_PERIOD
from .layout import Beacon, BeaconParser
from .region import Region

logger = logging.getLogger(__name__)


class RangingError(Exception):
    """Raised when a ranging session cannot be started."""

    pass


class BeaconConsumer(Protocol):
    """Protocol for components that bind to a BeaconSession."""

    async def on_service_connect(self) -> None:
        """Called once the session is bound."""
        ...


class BeaconSubscription:
    """Cancellable stream of ranging batches.

    Iterate with ``async for beacons in subscription``; iteration ends once
    the subscription is cancelled or the session is released.
    """

    def __init__(
        self,
        region: Region | None = None,
        on_cancel: Callable[["BeaconSubscription"], None] | None = None,
    ):
        """Initialize the subscription.

        Args:
            region: Only receive batches for this region, or all regions if None
            on_cancel: Called once when the subscription is cancelled
        """
        self.region = region
        self._queue: asyncio.Queue[list[Beacon] | None] = asyncio.Queue()
        self._cancelled = False
        self._on_cancel = on_cancel

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def wants(self, region: Region) -> bool:
        return self.region is None or self.region.unique_id == region.unique_id

    def push(self, beacons: list[Beacon]) -> None:
        if not self._cancelled:
            self._queue.put_nowait(beacons)

    def cancel(self) -> None:
        """Stop the subscription. Batches already queued are still delivered."""
        if self._cancelled:
            return
        self._cancelled = True
        self._queue.put_nowait(None)
        if self._on_cancel is not None:
            self._on_cancel(self)

    def __aiter__(self) -> AsyncIterator[list[Beacon]]:
        return self

    async def __anext__(self) -> list[Beacon]:
        if self._cancelled and self._queue.empty():
            raise StopAsyncIteration
        beacons = await self._queue.get()
        if beacons is None:
            raise StopAsyncIteration
        return beacons


class BeaconSession:
    """Ranging session owned by the application.

    The session is released when its last consumer unbinds, which stops
    scanning and ends every subscription.
    """

    def __init__(
        self,
        scanner_factory: Callable[..., Any] = BleakScanner,
        adapter: str = DEFAULT_ADAPTER,
        scan_period: float = DEFAULT_SCAN_PERIOD,
    ):
        """Initialize the session.

        Args:
            scanner_factory: Callable building the scanner; called with
                             ``detection_callback`` and ``adapter`` keywords
            adapter: Bluetooth adapter name (default: "hci0")
            scan_period: Seconds collected into each ranging batch
        """
        self._scanner_factory = scanner_factory
        self._adapter = adapter
        self._scan_period = scan_period

        self._parsers: list[BeaconParser] = []
        self._consumers: list[BeaconConsumer] = []
        self._subscriptions: list[BeaconSubscription] = []
        self._regions: dict[str, Region] = {}
        self._seen: dict[tuple, Beacon] = {}

        self._scanner: Any = None
        self._period_task: asyncio.Task | None = None

    @property
    def parsers(self) -> tuple[BeaconParser, ...]:
        return tuple(self._parsers)

    @property
    def is_bound(self) -> bool:
        return bool(self._consumers)

    @property
    def is_ranging(self) -> bool:
        return self._scanner is not None

    @property
    def ranged_regions(self) -> tuple[Region, ...]:
        return tuple(self._regions.values())

    def add_parser(self, parser: BeaconParser) -> None:
        """Register a parser used to decode incoming advertisements."""
        self._parsers.append(parser)
        logger.debug(f"[SESSION] Registered parser for layout {parser.layout}")

    async def bind(self, consumer: BeaconConsumer) -> None:
        """Bind a consumer and notify it that the session is connected."""
        if consumer in self._consumers:
            logger.warning("[SESSION] Consumer already bound, ignoring bind request")
            return

        self._consumers.append(consumer)
        logger.info(f"[SESSION] Bound consumer ({len(self._consumers)} active)")
        await consumer.on_service_connect()

    async def unbind(self, consumer: BeaconConsumer) -> None:
        """Unbind a consumer, releasing the session when none remain.

        Never raises, also when the session was never bound or ranging
        never started.
        """
        if consumer in self._consumers:
            self._consumers.remove(consumer)
            logger.info(f"[SESSION] Unbound consumer ({len(self._consumers)} active)")

        if not self._consumers:
            await self._release()

    @contextlib.asynccontextmanager
    async def bound(self, consumer: BeaconConsumer) -> AsyncIterator["BeaconSession"]:
        """Bind for the duration of a block; unbinding is guaranteed."""
        try:
            await self.bind(consumer)
            yield self
        finally:
            await self.unbind(consumer)

    def subscribe(self, region: Region | None = None) -> BeaconSubscription:
        """Subscribe to ranging batches.

        Args:
            region: Only receive batches for this region, or all regions if None

        Returns:
            A subscription to iterate over; cancel() ends it
        """
        subscription = BeaconSubscription(region, on_cancel=self._remove_subscription)
        self._subscriptions.append(subscription)
        return subscription

    async def start_ranging(self, region: Region) -> None:
        """Start reporting batches of beacons matching the region.

        Raises:
            RangingError: If the session is not bound or scanning cannot start
        """
        if not self._consumers:
            raise RangingError("Session is not bound")
        if not self._parsers:
            logger.warning("[RANGING] No parsers registered, no beacons will be decoded")

        self._regions[region.unique_id] = region

        if self._scanner is None:
            logger.info(f"[RANGING] Starting scanner on {self._adapter}...")
            try:
                scanner = self._scanner_factory(
                    detection_callback=self._on_advertisement,
                    adapter=self._adapter,
                )
                await scanner.start()
            except (BleakError, OSError) as e:
                del self._regions[region.unique_id]
                raise RangingError(f"Could not start scanning on {self._adapter}: {e}") from e

            self._scanner = scanner
            self._period_task = asyncio.create_task(self._period_loop())

        logger.info(f"[RANGING] Ranging in region '{region.unique_id}'")

    async def stop_ranging(self, region: Region) -> None:
        """Stop ranging in a region; scanning stops with the last region."""
        if self._regions.pop(region.unique_id, None) is None:
            logger.debug(f"[RANGING] Region '{region.unique_id}' was not being ranged")
            return

        logger.info(f"[RANGING] Stopped ranging in region '{region.unique_id}'")
        if not self._regions:
            await self._stop_scanner()

    def _on_advertisement(self, device: Any, advertisement_data: Any) -> None:
        """bleak detection callback."""
        for parser in self._parsers:
            beacon = parser.from_advertisement(device, advertisement_data)
            if beacon is None:
                continue
            # Latest sighting wins; dict keeps the first-seen position
            self._seen[beacon.key] = beacon
            logger.debug(f"[RANGING] Saw {beacon.identifier} at {beacon.rssi} dBm")
            return

    def _emit_batch(self) -> None:
        """Close the current scan period and deliver its batches."""
        seen = list(self._seen.values())
        self._seen = {}

        for region in list(self._regions.values()):
            beacons = [beacon for beacon in seen if region.matches(beacon)]
            logger.debug(f"[RANGING] {len(beacons)} beacon(s) in region '{region.unique_id}'")
            for subscription in list(self._subscriptions):
                if subscription.wants(region):
                    subscription.push(list(beacons))

    async def _period_loop(self) -> None:
        while True:
            await asyncio.sleep(self._scan_period)
            self._emit_batch()

    async def _stop_scanner(self) -> None:
        if self._period_task is not None:
            self._period_task.cancel()
            # wait() does not re-raise the task's cancellation, only our own
            await asyncio.wait([self._period_task])
            self._period_task = None

        if self._scanner is not None:
            try:
                await self._scanner.stop()
                logger.info("[RANGING] Scanner stopped")
            except Exception as e:
                logger.warning(f"[RANGING] Error stopping scanner: {e}")
            self._scanner = None

        self._seen.clear()

    async def _release(self) -> None:
        self._regions.clear()
        await self._stop_scanner()

        for subscription in list(self._subscriptions):
            subscription.cancel()
        self._subscriptions.clear()
        logger.debug("[SESSION] Session released")

    def _remove_subscription(self, subscription: BeaconSubscription) -> None:
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)
