from __future__ import annotations

import asyncio
from types import SimpleNamespace
from typing import Any

import pytest
from bleak.exc import BleakError

from beacon_scanner.layout import EDDYSTONE_UID_LAYOUT, BeaconParser
from beacon_scanner.region import ALL_BEACONS_REGION, Region
from beacon_scanner.session import BeaconSession, RangingError

EDDYSTONE_UUID = "0000feaa-0000-1000-8000-00805f9b34fb"


class _FakeScanner:
    instances: list["_FakeScanner"] = []

    def __init__(self, detection_callback: Any, adapter: str, fail: bool = False) -> None:
        self.detection_callback = detection_callback
        self.adapter = adapter
        self.started = False
        self.stopped = False
        self._fail = fail
        _FakeScanner.instances.append(self)

    async def start(self) -> None:
        if self._fail:
            raise BleakError("Bluetooth adapter not found")
        self.started = True

    async def stop(self) -> None:
        self.stopped = True


def _failing_scanner(**kwargs: Any) -> _FakeScanner:
    return _FakeScanner(fail=True, **kwargs)


class _Consumer:
    def __init__(self) -> None:
        self.connected = 0

    async def on_service_connect(self) -> None:
        self.connected += 1


def _advertisement(namespace: bytes, rssi: int, address: str = "AA:BB:CC:DD:EE:01") -> tuple[Any, Any]:
    frame = b"\x00\xec" + namespace + bytes(6)
    device = SimpleNamespace(address=address)
    data = SimpleNamespace(rssi=rssi, service_data={EDDYSTONE_UUID: frame}, manufacturer_data={})
    return device, data


def _make_session(**kwargs: Any) -> BeaconSession:
    kwargs.setdefault("scanner_factory", _FakeScanner)
    # Long period so batches are only emitted when a test asks for one
    session = BeaconSession(scan_period=3600, **kwargs)
    session.add_parser(BeaconParser(EDDYSTONE_UID_LAYOUT))
    return session


@pytest.mark.asyncio
async def test_bind_notifies_consumer_once() -> None:
    session = _make_session()
    consumer = _Consumer()

    await session.bind(consumer)
    await session.bind(consumer)

    assert consumer.connected == 1
    assert session.is_bound
    await session.unbind(consumer)
    assert not session.is_bound


@pytest.mark.asyncio
async def test_start_ranging_requires_bound_session() -> None:
    session = _make_session()

    with pytest.raises(RangingError):
        await session.start_ranging(ALL_BEACONS_REGION)


@pytest.mark.asyncio
async def test_start_ranging_starts_scanner_on_adapter() -> None:
    session = _make_session(adapter="hci1")
    consumer = _Consumer()

    async with session.bound(consumer):
        await session.start_ranging(ALL_BEACONS_REGION)
        scanner = _FakeScanner.instances[-1]

        assert scanner.started
        assert scanner.adapter == "hci1"
        assert session.is_ranging
        assert session.ranged_regions == (ALL_BEACONS_REGION,)

    assert scanner.stopped
    assert not session.is_ranging


@pytest.mark.asyncio
async def test_scanner_failure_raises_ranging_error() -> None:
    session = _make_session(scanner_factory=_failing_scanner)
    consumer = _Consumer()

    async with session.bound(consumer):
        with pytest.raises(RangingError):
            await session.start_ranging(ALL_BEACONS_REGION)

        assert not session.is_ranging
        assert session.ranged_regions == ()


@pytest.mark.asyncio
async def test_batch_contains_beacons_seen_during_period() -> None:
    session = _make_session()
    consumer = _Consumer()

    async with session.bound(consumer):
        subscription = session.subscribe()
        await session.start_ranging(ALL_BEACONS_REGION)

        session._on_advertisement(*_advertisement(bytes(10), -70, "addr-1"))
        session._on_advertisement(*_advertisement(b"\x01" * 10, -80, "addr-2"))
        # A second sighting of the first beacon updates its RSSI in place
        session._on_advertisement(*_advertisement(bytes(10), -55, "addr-1"))
        session._emit_batch()

        batch = await asyncio.wait_for(subscription.__anext__(), timeout=1)

    assert [b.address for b in batch] == ["addr-1", "addr-2"]
    assert [b.rssi for b in batch] == [-55, -80]


@pytest.mark.asyncio
async def test_each_period_starts_empty() -> None:
    session = _make_session()
    consumer = _Consumer()

    async with session.bound(consumer):
        subscription = session.subscribe()
        await session.start_ranging(ALL_BEACONS_REGION)

        session._on_advertisement(*_advertisement(bytes(10), -70))
        session._emit_batch()
        session._emit_batch()

        first = await asyncio.wait_for(subscription.__anext__(), timeout=1)
        second = await asyncio.wait_for(subscription.__anext__(), timeout=1)

    assert len(first) == 1
    assert second == []


@pytest.mark.asyncio
async def test_non_beacon_advertisements_are_ignored() -> None:
    session = _make_session()
    consumer = _Consumer()

    async with session.bound(consumer):
        subscription = session.subscribe()
        await session.start_ranging(ALL_BEACONS_REGION)

        device = SimpleNamespace(address="addr")
        data = SimpleNamespace(rssi=-40, service_data={}, manufacturer_data={0x004C: b"\x10\x05"})
        session._on_advertisement(device, data)
        session._emit_batch()

        batch = await asyncio.wait_for(subscription.__anext__(), timeout=1)

    assert batch == []


@pytest.mark.asyncio
async def test_region_filters_batches() -> None:
    session = _make_session()
    consumer = _Consumer()
    region = Region("namespace-one", id1="0x" + "01" * 10)

    async with session.bound(consumer):
        subscription = session.subscribe(region)
        await session.start_ranging(ALL_BEACONS_REGION)
        await session.start_ranging(region)

        session._on_advertisement(*_advertisement(bytes(10), -70, "addr-1"))
        session._on_advertisement(*_advertisement(b"\x01" * 10, -80, "addr-2"))
        session._emit_batch()

        batch = await asyncio.wait_for(subscription.__anext__(), timeout=1)

    assert [b.address for b in batch] == ["addr-2"]


@pytest.mark.asyncio
async def test_stop_ranging_last_region_stops_scanner() -> None:
    session = _make_session()
    consumer = _Consumer()

    async with session.bound(consumer):
        await session.start_ranging(ALL_BEACONS_REGION)
        scanner = _FakeScanner.instances[-1]

        await session.stop_ranging(ALL_BEACONS_REGION)

        assert scanner.stopped
        assert not session.is_ranging
        # Stopping again is harmless
        await session.stop_ranging(ALL_BEACONS_REGION)


@pytest.mark.asyncio
async def test_period_loop_emits_batches() -> None:
    session = BeaconSession(scanner_factory=_FakeScanner, scan_period=0.01)
    session.add_parser(BeaconParser(EDDYSTONE_UID_LAYOUT))
    consumer = _Consumer()

    async with session.bound(consumer):
        subscription = session.subscribe()
        await session.start_ranging(ALL_BEACONS_REGION)
        session._on_advertisement(*_advertisement(bytes(10), -70))

        batch = await asyncio.wait_for(subscription.__anext__(), timeout=1)

    assert len(batch) == 1


@pytest.mark.asyncio
async def test_unbind_ends_subscriptions() -> None:
    session = _make_session()
    consumer = _Consumer()
    received = []

    await session.bind(consumer)
    subscription = session.subscribe()

    async def consume() -> None:
        async for batch in subscription:
            received.append(batch)

    task = asyncio.create_task(consume())
    await session.start_ranging(ALL_BEACONS_REGION)
    session._emit_batch()
    await session.unbind(consumer)

    await asyncio.wait_for(task, timeout=1)
    assert received == [[]]
    assert subscription.cancelled


@pytest.mark.asyncio
async def test_unbind_without_session_does_not_raise() -> None:
    session = _make_session()

    await session.unbind(_Consumer())

    assert not session.is_bound


@pytest.mark.asyncio
async def test_unbind_tolerates_scanner_stop_errors() -> None:
    class _BrokenStopScanner(_FakeScanner):
        async def stop(self) -> None:
            raise BleakError("adapter vanished")

    session = _make_session(scanner_factory=_BrokenStopScanner)
    consumer = _Consumer()

    await session.bind(consumer)
    await session.start_ranging(ALL_BEACONS_REGION)
    await session.unbind(consumer)

    assert not session.is_ranging


@pytest.mark.asyncio
async def test_cancelled_subscription_stops_receiving() -> None:
    session = _make_session()
    consumer = _Consumer()

    async with session.bound(consumer):
        subscription = session.subscribe()
        await session.start_ranging(ALL_BEACONS_REGION)
        subscription.cancel()
        session._emit_batch()

        with pytest.raises(StopAsyncIteration):
            await subscription.__anext__()


@pytest.mark.asyncio
async def test_stop_scanner_propagates_cancellation_of_caller() -> None:
    session = _make_session()
    consumer = _Consumer()
    await session.bind(consumer)
    await session.start_ranging(ALL_BEACONS_REGION)

    stopping = asyncio.create_task(session._stop_scanner())
    await asyncio.sleep(0)
    stopping.cancel()

    with pytest.raises(asyncio.CancelledError):
        await stopping

    await session.unbind(consumer)
    assert not session.is_ranging
