"""Beacon layout parsing and advertisement decoding.

A beacon layout is a compact, comma-separated description of where the
fields of a beacon advertisement live. Each term has the form
``<kind>:<start>-<end>[l][=<hex>][:<correction>]`` where the offsets are
inclusive byte positions and ``kind`` is one of:

    s   16-bit service UUID the frame is carried under (service data)
    m   matcher bytes that must be present for the frame to match
    i   identifier (``l`` suffix: stored little-endian)
    p   calibrated power, signed int8, plus an optional dBm correction

Offsets count from the start of the frame as it appears on air: for
service-data layouts the first two bytes are the service UUID
(little-endian), for manufacturer layouts they are the company ID.

Eddystone UID frame (service data under 0xFEAA):
    Offset  Length  Value       Description
    0-1     2       0xAAFE      Eddystone service UUID (little-endian)
    2       1       0x00        UID frame type
    3       1       [TxPower]   Calibrated TX power at 0 m (signed int8)
    4-13    10      [Namespace] Namespace ID (id1)
    14-19   6       [Instance]  Instance ID (id2)
"""

from dataclasses import dataclass
import logging
import re
from typing import Any, Mapping

logger = logging.getLogger(__name__)

# Eddystone UID layout; the -41 correction converts 0 m power to 1 m power
EDDYSTONE_UID_LAYOUT = "s:0-1=feaa,m:2-2=00,p:3-3:-41,i:4-13,i:14-19"

# 16-bit UUIDs are expanded with the Bluetooth base UUID, as bleak reports them
BLUETOOTH_BASE_UUID = "0000{:04x}-0000-1000-8000-00805f9b34fb"

TERM_PATTERN = re.compile(
    r"^(?P<kind>[smip]):(?P<start>\d+)-(?P<end>\d+)(?P<little>l?)"
    r"(?:=(?P<value>[0-9A-Fa-f]+))?(?::(?P<correction>-?\d+))?$"
)


class BeaconLayoutError(ValueError):
    """Raised when a beacon layout string is invalid."""

    pass


@dataclass(frozen=True)
class Identifier:
    """Opaque beacon identifier, shown as a 0x-prefixed hex string."""

    value: bytes

    def __str__(self) -> str:
        return "0x" + self.value.hex()


@dataclass(frozen=True)
class Beacon:
    """A single beacon sighting.

    Attributes:
        identifiers: Identifiers in layout order (Eddystone: namespace, instance)
        rssi: Received signal strength in dBm
        tx_power: Calibrated TX power at 1 meter in dBm, if the layout has one
        address: BLE address of the advertiser
    """

    identifiers: tuple[Identifier, ...]
    rssi: int
    tx_power: int | None = None
    address: str = ""

    @property
    def identifier(self) -> Identifier:
        """The first identifier (Eddystone namespace)."""
        return self.identifiers[0]

    @property
    def key(self) -> tuple[str, tuple[Identifier, ...]]:
        return (self.address, self.identifiers)


@dataclass(frozen=True)
class LayoutField:
    """One term of a beacon layout."""

    kind: str
    start: int
    end: int
    little_endian: bool = False
    value: bytes | None = None
    correction: int = 0

    @property
    def length(self) -> int:
        return self.end - self.start + 1

    def extract(self, frame: bytes) -> bytes:
        """Return the field's bytes in logical (big-endian) order."""
        data = frame[self.start:self.end + 1]
        return data[::-1] if self.little_endian else data


def parse_layout(layout: str) -> list[LayoutField]:
    """Parse a layout string into its fields.

    Args:
        layout: Layout string, e.g. EDDYSTONE_UID_LAYOUT

    Returns:
        Fields in the order they appear in the layout

    Raises:
        BeaconLayoutError: If the layout is malformed
    """
    fields = []
    for term in layout.split(","):
        term = term.strip()
        match = TERM_PATTERN.match(term)
        if not match:
            raise BeaconLayoutError(f"Invalid layout term: '{term}'")

        kind = match.group("kind")
        start = int(match.group("start"))
        end = int(match.group("end"))
        if end < start:
            raise BeaconLayoutError(f"Layout term '{term}' ends before it starts")

        value = match.group("value")
        try:
            value_bytes = bytes.fromhex(value) if value is not None else None
        except ValueError as e:
            raise BeaconLayoutError(f"Layout term '{term}' has an invalid hex value") from e
        if kind in ("s", "m"):
            if value_bytes is None:
                raise BeaconLayoutError(f"Layout term '{term}' needs a value")
            if len(value_bytes) != end - start + 1:
                raise BeaconLayoutError(
                    f"Layout term '{term}' value does not fit {end - start + 1} byte(s)"
                )
        elif value_bytes is not None:
            raise BeaconLayoutError(f"Layout term '{term}' cannot carry a value")

        correction = match.group("correction")
        if correction is not None and kind != "p":
            raise BeaconLayoutError(f"Only power terms take a correction: '{term}'")

        fields.append(
            LayoutField(
                kind=kind,
                start=start,
                end=end,
                # Service UUIDs are always little-endian on air
                little_endian=bool(match.group("little")) or kind == "s",
                value=value_bytes,
                correction=int(correction) if correction is not None else 0,
            )
        )

    validate_fields(fields)
    return fields


def validate_fields(fields: list[LayoutField]) -> None:
    """Check the combination of layout fields.

    Raises:
        BeaconLayoutError: If the combination is not usable
    """
    kinds = [f.kind for f in fields]

    if kinds.count("m") != 1:
        raise BeaconLayoutError("Layout needs exactly one matcher (m) term")
    if not any(k == "i" for k in kinds):
        raise BeaconLayoutError("Layout needs at least one identifier (i) term")
    if kinds.count("p") > 1:
        raise BeaconLayoutError("Layout can have at most one power (p) term")
    if kinds.count("s") > 1:
        raise BeaconLayoutError("Layout can have at most one service (s) term")

    for field in fields:
        if field.kind == "s" and (field.start, field.end) != (0, 1):
            raise BeaconLayoutError("Service (s) term must cover bytes 0-1")
        if field.kind == "p" and field.length != 1:
            raise BeaconLayoutError("Power (p) term must be a single byte")


class BeaconParser:
    """Decodes advertisements matching one beacon layout.

    Example:
        parser = BeaconParser(EDDYSTONE_UID_LAYOUT)
        beacon = parser.from_advertisement(device, advertisement_data)
    """

    def __init__(self, layout: str):
        self.layout = layout
        self._fields = parse_layout(layout)
        self._service_field = next((f for f in self._fields if f.kind == "s"), None)
        self._matchers = [f for f in self._fields if f.kind in ("s", "m")]
        self._identifiers = [f for f in self._fields if f.kind == "i"]
        self._power = next((f for f in self._fields if f.kind == "p"), None)
        self._min_length = max(f.end for f in self._fields) + 1

    def __repr__(self) -> str:
        return f"BeaconParser({self.layout!r})"

    @property
    def service_uuid(self) -> str | None:
        """Full 128-bit service UUID the layout is carried under, if any."""
        if self._service_field is None:
            return None
        return BLUETOOTH_BASE_UUID.format(int.from_bytes(self._service_field.value, "big"))

    def parse(
        self,
        address: str,
        rssi: int,
        service_data: Mapping[str, bytes],
        manufacturer_data: Mapping[int, bytes],
    ) -> Beacon | None:
        """Decode a beacon from raw advertisement fields.

        Returns:
            The decoded Beacon, or None if the advertisement does not match
        """
        if self._service_field is not None:
            data = service_data.get(self.service_uuid)
            if data is None:
                return None
            # Restore the on-air UUID prefix so offsets line up with the layout
            frames = [self._service_field.value[::-1] + bytes(data)]
        else:
            frames = [
                company_id.to_bytes(2, "little") + bytes(data)
                for company_id, data in manufacturer_data.items()
            ]

        for frame in frames:
            beacon = self._decode(frame, address, rssi)
            if beacon is not None:
                return beacon
        return None

    def from_advertisement(self, device: Any, advertisement_data: Any) -> Beacon | None:
        """Decode a beacon from a bleak detection callback's arguments."""
        return self.parse(
            device.address,
            advertisement_data.rssi,
            advertisement_data.service_data,
            advertisement_data.manufacturer_data,
        )

    def _decode(self, frame: bytes, address: str, rssi: int) -> Beacon | None:
        if len(frame) < self._min_length:
            logger.debug(f"Frame from {address} too short for layout ({len(frame)} bytes)")
            return None

        for matcher in self._matchers:
            if matcher.extract(frame) != matcher.value:
                return None

        identifiers = tuple(Identifier(f.extract(frame)) for f in self._identifiers)

        tx_power = None
        if self._power is not None:
            raw = int.from_bytes(self._power.extract(frame), "big", signed=True)
            tx_power = raw + self._power.correction

        return Beacon(identifiers=identifiers, rssi=rssi, tx_power=tx_power, address=address)
