"""Terminal rendering of the beacon list."""

import sys
from typing import Callable, Iterable, TextIO

from .beacon_list import ObservableBeaconList
from .layout import Beacon

TITLE = "Detected Beacons:"
PLACEHOLDER = "No beacons detected."

# Clear screen and move the cursor home
CLEAR_SCREEN = "\x1b[2J\x1b[H"


def render_beacons(beacons: Iterable[Beacon]) -> list[str]:
    """One line per beacon, or the placeholder line when there are none."""
    lines = [f"Beacon: {beacon.identifier}, RSSI: {beacon.rssi}" for beacon in beacons]
    return lines or [PLACEHOLDER]


def render_screen(beacons: Iterable[Beacon]) -> str:
    return "\n".join([TITLE, ""] + render_beacons(beacons)) + "\n"


class TerminalView:
    """Redraws the beacon list on a text stream whenever it changes."""

    def __init__(self, stream: TextIO | None = None):
        self._stream = stream if stream is not None else sys.stdout
        self._unobserve: Callable[[], None] | None = None

    def attach(self, beacon_list: ObservableBeaconList) -> None:
        """Start following a beacon list and draw its current state."""
        self.detach()
        self._unobserve = beacon_list.observe(self.draw)
        self.draw(beacon_list.beacons)

    def detach(self) -> None:
        if self._unobserve is not None:
            self._unobserve()
            self._unobserve = None

    def draw(self, beacons: Iterable[Beacon]) -> None:
        isatty = getattr(self._stream, "isatty", None)
        if isatty is not None and isatty():
            self._stream.write(CLEAR_SCREEN)
        self._stream.write(render_screen(beacons))
        self._stream.flush()
