"""Ranging regions."""

from dataclasses import dataclass

from .layout import Beacon, Identifier


@dataclass(frozen=True)
class Region:
    """Filter deciding which beacons a ranging session reports.

    Each identifier left as None is a wildcard, so a region with no
    identifiers matches every beacon.
    """

    unique_id: str
    id1: Identifier | str | None = None
    id2: Identifier | str | None = None
    id3: Identifier | str | None = None

    def matches(self, beacon: Beacon) -> bool:
        for index, expected in enumerate((self.id1, self.id2, self.id3)):
            if expected is None:
                continue
            if index >= len(beacon.identifiers):
                return False
            if str(beacon.identifiers[index]).lower() != str(expected).lower():
                return False
        return True


ALL_BEACONS_REGION = Region("all-beacons-region")
