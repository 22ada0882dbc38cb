"""Observable list of the beacons currently shown."""

import logging
from typing import Callable, Iterable

from .layout import Beacon

logger = logging.getLogger(__name__)

Observer = Callable[[tuple[Beacon, ...]], None]


class ObservableBeaconList:
    """Holds the latest batch of beacons and notifies observers on change.

    Written by the ranging subscription only, read by the view.
    """

    def __init__(self):
        self._beacons: tuple[Beacon, ...] = ()
        self._observers: list[Observer] = []

    @property
    def beacons(self) -> tuple[Beacon, ...]:
        return self._beacons

    def observe(self, observer: Observer) -> Callable[[], None]:
        """Register an observer.

        Returns:
            A function that removes the observer again
        """
        self._observers.append(observer)

        def unobserve() -> None:
            if observer in self._observers:
                self._observers.remove(observer)

        return unobserve

    def replace_with(self, batch: Iterable[Beacon]) -> None:
        """Replace the whole list with a batch, keeping its order."""
        self._beacons = tuple(batch)
        logger.debug(f"Beacon list replaced ({len(self._beacons)} beacon(s))")
        for observer in list(self._observers):
            observer(self._beacons)

    def apply_batch(self, batch: Iterable[Beacon]) -> bool:
        """Replace the list with a non-empty batch; empty batches are ignored.

        Returns:
            True if the list was replaced
        """
        beacons = list(batch)
        if not beacons:
            return False
        self.replace_with(beacons)
        return True
