"""Scanner configuration."""

from dataclasses import dataclass

from .layout import EDDYSTONE_UID_LAYOUT, BeaconLayoutError, parse_layout

DEFAULT_ADAPTER = "hci0"

# Length of one ranging cycle in seconds
DEFAULT_SCAN_PERIOD = 1.1


class ScannerConfigError(ValueError):
    """Raised when the scanner configuration is invalid."""

    pass


@dataclass
class ScannerConfig:
    """Configuration for the beacon scanner.

    Attributes:
        adapter: Bluetooth adapter name (Linux only, e.g. "hci0")
        scan_period: Seconds collected into each ranging batch
        layout: Beacon layout the scanner decodes
        check_permission: Whether to check Bluetooth access on start
    """

    adapter: str = DEFAULT_ADAPTER
    scan_period: float = DEFAULT_SCAN_PERIOD
    layout: str = EDDYSTONE_UID_LAYOUT
    check_permission: bool = True

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        if not self.adapter:
            raise ScannerConfigError("Adapter name must not be empty")

        if self.scan_period <= 0:
            raise ScannerConfigError(f"Scan period must be positive, got {self.scan_period}")

        try:
            parse_layout(self.layout)
        except BeaconLayoutError as e:
            raise ScannerConfigError(f"Invalid beacon layout: {e}") from e


def format_config_for_logging(config: ScannerConfig) -> str:
    """Format configuration for human-readable logging."""
    return (
        f"Adapter: {config.adapter}\n"
        f"Scan period: {config.scan_period}s\n"
        f"Layout: {config.layout}\n"
        f"Permission check: {'on' if config.check_permission else 'off'}"
    )
