"""Allow running the scanner with ``python -m beacon_scanner``."""

from .main import main

if __name__ == "__main__":
    main()
