# File: src/society_parking/main.py
"""
Main entry point for Society Parking

Builds the parking service from SOCIETY_PARKING_* environment variables,
initializes the slot inventory on first run, runs an expiry sweep and
prints the current occupancy.
"""

from typing import Optional
import logging
import os
import sys

from .application.parking_service import ParkingService, ParkingServiceFactory
from .config import ParkingConfig
from .domain.exceptions import ParkingError

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def setup_logging(level: str = "INFO", log_file: Optional[str] = None) -> logging.Logger:
    """Setup application logging configuration"""
    handlers = [logging.StreamHandler(sys.stdout)]
    if log_file:
        log_dir = os.path.dirname(log_file)
        if log_dir and not os.path.exists(log_dir):
            os.makedirs(log_dir)
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
        handlers=handlers,
        force=True
    )
    return logging.getLogger("society_parking")


class ParkingApplication:
    """Application controller that wires the service from configuration"""

    def __init__(self, config: Optional[ParkingConfig] = None):
        self.config = config or ParkingConfig.from_env()
        self.logger = setup_logging(self.config.log_level, self.config.log_file)
        self.logger.info(f"Starting Society Parking ({self.config.store_backend} store)...")
        self.service: ParkingService = ParkingServiceFactory.create(self.config)

    def run(self) -> None:
        try:
            if not self.service.is_initialized():
                self.service.initialize_slots()

            expired = self.service.tick()
            stats = self.service.get_stats()
            self.logger.info(f"Sweep expired {expired} booking(s)")
            print(stats.to_json(indent=2))
        finally:
            self.service.close()
            self.logger.info("Application shutting down...")


def main() -> int:
    """Main entry point for the application"""
    try:
        ParkingApplication().run()
    except ParkingError as e:
        logging.error(f"Fatal error in main: {e}")
        print(f"Fatal error: {e}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
