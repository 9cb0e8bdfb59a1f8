# File: src/society_parking/__init__.py
"""
Society Parking - slot allocation and visitor booking lifecycle
"""

from .application.parking_service import ParkingService, ParkingServiceFactory
from .config import ParkingConfig

__version__ = "1.0.0"

__all__ = ["ParkingService", "ParkingServiceFactory", "ParkingConfig", "__version__"]
