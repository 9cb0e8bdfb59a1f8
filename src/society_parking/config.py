# File: src/society_parking/config.py
"""
Configuration for Society Parking

Defaults match the society's setup screen: 50 resident and 20 visitor
slots. Every field can be overridden from SOCIETY_PARKING_* environment
variables via ParkingConfig.from_env().
"""

from typing import Literal, Mapping, Optional
import os

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


ENV_PREFIX = "SOCIETY_PARKING_"


class ParkingConfig(BaseModel):
    """Settings for the parking service and its backends"""

    model_config = ConfigDict(frozen=True, extra="forbid")

    resident_slot_count: int = Field(default=50, ge=0, description="Resident slots created on initialization")
    visitor_slot_count: int = Field(default=20, ge=0, description="Visitor slots created on initialization")
    max_booking_attempts: int = Field(default=3, ge=1, description="Attempts before a contended booking fails")
    max_transition_attempts: int = Field(default=3, ge=1, description="Attempts for cancel/complete on conflict")
    sweep_interval_minutes: float = Field(default=5, gt=0, description="Minimum gap between timer-driven sweeps")

    store_backend: Literal["in_memory", "mongo"] = "in_memory"
    mongo_url: str = "mongodb://localhost:27017"
    mongo_database: str = "society_parking"

    redis_url: Optional[str] = Field(default=None, description="Notification relay; disabled when unset")
    notification_channel: str = "parking.events"

    log_level: str = "INFO"
    log_file: Optional[str] = None

    @field_validator('log_level')
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        v = v.upper()
        if v not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Unknown log level: {v}")
        return v

    @field_validator('redis_url', 'log_file')
    @classmethod
    def empty_as_none(cls, v: Optional[str]) -> Optional[str]:
        return v or None

    @model_validator(mode='after')
    def check_mongo_settings(self) -> 'ParkingConfig':
        if self.store_backend == "mongo" and not self.mongo_url:
            raise ValueError("mongo_url is required for the mongo backend")
        return self

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None, **overrides) -> 'ParkingConfig':
        """Build a config from SOCIETY_PARKING_<FIELD> variables"""
        environ = os.environ if environ is None else environ
        values = {}
        for name in cls.model_fields:
            key = f"{ENV_PREFIX}{name.upper()}"
            if key in environ:
                values[name] = environ[key]
        values.update(overrides)
        return cls(**values)
