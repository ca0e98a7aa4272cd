"""Common schemas used across the application."""

from typing import Optional

from pydantic import BaseModel, Field

from safewatch.core.exceptions import ValidationException


class Coordinate(BaseModel):
    """Geographic coordinate."""

    latitude: float = Field(..., ge=-90, le=90, description="Latitude in degrees")
    longitude: float = Field(..., ge=-180, le=180, description="Longitude in degrees")


def coordinate_or_none(
    latitude: Optional[float], longitude: Optional[float]
) -> Optional[Coordinate]:
    """Build a Coordinate from optional halves, rejecting a half-specified point."""
    if latitude is None and longitude is None:
        return None
    if latitude is None or longitude is None:
        raise ValidationException(
            "Both latitude and longitude are required", field="location"
        )
    return Coordinate(latitude=latitude, longitude=longitude)
