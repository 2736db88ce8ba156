"""Validation utilities for request payloads."""
import math
from typing import Any, Dict, List, Optional, Tuple

from presence.services.gps_service import Coordinate


class Validator:
    """Validation helper class."""

    @staticmethod
    def validate_required_fields(data: Dict, required_fields: List[str]) -> Dict[str, Any]:
        """Validate required fields in data."""
        errors = []

        for field in required_fields:
            if field not in data or data[field] in (None, '', [], {}):
                errors.append(f"{field} is required")

        return {
            "is_valid": len(errors) == 0,
            "errors": errors
        }

    @staticmethod
    def parse_float(value: Any, name: str) -> Tuple[Optional[float], List[str]]:
        """Parse a finite float from JSON input (numbers or numeric strings)."""
        if isinstance(value, bool):
            return None, [f"{name} must be a number"]
        try:
            number = float(value)
        except (TypeError, ValueError):
            return None, [f"{name} must be a number"]
        if not math.isfinite(number):
            return None, [f"{name} must be a finite number"]
        return number, []

    @staticmethod
    def parse_coordinate(data: Dict, required: bool = False) -> Tuple[Optional[Coordinate], List[str]]:
        """
        Read ``latitude``/``longitude`` from a payload.

        A location is only taken into account when both values are supplied.
        Returns (None, []) when it is absent and not required.
        """
        latitude = data.get('latitude')
        longitude = data.get('longitude')

        if latitude in (None, '') or longitude in (None, ''):
            if required:
                return None, ["latitude and longitude are required"]
            return None, []

        lat, lat_errors = Validator.parse_float(latitude, 'latitude')
        lng, lng_errors = Validator.parse_float(longitude, 'longitude')
        errors = lat_errors + lng_errors
        if errors:
            return None, errors

        coordinate = Coordinate(lat, lng)
        errors = coordinate.validate()
        if errors:
            return None, errors

        return coordinate, []
