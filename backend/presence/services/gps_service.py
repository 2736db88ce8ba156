"""GPS geofence service."""
import math
from dataclasses import dataclass
from typing import Dict, List

# Mean Earth radius in meters
EARTH_RADIUS_METERS = 6371000.0


@dataclass(frozen=True)
class Coordinate:
    """Immutable latitude/longitude pair in decimal degrees."""
    latitude: float
    longitude: float

    def validate(self) -> List[str]:
        """Return range errors, empty when the coordinate is usable."""
        errors = []
        if not isinstance(self.latitude, (int, float)) or math.isnan(self.latitude) \
                or not -90.0 <= self.latitude <= 90.0:
            errors.append("Latitude must be between -90 and 90")
        if not isinstance(self.longitude, (int, float)) or math.isnan(self.longitude) \
                or not -180.0 <= self.longitude <= 180.0:
            errors.append("Longitude must be between -180 and 180")
        return errors

    def to_dict(self) -> Dict[str, float]:
        return {'latitude': self.latitude, 'longitude': self.longitude}


class GPSService:
    """Service for GPS and location verification."""

    @staticmethod
    def calculate_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
        """Calculate great-circle distance between two GPS points in meters."""
        lat1_rad = math.radians(lat1)
        lat2_rad = math.radians(lat2)
        delta_lat = math.radians(lat2 - lat1)
        delta_lon = math.radians(lon2 - lon1)

        a = (math.sin(delta_lat / 2) ** 2 +
             math.cos(lat1_rad) * math.cos(lat2_rad) *
             math.sin(delta_lon / 2) ** 2)
        # Rounding can push a a hair outside [0, 1] for antipodal points
        a = min(1.0, max(0.0, a))
        c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

        return EARTH_RADIUS_METERS * c

    @staticmethod
    def distance(a: Coordinate, b: Coordinate) -> float:
        """Haversine distance in meters between two coordinates."""
        return GPSService.calculate_distance(a.latitude, a.longitude, b.latitude, b.longitude)

    @staticmethod
    def verify_location(location: Coordinate, origin: Coordinate, radius_meters: float) -> Dict:
        """Verify if a reported location is within the session geofence."""
        distance = GPSService.distance(origin, location)

        return {
            'is_inside': distance <= radius_meters,
            'distance': distance,
            'radius': radius_meters,
            'origin': origin.to_dict()
        }
