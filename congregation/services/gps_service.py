"""GPS verification service."""
import math
from typing import Dict, Optional

EARTH_RADIUS_METERS = 6371000

class GPSService:
    """Service for GPS and geofence verification."""

    @staticmethod
    def calculate_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
        """Calculate great-circle distance between two GPS points in meters."""
        lat1_rad = math.radians(lat1)
        lat2_rad = math.radians(lat2)
        delta_lat = math.radians(lat2 - lat1)
        delta_lon = math.radians(lon2 - lon1)

        a = (math.sin(delta_lat/2) ** 2 +
             math.cos(lat1_rad) * math.cos(lat2_rad) *
             math.sin(delta_lon/2) ** 2)
        c = 2 * math.atan2(math.sqrt(a), math.sqrt(1-a))

        return EARTH_RADIUS_METERS * c

    @staticmethod
    def verify_location(location: Optional[Dict], service) -> Dict:
        """Check a submitted location against a service's geofence.

        Without a location, or for services that do not use GPS, nothing is
        measured and the check-in counts as inside the fence.
        """
        if not service.gps_enabled or not location or service.latitude is None:
            return {
                'measured': False,
                'is_inside': True,
                'distance': 0,
                'radius': service.geofence_radius
            }

        distance = GPSService.calculate_distance(
            location['latitude'], location['longitude'],
            service.latitude, service.longitude
        )

        return {
            'measured': True,
            'is_inside': distance <= service.geofence_radius,
            'distance': int(round(distance)),
            'radius': service.geofence_radius
        }
