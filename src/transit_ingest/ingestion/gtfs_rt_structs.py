from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass(frozen=True)
class DeltaRecord:
    """one observed vehicle state from a delta feed entity"""

    trip_id: str
    route_id: str
    vehicle_id: str
    latitude: float
    longitude: float
    timestamp: int
    bearing: Optional[float] = None
    speed: Optional[float] = None

    def trip_row(self) -> Dict[str, Any]:
        """row for the trip association table"""
        return {
            "trip_id": self.trip_id,
            "route_id": self.route_id,
            "vehicle_id": self.vehicle_id,
        }

    def position_row(self) -> Dict[str, Any]:
        """row for the vehicle positions table"""
        return {
            "trip_id": self.trip_id,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "bearing": self.bearing,
            "speed": self.speed,
            "timestamp": self.timestamp,
        }


@dataclass
class DeltaBatch:
    """
    decoded form of one delta feed fetch

    records: vehicle records in feed order
    feed_timestamp: header timestamp of the feed message
    skipped_entities: entities without a vehicle position or trip id
    """

    records: List[DeltaRecord] = field(default_factory=list)
    feed_timestamp: Optional[int] = None
    skipped_entities: int = 0

    def __len__(self) -> int:
        return len(self.records)
