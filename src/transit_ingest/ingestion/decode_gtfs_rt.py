from typing import Any, Optional

from google.protobuf.message import DecodeError as ProtobufDecodeError

from .error import DecodeError
from .gtfs_rt_structs import DeltaBatch, DeltaRecord
from .message_registry import FEED_MESSAGE, MessageRegistry


class FeedDecoder:
    """
    Decoder for binary GTFS Realtime vehicle position feeds

    https://gtfs.org/realtime/reference/#message-feedmessage
    """

    def __init__(self, registry: MessageRegistry, message_name: str = FEED_MESSAGE) -> None:
        if message_name not in registry:
            raise KeyError(f"{message_name} is not registered with the decoder registry")

        self.registry = registry
        self.message_name = message_name

    def parse(self, payload: bytes) -> Any:
        """
        parse raw bytes into a feed message. empty, truncated or corrupt
        payloads raise a DecodeError
        """
        if not payload:
            raise DecodeError(f"Cannot decode an empty {self.message_name} payload")

        message = self.registry.new_message(self.message_name)
        try:
            message.ParseFromString(payload)
        except (ProtobufDecodeError, ValueError) as exception:
            raise DecodeError(f"Failed to parse {self.message_name} ({len(payload)} bytes): {exception}") from exception

        # every feed message leads with a header, a payload without one was
        # cut off or is not a feed message at all
        if not message.HasField("header"):
            raise DecodeError(f"{self.message_name} payload has no feed header ({len(payload)} bytes)")

        if not message.IsInitialized():
            missing = ", ".join(message.FindInitializationErrors())
            raise DecodeError(f"{self.message_name} payload is missing required fields: {missing}")

        return message

    def decode(self, payload: bytes) -> DeltaBatch:
        """
        decode a feed into delta records, keeping feed order. entities without
        a vehicle, trip id, position or timestamp are counted and skipped.
        """
        feed = self.parse(payload)

        feed_timestamp: Optional[int] = None
        if feed.header.HasField("timestamp"):
            feed_timestamp = int(feed.header.timestamp)

        batch = DeltaBatch(feed_timestamp=feed_timestamp)

        for entity in feed.entity:
            record = record_from_entity(entity, feed_timestamp)
            if record is None:
                batch.skipped_entities += 1
                continue
            batch.records.append(record)

        return batch


def record_from_entity(entity: Any, feed_timestamp: Optional[int]) -> Optional[DeltaRecord]:
    """
    convert a FeedEntity into a DeltaRecord, None if the entity does not
    describe a positioned vehicle on a trip. the vehicle timestamp falls back to
    the feed header timestamp.
    """
    if not entity.HasField("vehicle"):
        return None

    vehicle = entity.vehicle
    if not vehicle.HasField("position") or not vehicle.trip.trip_id:
        return None

    timestamp = feed_timestamp
    if vehicle.HasField("timestamp"):
        timestamp = int(vehicle.timestamp)
    if timestamp is None:
        return None

    position = vehicle.position

    return DeltaRecord(
        trip_id=vehicle.trip.trip_id,
        route_id=vehicle.trip.route_id,
        vehicle_id=vehicle.vehicle.id,
        latitude=float(position.latitude),
        longitude=float(position.longitude),
        bearing=float(position.bearing) if position.HasField("bearing") else None,
        speed=float(position.speed) if position.HasField("speed") else None,
        timestamp=timestamp,
    )
