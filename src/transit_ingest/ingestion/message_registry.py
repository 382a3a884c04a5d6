from typing import Dict, Iterable, Optional, Type

from google.protobuf.message import Message
from google.transit import gtfs_realtime_pb2

FEED_MESSAGE = "transit_realtime.FeedMessage"


class MessageRegistry:
    """
    registry of protobuf message types the decoder is allowed to parse, keyed
    by full message name. built once at startup and handed to the decoder.
    """

    def __init__(self, message_types: Optional[Iterable[Type[Message]]] = None) -> None:
        self._message_types: Dict[str, Type[Message]] = {}
        for message_type in message_types or []:
            self.register(message_type)

    def register(self, message_type: Type[Message]) -> None:
        """add a generated protobuf message class"""
        self._message_types[message_type.DESCRIPTOR.full_name] = message_type

    def __contains__(self, full_name: str) -> bool:
        return full_name in self._message_types

    def new_message(self, full_name: str) -> Message:
        """create an empty message for full_name. raise KeyError if unknown"""
        try:
            message_type = self._message_types[full_name]
        except KeyError as exception:
            raise KeyError(f"No protobuf message registered as {full_name}") from exception

        return message_type()


def gtfs_realtime_registry() -> MessageRegistry:
    """registry containing the GTFS Realtime feed message"""
    return MessageRegistry([gtfs_realtime_pb2.FeedMessage])
