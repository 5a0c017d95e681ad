"""
Correlation of SUBSCRIBE/UNSUBSCRIBE requests with their acknowledgements.

Each request is stored under its 16-bit message identifier until the
matching SUBACK/UNSUBACK arrives. Requests without an acknowledgement stay
outstanding indefinitely.
"""
import logging
from dataclasses import dataclass
from types import MappingProxyType
from typing import Dict, Mapping, Optional, Tuple

from mqtt_lite.protocol.errors import MQTTProtocolError, NoOutstandingRequest, UnexpectedAckKind
from mqtt_lite.protocol.models import MAX_MESSAGE_ID, RequestKind

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OutstandingRequest:
    kind: RequestKind
    topics: Tuple[str, ...]


class CorrelationTable:
    _pending: Dict[int, OutstandingRequest]
    _last_message_id: int

    def __init__(self):
        self._pending = {}
        self._last_message_id = 0

    def __len__(self) -> int:
        return len(self._pending)

    def __contains__(self, message_id: int) -> bool:
        return message_id in self._pending

    def get(self, message_id: int) -> Optional[OutstandingRequest]:
        return self._pending.get(message_id)

    @property
    def pending(self) -> Mapping[int, OutstandingRequest]:
        return MappingProxyType(self._pending)

    def next_message_id(self) -> int:
        """
        Allocates the next identifier: increments, wraps 65535 -> 1 and
        skips identifiers that are still outstanding. 0 is never used.
        """
        candidate = self._last_message_id
        for _ in range(MAX_MESSAGE_ID):
            candidate = candidate % MAX_MESSAGE_ID + 1
            if candidate not in self._pending:
                self._last_message_id = candidate
                return candidate
        raise MQTTProtocolError("No free message identifier: 65535 requests outstanding")

    def add(self, message_id: int, kind: RequestKind, topics) -> OutstandingRequest:
        request = OutstandingRequest(kind=kind, topics=tuple(topics))
        self._pending[message_id] = request
        logger.debug(f"Outstanding {kind.value} #{message_id}: {request.topics}")
        return request

    def acknowledge(self, message_id: int, expected: RequestKind) -> OutstandingRequest:
        """
        Removes and returns the request for `message_id`.
        The entry is removed even when its kind does not match `expected`.
        """
        request = self._pending.pop(message_id, None)
        if request is None:
            raise NoOutstandingRequest(f"No outstanding message: {message_id}")
        if request.kind is not expected:
            raise UnexpectedAckKind(
                f"Outstanding message {message_id} was {request.kind.value.upper()}, "
                f"not {expected.value.upper()}"
            )
        return request

    def clear(self) -> None:
        self._pending.clear()
