from typing import Optional, Tuple, Type, TypeVar

from msgspec import DecodeError, json

from common.events.integration_events import IntegrationEvent

T = TypeVar("T", bound=IntegrationEvent)
E = TypeVar("E", bound=Exception)

Result = Tuple[Optional[T], Optional[E]]


class MalformedMessageError(Exception):
    """Raised (or returned) when a payload cannot be decoded into its event type."""

    def __init__(self, event_type: str, reason: str):
        super().__init__(f"Cannot decode {event_type}: {reason}")
        self.event_type = event_type
        self.reason = reason


_encoder = json.Encoder(decimal_format="number")
_decoders: dict[type, json.Decoder] = {}


def encode_event(event: IntegrationEvent) -> bytes:
    return _encoder.encode(event)


def _decoder_for(event_type: Type[T]) -> json.Decoder:
    decoder = _decoders.get(event_type)
    if decoder is None:
        decoder = json.Decoder(event_type)
        _decoders[event_type] = decoder
    return decoder


def decode_event(payload: bytes | None, event_type: Type[T]) -> Result[T, MalformedMessageError]:
    if not payload:
        return None, MalformedMessageError(event_type.__name__, "empty payload")
    try:
        return _decoder_for(event_type).decode(payload), None
    except DecodeError as e:
        # ValidationError is a DecodeError subclass
        return None, MalformedMessageError(event_type.__name__, str(e))


def encode_json(value) -> bytes:
    """Encode any msgspec-supported value the same way events are encoded."""
    return _encoder.encode(value)
