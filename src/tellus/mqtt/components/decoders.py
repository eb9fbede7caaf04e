"""
Payload Decoders Module

Pure functions turning a topic role and raw payload bytes into a domain
event. Invalid spectrum and carbon payloads raise a ``PayloadDecodeError``
subclass; online and log payloads always decode.
"""

import json
import math
import re
from typing import Callable, Dict, Union

from .events import CarbonEvent, DeviceOnlineEvent, LogEvent, SpectrumEvent
from .exceptions import InvalidCarbonError, InvalidSpectrumError
from .models import SPECTRUM_LENGTH, TopicRole


DomainEvent = Union[DeviceOnlineEvent, SpectrumEvent, CarbonEvent, LogEvent]

ONLINE_VALUES = frozenset({"1", "true", "online"})

# Leading decimal number; any trailing text is ignored
_NUMERIC_PREFIX = re.compile(r"\s*([+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?)")


def _text(payload: bytes) -> str:
    if isinstance(payload, str):
        return payload
    return bytes(payload).decode("utf-8", errors="replace")


def _reject_constant(name: str):
    raise ValueError(f"non-finite constant {name}")


def decode_online(payload: bytes) -> DeviceOnlineEvent:
    """Decode an online-status payload. Never fails."""
    return DeviceOnlineEvent(online=_text(payload).lower() in ONLINE_VALUES)


def decode_spectrum(payload: bytes) -> SpectrumEvent:
    """
    Decode a spectrum payload.

    Args:
        payload: JSON array text

    Returns:
        SpectrumEvent with exactly 288 float values

    Raises:
        InvalidSpectrumError: If the payload is not a JSON array of exactly
            288 finite numbers
    """
    size = len(payload)
    try:
        values = json.loads(_text(payload), parse_constant=_reject_constant)
    except (ValueError, RecursionError) as e:
        raise InvalidSpectrumError(f"Spectrum payload is not valid JSON: {e}",
                                   role=TopicRole.SPECTRUM.value, payload_size=size) from e

    if not isinstance(values, list):
        raise InvalidSpectrumError(f"Spectrum payload is a {type(values).__name__}, expected an array",
                                   role=TopicRole.SPECTRUM.value, payload_size=size)

    if len(values) != SPECTRUM_LENGTH:
        raise InvalidSpectrumError(f"Expected {SPECTRUM_LENGTH} spectrum values, received {len(values)}",
                                   role=TopicRole.SPECTRUM.value, payload_size=size)

    floats = []
    for index, value in enumerate(values):
        number = _finite_float(value)
        if number is None:
            raise InvalidSpectrumError(f"Spectrum value at index {index} is not a finite number: {value!r}",
                                       role=TopicRole.SPECTRUM.value, payload_size=size)
        floats.append(number)

    return SpectrumEvent(values=tuple(floats))


def _finite_float(value):
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    try:
        number = float(value)
    except OverflowError:
        return None
    return number if math.isfinite(number) else None


def decode_carbon(payload: bytes) -> CarbonEvent:
    """
    Decode a carbon payload from the numeric prefix of its text.

    Raises:
        InvalidCarbonError: If no finite number can be read
    """
    text = _text(payload)
    match = _NUMERIC_PREFIX.match(text)
    if not match:
        raise InvalidCarbonError(f"Carbon payload is not a number: {text[:50]!r}",
                                 role=TopicRole.CARBON.value, payload_size=len(payload))

    value = float(match.group(1))
    if not math.isfinite(value):
        raise InvalidCarbonError(f"Carbon value is not finite: {text[:50]!r}",
                                 role=TopicRole.CARBON.value, payload_size=len(payload))

    return CarbonEvent(value=value)


def decode_log(payload: bytes) -> LogEvent:
    """Decode a device log line. The text is kept verbatim."""
    return LogEvent(message=_text(payload))


_DECODERS: Dict[TopicRole, Callable[[bytes], DomainEvent]] = {
    TopicRole.ONLINE: decode_online,
    TopicRole.SPECTRUM: decode_spectrum,
    TopicRole.LOG: decode_log,
    TopicRole.CARBON: decode_carbon,
}


def decode(role: TopicRole, payload: bytes) -> DomainEvent:
    """Decode ``payload`` according to the topic ``role`` it arrived on."""
    return _DECODERS[role](payload)
