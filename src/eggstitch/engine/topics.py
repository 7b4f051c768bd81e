"""Topic kinds and capability bit positions.

Every message carries a topic. Historically topics were published as
``/orgs/wd/aqe/<kind>`` or ``/orgs/wd/aqe/<kind>/<serial>``; newer captures
use the bare kind. Both are reduced to the same *natural topic* here.

Bit positions in ``CAPABILITY_KINDS`` are append-only. Existing positions
must never be renumbered or reordered; a new sensor kind goes at the end.
"""

from typing import Optional

__all__ = [
    'TOPIC_PREFIX',
    'CAPABILITY_KINDS',
    'CROSS_CUTTING_KINDS',
    'KNOWN_KINDS',
    'PARTICULATE_KINDS',
    'EPA_KINDS',
    'IGNORED_KINDS',
    'natural_topic',
    'topic_kind',
    'capability_bit',
    'serial_from_dirname',
    'message_serial',
]

TOPIC_PREFIX = "/orgs/wd/aqe/"

# Append-only. Index == bit position.
CAPABILITY_KINDS = (
    "no2",                  # 0
    "co",                   # 1
    "so2",                  # 2
    "o3",                   # 3
    "particulate",          # 4
    "co2",                  # 5
    "voc",                  # 6
    "water/conductivity",   # 7
    "water/ph",             # 8
    "water/turbidity",      # 9
    "exposure",             # 10
    "full_particulate",     # 11
    "air_temperature",      # 12
    "wind_chill",           # 13
    "precipitation",        # 14
    "wind_speed",           # 15
    "soil_temperature",     # 16
    "insolation",           # 17
)

# Kinds that never contribute a capability bit.
CROSS_CUTTING_KINDS = (
    "temperature",
    "humidity",
    "pressure",
    "battery",
    "power",
    "water/temperature",
)

KNOWN_KINDS = frozenset(CAPABILITY_KINDS + CROSS_CUTTING_KINDS)

PARTICULATE_KINDS = frozenset({"particulate", "full_particulate"})

# Pollutants with an EPA-regulated AQI sub-index.
EPA_KINDS = frozenset({"no2", "co", "so2", "o3", "particulate", "full_particulate"})

# Known chatter that is dropped without a warning.
IGNORED_KINDS = frozenset({"heartbeat"})


def natural_topic(topic: str, serial: Optional[str] = None) -> str:
    """Strip the historical prefix and a trailing ``/<serial>`` from a topic."""
    if not topic:
        return ""
    natural = topic
    if natural.startswith(TOPIC_PREFIX):
        natural = natural[len(TOPIC_PREFIX):]
    natural = natural.strip("/")
    if serial and natural.endswith("/" + serial):
        natural = natural[: -(len(serial) + 1)]
    return natural


def topic_kind(topic: str, serial: Optional[str] = None) -> Optional[str]:
    """Return the known kind for a topic, or None when the kind is unknown.

    The serial suffix is stripped when given; otherwise a trailing path
    segment is dropped if that leaves a known kind (``no2/egg0123`` -> ``no2``).
    """
    natural = natural_topic(topic, serial)
    if natural in KNOWN_KINDS:
        return natural
    if "/" in natural:
        head, _, _tail = natural.rpartition("/")
        if head in KNOWN_KINDS:
            return head
    return None


def capability_bit(kind: str) -> Optional[int]:
    try:
        return CAPABILITY_KINDS.index(kind)
    except ValueError:
        return None


def serial_from_dirname(dirname: str) -> str:
    """Device directories are named ``<anything>_<serial>``; the serial is the last part."""
    return str(dirname).split("_")[-1]


def message_serial(message: dict) -> Optional[str]:
    return message.get("serial-number") or message.get("serialNumber")
