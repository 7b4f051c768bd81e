"""Model classification from observed topics.

A device never declares its sensor complement. The classifier reduces the
set of observed topic kinds to a capability bitmask and looks the bitmask
up in a table of known hardware configurations. Two bitmasks are shared by
different hardware generations; those models are provisional and are split
by ``refine_model`` once message content is available.

An unmapped non-zero bitmask is not an error: it resolves to
``UNRESOLVED_MODEL`` and the layout resolver synthesizes a dynamic layout.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Iterable, Optional

from eggstitch.engine.topics import (
    CAPABILITY_KINDS,
    KNOWN_KINDS,
    capability_bit,
    topic_kind,
)

__all__ = [
    'UNRESOLVED_MODEL',
    'BASE_MODEL',
    'MODEL_BY_BITMASK',
    'PROVISIONAL_MODELS',
    'CapabilitySet',
    'build_capability_set',
    'classify',
    'refine_model',
]

logger = logging.getLogger(__name__)

UNRESOLVED_MODEL = "unknown"
BASE_MODEL = "model H"


def _mask(*kinds: str) -> int:
    return sum(1 << capability_bit(kind) for kind in kinds)


MODEL_BY_BITMASK: Dict[int, str] = {
    _mask("no2"): "model AF",
    _mask("no2", "co"): "model A",
    _mask("so2", "o3"): "model B",
    _mask("particulate"): "model C",
    _mask("co2"): "model D",
    _mask("voc"): "model E",
    _mask("co2", "particulate"): "model G",
    _mask("no2", "o3"): "model J",
    _mask("no2", "particulate"): "model K",
    _mask("co", "particulate"): "model L",
    _mask("co2", "particulate", "no2"): "model M",
    _mask("co2", "particulate", "voc"): "model P",
    _mask("particulate", "co", "no2"): "model Q",
    _mask("particulate", "o3", "no2"): "model R",
    _mask("particulate", "so2", "no2"): "model S",
    _mask("particulate", "co", "o3"): "model T",
    _mask("particulate", "so2"): "model U",
    _mask("co2", "voc"): "model V",
    _mask("water/conductivity", "water/ph", "water/turbidity"): "model W",
}

# provisional model -> (refined model, topic kind to inspect, payload field that triggers it)
PROVISIONAL_MODELS = {
    "model C": ("model N", "particulate", "pm1p0"),
    "model U": ("model Y", "so2", "raw-value2"),
}


@dataclass(frozen=True)
class CapabilitySet:
    """Topic kinds observed for one device during one run."""
    kinds: FrozenSet[str] = field(default_factory=frozenset)

    @property
    def bitmask(self) -> int:
        mask = 0
        for kind in self.kinds:
            bit = capability_bit(kind)
            if bit is not None:
                mask |= 1 << bit
        return mask

    @property
    def has_temperature(self) -> bool:
        return "temperature" in self.kinds or "water/temperature" in self.kinds

    @property
    def has_humidity(self) -> bool:
        return "humidity" in self.kinds

    @property
    def has_pressure(self) -> bool:
        return "pressure" in self.kinds

    @property
    def has_battery(self) -> bool:
        return "battery" in self.kinds

    @property
    def has_ac_power(self) -> bool:
        return "power" in self.kinds

    def has(self, kind: str) -> bool:
        return kind in self.kinds

    def sensor_kinds(self):
        """Bit-carrying kinds in bit order."""
        return [kind for kind in CAPABILITY_KINDS if kind in self.kinds]


def build_capability_set(topics: Iterable[str], serial: Optional[str] = None) -> CapabilitySet:
    """Test presence of each known kind (exact match or ``kind/<serial>`` suffix match)."""
    kinds = set()
    for topic in topics:
        kind = topic_kind(topic, serial)
        if kind in KNOWN_KINDS:
            kinds.add(kind)
    return CapabilitySet(kinds=frozenset(kinds))


def classify(capabilities: CapabilitySet) -> str:
    """Map a capability set to a model code, or ``UNRESOLVED_MODEL``."""
    bitmask = capabilities.bitmask
    model = MODEL_BY_BITMASK.get(bitmask)
    if model is not None:
        return model
    if bitmask == 0 and capabilities.has_temperature:
        return BASE_MODEL
    if bitmask != 0:
        logger.info("Unexpected model code: 0b%s, using dynamic layout", format(bitmask, "b"))
    return UNRESOLVED_MODEL


def refine_model(model: str, messages: Iterable[dict], serial: Optional[str] = None) -> str:
    """Split provisional models using the content of the first data file.

    The first message on the trigger topic decides; a resolved model is never
    turned into ``UNRESOLVED_MODEL``.
    """
    if model not in PROVISIONAL_MODELS:
        return model
    refined, trigger_kind, trigger_field = PROVISIONAL_MODELS[model]
    for message in messages:
        if not isinstance(message, dict):
            continue
        if topic_kind(message.get("topic", ""), serial) != trigger_kind:
            continue
        if message.get(trigger_field):
            return refined
        break
    return model
