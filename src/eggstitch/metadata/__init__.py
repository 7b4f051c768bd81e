"""User and device metadata lookups."""

from eggstitch.metadata.store import (
    DeviceProfile,
    InMemoryMetadataStore,
    JsonMetadataStore,
    MetadataStore,
    resolve_device_profile,
)

__all__ = [
    "DeviceProfile",
    "InMemoryMetadataStore",
    "JsonMetadataStore",
    "MetadataStore",
    "resolve_device_profile",
]
