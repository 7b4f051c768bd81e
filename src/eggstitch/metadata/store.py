"""Read-only user/device metadata lookups.

The stitcher consults the metadata store once per device, at the start of
its run, to resolve the output display name (device alias) and the user's
temperature unit preference. Lookup failures never abort a device: the
profile falls back to the directory name and the configured default unit.
"""

import json
import logging
import re
from pathlib import Path
from typing import Iterable, List, Optional, Protocol, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from eggstitch.engine.normalizer import normalize_temperature_units
from eggstitch.engine.topics import serial_from_dirname

__all__ = [
    'UserRecord',
    'DeviceRecord',
    'DeviceProfile',
    'MetadataStore',
    'InMemoryMetadataStore',
    'JsonMetadataStore',
    'resolve_device_profile',
    'safe_filename',
]

logger = logging.getLogger(__name__)

_RECORD_CONFIG = ConfigDict(extra='ignore', populate_by_name=True, str_strip_whitespace=True)

_UNIT_PREFERENCES = {"imperial": "degF", "metric": "degC", "si": "degC"}


class UserRecord(BaseModel):
    """User document: aliasing switch and unit preference."""
    email: str
    aliases: bool = False
    unit_preference: Optional[str] = Field(
        None, validation_alias=AliasChoices("unit_preference", "unitPreference"))
    product_line: Optional[str] = Field(
        None, validation_alias=AliasChoices("product_line", "productLine"))

    model_config = _RECORD_CONFIG

    @property
    def temperature_units(self) -> Optional[str]:
        if not self.unit_preference:
            return None
        preference = self.unit_preference.strip().lower()
        return _UNIT_PREFERENCES.get(preference) or normalize_temperature_units(preference)


class DeviceRecord(BaseModel):
    """Device document."""
    serial_number: str = Field(validation_alias=AliasChoices("serial_number", "serialNumber"))
    alias: Optional[str] = None
    short_code: Optional[str] = Field(None, validation_alias=AliasChoices("short_code", "shortCode"))
    product_line: Optional[str] = Field(
        None, validation_alias=AliasChoices("product_line", "productLine"))

    model_config = _RECORD_CONFIG


class DeviceProfile(BaseModel):
    """Per-device output settings resolved at the start of a run."""
    display_name: str
    temperature_units: str = "degC"

    model_config = ConfigDict(frozen=True)


class MetadataStore(Protocol):
    """Read-only lookups the stitcher needs."""

    def find_user(self, email: str) -> Optional[UserRecord]:
        ...

    def find_devices(self, serials: Iterable[str]) -> List[DeviceRecord]:
        ...


class InMemoryMetadataStore:
    """Dict-backed store, used by tests and by runs without a metadata file."""

    def __init__(self, users: Iterable[Union[dict, UserRecord]] = (),
                 devices: Iterable[Union[dict, DeviceRecord]] = ()):
        self._users = {}
        for user in users:
            record = user if isinstance(user, UserRecord) else UserRecord.model_validate(user)
            self._users[record.email.lower()] = record
        self._devices = {}
        for device in devices:
            record = device if isinstance(device, DeviceRecord) else DeviceRecord.model_validate(device)
            self._devices[record.serial_number] = record

    def find_user(self, email: str) -> Optional[UserRecord]:
        if not email:
            return None
        return self._users.get(email.lower())

    def find_devices(self, serials: Iterable[str]) -> List[DeviceRecord]:
        return [self._devices[serial] for serial in serials if serial in self._devices]


class JsonMetadataStore(InMemoryMetadataStore):
    """Store loaded from a JSON file with ``users`` and ``devices`` arrays."""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        with open(self.path, 'r') as f:
            data = json.load(f)
        super().__init__(users=data.get("users", []), devices=data.get("devices", []))
        logger.info("Loaded metadata for %d users and %d devices from %s",
                    len(self._users), len(self._devices), self.path)


def safe_filename(name: str) -> str:
    """Filesystem-safe version of an alias."""
    cleaned = re.sub(r"[^A-Za-z0-9._-]+", "_", name.strip())
    return cleaned.strip("._") or "device"


def resolve_device_profile(store: Optional[MetadataStore], email: Optional[str], device_dir: str,
                           fallback_units: str = "degC") -> DeviceProfile:
    """Display name and temperature unit for one device directory.

    Never raises for missing or unreachable records; the directory name and
    ``fallback_units`` are used instead.
    """
    profile = DeviceProfile(display_name=device_dir,
                            temperature_units=normalize_temperature_units(fallback_units) or "degC")
    if store is None:
        return profile

    serial = serial_from_dirname(device_dir)
    try:
        user = store.find_user(email) if email else None
        devices = store.find_devices([serial])
    except Exception:
        logger.warning("Metadata lookup failed for %s, using defaults", device_dir, exc_info=True)
        return profile

    display_name = device_dir
    units = profile.temperature_units
    if user is not None:
        units = user.temperature_units or units
        if user.aliases:
            alias = next((d.alias for d in devices if d.serial_number == serial and d.alias), None)
            if alias:
                display_name = safe_filename(alias)
    else:
        logger.debug("No user record for %s", email)

    return DeviceProfile(display_name=display_name, temperature_units=units)
