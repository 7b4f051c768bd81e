import json

import pytest

from eggstitch.metadata import InMemoryMetadataStore, JsonMetadataStore, resolve_device_profile
from eggstitch.metadata.store import UserRecord, safe_filename

pytestmark = pytest.mark.unit

EMAIL = "ops@example.com"


@pytest.fixture
def store():
    return InMemoryMetadataStore(
        users=[
            {"email": EMAIL, "aliases": True, "unitPreference": "imperial"},
            {"email": "plain@example.com", "aliases": False, "unitPreference": "metric"},
        ],
        devices=[
            {"serialNumber": "AB123", "alias": "Roof Egg #1"},
            {"serialNumber": "CD456", "shortCode": "cd"},
        ],
    )


class TestUserRecord:
    """Unit preference mapping."""

    @pytest.mark.parametrize("preference,units", [
        ("imperial", "degF"),
        ("Metric", "degC"),
        ("SI", "degC"),
        ("F", "degF"),
        ("celsius", "degC"),
        (None, None),
        ("furlongs", None),
    ])
    def test_temperature_units(self, preference, units):
        assert UserRecord(email=EMAIL, unit_preference=preference).temperature_units == units


class TestResolveDeviceProfile:
    """Display name and temperature unit per device."""

    def test_no_store(self):
        profile = resolve_device_profile(None, EMAIL, "egg_AB123", "F")
        assert profile.display_name == "egg_AB123"
        assert profile.temperature_units == "degF"

    def test_alias_and_preference(self, store):
        profile = resolve_device_profile(store, EMAIL, "egg_AB123")
        assert profile.display_name == "Roof_Egg_1"
        assert profile.temperature_units == "degF"

    def test_email_is_case_insensitive(self, store):
        assert resolve_device_profile(store, EMAIL.upper(), "egg_AB123").display_name == "Roof_Egg_1"

    def test_aliasing_disabled(self, store):
        profile = resolve_device_profile(store, "plain@example.com", "egg_AB123")
        assert profile.display_name == "egg_AB123"
        assert profile.temperature_units == "degC"

    def test_device_without_alias(self, store):
        assert resolve_device_profile(store, EMAIL, "egg_CD456").display_name == "egg_CD456"

    def test_unknown_user(self, store):
        profile = resolve_device_profile(store, "nobody@example.com", "egg_AB123", "degF")
        assert profile.display_name == "egg_AB123"
        assert profile.temperature_units == "degF"

    def test_no_email(self, store):
        assert resolve_device_profile(store, None, "egg_AB123").display_name == "egg_AB123"

    def test_lookup_failure_falls_back(self):
        class BrokenStore:
            def find_user(self, email):
                raise ConnectionError("metadata service unreachable")

            def find_devices(self, serials):
                return []

        profile = resolve_device_profile(BrokenStore(), EMAIL, "egg_AB123", "degC")
        assert profile.display_name == "egg_AB123"
        assert profile.temperature_units == "degC"


class TestJsonMetadataStore:
    """File-backed metadata."""

    def test_load(self, temp_dir):
        path = temp_dir / "metadata.json"
        path.write_text(json.dumps({
            "users": [{"email": EMAIL, "aliases": True}],
            "devices": [{"serial_number": "AB123", "alias": "North"}],
        }))
        store = JsonMetadataStore(path)

        assert store.find_user(EMAIL).aliases is True
        assert [d.alias for d in store.find_devices(["AB123", "ZZ"])] == ["North"]

    def test_missing_sections(self, temp_dir):
        path = temp_dir / "metadata.json"
        path.write_text("{}")
        store = JsonMetadataStore(path)
        assert store.find_user(EMAIL) is None


def test_safe_filename():
    assert safe_filename("Roof Egg #1") == "Roof_Egg_1"
    assert safe_filename("../etc/passwd") == "etc_passwd"
    assert safe_filename("...") == "device"
