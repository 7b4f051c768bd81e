"""Unit-of-work schemas.

A ``UnitOfWork`` describes one stitch request: the save path holding one
sub-directory per device, the remaining device list (head = the device to
process next) and the output options. Work is chained explicitly: after one
device is processed, ``advance()`` yields either the next ``UnitOfWork`` or,
once no devices remain, a ``PackageUnit`` for the packaging stage.

Both camelCase keys (``savePath``, ``utcOffset``) and the historical flat
keys (``save_path``, ``zipfilename``, ``bypassjobs``) are accepted.
"""

from pathlib import Path
from typing import Literal, Optional, Union

from pydantic import AliasChoices, ConfigDict, Field, field_validator

from eggstitch.schemas.base import StitchBaseModel

__all__ = [
    'STITCH_STAGE',
    'UnitOfWork',
    'PackageUnit',
]

STITCH_STAGE = "stitch"

_WORK_CONFIG = ConfigDict(
    extra='ignore',           # queue payloads carry extra keys (title, ...)
    populate_by_name=True,
    str_strip_whitespace=True,
    frozen=True,
)


class PackageUnit(StitchBaseModel):
    """Hand-off to the packaging stage once every device has been stitched."""

    save_path: str = Field(validation_alias=AliasChoices("save_path", "savePath"))
    zip_file_name: Optional[str] = Field(
        None, validation_alias=AliasChoices("zip_file_name", "zipFileName", "zipfilename"))
    original_serials: list[str] = Field(
        default_factory=list, validation_alias=AliasChoices("original_serials", "originalSerials"))
    user_id: Optional[str] = Field(None, validation_alias=AliasChoices("user_id", "userId"))
    email: Optional[str] = None
    bypass_jobs: list[str] = Field(
        default_factory=list, validation_alias=AliasChoices("bypass_jobs", "bypassJobs", "bypassjobs"))

    model_config = _WORK_CONFIG


class UnitOfWork(StitchBaseModel):
    """One stitch request with its remaining device list.

    Usage
    -----
        unit = UnitOfWork.model_validate(job_payload)
        while isinstance(unit, UnitOfWork):
            stitch(unit.current_serial)
            unit = unit.advance()
        # unit is now a PackageUnit
    """

    save_path: str = Field(validation_alias=AliasChoices("save_path", "savePath"))
    original_serials: list[str] = Field(
        default_factory=list, validation_alias=AliasChoices("original_serials", "originalSerials"))
    serials: list[str] = Field(default_factory=list)
    user_id: Optional[str] = Field(None, validation_alias=AliasChoices("user_id", "userId"))
    email: Optional[str] = None
    compensated: bool = False
    instantaneous: bool = False
    utc_offset: float = Field(0, validation_alias=AliasChoices("utc_offset", "utcOffset"))
    zip_file_name: Optional[str] = Field(
        None, validation_alias=AliasChoices("zip_file_name", "zipFileName", "zipfilename"))
    stitch_format: Literal["csv", "influx"] = Field(
        "csv", validation_alias=AliasChoices("stitch_format", "stitchFormat"))
    bypass_jobs: list[str] = Field(
        default_factory=list, validation_alias=AliasChoices("bypass_jobs", "bypassJobs", "bypassjobs"))
    original_url: Optional[str] = Field(None, validation_alias=AliasChoices("original_url", "originalUrl"))

    model_config = _WORK_CONFIG

    @field_validator("stitch_format", mode="before")
    @classmethod
    def default_format(cls, v):
        """Missing or empty format means CSV."""
        if v is None or v == "":
            return "csv"
        if isinstance(v, str):
            return v.lower().strip()
        return v

    @field_validator("bypass_jobs", mode="before")
    @classmethod
    def coerce_bypass(cls, v):
        if v is None:
            return []
        return v

    @property
    def current_serial(self) -> Optional[str]:
        """Device directory processed by this unit, or None when the list is exhausted."""
        return self.serials[0] if self.serials else None

    @property
    def extension(self) -> str:
        return "json" if self.stitch_format == "influx" else "csv"

    @property
    def bypassed(self) -> bool:
        return STITCH_STAGE in self.bypass_jobs

    def advance(self) -> Union["UnitOfWork", PackageUnit]:
        """Next unit of work with the head serial consumed, or the packaging unit."""
        remaining = self.serials[1:]
        if remaining:
            return self.model_copy(update={"serials": remaining})
        return PackageUnit(
            save_path=self.save_path,
            zip_file_name=self.zip_file_name,
            original_serials=list(self.original_serials),
            user_id=self.user_id,
            email=self.email,
            bypass_jobs=list(self.bypass_jobs),
        )

    @classmethod
    def from_directory(cls, save_path: Union[str, Path], **kwargs) -> "UnitOfWork":
        """Initial unit listing every device sub-directory of ``save_path``.

        Device directories are sorted by name; ``original_serials`` defaults
        to the same list.
        """
        from eggstitch.setup_directories import discover_device_dirs

        devices = [path.name for path in discover_device_dirs(save_path)]
        payload = {"save_path": str(save_path), "serials": devices}
        payload.setdefault("original_serials", list(devices))
        payload.update(kwargs)
        return cls.model_validate(payload)
