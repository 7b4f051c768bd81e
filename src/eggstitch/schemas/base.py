"""Base Pydantic model with strict defaults for eggstitch schemas.

All configuration and unit-of-work schemas inherit from this base so that
parameter, user, CLI and internal configs validate the same way.
"""

from pydantic import BaseModel, ConfigDict


class StitchBaseModel(BaseModel):
    """Base model for all eggstitch schemas.

    Enforces strict validation:
    - No extra fields allowed
    - Validates assignments after initialization
    - Strips whitespace from strings
    """

    model_config = ConfigDict(
        extra='forbid',           # Reject unknown fields
        validate_assignment=True, # Validate on field mutation
        use_enum_values=True,     # Convert enums to values
        str_strip_whitespace=True,# Strip whitespace from strings
    )
