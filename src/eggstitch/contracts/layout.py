"""Layout stage contract.

Enforces that a resolved layout is internally consistent before anything
is written, so that assembly and both encoders agree on every slot.
"""

from eggstitch.contracts.base import require
from eggstitch.engine.layout import (
    ROLE_ALTITUDE,
    ROLE_LATITUDE,
    ROLE_LONGITUDE,
    ROLE_TIMESTAMP,
    FieldLayout,
)


def assert_layout_consistent(layout: FieldLayout, header: str = None) -> None:
    """Enforce layout stage contract.

    Parameters
    ----------
    layout : FieldLayout
        Layout returned by ``resolve_layout``.
    header : str, optional
        CSV header produced from the layout; its field count must equal the
        layout's emitted width.

    Raises
    ------
    ContractViolation
        If any invariant is violated
    """
    require(layout.width > 0, f"Layout contract violated: empty layout for {layout.model}")
    require(
        layout.columns[0].role == ROLE_TIMESTAMP,
        f"Layout contract violated: first column of {layout.model} is '{layout.columns[0].key}', expected timestamp"
    )
    require(
        layout.excluded <= {column.key for column in layout.columns},
        f"Layout contract violated: {layout.model} excludes unknown columns {sorted(layout.excluded)}"
    )
    require(
        layout.columns[0].key not in layout.excluded,
        f"Layout contract violated: {layout.model} excludes the timestamp"
    )

    lat, lon, alt = layout.gps_indices
    require(
        (lon, alt) == (lat + 1, lat + 2),
        f"Layout contract violated: GPS columns of {layout.model} are not contiguous"
    )
    require(
        layout.columns[lat].role == ROLE_LATITUDE and layout.columns[lon].role == ROLE_LONGITUDE
        and layout.columns[alt].role == ROLE_ALTITUDE,
        f"Layout contract violated: GPS roles out of order in {layout.model}"
    )

    for column in layout.columns:
        if column.source_topic is not None:
            require(
                column.source is not None,
                f"Layout contract violated: column '{column.key}' has a topic but no payload source"
            )

    # alias unions may share secondary names; the primary one identifies the column
    primary = [column.influx_fields[0] for column in layout.output_columns if column.influx_fields]
    require(
        len(primary) == len(set(primary)),
        f"Layout contract violated: {layout.model} maps two columns to the same influx field"
    )

    if header is not None:
        fields = header.rstrip("\r\n").split(",")
        require(
            len(fields) == layout.output_width,
            f"Layout contract violated: header has {len(fields)} fields, "
            f"layout {layout.model} emits {layout.output_width}"
        )
