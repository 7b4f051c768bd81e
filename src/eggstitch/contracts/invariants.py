"""Formal engine invariants.

This file documents what each stage MUST produce. Use it as a review
anchor and system reference.
"""

PIPELINE_INVARIANTS = {
    "classification": [
        "Capability bit positions are append-only; existing bits never move",
        "Same capability set always maps to the same model",
        "Refinement only splits provisional models (C -> N, U -> Y)",
        "Refinement never turns a resolved model into 'unknown'",
    ],

    "layout": [
        "First column is the timestamp",
        "GPS triplet is contiguous (latitude, longitude, altitude)",
        "Width is fixed once per device and never changes",
        "Excluded columns are a subset of the layout and never the timestamp",
        "CSV header field count equals the emitted width",
        "Every emitted column has its own primary influx field name",
    ],

    "assembly": [
        "Every record has exactly layout.width slots",
        "Records are flushed in message order",
        "The last record is flushed exactly once",
        "GPS slots are never cleared by a message without a location",
    ],

    "encoding": [
        "CSV rows with fewer than two non-sentinel cells are suppressed",
        "Influx points with no fields encode to an empty string",
        "Every Influx point after the first is comma-prefixed",
        "Both encoders read column meaning only from the layout",
    ],

    "chaining": [
        "Each unit of work enqueues exactly one follow-up item",
        "An empty serial list produces the packaging unit",
        "A failed device never blocks the remaining devices",
        "Follow-up puts never block; only submission waits for a free request slot",
    ],
}

# Which stages are optional vs required
STAGE_REQUIREMENTS = {
    "classification": "REQUIRED",
    "layout": "REQUIRED",
    "assembly": "REQUIRED",
    "encoding": "REQUIRED",
    "chaining": "REQUIRED",
}
