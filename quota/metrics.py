"""Governed metrics: fixed tags, candidate payload keys and display formatting."""

from __future__ import annotations

import math
from dataclasses import dataclass

ENABLED = "enabled"
DISABLED = "disabled"
TOGGLE_STATES = (ENABLED, DISABLED)

STORAGE = "storage"
CLASS_A = "classA"
CLASS_B = "classB"

FORMAT_BYTES = "bytes"
FORMAT_INTEGER = "integer"

_BYTE_UNITS = ("B", "KB", "MB", "GB", "TB", "PB")

CANDIDATE_USAGE_KEYS: tuple[str, ...] = (
    "usageBytes",
    "usage_bytes",
    "used_bytes",
    "storedBytes",
    "stored_bytes",
    "storageBytes",
    "storage_bytes",
    "storageUsageBytes",
    "size_bytes",
    "sizeBytes",
    "total_usage_bytes",
    "totalUsageBytes",
)

CANDIDATE_CLASS_A_KEYS: tuple[str, ...] = (
    "classARequests",
    "class_a_requests",
    "classAOperations",
    "class_a_operations",
    "classA_ops",
    "class_a_ops",
    "classA",
    "requestsClassA",
    "request_class_a",
)

CANDIDATE_CLASS_B_KEYS: tuple[str, ...] = (
    "classBRequests",
    "class_b_requests",
    "classBOperations",
    "class_b_operations",
    "classB_ops",
    "class_b_ops",
    "classB",
    "requestsClassB",
    "request_class_b",
)


@dataclass(frozen=True)
class MetricSpec:
    name: str
    label: str
    usage_field: str
    candidate_keys: tuple[str, ...]
    fmt: str

    def format(self, value: float | None) -> str:
        if self.fmt == FORMAT_BYTES:
            return format_bytes(value)
        return format_integer(value)


METRIC_SPECS: tuple[MetricSpec, ...] = (
    MetricSpec(STORAGE, "Storage", "storageBytes", CANDIDATE_USAGE_KEYS, FORMAT_BYTES),
    MetricSpec(CLASS_A, "Class A requests", "classARequests", CANDIDATE_CLASS_A_KEYS, FORMAT_INTEGER),
    MetricSpec(CLASS_B, "Class B requests", "classBRequests", CANDIDATE_CLASS_B_KEYS, FORMAT_INTEGER),
)
METRICS_BY_NAME: dict[str, MetricSpec] = {spec.name: spec for spec in METRIC_SPECS}
METRIC_ORDER: dict[str, int] = {spec.name: idx for idx, spec in enumerate(METRIC_SPECS)}


@dataclass(frozen=True)
class MetricReading:
    """One metric's (usage, quota, reenable) triple for a single invocation."""

    name: str
    usage: float | None = None
    quota: float | None = None
    reenable: float | None = None

    @property
    def spec(self) -> MetricSpec:
        return METRICS_BY_NAME[self.name]

    def as_dict(self) -> dict[str, float | str]:
        row: dict[str, float | str] = {"name": self.name}
        for field_name in ("usage", "quota", "reenable"):
            value = getattr(self, field_name)
            if value is not None:
                row[field_name] = value
        return row


def normalize_toggle_state(value: object) -> str | None:
    """Return `enabled`/`disabled` for a raw status value, else None."""
    text = str(value or "").strip().lower()
    return text if text in TOGGLE_STATES else None


def format_bytes(value: float | None) -> str:
    if value is None or not math.isfinite(float(value)):
        return "unknown"
    scaled = float(value)
    unit_index = 0
    while scaled >= 1024 and unit_index < len(_BYTE_UNITS) - 1:
        scaled /= 1024
        unit_index += 1
    if unit_index == 0:
        return f"{scaled:.0f} {_BYTE_UNITS[0]}"
    return f"{scaled:.2f} {_BYTE_UNITS[unit_index]}"


def format_integer(value: float | None) -> str:
    if value is None or not math.isfinite(float(value)):
        return "unknown"
    number = float(value)
    if number.is_integer():
        return f"{int(number):,}"
    return f"{number:,.3f}".rstrip("0").rstrip(".")
