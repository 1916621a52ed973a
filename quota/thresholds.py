"""Quota and re-enable threshold resolution."""

from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass
from typing import Any

from quota.errors import InvalidConfiguration
from quota.metrics import CLASS_A, CLASS_B, STORAGE

logger = logging.getLogger(__name__)

DEFAULT_REENABLE_RATIO = 0.8
CLAMPED_REENABLE_RATIO = 0.9

_PLAIN_NUMBER_RE = re.compile(r"^\d+(\.\d+)?$")
_SIZE_RE = re.compile(r"^(\d+(?:\.\d+)?)\s*(b|kb|mb|gb|tb|pb)?$", re.IGNORECASE)
_SIZE_MULTIPLIERS: dict[str, int] = {
    "b": 1,
    "kb": 1024,
    "mb": 1024**2,
    "gb": 1024**3,
    "tb": 1024**4,
    "pb": 1024**5,
}


def parse_size_to_bytes(value: str | int | float | None) -> float:
    """Parse `512`, `1.5GB`, `10 mb` (base 1024) into bytes; NaN when unparsable."""
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value)
    if not value:
        return math.nan

    trimmed = str(value).strip()
    if _PLAIN_NUMBER_RE.match(trimmed):
        return float(trimmed)

    match = _SIZE_RE.match(trimmed)
    if not match:
        return math.nan
    amount = float(match.group(1))
    unit = (match.group(2) or "b").lower()
    return amount * _SIZE_MULTIPLIERS[unit]


def _parse_number(value: Any) -> float:
    if isinstance(value, bool):
        return math.nan
    try:
        return float(value)
    except (TypeError, ValueError):
        return math.nan


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def parse_optional_size(value: str | int | float | None) -> float | None:
    if _is_blank(value):
        return None
    parsed = parse_size_to_bytes(value)
    if not math.isfinite(parsed) or parsed <= 0:
        raise InvalidConfiguration("Invalid quota configuration (size value)")
    return parsed


def parse_optional_number(value: str | int | float | None, default: float | None = None) -> float | None:
    if _is_blank(value):
        return default
    parsed = _parse_number(value)
    if not math.isfinite(parsed) or parsed <= 0:
        raise InvalidConfiguration("Invalid numeric quota configuration")
    return parsed


def determine_reenable(quota: float | None, override: float | None) -> tuple[float | None, bool]:
    """Return `(reenable, clamped)` for a resolved quota and an optional override."""
    if override is not None:
        if not math.isfinite(override) or override < 0:
            raise InvalidConfiguration("Invalid re-enable threshold configuration")
        if quota is not None and override > quota:
            clamped = float(math.floor(quota * CLAMPED_REENABLE_RATIO))
            logger.warning(
                "Re-enable threshold higher than quota; adjusting to 90%% of quota (override=%s quota=%s reenable=%s)",
                override,
                quota,
                clamped,
            )
            return clamped, True
        return override, False

    if quota is None:
        return None, False
    return float(math.floor(quota * DEFAULT_REENABLE_RATIO)), False


@dataclass(frozen=True)
class ResolvedThreshold:
    quota: float | None
    reenable: float | None
    clamped: bool = False


def resolve(
    raw_quota: str | int | float | None,
    raw_override: str | int | float | None,
    default_quota: float | None = None,
    *,
    size: bool = False,
) -> ResolvedThreshold:
    """Resolve one metric's quota and re-enable threshold.

    `size=True` accepts size strings (`1GB`) for both values. Pure: the same
    inputs always produce the same result, clamping included.
    """
    if size:
        quota = parse_optional_size(raw_quota)
        if quota is None:
            quota = None if default_quota is None else float(default_quota)
        override = None if _is_blank(raw_override) else parse_size_to_bytes(raw_override)
    else:
        quota = parse_optional_number(raw_quota, None if default_quota is None else float(default_quota))
        override = None if _is_blank(raw_override) else _parse_number(raw_override)

    reenable, clamped = determine_reenable(quota, override)
    return ResolvedThreshold(quota=quota, reenable=reenable, clamped=clamped)


@dataclass(frozen=True)
class RawThresholds:
    """Raw threshold configuration as read from the environment."""

    storage_quota: str = ""
    storage_reenable: str = ""
    class_a_quota: str = ""
    class_a_reenable: str = ""
    class_b_quota: str = ""
    class_b_reenable: str = ""
    class_a_default_quota: float | None = 1_000_000
    class_b_default_quota: float | None = 10_000_000

    @classmethod
    def from_config(cls, cfg: Any) -> RawThresholds:
        return cls(
            storage_quota=str(getattr(cfg, "QUOTA_BYTES", "") or ""),
            storage_reenable=str(getattr(cfg, "REENABLE_THRESHOLD", "") or ""),
            class_a_quota=str(getattr(cfg, "CLASS_A_QUOTA", "") or ""),
            class_a_reenable=str(getattr(cfg, "CLASS_A_REENABLE_THRESHOLD", "") or ""),
            class_b_quota=str(getattr(cfg, "CLASS_B_QUOTA", "") or ""),
            class_b_reenable=str(getattr(cfg, "CLASS_B_REENABLE_THRESHOLD", "") or ""),
            class_a_default_quota=getattr(cfg, "CLASS_A_DEFAULT_QUOTA", 1_000_000),
            class_b_default_quota=getattr(cfg, "CLASS_B_DEFAULT_QUOTA", 10_000_000),
        )


def resolve_thresholds(raw: RawThresholds) -> dict[str, ResolvedThreshold]:
    return {
        STORAGE: resolve(raw.storage_quota, raw.storage_reenable, size=True),
        CLASS_A: resolve(raw.class_a_quota, raw.class_a_reenable, raw.class_a_default_quota),
        CLASS_B: resolve(raw.class_b_quota, raw.class_b_reenable, raw.class_b_default_quota),
    }
