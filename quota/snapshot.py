"""Persisted snapshot and caller-facing result assembly."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable, Sequence

from quota.evaluator import Decision
from quota.metrics import (
    CLASS_A,
    CLASS_B,
    DISABLED,
    ENABLED,
    METRIC_SPECS,
    STORAGE,
    MetricReading,
    normalize_toggle_state,
)

NO_THRESHOLDS_MESSAGE = "no thresholds configured"
NO_MEASURABLE_METRICS_MESSAGE = "no measurable metrics"

# Flat field names written by earlier deployments, kept so old snapshots stay readable.
_LEGACY_FIELDS: dict[str, tuple[str, str, str]] = {
    STORAGE: ("lastUsageBytes", "quotaBytes", "reenableThresholdBytes"),
    CLASS_A: ("lastClassARequests", "classAQuota", "classAReenableThreshold"),
    CLASS_B: ("lastClassBRequests", "classBQuota", "classBReenableThreshold"),
}


def build_status_message(
    next_state: str,
    current_state: str,
    over_quota_reasons: Sequence[str],
    reenable_checks: Sequence[str],
) -> str:
    if next_state == DISABLED and over_quota_reasons:
        return f"Disabling access key: {'; '.join(over_quota_reasons)}."
    if next_state == ENABLED and current_state == DISABLED:
        return f"Re-enabling access key: {'; '.join(reenable_checks) or NO_MEASURABLE_METRICS_MESSAGE}."
    joined = "; ".join([*over_quota_reasons, *reenable_checks]) or NO_THRESHOLDS_MESSAGE
    return f"Keeping access key {current_state}. Metrics: {joined}."


def _optional_float(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


@dataclass(frozen=True)
class PersistedSnapshot:
    toggle_state: str
    metrics: tuple[MetricReading, ...]
    updated_at: str
    message: str = ""

    def metric(self, name: str) -> MetricReading | None:
        for reading in self.metrics:
            if reading.name == name:
                return reading
        return None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "accessKeyStatus": self.toggle_state,
            "toggleState": self.toggle_state,
            "perMetric": [reading.as_dict() for reading in self.metrics],
        }
        for name, (usage_key, quota_key, reenable_key) in _LEGACY_FIELDS.items():
            reading = self.metric(name)
            if reading is None:
                continue
            for key, value in ((usage_key, reading.usage), (quota_key, reading.quota), (reenable_key, reading.reenable)):
                if value is not None:
                    payload[key] = value
        payload["updatedAt"] = self.updated_at
        payload["message"] = self.message
        return payload

    @classmethod
    def from_dict(cls, payload: Any) -> PersistedSnapshot | None:
        """Parse a stored snapshot; None when it carries no usable toggle state."""
        if not isinstance(payload, dict):
            return None
        state = normalize_toggle_state(payload.get("toggleState") or payload.get("accessKeyStatus"))
        if state is None:
            return None

        readings: list[MetricReading] = []
        rows = payload.get("perMetric")
        if isinstance(rows, list):
            for row in rows:
                if not isinstance(row, dict) or not row.get("name"):
                    continue
                readings.append(
                    MetricReading(
                        name=str(row["name"]),
                        usage=_optional_float(row.get("usage")),
                        quota=_optional_float(row.get("quota")),
                        reenable=_optional_float(row.get("reenable")),
                    )
                )
        else:
            for name, (usage_key, quota_key, reenable_key) in _LEGACY_FIELDS.items():
                readings.append(
                    MetricReading(
                        name=name,
                        usage=_optional_float(payload.get(usage_key)),
                        quota=_optional_float(payload.get(quota_key)),
                        reenable=_optional_float(payload.get(reenable_key)),
                    )
                )
        return cls(
            toggle_state=state,
            metrics=tuple(readings),
            updated_at=str(payload.get("updatedAt") or ""),
            message=str(payload.get("message") or ""),
        )


@dataclass(frozen=True)
class RunResult:
    access_key_status: str
    usage: dict[str, float]
    thresholds: tuple[MetricReading, ...]
    updated_at: str
    message: str
    success: bool = True
    warnings: tuple[str, ...] = field(default_factory=tuple)

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "success": self.success,
            "accessKeyStatus": self.access_key_status,
            "usage": dict(self.usage),
            "thresholds": [reading.as_dict() for reading in self.thresholds],
            "updatedAt": self.updated_at,
            "message": self.message,
        }
        if self.warnings:
            payload["warnings"] = list(self.warnings)
        return payload


def usage_summary(metrics: Iterable[MetricReading]) -> dict[str, float]:
    by_name = {reading.name: reading for reading in metrics}
    out: dict[str, float] = {}
    for spec in METRIC_SPECS:
        reading = by_name.get(spec.name)
        if reading is not None and reading.usage is not None:
            out[spec.usage_field] = reading.usage
    return out


def build_snapshot(
    decision: Decision,
    metrics: Sequence[MetricReading],
    updated_at: str,
    *,
    warnings: Sequence[str] = (),
) -> tuple[PersistedSnapshot, RunResult]:
    message = build_status_message(
        decision.next_state,
        decision.current_state,
        decision.over_quota_reasons,
        decision.reenable_checks,
    )
    readings = tuple(metrics)
    snapshot = PersistedSnapshot(
        toggle_state=decision.next_state,
        metrics=readings,
        updated_at=updated_at,
        message=message,
    )
    result = RunResult(
        access_key_status=decision.next_state,
        usage=usage_summary(readings),
        thresholds=readings,
        updated_at=updated_at,
        message=message,
        warnings=tuple(warnings),
    )
    return snapshot, result


def failure_result(error: BaseException | str) -> dict[str, Any]:
    return {"success": False, "error": str(error)}
