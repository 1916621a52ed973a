"""Hysteresis state machine for the access key toggle."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from quota.metrics import DISABLED, ENABLED, METRIC_ORDER, MetricReading, normalize_toggle_state


@dataclass(frozen=True)
class Decision:
    current_state: str
    next_state: str
    over_quota_reasons: tuple[str, ...] = ()
    reenable_checks: tuple[str, ...] = ()
    blocking: tuple[str, ...] = ()
    thresholds_configured: bool = True

    @property
    def changed(self) -> bool:
        return self.next_state != self.current_state


def _canonical(metrics: Iterable[MetricReading]) -> list[MetricReading]:
    return sorted(metrics, key=lambda m: (METRIC_ORDER.get(m.name, len(METRIC_ORDER)), m.name))


def evaluate(current_state: str, metrics: Iterable[MetricReading]) -> Decision:
    """Compute the next toggle state from the current one and every metric triple.

    Any metric at or over its quota disables. Otherwise the key is enabled
    only when no measurable metric sits above its re-enable threshold; in
    between, the current state holds. Metrics without a quota are inert and
    metrics without usage are skipped for this round.
    """
    current = normalize_toggle_state(current_state)
    if current is None:
        raise ValueError(f"unknown toggle state: {current_state!r}")

    governed = [m for m in _canonical(metrics) if m.quota is not None]
    if not governed:
        return Decision(current_state=current, next_state=current, thresholds_configured=False)

    over_quota: list[str] = []
    checks: list[str] = []
    blocking: list[str] = []
    for metric in governed:
        spec = metric.spec
        if metric.usage is None:
            continue
        usage_text = spec.format(metric.usage)
        if metric.usage >= metric.quota:
            over_quota.append(f"{spec.label} {usage_text} exceeds quota {spec.format(metric.quota)}")
        if metric.reenable is None:
            continue
        if metric.usage <= metric.reenable:
            checks.append(f"{spec.label} {usage_text} <= {spec.format(metric.reenable)}")
        else:
            checks.append(f"{spec.label} {usage_text} > {spec.format(metric.reenable)}")
            blocking.append(metric.name)

    if over_quota:
        next_state = DISABLED
    elif not blocking:
        next_state = ENABLED
    else:
        next_state = current

    return Decision(
        current_state=current,
        next_state=next_state,
        over_quota_reasons=tuple(over_quota),
        reenable_checks=tuple(checks),
        blocking=tuple(blocking),
    )
