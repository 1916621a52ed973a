"""Locate usage counters inside loosely-structured usage API payloads."""

from __future__ import annotations

import logging
import math
from typing import Any, Iterable

from quota.errors import ProviderUnavailable
from quota.metrics import METRIC_SPECS

logger = logging.getLogger(__name__)

RESULT_ENVELOPE_KEY = "result"


def _finite_number(value: Any) -> float | None:
    # bool is an int subclass; JSON true/false are never counters.
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    number = float(value)
    return number if math.isfinite(number) else None


def _visit(node: Any, keys: frozenset[str]) -> float | None:
    if isinstance(node, dict):
        for key, nested in node.items():
            if key in keys:
                found = _finite_number(nested)
                if found is not None:
                    return found
            if isinstance(nested, (dict, list)):
                found = _visit(nested, keys)
                if found is not None:
                    return found
        return None
    if isinstance(node, list):
        for item in node:
            found = _visit(item, keys)
            if found is not None:
                return found
    return None


def extract_metric(payload: Any, candidate_keys: Iterable[str]) -> float | None:
    """Return the first finite number stored under one of `candidate_keys`.

    A bare numeric payload is returned as-is. When the payload is wrapped
    in a `result` envelope the search starts inside it. Fields are walked
    depth-first in payload order; absence is reported as None.
    """
    if isinstance(payload, (int, float)) and not isinstance(payload, bool):
        return _finite_number(payload)
    if not isinstance(payload, (dict, list)):
        return None

    root: Any = payload
    if isinstance(payload, dict) and payload.get(RESULT_ENVELOPE_KEY) is not None:
        root = payload[RESULT_ENVELOPE_KEY]
    return _visit(root, frozenset(candidate_keys))


def extract_usage(payload: Any) -> dict[str, float | None]:
    """Extract every governed metric, keyed by metric name.

    Raises ProviderUnavailable when no metric could be found at all.
    """
    usage = {spec.name: extract_metric(payload, spec.candidate_keys) for spec in METRIC_SPECS}
    if all(value is None for value in usage.values()):
        raise ProviderUnavailable("Could not determine any R2 usage metrics from API response")
    missing = [name for name, value in usage.items() if value is None]
    if missing:
        logger.debug("USAGE_PARTIAL missing=%s", ",".join(missing))
    return usage
