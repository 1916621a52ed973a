"""One quota-enforcement invocation: fetch, decide, toggle, persist."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Protocol

from quota.errors import MissingConfiguration
from quota.evaluator import evaluate
from quota.metrics import METRIC_SPECS, METRICS_BY_NAME, MetricReading
from quota.snapshot import PersistedSnapshot, RunResult, build_snapshot
from quota.thresholds import RawThresholds, resolve_thresholds

logger = logging.getLogger(__name__)


class MetricsProvider(Protocol):
    async def fetch_usage(self) -> dict[str, float | None]: ...


class AccessController(Protocol):
    async def get_status(self) -> str: ...

    async def set_status(self, status: str) -> None: ...


class StateStore(Protocol):
    def get(self, key: str) -> Any | None: ...

    def put(self, key: str, value: Any) -> None: ...


@dataclass(frozen=True)
class ControllerSettings:
    account_id: str
    api_token: str
    access_key_id: str
    api_base: str = "https://api.cloudflare.com/client/v4"
    state_key: str = "quota-controller"
    thresholds: RawThresholds = field(default_factory=RawThresholds)

    @classmethod
    def from_config(cls, cfg: Any) -> ControllerSettings:
        return cls(
            account_id=str(getattr(cfg, "CF_ACCOUNT_ID", "") or ""),
            api_token=str(getattr(cfg, "CF_API_TOKEN", "") or ""),
            access_key_id=str(getattr(cfg, "R2_ACCESS_KEY_ID", "") or ""),
            api_base=str(getattr(cfg, "CF_API_BASE", "") or "https://api.cloudflare.com/client/v4"),
            state_key=str(getattr(cfg, "STATE_KEY", "") or "quota-controller"),
            thresholds=RawThresholds.from_config(cfg),
        )

    def validate(self) -> None:
        if not self.account_id:
            raise MissingConfiguration("Missing CF_ACCOUNT_ID environment variable")
        if not self.api_token:
            raise MissingConfiguration("Missing CF_API_TOKEN secret")
        if not self.access_key_id:
            raise MissingConfiguration("Missing R2_ACCESS_KEY_ID environment variable")


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class QuotaController:
    def __init__(
        self,
        settings: ControllerSettings,
        *,
        provider: MetricsProvider,
        access: AccessController,
        store: StateStore,
        clock: Callable[[], str] = _utc_now_iso,
    ) -> None:
        self.settings = settings
        self.provider = provider
        self.access = access
        self.store = store
        self._clock = clock

    async def _read_prior(self) -> PersistedSnapshot | None:
        raw = await asyncio.to_thread(self.store.get, self.settings.state_key)
        snapshot = PersistedSnapshot.from_dict(raw)
        if raw is not None and snapshot is None:
            logger.warning("STATE_IGNORED key=%s reason=no_toggle_state", self.settings.state_key)
        return snapshot

    async def run(self) -> RunResult:
        self.settings.validate()
        thresholds = resolve_thresholds(self.settings.thresholds)
        warnings = [
            f"{METRICS_BY_NAME[name].label} re-enable threshold higher than quota; adjusted to 90% of quota"
            for name, resolved in thresholds.items()
            if resolved.clamped
        ]

        usage, prior = await asyncio.gather(self.provider.fetch_usage(), self._read_prior())

        if prior is not None:
            current_state = prior.toggle_state
        else:
            current_state = await self.access.get_status()
            logger.info("STATE_BOOTSTRAP key=%s live_status=%s", self.settings.state_key, current_state)

        metrics = [
            MetricReading(
                name=spec.name,
                usage=usage.get(spec.name),
                quota=thresholds[spec.name].quota,
                reenable=thresholds[spec.name].reenable,
            )
            for spec in METRIC_SPECS
        ]
        decision = evaluate(current_state, metrics)
        timestamp = self._clock()

        if decision.changed:
            await self.access.set_status(decision.next_state)

        snapshot, result = build_snapshot(decision, metrics, timestamp, warnings=warnings)
        await asyncio.to_thread(self.store.put, self.settings.state_key, snapshot.to_dict())

        logger.info(
            "QUOTA_DECISION current=%s next=%s changed=%s over_quota=%s blocking=%s message=%s",
            decision.current_state,
            decision.next_state,
            decision.changed,
            len(decision.over_quota_reasons),
            ",".join(decision.blocking) or "none",
            result.message,
        )
        return result


def build_controller(cfg: Any) -> tuple[QuotaController, Any]:
    """Wire the controller to the R2 API and the JSON state file.

    Returns the controller and the API client, which the caller must close.
    """
    from monitor.r2_api import R2Api
    from utils.state_file import JsonFileStateStore

    settings = ControllerSettings.from_config(cfg)
    api = R2Api(
        api_base=settings.api_base,
        account_id=settings.account_id,
        api_token=settings.api_token,
        access_key_id=settings.access_key_id,
        timeout_seconds=float(getattr(cfg, "HTTP_TIMEOUT_SECONDS", 15.0)),
    )
    store = JsonFileStateStore(
        str(getattr(cfg, "STATE_FILE", "quota_state.json")),
        timeout_seconds=float(getattr(cfg, "STATE_LOCK_TIMEOUT_SECONDS", 2.0)),
    )
    controller = QuotaController(settings, provider=api, access=api, store=store)
    return controller, api
