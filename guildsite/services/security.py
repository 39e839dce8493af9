"""
SecurityMonitor Class - Request-rate monitoring and backup signalling

Wires the metrics window, the evaluator and the backup trigger together.
One instance is built per app and handed to the routes.
"""

import asyncio
from dataclasses import replace
from typing import Any, Dict, Optional

from guildsite.config import Settings
from guildsite.errors import ConfigurationError, CooldownError, DeliveryError
from guildsite.models.data_models import SecuritySnapshot, StatusLevel, TriggerResult
from guildsite.services.backup import BackupTrigger
from guildsite.services.evaluator import SnapshotEvaluator, Thresholds
from guildsite.services.metrics import MetricsWindow
from guildsite.utils.helpers import Clock, now_ms
from guildsite.utils.logger import get_logger

log = get_logger("services.security")


class SecurityMonitor:
    """
    Responsibilities:
    - Record traffic into the window
    - Produce snapshots (pruning first)
    - Fire the backup trigger on CRITICAL status checks or manual requests
    - Periodically prune the window
    """

    def __init__(
        self,
        window: MetricsWindow,
        evaluator: SnapshotEvaluator,
        trigger: BackupTrigger,
        prune_interval_ms: int = 5_000,
    ):
        self.window = window
        self.evaluator = evaluator
        self.trigger = trigger
        self.prune_interval_ms = prune_interval_ms

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        clock: Optional[Clock] = None,
        transport=None,
    ) -> "SecurityMonitor":
        clock = clock or now_ms
        return cls(
            window=MetricsWindow(window_ms=settings.window_ms, clock=clock),
            evaluator=SnapshotEvaluator(
                Thresholds(
                    rpm_warn=settings.rpm_warn,
                    rpm_crit=settings.rpm_crit,
                    error_warn=settings.error_warn,
                    error_crit=settings.error_crit,
                ),
                top_n=settings.top_sources,
            ),
            trigger=BackupTrigger(
                settings.backup_webhook,
                cooldown_ms=settings.backup_cooldown_ms,
                timeout_s=settings.backup_timeout_s,
                clock=clock,
                transport=transport,
            ),
            prune_interval_ms=settings.prune_interval_ms,
        )

    def record_request(self, source_id: str) -> None:
        self.window.record_request(source_id)

    def record_response(self, status_code: int) -> None:
        self.window.record_response(status_code)

    def snapshot(self) -> SecuritySnapshot:
        now = self.window.now()
        self.window.prune(now)
        return self.evaluator.evaluate(self.window, now, disaster_mode=self.trigger.disaster_mode)

    async def status(self) -> SecuritySnapshot:
        """Snapshot for the status endpoint; CRITICAL asks for an automatic backup."""
        snap = self.snapshot()
        if snap.status_level is StatusLevel.CRITICAL:
            result = await self._attempt(snap, manual=False)
            if result.triggered:
                snap = replace(snap, disaster_mode=True)
            else:
                log.info("Automatic backup not sent: %s", result.reason or result.error)
        return snap

    async def trigger_manual(self) -> Dict[str, Any]:
        snap = self.snapshot()
        return (await self._attempt(snap, manual=True)).to_dict()

    async def _attempt(self, snap: SecuritySnapshot, manual: bool) -> TriggerResult:
        try:
            return await self.trigger.request_trigger(snap, manual=manual)
        except ConfigurationError as e:
            return TriggerResult(triggered=False, reason=str(e))
        except CooldownError as e:
            return TriggerResult(triggered=False, reason=str(e))
        except DeliveryError as e:
            return TriggerResult(triggered=False, error=str(e))

    def reset_disaster_mode(self) -> SecuritySnapshot:
        self.trigger.reset_disaster_mode()
        return self.snapshot()

    async def run_pruner(self) -> None:
        """Prune the window every prune_interval_ms until cancelled."""
        interval = self.prune_interval_ms / 1000
        while True:
            await asyncio.sleep(interval)
            removed = self.window.prune()
            if removed:
                log.debug("Pruned %d request events", removed)
